# ==========================================
# surveyguard/core/completion_monitor.py
"""
Completion detection for an embedded cross-origin survey
"""
import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from surveyguard.core.dispatch import BackgroundDispatcher
from surveyguard.core.registry import Registry
from surveyguard.core.signals import (
    CompletionResult, CompletionStatus, CrossOriginError, DetectionMethod, Session,
)

logger = logging.getLogger(__name__)

# Checked in this order; the first class with a hit wins.
URL_PATTERNS: List[Tuple[CompletionStatus, Tuple[str, ...]]] = [
    (CompletionStatus.QUOTA_FULL, ('/quota', 'quota-full', 'quota_full', 'quotafull', 'overquota', 'over-quota')),
    (CompletionStatus.DISQUALIFIED, ('/not-eligible', '/disqualified', '/screened', '/terminate',
                                     'disqualif', 'screenout', 'screen-out')),
    (CompletionStatus.COMPLETED, ('/thank', '/complete', '/finish', '/end', '/success')),
]

PARAM_PATTERNS: List[Tuple[CompletionStatus, Tuple[str, ...]]] = [
    (CompletionStatus.QUOTA_FULL, ('quota',)),
    (CompletionStatus.DISQUALIFIED, ('disqualif', 'screen', 'terminat', 'not-eligible', 'ineligible')),
    (CompletionStatus.COMPLETED, ('complete', 'success', 'finish')),
]

MESSAGE_STATUSES = {
    'complete': CompletionStatus.COMPLETED,
    'completed': CompletionStatus.COMPLETED,
    'success': CompletionStatus.COMPLETED,
    'disqualified': CompletionStatus.DISQUALIFIED,
    'screenout': CompletionStatus.DISQUALIFIED,
    'terminate': CompletionStatus.DISQUALIFIED,
    'terminated': CompletionStatus.DISQUALIFIED,
    'quota': CompletionStatus.QUOTA_FULL,
    'quota_full': CompletionStatus.QUOTA_FULL,
    'quota-full': CompletionStatus.QUOTA_FULL,
    'overquota': CompletionStatus.QUOTA_FULL,
}

MESSAGE_TYPES = ('survey-complete', 'survey_status', 'surveystatus', 'completion', 'survey-status')

METADATA_TRUNCATE = 200


class FrameProbe(ABC):
    """Read access to the embedded survey frame's location"""

    @abstractmethod
    def read_location(self) -> str:
        """Return the frame URL or raise CrossOriginError while it is foreign"""


def classify_url(url: str, completion_domain: Optional[str] = None
                 ) -> Optional[Tuple[CompletionStatus, DetectionMethod]]:
    """Map a frame URL to a terminal status, or None when it says nothing"""
    if not url:
        return None
    parsed = urlparse(url.strip())
    if parsed.scheme not in ('http', 'https'):
        return None

    path = parsed.path.lower()
    query = parse_qs(parsed.query.lower())
    param_values = ' '.join(query.get('status', []) + query.get('reason', []))

    for status, needles in URL_PATTERNS:
        if any(n in path for n in needles):
            return status, DetectionMethod.URL_PATTERN
        if param_values:
            param_needles = dict(PARAM_PATTERNS)[status]
            if any(n in param_values for n in param_needles):
                return status, DetectionMethod.URL_PATTERN

    host = (parsed.hostname or '').lower()
    if completion_domain:
        domain = completion_domain.lower()
        if host == domain or host.endswith('.' + domain):
            return CompletionStatus.COMPLETED, DetectionMethod.DOMAIN_DEFAULT
    return None


class PollSchedule:
    """Elapsed-time based poll cadence with error backoff"""

    def __init__(self, phases: Iterable[Tuple[float, float]] = ((60.0, 0.5), (180.0, 1.0)),
                 late_interval: float = 2.0, error_threshold: int = 10,
                 backoff: float = 1.5, max_interval: float = 3.0):
        self.phases = list(phases)
        self.late_interval = late_interval
        self.error_threshold = error_threshold
        self.backoff = backoff
        self.max_interval = max_interval

    def interval(self, elapsed: float, consecutive_errors: int = 0) -> float:
        interval = self.late_interval
        for until, phase_interval in self.phases:
            if elapsed < until:
                interval = phase_interval
                break
        if consecutive_errors > self.error_threshold:
            interval = min(interval * self.backoff, self.max_interval)
        return interval


StatusCallback = Callable[[CompletionResult], Any]


class CompletionMonitor:
    """Infers the survey outcome from frame location, load events and postMessage.

    The first terminal status is latched. Later detections, whether equal or
    different, are dropped without side effects.
    """

    def __init__(self, session: Session, frame: FrameProbe, registry: Optional[Registry],
                 on_status: Optional[StatusCallback] = None,
                 completion_domain: Optional[str] = None,
                 trusted_origins: Iterable[str] = (),
                 metadata_provider: Optional[Callable[[], Dict[str, Any]]] = None,
                 dispatcher: Optional[BackgroundDispatcher] = None,
                 schedule: Optional[PollSchedule] = None,
                 max_duration: float = 20 * 60,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.session = session
        self.frame = frame
        self.registry = registry
        self.on_status = on_status
        self.completion_domain = completion_domain
        self.trusted_origins = {self._origin(o) for o in trusted_origins if o}
        self.trusted_origins.discard(None)
        self.metadata_provider = metadata_provider
        self.dispatcher = dispatcher or BackgroundDispatcher()
        self.schedule = schedule or PollSchedule()
        self.max_duration = max_duration
        self.clock = clock
        self.sleep = sleep

        self.last_known_url: Optional[str] = None
        self.consecutive_errors = 0
        self.checks = 0
        self._status: Optional[CompletionStatus] = None
        self._result: Optional[CompletionResult] = None
        self._reported: set = set()
        self._started_at: Optional[float] = None
        self._task: Optional[asyncio.Task] = None
        self._deliveries: List[asyncio.Future] = []
        self._done = asyncio.Event()
        self._stopped = False

    @staticmethod
    def _origin(value: str) -> Optional[str]:
        """Normalized scheme://host[:port], or None when the origin cannot be parsed"""
        try:
            parsed = urlparse(value if '://' in value else f"https://{value}")
            port = parsed.port
        except ValueError:
            return None
        return f"{parsed.scheme}://{(parsed.hostname or '').lower()}" + (f":{port}" if port else '')

    @property
    def status(self) -> Optional[CompletionStatus]:
        return self._status

    @property
    def result(self) -> Optional[CompletionResult]:
        return self._result

    @property
    def is_terminal(self) -> bool:
        return self._status is not None and self._status.is_terminal

    @property
    def polling(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self._task is not None or self._stopped or self.is_terminal:
            return
        self._started_at = self.clock()
        self._task = asyncio.ensure_future(self._poll_loop())
        logger.info(f"Completion monitor started for {self.session.project_id}/{self.session.uid}")

    async def _poll_loop(self):
        while not self.is_terminal and not self._stopped:
            elapsed = self.clock() - self._started_at
            if elapsed >= self.max_duration:
                logger.info(f"No terminal status for {self.session.uid} after {elapsed:.0f}s")
                self._report(CompletionStatus.TIMEOUT, DetectionMethod.TIMEOUT, self.last_known_url)
                break
            self.check_now()
            if self.is_terminal:
                break
            await self.sleep(self.schedule.interval(elapsed, self.consecutive_errors))

    def check_now(self) -> Optional[CompletionResult]:
        """One poll tick: read the frame location and classify any new URL"""
        if self.is_terminal or self._stopped:
            return None
        self.checks += 1
        try:
            url = self.frame.read_location()
        except CrossOriginError:
            # Survey still on the partner's domain
            self.consecutive_errors = 0
            return None
        except Exception as e:
            self.consecutive_errors += 1
            logger.debug(f"Frame location read failed ({self.consecutive_errors} in a row): {e}")
            return None

        self.consecutive_errors = 0
        if not url or url == self.last_known_url:
            return None
        self.last_known_url = url

        classified = classify_url(url, self.completion_domain)
        if classified is None:
            return None
        status, method = classified
        return self._report(status, method, url)

    def notify_load(self) -> Optional[CompletionResult]:
        """Frame load event: report STARTED once, then check the new location"""
        if self._stopped or self.is_terminal:
            return None
        if CompletionStatus.STARTED not in self._reported:
            self._report(CompletionStatus.STARTED, DetectionMethod.LOAD_EVENT, self.last_known_url)
        return self.check_now()

    def receive_message(self, origin: str, data: Any) -> bool:
        """Cooperative postMessage from the survey partner; returns True when accepted"""
        if self._stopped or self.is_terminal:
            return False
        if self._origin(origin or '') not in self.trusted_origins:
            logger.debug(f"Ignoring message from untrusted origin {origin}")
            return False

        status_text = None
        completion_url = None
        if isinstance(data, str):
            status_text = data
        elif isinstance(data, dict):
            message_type = str(data.get('type', '')).lower()
            if message_type and message_type not in MESSAGE_TYPES:
                return False
            status_text = data.get('status')
            completion_url = data.get('url')

        status = MESSAGE_STATUSES.get(str(status_text or '').strip().lower())
        if status is None:
            return False
        self._report(status, DetectionMethod.POST_MESSAGE, completion_url or self.last_known_url)
        return True

    def _collect_metadata(self, url: Optional[str], method: DetectionMethod) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {}
        if self.metadata_provider is not None:
            try:
                provided = self.metadata_provider() or {}
                metadata.update(provided)
            except Exception as e:
                logger.warning(f"Completion metadata unavailable: {e}")
                metadata = {}
        for key in ('userAgent', 'referrer'):
            if isinstance(metadata.get(key), str):
                metadata[key] = metadata[key][:METADATA_TRUNCATE]
        metadata['completionUrl'] = url
        metadata['detectionMethod'] = method.value
        return metadata

    def _report(self, status: CompletionStatus, method: DetectionMethod,
                url: Optional[str]) -> Optional[CompletionResult]:
        if self.is_terminal:
            if status is not self._status:
                logger.warning(f"Suppressed {status.value} for {self.session.uid}, "
                               f"already latched {self._status.value}")
            return None
        if status in self._reported:
            return None

        self._reported.add(status)
        metadata = self._collect_metadata(url, method)
        result = CompletionResult(
            status=status,
            detection_method=method,
            timestamp=self.clock(),
            completion_url=url,
            metadata=metadata,
        )
        self._status = status
        self._result = result

        if status.is_terminal:
            self._cancel_poll()
            self._done.set()
            logger.info(f"Survey {self.session.uid} finished: {status.value} via {method.value}")

        self._deliver(result)
        if self.registry is not None:
            self.dispatcher.fire(
                self.registry.update_session_status(
                    self.session.project_id, self.session.uid, status.value, metadata),
                label=f"status update {status.value} for {self.session.uid}",
            )
        return result

    def _deliver(self, result: CompletionResult):
        if self.on_status is None:
            return
        try:
            delivered = self.on_status(result)
        except Exception as e:
            logger.error(f"Completion status callback error: {e}")
            return
        if inspect.isawaitable(delivered):
            self._deliveries.append(asyncio.ensure_future(delivered))

    def _cancel_poll(self):
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def wait(self) -> CompletionResult:
        """Block until a terminal status is latched and its delivery has run"""
        await self._done.wait()
        if self._deliveries:
            results = await asyncio.gather(*self._deliveries, return_exceptions=True)
            for outcome in results:
                if isinstance(outcome, BaseException):
                    logger.error(f"Completion delivery failed: {outcome}")
            self._deliveries = []
        return self._result

    async def stop(self):
        """Teardown or navigation away: cancel polling and ignore further signals"""
        self._stopped = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
