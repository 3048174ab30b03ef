# ==========================================
# surveyguard/services/session_pipeline.py
"""
End-to-end wiring of one respondent session
"""
import asyncio
import logging
import random
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from surveyguard.core.behavior_collector import BehaviorCollector
from surveyguard.core.completion_monitor import CompletionMonitor, FrameProbe
from surveyguard.core.dispatch import BackgroundDispatcher
from surveyguard.core.fingerprint import FingerprintCollector, FingerprintProbe
from surveyguard.core.flatline import SurveyAnswer
from surveyguard.core.honeypot import HoneypotField, HoneypotResult, HoneypotService
from surveyguard.core.quality_engine import QualityEngine, QualityInputs
from surveyguard.core.registry import Registry
from surveyguard.core.signals import (
    BehaviorSnapshot, CompletionResult, Fingerprint, GeoSignal, QualityRecord,
    Session, SurveyConfig, VpnSignal,
)
from surveyguard.core.state_machine import ChallengeStateMachine, FlowStep
from surveyguard.services.ip_intelligence import IpIntelligenceClient
from surveyguard.utils.helpers import build_client_metadata

logger = logging.getLogger(__name__)


async def load_survey_config(registry: Registry, project_id: str, timeout: float = 5.0) -> SurveyConfig:
    """Project settings from the registry, falling back to defaults when unreadable"""
    try:
        settings = await asyncio.wait_for(registry.fetch_project_settings(project_id), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Settings fetch for project {project_id} timed out, using defaults")
        settings = {}
    except Exception as e:
        logger.error(f"Settings fetch for project {project_id} failed: {e}")
        settings = {}
    return SurveyConfig.from_dict(settings)


class SessionPipeline:
    """Runs the collectors, gates, completion monitor and scoring for one session.

    Collectors start alongside validation. When the survey finishes, the
    final behavior snapshot is taken, the quality record computed and
    submitted without blocking the outcome redirect for longer than the
    registry timeout.
    """

    def __init__(self, session: Session, config: SurveyConfig, registry: Registry,
                 frame: FrameProbe,
                 fingerprint_probe: Optional[FingerprintProbe] = None,
                 ip_client: Optional[IpIntelligenceClient] = None,
                 client_ip: Optional[str] = None,
                 client_context: Optional[Dict[str, Any]] = None,
                 navigate: Optional[Callable[[str], Any]] = None,
                 engine: Optional[QualityEngine] = None,
                 rng: Optional[random.Random] = None,
                 registry_timeout: float = 5.0,
                 redirect_delay: float = 2.0,
                 max_duration: float = 20 * 60,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.session = session
        self.config = config
        self.registry = registry
        self.client_ip = client_ip
        self.client_context = client_context or {}
        self.clock = clock
        self.registry_timeout = registry_timeout

        self.dispatcher = BackgroundDispatcher(timeout=registry_timeout)
        self.engine = engine or QualityEngine()
        self.behavior = BehaviorCollector(clock=clock, sleep=sleep)
        self.fingerprinter = FingerprintCollector(fingerprint_probe) if fingerprint_probe else None
        self.ip_client = ip_client
        self.honeypot_service = HoneypotService()

        self.machine = ChallengeStateMachine(
            session, config, registry,
            navigate=navigate,
            on_terminal=self._on_terminal,
            dispatcher=self.dispatcher,
            rng=rng,
            redirect_delay=redirect_delay,
            clock=clock,
            sleep=sleep,
        )
        self.monitor = CompletionMonitor(
            session, frame, registry,
            on_status=self.machine.handle_completion,
            completion_domain=config.completion_domain,
            trusted_origins=config.trusted_origins,
            metadata_provider=lambda: build_client_metadata(self.client_context),
            dispatcher=self.dispatcher,
            max_duration=max_duration,
            clock=clock,
            sleep=sleep,
        )

        self.snapshots: List[BehaviorSnapshot] = []
        self.answers: Optional[List[SurveyAnswer]] = None
        self.honeypot: Optional[HoneypotResult] = None
        self.record: Optional[QualityRecord] = None
        self._fingerprint_task: Optional[asyncio.Task] = None
        self._ip_task: Optional[asyncio.Task] = None

    @classmethod
    def from_app_config(cls, app_config: Dict[str, Any], session: Session, config: SurveyConfig,
                        registry: Registry, frame: FrameProbe, **kwargs) -> 'SessionPipeline':
        """Pipeline with timeouts, redirect delay and IP lookups taken from the Flask config"""
        kwargs.setdefault('registry_timeout', float(app_config.get('REGISTRY_TIMEOUT') or 5.0))
        redirect_delay = app_config.get('OUTCOME_REDIRECT_DELAY')
        kwargs.setdefault('redirect_delay', 2.0 if redirect_delay is None else float(redirect_delay))
        if 'ip_client' not in kwargs:
            kwargs['ip_client'] = IpIntelligenceClient.from_app_config(app_config)
        if config.completion_domain is None and app_config.get('COMPLETION_DOMAIN'):
            config = replace(config, completion_domain=app_config['COMPLETION_DOMAIN'])
        return cls(session, config, registry, frame, **kwargs)

    def _keep_snapshot(self, snapshot: BehaviorSnapshot):
        self.snapshots.append(snapshot)

    async def start(self) -> FlowStep:
        await self.behavior.start(self._keep_snapshot)
        if self.fingerprinter is not None:
            self._fingerprint_task = asyncio.ensure_future(self.fingerprinter.generate())
        if self.ip_client is not None and self.client_ip and self.config.enable_vpn_detection:
            self._ip_task = asyncio.ensure_future(self.ip_client.lookup(self.client_ip))
        return await self.machine.begin()

    def _maybe_start_monitor(self):
        if self.machine.step is FlowStep.SURVEY and not self.monitor.polling and not self.monitor.is_terminal:
            self.monitor.start()

    async def submit_captcha(self, answer: Any) -> Dict[str, Any]:
        result = await self.machine.submit_captcha(answer)
        self._maybe_start_monitor()
        return result

    async def submit_trap_answer(self, answer: Any) -> bool:
        passed = await self.machine.submit_trap_answer(answer)
        self._maybe_start_monitor()
        return passed

    async def retry(self) -> FlowStep:
        return await self.machine.retry()

    def notify_frame_load(self):
        return self.monitor.notify_load()

    def receive_message(self, origin: str, data: Any) -> bool:
        return self.monitor.receive_message(origin, data)

    def record_answers(self, answers: List[Dict[str, Any]]):
        self.answers = [SurveyAnswer.from_dict(a) for a in answers]

    def record_honeypot(self, fields: List[Dict[str, Any]], values: Dict[str, Any],
                        submission_time_ms: Optional[float] = None,
                        interaction_times: Optional[List[float]] = None) -> HoneypotResult:
        self.honeypot = self.honeypot_service.evaluate(
            [HoneypotField.from_dict(f) for f in fields], values,
            submission_time_ms=submission_time_ms, interaction_times=interaction_times,
        )
        return self.honeypot

    async def wait_for_completion(self) -> CompletionResult:
        return await self.monitor.wait()

    async def _settle(self, task: Optional[asyncio.Task], label: str, deadline: float) -> Any:
        if task is None:
            return None
        remaining = max(deadline - asyncio.get_running_loop().time(), 0)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=remaining)
        except asyncio.TimeoutError:
            logger.warning(f"{label} not ready in time, scoring without it")
        except Exception as e:
            logger.error(f"{label} failed: {e}")
        return None

    async def _duplicate_sightings(self, fingerprint: Optional[Fingerprint], deadline: float) -> Optional[int]:
        if fingerprint is None or not fingerprint.device_id:
            return None
        remaining = max(deadline - asyncio.get_running_loop().time(), 0)
        try:
            return await asyncio.wait_for(
                self.registry.count_device_sightings(
                    self.session.project_id, fingerprint.device_id, self.session.uid),
                timeout=remaining,
            )
        except asyncio.TimeoutError:
            logger.warning("Duplicate lookup timed out")
        except Exception as e:
            logger.error(f"Duplicate lookup failed: {e}")
        return None

    async def _collect_signals(self) -> Tuple[Optional[Fingerprint], Any, Optional[int]]:
        """Fingerprint, IP lookup and duplicate count, sharing one registry timeout"""
        deadline = asyncio.get_running_loop().time() + self.registry_timeout
        fingerprint, lookup = await asyncio.gather(
            self._settle(self._fingerprint_task, 'Fingerprint', deadline),
            self._settle(self._ip_task, 'IP lookup', deadline),
        )
        sightings = await self._duplicate_sightings(fingerprint, deadline)
        return fingerprint, lookup, sightings

    async def _on_terminal(self, result: CompletionResult):
        behavior = await self.behavior.stop()
        fingerprint, lookup, sightings = await self._collect_signals()
        geo: Optional[GeoSignal] = lookup[0] if lookup else None
        vpn: Optional[VpnSignal] = lookup[1] if lookup else None

        inputs = QualityInputs(
            session=self.session,
            config=self.config,
            completion=result,
            behavior=behavior,
            fingerprint=fingerprint,
            outcomes=self.machine.outcomes,
            geo=geo,
            vpn=vpn,
            referrer=self.client_context.get('referrer'),
            honeypot=self.honeypot,
            answers=self.answers,
            duplicate_sightings=sightings,
            respondent_timezone=self.client_context.get('timeZone') or self.client_context.get('timezone'),
            user_agent=self.client_context.get('userAgent'),
        )
        self.record = self.engine.evaluate(inputs)

        raw_signals = {
            'behavior': behavior.to_dict(),
            'fingerprint': fingerprint.to_dict() if fingerprint else None,
            'security': {
                'vpn': vpn.to_dict() if vpn else None,
                'honeypot': self.honeypot.to_dict() if self.honeypot else None,
                'outcomes': [o.to_dict() for o in self.machine.outcomes],
            },
            'geo': geo.to_dict() if geo else None,
            'completion': result.to_dict(),
        }
        self.dispatcher.fire(
            self.registry.submit_quality_record(
                self.session.project_id, self.session.uid, self.record, raw_signals),
            label=f"quality record for {self.session.uid}",
        )

    async def close(self):
        """Teardown: cancel every timer and wait for pending writes"""
        await self.monitor.stop()
        await self.behavior.stop()
        for task in (self._fingerprint_task, self._ip_task):
            if task is not None and not task.done():
                task.cancel()
        await self.dispatcher.drain()
