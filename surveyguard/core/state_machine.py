# ==========================================
# surveyguard/core/state_machine.py
"""
Challenge state machine: CAPTCHA, trap question, survey and outcome
"""
import asyncio
import logging
import random
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlencode

from surveyguard.core.captcha import CaptchaGate, CaptchaGenerator
from surveyguard.core.dispatch import BackgroundDispatcher
from surveyguard.core.registry import Registry
from surveyguard.core.signals import (
    ChallengeOutcome, CompletionResult, CompletionStatus, Gate, InvalidTransition,
    InvariantViolation, Session, SurveyConfig,
)
from surveyguard.core.trap_question import TrapQuestion, TrapQuestionGate

logger = logging.getLogger(__name__)


class FlowStep(str, Enum):
    PENDING = "PENDING"
    CAPTCHA = "CAPTCHA"
    TRAP_QUESTION = "TRAP_QUESTION"
    SURVEY = "SURVEY"
    COMPLETED = "COMPLETED"
    DISQUALIFIED = "DISQUALIFIED"
    QUOTA_FULL = "QUOTA_FULL"
    ERROR = "ERROR"


TERMINAL_STEPS = {
    CompletionStatus.COMPLETED: FlowStep.COMPLETED,
    CompletionStatus.DISQUALIFIED: FlowStep.DISQUALIFIED,
    CompletionStatus.QUOTA_FULL: FlowStep.QUOTA_FULL,
    CompletionStatus.TIMEOUT: FlowStep.ERROR,
}

OUTCOME_PAGES = {
    CompletionStatus.COMPLETED: '/thank-you-completed',
    CompletionStatus.QUOTA_FULL: '/sorry-quota-full',
    CompletionStatus.DISQUALIFIED: '/sorry-disqualified',
}


class ChallengeStateMachine:
    """Owns one session and sequences it through the verification gates.

    Wrong answers never abort the session. Session-fatal failures land in
    ERROR, from which the respondent may retry.
    """

    def __init__(self, session: Session, config: SurveyConfig, registry: Registry,
                 navigate: Optional[Callable[[str], Any]] = None,
                 on_terminal: Optional[Callable[[CompletionResult], Awaitable[Any]]] = None,
                 dispatcher: Optional[BackgroundDispatcher] = None,
                 rng: Optional[random.Random] = None,
                 redirect_delay: float = 2.0,
                 outcome_base_url: str = '',
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.session = session
        self.config = config
        self.registry = registry
        self.navigate = navigate
        self.on_terminal = on_terminal
        self.dispatcher = dispatcher or BackgroundDispatcher()
        self.rng = rng or random.Random()
        self.redirect_delay = redirect_delay
        self.outcome_base_url = outcome_base_url.rstrip('/')
        self.clock = clock
        self.sleep = sleep

        self.step = FlowStep.PENDING
        self.error_reason: Optional[str] = None
        self.redirect_url: Optional[str] = None
        self.validated = False
        self.captcha: Optional[CaptchaGate] = None
        self.trap: Optional[TrapQuestionGate] = None
        self.completion: Optional[CompletionResult] = None
        self._outcomes: List[ChallengeOutcome] = []

    @property
    def outcomes(self) -> List[ChallengeOutcome]:
        return list(self._outcomes)

    @property
    def is_terminal(self) -> bool:
        return self.completion is not None

    def _require(self, *steps: FlowStep):
        if self.step not in steps:
            raise InvalidTransition(
                f"Expected step {' or '.join(s.value for s in steps)}, session is in {self.step.value}"
            )

    def _enter(self, step: FlowStep):
        logger.info(f"Session {self.session.uid}: {self.step.value} -> {step.value}")
        self.step = step

    def fail(self, reason: str):
        """Session-fatal failure; no terminal status is recorded"""
        if self.is_terminal:
            raise InvalidTransition(f"Session {self.session.uid} already finished")
        self.error_reason = reason
        self._enter(FlowStep.ERROR)

    async def begin(self) -> FlowStep:
        self._require(FlowStep.PENDING, FlowStep.ERROR)
        try:
            result = await self.registry.validate_session(self.session.project_id, self.session.uid)
        except Exception as e:
            logger.error(f"Session validation error for {self.session.uid}: {e}")
            self.fail('validation_failed')
            return self.step

        if not result.allowed:
            self.redirect_url = result.redirect
            self.fail(result.reason or 'access_denied')
            if result.redirect:
                self._navigate(result.redirect)
            return self.step

        if result.token:
            self.session.token = result.token
        self.validated = True
        self.captcha = CaptchaGate(self.config.difficulty, CaptchaGenerator(self.rng))
        self.error_reason = None
        self._enter(FlowStep.CAPTCHA)
        return self.step

    async def submit_captcha(self, answer: Any) -> Dict[str, Any]:
        self._require(FlowStep.CAPTCHA)
        attempt = self.captcha.submit(answer)

        if attempt.passed:
            # A retry after ERROR keeps the first CAPTCHA outcome.
            if not any(o.gate is Gate.CAPTCHA for o in self._outcomes):
                self._outcomes.append(ChallengeOutcome(
                    gate=Gate.CAPTCHA,
                    passed=True,
                    attempt_count=attempt.attempts,
                    answer=answer,
                    timestamp=self.clock(),
                ))
            await self._enter_trap_or_survey()

        return {
            'passed': attempt.passed,
            'attempts': attempt.attempts,
            'regenerated': attempt.regenerated,
            'step': self.step.value,
            'challenge': None if attempt.passed else attempt.challenge.public_view(),
        }

    async def _enter_trap_or_survey(self):
        answered = any(o.gate is Gate.TRAP_QUESTION for o in self._outcomes)
        if not self.config.enable_trap_questions or answered:
            self._enter(FlowStep.SURVEY)
            return

        try:
            bank = await self.registry.fetch_trap_questions(self.session.project_id)
        except Exception as e:
            logger.error(f"Trap questions unavailable for project {self.session.project_id}: {e}")
            self.fail('trap_questions_unavailable')
            return

        try:
            questions = [TrapQuestion.from_dict(q) for q in bank or []]
        except (TypeError, ValueError) as e:
            logger.error(f"Invalid trap question bank for project {self.session.project_id}: {e}")
            self.fail('trap_questions_unavailable')
            return

        if not questions:
            self._enter(FlowStep.SURVEY)
            return

        self.trap = TrapQuestionGate(questions, self.rng)
        self._enter(FlowStep.TRAP_QUESTION)

    async def submit_trap_answer(self, answer: Any) -> bool:
        self._require(FlowStep.TRAP_QUESTION)
        passed = self.trap.check(answer)
        self._outcomes.append(ChallengeOutcome(
            gate=Gate.TRAP_QUESTION,
            passed=passed,
            attempt_count=1,
            answer=answer,
            timestamp=self.clock(),
        ))

        if not passed:
            logger.info(f"Trap question failed for {self.session.uid}, continuing to survey")
            self.dispatcher.fire(
                self.registry.record_challenge_failure(
                    self.session.project_id, self.session.uid, Gate.TRAP_QUESTION.value,
                    {
                        'reason': 'TRAP_QUESTION_FAILED',
                        'questionId': self.trap.question.id,
                        'answer': answer,
                        'timestamp': self.clock(),
                    },
                ),
                label=f"trap failure for {self.session.uid}",
            )

        self._enter(FlowStep.SURVEY)
        return passed

    async def handle_completion(self, result: CompletionResult) -> bool:
        """Apply a status from the completion monitor; returns True on the first terminal"""
        if not result.status.is_terminal:
            return False

        if self.completion is not None:
            if result.status is self.completion.status:
                return False
            raise InvariantViolation(
                f"Session {self.session.uid} latched {self.completion.status.value}, "
                f"got {result.status.value}"
            )
        self._require(FlowStep.SURVEY)

        self.completion = result
        if result.status is CompletionStatus.TIMEOUT:
            self.error_reason = 'timeout'
        self._enter(TERMINAL_STEPS[result.status])

        if self.on_terminal is not None:
            try:
                await self.on_terminal(result)
            except Exception as e:
                logger.error(f"Persisting outcome for {self.session.uid} failed: {e}")

        page = OUTCOME_PAGES.get(result.status)
        if page is not None:
            await self.sleep(self.redirect_delay)
            self._navigate(self.outcome_url(result.status))
        return True

    def outcome_url(self, status: CompletionStatus) -> str:
        query = urlencode({'projectId': self.session.project_id, 'uid': self.session.uid})
        return f"{self.outcome_base_url}{OUTCOME_PAGES[status]}?{query}"

    def _navigate(self, url: str):
        self.redirect_url = url
        if self.navigate is None:
            return
        try:
            self.navigate(url)
        except Exception as e:
            logger.error(f"Navigation to {url} failed: {e}")

    async def retry(self) -> FlowStep:
        """Respondent pressed retry on the error screen"""
        self._require(FlowStep.ERROR)
        if self.is_terminal:
            raise InvalidTransition(f"Session {self.session.uid} already finished")

        if not self.validated:
            self.step = FlowStep.PENDING
            return await self.begin()

        self.captcha.reset()
        self.trap = None
        self.error_reason = None
        self._enter(FlowStep.CAPTCHA)
        return self.step

    def view(self) -> Dict[str, Any]:
        """What the respondent's page should currently render"""
        data: Dict[str, Any] = {'step': self.step.value}
        if self.step is FlowStep.CAPTCHA and self.captcha:
            data['captcha'] = self.captcha.challenge.public_view()
        elif self.step is FlowStep.TRAP_QUESTION and self.trap:
            data['question'] = self.trap.question.public_view()
        elif self.step is FlowStep.ERROR:
            data['message'] = 'Survey Error'
            data['canRetry'] = not self.is_terminal
        if self.redirect_url:
            data['redirect'] = self.redirect_url
        return data
