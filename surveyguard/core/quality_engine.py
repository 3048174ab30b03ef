# ==========================================
# surveyguard/core/quality_engine.py
"""
Data quality scoring and fraud flag derivation
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from scipy import stats

from surveyguard.core.behavior_collector import assess_behavior
from surveyguard.core.domain_blacklist import DomainBlacklist
from surveyguard.core.flatline import FlatlineDetector, SurveyAnswer
from surveyguard.core.genai_detection import GenAIDetector
from surveyguard.core.honeypot import HoneypotResult
from surveyguard.core.signals import (
    BehaviorSnapshot, ChallengeOutcome, CompletionResult, CompletionStatus,
    Fingerprint, FlagReason, Gate, GeoSignal, InvariantViolation, QualityRecord,
    SecurityRisk, Session, SurveyConfig, VpnSignal,
)
from surveyguard.utils.helpers import parse_user_agent_details

logger = logging.getLogger(__name__)


@dataclass
class QualityInputs:
    """Everything known about a session at decision time; any signal may be missing"""
    session: Session
    config: SurveyConfig = field(default_factory=SurveyConfig)
    completion: Optional[CompletionResult] = None
    behavior: Optional[BehaviorSnapshot] = None
    fingerprint: Optional[Fingerprint] = None
    outcomes: Optional[List[ChallengeOutcome]] = None
    geo: Optional[GeoSignal] = None
    vpn: Optional[VpnSignal] = None
    referrer: Optional[str] = None
    honeypot: Optional[HoneypotResult] = None
    answers: Optional[List[SurveyAnswer]] = None
    duplicate_sightings: Optional[int] = None
    respondent_timezone: Optional[str] = None
    user_agent: Optional[str] = None


class QualityEngine:
    """Turns session signals into a QualityRecord.

    Stateless apart from its policy configuration; the same inputs always give
    the same record.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.penalties = {
            'vpn': config.get('vpn_penalty', 30),
            'blacklisted_domain': config.get('blacklist_penalty', 50),
            'suspicious_behavior': config.get('suspicious_penalty', 40),
            'bot_indicators': config.get('bot_penalty', 80),
        }
        self.high_risk_below = config.get('high_risk_below', 50)
        self.medium_risk_below = config.get('medium_risk_below', 80)
        self.captcha_retry_budget = config.get('captcha_retry_budget', 3)
        self.bot_indicator_threshold = config.get('bot_indicator_threshold', 2)
        self.min_uniform_clicks = config.get('min_uniform_clicks', 5)
        self.uniform_click_mean_ms = config.get('uniform_click_mean_ms', 250)
        self.uniform_click_cv = config.get('uniform_click_cv', 0.1)
        self.flatline_detector = FlatlineDetector(config.get('flatline'))
        self.genai_detector = GenAIDetector(config.get('genai'))

    def evaluate(self, inputs: QualityInputs) -> QualityRecord:
        """Final record at session termination"""
        if inputs.completion is None:
            raise InvariantViolation(
                f"Quality evaluation for {inputs.session.uid} requested without a completion result"
            )
        record = self._score(inputs, include_speed=True)
        logger.info(f"Quality record for {inputs.session.project_id}/{inputs.session.uid}: "
                    f"score {record.data_quality_score}, risk {record.security_risk.value}, "
                    f"flags {sorted(f.value for f in record.flags)}")
        return record

    def assess_interim(self, inputs: QualityInputs) -> QualityRecord:
        """Score a running session for online decisions; completion is optional"""
        return self._score(inputs, include_speed=False)

    def _score(self, inputs: QualityInputs, include_speed: bool) -> QualityRecord:
        flags = set()
        details: Dict[str, str] = {}
        applied: List[Tuple[str, int]] = []
        config = inputs.config

        # VPN / proxy
        if config.enable_vpn_detection and inputs.vpn is not None and inputs.vpn.detected:
            flags.add(FlagReason.VPN_DETECTED)
            details[FlagReason.VPN_DETECTED.value] = self._describe_vpn(inputs.vpn)
            applied.append(('vpn', self.penalties['vpn']))

        # Blacklisted referrer or geo source
        blacklist_reason = self._blacklist_match(inputs)
        if blacklist_reason:
            flags.add(FlagReason.BLACKLISTED_DOMAIN)
            details[FlagReason.BLACKLISTED_DOMAIN.value] = blacklist_reason
            applied.append(('blacklisted_domain', self.penalties['blacklisted_domain']))

        # Behavior
        behavior = assess_behavior(inputs.behavior)
        if behavior.suspicious:
            details['suspicious_behavior'] = '; '.join(behavior.reasons)
            applied.append(('suspicious_behavior', self.penalties['suspicious_behavior']))

        # Combined bot indicators
        indicators = self._bot_indicators(inputs)
        if len(indicators) >= self.bot_indicator_threshold:
            flags.add(FlagReason.BOT_CHECK_FLAG)
            details[FlagReason.BOT_CHECK_FLAG.value] = ', '.join(indicators)
            applied.append(('bot_indicators', self.penalties['bot_indicators']))

        # Duplicate device
        if (inputs.fingerprint is not None and inputs.fingerprint.device_id
                and inputs.duplicate_sightings):
            flags.add(FlagReason.DUPLICATE_FINGERPRINT)
            details[FlagReason.DUPLICATE_FINGERPRINT.value] = (
                f"Device seen on {inputs.duplicate_sightings} other link(s) in this project"
            )

        # Challenge gates
        if inputs.outcomes is not None:
            captcha_reason = self._captcha_failure(inputs.outcomes)
            if captcha_reason:
                flags.add(FlagReason.CAPTCHA_FAILURE)
                details[FlagReason.CAPTCHA_FAILURE.value] = captcha_reason
            if any(o.gate is Gate.TRAP_QUESTION and not o.passed for o in inputs.outcomes):
                flags.add(FlagReason.TRAP_QUESTION_FAILED)
                details[FlagReason.TRAP_QUESTION_FAILED.value] = "Incorrect attention-check answer"

        # Speed
        if include_speed:
            speed_reason = self._speed_violation(inputs)
            if speed_reason:
                flags.add(FlagReason.SPEED_VIOLATION)
                details[FlagReason.SPEED_VIOLATION.value] = speed_reason

        # Flat-lining
        if inputs.answers:
            flatline = self.flatline_detector.analyze(inputs.answers)
            if flatline.is_flatline:
                flags.add(FlagReason.FLAT_LINE_RESPONSE)
                details[FlagReason.FLAT_LINE_RESPONSE.value] = '; '.join(p.description for p in flatline.patterns)

            # Machine-written open text
            texts = [a.answer for a in inputs.answers if a.question_type == 'text' and isinstance(a.answer, str)]
            if texts:
                genai = self.genai_detector.analyze(texts)
                if genai.is_ai_generated:
                    details['ai_generated_text'] = (
                        f"{genai.risk_level.value} risk, confidence {genai.confidence}: "
                        + '; '.join(sorted({i.description for i in genai.indicators}))
                    )

        score = int(np.clip(100 - sum(amount for _, amount in applied), 0, 100))
        if score < config.quality_floor:
            flags.add(FlagReason.LOW_QUALITY_SCORE)
            details[FlagReason.LOW_QUALITY_SCORE.value] = f"Score {score} below floor {config.quality_floor}"

        return QualityRecord(
            data_quality_score=score,
            security_risk=self.risk_for(score),
            flags=frozenset(flags),
            penalties=tuple(applied),
            details=details,
        )

    def risk_for(self, score: int) -> SecurityRisk:
        if score < self.high_risk_below:
            return SecurityRisk.HIGH
        if score < self.medium_risk_below:
            return SecurityRisk.MEDIUM
        return SecurityRisk.LOW

    @staticmethod
    def _describe_vpn(vpn: VpnSignal) -> str:
        kinds = [name for name in ('vpn', 'proxy', 'tor') if getattr(vpn, name)]
        text = f"Anonymizing network detected ({', '.join(kinds)})"
        if vpn.service:
            text += f" via {vpn.service}"
        return text

    @staticmethod
    def _blacklist_match(inputs: QualityInputs) -> Optional[str]:
        blacklist = DomainBlacklist(inputs.config.blacklisted_domains)
        sources = [('referrer', inputs.referrer)]
        if inputs.geo is not None:
            sources.append(('geo hostname', inputs.geo.hostname))

        for label, value in sources:
            if not value:
                continue
            result = blacklist.check(value)
            if result.is_blacklisted:
                return f"{label} {result.domain}: {result.reason}"
        return None

    def _bot_indicators(self, inputs: QualityInputs) -> List[str]:
        indicators = []

        respondent_tz = inputs.respondent_timezone
        if respondent_tz is None and inputs.fingerprint is not None:
            respondent_tz = inputs.fingerprint.timezone
        if inputs.geo is not None and inputs.geo.timezone and respondent_tz:
            if inputs.geo.timezone != respondent_tz:
                indicators.append('geo mismatch')

        if inputs.config.enable_honeypot and inputs.honeypot is not None and inputs.honeypot.triggered:
            indicators.append('honeypot')

        automated = inputs.fingerprint is not None and inputs.fingerprint.automation_suspected
        user_agent = inputs.user_agent or (inputs.fingerprint.user_agent if inputs.fingerprint else None)
        if user_agent and parse_user_agent_details(user_agent)['is_bot']:
            automated = True
        if automated:
            indicators.append('automation')

        return indicators

    def _captcha_failure(self, outcomes: List[ChallengeOutcome]) -> Optional[str]:
        captcha = [o for o in outcomes if o.gate is Gate.CAPTCHA]
        passed = [o for o in captcha if o.passed]
        if not passed:
            return "CAPTCHA was never passed"
        attempts = max(o.attempt_count for o in captcha)
        if attempts > self.captcha_retry_budget:
            return f"CAPTCHA passed after {attempts} attempts"
        return None

    def _speed_violation(self, inputs: QualityInputs) -> Optional[str]:
        config = inputs.config
        completion = inputs.completion
        if not config.enable_speed_checks or completion is None:
            return None
        if completion.status is not CompletionStatus.COMPLETED:
            return None

        elapsed = completion.timestamp - inputs.session.start_time
        if elapsed < config.min_completion_time:
            return f"Completed in {elapsed:.0f}s, minimum is {config.min_completion_time:.0f}s"
        if config.max_completion_time and elapsed > config.max_completion_time:
            return f"Completed in {elapsed:.0f}s, maximum is {config.max_completion_time:.0f}s"

        if inputs.behavior is not None and len(inputs.behavior.click_pattern) >= self.min_uniform_clicks:
            intervals = np.diff(np.asarray(inputs.behavior.click_pattern, dtype=float))
            intervals = intervals[intervals > 0]
            if intervals.size >= self.min_uniform_clicks - 1:
                mean = float(np.mean(intervals))
                cv = float(stats.variation(intervals))
                if mean < self.uniform_click_mean_ms and cv < self.uniform_click_cv:
                    return f"Clicks every {mean:.0f}ms with near-constant rhythm (cv {cv:.2f})"
        return None
