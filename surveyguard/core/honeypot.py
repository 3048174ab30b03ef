"""
Honeypot field evaluation for automated form filling
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


class HoneypotKind(str, Enum):
    TEXT = "text"
    CHECKBOX = "checkbox"
    SELECT = "select"
    HIDDEN = "hidden"


FIELD_SCORES = {
    HoneypotKind.TEXT: 25,
    HoneypotKind.CHECKBOX: 30,
    HoneypotKind.SELECT: 20,
    HoneypotKind.HIDDEN: 40,
}


@dataclass
class HoneypotField:
    name: str
    kind: HoneypotKind
    expected_value: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HoneypotField':
        return cls(
            name=data['name'],
            kind=HoneypotKind(str(data.get('kind', data.get('type', 'text'))).lower()),
            expected_value=data.get('expectedValue', data.get('expected_value')),
        )


@dataclass
class HoneypotResult:
    triggered: bool
    score: int
    level: str
    violations: List[str] = field(default_factory=list)
    suspicious_timing: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'triggered': self.triggered,
            'score': self.score,
            'level': self.level,
            'violations': list(self.violations),
            'suspiciousTiming': self.suspicious_timing,
        }


class HoneypotService:
    """Scores hidden-field tampering and implausible submission timing"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.min_submission_ms = config.get('min_submission_ms', 5000)
        self.too_fast_score = config.get('too_fast_score', 30)
        self.min_timing_variance = config.get('min_timing_variance', 100)

    def evaluate(self, fields: List[HoneypotField], values: Dict[str, Any],
                 submission_time_ms: Optional[float] = None,
                 interaction_times: Optional[List[float]] = None) -> HoneypotResult:
        score = 0
        violations = []

        for hp in fields:
            if hp.name not in values:
                continue
            value = values[hp.name]
            if self._tripped(hp, value):
                score += FIELD_SCORES[hp.kind]
                violations.append(f"{hp.kind.value} field '{hp.name}' was filled")

        if submission_time_ms is not None and submission_time_ms < self.min_submission_ms:
            score += self.too_fast_score
            violations.append(f"TOO_FAST: submitted after {int(submission_time_ms)}ms")

        suspicious_timing = False
        if interaction_times and len(interaction_times) >= 3:
            intervals = np.diff(np.asarray(interaction_times, dtype=float))
            if intervals.size >= 2 and float(np.var(intervals)) < self.min_timing_variance:
                suspicious_timing = True
                violations.append("Interaction timing is unnaturally regular")

        return HoneypotResult(
            triggered=bool(violations),
            score=score,
            level=self._level(score),
            violations=violations,
            suspicious_timing=suspicious_timing,
        )

    @staticmethod
    def _tripped(hp: HoneypotField, value: Any) -> bool:
        if hp.kind is HoneypotKind.CHECKBOX:
            return value is True or str(value).lower() in ('true', 'on', '1')
        if hp.kind is HoneypotKind.HIDDEN:
            return value != hp.expected_value
        return value not in (None, '')

    @staticmethod
    def _level(score: int) -> str:
        if score >= 80:
            return 'critical'
        if score >= 50:
            return 'high'
        if score >= 25:
            return 'medium'
        return 'low'
