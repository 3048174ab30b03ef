# ==========================================
# surveyguard/core/flatline.py
"""
Flat-line (straight-lining) detection over survey answers
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


class PatternType(str, Enum):
    IDENTICAL = "identical"
    SEQUENCE = "sequence"
    ALTERNATING = "alternating"
    EXTREME = "extreme"
    SIMILAR = "similar"


PATTERN_BASE_SCORES = {
    PatternType.IDENTICAL: 40,
    PatternType.SEQUENCE: 30,
    PatternType.ALTERNATING: 25,
    PatternType.EXTREME: 35,
    PatternType.SIMILAR: 20,
}

SCALE_TYPES = ('scale', 'rating')


@dataclass
class SurveyAnswer:
    question_id: str
    question_type: str
    answer: Any
    options: List[str] = field(default_factory=list)
    scale_min: Optional[float] = None
    scale_max: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SurveyAnswer':
        return cls(
            question_id=str(data.get('questionId', data.get('question_id', ''))),
            question_type=str(data.get('questionType', data.get('question_type', 'text'))).lower().replace('_', '-'),
            answer=data.get('answer'),
            options=list(data.get('options') or []),
            scale_min=data.get('scaleMin', data.get('scale_min')),
            scale_max=data.get('scaleMax', data.get('scale_max')),
        )


@dataclass
class FlatlinePattern:
    pattern_type: PatternType
    confidence: float
    description: str

    @property
    def score(self) -> int:
        return int(round(PATTERN_BASE_SCORES[self.pattern_type] * self.confidence / 100))


@dataclass
class FlatlineResult:
    is_flatline: bool
    severity: str
    score: int
    patterns: List[FlatlinePattern]


class FlatlineDetector:
    """Looks for degenerate answer patterns in a completed survey"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.min_run = config.get('min_run', 4)
        self.extreme_ratio = config.get('extreme_ratio', 0.8)
        self.identical_ratio = config.get('identical_ratio', 0.9)

    def analyze(self, answers: List[SurveyAnswer]) -> FlatlineResult:
        scale = [a for a in answers if a.question_type in SCALE_TYPES]
        multiple_choice = [a for a in answers if a.question_type == 'multiple-choice']
        text = [a for a in answers if a.question_type == 'text']

        values = self._numeric(scale)
        detections = [
            self._identical(values),
            self._sequence(values),
            self._alternating(values),
            self._extreme(scale, values),
            self._first_or_last_option(multiple_choice),
            self._text_patterns(text),
        ]
        patterns = [p for p in detections if p is not None]

        total = sum(p.score for p in patterns)
        return FlatlineResult(
            is_flatline=bool(patterns),
            severity=self._severity(total, len(patterns)),
            score=total,
            patterns=patterns,
        )

    @staticmethod
    def _numeric(answers: List[SurveyAnswer]) -> np.ndarray:
        values = []
        for a in answers:
            try:
                values.append(float(a.answer))
            except (TypeError, ValueError):
                continue
        return np.asarray(values, dtype=float)

    def _identical(self, values: np.ndarray) -> Optional[FlatlinePattern]:
        if values.size < 3:
            return None

        if np.ptp(values) == 0:
            return FlatlinePattern(
                PatternType.IDENTICAL,
                min(30 + values.size * 15, 100),
                f"Identical response {values[0]:g} given to {values.size} scale questions",
            )

        uniques, counts = np.unique(values, return_counts=True)
        top = int(np.argmax(counts))
        ratio = counts[top] / values.size
        if ratio >= self.identical_ratio and values.size >= 5:
            return FlatlinePattern(
                PatternType.IDENTICAL,
                min(30 + int(counts[top]) * 15, 100) * ratio,
                f"{round(ratio * 100)}% identical responses ({uniques[top]:g}) across {values.size} questions",
            )
        return None

    def _leading_run(self, values: np.ndarray, step: int) -> int:
        diffs = np.diff(values)
        run = 1
        for d in diffs:
            if d != step:
                break
            run += 1
        return run

    def _sequence(self, values: np.ndarray) -> Optional[FlatlinePattern]:
        if values.size < self.min_run:
            return None
        for step, label in ((1, 'Ascending'), (-1, 'Descending')):
            run = self._leading_run(values, step)
            if run >= self.min_run:
                ratio = run / values.size
                return FlatlinePattern(
                    PatternType.SEQUENCE,
                    min(40 + ratio * 40 + run * 5, 100),
                    f"{label} sequence pattern detected ({run}/{values.size} questions)",
                )
        return None

    def _alternating(self, values: np.ndarray) -> Optional[FlatlinePattern]:
        if values.size < self.min_run or values[0] == values[1]:
            return None
        run = 2
        for i in range(2, values.size):
            if values[i] != values[i % 2]:
                break
            run += 1
        if run < self.min_run:
            return None
        ratio = run / values.size
        return FlatlinePattern(
            PatternType.ALTERNATING,
            min(35 + ratio * 35 + run * 5, 100),
            f"Alternating pattern detected between {values[0]:g} and {values[1]:g} ({run}/{values.size} questions)",
        )

    def _extreme(self, answers: List[SurveyAnswer], values: np.ndarray) -> Optional[FlatlinePattern]:
        if values.size < 3:
            return None
        scale_min = next((a.scale_min for a in answers if a.scale_min is not None), 1)
        scale_max = next((a.scale_max for a in answers if a.scale_max is not None), 5)

        for bound, label in ((scale_min, 'minimum'), (scale_max, 'maximum')):
            ratio = float(np.mean(values == float(bound)))
            if ratio >= self.extreme_ratio:
                return FlatlinePattern(
                    PatternType.EXTREME,
                    ratio * 100,
                    f"{round(ratio * 100)}% of responses at scale {label}",
                )
        return None

    def _first_or_last_option(self, answers: List[SurveyAnswer]) -> Optional[FlatlinePattern]:
        answers = [a for a in answers if a.options]
        if len(answers) < 3:
            return None

        first = np.mean([str(a.answer) == str(a.options[0]) or str(a.answer) == 'A' for a in answers])
        if first >= self.extreme_ratio:
            return FlatlinePattern(
                PatternType.SIMILAR, first * 100,
                f"First option selected in {round(first * 100)}% of multiple choice questions",
            )

        last = np.mean([
            str(a.answer) == str(a.options[-1]) or str(a.answer) == chr(64 + len(a.options))
            for a in answers
        ])
        if last >= self.extreme_ratio:
            return FlatlinePattern(
                PatternType.SIMILAR, last * 100,
                f"Last option selected in {round(last * 100)}% of multiple choice questions",
            )
        return None

    def _text_patterns(self, answers: List[SurveyAnswer]) -> Optional[FlatlinePattern]:
        if len(answers) < 3:
            return None
        texts = [str(a.answer or '').strip().lower() for a in answers]
        non_empty = [t for t in texts if t]

        if len(set(texts)) == 1 and texts[0]:
            return FlatlinePattern(PatternType.SIMILAR, 95, f"Identical text response given to {len(texts)} questions")

        short = Counter(len(t) <= 3 for t in non_empty)[True]
        if non_empty and short >= 3 and short / len(non_empty) >= 0.8:
            ratio = short / len(non_empty)
            return FlatlinePattern(
                PatternType.SIMILAR, ratio * 80,
                f"{round(ratio * 100)}% of text responses are 3 characters or fewer",
            )
        return None

    @staticmethod
    def _severity(score: int, pattern_count: int) -> str:
        if pattern_count == 0:
            return 'low'
        adjusted = score + (pattern_count - 1) * 10
        if adjusted >= 80:
            return 'critical'
        if adjusted >= 60:
            return 'high'
        if adjusted >= 30:
            return 'medium'
        return 'low'
