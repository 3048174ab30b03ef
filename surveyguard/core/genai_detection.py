# ==========================================
# surveyguard/core/genai_detection.py
"""
Detection of machine-generated open-text survey answers
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Pattern, Tuple

import numpy as np

logger = logging.getLogger(__name__)

WORD_RE = re.compile(r'\b\w+\b')
SENTENCE_SPLIT_RE = re.compile(r'[.!?]+')


class IndicatorType(str, Enum):
    LINGUISTIC = "linguistic"
    STRUCTURAL = "structural"
    SEMANTIC = "semantic"
    STATISTICAL = "statistical"
    BEHAVIORAL = "behavioral"


class AiRiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


AI_PATTERNS: List[Tuple[Pattern, int, str]] = [
    (re.compile(r"\b(?:as an ai|i'm an ai|i am an artificial|as a language model|"
                r"i don't have personal|i cannot have opinions)\b", re.I),
     90, "Direct AI self-identification"),
    (re.compile(r'\b(?:furthermore|moreover|additionally|consequently|nevertheless|nonetheless)\b', re.I),
     15, "Overuse of formal transitional phrases"),
    (re.compile(r"\b(?:it's important to note|it's worth noting|it should be noted)\b", re.I),
     20, "AI-typical hedging phrases"),
    (re.compile(r'\b(?:various|numerous|multiple|several|diverse)\b', re.I),
     10, "Generic quantifier overuse"),
    (re.compile(r'\b(?:comprehensive|holistic|multifaceted|nuanced)\b', re.I),
     15, "AI-preferred descriptive terms"),
]

TEMPLATES = [
    'i appreciate your question',
    'thank you for asking',
    'this is an interesting question',
    'there are several factors to consider',
    'it depends on various factors',
    'in my opinion, i believe that',
    'i would say that',
]

FORMAL_WORDS = {'therefore', 'consequently', 'furthermore', 'moreover', 'additionally', 'nevertheless'}

GRAMMAR_ISSUES = [
    re.compile(r'\s{2,}'),
    re.compile(r'\.\s*\.'),
    re.compile(r'\s+,'),
    re.compile(r'[a-z]\.[A-Z]'),
    re.compile(r'\s+$'),
]


@dataclass
class AiIndicator:
    indicator_type: IndicatorType
    description: str
    score: int
    evidence: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.indicator_type.value,
            'description': self.description,
            'score': self.score,
            'evidence': self.evidence,
        }


@dataclass
class TextStats:
    word_count: int
    sentence_count: int
    sentence_spread: float
    formality: float
    vocabulary_diversity: float


@dataclass
class GenAIResult:
    is_ai_generated: bool
    confidence: int
    risk_level: AiRiskLevel
    indicators: List[AiIndicator]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'isAIGenerated': self.is_ai_generated,
            'confidence': self.confidence,
            'riskLevel': self.risk_level.value,
            'indicators': [i.to_dict() for i in self.indicators],
        }


def text_stats(text: str) -> TextStats:
    words = WORD_RE.findall(text.lower())
    sentences = [s for s in SENTENCE_SPLIT_RE.split(text) if s.strip()]
    lengths = np.asarray([len(WORD_RE.findall(s)) for s in sentences], dtype=float)
    formal = sum(1 for w in words if w in FORMAL_WORDS)

    return TextStats(
        word_count=len(words),
        sentence_count=len(sentences),
        sentence_spread=float(np.std(lengths)) if lengths.size else 0.0,
        formality=formal / len(words) * 100 if words else 0.0,
        vocabulary_diversity=len(set(words)) / len(words) if words else 0.0,
    )


def grammar_score(text: str) -> int:
    """100 minus 5 per mechanical writing slip"""
    score = 100
    for issue in GRAMMAR_ISSUES:
        score -= 5 * len(issue.findall(text))
    return max(score, 0)


class GenAIDetector:
    """Scores open-text answers for signs of language-model authorship.

    Each answer is checked on its own (phrasing, templates, formality,
    sentence uniformity, polish, vocabulary, length) and the set is checked
    as a whole for uniform style and phrases reused between answers.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.detection_threshold = config.get('detection_threshold', 60)
        self.verbose_words = config.get('verbose_words', 150)
        self.min_phrase_chars = config.get('min_phrase_chars', 10)

    def analyze(self, texts: List[str]) -> GenAIResult:
        texts = [t for t in (str(t or '') for t in texts) if t.strip()]
        indicators: List[AiIndicator] = []
        for text in texts:
            indicators.extend(self._response_indicators(text, text_stats(text)))
        indicators.extend(self._cross_response_indicators(texts))

        confidence = min(sum(i.score for i in indicators), 100)
        return GenAIResult(
            is_ai_generated=confidence >= self.detection_threshold,
            confidence=confidence,
            risk_level=self._risk_level(confidence, indicators),
            indicators=indicators,
        )

    def _response_indicators(self, text: str, stats: TextStats) -> List[AiIndicator]:
        indicators = []
        lowered = text.lower()

        for pattern, score, description in AI_PATTERNS:
            matches = pattern.findall(text)
            if matches:
                indicators.append(AiIndicator(IndicatorType.LINGUISTIC, description, score * len(matches),
                                              {'matches': matches}))

        for template in TEMPLATES:
            if template in lowered:
                indicators.append(AiIndicator(IndicatorType.STRUCTURAL, "Uses common AI response template", 25,
                                              {'template': template}))

        if stats.formality > 5:
            indicators.append(AiIndicator(IndicatorType.LINGUISTIC,
                                          "Unusually high formality for survey response",
                                          int(min(stats.formality * 2, 30)),
                                          {'formality': round(stats.formality, 2)}))

        if stats.sentence_spread < 2 and stats.sentence_count > 2:
            indicators.append(AiIndicator(IndicatorType.STRUCTURAL, "Unusually uniform sentence structure", 20,
                                          {'sentenceSpread': round(stats.sentence_spread, 2)}))

        polish = grammar_score(text)
        if polish > 95 and stats.word_count > 20:
            indicators.append(AiIndicator(IndicatorType.LINGUISTIC, "Suspiciously perfect grammar and punctuation",
                                          15, {'grammarScore': polish}))

        if stats.vocabulary_diversity < 0.5 and stats.word_count > 30:
            indicators.append(AiIndicator(IndicatorType.STATISTICAL, "Low vocabulary diversity", 25,
                                          {'vocabularyDiversity': round(stats.vocabulary_diversity, 2)}))

        if stats.word_count > self.verbose_words:
            indicators.append(AiIndicator(IndicatorType.BEHAVIORAL, "Unusually verbose response for survey context",
                                          15, {'wordCount': stats.word_count}))

        return indicators

    def _cross_response_indicators(self, texts: List[str]) -> List[AiIndicator]:
        if len(texts) < 2:
            return []
        indicators = []
        stats = [text_stats(t) for t in texts]

        formality = np.asarray([s.formality for s in stats])
        if len(texts) > 2 and float(np.var(formality)) < 1:
            indicators.append(AiIndicator(IndicatorType.STATISTICAL,
                                          "Suspiciously consistent formality across responses", 20,
                                          {'formalityVariance': round(float(np.var(formality)), 3)}))

        counts = np.asarray([s.word_count for s in stats], dtype=float)
        if len(texts) > 2 and float(np.var(counts)) < float(np.mean(counts)) * 0.1:
            indicators.append(AiIndicator(IndicatorType.BEHAVIORAL, "Unusually similar response lengths", 15,
                                          {'wordCounts': [int(c) for c in counts]}))

        repeated = self._repeated_phrases(texts)
        if repeated:
            indicators.append(AiIndicator(IndicatorType.SEMANTIC,
                                          "Identical phrases repeated across multiple responses",
                                          10 * len(repeated), {'phrases': repeated}))
        return indicators

    def _repeated_phrases(self, texts: List[str]) -> List[str]:
        """3 to 5 word phrases seen more than once across the answers"""
        seen = set()
        repeated: List[str] = []
        for text in texts:
            words = WORD_RE.findall(text.lower())
            for start in range(len(words) - 2):
                for length in range(3, min(5, len(words) - start) + 1):
                    phrase = ' '.join(words[start:start + length])
                    if len(phrase) <= self.min_phrase_chars:
                        continue
                    if phrase in seen:
                        if phrase not in repeated:
                            repeated.append(phrase)
                    else:
                        seen.add(phrase)
        return repeated

    @staticmethod
    def _risk_level(confidence: int, indicators: List[AiIndicator]) -> AiRiskLevel:
        if confidence >= 85 or any(i.score >= 50 for i in indicators):
            return AiRiskLevel.CRITICAL
        if confidence >= 70:
            return AiRiskLevel.HIGH
        if confidence >= 50:
            return AiRiskLevel.MEDIUM
        return AiRiskLevel.LOW
