"""
Attention-check (trap) questions
"""
import json
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class QuestionType(str, Enum):
    TEXT = "TEXT"
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    COUNTRY = "COUNTRY"


@dataclass
class TrapQuestion:
    id: str
    text: str
    question_type: QuestionType
    correct_answer: str
    options: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrapQuestion':
        if not isinstance(data, dict):
            raise ValueError(f"Trap question must be an object, got {type(data).__name__}")

        options = data.get('options') or []
        if isinstance(options, str):
            try:
                options = json.loads(options)
            except (json.JSONDecodeError, TypeError):
                logger.warning(f"Unparseable options for trap question {data.get('id')}")
                options = []
        if not isinstance(options, list):
            raise ValueError(f"Options for trap question {data.get('id')} must be a list")

        raw_type = str(data.get('questionType') or data.get('question_type') or 'TEXT').upper()
        try:
            question_type = QuestionType(raw_type)
        except ValueError:
            question_type = QuestionType.TEXT

        return cls(
            id=str(data.get('id', '')),
            text=data.get('text', ''),
            question_type=question_type,
            correct_answer=str(data.get('correctAnswer', data.get('correct_answer', ''))),
            options=[str(o) for o in options],
        )

    def public_view(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'text': self.text,
            'questionType': self.question_type.value,
            'options': list(self.options),
        }

    def is_correct(self, answer: Any) -> bool:
        if answer is None:
            return False
        if self.question_type is QuestionType.MULTIPLE_CHOICE:
            return str(answer) == self.correct_answer
        return str(answer).strip().lower() == self.correct_answer.strip().lower()


class TrapQuestionGate:
    """Picks one question from a project's bank and checks the answer"""

    def __init__(self, questions: List[TrapQuestion], rng: Optional[random.Random] = None):
        if not questions:
            raise ValueError("TrapQuestionGate needs at least one question")
        self.rng = rng or random.Random()
        self.question = self.rng.choice(questions)

    def check(self, answer: Any) -> bool:
        return self.question.is_correct(answer)
