# ==========================================
# surveyguard/core/captcha.py
"""
CAPTCHA generation, verification and attempt tracking
"""
import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from surveyguard.core.signals import Difficulty

logger = logging.getLogger(__name__)

HOLD_DURATION_MS = 3000
HOLD_POLL_INTERVAL = 0.1
HOLD_TOKEN = 'hold-complete'
MAX_CONSECUTIVE_FAILURES = 3

DRAG_SETS = (
    ['5', '2', '9', '1', '7'],
    ['dog', 'cat', 'bird', 'fish', 'ant'],
)


class CaptchaKind(str, Enum):
    MATH = "math"
    DRAG = "drag"
    HOLD = "hold"


@dataclass
class CaptchaChallenge:
    kind: CaptchaKind
    prompt: str
    answer: str
    items: List[str] = field(default_factory=list)

    def public_view(self) -> Dict[str, Any]:
        """Challenge as shown to the respondent, without the answer"""
        view = {'kind': self.kind.value, 'prompt': self.prompt}
        if self.items:
            view['items'] = list(self.items)
        if self.kind is CaptchaKind.HOLD:
            view['holdDurationMs'] = HOLD_DURATION_MS
        return view


class CaptchaGenerator:
    """Builds challenges for a configured difficulty"""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def generate(self, difficulty: Difficulty) -> CaptchaChallenge:
        if difficulty is Difficulty.HARD:
            return CaptchaChallenge(
                kind=CaptchaKind.HOLD,
                prompt=f"Press and hold the button for {HOLD_DURATION_MS // 1000} seconds",
                answer=HOLD_TOKEN,
            )
        if difficulty is Difficulty.MEDIUM:
            if self.rng.random() < 0.5:
                return self._math(self.rng.choice(['+', '-', '*']))
            return self._drag()
        return self._addition()

    def _addition(self) -> CaptchaChallenge:
        a = self.rng.randint(0, 9)
        b = self.rng.randint(0, 9)
        return CaptchaChallenge(kind=CaptchaKind.MATH, prompt=f"What is {a} + {b}?", answer=str(a + b))

    def _math(self, operation: str) -> CaptchaChallenge:
        if operation == '+':
            a, b = self.rng.randint(0, 19), self.rng.randint(0, 19)
            result = a + b
        elif operation == '-':
            a = self.rng.randint(10, 29)
            b = self.rng.randint(0, a - 1)
            result = a - b
        else:
            a, b = self.rng.randint(0, 9), self.rng.randint(0, 9)
            result = a * b
        symbol = '×' if operation == '*' else operation
        return CaptchaChallenge(kind=CaptchaKind.MATH, prompt=f"What is {a} {symbol} {b}?", answer=str(result))

    def _drag(self) -> CaptchaChallenge:
        items = list(self.rng.choice(DRAG_SETS))
        target = ''.join(sorted(items))
        shuffled = items[:]
        self.rng.shuffle(shuffled)
        if ''.join(shuffled) == target:
            shuffled.reverse()
        return CaptchaChallenge(
            kind=CaptchaKind.DRAG,
            prompt="Drag the items into ascending order",
            answer=target,
            items=shuffled,
        )


def verify_answer(challenge: CaptchaChallenge, submitted: Any) -> bool:
    """Exact-match check against the precomputed answer"""
    if submitted is None:
        return False

    if challenge.kind is CaptchaKind.HOLD:
        if isinstance(submitted, bool):
            return False
        if isinstance(submitted, (int, float)):
            return submitted >= HOLD_DURATION_MS
        return str(submitted).strip() == HOLD_TOKEN

    if challenge.kind is CaptchaKind.DRAG and isinstance(submitted, (list, tuple)):
        submitted = ''.join(str(item) for item in submitted)

    return str(submitted).strip() == challenge.answer


class HoldTracker:
    """Tracks a continuous press for hold-to-confirm challenges.

    A polling task samples the elapsed hold time every 100ms; releasing early
    cancels it and resets progress.
    """

    def __init__(self, on_complete: Optional[Callable[[], Any]] = None,
                 duration_ms: int = HOLD_DURATION_MS,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.on_complete = on_complete
        self.duration_ms = duration_ms
        self.clock = clock
        self.sleep = sleep
        self.progress = 0.0
        self.completed = False
        self._pressed_at: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def press(self):
        if self.completed or self.active:
            return
        self._pressed_at = self.clock()
        self.progress = 0.0
        self._task = asyncio.ensure_future(self._poll())

    async def _poll(self):
        while True:
            await self.sleep(HOLD_POLL_INTERVAL)
            held_ms = (self.clock() - self._pressed_at) * 1000
            self.progress = min(held_ms / self.duration_ms, 1.0)
            if held_ms >= self.duration_ms:
                self.completed = True
                self._task = None
                if self.on_complete:
                    self.on_complete()
                return

    def release(self) -> bool:
        """Stop holding; returns whether the hold reached the required duration"""
        self.cancel()
        if not self.completed:
            self.progress = 0.0
        self._pressed_at = None
        return self.completed

    def cancel(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None

    @property
    def answer(self) -> Optional[str]:
        return HOLD_TOKEN if self.completed else None


@dataclass
class CaptchaAttempt:
    passed: bool
    attempts: int
    regenerated: bool
    challenge: CaptchaChallenge


class CaptchaGate:
    """Holds the current challenge and the attempt budget for one session"""

    def __init__(self, difficulty: Difficulty, generator: Optional[CaptchaGenerator] = None,
                 max_consecutive_failures: int = MAX_CONSECUTIVE_FAILURES):
        self.difficulty = difficulty
        self.generator = generator or CaptchaGenerator()
        self.max_consecutive_failures = max_consecutive_failures
        self.total_attempts = 0
        self.consecutive_failures = 0
        self.regenerations = 0
        self.challenge = self.generator.generate(difficulty)

    def reset(self):
        self.total_attempts = 0
        self.consecutive_failures = 0
        self.challenge = self.generator.generate(self.difficulty)

    def submit(self, answer: Any) -> CaptchaAttempt:
        self.total_attempts += 1
        passed = verify_answer(self.challenge, answer)

        regenerated = False
        if passed:
            self.consecutive_failures = 0
        else:
            self.consecutive_failures += 1
            if self.consecutive_failures >= self.max_consecutive_failures:
                logger.info(f"CAPTCHA failed {self.consecutive_failures} times, issuing a new challenge")
                self.challenge = self.generator.generate(self.difficulty)
                self.consecutive_failures = 0
                self.regenerations += 1
                regenerated = True

        return CaptchaAttempt(passed=passed, attempts=self.total_attempts,
                              regenerated=regenerated, challenge=self.challenge)
