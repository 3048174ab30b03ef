# ==========================================
# surveyguard/core/behavior_collector.py
"""
Passive behavioral signal collection for a respondent session
"""
import asyncio
import inspect
import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from surveyguard.core.signals import BehaviorSnapshot, MousePoint

logger = logging.getLogger(__name__)

ZERO_MOVEMENT = "Zero movement detected"
FAST_MOVEMENT = "Unusually fast mouse movement"
RAPID_CLICKING = "Rapid clicking detected"
REPEATED_SPACE = "Repeated space key detected"

SnapshotCallback = Callable[[BehaviorSnapshot], Any]


@dataclass
class BehaviorAssessment:
    suspicious: bool
    reasons: List[str]


class BehaviorCollector:
    """Maintains a BehaviorSnapshot from in-page events and emits it periodically.

    Handlers run synchronously on the event loop thread; there is no concurrent
    writer, so counters need no locking.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        config = config or {}
        self.clock = clock
        self.sleep = sleep

        self.curve_capacity = config.get('curve_capacity', 100)
        self.click_capacity = config.get('click_capacity', 50)
        self.sample_every = config.get('sample_every', 10)
        self.fast_movement_px = config.get('fast_movement_px', 50)
        self.rapid_click_ms = config.get('rapid_click_ms', 100)
        self.idle_threshold = config.get('idle_threshold', 5)
        self.tick_interval = config.get('tick_interval', 1.0)
        self.report_every_ticks = config.get('report_every_ticks', 5)

        self._mouse_curve = deque(maxlen=self.curve_capacity)
        self._click_pattern = deque(maxlen=self.click_capacity)
        self._patterns: Set[str] = set()
        self._counters = {
            'mouse': 0,
            'keyboard': 0,
            'copy_paste': 0,
            'scroll': 0,
            'focus': 0,
            'resize': 0,
            'idle': 0,
        }
        self._start_time = self.clock()
        self._last_activity = self._start_time
        self._last_click_ms: Optional[int] = None

        self._on_snapshot: Optional[SnapshotCallback] = None
        self._task: Optional[asyncio.Task] = None
        self._listening = False
        self._stopped = False
        self._last_snapshot: Optional[BehaviorSnapshot] = None
        self._callbacks: Set[asyncio.Task] = set()

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def last_snapshot(self) -> Optional[BehaviorSnapshot]:
        return self._last_snapshot

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _event_ms(self, timestamp: Optional[float]) -> int:
        """Client event time in ms when supplied, otherwise the local clock"""
        if timestamp is None:
            return self._now_ms()
        return int(timestamp)

    def _touch(self):
        self._last_activity = self.clock()

    # Event handlers

    def on_mouse_move(self, x: float, y: float, movement_x: float = 0.0, movement_y: float = 0.0,
                      timestamp: Optional[float] = None):
        if self._stopped:
            return
        self._counters['mouse'] += 1
        self._touch()

        if self._counters['mouse'] % self.sample_every == 0:
            self._mouse_curve.append(MousePoint(x=x, y=y, timestamp=self._event_ms(timestamp)))

        if movement_x == 0 and movement_y == 0:
            self._patterns.add(ZERO_MOVEMENT)
        elif math.hypot(movement_x, movement_y) > self.fast_movement_px:
            self._patterns.add(FAST_MOVEMENT)

    def on_key_down(self, key: str, repeat: bool = False):
        if self._stopped:
            return
        self._counters['keyboard'] += 1
        self._touch()
        if repeat and key == ' ':
            self._patterns.add(REPEATED_SPACE)

    def on_click(self, timestamp: Optional[float] = None):
        if self._stopped:
            return
        now_ms = self._event_ms(timestamp)
        if self._last_click_ms is not None and now_ms - self._last_click_ms < self.rapid_click_ms:
            self._patterns.add(RAPID_CLICKING)
        self._last_click_ms = now_ms
        self._click_pattern.append(now_ms)
        self._touch()

    def on_scroll(self):
        if self._stopped:
            return
        self._counters['scroll'] += 1
        self._touch()

    def on_focus(self):
        if self._stopped:
            return
        self._counters['focus'] += 1

    def on_resize(self):
        if self._stopped:
            return
        self._counters['resize'] += 1

    def on_copy_paste(self):
        if self._stopped:
            return
        self._counters['copy_paste'] += 1
        self._touch()

    def handle_event(self, event: Dict[str, Any]) -> bool:
        """Dispatch a browser-shaped event dict; returns False for unknown types"""
        event_type = (event.get('type') or '').lower()
        timestamp = _timestamp(event)

        if event_type == 'mousemove':
            self.on_mouse_move(
                float(event.get('x', event.get('clientX', 0)) or 0),
                float(event.get('y', event.get('clientY', 0)) or 0),
                float(event.get('movementX', 0) or 0),
                float(event.get('movementY', 0) or 0),
                timestamp,
            )
        elif event_type == 'keydown':
            self.on_key_down(str(event.get('key', '')), bool(event.get('repeat', False)))
        elif event_type == 'click':
            self.on_click(timestamp)
        elif event_type in ('scroll', 'wheel'):
            self.on_scroll()
        elif event_type == 'focus':
            self.on_focus()
        elif event_type == 'resize':
            self.on_resize()
        elif event_type in ('copy', 'paste', 'cut'):
            self.on_copy_paste()
        else:
            return False
        return True

    # Snapshots

    def snapshot(self) -> BehaviorSnapshot:
        now = self.clock()
        elapsed = max(now - self._start_time, 0.0)
        activity = self._counters['mouse'] + self._counters['keyboard']
        rate = activity / elapsed if elapsed > 0 else 0.0

        snapshot = BehaviorSnapshot(
            mouse_movements=self._counters['mouse'],
            keyboard_events=self._counters['keyboard'],
            click_pattern=tuple(self._click_pattern),
            mouse_curve=tuple(self._mouse_curve),
            idle_time_seconds=self._counters['idle'],
            copy_paste_events=self._counters['copy_paste'],
            scroll_events=self._counters['scroll'],
            focus_events=self._counters['focus'],
            resize_events=self._counters['resize'],
            suspicious_patterns=frozenset(self._patterns),
            total_time_ms=int(elapsed * 1000),
            activity_rate=rate,
        )
        self._last_snapshot = snapshot
        return snapshot

    def _emit(self):
        snapshot = self.snapshot()
        if self._on_snapshot is None:
            return snapshot
        try:
            result = self._on_snapshot(snapshot)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._callbacks.add(task)
                task.add_done_callback(self._callback_done)
        except Exception as e:
            logger.error(f"Behavior snapshot callback error: {e}")
        return snapshot

    def _callback_done(self, task: asyncio.Task):
        self._callbacks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Behavior snapshot callback error: {task.exception()}")

    # Lifecycle

    async def start(self, on_snapshot: Optional[SnapshotCallback] = None):
        """Begin observation, emit an initial snapshot and schedule the periodic tick"""
        if self._listening or self._stopped:
            return
        self._on_snapshot = on_snapshot
        self._start_time = self.clock()
        self._last_activity = self._start_time
        self._listening = True
        self._emit()
        self._task = asyncio.ensure_future(self._tick_loop())

    async def _tick_loop(self):
        ticks = 0
        while self._listening:
            await self.sleep(self.tick_interval)
            if not self._listening:
                break
            ticks += 1
            if self.clock() - self._last_activity >= self.idle_threshold:
                self._counters['idle'] += 1
            if ticks % self.report_every_ticks == 0:
                self._emit()

    async def stop(self) -> BehaviorSnapshot:
        """Stop listening and deliver the final, authoritative snapshot"""
        if self._stopped:
            return self._last_snapshot or self.snapshot()
        self._listening = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        final = self._emit()
        self._stopped = True
        return final


def assess_behavior(snapshot: Optional[BehaviorSnapshot],
                    max_copy_paste: int = 5,
                    max_activity_rate: float = 40.0) -> BehaviorAssessment:
    """Decide whether a snapshot looks like a disengaged or scripted respondent"""
    if snapshot is None:
        return BehaviorAssessment(suspicious=False, reasons=[])

    reasons = []
    if len(snapshot.suspicious_patterns) >= 2:
        reasons.append(f"{len(snapshot.suspicious_patterns)} suspicious interaction patterns")
    if snapshot.copy_paste_events > max_copy_paste:
        reasons.append(f"{snapshot.copy_paste_events} copy/paste events")
    if snapshot.activity_rate > max_activity_rate:
        reasons.append(f"activity rate {snapshot.activity_rate:.1f}/s")

    return BehaviorAssessment(suspicious=bool(reasons), reasons=reasons)


def _timestamp(event: Dict[str, Any]) -> Optional[float]:
    value = event.get('timestamp', event.get('timeStamp'))
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)
