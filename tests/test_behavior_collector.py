"""
Tests for the behavioral signal collector
"""
import asyncio

import pytest

from surveyguard.core.behavior_collector import (
    BehaviorCollector, FAST_MOVEMENT, RAPID_CLICKING, REPEATED_SPACE, ZERO_MOVEMENT,
    assess_behavior,
)


@pytest.fixture
def collector(clock):
    return BehaviorCollector(clock=clock, sleep=clock.sleep)


class TestDetectionRules:

    def test_zero_movement_tagged(self, collector):
        collector.on_mouse_move(10, 10, 0, 0)
        assert ZERO_MOVEMENT in collector.snapshot().suspicious_patterns

    def test_fast_movement_tagged(self, collector):
        collector.on_mouse_move(10, 10, 60, 0)
        patterns = collector.snapshot().suspicious_patterns
        assert FAST_MOVEMENT in patterns
        assert ZERO_MOVEMENT not in patterns

    def test_normal_movement_not_tagged(self, collector):
        collector.on_mouse_move(10, 10, 3, 4)
        assert collector.snapshot().suspicious_patterns == frozenset()

    def test_rapid_clicks_tagged(self, collector, clock):
        collector.on_click()
        clock.advance(0.05)
        collector.on_click()
        assert RAPID_CLICKING in collector.snapshot().suspicious_patterns

    def test_spaced_clicks_not_tagged(self, collector, clock):
        collector.on_click()
        clock.advance(0.5)
        collector.on_click()
        snapshot = collector.snapshot()
        assert RAPID_CLICKING not in snapshot.suspicious_patterns
        assert len(snapshot.click_pattern) == 2

    def test_batched_clicks_use_client_timestamps(self, collector):
        collector.handle_event({'type': 'click', 'timestamp': 1000})
        collector.handle_event({'type': 'click', 'timestamp': 4000})
        snapshot = collector.snapshot()
        assert RAPID_CLICKING not in snapshot.suspicious_patterns
        assert snapshot.click_pattern == (1000, 4000)

    def test_client_timestamp_on_sampled_movement(self, collector):
        for i in range(10):
            collector.handle_event({'type': 'mousemove', 'x': i, 'y': i, 'movementX': 1,
                                    'movementY': 1, 'timestamp': 500 + i})
        assert collector.snapshot().mouse_curve[0].timestamp == 509

    def test_missing_timestamp_falls_back_to_clock(self, collector, clock):
        collector.handle_event({'type': 'click', 'timestamp': 'soon'})
        assert collector.snapshot().click_pattern == (int(clock() * 1000),)

    def test_repeated_space_tagged(self, collector):
        collector.on_key_down(' ', repeat=True)
        collector.on_key_down('a', repeat=True)
        assert collector.snapshot().suspicious_patterns == frozenset({REPEATED_SPACE})

    def test_handle_event_dispatch(self, collector):
        assert collector.handle_event({'type': 'mousemove', 'x': 1, 'y': 2, 'movementX': 1, 'movementY': 1})
        assert collector.handle_event({'type': 'keydown', 'key': 'a'})
        assert collector.handle_event({'type': 'paste'})
        assert collector.handle_event({'type': 'scroll'})
        assert not collector.handle_event({'type': 'teleport'})

        snapshot = collector.snapshot()
        assert snapshot.mouse_movements == 1
        assert snapshot.keyboard_events == 1
        assert snapshot.copy_paste_events == 1
        assert snapshot.scroll_events == 1


class TestBuffers:

    def test_curve_buffer_keeps_most_recent_samples(self, collector):
        for i in range(1, 2001):
            collector.on_mouse_move(i, i, 1, 1)

        curve = collector.snapshot().mouse_curve
        assert len(curve) == 100
        assert curve[0].x == 1010
        assert curve[-1].x == 2000

    def test_only_every_tenth_move_sampled(self, collector):
        for i in range(1, 26):
            collector.on_mouse_move(i, i, 1, 1)
        curve = collector.snapshot().mouse_curve
        assert [p.x for p in curve] == [10, 20]

    def test_click_history_capped(self, collector, clock):
        for _ in range(80):
            clock.advance(1)
            collector.on_click()
        clicks = collector.snapshot().click_pattern
        assert len(clicks) == 50
        assert clicks[-1] == int(clock() * 1000)


class TestSnapshots:

    def test_activity_rate(self, collector, clock):
        for _ in range(10):
            collector.on_mouse_move(1, 1, 1, 1)
            collector.on_key_down('a')
        clock.advance(10)
        snapshot = collector.snapshot()
        assert snapshot.activity_rate == pytest.approx(2.0)
        assert snapshot.total_time_ms == 10000

    def test_counters_are_monotonic(self, collector, clock):
        collector.on_scroll()
        first = collector.snapshot()
        clock.advance(1)
        collector.on_scroll()
        collector.on_focus()
        second = collector.snapshot()
        assert second.scroll_events > first.scroll_events
        assert second.focus_events >= first.focus_events
        assert second.total_time_ms >= first.total_time_ms

    def test_to_dict_uses_wire_names(self, collector):
        collector.on_resize()
        data = collector.snapshot().to_dict()
        assert data['resizeEvents'] == 1
        assert data['suspiciousPatterns'] == []


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_emits_initial_snapshot(self, collector):
        snapshots = []
        await collector.start(snapshots.append)
        assert len(snapshots) == 1
        await collector.stop()

    @pytest.mark.asyncio
    async def test_periodic_and_final_snapshots(self, collector):
        snapshots = []
        await collector.start(snapshots.append)
        for _ in range(12):
            await asyncio.sleep(0)
        periodic = len(snapshots)
        assert periodic >= 2

        collector.on_key_down('x')
        final = await collector.stop()
        assert len(snapshots) == periodic + 1
        assert snapshots[-1] is final
        assert final.keyboard_events == 1

    @pytest.mark.asyncio
    async def test_idle_time_accumulates(self, collector):
        await collector.start()
        for _ in range(12):
            await asyncio.sleep(0)
        final = await collector.stop()
        assert final.idle_time_seconds > 0

    @pytest.mark.asyncio
    async def test_stop_cancels_timer_and_ignores_later_events(self, collector):
        await collector.start()
        await collector.stop()
        assert not collector.listening

        pending = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        assert pending == []

        collector.on_mouse_move(1, 1, 0, 0)
        assert collector.snapshot().mouse_movements == 0

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, collector):
        snapshots = []
        await collector.start(snapshots.append)
        await collector.stop()
        await collector.stop()
        assert len(snapshots) == 2

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_collection(self, collector):
        def explode(snapshot):
            raise ValueError("consumer bug")

        await collector.start(explode)
        collector.on_click()
        final = await collector.stop()
        assert len(final.click_pattern) == 1

    @pytest.mark.asyncio
    async def test_failing_async_callback_is_logged(self, collector, caplog):
        async def explode(snapshot):
            raise ValueError("consumer bug")

        await collector.start(explode)
        await collector.stop()
        for _ in range(3):
            await asyncio.sleep(0)

        assert "consumer bug" in caplog.text
        assert not collector._callbacks


class TestAssessment:

    def test_clean_snapshot(self, collector):
        collector.on_mouse_move(1, 1, 2, 2)
        assert not assess_behavior(collector.snapshot()).suspicious

    def test_multiple_tags_suspicious(self, collector):
        collector.on_mouse_move(1, 1, 0, 0)
        collector.on_key_down(' ', repeat=True)
        result = assess_behavior(collector.snapshot())
        assert result.suspicious
        assert result.reasons

    def test_copy_paste_heavy_suspicious(self, collector):
        for _ in range(6):
            collector.on_copy_paste()
        assert assess_behavior(collector.snapshot()).suspicious

    def test_missing_snapshot_not_suspicious(self):
        assert not assess_behavior(None).suspicious
