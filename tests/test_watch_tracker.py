"""
tests/test_watch_tracker.py — Client Watch-Time Tracker
========================================================

Throttling, minute-boundary reports, milestone callbacks and session
ending, against an AsyncMock writer with a fake clock; plus one run
against the real services through ServiceWriter.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

from auditorium.client.watch import TrackerState, WatchTimeTracker
from auditorium.client.writer import ServiceWriter
from auditorium.errors import NotFoundError, WriteFailedError


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.run(coro)


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _writer(milestones_hit=(), progress=()) -> MagicMock:
    writer = MagicMock()
    writer.start_watch_session = AsyncMock(
        return_value={"session_id": "s1", "milestones_hit": list(milestones_hit)},
    )
    writer.update_watch_progress = AsyncMock(side_effect=list(progress) or None, return_value=[])
    writer.end_watch_session = AsyncMock(return_value={"ended": True})
    return writer


class TestStart:
    def test_paused_player_does_not_open_a_session(self):
        writer = _writer()
        tracker = WatchTimeTracker(writer, clock=FakeClock())

        run_async(tracker.on_time_update(0, 600, playing=False))
        assert tracker.state is TrackerState.UNINITIALIZED
        writer.start_watch_session.assert_not_awaited()

    def test_start_failure_stays_uninitialized(self):
        writer = _writer()
        writer.start_watch_session = AsyncMock(side_effect=NotFoundError("no registration"))
        tracker = WatchTimeTracker(writer, clock=FakeClock())

        run_async(tracker.on_time_update(5, 600))
        assert tracker.state is TrackerState.UNINITIALIZED
        writer.update_watch_progress.assert_not_awaited()


class TestReporting:
    def test_minute_boundaries_and_throttle(self):
        clock = FakeClock()
        writer = _writer()
        tracker = WatchTimeTracker(writer, interval=30, clock=clock)

        async def _run():
            await tracker.on_time_update(10, 600)   # minute 0: first report
            await tracker.on_time_update(20, 600)   # same minute
            clock.now = 10
            await tracker.on_time_update(65, 600)   # minute 1, throttled
            clock.now = 45
            await tracker.on_time_update(125, 600)  # minute 2, past the interval
            await tracker.end()

        run_async(_run())
        calls = [c.args for c in writer.update_watch_progress.await_args_list]
        assert calls == [("s1", 10, 600), ("s1", 125, 600)]

    def test_unknown_duration_is_not_reported(self):
        writer = _writer()
        tracker = WatchTimeTracker(writer, clock=FakeClock())

        async def _run():
            await tracker.start(run_timer=False)
            tracker.position, tracker.duration = 30.0, 0.0
            return await tracker.report(force=True)

        assert run_async(_run()) == []
        writer.update_watch_progress.assert_not_awaited()

    def test_known_milestones_are_filtered(self):
        hit: list[int] = []
        writer = _writer(milestones_hit=[25], progress=[[25, 50]])
        tracker = WatchTimeTracker(writer, clock=FakeClock(), on_milestone=hit.append)

        async def _run():
            await tracker.start(run_timer=False)
            tracker.position, tracker.duration = 300.0, 600.0
            return await tracker.report(force=True)

        assert run_async(_run()) == [50]
        assert hit == [50]
        assert tracker.milestones == {25, 50}

    def test_report_failure_is_swallowed(self):
        writer = _writer()
        writer.update_watch_progress = AsyncMock(side_effect=WriteFailedError("offline"))
        tracker = WatchTimeTracker(writer, clock=FakeClock())

        async def _run():
            await tracker.start(run_timer=False)
            tracker.position, tracker.duration = 300.0, 600.0
            return await tracker.report(force=True)

        assert run_async(_run()) == []
        assert tracker.state is TrackerState.ACTIVE

    def test_periodic_timer_reports(self):
        clock = FakeClock()
        writer = _writer()

        async def _run():
            gate: asyncio.Queue[None] = asyncio.Queue()

            async def _sleep(_delay):
                clock.now += 30
                await gate.get()

            tracker = WatchTimeTracker(writer, interval=30, clock=clock, sleep=_sleep)
            await tracker.on_time_update(10, 600)
            tracker.position = 40
            gate.put_nowait(None)
            for _ in range(10):
                await asyncio.sleep(0)
            await tracker.end()

        run_async(_run())
        assert writer.update_watch_progress.await_count == 2


class TestEnding:
    def test_end_is_idempotent(self):
        writer = _writer()
        tracker = WatchTimeTracker(writer, clock=FakeClock())

        async def _run():
            await tracker.on_time_update(42.9, 600)
            await tracker.end()
            await tracker.end()
            return await tracker.on_time_update(100, 600)

        assert run_async(_run()) == []
        assert tracker.state is TrackerState.ENDED
        writer.end_watch_session.assert_awaited_once_with("s1", 42, 600)

    def test_end_before_start_sends_nothing(self):
        writer = _writer()
        tracker = WatchTimeTracker(writer, clock=FakeClock())
        run_async(tracker.end())
        writer.end_watch_session.assert_not_awaited()

    def test_signal_unload_fires_and_forgets(self):
        writer = _writer()
        tracker = WatchTimeTracker(writer, clock=FakeClock())

        async def _run():
            await tracker.on_time_update(90, 600)
            tracker.signal_unload()
            for _ in range(5):
                await asyncio.sleep(0)

        run_async(_run())
        assert tracker.state is TrackerState.ENDED
        writer.end_watch_session.assert_awaited_once_with("s1", 90, 600)


class TestAgainstServices:
    def test_milestones_from_the_server(self, db_engine, feed, weights, webinar_id, registration_id):
        writer = ServiceWriter(
            db_engine, feed, weights, webinar_id=webinar_id, registration_id=registration_id,
        )
        hit: list[int] = []
        tracker = WatchTimeTracker(writer, clock=FakeClock(), on_milestone=hit.append)

        async def _run():
            await tracker.start(run_timer=False)
            tracker.position, tracker.duration = 10.0, 40.0
            first = await tracker.report(force=True)
            tracker.position = 30.0
            second = await tracker.report(force=True)
            await tracker.end()
            return first, second

        first, second = run_async(_run())
        assert first == [25]
        assert second == [50, 75]
        assert hit == [25, 50, 75]
