"""
auditorium.client.watch — Watch-Time Tracker
=============================================

Reports playback progress for one viewer and surfaces the milestones the
server says were newly crossed.

States: ``uninitialized → active → ended``.

* The session starts on the first report while the player is playing.
* Progress goes out on each whole-minute boundary of the position and on a
  periodic timer, throttled to one report per ``interval`` seconds.
* :meth:`WatchTimeTracker.end` closes the session; :meth:`signal_unload`
  does the same fire-and-forget, for page unload.
* Milestone decisions are the server's.  Failed reports are logged and
  dropped; watch time is a soft signal.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import math
import time
from collections.abc import Awaitable, Callable
from typing import Any

from auditorium.client.writer import EngagementWriter
from auditorium.constants import WATCH_UPDATE_INTERVAL_SECONDS
from auditorium.errors import AuditoriumError

logger = logging.getLogger(__name__)


class TrackerState(enum.StrEnum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    ENDED = "ended"


class WatchTimeTracker:
    def __init__(
        self,
        writer: EngagementWriter,
        *,
        interval: float = WATCH_UPDATE_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_milestone: Callable[[int], None] | None = None,
    ) -> None:
        self.writer = writer
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._on_milestone = on_milestone
        self.state = TrackerState.UNINITIALIZED
        self.session_id: str | None = None
        self.milestones: set[int] = set()
        self.position = 0.0
        self.duration = 0.0
        self._last_report: float | None = None
        self._last_minute: int | None = None
        self._timer: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

    # -------------------------------------------------------------------
    # Player callbacks
    # -------------------------------------------------------------------
    async def on_time_update(
        self, position: float, duration: float, *, playing: bool = True,
    ) -> list[int]:
        """Feed the player's current time; returns milestones newly hit."""
        if self.state is TrackerState.ENDED:
            return []
        self.position = max(position, 0.0)
        self.duration = max(duration, 0.0)

        if self.state is TrackerState.UNINITIALIZED:
            if not playing:
                return []
            await self.start()
            if self.state is not TrackerState.ACTIVE:
                return []

        minute = int(self.position // 60)
        if minute != self._last_minute:
            self._last_minute = minute
            return await self.report()
        return []

    async def start(self, *, run_timer: bool = True) -> None:
        if self.state is not TrackerState.UNINITIALIZED:
            return
        try:
            session = await self.writer.start_watch_session()
        except AuditoriumError as exc:
            logger.warning("Could not start watch session: %s", exc.detail)
            return
        self.session_id = session["session_id"]
        self.milestones = set(session.get("milestones_hit") or ())
        self.state = TrackerState.ACTIVE
        logger.debug("Watch session %s active", self.session_id)
        if run_timer and self.interval > 0:
            self._timer = asyncio.get_running_loop().create_task(
                self._periodic(), name="watch-progress",
            )

    async def report(self, *, force: bool = False) -> list[int]:
        """Send progress unless throttled; returns milestones newly hit."""
        if self.state is not TrackerState.ACTIVE or self.session_id is None:
            return []
        if self.duration <= 0:
            return []
        now = self._clock()
        if not force and self._last_report is not None and now - self._last_report < self.interval:
            return []
        self._last_report = now

        try:
            fresh = await self.writer.update_watch_progress(
                self.session_id, math.floor(self.position), math.floor(self.duration),
            )
        except AuditoriumError as exc:
            logger.warning("Watch progress report failed: %s", exc.detail)
            return []

        fresh = [m for m in fresh if m not in self.milestones]
        self.milestones.update(fresh)
        if self._on_milestone is not None:
            for milestone in fresh:
                self._on_milestone(milestone)
        return fresh

    async def _periodic(self) -> None:
        while self.state is TrackerState.ACTIVE:
            await self._sleep(self.interval)
            if self.state is not TrackerState.ACTIVE:
                return
            try:
                await self.report()
            except Exception:
                logger.exception("Periodic watch report error")

    # -------------------------------------------------------------------
    # Ending
    # -------------------------------------------------------------------
    def _finish(self) -> bool:
        """Move to ENDED; True if a session needs closing."""
        was_active = self.state is TrackerState.ACTIVE
        self.state = TrackerState.ENDED
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return was_active and self.session_id is not None

    async def end(self) -> None:
        if not self._finish():
            return
        try:
            await self.writer.end_watch_session(
                self.session_id, math.floor(self.position), math.floor(self.duration),
            )
        except AuditoriumError as exc:
            logger.warning("Could not end watch session %s: %s", self.session_id, exc.detail)

    def signal_unload(self) -> None:
        """Best-effort end that does not wait for the server."""
        if not self._finish():
            return
        task = asyncio.ensure_future(self.writer.end_watch_session(
            self.session_id, math.floor(self.position), math.floor(self.duration),
        ))
        self._background.add(task)
        task.add_done_callback(self._unload_done)

    def _unload_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Unload end of watch session failed: %s", task.exception())
