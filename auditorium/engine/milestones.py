"""
auditorium.engine.milestones — Watch Progress Math
===================================================

Pure functions shared by the watch service (authoritative, server side) and
the reporting queries.  No I/O.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from auditorium.constants import WATCH_MILESTONES, percent


def percent_watched(position_seconds: float, duration_seconds: float) -> int:
    """``floor(position / duration * 100)``, clamped to 0..100.

    A non-positive duration means the media length is unknown: 0%.
    """
    if duration_seconds <= 0:
        return 0
    pct = int(max(position_seconds, 0) * 100 // duration_seconds)
    return min(pct, 100)


def newly_crossed(percentage: int, already_hit: Iterable[int]) -> list[int]:
    """Milestones reached at *percentage* that are not in *already_hit*.

    Jumping from 25% straight to 75% crosses 50% implicitly, so it is
    returned too.  Result is ascending.
    """
    hit = set(already_hit)
    return [m for m in WATCH_MILESTONES if percentage >= m and m not in hit]


# ---------------------------------------------------------------------------
# Watch-time summary for the reporting surface
# ---------------------------------------------------------------------------
class SessionLike(Protocol):
    registration_id: str
    last_position_seconds: int
    milestones_hit: list


@dataclass(slots=True)
class WatchSummary:
    session_count: int = 0
    unique_viewers: int = 0
    avg_watch_seconds: int = 0
    completion_rate: int = 0
    milestone_breakdown: dict[int, int] = field(
        default_factory=lambda: {m: 0 for m in WATCH_MILESTONES}
    )

    def to_dict(self) -> dict:
        return {
            "session_count": self.session_count,
            "unique_viewers": self.unique_viewers,
            "avg_watch_seconds": self.avg_watch_seconds,
            "completion_rate": self.completion_rate,
            "milestone_breakdown": {str(k): v for k, v in self.milestone_breakdown.items()},
        }


def summarize_sessions(sessions: Iterable[SessionLike]) -> WatchSummary:
    """Aggregate watch sessions per viewer.

    A viewer's milestones are the union over all of their sessions, so a
    viewer who reached 100% in one tab counts once in every breakdown row.
    Average watch time is total last positions over unique viewers.
    """
    summary = WatchSummary()
    per_viewer: dict[str, set[int]] = {}
    total_seconds = 0

    for s in sessions:
        summary.session_count += 1
        total_seconds += max(s.last_position_seconds or 0, 0)
        per_viewer.setdefault(s.registration_id, set()).update(s.milestones_hit or [])

    summary.unique_viewers = len(per_viewer)
    if not per_viewer:
        return summary

    for milestones in per_viewer.values():
        for m in milestones:
            if m in summary.milestone_breakdown:
                summary.milestone_breakdown[m] += 1

    summary.avg_watch_seconds = (total_seconds * 2 + summary.unique_viewers) // (
        2 * summary.unique_viewers
    )
    summary.completion_rate = percent(
        summary.milestone_breakdown[WATCH_MILESTONES[-1]], summary.unique_viewers
    )
    return summary
