"""
auditorium.engine.scoring — Lead-Score Aggregation
===================================================

Pure aggregation over the engagement ledger.  No DB I/O inside the engine:
the reporting service loads rows and hands them in.

Points are resolved once, when an event is logged (:func:`points_for`), and
stored as ``points_awarded``.  Everything here only *sums* stored points, so
a registrant's score is the same regardless of event arrival order and a
later weight-table change never rewrites history.

Pipeline:
  ledger rows → aggregate() → RegistrantScore per registrant
              → rank()      → leaderboard
              → distribution() / summarize() over all registrants
"""

from __future__ import annotations

import logging
import statistics
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from auditorium.constants import SCORE_RANGES, percent

logger = logging.getLogger(__name__)

__all__ = [
    "EngagementTotals",
    "LeaderboardEntry",
    "RegistrantScore",
    "ScoreBucket",
    "ScoreSummary",
    "aggregate",
    "distribution",
    "engagement_totals",
    "points_for",
    "rank",
    "summarize",
]


class LedgerRow(Protocol):
    registration_id: str
    kind: str
    points_awarded: int
    created_at: datetime


# ---------------------------------------------------------------------------
# Stage 0: point lookup (at event-creation time)
# ---------------------------------------------------------------------------
def points_for(kind: str, table: Mapping[str, int]) -> int:
    """Points for *kind* under *table*; kinds missing from the table score 0."""
    value = table.get(kind)
    if value is None:
        logger.debug("No weight configured for kind '%s' — awarding 0", kind)
        return 0
    return int(value)


# ---------------------------------------------------------------------------
# Stage 1: per-registrant totals
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class RegistrantScore:
    registration_id: str
    total_points: int = 0
    event_count: int = 0
    first_engaged_at: datetime | None = None


def aggregate(rows: Iterable[LedgerRow]) -> dict[str, RegistrantScore]:
    """Sum ``points_awarded`` per registrant and note their first event."""
    scores: dict[str, RegistrantScore] = {}
    for row in rows:
        score = scores.get(row.registration_id)
        if score is None:
            score = scores[row.registration_id] = RegistrantScore(row.registration_id)
        score.total_points += row.points_awarded
        score.event_count += 1
        if score.first_engaged_at is None or row.created_at < score.first_engaged_at:
            score.first_engaged_at = row.created_at
    return scores


# ---------------------------------------------------------------------------
# Stage 2: leaderboard
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    rank: int
    registration_id: str
    total_points: int
    event_count: int
    first_engaged_at: datetime | None


def rank(
    scores: Mapping[str, RegistrantScore],
    *,
    limit: int | None = None,
    offset: int = 0,
    min_score: int | None = None,
) -> list[LeaderboardEntry]:
    """Order registrants by total descending, earliest first engagement first.

    Registrants without any ledger rows never appear in *scores* and so are
    never ranked.  The registration id is a final tie-break so the order is
    fully deterministic.

    *min_score* drops totals below the threshold before paging; because the
    order is by total, the survivors keep their overall rank.  *offset* and
    *limit* then select a page, and ``rank`` stays the position in the full
    board rather than on the page.
    """
    if offset < 0:
        raise ValueError(f"offset must be non-negative, got {offset}")
    ordered = sorted(
        (
            s for s in scores.values()
            if s.event_count > 0 and (min_score is None or s.total_points >= min_score)
        ),
        key=lambda s: (
            -s.total_points,
            s.first_engaged_at is None,
            s.first_engaged_at or datetime.min,
            s.registration_id,
        ),
    )
    end = None if limit is None else offset + limit
    return [
        LeaderboardEntry(
            rank=offset + i + 1,
            registration_id=s.registration_id,
            total_points=s.total_points,
            event_count=s.event_count,
            first_engaged_at=s.first_engaged_at,
        )
        for i, s in enumerate(ordered[offset:end])
    ]


# ---------------------------------------------------------------------------
# Stage 3: distribution + summary over every registrant (zeros included)
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ScoreBucket:
    label: str
    min_score: int | None
    max_score: int | None
    count: int
    percentage: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "range": self.label,
            "min": self.min_score,
            "max": self.max_score,
            "count": self.count,
            "percentage": self.percentage,
        }


def _bucket_index(total: int) -> int:
    for i, (_label, low, high) in enumerate(SCORE_RANGES):
        if (low is None or total >= low) and (high is None or total <= high):
            return i
    raise ValueError(f"Score {total} does not fall into any range")


def distribution(totals: Sequence[int]) -> list[ScoreBucket]:
    """Histogram of *totals* over :data:`~auditorium.constants.SCORE_RANGES`.

    Every total lands in exactly one bucket.
    """
    counts = [0] * len(SCORE_RANGES)
    for total in totals:
        counts[_bucket_index(total)] += 1
    n = len(totals)
    return [
        ScoreBucket(
            label=label,
            min_score=low,
            max_score=high,
            count=counts[i],
            percentage=percent(counts[i], n),
        )
        for i, (label, low, high) in enumerate(SCORE_RANGES)
    ]


@dataclass(frozen=True, slots=True)
class ScoreSummary:
    registrant_count: int = 0
    scored_count: int = 0
    mean: float = 0.0
    median: float = 0.0
    top: int = 0
    lowest: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "registrant_count": self.registrant_count,
            "scored_count": self.scored_count,
            "mean": self.mean,
            "median": self.median,
            "top": self.top,
            "lowest": self.lowest,
        }


def summarize(totals: Sequence[int]) -> ScoreSummary:
    """Count, mean, median, top and lowest score.

    *totals* holds one entry per registrant, zero scorers included, so the
    mean is "points per registrant", not "points per active registrant".
    """
    if not totals:
        return ScoreSummary()
    return ScoreSummary(
        registrant_count=len(totals),
        scored_count=sum(1 for t in totals if t > 0),
        mean=round(statistics.fmean(totals), 2),
        median=float(statistics.median(totals)),
        top=max(totals),
        lowest=min(totals),
    )


# ---------------------------------------------------------------------------
# Engagement totals for the reporting surface
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class EngagementTotals:
    event_count: int = 0
    point_total: int = 0
    unique_participants: int = 0
    avg_points_per_participant: int = 0
    breakdown: dict[str, dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_count": self.event_count,
            "point_total": self.point_total,
            "unique_participants": self.unique_participants,
            "avg_points_per_participant": self.avg_points_per_participant,
            "breakdown": self.breakdown,
        }


def engagement_totals(rows: Iterable[LedgerRow]) -> EngagementTotals:
    """Event count, point total, unique participants, and a per-kind breakdown."""
    totals = EngagementTotals()
    participants: set[str] = set()
    for row in rows:
        totals.event_count += 1
        totals.point_total += row.points_awarded
        participants.add(row.registration_id)
        kind = totals.breakdown.setdefault(row.kind, {"count": 0, "points": 0})
        kind["count"] += 1
        kind["points"] += row.points_awarded

    totals.unique_participants = len(participants)
    if participants:
        n = len(participants)
        totals.avg_points_per_participant = (totals.point_total * 2 + n) // (2 * n)
    return totals
