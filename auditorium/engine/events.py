"""
auditorium.engine.events — Engagement Kinds and Default Points
===============================================================

Every scoring-relevant action becomes one ``engagement_events`` row.  The
kind names and the documented default point table live here; a company can
override any entry through the ``engagement_weights`` table.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from auditorium.constants import WATCH_MILESTONES

__all__ = [
    "EngagementKind",
    "DEFAULT_POINTS",
    "TrackedAction",
    "milestone_kind",
    "source_key",
]


class EngagementKind(enum.StrEnum):
    """Recognized ledger kinds.  Unknown kinds are still recorded, at 0 points."""
    CHAT_MESSAGE = "chat_message"
    QA_SUBMIT = "qa_submit"
    QA_UPVOTE = "qa_upvote"
    POLL_RESPONSE = "poll_response"
    REACTION = "reaction"
    CTA_CLICK = "cta_click"
    WATCH_25 = "watch_25"
    WATCH_50 = "watch_50"
    WATCH_75 = "watch_75"
    WATCH_100 = "watch_100"


# ---------------------------------------------------------------------------
# Default point table — used when the company has not customized a kind
# ---------------------------------------------------------------------------
DEFAULT_POINTS: dict[str, int] = {
    EngagementKind.CHAT_MESSAGE: 1,
    EngagementKind.QA_SUBMIT: 3,
    EngagementKind.QA_UPVOTE: 1,
    EngagementKind.POLL_RESPONSE: 2,
    EngagementKind.REACTION: 1,
    EngagementKind.CTA_CLICK: 5,
    EngagementKind.WATCH_25: 5,
    EngagementKind.WATCH_50: 10,
    EngagementKind.WATCH_75: 15,
    EngagementKind.WATCH_100: 25,
}


def milestone_kind(milestone: int) -> EngagementKind:
    """Map a watch milestone (25/50/75/100) to its ledger kind."""
    if milestone not in WATCH_MILESTONES:
        raise ValueError(f"Not a watch milestone: {milestone}")
    return EngagementKind(f"watch_{milestone}")


def source_key(kind: str, *parts: str | int) -> str:
    """Build the idempotency key for a ledger row, e.g. ``qa_upvote:q1:r1``."""
    return ":".join([str(kind), *(str(p) for p in parts)])


# ---------------------------------------------------------------------------
# TrackedAction — the ledger write envelope
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TrackedAction:
    """One scoring-relevant action about to be written to the ledger.

    ``source_id`` makes the write idempotent: a retried or replayed action
    with the same key is absorbed instead of awarding points twice.
    """

    webinar_id: str
    registration_id: str
    kind: str
    source_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
