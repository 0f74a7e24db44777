"""
auditorium.constants — Shared Constants
========================================

Fixed values shared by the server services and the client sync units.
Anything a company can tune lives in the ``engagement_weights`` table or in
``config.yaml`` instead.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Reactions
# ---------------------------------------------------------------------------
REACTION_EMOJIS: tuple[str, ...] = ("🔥", "❤️", "👏", "😂", "😮", "🎉", "💯", "👍")

MAX_FLOATING_REACTIONS = 20
REACTION_LIFETIME_SECONDS = 3.0
REACTION_DEBOUNCE_SECONDS = 0.2

# ---------------------------------------------------------------------------
# Chat / Q&A
# ---------------------------------------------------------------------------
MAX_CHAT_MESSAGE_LENGTH = 500
MAX_QUESTION_LENGTH = 1000

# ---------------------------------------------------------------------------
# Polls
# ---------------------------------------------------------------------------
MIN_POLL_OPTIONS = 2
MAX_POLL_OPTIONS = 10

# ---------------------------------------------------------------------------
# Watch time
# ---------------------------------------------------------------------------
WATCH_MILESTONES: tuple[int, ...] = (25, 50, 75, 100)
WATCH_UPDATE_INTERVAL_SECONDS = 30.0

# ---------------------------------------------------------------------------
# Lead-score histogram ranges: (label, lower bound, upper bound inclusive).
# ``None`` leaves a side open.
# ---------------------------------------------------------------------------
SCORE_RANGES: tuple[tuple[str, int | None, int | None], ...] = (
    ("0-10", None, 10),
    ("11-25", 11, 25),
    ("26-50", 26, 50),
    ("51-100", 51, 100),
    ("100+", 101, None),
)


def percent(part: int, whole: int) -> int:
    """Integer percentage of *part* in *whole*, rounded half up.

    Returns 0 when *whole* is zero.

    >>> percent(1, 8)
    13
    """
    if whole <= 0:
        return 0
    return (part * 200 + whole) // (2 * whole)
