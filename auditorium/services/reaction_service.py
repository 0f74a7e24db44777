"""
auditorium.services.reaction_service — Emoji Reactions
=======================================================

Reactions are display-only bursts.  Rows are kept just long enough for
per-emoji counts; :func:`prune_reactions` trims the table.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import Engine, delete, func, select
from sqlalchemy.orm import Session

from auditorium.constants import REACTION_EMOJIS
from auditorium.database.engine import get_session
from auditorium.database.models import Reaction
from auditorium.engine.events import EngagementKind, TrackedAction, source_key
from auditorium.engine.features import Feature
from auditorium.engine.weights import WeightCache
from auditorium.errors import InvalidInputError
from auditorium.realtime.feed import ChangeFeed
from auditorium.realtime.messages import ChangeEvent, Operation, to_record
from auditorium.services.engagement_service import record_engagement_event
from auditorium.services.webinar_service import get_context, get_registration

logger = logging.getLogger(__name__)


def send_reaction(
    engine: Engine,
    feed: ChangeFeed,
    weights: WeightCache,
    *,
    webinar_id: str,
    registration_id: str,
    emoji: str,
    reaction_id: str | None = None,
) -> dict[str, Any]:
    """Store a reaction, log ``reaction`` and broadcast the insert."""
    if emoji not in REACTION_EMOJIS:
        raise InvalidInputError(f"Unsupported reaction: {emoji!r}")

    with get_session(engine) as session:
        ctx = get_context(session, webinar_id)
        ctx.require(Feature.REACTIONS)
        get_registration(session, webinar_id, registration_id)

        if reaction_id is not None:
            existing = session.get(Reaction, reaction_id)
            if existing is not None:
                return to_record(existing)

        reaction = Reaction(
            webinar_id=webinar_id,
            registration_id=registration_id,
            emoji=emoji,
            created_at=datetime.now(UTC),
        )
        if reaction_id is not None:
            reaction.id = reaction_id
        session.add(reaction)
        session.flush()

        record_engagement_event(
            session,
            weights,
            ctx.company_id,
            TrackedAction(
                webinar_id=webinar_id,
                registration_id=registration_id,
                kind=EngagementKind.REACTION,
                source_id=source_key(EngagementKind.REACTION, reaction.id),
                payload={"emoji": emoji},
            ),
        )
        feed.emit(session, ChangeEvent.of(Operation.INSERT, reaction, webinar_id))
        return to_record(reaction)


def reaction_counts(engine: Engine, webinar_id: str) -> dict[str, int]:
    """Count of stored reactions per emoji, every palette entry present."""
    with Session(engine) as session:
        rows = session.execute(
            select(Reaction.emoji, func.count().label("n"))
            .where(Reaction.webinar_id == webinar_id)
            .group_by(Reaction.emoji)
        ).all()
    counts = {emoji: 0 for emoji in REACTION_EMOJIS}
    for row in rows:
        counts[row.emoji] = row.n
    return counts


def prune_reactions(engine: Engine, *, older_than_hours: int = 24) -> int:
    """Delete reaction rows older than the retention window.

    Ledger rows are untouched, so scores are unaffected.
    """
    cutoff = datetime.now(UTC) - timedelta(hours=older_than_hours)
    with get_session(engine) as session:
        removed = session.execute(
            delete(Reaction).where(Reaction.created_at < cutoff)
        ).rowcount or 0
    if removed:
        logger.info("Pruned %d reaction(s) older than %dh", removed, older_than_hours)
    return removed
