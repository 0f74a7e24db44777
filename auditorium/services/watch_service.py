"""
auditorium.services.watch_service — Watch Sessions and Milestones
==================================================================

Server half of the watch-time tracker.  Milestone firing is decided here,
never on the client:

    1. Lock the session row (``SELECT … FOR UPDATE``).
    2. percentage = floor(position / duration * 100).
    3. Milestones reached but not yet in ``milestones_hit`` are newly hit.
    4. Store the union and log one ``watch_<m>`` event per new milestone,
       keyed ``watch_<m>:<session_id>`` so a retried report is a no-op.

Two concurrent reports for the same session serialize on the row lock, and
the ledger's unique source key absorbs anything that slips through.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from auditorium.database.engine import get_session
from auditorium.database.models import WatchSession
from auditorium.engine.events import TrackedAction, milestone_kind, source_key
from auditorium.engine.milestones import newly_crossed, percent_watched
from auditorium.engine.weights import WeightCache
from auditorium.errors import InvalidInputError, NotFoundError
from auditorium.services.engagement_service import record_engagement_event
from auditorium.services.webinar_service import get_context, get_registration

logger = logging.getLogger(__name__)


def _lock_session(session: Session, session_id: str, registration_id: str | None) -> WatchSession:
    row = session.scalars(
        select(WatchSession).where(WatchSession.id == session_id).with_for_update()
    ).first()
    if row is None or (registration_id is not None and row.registration_id != registration_id):
        raise NotFoundError(f"Watch session not found: {session_id}")
    return row


def _check_progress(position_seconds: float, duration_seconds: float) -> tuple[int, int]:
    if position_seconds < 0 or duration_seconds < 0:
        raise InvalidInputError("Playback position and duration cannot be negative")
    return int(position_seconds), int(duration_seconds)


def start_watch_session(
    engine: Engine, *, webinar_id: str, registration_id: str,
) -> dict[str, Any]:
    """Return the registrant's open session for the webinar, or open one.

    Reusing the open session keeps a page reload from re-awarding milestones
    already earned in it.
    """
    with get_session(engine) as session:
        get_context(session, webinar_id)
        get_registration(session, webinar_id, registration_id)
        row = session.scalars(
            select(WatchSession)
            .where(
                WatchSession.webinar_id == webinar_id,
                WatchSession.registration_id == registration_id,
                WatchSession.ended_at.is_(None),
            )
            .order_by(WatchSession.started_at.desc())
        ).first()
        if row is None:
            row = WatchSession(
                webinar_id=webinar_id,
                registration_id=registration_id,
                started_at=datetime.now(UTC),
                last_position_seconds=0,
                duration_seconds=0,
                milestones_hit=[],
            )
            session.add(row)
            session.flush()
            logger.info("Watch session %s started (registration=%s)", row.id, registration_id)
        return {"session_id": row.id, "milestones_hit": sorted(row.milestones_hit or [])}


def update_watch_progress(
    engine: Engine,
    weights: WeightCache,
    *,
    session_id: str,
    position_seconds: float,
    duration_seconds: float,
    registration_id: str | None = None,
) -> list[int]:
    """Store progress and fire any newly crossed milestones.

    Returns the milestones newly hit by this report (ascending, possibly
    empty).  Reports for an ended session only move the position.
    """
    position, duration = _check_progress(position_seconds, duration_seconds)

    with get_session(engine) as session:
        row = _lock_session(session, session_id, registration_id)
        row.last_position_seconds = position
        if duration > 0:
            row.duration_seconds = duration

        if row.ended_at is not None or duration <= 0:
            return []

        already = list(row.milestones_hit or [])
        fresh = newly_crossed(percent_watched(position, duration), already)
        if not fresh:
            return []

        row.milestones_hit = sorted(set(already) | set(fresh))
        session.flush()

        company_id = get_context(session, row.webinar_id).company_id
        for milestone in fresh:
            kind = milestone_kind(milestone)
            record_engagement_event(
                session,
                weights,
                company_id,
                TrackedAction(
                    webinar_id=row.webinar_id,
                    registration_id=row.registration_id,
                    kind=kind,
                    source_id=source_key(kind, session_id),
                    payload={"session_id": session_id, "position_seconds": position},
                ),
            )
        logger.info("Watch session %s hit milestone(s) %s", session_id, fresh)
        return fresh


def end_watch_session(
    engine: Engine,
    *,
    session_id: str,
    position_seconds: float | None = None,
    duration_seconds: float | None = None,
    registration_id: str | None = None,
) -> dict[str, Any]:
    """Close the session, keeping the last known position.  Idempotent."""
    with get_session(engine) as session:
        row = _lock_session(session, session_id, registration_id)
        if row.ended_at is None:
            if position_seconds is not None and position_seconds >= 0:
                row.last_position_seconds = int(position_seconds)
            if duration_seconds is not None and duration_seconds > 0:
                row.duration_seconds = int(duration_seconds)
            row.ended_at = datetime.now(UTC)
            logger.info(
                "Watch session %s ended at %ds/%ds",
                session_id, row.last_position_seconds, row.duration_seconds,
            )
        return {
            "session_id": row.id,
            "ended": True,
            "last_position_seconds": row.last_position_seconds,
            "milestones_hit": sorted(row.milestones_hit or []),
        }


def get_watch_session(engine: Engine, session_id: str) -> dict[str, Any]:
    with Session(engine) as session:
        row = session.get(WatchSession, session_id)
        if row is None:
            raise NotFoundError(f"Watch session not found: {session_id}")
        return {
            "session_id": row.id,
            "webinar_id": row.webinar_id,
            "registration_id": row.registration_id,
            "last_position_seconds": row.last_position_seconds,
            "duration_seconds": row.duration_seconds,
            "milestones_hit": sorted(row.milestones_hit or []),
            "ended": row.ended_at is not None,
        }
