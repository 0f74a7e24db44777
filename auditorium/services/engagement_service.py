"""
auditorium.services.engagement_service — Engagement Ledger Writes
==================================================================

Central write path for ``engagement_events``.

Responsibilities:
1. Resolve ``points_awarded`` from the company's weight table at write time.
2. Insert idempotently: a ``source_id`` already in the ledger is absorbed, so
   retries and replayed broadcasts never award points twice.
3. Manage company weight overrides (``engagement_weights``).

Ledger writes normally ride inside the transaction of the action that
earned them (a chat message, a vote …) so the two commit together.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auditorium.database.engine import get_session
from auditorium.database.models import EngagementEvent, EngagementWeight
from auditorium.engine.events import EngagementKind, TrackedAction, source_key
from auditorium.engine.scoring import points_for
from auditorium.engine.weights import WeightCache
from auditorium.errors import InvalidInputError
from auditorium.realtime.feed import ChangeFeed
from auditorium.services.webinar_service import get_context, get_registration

logger = logging.getLogger(__name__)

WEIGHTS_TABLE = "engagement_weights"


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------
def record_engagement_event(
    session: Session,
    weights: WeightCache,
    company_id: str,
    action: TrackedAction,
) -> tuple[EngagementEvent | None, bool]:
    """Append *action* to the ledger inside the caller's transaction.

    Returns ``(event, was_duplicate)``.  On a duplicate ``source_id`` the
    SAVEPOINT is rolled back, the outer transaction carries on, and
    ``(None, True)`` is returned.
    """
    points = points_for(action.kind, weights.table_for(company_id))
    event = EngagementEvent(
        webinar_id=action.webinar_id,
        registration_id=action.registration_id,
        kind=action.kind,
        payload=dict(action.payload),
        points_awarded=points,
        source_id=action.source_id,
        created_at=datetime.now(UTC),
    )
    try:
        with session.begin_nested():  # SAVEPOINT
            session.add(event)
            session.flush()
    except IntegrityError:
        logger.debug(
            "Duplicate engagement event skipped: source_id=%s kind=%s registration=%s",
            action.source_id, action.kind, action.registration_id,
        )
        return None, True

    logger.debug(
        "Engagement event: kind=%s registration=%s points=%d",
        action.kind, action.registration_id, points,
    )
    return event, False


def track_cta_click(
    engine: Engine,
    weights: WeightCache,
    *,
    webinar_id: str,
    registration_id: str,
    cta: str,
    click_id: str | None = None,
) -> dict[str, Any]:
    """Record a call-to-action click.

    *click_id* (generated by the viewer) deduplicates retried clicks; without
    it every call scores.
    """
    cta = (cta or "").strip()
    if not cta:
        raise InvalidInputError("CTA name is required")

    with get_session(engine) as session:
        ctx = get_context(session, webinar_id)
        get_registration(session, webinar_id, registration_id)
        event, duplicate = record_engagement_event(
            session,
            weights,
            ctx.company_id,
            TrackedAction(
                webinar_id=webinar_id,
                registration_id=registration_id,
                kind=EngagementKind.CTA_CLICK,
                source_id=source_key(EngagementKind.CTA_CLICK, click_id) if click_id else None,
                payload={"cta": cta[:200]},
            ),
        )
        return {
            "recorded": not duplicate,
            "points_awarded": event.points_awarded if event is not None else 0,
        }


# ---------------------------------------------------------------------------
# Weight table management
# ---------------------------------------------------------------------------
def get_weight_table(weights: WeightCache, company_id: str) -> dict[str, Any]:
    """Effective table plus which kinds are overridden."""
    return {
        "company_id": company_id,
        "points": weights.table_for(company_id),
        "overrides": weights.overrides_for(company_id),
    }


def _validate_points(points: dict[str, Any]) -> dict[str, int]:
    known = {str(k) for k in EngagementKind}
    clean: dict[str, int] = {}
    for kind, value in points.items():
        if kind not in known:
            raise InvalidInputError(f"Unknown engagement kind: {kind}")
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidInputError(f"Points for {kind} must be a non-negative integer")
        clean[kind] = value
    return clean


def set_weights(
    engine: Engine,
    feed: ChangeFeed,
    *,
    company_id: str,
    points: dict[str, Any],
) -> dict[str, int]:
    """Upsert overrides for *company_id*.  Only affects events logged later."""
    clean = _validate_points(points)
    with get_session(engine) as session:
        existing = {
            row.kind: row
            for row in session.scalars(
                select(EngagementWeight).where(EngagementWeight.company_id == company_id)
            )
        }
        for kind, value in clean.items():
            row = existing.get(kind)
            if row is None:
                session.add(EngagementWeight(company_id=company_id, kind=kind, points=value))
            else:
                row.points = value
        session.flush()
        feed.invalidate(session, WEIGHTS_TABLE)

    logger.info("Weights updated for company %s: %s", company_id, clean)
    return clean


def reset_weights(
    engine: Engine,
    feed: ChangeFeed,
    *,
    company_id: str,
    kinds: list[str] | None = None,
) -> int:
    """Drop overrides (all, or just *kinds*) so the defaults apply again."""
    with get_session(engine) as session:
        stmt = delete(EngagementWeight).where(EngagementWeight.company_id == company_id)
        if kinds:
            stmt = stmt.where(EngagementWeight.kind.in_(kinds))
        removed = session.execute(stmt).rowcount or 0
        feed.invalidate(session, WEIGHTS_TABLE)

    logger.info("Weights reset for company %s (%d override(s) removed)", company_id, removed)
    return removed
