"""
auditorium.services.poll_service — Polls and Poll Responses
============================================================

Lifecycle: ``draft → active → closed``.  Activating a poll closes any other
active poll in the same webinar, so at most one is active at a time; viewers
still break ties by ``activated_at`` in case they observe both for a moment.

A registrant answers a poll once — the unique (poll_id, registration_id)
constraint rejects the second response with :class:`DuplicateVoteError`.
Results are always derivable from ``poll_responses`` alone.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auditorium.database.engine import get_session
from auditorium.database.models import Poll, PollResponse, PollStatus
from auditorium.engine.events import EngagementKind, TrackedAction, source_key
from auditorium.engine.features import Feature
from auditorium.engine.polls import PollResults, parse_options, tally, validate_selection
from auditorium.engine.weights import WeightCache
from auditorium.errors import DuplicateVoteError, FeatureDisabledError, InvalidInputError, NotFoundError
from auditorium.realtime.feed import ChangeFeed
from auditorium.realtime.messages import ChangeEvent, Operation, to_record
from auditorium.services.engagement_service import record_engagement_event
from auditorium.services.webinar_service import get_context, get_registration

logger = logging.getLogger(__name__)


def _get_poll(session: Session, poll_id: str, webinar_id: str | None = None) -> Poll:
    poll = session.get(Poll, poll_id)
    if poll is None or (webinar_id is not None and poll.webinar_id != webinar_id):
        raise NotFoundError(f"Poll not found: {poll_id}")
    return poll


def _results_from_detail(session: Session, poll: Poll) -> PollResults:
    selections = session.scalars(
        select(PollResponse.selected_options).where(PollResponse.poll_id == poll.id)
    ).all()
    return tally(poll.id, parse_options(poll.options), selections)


# ---------------------------------------------------------------------------
# Host-side lifecycle
# ---------------------------------------------------------------------------
def create_poll(
    engine: Engine,
    feed: ChangeFeed,
    *,
    webinar_id: str,
    question: str,
    options: list[Any],
    allow_multiple: bool = False,
    show_results_live: bool = True,
) -> dict[str, Any]:
    """Create a draft poll after validating its option list."""
    text = (question or "").strip()
    if not text:
        raise InvalidInputError("Poll question cannot be empty")
    parsed = parse_options(options)

    with get_session(engine) as session:
        get_context(session, webinar_id).require(Feature.POLLS)
        poll = Poll(
            webinar_id=webinar_id,
            question=text,
            options=[o.to_dict() for o in parsed],
            allow_multiple=allow_multiple,
            show_results_live=show_results_live,
            status=PollStatus.DRAFT,
            created_at=datetime.now(UTC),
        )
        session.add(poll)
        session.flush()
        feed.emit(session, ChangeEvent.of(Operation.INSERT, poll, webinar_id))
        logger.info("Poll %s created for webinar %s", poll.id, webinar_id)
        return to_record(poll)


def activate_poll(
    engine: Engine, feed: ChangeFeed, *, webinar_id: str, poll_id: str,
) -> dict[str, Any]:
    """Make *poll_id* the active poll, closing whichever poll was active."""
    now = datetime.now(UTC)
    with get_session(engine) as session:
        get_context(session, webinar_id).require(Feature.POLLS)
        poll = _get_poll(session, poll_id, webinar_id)
        if poll.status == PollStatus.CLOSED:
            raise InvalidInputError("A closed poll cannot be reopened")

        others = session.scalars(
            select(Poll)
            .where(
                Poll.webinar_id == webinar_id,
                Poll.status == PollStatus.ACTIVE,
                Poll.id != poll_id,
            )
            .with_for_update()
        ).all()
        for other in others:
            other.status = PollStatus.CLOSED
            other.closed_at = now

        poll.status = PollStatus.ACTIVE
        poll.activated_at = now
        session.flush()
        for other in others:
            feed.emit(session, ChangeEvent.of(Operation.UPDATE, other, webinar_id))
        feed.emit(session, ChangeEvent.of(Operation.UPDATE, poll, webinar_id))
        logger.info("Poll %s activated (%d other(s) closed)", poll_id, len(others))
        return to_record(poll)


def close_poll(
    engine: Engine, feed: ChangeFeed, *, webinar_id: str, poll_id: str,
) -> dict[str, Any]:
    with get_session(engine) as session:
        poll = _get_poll(session, poll_id, webinar_id)
        if poll.status != PollStatus.CLOSED:
            poll.status = PollStatus.CLOSED
            poll.closed_at = datetime.now(UTC)
            session.flush()
            feed.emit(session, ChangeEvent.of(Operation.UPDATE, poll, webinar_id))
        return to_record(poll)


def delete_poll(engine: Engine, feed: ChangeFeed, *, webinar_id: str, poll_id: str) -> None:
    with get_session(engine) as session:
        poll = _get_poll(session, poll_id, webinar_id)
        change = ChangeEvent.of(Operation.DELETE, poll, webinar_id)
        for response in session.scalars(select(PollResponse).where(PollResponse.poll_id == poll_id)):
            session.delete(response)
        session.delete(poll)
        session.flush()
        feed.emit(session, change)
    logger.info("Poll %s deleted", poll_id)


# ---------------------------------------------------------------------------
# Voting
# ---------------------------------------------------------------------------
def submit_poll_response(
    engine: Engine,
    feed: ChangeFeed,
    weights: WeightCache,
    *,
    webinar_id: str,
    poll_id: str,
    registration_id: str,
    option_ids: list[str],
    response_id: str | None = None,
) -> dict[str, Any]:
    """Record a vote and broadcast the response insert.

    Raises
    ------
    DuplicateVoteError
        If the registrant already answered this poll.
    FeatureDisabledError
        If the poll is not active.
    """
    with get_session(engine) as session:
        ctx = get_context(session, webinar_id)
        ctx.require(Feature.POLLS)
        get_registration(session, webinar_id, registration_id)
        poll = _get_poll(session, poll_id, webinar_id)
        if poll.status != PollStatus.ACTIVE:
            raise FeatureDisabledError("This poll is not accepting responses")

        selected = validate_selection(
            parse_options(poll.options), option_ids, allow_multiple=poll.allow_multiple,
        )
        response = PollResponse(
            poll_id=poll_id,
            registration_id=registration_id,
            selected_options=selected,
            created_at=datetime.now(UTC),
        )
        if response_id is not None:
            response.id = response_id
        try:
            with session.begin_nested():  # SAVEPOINT
                session.add(response)
                session.flush()
        except IntegrityError:
            raise DuplicateVoteError(
                f"Registration {registration_id} already answered poll {poll_id}"
            ) from None

        record_engagement_event(
            session,
            weights,
            ctx.company_id,
            TrackedAction(
                webinar_id=webinar_id,
                registration_id=registration_id,
                kind=EngagementKind.POLL_RESPONSE,
                source_id=source_key(EngagementKind.POLL_RESPONSE, poll_id, registration_id),
                payload={"poll_id": poll_id, "options": selected},
            ),
        )
        feed.emit(session, ChangeEvent.of(Operation.INSERT, response, webinar_id))
        return to_record(response)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def get_poll_results(engine: Engine, poll_id: str) -> PollResults:
    """Results recomputed from ``poll_responses``."""
    with Session(engine) as session:
        return _results_from_detail(session, _get_poll(session, poll_id))


def list_polls(
    engine: Engine,
    webinar_id: str,
    *,
    registration_id: str | None = None,
    include_drafts: bool = False,
) -> dict[str, Any]:
    """Page-load snapshot: polls with results, plus the caller's own votes."""
    with Session(engine) as session:
        stmt = select(Poll).where(Poll.webinar_id == webinar_id)
        if not include_drafts:
            stmt = stmt.where(Poll.status != PollStatus.DRAFT)
        polls = session.scalars(stmt.order_by(Poll.created_at.asc())).all()

        items = []
        for poll in polls:
            record = to_record(poll)
            record["results"] = _results_from_detail(session, poll).to_dict()
            items.append(record)

        my_votes: dict[str, list[str]] = {}
        if registration_id is not None and polls:
            rows = session.execute(
                select(PollResponse.poll_id, PollResponse.selected_options).where(
                    PollResponse.registration_id == registration_id,
                    PollResponse.poll_id.in_([p.id for p in polls]),
                )
            ).all()
            my_votes = {row.poll_id: list(row.selected_options) for row in rows}
        return {"polls": items, "my_votes": my_votes}
