"""
auditorium.services.qa_service — Q&A Questions and the Upvote Protocol
=======================================================================

``qa_upvotes`` rows are the source of truth for "has this registrant upvoted
this question"; ``qa_questions.upvote_count`` is a derived counter.

Upvote protocol (one transaction):
    1. INSERT / DELETE the ``qa_upvotes`` row — the unique
       (question_id, registration_id) constraint rejects a second vote.
    2. ``UPDATE … SET upvote_count = upvote_count ± 1`` — a pure latency
       optimization; :func:`~auditorium.services.reconciliation_service.recompute_upvote_counts`
       rebuilds the counter from detail rows.
    3. Broadcast the question row so every viewer re-sorts.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auditorium.constants import MAX_QUESTION_LENGTH
from auditorium.database.engine import get_session
from auditorium.database.models import QAQuestion, QAUpvote, QuestionStatus
from auditorium.engine.events import EngagementKind, TrackedAction, source_key
from auditorium.engine.features import Feature
from auditorium.engine.weights import WeightCache
from auditorium.errors import (
    DuplicateUpvoteError,
    InvalidInputError,
    NotFoundError,
    UpvoteNotFoundError,
)
from auditorium.realtime.feed import ChangeFeed
from auditorium.realtime.messages import ChangeEvent, Operation, to_record
from auditorium.services.engagement_service import record_engagement_event
from auditorium.services.webinar_service import get_context, get_registration

logger = logging.getLogger(__name__)


def _get_question(session: Session, webinar_id: str, question_id: str) -> QAQuestion:
    question = session.get(QAQuestion, question_id)
    if question is None or question.webinar_id != webinar_id:
        raise NotFoundError(f"Question not found: {question_id}")
    return question


# ---------------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------------
def submit_question(
    engine: Engine,
    feed: ChangeFeed,
    weights: WeightCache,
    *,
    webinar_id: str,
    registration_id: str,
    question: str,
    question_id: str | None = None,
) -> dict[str, Any]:
    """Insert an open question, log ``qa_submit`` and broadcast the insert."""
    text = (question or "").strip()
    if not text:
        raise InvalidInputError("Question cannot be empty")
    if len(text) > MAX_QUESTION_LENGTH:
        raise InvalidInputError(f"Question is too long (max {MAX_QUESTION_LENGTH} characters)")

    with get_session(engine) as session:
        ctx = get_context(session, webinar_id)
        ctx.require(Feature.QA)
        get_registration(session, webinar_id, registration_id)

        if question_id is not None:
            existing = session.get(QAQuestion, question_id)
            if existing is not None:
                if existing.registration_id != registration_id:
                    raise InvalidInputError("Question id already in use")
                return to_record(existing)

        row = QAQuestion(
            webinar_id=webinar_id,
            registration_id=registration_id,
            question=text,
            status=QuestionStatus.OPEN,
            upvote_count=0,
            created_at=datetime.now(UTC),
        )
        if question_id is not None:
            row.id = question_id
        session.add(row)
        session.flush()

        record_engagement_event(
            session,
            weights,
            ctx.company_id,
            TrackedAction(
                webinar_id=webinar_id,
                registration_id=registration_id,
                kind=EngagementKind.QA_SUBMIT,
                source_id=source_key(EngagementKind.QA_SUBMIT, row.id),
            ),
        )
        feed.emit(session, ChangeEvent.of(Operation.INSERT, row, webinar_id))
        return to_record(row)


# ---------------------------------------------------------------------------
# Upvotes
# ---------------------------------------------------------------------------
def _bump_counter(session: Session, question: QAQuestion, delta: int) -> None:
    session.execute(
        update(QAQuestion)
        .where(QAQuestion.id == question.id)
        .values(upvote_count=QAQuestion.upvote_count + delta)
    )
    session.refresh(question)


def add_upvote(
    engine: Engine,
    feed: ChangeFeed,
    weights: WeightCache,
    *,
    webinar_id: str,
    question_id: str,
    registration_id: str,
) -> int:
    """Upvote a question; returns the new ``upvote_count``.

    Raises
    ------
    DuplicateUpvoteError
        If this registrant already upvoted the question.
    """
    with get_session(engine) as session:
        ctx = get_context(session, webinar_id)
        ctx.require(Feature.QA)
        get_registration(session, webinar_id, registration_id)
        question = _get_question(session, webinar_id, question_id)

        try:
            with session.begin_nested():  # SAVEPOINT
                session.add(QAUpvote(
                    question_id=question_id,
                    registration_id=registration_id,
                    created_at=datetime.now(UTC),
                ))
                session.flush()
        except IntegrityError:
            raise DuplicateUpvoteError(
                f"Registration {registration_id} already upvoted {question_id}"
            ) from None

        _bump_counter(session, question, +1)
        # Re-upvoting after an un-vote does not score again.
        record_engagement_event(
            session,
            weights,
            ctx.company_id,
            TrackedAction(
                webinar_id=webinar_id,
                registration_id=registration_id,
                kind=EngagementKind.QA_UPVOTE,
                source_id=source_key(EngagementKind.QA_UPVOTE, question_id, registration_id),
            ),
        )
        feed.emit(session, ChangeEvent.of(Operation.UPDATE, question, webinar_id))
        return question.upvote_count


def remove_upvote(
    engine: Engine,
    feed: ChangeFeed,
    *,
    webinar_id: str,
    question_id: str,
    registration_id: str,
) -> int:
    """Withdraw an upvote; returns the new ``upvote_count``.

    Raises
    ------
    UpvoteNotFoundError
        If there is no upvote by this registrant to remove.
    """
    with get_session(engine) as session:
        question = _get_question(session, webinar_id, question_id)
        removed = session.execute(
            delete(QAUpvote).where(
                QAUpvote.question_id == question_id,
                QAUpvote.registration_id == registration_id,
            )
        ).rowcount
        if not removed:
            raise UpvoteNotFoundError(
                f"Registration {registration_id} has not upvoted {question_id}"
            )
        _bump_counter(session, question, -1)
        feed.emit(session, ChangeEvent.of(Operation.UPDATE, question, webinar_id))
        return question.upvote_count


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------
def _moderate(
    engine: Engine, feed: ChangeFeed, webinar_id: str, question_id: str, **values: Any,
) -> dict[str, Any]:
    with get_session(engine) as session:
        question = _get_question(session, webinar_id, question_id)
        for key, value in values.items():
            setattr(question, key, value)
        session.flush()
        feed.emit(session, ChangeEvent.of(Operation.UPDATE, question, webinar_id))
        logger.info("Question %s moderated: %s", question_id, sorted(values))
        return to_record(question)


def answer_question(
    engine: Engine, feed: ChangeFeed, *, webinar_id: str, question_id: str, answer: str,
) -> dict[str, Any]:
    text = (answer or "").strip()
    if not text:
        raise InvalidInputError("Answer cannot be empty")
    return _moderate(
        engine, feed, webinar_id, question_id,
        answer=text,
        status=QuestionStatus.ANSWERED,
        answered_at=datetime.now(UTC),
    )


def set_question_highlighted(
    engine: Engine, feed: ChangeFeed, *, webinar_id: str, question_id: str, highlighted: bool,
) -> dict[str, Any]:
    return _moderate(engine, feed, webinar_id, question_id, is_highlighted=highlighted)


def set_question_hidden(
    engine: Engine, feed: ChangeFeed, *, webinar_id: str, question_id: str, hidden: bool,
) -> dict[str, Any]:
    return _moderate(engine, feed, webinar_id, question_id, is_hidden=hidden)


def delete_question(
    engine: Engine, feed: ChangeFeed, *, webinar_id: str, question_id: str,
) -> None:
    with get_session(engine) as session:
        question = _get_question(session, webinar_id, question_id)
        change = ChangeEvent.of(Operation.DELETE, question, webinar_id)
        session.execute(delete(QAUpvote).where(QAUpvote.question_id == question_id))
        session.delete(question)
        session.flush()
        feed.emit(session, change)
    logger.info("Question %s deleted", question_id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def list_questions(
    engine: Engine,
    webinar_id: str,
    *,
    registration_id: str | None = None,
    include_hidden: bool = False,
) -> dict[str, Any]:
    """Page-load snapshot: questions by upvotes, plus the caller's upvoted ids."""
    with Session(engine) as session:
        stmt = select(QAQuestion).where(QAQuestion.webinar_id == webinar_id)
        if not include_hidden:
            stmt = stmt.where(QAQuestion.is_hidden.is_(False))
        rows = session.scalars(
            stmt.order_by(QAQuestion.upvote_count.desc(), QAQuestion.created_at.asc())
        ).all()

        upvoted: list[str] = []
        if registration_id is not None:
            upvoted = list(session.scalars(
                select(QAUpvote.question_id)
                .join(QAQuestion, QAQuestion.id == QAUpvote.question_id)
                .where(
                    QAQuestion.webinar_id == webinar_id,
                    QAUpvote.registration_id == registration_id,
                )
            ))
        return {"questions": [to_record(q) for q in rows], "upvoted_ids": upvoted}
