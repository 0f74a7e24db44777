"""
auditorium.services.chat_service — Live Chat Writes and Moderation
===================================================================

Message content is immutable once written.  Hosts may pin, hide, or delete;
each mutation is broadcast so viewers re-filter without a reload.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from auditorium.constants import MAX_CHAT_MESSAGE_LENGTH
from auditorium.database.engine import get_session
from auditorium.database.models import ChatMessage
from auditorium.engine.events import EngagementKind, TrackedAction, source_key
from auditorium.engine.features import Feature
from auditorium.engine.weights import WeightCache
from auditorium.errors import InvalidInputError, NotFoundError
from auditorium.realtime.feed import ChangeFeed
from auditorium.realtime.messages import ChangeEvent, Operation, to_record
from auditorium.services.engagement_service import record_engagement_event
from auditorium.services.webinar_service import get_context, get_registration

logger = logging.getLogger(__name__)


def clean_message(message: str, max_length: int = MAX_CHAT_MESSAGE_LENGTH) -> str:
    """Trim and validate chat text (1..max_length characters)."""
    text = (message or "").strip()
    if not text:
        raise InvalidInputError("Message cannot be empty")
    if len(text) > max_length:
        raise InvalidInputError(f"Message is too long (max {max_length} characters)")
    return text


def send_chat_message(
    engine: Engine,
    feed: ChangeFeed,
    weights: WeightCache,
    *,
    webinar_id: str,
    registration_id: str,
    message: str,
    message_id: str | None = None,
    max_length: int = MAX_CHAT_MESSAGE_LENGTH,
) -> dict[str, Any]:
    """Insert a chat message, log ``chat_message`` and broadcast the insert.

    *message_id* lets the sender pick the id up front so its optimistic copy
    and the broadcast echo collapse into one entry.  Resending the same id
    returns the stored message unchanged.
    """
    text = clean_message(message, max_length)

    with get_session(engine) as session:
        ctx = get_context(session, webinar_id)
        ctx.require(Feature.CHAT)
        get_registration(session, webinar_id, registration_id)

        if message_id is not None:
            existing = session.get(ChatMessage, message_id)
            if existing is not None:
                if existing.registration_id != registration_id:
                    raise InvalidInputError("Message id already in use")
                return to_record(existing)

        msg = ChatMessage(
            webinar_id=webinar_id,
            registration_id=registration_id,
            message=text,
            created_at=datetime.now(UTC),
        )
        if message_id is not None:
            msg.id = message_id
        session.add(msg)
        session.flush()

        record_engagement_event(
            session,
            weights,
            ctx.company_id,
            TrackedAction(
                webinar_id=webinar_id,
                registration_id=registration_id,
                kind=EngagementKind.CHAT_MESSAGE,
                source_id=source_key(EngagementKind.CHAT_MESSAGE, msg.id),
                payload={"length": len(text)},
            ),
        )
        feed.emit(session, ChangeEvent.of(Operation.INSERT, msg, webinar_id))
        return to_record(msg)


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------
def _get_message(session: Session, webinar_id: str, message_id: str) -> ChatMessage:
    msg = session.get(ChatMessage, message_id)
    if msg is None or msg.webinar_id != webinar_id:
        raise NotFoundError(f"Chat message not found: {message_id}")
    return msg


def _update_flag(
    engine: Engine, feed: ChangeFeed, webinar_id: str, message_id: str, **values: bool,
) -> dict[str, Any]:
    with get_session(engine) as session:
        msg = _get_message(session, webinar_id, message_id)
        for key, value in values.items():
            setattr(msg, key, value)
        session.flush()
        feed.emit(session, ChangeEvent.of(Operation.UPDATE, msg, webinar_id))
        logger.info("Chat message %s moderated: %s", message_id, values)
        return to_record(msg)


def set_message_pinned(
    engine: Engine, feed: ChangeFeed, *, webinar_id: str, message_id: str, pinned: bool,
) -> dict[str, Any]:
    return _update_flag(engine, feed, webinar_id, message_id, is_pinned=pinned)


def set_message_hidden(
    engine: Engine, feed: ChangeFeed, *, webinar_id: str, message_id: str, hidden: bool,
) -> dict[str, Any]:
    return _update_flag(engine, feed, webinar_id, message_id, is_hidden=hidden)


def delete_chat_message(
    engine: Engine, feed: ChangeFeed, *, webinar_id: str, message_id: str,
) -> None:
    with get_session(engine) as session:
        msg = _get_message(session, webinar_id, message_id)
        change = ChangeEvent.of(Operation.DELETE, msg, webinar_id)
        session.delete(msg)
        session.flush()
        feed.emit(session, change)
    logger.info("Chat message %s deleted", message_id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def list_chat_messages(
    engine: Engine,
    webinar_id: str,
    *,
    limit: int = 100,
    include_hidden: bool = False,
) -> list[dict[str, Any]]:
    """Most recent *limit* messages, returned oldest first."""
    with Session(engine) as session:
        stmt = select(ChatMessage).where(ChatMessage.webinar_id == webinar_id)
        if not include_hidden:
            stmt = stmt.where(ChatMessage.is_hidden.is_(False))
        rows = session.scalars(
            stmt.order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc()).limit(limit)
        ).all()
        return [to_record(m) for m in reversed(rows)]


def list_pinned_messages(engine: Engine, webinar_id: str) -> list[dict[str, Any]]:
    with Session(engine) as session:
        rows = session.scalars(
            select(ChatMessage)
            .where(
                ChatMessage.webinar_id == webinar_id,
                ChatMessage.is_pinned.is_(True),
                ChatMessage.is_hidden.is_(False),
            )
            .order_by(ChatMessage.created_at.desc())
        ).all()
        return [to_record(m) for m in rows]
