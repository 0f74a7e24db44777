"""
auditorium.database.models — SQLAlchemy 2.0 Data Models
========================================================

The Event Store.  One table per interaction kind plus the engagement ledger.

Tables:
- webinars            — Lifecycle status + per-webinar feature flags (external CRUD)
- registrations       — Attendee identity per webinar (1:1 with email)
- chat_messages       — Live chat, moderated via pin/hide/delete
- qa_questions        — Questions with a derived upvote counter
- qa_upvotes          — One row per (question, registrant); source of truth for votes
- polls               — Validated option lists, draft → active → closed
- poll_responses      — One row per (poll, registrant)
- reactions           — Ephemeral emoji bursts, retained for counts
- watch_sessions      — Playback progress + milestones hit
- engagement_events   — Append-only scoring ledger with idempotent insert
- engagement_weights  — Per-company point overrides per event kind

Uniqueness rules are enforced here, at write time, never only in client state.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def new_id() -> str:
    """Generate an opaque row id."""
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Auditorium ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class WebinarStatus(enum.StrEnum):
    """Lifecycle status, owned by the external webinar management surface."""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    LIVE = "live"
    ENDED = "ended"
    CANCELLED = "cancelled"


class QuestionStatus(enum.StrEnum):
    OPEN = "open"
    ANSWERED = "answered"


class PollStatus(enum.StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Webinars — read-only collaborator; only status and flags matter here
# ---------------------------------------------------------------------------
class Webinar(Base):
    __tablename__ = "webinars"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    company_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WebinarStatus.DRAFT
    )
    chat_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    qa_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    polls_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    reactions_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    replay_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Webinar id={self.id} title={self.title!r} status={self.status}>"


# ---------------------------------------------------------------------------
# Registrations — one per (webinar, email)
# ---------------------------------------------------------------------------
class Registration(Base):
    __tablename__ = "registrations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    webinar_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("webinars.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("webinar_id", "email", name="uq_registration_webinar_email"),
    )

    def __repr__(self) -> str:
        return f"<Registration id={self.id} email={self.email!r}>"


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------
class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    webinar_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("webinars.id", ondelete="CASCADE"), nullable=False
    )
    registration_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("registrations.id", ondelete="CASCADE"), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)
    is_hidden: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_chat_messages_webinar_created", "webinar_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ChatMessage id={self.id} webinar={self.webinar_id}>"


# ---------------------------------------------------------------------------
# Q&A — upvote_count is derived from qa_upvotes
# ---------------------------------------------------------------------------
class QAQuestion(Base):
    __tablename__ = "qa_questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    webinar_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("webinars.id", ondelete="CASCADE"), nullable=False
    )
    registration_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("registrations.id", ondelete="CASCADE"), nullable=False
    )
    question: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=QuestionStatus.OPEN
    )
    is_highlighted: Mapped[bool] = mapped_column(Boolean, default=False)
    is_hidden: Mapped[bool] = mapped_column(Boolean, default=False)
    upvote_count: Mapped[int] = mapped_column(Integer, default=0)
    answered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_qa_questions_webinar_upvotes", "webinar_id", "upvote_count"),
    )

    def __repr__(self) -> str:
        return f"<QAQuestion id={self.id} upvotes={self.upvote_count} status={self.status}>"


class QAUpvote(Base):
    __tablename__ = "qa_upvotes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    question_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("qa_questions.id", ondelete="CASCADE"), nullable=False
    )
    registration_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("registrations.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("question_id", "registration_id", name="uq_qa_upvote_question_registration"),
    )

    def __repr__(self) -> str:
        return f"<QAUpvote question={self.question_id} registration={self.registration_id}>"


# ---------------------------------------------------------------------------
# Polls
# ---------------------------------------------------------------------------
class Poll(Base):
    __tablename__ = "polls"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    webinar_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("webinars.id", ondelete="CASCADE"), nullable=False
    )
    question: Mapped[str] = mapped_column(Text, nullable=False)
    # Ordered list of {"option_id": str, "text": str}, validated on write
    options: Mapped[list] = mapped_column(JSONB, nullable=False)
    allow_multiple: Mapped[bool] = mapped_column(Boolean, default=False)
    show_results_live: Mapped[bool] = mapped_column(Boolean, default=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PollStatus.DRAFT
    )
    activated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_polls_webinar_status", "webinar_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Poll id={self.id} status={self.status}>"


class PollResponse(Base):
    __tablename__ = "poll_responses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    poll_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("polls.id", ondelete="CASCADE"), nullable=False
    )
    registration_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("registrations.id", ondelete="CASCADE"), nullable=False
    )
    # List of option_id strings, no duplicates
    selected_options: Mapped[list] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("poll_id", "registration_id", name="uq_poll_response_poll_registration"),
    )

    def __repr__(self) -> str:
        return f"<PollResponse poll={self.poll_id} registration={self.registration_id}>"


# ---------------------------------------------------------------------------
# Reactions
# ---------------------------------------------------------------------------
class Reaction(Base):
    __tablename__ = "reactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    webinar_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("webinars.id", ondelete="CASCADE"), nullable=False
    )
    registration_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("registrations.id", ondelete="CASCADE"), nullable=False
    )
    emoji: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_reactions_webinar_created", "webinar_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Reaction id={self.id} emoji={self.emoji}>"


# ---------------------------------------------------------------------------
# Watch sessions
# ---------------------------------------------------------------------------
class WatchSession(Base):
    __tablename__ = "watch_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    webinar_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("webinars.id", ondelete="CASCADE"), nullable=False
    )
    registration_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("registrations.id", ondelete="CASCADE"), nullable=False
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    last_position_seconds: Mapped[int] = mapped_column(Integer, default=0)
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0)
    # Subset of {25, 50, 75, 100}, ascending
    milestones_hit: Mapped[list] = mapped_column(JSONB, default=list)

    __table_args__ = (
        Index("ix_watch_sessions_webinar_registration", "webinar_id", "registration_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<WatchSession id={self.id} pos={self.last_position_seconds}"
            f"/{self.duration_seconds} milestones={self.milestones_hit}>"
        )


# ---------------------------------------------------------------------------
# Engagement ledger — append-only, idempotent on source_id
# ---------------------------------------------------------------------------
class EngagementEvent(Base):
    __tablename__ = "engagement_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    webinar_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("webinars.id", ondelete="CASCADE"), nullable=False
    )
    registration_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("registrations.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, default=dict)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    source_id: Mapped[str | None] = mapped_column(String(120), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_engagement_events_webinar_registration", "webinar_id", "registration_id"),
        Index("ix_engagement_events_webinar_kind", "webinar_id", "kind"),
        Index(
            "uq_engagement_events_source_id",
            "source_id",
            unique=True,
            postgresql_where=text("source_id IS NOT NULL"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<EngagementEvent id={self.id} kind={self.kind} "
            f"points={self.points_awarded}>"
        )


class EngagementWeight(Base):
    """One company override of a kind's point value.

    Kinds without a row fall back to
    :data:`~auditorium.engine.events.DEFAULT_POINTS`.
    """

    __tablename__ = "engagement_weights"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[str] = mapped_column(String(36), nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("company_id", "kind", name="uq_engagement_weight_company_kind"),
    )

    def __repr__(self) -> str:
        return f"<EngagementWeight company={self.company_id} {self.kind}={self.points}>"
