"""Create webinar engagement tables

Revision ID: 5c2e9a71b3d4
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c2e9a71b3d4"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(36), primary_key=True)


def _fk(name: str, target: str) -> sa.Column:
    return sa.Column(
        name, sa.String(36), sa.ForeignKey(target, ondelete="CASCADE"), nullable=False,
    )


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(),
    )


def upgrade() -> None:
    """Create the Event Store and the engagement ledger."""
    op.create_table(
        "webinars",
        _id(),
        sa.Column("company_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("chat_enabled", sa.Boolean(), server_default=sa.true()),
        sa.Column("qa_enabled", sa.Boolean(), server_default=sa.true()),
        sa.Column("polls_enabled", sa.Boolean(), server_default=sa.true()),
        sa.Column("reactions_enabled", sa.Boolean(), server_default=sa.true()),
        sa.Column("replay_enabled", sa.Boolean(), server_default=sa.false()),
        _created_at(),
    )
    op.create_index("ix_webinars_company_id", "webinars", ["company_id"])

    op.create_table(
        "registrations",
        _id(),
        _fk("webinar_id", "webinars.id"),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        _created_at(),
        sa.UniqueConstraint("webinar_id", "email", name="uq_registration_webinar_email"),
    )

    op.create_table(
        "chat_messages",
        _id(),
        _fk("webinar_id", "webinars.id"),
        _fk("registration_id", "registrations.id"),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_pinned", sa.Boolean(), server_default=sa.false()),
        sa.Column("is_hidden", sa.Boolean(), server_default=sa.false()),
        _created_at(),
    )
    op.create_index(
        "ix_chat_messages_webinar_created", "chat_messages", ["webinar_id", "created_at"],
    )

    op.create_table(
        "qa_questions",
        _id(),
        _fk("webinar_id", "webinars.id"),
        _fk("registration_id", "registrations.id"),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("answer", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("is_highlighted", sa.Boolean(), server_default=sa.false()),
        sa.Column("is_hidden", sa.Boolean(), server_default=sa.false()),
        sa.Column("upvote_count", sa.Integer(), server_default="0"),
        sa.Column("answered_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_qa_questions_webinar_upvotes", "qa_questions", ["webinar_id", "upvote_count"],
    )

    op.create_table(
        "qa_upvotes",
        _id(),
        _fk("question_id", "qa_questions.id"),
        _fk("registration_id", "registrations.id"),
        _created_at(),
        sa.UniqueConstraint(
            "question_id", "registration_id", name="uq_qa_upvote_question_registration",
        ),
    )

    op.create_table(
        "polls",
        _id(),
        _fk("webinar_id", "webinars.id"),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("options", postgresql.JSONB(), nullable=False),
        sa.Column("allow_multiple", sa.Boolean(), server_default=sa.false()),
        sa.Column("show_results_live", sa.Boolean(), server_default=sa.true()),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_polls_webinar_status", "polls", ["webinar_id", "status"])

    op.create_table(
        "poll_responses",
        _id(),
        _fk("poll_id", "polls.id"),
        _fk("registration_id", "registrations.id"),
        sa.Column("selected_options", postgresql.JSONB(), nullable=False),
        _created_at(),
        sa.UniqueConstraint(
            "poll_id", "registration_id", name="uq_poll_response_poll_registration",
        ),
    )

    op.create_table(
        "reactions",
        _id(),
        _fk("webinar_id", "webinars.id"),
        _fk("registration_id", "registrations.id"),
        sa.Column("emoji", sa.String(16), nullable=False),
        _created_at(),
    )
    op.create_index("ix_reactions_webinar_created", "reactions", ["webinar_id", "created_at"])

    op.create_table(
        "watch_sessions",
        _id(),
        _fk("webinar_id", "webinars.id"),
        _fk("registration_id", "registrations.id"),
        _created_at("started_at"),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_position_seconds", sa.Integer(), server_default="0"),
        sa.Column("duration_seconds", sa.Integer(), server_default="0"),
        sa.Column("milestones_hit", postgresql.JSONB(), server_default=sa.text("'[]'::jsonb")),
    )
    op.create_index(
        "ix_watch_sessions_webinar_registration",
        "watch_sessions",
        ["webinar_id", "registration_id"],
    )

    op.create_table(
        "engagement_events",
        _id(),
        _fk("webinar_id", "webinars.id"),
        _fk("registration_id", "registrations.id"),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("payload", postgresql.JSONB(), server_default=sa.text("'{}'::jsonb")),
        sa.Column("points_awarded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("source_id", sa.String(120), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_engagement_events_webinar_registration",
        "engagement_events",
        ["webinar_id", "registration_id"],
    )
    op.create_index(
        "ix_engagement_events_webinar_kind", "engagement_events", ["webinar_id", "kind"],
    )
    op.create_index(
        "uq_engagement_events_source_id",
        "engagement_events",
        ["source_id"],
        unique=True,
        postgresql_where=sa.text("source_id IS NOT NULL"),
    )

    op.create_table(
        "engagement_weights",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.String(36), nullable=False),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        _created_at("updated_at"),
        sa.UniqueConstraint("company_id", "kind", name="uq_engagement_weight_company_kind"),
    )


def downgrade() -> None:
    """Drop every engagement table, children first."""
    for table in (
        "engagement_weights",
        "engagement_events",
        "watch_sessions",
        "reactions",
        "poll_responses",
        "polls",
        "qa_upvotes",
        "qa_questions",
        "chat_messages",
        "registrations",
        "webinars",
    ):
        op.drop_table(table)
