"""
auditorium.services.reconciliation_service — Recompute Derived Values
======================================================================

Audit/repair path for the counters the hot path maintains incrementally.

How it works:
    1. Count the detail rows (``qa_upvotes``, ``poll_responses``).
    2. Compare against the stored or projected value.
    3. On mismatch, overwrite the counter with the true count and broadcast
       the corrected row so viewers converge too.
    4. Log all corrections for audit.

Detail rows are the single source of truth; nothing here ever edits them.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import Engine, func, select

from auditorium.database.engine import get_session
from auditorium.database.models import QAQuestion, QAUpvote
from auditorium.realtime.feed import ChangeFeed, NullFeed
from auditorium.realtime.messages import ChangeEvent, Operation
from auditorium.services.poll_service import get_poll_results

logger = logging.getLogger(__name__)


def recompute_upvote_counts(
    engine: Engine,
    feed: ChangeFeed | None = None,
    *,
    webinar_id: str | None = None,
) -> dict:
    """Reset every ``upvote_count`` to ``COUNT(qa_upvotes)``.

    Returns ``{"checked": N, "corrected": M, "corrections": [...], "timestamp": ...}``.
    """
    feed = feed or NullFeed()
    corrections: list[dict] = []

    with get_session(engine) as session:
        truth_q = (
            select(QAUpvote.question_id, func.count().label("actual"))
            .group_by(QAUpvote.question_id)
        )
        truth_map: dict[str, int] = {
            row.question_id: row.actual for row in session.execute(truth_q).all()
        }

        questions_q = select(QAQuestion)
        if webinar_id is not None:
            questions_q = questions_q.where(QAQuestion.webinar_id == webinar_id)
        questions = session.scalars(questions_q).all()

        for question in questions:
            actual = truth_map.get(question.id, 0)
            stored = question.upvote_count or 0
            if stored != actual:
                corrections.append({
                    "question_id": question.id,
                    "stored": stored,
                    "actual": actual,
                    "diff": actual - stored,
                })
                question.upvote_count = actual

        session.flush()
        corrected_ids = {c["question_id"] for c in corrections}
        for question in questions:
            if question.id in corrected_ids:
                feed.emit(session, ChangeEvent.of(Operation.UPDATE, question, question.webinar_id))

    checked = len(questions)
    if corrections:
        logger.warning(
            "Upvote reconciliation: corrected %d/%d counters: %s",
            len(corrections), checked, corrections,
        )
    else:
        logger.info("Upvote reconciliation: all %d counters match", checked)

    return {
        "checked": checked,
        "corrected": len(corrections),
        "corrections": corrections,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def recompute_poll_results(engine: Engine, poll_id: str) -> dict:
    """Poll results rebuilt from ``poll_responses``.

    Poll results are never stored, so there is nothing to correct; this is
    the authoritative projection a viewer's incremental view is checked
    against.
    """
    results = get_poll_results(engine, poll_id)
    logger.info(
        "Poll %s recomputed: %d response(s)", poll_id, results.total_responses,
    )
    return {
        **results.to_dict(),
        "timestamp": datetime.now(UTC).isoformat(),
    }
