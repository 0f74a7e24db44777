"""
auditorium.client.qa — Q&A Sync Unit
=====================================

Local list of questions, ordered by ``upvote_count`` (desc) then
``created_at`` (asc), re-sorted on every change.

``has_upvoted`` is local knowledge: it comes from the snapshot's
``upvoted_ids`` and the viewer's own toggles, and survives every update
event for the question.

Upvote toggle:
    1. Flip ``has_upvoted`` and adjust the count by ±1 locally.
    2. Insert or delete the upvote row.
    3. On success adopt the server's count; on failure reverse step 1;
       on a constraint violation keep the flipped flag but take the ±1
       back, since the server already reflected it.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from auditorium.client.base import SyncUnit
from auditorium.client.results import MutationResult
from auditorium.constants import MAX_QUESTION_LENGTH
from auditorium.engine.features import Feature
from auditorium.errors import InvalidInputError, NotFoundError
from auditorium.realtime.messages import ChangeEvent, Operation, parse_timestamp

_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True, slots=True)
class QuestionView:
    id: str
    registration_id: str
    question: str
    created_at: datetime | None
    answer: str | None = None
    status: str = "open"
    is_highlighted: bool = False
    is_hidden: bool = False
    upvote_count: int = 0
    has_upvoted: bool = False

    @classmethod
    def from_record(cls, record: dict[str, Any], *, has_upvoted: bool = False) -> QuestionView:
        return cls(
            id=record["id"],
            registration_id=record.get("registration_id", ""),
            question=record.get("question", ""),
            created_at=parse_timestamp(record.get("created_at")),
            answer=record.get("answer"),
            status=record.get("status") or "open",
            is_highlighted=bool(record.get("is_highlighted")),
            is_hidden=bool(record.get("is_hidden")),
            upvote_count=int(record.get("upvote_count") or 0),
            has_upvoted=has_upvoted,
        )


def _clamped(question: QuestionView) -> QuestionView:
    # Stored counts take raw optimistic deltas so a rollback is the exact inverse.
    if question.upvote_count >= 0:
        return question
    return replace(question, upvote_count=0)


class QASync(SyncUnit):
    tables = ("qa_questions",)

    def __init__(self, connection, writer, context) -> None:
        super().__init__(connection, writer, context)
        self._questions: dict[str, QuestionView] = {}

    @property
    def questions(self) -> list[QuestionView]:
        visible = [_clamped(q) for q in self._questions.values() if not q.is_hidden]
        return sorted(visible, key=lambda q: (-q.upvote_count, q.created_at or _EPOCH))

    def get(self, question_id: str) -> QuestionView | None:
        question = self._questions.get(question_id)
        return None if question is None else _clamped(question)

    # -------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------
    def seed(self, snapshot: dict[str, Any]) -> None:
        upvoted = set(snapshot.get("upvoted_ids") or ())
        self._questions = {}
        for record in snapshot.get("questions") or ():
            view = QuestionView.from_record(record, has_upvoted=record["id"] in upvoted)
            self._questions.setdefault(view.id, view)

    def apply_change(self, change: ChangeEvent) -> None:
        question_id = change.record_id
        if question_id is None:
            return
        current = self._questions.get(question_id)
        if change.operation is Operation.INSERT:
            if current is None:
                self._questions[question_id] = QuestionView.from_record(change.record)
        elif change.operation is Operation.UPDATE:
            if current is not None:
                self._questions[question_id] = QuestionView.from_record(
                    change.record, has_upvoted=current.has_upvoted,
                )
        elif change.operation is Operation.DELETE:
            self._questions.pop(question_id, None)

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    async def submit(self, text: str) -> MutationResult:
        blocked = self._gate(Feature.QA)
        if blocked is not None:
            return blocked
        body = (text or "").strip()
        if not body or len(body) > MAX_QUESTION_LENGTH:
            return MutationResult.failed(InvalidInputError(
                f"Questions must be 1 to {MAX_QUESTION_LENGTH} characters"
            ))

        question_id = str(uuid.uuid4())
        optimistic = QuestionView(
            id=question_id,
            registration_id=self.registration_id,
            question=body,
            created_at=datetime.now(UTC),
        )

        def apply() -> None:
            self._questions[question_id] = optimistic

        def rollback() -> None:
            self._questions.pop(question_id, None)

        def confirm(record: dict[str, Any]) -> None:
            current = self._questions.get(question_id)
            if current is not None:
                self._questions[question_id] = QuestionView.from_record(
                    record, has_upvoted=current.has_upvoted,
                )

        return await self._mutate(
            question_id,
            lambda: self.writer.submit_question(question_id, body),
            apply=apply,
            rollback=rollback,
            confirm=confirm,
        )

    def _shift(self, question_id: str, *, upvoted: bool, delta: int) -> None:
        current = self._questions.get(question_id)
        if current is not None:
            self._questions[question_id] = replace(
                current,
                has_upvoted=upvoted,
                upvote_count=current.upvote_count + delta,
            )

    async def toggle_upvote(self, question_id: str) -> MutationResult:
        """Upvote, or withdraw the viewer's upvote."""
        blocked = self._gate(Feature.QA)
        if blocked is not None:
            return blocked
        question = self._questions.get(question_id)
        if question is None:
            return MutationResult.failed(NotFoundError(f"Question not found: {question_id}"))
        if question_id in self.in_flight:
            return MutationResult.pending()

        adding = not question.has_upvoted
        delta = 1 if adding else -1

        def confirm(count: int) -> None:
            current = self._questions.get(question_id)
            if current is not None:
                self._questions[question_id] = replace(current, upvote_count=count)

        if adding:
            write = lambda: self.writer.add_upvote(question_id)  # noqa: E731
        else:
            write = lambda: self.writer.remove_upvote(question_id)  # noqa: E731

        return await self._mutate(
            question_id,
            write,
            apply=lambda: self._shift(question_id, upvoted=adding, delta=delta),
            rollback=lambda: self._shift(question_id, upvoted=not adding, delta=-delta),
            confirm=confirm,
            on_duplicate=lambda: self._shift(question_id, upvoted=adding, delta=-delta),
        )
