"""
auditorium.client.polls — Poll Sync Unit
=========================================

Tracks polls and folds ``poll_responses`` inserts into per-poll results
incrementally with :func:`~auditorium.engine.polls.apply_response`.

* Response inserts are deduplicated by response id, so a replayed event
  never double-counts.
* The active poll is the most recently activated one with
  ``status == "active"``.
* A viewer votes once per poll; a second attempt is rejected locally and
  never reaches the server.  Results only move on broadcast events, the
  viewer's own vote included.
"""

from __future__ import annotations

import itertools
import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from auditorium.client.base import SyncUnit
from auditorium.client.results import MutationResult
from auditorium.database.models import PollStatus
from auditorium.engine.features import Feature
from auditorium.engine.polls import (
    OptionResult,
    PollOption,
    PollResults,
    apply_response,
    empty_results,
    parse_options,
    validate_selection,
)
from auditorium.errors import (
    AuditoriumError,
    DuplicateVoteError,
    FeatureDisabledError,
    NotFoundError,
)
from auditorium.realtime.messages import ChangeEvent, Operation, parse_timestamp

_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True, slots=True)
class PollView:
    id: str
    question: str
    options: tuple[PollOption, ...]
    status: str
    results: PollResults
    allow_multiple: bool = False
    show_results_live: bool = True
    activated_at: datetime | None = None
    closed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == PollStatus.ACTIVE

    @classmethod
    def from_record(cls, record: dict[str, Any], results: PollResults | None = None) -> PollView:
        options = tuple(parse_options(record.get("options")))
        if results is None:
            results = _results_from_snapshot(record["id"], options, record.get("results"))
        return cls(
            id=record["id"],
            question=record.get("question", ""),
            options=options,
            status=record.get("status") or PollStatus.DRAFT,
            results=results,
            allow_multiple=bool(record.get("allow_multiple")),
            show_results_live=bool(record.get("show_results_live", True)),
            activated_at=parse_timestamp(record.get("activated_at")),
            closed_at=parse_timestamp(record.get("closed_at")),
        )


def _results_from_snapshot(
    poll_id: str, options: tuple[PollOption, ...], raw: dict[str, Any] | None,
) -> PollResults:
    if not raw:
        return empty_results(poll_id, options)
    counts = {o["option_id"]: o for o in raw.get("options") or ()}
    return PollResults(
        poll_id=poll_id,
        total_responses=int(raw.get("total_responses") or 0),
        options=tuple(
            OptionResult(
                option_id=o.option_id,
                text=o.text,
                count=int(counts.get(o.option_id, {}).get("count", 0)),
                percentage=int(counts.get(o.option_id, {}).get("percentage", 0)),
            )
            for o in options
        ),
    )


class PollSync(SyncUnit):
    tables = ("polls", "poll_responses")

    def __init__(self, connection, writer, context) -> None:
        super().__init__(connection, writer, context)
        self._polls: dict[str, PollView] = {}
        self._seen_responses: set[str] = set()
        self._activation_order: dict[str, int] = {}
        self._sequence = itertools.count()
        self.my_votes: dict[str, tuple[str, ...]] = {}

    # -------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------
    @property
    def polls(self) -> list[PollView]:
        return list(self._polls.values())

    def get(self, poll_id: str) -> PollView | None:
        return self._polls.get(poll_id)

    @property
    def active_poll(self) -> PollView | None:
        active = [p for p in self._polls.values() if p.is_active]
        if not active:
            return None
        return max(
            active,
            key=lambda p: (p.activated_at or _EPOCH, self._activation_order.get(p.id, -1)),
        )

    def results_for(self, poll_id: str) -> PollResults | None:
        poll = self._polls.get(poll_id)
        return poll.results if poll is not None else None

    def has_voted(self, poll_id: str) -> bool:
        return poll_id in self.my_votes

    # -------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------
    def seed(self, snapshot: dict[str, Any]) -> None:
        self._polls = {}
        for record in snapshot.get("polls") or ():
            self._store(PollView.from_record(record))
        self.my_votes = {
            poll_id: tuple(selected)
            for poll_id, selected in (snapshot.get("my_votes") or {}).items()
        }

    def _store(self, poll: PollView) -> None:
        previous = self._polls.get(poll.id)
        if poll.is_active and (previous is None or not previous.is_active):
            self._activation_order[poll.id] = next(self._sequence)
        self._polls[poll.id] = poll

    def apply_change(self, change: ChangeEvent) -> None:
        if change.table == "polls":
            self._apply_poll(change)
        else:
            self._apply_response(change)

    def _apply_poll(self, change: ChangeEvent) -> None:
        poll_id = change.record_id
        if poll_id is None:
            return
        current = self._polls.get(poll_id)
        if change.operation is Operation.INSERT:
            if current is None:
                self._store(PollView.from_record(change.record, empty_results(
                    poll_id, parse_options(change.record.get("options")),
                )))
        elif change.operation is Operation.UPDATE:
            if current is not None:
                self._store(PollView.from_record(change.record, current.results))
            else:
                # Drafts stay out of attendee snapshots; adopt the full row
                # the first time it is announced.
                self._store(PollView.from_record(change.record, empty_results(
                    poll_id, parse_options(change.record.get("options")),
                )))
        elif change.operation is Operation.DELETE:
            self._polls.pop(poll_id, None)
            self._activation_order.pop(poll_id, None)

    def _apply_response(self, change: ChangeEvent) -> None:
        if change.operation is not Operation.INSERT:
            return
        record = change.record
        response_id = record.get("id")
        if response_id is None or response_id in self._seen_responses:
            return
        self._seen_responses.add(response_id)

        poll = self._polls.get(record.get("poll_id"))
        if poll is None:
            return
        selected = tuple(record.get("selected_options") or ())
        self._polls[poll.id] = replace(poll, results=apply_response(poll.results, selected))
        if record.get("registration_id") == self.registration_id:
            self.my_votes[poll.id] = selected

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    async def vote(self, poll_id: str, option_ids: list[str]) -> MutationResult:
        """Answer a poll once.  Counts move when the broadcast arrives."""
        if poll_id in self.my_votes:
            return MutationResult.duplicate(
                DuplicateVoteError("You already answered this poll"), applied_locally=False,
            )
        blocked = self._gate(Feature.POLLS)
        if blocked is not None:
            return blocked
        poll = self._polls.get(poll_id)
        if poll is None:
            return MutationResult.failed(NotFoundError(f"Poll not found: {poll_id}"))
        if not poll.is_active:
            return MutationResult.failed(FeatureDisabledError("This poll is not accepting responses"))
        try:
            selected = tuple(validate_selection(
                poll.options, option_ids, allow_multiple=poll.allow_multiple,
            ))
        except AuditoriumError as exc:
            return MutationResult.failed(exc)

        response_id = str(uuid.uuid4())

        def apply() -> None:
            self.my_votes[poll_id] = selected

        def rollback() -> None:
            self.my_votes.pop(poll_id, None)

        return await self._mutate(
            response_id,
            lambda: self.writer.submit_poll_response(response_id, poll_id, list(selected)),
            apply=apply,
            rollback=rollback,
        )
