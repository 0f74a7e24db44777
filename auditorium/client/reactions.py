"""
auditorium.client.reactions — Floating Emoji Reactions
=======================================================

Reactions are ephemeral: each one floats for ``lifetime`` seconds and then
disappears, and at most ``capacity`` float at once (oldest evicted first).
Per-emoji counts keep growing for the life of the unit.

Sends are debounced per viewer; a send inside the debounce window is
refused locally with code ``debounced``.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from auditorium.client.base import SyncUnit
from auditorium.client.results import MutationResult
from auditorium.constants import (
    MAX_FLOATING_REACTIONS,
    REACTION_DEBOUNCE_SECONDS,
    REACTION_EMOJIS,
    REACTION_LIFETIME_SECONDS,
)
from auditorium.engine.features import Feature
from auditorium.errors import InvalidInputError
from auditorium.realtime.messages import ChangeEvent, Operation, parse_timestamp

_SEEN_LIMIT = 500


@dataclass(frozen=True, slots=True)
class ReactionView:
    id: str
    registration_id: str
    emoji: str
    created_at: datetime | None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> ReactionView:
        return cls(
            id=record["id"],
            registration_id=record.get("registration_id", ""),
            emoji=record.get("emoji", ""),
            created_at=parse_timestamp(record.get("created_at")),
        )


class ReactionSync(SyncUnit):
    tables = ("reactions",)

    def __init__(
        self,
        connection,
        writer,
        context,
        *,
        capacity: int = MAX_FLOATING_REACTIONS,
        lifetime: float = REACTION_LIFETIME_SECONDS,
        debounce: float = REACTION_DEBOUNCE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(connection, writer, context)
        self.capacity = capacity
        self.lifetime = lifetime
        self.debounce = debounce
        self._clock = clock
        self._floating: deque[ReactionView] = deque()
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._seen: deque[str] = deque()
        self._seen_ids: set[str] = set()
        self._last_sent: float | None = None
        self.counts: Counter[str] = Counter()

    @property
    def floating(self) -> list[ReactionView]:
        return list(self._floating)

    # -------------------------------------------------------------------
    # Local buffer
    # -------------------------------------------------------------------
    def _remember(self, reaction_id: str) -> bool:
        """False if *reaction_id* was already seen."""
        if reaction_id in self._seen_ids:
            return False
        self._seen.append(reaction_id)
        self._seen_ids.add(reaction_id)
        if len(self._seen) > _SEEN_LIMIT:
            self._seen_ids.discard(self._seen.popleft())
        return True

    def _add(self, reaction: ReactionView) -> None:
        if not self._remember(reaction.id):
            return
        self.counts[reaction.emoji] += 1
        while len(self._floating) >= self.capacity:
            evicted = self._floating.popleft()
            self._cancel_timer(evicted.id)
        self._floating.append(reaction)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timers[reaction.id] = loop.call_later(self.lifetime, self._expire, reaction.id)

    def _cancel_timer(self, reaction_id: str) -> None:
        handle = self._timers.pop(reaction_id, None)
        if handle is not None:
            handle.cancel()

    def _expire(self, reaction_id: str) -> None:
        self._timers.pop(reaction_id, None)
        self._floating = deque(r for r in self._floating if r.id != reaction_id)

    def _retract(self, reaction: ReactionView) -> None:
        self._cancel_timer(reaction.id)
        before = len(self._floating)
        self._expire(reaction.id)
        if len(self._floating) < before:
            self.counts[reaction.emoji] -= 1

    # -------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------
    def apply_change(self, change: ChangeEvent) -> None:
        if change.operation is Operation.INSERT and change.record_id is not None:
            self._add(ReactionView.from_record(change.record))

    async def unmount(self) -> None:
        await super().unmount()
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._floating.clear()

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    async def react(self, emoji: str) -> MutationResult:
        if emoji not in REACTION_EMOJIS:
            return MutationResult.failed(InvalidInputError(f"Unsupported reaction: {emoji!r}"))
        blocked = self._gate(Feature.REACTIONS)
        if blocked is not None:
            return blocked
        now = self._clock()
        if self._last_sent is not None and now - self._last_sent < self.debounce:
            return MutationResult.failed(
                InvalidInputError("Reactions are being sent too quickly", code="debounced")
            )
        self._last_sent = now

        reaction = ReactionView(
            id=str(uuid.uuid4()),
            registration_id=self.registration_id,
            emoji=emoji,
            created_at=datetime.now(UTC),
        )
        return await self._mutate(
            reaction.id,
            lambda: self.writer.send_reaction(reaction.id, emoji),
            apply=lambda: self._add(reaction),
            rollback=lambda: self._retract(reaction),
        )
