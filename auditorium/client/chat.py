"""
auditorium.client.chat — Live Chat Sync Unit
=============================================

Keeps the viewer's chat buffer in step with ``chat_messages`` changes.
Hidden messages stay in the buffer (a host may unhide them) but are
filtered out of :attr:`ChatSync.messages`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from auditorium.client.base import SyncUnit, index_by_id
from auditorium.client.connection import RealtimeConnection
from auditorium.client.results import MutationResult
from auditorium.client.writer import EngagementWriter
from auditorium.constants import MAX_CHAT_MESSAGE_LENGTH
from auditorium.engine.features import Feature, WebinarContext
from auditorium.errors import InvalidInputError
from auditorium.realtime.messages import ChangeEvent, Operation, parse_timestamp
from auditorium.services.chat_service import clean_message


@dataclass(frozen=True, slots=True)
class ChatMessageView:
    id: str
    registration_id: str
    message: str
    created_at: datetime | None
    is_pinned: bool = False
    is_hidden: bool = False

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> ChatMessageView:
        return cls(
            id=record["id"],
            registration_id=record.get("registration_id", ""),
            message=record.get("message", ""),
            created_at=parse_timestamp(record.get("created_at")),
            is_pinned=bool(record.get("is_pinned")),
            is_hidden=bool(record.get("is_hidden")),
        )


class ChatSync(SyncUnit):
    tables = ("chat_messages",)

    def __init__(
        self,
        connection: RealtimeConnection,
        writer: EngagementWriter,
        context: WebinarContext,
        *,
        max_length: int = MAX_CHAT_MESSAGE_LENGTH,
    ) -> None:
        super().__init__(connection, writer, context)
        self.max_length = max_length
        self._buffer: dict[str, ChatMessageView] = {}

    # -------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------
    @property
    def messages(self) -> list[ChatMessageView]:
        """Visible messages in arrival order."""
        return [m for m in self._buffer.values() if not m.is_hidden]

    @property
    def pinned(self) -> list[ChatMessageView]:
        return [m for m in self._buffer.values() if m.is_pinned and not m.is_hidden]

    def get(self, message_id: str) -> ChatMessageView | None:
        return self._buffer.get(message_id)

    # -------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------
    def seed(self, snapshot: list[dict[str, Any]]) -> None:
        self._buffer = index_by_id(snapshot, ChatMessageView.from_record)

    def apply_change(self, change: ChangeEvent) -> None:
        message_id = change.record_id
        if message_id is None:
            return
        if change.operation is Operation.INSERT:
            if message_id not in self._buffer:
                self._buffer[message_id] = ChatMessageView.from_record(change.record)
        elif change.operation is Operation.UPDATE:
            if message_id in self._buffer:
                self._buffer[message_id] = ChatMessageView.from_record(change.record)
        elif change.operation is Operation.DELETE:
            self._buffer.pop(message_id, None)

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    async def send(self, text: str) -> MutationResult:
        """Show the message immediately, then persist it."""
        blocked = self._gate(Feature.CHAT)
        if blocked is not None:
            return blocked
        try:
            body = clean_message(text, self.max_length)
        except InvalidInputError as exc:
            return MutationResult.failed(exc)

        message_id = str(uuid.uuid4())
        optimistic = ChatMessageView(
            id=message_id,
            registration_id=self.registration_id,
            message=body,
            created_at=datetime.now(UTC),
        )

        def apply() -> None:
            self._buffer[message_id] = optimistic

        def rollback() -> None:
            self._buffer.pop(message_id, None)

        def confirm(record: dict[str, Any]) -> None:
            if message_id in self._buffer:
                self._buffer[message_id] = ChatMessageView.from_record(record)

        return await self._mutate(
            message_id,
            lambda: self.writer.send_chat_message(message_id, body),
            apply=apply,
            rollback=rollback,
            confirm=confirm,
        )
