"""
auditorium.realtime.messages — Change Events and Wire Frames
=============================================================

Everything that crosses the realtime boundary is a plain JSON object.

Client → server frames (``action`` key)::

    {"action": "subscribe",   "topic": "webinar:<id>"}
    {"action": "unsubscribe", "topic": "webinar:<id>"}
    {"action": "track",       "topic": "presence:<id>", "meta": {...}}
    {"action": "untrack",     "topic": "presence:<id>"}
    {"action": "heartbeat"}

Server → client frames (``event`` key)::

    {"topic": "webinar:<id>",  "event": "change", "payload": ChangeEvent}
    {"topic": "presence:<id>", "event": "sync" | "join" | "leave", "payload": {...}}
    {"topic": "...",           "event": "subscribed" | "error", "payload": {...}}
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import inspect


class Operation(enum.StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class Action(enum.StrEnum):
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    TRACK = "track"
    UNTRACK = "untrack"
    HEARTBEAT = "heartbeat"


class ServerEvent(enum.StrEnum):
    CHANGE = "change"
    SYNC = "sync"
    JOIN = "join"
    LEAVE = "leave"
    SUBSCRIBED = "subscribed"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Topics
# ---------------------------------------------------------------------------
def webinar_topic(webinar_id: str) -> str:
    return f"webinar:{webinar_id}"


def presence_topic(webinar_id: str) -> str:
    return f"presence:{webinar_id}"


def topic_webinar(topic: str) -> str | None:
    """Return the webinar id a topic belongs to, or None if malformed."""
    prefix, sep, webinar_id = topic.partition(":")
    if not sep or prefix not in ("webinar", "presence") or not webinar_id:
        return None
    return webinar_id


# ---------------------------------------------------------------------------
# Record serialization
# ---------------------------------------------------------------------------
def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.isoformat()
    return value


def to_record(row: Any) -> dict[str, Any]:
    """Flatten an ORM row into a JSON-safe dict of its column values.

    Naive timestamps (SQLite) are tagged as UTC so every consumer sees
    comparable, timezone-aware values.
    """
    mapper = inspect(row).mapper
    return {
        attr.key: _jsonable(getattr(row, attr.key))
        for attr in mapper.column_attrs
    }


def parse_timestamp(value: Any) -> datetime | None:
    """Inverse of the timestamp half of :func:`to_record`."""
    if value is None:
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


# ---------------------------------------------------------------------------
# ChangeEvent — one Event Store mutation
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """A row-level insert/update/delete notification for one webinar."""

    operation: Operation
    table: str
    webinar_id: str
    record: dict[str, Any] = field(default_factory=dict)

    @property
    def topic(self) -> str:
        return webinar_topic(self.webinar_id)

    @property
    def record_id(self) -> str | None:
        return self.record.get("id")

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": str(self.operation),
            "table": self.table,
            "webinar_id": self.webinar_id,
            "record": self.record,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChangeEvent:
        return cls(
            operation=Operation(data["operation"]),
            table=data["table"],
            webinar_id=data["webinar_id"],
            record=dict(data.get("record") or {}),
        )

    @classmethod
    def of(cls, operation: Operation, row: Any, webinar_id: str) -> ChangeEvent:
        """Build an event from an ORM row."""
        return cls(
            operation=operation,
            table=row.__tablename__,
            webinar_id=webinar_id,
            record=to_record(row),
        )


def frame(topic: str, event: ServerEvent, payload: dict[str, Any]) -> dict[str, Any]:
    return {"topic": topic, "event": str(event), "payload": payload}
