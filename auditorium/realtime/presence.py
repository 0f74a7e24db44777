"""
auditorium.realtime.presence — Ephemeral Membership Registry
=============================================================

Tracks which registrants currently have a live viewing session, per presence
topic.  Nothing is persisted: a process restart empties the registry and
every client re-tracks on reconnect.

Entries are keyed by ``registration_id``.  A registrant with two open tabs
holds two connections under one key and counts as one viewer; ``join`` fires
for the first connection and ``leave`` for the last.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PresenceMeta:
    """What other viewers see about a present registrant."""

    registration_id: str
    display_name: str
    joined_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "registration_id": self.registration_id,
            "display_name": self.display_name,
            "joined_at": self.joined_at.isoformat(),
        }


@dataclass(slots=True)
class _Entry:
    meta: PresenceMeta
    # connection id → last heartbeat (monotonic seconds)
    connections: dict[str, float] = field(default_factory=dict)


class PresenceTracker:
    """Thread-safe presence registry.

    ``join``/``leave`` return the meta that changed membership, or ``None``
    when the call only added/removed a secondary connection.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        # topic → registration_id → entry
        self._topics: dict[str, dict[str, _Entry]] = {}

    def join(
        self,
        topic: str,
        connection_id: str,
        registration_id: str,
        display_name: str,
    ) -> PresenceMeta | None:
        now = self._clock()
        with self._lock:
            members = self._topics.setdefault(topic, {})
            entry = members.get(registration_id)
            if entry is not None:
                entry.connections[connection_id] = now
                return None
            meta = PresenceMeta(
                registration_id=registration_id,
                display_name=display_name,
                joined_at=datetime.now(UTC),
            )
            members[registration_id] = _Entry(meta=meta, connections={connection_id: now})
        logger.debug("Presence join topic=%s registration=%s", topic, registration_id)
        return meta

    def leave(self, topic: str, connection_id: str) -> PresenceMeta | None:
        with self._lock:
            members = self._topics.get(topic)
            if not members:
                return None
            for registration_id, entry in members.items():
                if connection_id in entry.connections:
                    del entry.connections[connection_id]
                    if entry.connections:
                        return None
                    del members[registration_id]
                    if not members:
                        del self._topics[topic]
                    logger.debug(
                        "Presence leave topic=%s registration=%s", topic, registration_id,
                    )
                    return entry.meta
        return None

    def touch(self, connection_id: str) -> None:
        """Record a heartbeat for every topic the connection is present on."""
        now = self._clock()
        with self._lock:
            for members in self._topics.values():
                for entry in members.values():
                    if connection_id in entry.connections:
                        entry.connections[connection_id] = now

    def snapshot(self, topic: str) -> list[PresenceMeta]:
        with self._lock:
            members = self._topics.get(topic, {})
            return sorted(
                (e.meta for e in members.values()),
                key=lambda m: (m.joined_at, m.registration_id),
            )

    def viewer_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, {}))

    def expire_stale(self, timeout: float) -> list[tuple[str, PresenceMeta]]:
        """Drop connections silent for more than *timeout* seconds.

        Returns ``(topic, meta)`` for every registrant that left as a result.
        """
        cutoff = self._clock() - timeout
        left: list[tuple[str, PresenceMeta]] = []
        with self._lock:
            for topic in list(self._topics):
                members = self._topics[topic]
                for registration_id in list(members):
                    entry = members[registration_id]
                    for conn_id, seen in list(entry.connections.items()):
                        if seen < cutoff:
                            del entry.connections[conn_id]
                    if not entry.connections:
                        del members[registration_id]
                        left.append((topic, entry.meta))
                if not members:
                    del self._topics[topic]
        if left:
            logger.info("Presence sweep expired %d viewer(s)", len(left))
        return left
