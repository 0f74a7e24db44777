"""
auditorium.realtime.gateway — Per-Connection Frame Handler
===========================================================

A :class:`GatewaySession` is the server half of one viewer connection.  It
owns the connection's hub subscriptions and presence entries, turns client
frames into hub/presence operations, and queues server frames on
``outbound`` for whatever carries them (the WebSocket route, or
:class:`~auditorium.client.transport.InMemoryTransport` in tests).

A session may only touch topics of the webinar it was authenticated for.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from auditorium.realtime.hub import BroadcastHub
from auditorium.realtime.messages import (
    Action,
    ServerEvent,
    frame,
    presence_topic,
    topic_webinar,
)
from auditorium.realtime.presence import PresenceTracker

logger = logging.getLogger(__name__)


class GatewaySession:
    """Server-side state of one realtime connection."""

    def __init__(
        self,
        hub: BroadcastHub,
        presence: PresenceTracker,
        *,
        webinar_id: str,
        registration_id: str,
        display_name: str,
        connection_id: str | None = None,
    ) -> None:
        self.hub = hub
        self.presence = presence
        self.webinar_id = webinar_id
        self.registration_id = registration_id
        self.display_name = display_name
        self.connection_id = connection_id or str(uuid.uuid4())
        self.outbound: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.closed = False
        self._subscriptions: dict[str, int] = {}
        self._tracked: set[str] = set()

    # -------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------
    def send(self, message: dict[str, Any]) -> None:
        if not self.closed:
            self.outbound.put_nowait(message)

    def _error(self, topic: str, reason: str) -> None:
        logger.debug("Gateway %s rejected frame on %s: %s", self.connection_id, topic, reason)
        self.send(frame(topic, ServerEvent.ERROR, {"reason": reason}))

    # -------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------
    def handle(self, data: dict[str, Any]) -> None:
        """Apply one client frame."""
        if self.closed:
            return
        try:
            action = Action(data.get("action"))
        except ValueError:
            self._error(str(data.get("topic", "")), f"unknown action {data.get('action')!r}")
            return

        if action is Action.HEARTBEAT:
            self.presence.touch(self.connection_id)
            return

        topic = str(data.get("topic") or "")
        if topic_webinar(topic) != self.webinar_id:
            self._error(topic, "topic not allowed")
            return

        if action is Action.SUBSCRIBE:
            self._subscribe(topic)
        elif action is Action.UNSUBSCRIBE:
            self._unsubscribe(topic)
        elif action is Action.TRACK:
            self._track(topic)
        elif action is Action.UNTRACK:
            self._untrack(topic)

    def _subscribe(self, topic: str) -> None:
        if topic not in self._subscriptions:
            self._subscriptions[topic] = self.hub.subscribe(topic, self.send)
        self.send(frame(topic, ServerEvent.SUBSCRIBED, {}))

    def _unsubscribe(self, topic: str) -> None:
        token = self._subscriptions.pop(topic, None)
        if token is not None:
            self.hub.unsubscribe(token)

    def _track(self, topic: str) -> None:
        if topic != presence_topic(self.webinar_id):
            self._error(topic, "presence requires a presence topic")
            return
        if topic not in self._subscriptions:
            self._subscriptions[topic] = self.hub.subscribe(topic, self.send)
        self._tracked.add(topic)
        joined = self.presence.join(
            topic, self.connection_id, self.registration_id, self.display_name,
        )
        # The tracker's own view is authoritative for this connection.
        snapshot = [m.to_dict() for m in self.presence.snapshot(topic)]
        self.send(frame(topic, ServerEvent.SYNC, {"viewers": snapshot}))
        if joined is not None:
            self.hub.publish(topic, frame(topic, ServerEvent.JOIN, joined.to_dict()))

    def _untrack(self, topic: str) -> None:
        if topic not in self._tracked:
            return
        self._tracked.discard(topic)
        left = self.presence.leave(topic, self.connection_id)
        if left is not None:
            self.hub.publish(topic, frame(topic, ServerEvent.LEAVE, left.to_dict()))

    # -------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------
    def close(self) -> None:
        """Release every subscription and presence entry.  Idempotent."""
        if self.closed:
            return
        for topic in list(self._tracked):
            self._untrack(topic)
        self.closed = True
        for token in self._subscriptions.values():
            self.hub.unsubscribe(token)
        self._subscriptions.clear()
        logger.debug("Gateway session %s closed", self.connection_id)


# ---------------------------------------------------------------------------
# Liveness sweep
# ---------------------------------------------------------------------------
class PresenceReaper:
    """Background task that expires presence entries without heartbeats.

    Every ``interval`` seconds, connections silent for longer than
    ``timeout`` are dropped and a ``leave`` is broadcast for each registrant
    that lost its last connection.
    """

    def __init__(
        self,
        hub: BroadcastHub,
        presence: PresenceTracker,
        timeout: float,
        interval: float | None = None,
    ) -> None:
        self.hub = hub
        self.presence = presence
        self.timeout = timeout
        self.interval = interval if interval is not None else max(timeout / 2, 1.0)
        self._task: asyncio.Task | None = None

    def sweep_once(self) -> int:
        expired = self.presence.expire_stale(self.timeout)
        for topic, meta in expired:
            self.hub.publish(topic, frame(topic, ServerEvent.LEAVE, meta.to_dict()))
        return len(expired)

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start the background sweep task."""
        if self._task is not None:
            return

        async def _sweep_loop() -> None:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    self.sweep_once()
                except Exception:
                    logger.exception("Presence sweep error")

        self._task = loop.create_task(_sweep_loop(), name="presence-reaper")

    def stop(self) -> None:
        """Cancel the sweep task."""
        if self._task:
            self._task.cancel()
            self._task = None
