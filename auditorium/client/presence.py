"""
auditorium.client.presence — Live Viewer Count
===============================================

Joins the webinar's presence topic and mirrors the gateway's viewer set.
``sync`` replaces the whole set, ``join`` / ``leave`` adjust it.  While the
connection is reconnecting or disconnected the count is marked ``stale``;
the next ``sync`` after reconnect clears it.
"""

from __future__ import annotations

import logging
from typing import Any

from auditorium.client.connection import ConnectionState, RealtimeConnection, Subscription
from auditorium.realtime.messages import ServerEvent, presence_topic

logger = logging.getLogger(__name__)


class PresenceView:
    def __init__(self, connection: RealtimeConnection, webinar_id: str, *, display_name: str = "") -> None:
        self.connection = connection
        self.webinar_id = webinar_id
        self.display_name = display_name
        self.topic = presence_topic(webinar_id)
        self.viewers: dict[str, dict[str, Any]] = {}
        self.stale = True
        self.mounted = False
        self._subscription: Subscription | None = None
        self._remove_listener = None

    @property
    def viewer_count(self) -> int:
        return len(self.viewers)

    async def mount(self) -> None:
        if self.mounted:
            return
        self.mounted = True
        self._subscription = await self.connection.subscribe(self.topic, self._on_frame)
        self._remove_listener = self.connection.on_state_change(self._on_state)
        await self.connection.track(self.topic, {"display_name": self.display_name})

    async def unmount(self) -> None:
        if not self.mounted:
            return
        self.mounted = False
        await self.connection.untrack(self.topic)
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        self.viewers.clear()

    async def __aenter__(self) -> PresenceView:
        await self.mount()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.unmount()

    def _on_state(self, state: ConnectionState) -> None:
        if state is not ConnectionState.CONNECTED:
            self.stale = True

    def _on_frame(self, message: dict[str, Any]) -> None:
        if not self.mounted:
            return
        event = message.get("event")
        payload = message.get("payload") or {}
        if event == ServerEvent.SYNC:
            self.viewers = {
                v["registration_id"]: v for v in payload.get("viewers") or ()
                if v.get("registration_id")
            }
            self.stale = False
        elif event == ServerEvent.JOIN:
            if payload.get("registration_id"):
                self.viewers[payload["registration_id"]] = payload
        elif event == ServerEvent.LEAVE:
            self.viewers.pop(payload.get("registration_id"), None)
        elif event == ServerEvent.ERROR:
            logger.warning("Presence error on %s: %s", self.topic, payload.get("reason"))
