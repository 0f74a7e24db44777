"""
auditorium.client.transport — Realtime Transports
==================================================

A transport moves JSON frames between one viewer and the gateway.  The
:class:`~auditorium.client.connection.RealtimeConnection` owns exactly one
at a time and asks its factory for a fresh one on every (re)connect.

:class:`InMemoryTransport` wires a connection straight to a
:class:`~auditorium.realtime.gateway.GatewaySession` in the same process: the
same gateway code the WebSocket route runs, minus the socket.  Frames are
round-tripped through JSON so nothing non-serializable slips through.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any, Protocol

from auditorium.realtime.gateway import GatewaySession

logger = logging.getLogger(__name__)


class TransportClosed(ConnectionError):
    """The transport is gone: handshake refused, link dropped, or closed."""


class Transport(Protocol):
    async def connect(self) -> None: ...

    async def send(self, message: dict[str, Any]) -> None: ...

    async def receive(self) -> dict[str, Any]: ...

    async def close(self) -> None: ...


_CLOSED = object()


class InMemoryTransport:
    """Transport bound to an in-process gateway session.

    Parameters
    ----------
    session_factory:
        Builds the server-side :class:`GatewaySession` on :meth:`connect`.
    refuse:
        When true, :meth:`connect` fails like a rejected handshake.
    """

    def __init__(
        self,
        session_factory: Callable[[], GatewaySession],
        *,
        refuse: bool = False,
    ) -> None:
        self._session_factory = session_factory
        self._refuse = refuse
        self.session: GatewaySession | None = None
        self.closed = False

    async def connect(self) -> None:
        if self._refuse:
            raise TransportClosed("handshake refused")
        self.session = self._session_factory()
        logger.debug("In-memory transport connected (%s)", self.session.connection_id)

    async def send(self, message: dict[str, Any]) -> None:
        if self.closed or self.session is None:
            raise TransportClosed("transport is closed")
        self.session.handle(json.loads(json.dumps(message)))

    async def receive(self) -> dict[str, Any]:
        if self.session is None:
            raise TransportClosed("transport is not connected")
        item = await self.session.outbound.get()
        if item is _CLOSED:
            raise TransportClosed("transport closed")
        return json.loads(json.dumps(item))

    def drop(self) -> None:
        """Simulate the link going away underneath the client."""
        if self.session is not None:
            self.session.close()
            self.session.outbound.put_nowait(_CLOSED)  # type: ignore[arg-type]
        self.closed = True

    async def close(self) -> None:
        if self.closed:
            return
        self.drop()
