"""
auditorium.client.connection — Realtime Connection Lifecycle
=============================================================

One :class:`RealtimeConnection` per viewer.  It owns a single transport,
fans incoming frames out to topic handlers, keeps presence alive with
heartbeats, and reconnects on its own when the link drops.

State machine::

    IDLE ──open──▶ CONNECTING ──ok──▶ CONNECTED
                        │                 │ drop
                        ▼                 ▼
                   RECONNECTING ◀─────────┘
                        │ attempts exhausted
                        ▼
                   DISCONNECTED ──reconnect()──▶ RECONNECTING

    any state ──close()──▶ CLOSED

Reconnect uses exponential backoff with jitter and gives up after
``max_attempts`` consecutive failures (circuit breaker).  A DISCONNECTED
connection stays put until :meth:`RealtimeConnection.reconnect` is called.
On every successful (re)connect all subscribed topics are re-subscribed and
all tracked presence topics are re-tracked.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import random
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from auditorium.client.transport import Transport, TransportClosed
from auditorium.config import AuditoriumConfig
from auditorium.realtime.messages import Action

logger = logging.getLogger(__name__)

FrameHandler = Callable[[dict[str, Any]], None]
StateListener = Callable[["ConnectionState"], None]


class ConnectionState(enum.StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class ReconnectPolicy:
    """Backoff schedule for automatic reconnects."""

    max_attempts: int = 10
    base_backoff: float = 1.0
    max_backoff: float = 60.0
    jitter: float = 0.5

    @classmethod
    def from_config(cls, config: AuditoriumConfig) -> ReconnectPolicy:
        return cls(
            max_attempts=config.reconnect_max_attempts,
            base_backoff=config.reconnect_base_backoff,
            max_backoff=config.reconnect_max_backoff,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait before reconnect *attempt* (1-based)."""
        backoff = min(self.base_backoff * (2 ** max(attempt - 1, 0)), self.max_backoff)
        return backoff + random.uniform(0, backoff * self.jitter)


class Subscription:
    """Handle returned by :meth:`RealtimeConnection.subscribe`."""

    def __init__(self, connection: RealtimeConnection, topic: str, handler: FrameHandler) -> None:
        self.connection = connection
        self.topic = topic
        self.handler = handler
        self.active = True

    async def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            await self.connection._remove_handler(self.topic, self.handler)


class RealtimeConnection:
    """Client side of the realtime channel.

    Parameters
    ----------
    transport_factory:
        Returns a fresh, unconnected transport for each attempt.
    policy:
        Reconnect backoff and circuit-breaker settings.
    heartbeat_interval:
        Seconds between heartbeat frames while connected.
    sleep:
        Awaitable sleep used for backoff; tests inject a no-op.
    """

    def __init__(
        self,
        transport_factory: Callable[[], Transport],
        *,
        policy: ReconnectPolicy | None = None,
        heartbeat_interval: float = 25.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._factory = transport_factory
        self.policy = policy or ReconnectPolicy()
        self.heartbeat_interval = heartbeat_interval
        self._sleep = sleep

        self._state = ConnectionState.IDLE
        self._transport: Transport | None = None
        self._handlers: dict[str, list[FrameHandler]] = defaultdict(list)
        self._tracked: dict[str, dict[str, Any]] = {}
        self._listeners: list[StateListener] = []
        self._reader_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self.reconnect_attempts = 0

    # -------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that removes it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug("Realtime connection %s → %s", self._state, state)
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Connection state listener failed")

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    async def open(self) -> None:
        """Connect once; on failure fall through to automatic reconnect."""
        if self._state is not ConnectionState.IDLE:
            return
        self._set_state(ConnectionState.CONNECTING)
        try:
            await self._connect_once()
        except (TransportClosed, OSError) as exc:
            logger.warning("Realtime connect failed: %s", exc)
            self._start_reconnect()

    async def close(self) -> None:
        """Tear everything down.  Handlers are dropped; CLOSED is final."""
        if self._state is ConnectionState.CLOSED:
            return
        self._set_state(ConnectionState.CLOSED)
        for task in (self._reconnect_task, self._heartbeat_task, self._reader_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
        self._reconnect_task = self._heartbeat_task = self._reader_task = None
        await self._close_transport()
        self._handlers.clear()
        self._tracked.clear()
        self._listeners.clear()

    async def reconnect(self) -> None:
        """Manual retry after the circuit breaker tripped."""
        if self._state is not ConnectionState.DISCONNECTED:
            return
        self._start_reconnect()

    async def __aenter__(self) -> RealtimeConnection:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def wait_connected(self) -> bool:
        """Wait for a pending reconnect to settle; True if connected."""
        if self._reconnect_task is not None:
            await asyncio.shield(self._reconnect_task)
        return self.connected

    # -------------------------------------------------------------------
    # Topics
    # -------------------------------------------------------------------
    async def subscribe(self, topic: str, handler: FrameHandler) -> Subscription:
        first = not self._handlers[topic]
        self._handlers[topic].append(handler)
        if first:
            await self._send_if_connected({"action": str(Action.SUBSCRIBE), "topic": topic})
        return Subscription(self, topic, handler)

    async def _remove_handler(self, topic: str, handler: FrameHandler) -> None:
        handlers = self._handlers.get(topic)
        if not handlers or handler not in handlers:
            return
        handlers.remove(handler)
        if not handlers:
            del self._handlers[topic]
            await self._send_if_connected({"action": str(Action.UNSUBSCRIBE), "topic": topic})

    async def track(self, topic: str, meta: dict[str, Any] | None = None) -> None:
        """Announce presence on *topic*; replayed after every reconnect."""
        self._tracked[topic] = dict(meta or {})
        await self._send_if_connected(
            {"action": str(Action.TRACK), "topic": topic, "meta": self._tracked[topic]}
        )

    async def untrack(self, topic: str) -> None:
        if self._tracked.pop(topic, None) is not None:
            await self._send_if_connected({"action": str(Action.UNTRACK), "topic": topic})

    async def publish(self, message: dict[str, Any]) -> bool:
        """Send a raw client frame.  Returns False when not connected."""
        return await self._send_if_connected(message)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    async def _send_if_connected(self, message: dict[str, Any]) -> bool:
        if not self.connected or self._transport is None:
            return False
        try:
            await self._transport.send(message)
        except (TransportClosed, OSError) as exc:
            logger.warning("Realtime send failed: %s", exc)
            return False
        return True

    async def _connect_once(self) -> None:
        transport = self._factory()
        await transport.connect()
        for topic in list(self._handlers):
            await transport.send({"action": str(Action.SUBSCRIBE), "topic": topic})
        for topic, meta in list(self._tracked.items()):
            await transport.send({"action": str(Action.TRACK), "topic": topic, "meta": meta})

        self._transport = transport
        self.reconnect_attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        loop = asyncio.get_running_loop()
        self._reader_task = loop.create_task(self._read_loop(transport), name="realtime-reader")
        if self.heartbeat_interval > 0:
            self._heartbeat_task = loop.create_task(
                self._heartbeat_loop(transport), name="realtime-heartbeat",
            )

    async def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            await transport.close()
        except (TransportClosed, OSError):
            logger.debug("Transport already closed")

    async def _read_loop(self, transport: Transport) -> None:
        while True:
            try:
                message = await transport.receive()
            except (TransportClosed, OSError) as exc:
                if transport is self._transport and self._state is ConnectionState.CONNECTED:
                    logger.warning("Realtime connection dropped: %s", exc)
                    self._on_drop()
                return
            self._dispatch(message)

    async def _heartbeat_loop(self, transport: Transport) -> None:
        while transport is self._transport:
            await asyncio.sleep(self.heartbeat_interval)
            if transport is not self._transport:
                return
            try:
                await transport.send({"action": str(Action.HEARTBEAT)})
            except (TransportClosed, OSError):
                # The reader notices the drop.
                return

    def _dispatch(self, message: dict[str, Any]) -> None:
        topic = message.get("topic")
        for handler in list(self._handlers.get(topic, ())):
            try:
                handler(message)
            except Exception:
                logger.exception("Realtime handler failed for %s", topic)

    def _on_drop(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        self._reader_task = None
        transport, self._transport = self._transport, None
        if transport is not None:
            asyncio.get_running_loop().create_task(transport.close())
        self._start_reconnect()

    def _start_reconnect(self) -> None:
        if self._state is ConnectionState.CLOSED:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._set_state(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_loop(), name="realtime-reconnect",
        )

    async def _reconnect_loop(self) -> None:
        self.reconnect_attempts = 0
        while self.reconnect_attempts < self.policy.max_attempts:
            self.reconnect_attempts += 1
            delay = self.policy.delay(self.reconnect_attempts)
            logger.info(
                "Reconnecting in %.1fs (attempt %d/%d)",
                delay, self.reconnect_attempts, self.policy.max_attempts,
            )
            await self._sleep(delay)
            if self._state is ConnectionState.CLOSED:
                return
            try:
                await self._connect_once()
            except (TransportClosed, OSError) as exc:
                logger.warning("Reconnect attempt %d failed: %s", self.reconnect_attempts, exc)
                continue
            logger.info("Realtime connection re-established")
            self._reconnect_task = None
            return

        logger.critical(
            "Realtime reconnect gave up after %d attempts",
            self.policy.max_attempts,
        )
        self._reconnect_task = None
        self._set_state(ConnectionState.DISCONNECTED)
