"""
auditorium.realtime.hub — Topic Fan-Out
========================================

In-process publish/subscribe registry.  Publishers may live on any thread
(service calls run on the ``run_db`` pool, the PG listener has its own
thread); each subscriber is invoked on the event loop it subscribed from.

Delivery is best-effort: a subscriber whose loop has closed is dropped with
a warning, and nothing is buffered for subscribers that join later.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

Callback = Callable[[dict[str, Any]], None]


@dataclass(frozen=True, slots=True)
class _Subscriber:
    token: int
    callback: Callback
    loop: asyncio.AbstractEventLoop | None


class BroadcastHub:
    """Thread-safe topic → subscriber registry.

    Usage:
        hub = BroadcastHub()
        token = hub.subscribe("webinar:w1", on_frame)
        hub.publish("webinar:w1", {...})
        hub.unsubscribe(token)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._topics: dict[str, dict[int, _Subscriber]] = {}
        self._token_topic: dict[int, str] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, topic: str, callback: Callback) -> int:
        """Register *callback* for *topic*; returns a token for unsubscribe.

        When called from a running event loop, deliveries are scheduled on
        that loop.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        with self._lock:
            token = next(self._tokens)
            self._topics.setdefault(topic, {})[token] = _Subscriber(token, callback, loop)
            self._token_topic[token] = topic
        logger.debug("Hub subscribe topic=%s token=%d", topic, token)
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            topic = self._token_topic.pop(token, None)
            if topic is None:
                return
            subs = self._topics.get(topic, {})
            subs.pop(token, None)
            if not subs:
                self._topics.pop(topic, None)
        logger.debug("Hub unsubscribe topic=%s token=%d", topic, token)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, {}))

    def publish(self, topic: str, message: dict[str, Any]) -> int:
        """Deliver *message* to every subscriber of *topic*.

        Returns the number of subscribers it was handed to.
        """
        with self._lock:
            subscribers = list(self._topics.get(topic, {}).values())

        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None

        delivered = 0
        for sub in subscribers:
            if sub.loop is None or sub.loop is current:
                self._invoke(sub, message)
                delivered += 1
            elif sub.loop.is_closed():
                logger.warning("Dropping subscriber %d on closed loop (%s)", sub.token, topic)
                self.unsubscribe(sub.token)
            else:
                sub.loop.call_soon_threadsafe(self._invoke, sub, message)
                delivered += 1
        return delivered

    @staticmethod
    def _invoke(sub: _Subscriber, message: dict[str, Any]) -> None:
        try:
            sub.callback(message)
        except Exception:
            logger.exception("Hub subscriber %d failed", sub.token)
