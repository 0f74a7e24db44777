"""
auditorium.realtime.listener — PG LISTEN/NOTIFY Background Thread
==================================================================

Multi-process fan-out.  Each API process runs one listener thread that
LISTENs on:

* ``webinar_changes`` — JSON :class:`~auditorium.realtime.messages.ChangeEvent`
  payloads, republished to the process-local hub.
* ``config_changed`` — a table name; forwarded to registered invalidation
  callbacks (the :class:`~auditorium.engine.weights.WeightCache`).

The connection is re-established with exponential backoff plus jitter.
After ``max_reconnect_attempts`` consecutive failures the listener gives up
and reports ``listener_failed``; the health endpoint surfaces that state.
"""

from __future__ import annotations

import json
import logging
import random
import select as _select
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from auditorium.realtime.feed import CHANGES_CHANNEL, CONFIG_CHANNEL
from auditorium.realtime.hub import BroadcastHub
from auditorium.realtime.messages import ChangeEvent, ServerEvent, frame

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class PgNotifyListener:
    """Forward PG notifications into the local hub and caches."""

    def __init__(
        self,
        engine: Engine,
        hub: BroadcastHub,
        *,
        base_backoff: float = 1.0,
        max_backoff: float = 60.0,
        max_reconnect_attempts: int = 10,
    ) -> None:
        self._engine = engine
        self.hub = hub
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self.max_reconnect_attempts = max_reconnect_attempts
        self._invalidation_callbacks: list[Callable[[str], None]] = []
        self._listener_healthy: bool = False
        self._listener_failed: bool = False
        self._listener_thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()

    def on_invalidate(self, callback: Callable[[str], None]) -> None:
        self._invalidation_callbacks.append(callback)

    # -------------------------------------------------------------------
    # Payload routing
    # -------------------------------------------------------------------
    def handle_notify(self, channel: str, payload: str) -> None:
        """Route one notification by channel."""
        if channel == CHANGES_CHANNEL:
            try:
                change = ChangeEvent.from_dict(json.loads(payload))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                logger.warning("Invalid change payload: %s", payload[:200])
                return
            self.hub.publish(
                change.topic, frame(change.topic, ServerEvent.CHANGE, change.to_dict()),
            )
        elif channel == CONFIG_CHANNEL:
            for callback in self._invalidation_callbacks:
                callback(payload)
        else:
            logger.warning("NOTIFY on unexpected channel '%s' — ignoring", channel)

    def backoff_for(self, attempt: int) -> float:
        """Delay before reconnect *attempt* (1-based), jitter included."""
        backoff = min(self.base_backoff * (2 ** (attempt - 1)), self.max_backoff)
        return backoff + random.uniform(0, backoff * 0.5)

    # -------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------
    @property
    def listener_healthy(self) -> bool:
        """Return True if the LISTEN thread is alive and connected."""
        return self._listener_healthy and not self._listener_failed

    @property
    def listener_failed(self) -> bool:
        """Return True if the listener exhausted reconnect attempts."""
        return self._listener_failed

    # -------------------------------------------------------------------
    # Thread lifecycle
    # -------------------------------------------------------------------
    def stop(self) -> None:
        """Signal the listener thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._listener_thread is not None and self._listener_thread.is_alive():
            self._listener_thread.join(timeout=5)
            logger.info("PG NOTIFY listener thread stopped")

    def start(self) -> None:
        """Start the background LISTEN thread (raw psycopg2 + select())."""
        import psycopg2

        def _listen_thread() -> None:
            # str(engine.url) masks the password; psycopg2 needs the real one.
            raw_url = self._engine.url.render_as_string(hide_password=False)
            dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
            attempt = 0

            while not self._shutdown_event.is_set():
                conn = None
                try:
                    conn = psycopg2.connect(dsn)
                    conn.set_isolation_level(0)  # autocommit
                    cur = conn.cursor()
                    cur.execute(f"LISTEN {CHANGES_CHANNEL};")
                    cur.execute(f"LISTEN {CONFIG_CHANNEL};")
                    logger.info(
                        "PG LISTEN started on channels '%s', '%s'",
                        CHANGES_CHANNEL, CONFIG_CHANNEL,
                    )

                    attempt = 0
                    self._listener_healthy = True

                    while not self._shutdown_event.is_set():
                        if _select.select([conn], [], [], 5.0) == ([], [], []):
                            continue
                        conn.poll()
                        while conn.notifies:
                            notify = conn.notifies.pop(0)
                            try:
                                self.handle_notify(notify.channel, notify.payload or "")
                            except Exception:
                                logger.exception(
                                    "Error handling NOTIFY on '%s'", notify.channel,
                                )

                except Exception:
                    self._listener_healthy = False
                    attempt += 1

                    if attempt >= self.max_reconnect_attempts:
                        logger.critical(
                            "PG LISTEN exhausted %d retries. "
                            "Cross-process broadcast disabled.",
                            self.max_reconnect_attempts,
                        )
                        self._listener_failed = True
                        break

                    wait = self.backoff_for(attempt)
                    logger.exception(
                        "PG LISTEN connection lost (attempt %d/%d). "
                        "Reconnecting in %.1fs…",
                        attempt, self.max_reconnect_attempts, wait,
                    )
                    if self._shutdown_event.wait(timeout=wait):
                        break
                finally:
                    if conn is not None:
                        try:
                            conn.close()
                        except psycopg2.Error:
                            logger.debug("Error closing LISTEN connection", exc_info=True)

        thread = threading.Thread(target=_listen_thread, daemon=True, name="pg-notify-listener")
        self._listener_thread = thread
        thread.start()
        logger.info("PG NOTIFY listener thread started")
