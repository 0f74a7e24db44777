"""
auditorium.realtime.feed — Event Store → Broadcast Bridge
==========================================================

Services call ``feed.emit(session, change)`` inside their write transaction.
Nothing may reach viewers for a write that is later rolled back, so both
feeds deliver only on commit:

* :class:`HubFeed` (single process) parks the change on the session and
  publishes it to the local :class:`~auditorium.realtime.hub.BroadcastHub`
  from an ``after_commit`` hook.
* :class:`PgNotifyFeed` (several API processes) issues ``pg_notify`` inside
  the transaction; PostgreSQL delivers it atomically on commit and every
  process's :class:`~auditorium.realtime.listener.PgNotifyListener` forwards
  it to its own hub.

``feed.invalidate(session, table)`` does the same for weight-table changes.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable

from sqlalchemy import event, func, select
from sqlalchemy.orm import Session, SessionTransaction

from auditorium.engine.weights import ALLOWED_NOTIFY_TABLES
from auditorium.realtime.hub import BroadcastHub
from auditorium.realtime.messages import ChangeEvent, ServerEvent, frame

logger = logging.getLogger(__name__)

# The PG channel names
CHANGES_CHANNEL = "webinar_changes"
CONFIG_CHANNEL = "config_changed"

# PostgreSQL rejects NOTIFY payloads of 8000 bytes or more.
MAX_NOTIFY_PAYLOAD = 7900

_PENDING_KEY = "auditorium.pending_changes"


def _check_table(table_name: str) -> None:
    if table_name not in ALLOWED_NOTIFY_TABLES:
        raise ValueError(
            f"Invalid table name for NOTIFY: '{table_name}'. "
            f"Allowed: {sorted(ALLOWED_NOTIFY_TABLES)}"
        )


class ChangeFeed:
    """Interface used by the services.  Subclasses decide how to deliver."""

    def emit(self, session: Session, change: ChangeEvent) -> None:
        raise NotImplementedError

    def invalidate(self, session: Session, table_name: str) -> None:
        raise NotImplementedError


class NullFeed(ChangeFeed):
    """Feed that drops everything (batch jobs, migrations)."""

    def emit(self, session: Session, change: ChangeEvent) -> None:
        return None

    def invalidate(self, session: Session, table_name: str) -> None:
        return None


# ---------------------------------------------------------------------------
# In-process feed
# ---------------------------------------------------------------------------
class HubFeed(ChangeFeed):
    """Publish committed changes to a local hub."""

    def __init__(self, hub: BroadcastHub) -> None:
        self.hub = hub
        self._invalidation_callbacks: list[Callable[[str], None]] = []

    def on_invalidate(self, callback: Callable[[str], None]) -> None:
        self._invalidation_callbacks.append(callback)

    def emit(self, session: Session, change: ChangeEvent) -> None:
        session.info.setdefault(_PENDING_KEY, []).append((self.deliver, change))

    def invalidate(self, session: Session, table_name: str) -> None:
        _check_table(table_name)
        session.info.setdefault(_PENDING_KEY, []).append((self.deliver_invalidation, table_name))

    def deliver(self, change: ChangeEvent) -> None:
        self.hub.publish(change.topic, frame(change.topic, ServerEvent.CHANGE, change.to_dict()))

    def deliver_invalidation(self, table_name: str) -> None:
        for callback in self._invalidation_callbacks:
            try:
                callback(table_name)
            except Exception:
                logger.exception("Invalidation callback failed for %s", table_name)


@event.listens_for(Session, "after_commit")
def _flush_pending(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return
    for deliver, item in pending:
        try:
            deliver(item)
        except Exception:
            logger.exception("Failed to publish committed change %r", item)


@event.listens_for(Session, "after_soft_rollback")
def _drop_pending(session: Session, previous_transaction: SessionTransaction) -> None:
    # Savepoints and flush subtransactions leave the outer transaction alive.
    if previous_transaction.parent is not None:
        return
    dropped = session.info.pop(_PENDING_KEY, None)
    if dropped:
        logger.debug("Dropped %d uncommitted change(s) on rollback", len(dropped))


# ---------------------------------------------------------------------------
# PostgreSQL feed
# ---------------------------------------------------------------------------
class PgNotifyFeed(ChangeFeed):
    """Fan out through PG NOTIFY; fires atomically on commit."""

    def emit(self, session: Session, change: ChangeEvent) -> None:
        payload = json.dumps(change.to_dict(), default=str)
        if len(payload.encode("utf-8")) > MAX_NOTIFY_PAYLOAD:
            logger.warning(
                "Change on %s/%s too large for NOTIFY (%d bytes) — not broadcast",
                change.table, change.record_id, len(payload),
            )
            return
        session.execute(select(func.pg_notify(CHANGES_CHANNEL, payload)))

    def invalidate(self, session: Session, table_name: str) -> None:
        _check_table(table_name)
        session.execute(select(func.pg_notify(CONFIG_CHANNEL, table_name)))
