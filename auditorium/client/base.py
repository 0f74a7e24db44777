"""
auditorium.client.base — Shared Sync-Unit Machinery
====================================================

A sync unit keeps one viewer's local copy of a slice of the Event Store in
step with the broadcast feed, and applies the viewer's own writes
optimistically.

Lifecycle::

    chat = ChatSync(connection, writer, context)
    await chat.mount(snapshot)    # seeded, subscribed to webinar:<id>
    ...
    await chat.unmount()

Rules every unit follows:

* Change events are idempotent: an insert for a known id is ignored, an
  update for an unknown id is ignored, a delete for an unknown id is a
  no-op.  The viewer's own echo therefore collapses into its optimistic
  entry.
* Writes never raise.  They return a
  :class:`~auditorium.client.results.MutationResult`; a failed write rolls
  its optimistic change back, a constraint violation counts as done.
* After unmount, late write results and events are discarded.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from auditorium.client.connection import RealtimeConnection, Subscription
from auditorium.client.results import MutationResult
from auditorium.client.writer import EngagementWriter
from auditorium.engine.features import Feature, WebinarContext
from auditorium.errors import AuditoriumError, ConstraintViolation, WriteFailedError
from auditorium.realtime.messages import ChangeEvent, ServerEvent, webinar_topic

logger = logging.getLogger(__name__)


class SyncUnit:
    """Base class: subscription plumbing and the optimistic-write helper."""

    tables: tuple[str, ...] = ()

    def __init__(
        self,
        connection: RealtimeConnection,
        writer: EngagementWriter,
        context: WebinarContext,
    ) -> None:
        self.connection = connection
        self.writer = writer
        self.context = context
        self.mounted = False
        self.in_flight: dict[str, MutationResult] = {}
        self._subscription: Subscription | None = None

    @property
    def registration_id(self) -> str:
        return self.writer.registration_id

    # -------------------------------------------------------------------
    # Mount / unmount
    # -------------------------------------------------------------------
    def seed(self, snapshot: Any) -> None:
        """Replace local state with a page-load snapshot."""

    async def mount(self, snapshot: Any = None) -> None:
        if self.mounted:
            return
        if snapshot is not None:
            self.seed(snapshot)
        self._subscription = await self.connection.subscribe(
            webinar_topic(self.context.webinar_id), self._on_frame,
        )
        self.mounted = True

    async def unmount(self) -> None:
        if not self.mounted:
            return
        self.mounted = False
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None
        self.in_flight.clear()

    async def __aenter__(self):
        await self.mount()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.unmount()

    # -------------------------------------------------------------------
    # Change events
    # -------------------------------------------------------------------
    def _on_frame(self, message: dict[str, Any]) -> None:
        if not self.mounted or message.get("event") != ServerEvent.CHANGE:
            return
        try:
            change = ChangeEvent.from_dict(message["payload"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Dropping malformed change frame: %r", message)
            return
        if change.table in self.tables:
            self.apply_change(change)

    def apply_change(self, change: ChangeEvent) -> None:
        raise NotImplementedError

    # -------------------------------------------------------------------
    # Optimistic writes
    # -------------------------------------------------------------------
    def _gate(self, feature: Feature) -> MutationResult | None:
        """A FAILED result when *feature* is off, else None."""
        try:
            self.context.require(feature)
        except AuditoriumError as exc:
            return MutationResult.failed(exc)
        return None

    async def _mutate(
        self,
        key: str,
        write: Callable[[], Awaitable[Any]],
        *,
        apply: Callable[[], None] | None = None,
        rollback: Callable[[], None] | None = None,
        confirm: Callable[[Any], None] | None = None,
        on_duplicate: Callable[[], None] | None = None,
    ) -> MutationResult:
        """Apply locally, write, then confirm / roll back / accept duplicate."""
        if apply is not None:
            apply()
        self.in_flight[key] = MutationResult.pending()
        try:
            value = await write()
        except ConstraintViolation as exc:
            logger.debug("Write %s already applied server-side: %s", key, exc.code)
            if self.mounted and on_duplicate is not None:
                on_duplicate()
            return MutationResult.duplicate(exc, applied_locally=self.mounted)
        except AuditoriumError as exc:
            logger.info("Write %s rejected: %s", key, exc.detail)
            if self.mounted and rollback is not None:
                rollback()
            return MutationResult.failed(exc)
        except Exception as exc:
            logger.exception("Write %s failed", key)
            if self.mounted and rollback is not None:
                rollback()
            return MutationResult.failed(WriteFailedError(str(exc) or exc.__class__.__name__))
        finally:
            self.in_flight.pop(key, None)

        if self.mounted and confirm is not None:
            confirm(value)
        return MutationResult.confirmed(value)


def index_by_id(records: Iterable[dict[str, Any]], build: Callable[[dict[str, Any]], Any]) -> dict[str, Any]:
    """Build an ordered id → view map, first occurrence wins."""
    out: dict[str, Any] = {}
    for record in records:
        view = build(record)
        out.setdefault(view.id, view)
    return out
