"""
auditorium.engine.weights — In-Memory Weight-Table Cache
=========================================================

Company point tables (``engagement_weights``) are read on every ledger write,
so they are cached in memory.  Invalidation arrives as a ``config_changed``
notification naming the table; in a multi-process deployment that is a PG
NOTIFY picked up by :class:`~auditorium.realtime.listener.PgNotifyListener`,
in a single process it comes straight from the change feed after commit.

Resolution order for a kind's points:
  1. EngagementWeight(company_id, kind)  — company override
  2. DEFAULT_POINTS[kind]                — documented default
  3. 0                                   — unknown kind
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from auditorium.database.models import EngagementWeight
from auditorium.engine.events import DEFAULT_POINTS

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# Allowlist of table names accepted in config_changed payloads.
ALLOWED_NOTIFY_TABLES: frozenset[str] = frozenset({
    "engagement_weights",
})


class WeightCache:
    """Thread-safe cache of per-company point overrides.

    Usage:
        weights = WeightCache(engine)
        weights.load_all()

        table = weights.table_for(company_id)   # defaults merged in
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        # company_id → {kind: points}
        self._overrides: dict[str, dict[str, int]] = {}

    # -------------------------------------------------------------------
    # Loading (synchronous — called via run_db or directly)
    # -------------------------------------------------------------------
    def load_all(self) -> None:
        """Load every company's overrides.  Call on startup."""
        with Session(self._engine) as session:
            rows = session.scalars(select(EngagementWeight)).all()
            overrides: dict[str, dict[str, int]] = {}
            for row in rows:
                overrides.setdefault(row.company_id, {})[row.kind] = row.points
        with self._lock:
            self._overrides = overrides
        logger.info(
            "WeightCache loaded: %d companies, %d overrides",
            len(overrides),
            sum(len(v) for v in overrides.values()),
        )

    # -------------------------------------------------------------------
    # Reads (thread-safe)
    # -------------------------------------------------------------------
    def table_for(self, company_id: str) -> dict[str, int]:
        """Effective point table for *company_id*: defaults plus overrides."""
        table = {str(k): v for k, v in DEFAULT_POINTS.items()}
        with self._lock:
            table.update(self._overrides.get(company_id, {}))
        return table

    def overrides_for(self, company_id: str) -> dict[str, int]:
        with self._lock:
            return dict(self._overrides.get(company_id, {}))

    # -------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------
    def handle_notify(self, table_name: str) -> None:
        """Reload when a ``config_changed`` notification names our table."""
        table_name = table_name.strip().lower()
        if table_name not in ALLOWED_NOTIFY_TABLES:
            logger.warning("Unknown table in NOTIFY: %s — ignoring", table_name)
            return
        logger.info("Weight cache invalidation for table: %s", table_name)
        self.load_all()
