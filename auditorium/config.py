"""
auditorium.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for **deployment** settings: realtime backend and
reconnect policy, presence liveness, watch-time cadence, and reaction display
limits.  Per-company scoring weights live in the ``engagement_weights``
database table and are served by :class:`~auditorium.engine.weights.WeightCache`.

Usage::

    from auditorium.config import load_config

    cfg = load_config()          # reads $AUDITORIUM_CONFIG or ./config.yaml
    print(cfg.app_name)          # "Auditorium"
    print(cfg.reconnect_max_attempts)   # 10
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from auditorium.constants import (
    MAX_CHAT_MESSAGE_LENGTH,
    MAX_FLOATING_REACTIONS,
    REACTION_DEBOUNCE_SECONDS,
    REACTION_LIFETIME_SECONDS,
    WATCH_UPDATE_INTERVAL_SECONDS,
)

REALTIME_BACKENDS = ("memory", "postgres")


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AuditoriumConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    app_name: str

    # API
    api_port: int

    # Realtime
    realtime_backend: str = "memory"  # "memory" (single process) | "postgres"
    heartbeat_interval_seconds: float = 25.0
    presence_timeout_seconds: float = 60.0
    reconnect_max_attempts: int = 10
    reconnect_base_backoff: float = 1.0
    reconnect_max_backoff: float = 60.0

    # Watch time
    watch_update_interval_seconds: float = WATCH_UPDATE_INTERVAL_SECONDS

    # Reactions
    max_floating_reactions: int = MAX_FLOATING_REACTIONS
    reaction_lifetime_seconds: float = REACTION_LIFETIME_SECONDS
    reaction_debounce_seconds: float = REACTION_DEBOUNCE_SECONDS
    reaction_retention_hours: int = 24

    # Chat
    max_chat_message_length: int = MAX_CHAT_MESSAGE_LENGTH


def default_config_path() -> Path:
    return Path(os.getenv("AUDITORIUM_CONFIG", "config.yaml"))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path | None = None) -> AuditoriumConfig:
    """Read *path* and return an :class:`AuditoriumConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.  Defaults to
        ``$AUDITORIUM_CONFIG`` or ``config.yaml`` in the working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If ``realtime.backend`` names an unknown backend.
    """
    config_path = Path(path) if path is not None else default_config_path()
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    realtime = raw.get("realtime") or {}
    watch = raw.get("watch") or {}
    reactions = raw.get("reactions") or {}
    chat = raw.get("chat") or {}

    backend = str(realtime.get("backend", "memory"))
    if backend not in REALTIME_BACKENDS:
        raise ValueError(
            f"Unknown realtime backend '{backend}'. "
            f"Expected one of: {', '.join(REALTIME_BACKENDS)}"
        )

    return AuditoriumConfig(
        app_name=raw["app_name"],
        api_port=int(raw["api_port"]),
        realtime_backend=backend,
        heartbeat_interval_seconds=float(realtime.get("heartbeat_interval_seconds", 25.0)),
        presence_timeout_seconds=float(realtime.get("presence_timeout_seconds", 60.0)),
        reconnect_max_attempts=int(realtime.get("reconnect_max_attempts", 10)),
        reconnect_base_backoff=float(realtime.get("reconnect_base_backoff", 1.0)),
        reconnect_max_backoff=float(realtime.get("reconnect_max_backoff", 60.0)),
        watch_update_interval_seconds=float(
            watch.get("update_interval_seconds", WATCH_UPDATE_INTERVAL_SECONDS)
        ),
        max_floating_reactions=int(reactions.get("max_floating", MAX_FLOATING_REACTIONS)),
        reaction_lifetime_seconds=float(
            reactions.get("lifetime_seconds", REACTION_LIFETIME_SECONDS)
        ),
        reaction_debounce_seconds=float(
            reactions.get("debounce_seconds", REACTION_DEBOUNCE_SECONDS)
        ),
        reaction_retention_hours=int(reactions.get("retention_hours", 24)),
        max_chat_message_length=int(
            chat.get("max_message_length", MAX_CHAT_MESSAGE_LENGTH)
        ),
    )
