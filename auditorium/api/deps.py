"""
auditorium.api.deps — FastAPI dependency injection
===================================================

Everything a route needs hangs off one :class:`Runtime`: the engine, the
config, the broadcast hub, the presence registry, the weight cache and the
change feed.  It is built once per process; tests override
:func:`get_runtime` with one bound to an in-memory database.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated, Any

import jwt
from fastapi import Depends, Header
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from auditorium.config import AuditoriumConfig, load_config
from auditorium.database.engine import create_db_engine
from auditorium.engine.weights import WeightCache
from auditorium.errors import AuthenticationError, AuthorizationError
from auditorium.realtime.feed import ChangeFeed, HubFeed, PgNotifyFeed
from auditorium.realtime.gateway import PresenceReaper
from auditorium.realtime.hub import BroadcastHub
from auditorium.realtime.listener import PgNotifyListener
from auditorium.realtime.presence import PresenceTracker
from auditorium.services.webinar_service import load_context

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "auditorium-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


# ---------------------------------------------------------------------------
# Process-wide runtime
# ---------------------------------------------------------------------------
@dataclass
class Runtime:
    engine: Engine
    config: AuditoriumConfig
    hub: BroadcastHub
    presence: PresenceTracker
    weights: WeightCache
    feed: ChangeFeed
    reaper: PresenceReaper
    listener: PgNotifyListener | None = None

    @classmethod
    def build(cls, engine: Engine, config: AuditoriumConfig) -> Runtime:
        """Wire the realtime pieces for the configured backend."""
        hub = BroadcastHub()
        presence = PresenceTracker()
        weights = WeightCache(engine)
        reaper = PresenceReaper(hub, presence, timeout=config.presence_timeout_seconds)

        if config.realtime_backend == "postgres":
            listener = PgNotifyListener(
                engine,
                hub,
                base_backoff=config.reconnect_base_backoff,
                max_backoff=config.reconnect_max_backoff,
                max_reconnect_attempts=config.reconnect_max_attempts,
            )
            listener.on_invalidate(weights.handle_notify)
            return cls(engine, config, hub, presence, weights, PgNotifyFeed(), reaper, listener)

        feed = HubFeed(hub)
        feed.on_invalidate(weights.handle_notify)
        return cls(engine, config, hub, presence, weights, feed, reaper)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> AuditoriumConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_runtime() -> Runtime:
    return Runtime.build(get_engine(), get_config())


RuntimeDep = Annotated[Runtime, Depends(get_runtime)]


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
ROLES = ("attendee", "host")


@dataclass(frozen=True, slots=True)
class Actor:
    """Who is calling, as asserted by the bearer token.

    Attendee tokens are scoped to one webinar and one registration; host
    tokens are scoped to a company.
    """

    sub: str
    role: str
    name: str = ""
    webinar_id: str | None = None
    registration_id: str | None = None
    company_id: str | None = None

    @property
    def is_host(self) -> bool:
        return self.role == "host"

    def can_access(self, webinar_id: str) -> bool:
        return self.is_host or self.webinar_id == webinar_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "sub": self.sub,
            "role": self.role,
            "name": self.name,
            "webinar_id": self.webinar_id,
            "registration_id": self.registration_id,
            "company_id": self.company_id,
        }


def decode_actor(token: str) -> Actor:
    """Verify *token* and build the :class:`Actor` it describes."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise AuthenticationError("Invalid token") from None
    role = payload.get("role", "attendee")
    if role not in ROLES or not payload.get("sub"):
        raise AuthenticationError("Invalid token claims")
    if role == "attendee" and not payload.get("webinar_id"):
        raise AuthenticationError("Attendee tokens must name a webinar")
    if role == "host" and not payload.get("company_id"):
        raise AuthenticationError("Host tokens must name a company")
    return Actor(
        sub=str(payload["sub"]),
        role=role,
        name=str(payload.get("name") or ""),
        webinar_id=payload.get("webinar_id"),
        registration_id=payload.get("registration_id"),
        company_id=payload.get("company_id"),
    )


def get_current_actor(
    authorization: Annotated[str | None, Header()] = None,
) -> Actor:
    """Validate the bearer JWT.  Raises 401 if missing or invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Missing token")
    return decode_actor(authorization.split(" ", 1)[1])


def require_attendee(webinar_id: str, actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
    """A registrant of *webinar_id*; host tokens carry no registration."""
    if not actor.can_access(webinar_id):
        raise AuthorizationError("Token is not valid for this webinar")
    if actor.registration_id is None:
        raise AuthorizationError("This action requires a registration")
    return actor


def require_viewer(webinar_id: str, actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
    if not actor.can_access(webinar_id):
        raise AuthorizationError("Token is not valid for this webinar")
    return actor


def require_host(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
    if not actor.is_host:
        raise AuthorizationError("Host role required")
    return actor


AttendeeDep = Annotated[Actor, Depends(require_attendee)]
ViewerDep = Annotated[Actor, Depends(require_viewer)]
HostDep = Annotated[Actor, Depends(require_host)]


def require_webinar_host(
    webinar_id: str, actor: HostDep, runtime: RuntimeDep,
) -> Actor:
    """Host whose company owns *webinar_id*."""
    ctx = load_context(runtime.engine, webinar_id)
    if ctx.company_id != actor.company_id:
        raise AuthorizationError("Webinar belongs to another company")
    return actor


WebinarHostDep = Annotated[Actor, Depends(require_webinar_host)]
