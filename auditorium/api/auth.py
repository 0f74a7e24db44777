"""
auditorium.api.auth — Bearer tokens
====================================

Tokens are minted by the surrounding platform when it renders a webinar page
(registration and host sign-in live there).  This module only knows the
claim layout, mints tokens for that platform and for tests, and echoes the
caller back.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Annotated

import jwt
from fastapi import APIRouter, Depends

from auditorium.api.deps import JWT_ALGORITHM, JWT_SECRET, Actor, get_current_actor

router = APIRouter(prefix="/auth", tags=["auth"])

TOKEN_TTL = timedelta(hours=12)


def issue_token(
    sub: str,
    *,
    role: str = "attendee",
    name: str = "",
    webinar_id: str | None = None,
    registration_id: str | None = None,
    company_id: str | None = None,
    ttl: timedelta = TOKEN_TTL,
) -> str:
    """Mint a signed token carrying the actor claims."""
    now = datetime.now(UTC)
    claims = {
        "sub": sub,
        "role": role,
        "name": name,
        "iat": now,
        "exp": now + ttl,
    }
    if webinar_id is not None:
        claims["webinar_id"] = webinar_id
    if registration_id is not None:
        claims["registration_id"] = registration_id
    if company_id is not None:
        claims["company_id"] = company_id
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


@router.get("/me")
def me(actor: Annotated[Actor, Depends(get_current_actor)]):
    """Return the authenticated actor's claims."""
    return actor.to_dict()
