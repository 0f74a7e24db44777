"""
auditorium.services.webinar_service — Webinar and Registration Lookups
=======================================================================

Webinar and registration CRUD belongs to the surrounding product.  The
engagement core only reads them; the two ``create_*`` helpers exist for
seeding development databases and tests.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from auditorium.database.engine import get_session
from auditorium.database.models import Registration, Webinar, WebinarStatus
from auditorium.engine.features import WebinarContext
from auditorium.errors import NotFoundError


def get_webinar(session: Session, webinar_id: str) -> Webinar:
    webinar = session.get(Webinar, webinar_id)
    if webinar is None:
        raise NotFoundError(f"Webinar not found: {webinar_id}")
    return webinar


def get_context(session: Session, webinar_id: str) -> WebinarContext:
    return WebinarContext.from_row(get_webinar(session, webinar_id))


def load_context(engine: Engine, webinar_id: str) -> WebinarContext:
    """Session-owning variant of :func:`get_context` for ``run_db``."""
    with Session(engine) as session:
        return get_context(session, webinar_id)


def get_registration(session: Session, webinar_id: str, registration_id: str) -> Registration:
    """Return the registration, checking it belongs to *webinar_id*."""
    registration = session.get(Registration, registration_id)
    if registration is None or registration.webinar_id != webinar_id:
        raise NotFoundError(f"Registration not found: {registration_id}")
    return registration


def registration_names(session: Session, webinar_id: str) -> dict[str, tuple[str, str]]:
    """registration_id → (name, email) for every registrant of a webinar."""
    rows = session.execute(
        select(Registration.id, Registration.name, Registration.email)
        .where(Registration.webinar_id == webinar_id)
    ).all()
    return {row.id: (row.name, row.email) for row in rows}


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------
def create_webinar(
    engine: Engine,
    *,
    company_id: str,
    title: str,
    status: str = WebinarStatus.LIVE,
    webinar_id: str | None = None,
    **flags: bool,
) -> str:
    with get_session(engine) as session:
        webinar = Webinar(
            company_id=company_id,
            title=title,
            status=status,
            created_at=datetime.now(UTC),
            **flags,
        )
        if webinar_id is not None:
            webinar.id = webinar_id
        session.add(webinar)
        session.flush()
        return webinar.id


def create_registration(
    engine: Engine,
    *,
    webinar_id: str,
    email: str,
    name: str,
    registration_id: str | None = None,
) -> str:
    with get_session(engine) as session:
        get_webinar(session, webinar_id)
        registration = Registration(
            webinar_id=webinar_id,
            email=email.strip().lower(),
            name=name,
            created_at=datetime.now(UTC),
        )
        if registration_id is not None:
            registration.id = registration_id
        session.add(registration)
        session.flush()
        return registration.id
