"""
auditorium.services.reporting_service — Read-Only Reporting Queries
====================================================================

The query surface consumed by dashboard pages: engagement totals, watch
summary, the lead-score leaderboard / distribution / summary / CSV, and
per-registrant drill-downs (ledger history, watch time).

Loads ledger rows per webinar and hands them to the pure functions in
:mod:`auditorium.engine.scoring` and :mod:`auditorium.engine.milestones`.
"""

from __future__ import annotations

import csv
import io
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from auditorium.database.models import EngagementEvent, WatchSession
from auditorium.engine import scoring
from auditorium.engine.milestones import summarize_sessions
from auditorium.realtime.messages import parse_timestamp
from auditorium.services.webinar_service import get_registration, get_webinar, registration_names


def _ledger(session: Session, webinar_id: str) -> list[EngagementEvent]:
    return list(session.scalars(
        select(EngagementEvent).where(EngagementEvent.webinar_id == webinar_id)
    ))


def _all_totals(session: Session, webinar_id: str) -> tuple[dict[str, scoring.RegistrantScore], list[int]]:
    """Scores of engaged registrants + one total per registrant (zeros too)."""
    scores = scoring.aggregate(_ledger(session, webinar_id))
    names = registration_names(session, webinar_id)
    totals = [scores[r].total_points if r in scores else 0 for r in names]
    # Ledger rows for registrations deleted upstream still count.
    totals.extend(s.total_points for r, s in scores.items() if r not in names)
    return scores, totals


def engagement_totals(engine: Engine, webinar_id: str) -> dict[str, Any]:
    with Session(engine) as session:
        get_webinar(session, webinar_id)
        return scoring.engagement_totals(_ledger(session, webinar_id)).to_dict()


def watch_summary(engine: Engine, webinar_id: str) -> dict[str, Any]:
    with Session(engine) as session:
        get_webinar(session, webinar_id)
        sessions = session.scalars(
            select(WatchSession).where(WatchSession.webinar_id == webinar_id)
        ).all()
        return summarize_sessions(sessions).to_dict()


def leaderboard(
    engine: Engine,
    webinar_id: str,
    *,
    limit: int | None = None,
    offset: int = 0,
    min_score: int | None = None,
) -> list[dict[str, Any]]:
    """Ranked registrants with at least one ledger row.

    *offset* / *limit* page through the board; *min_score* keeps only
    registrants at or above a follow-up threshold.
    """
    with Session(engine) as session:
        get_webinar(session, webinar_id)
        scores = scoring.aggregate(_ledger(session, webinar_id))
        names = registration_names(session, webinar_id)

    entries = []
    for entry in scoring.rank(scores, limit=limit, offset=offset, min_score=min_score):
        name, email = names.get(entry.registration_id, ("", ""))
        first = parse_timestamp(entry.first_engaged_at)
        entries.append({
            "rank": entry.rank,
            "registration_id": entry.registration_id,
            "name": name,
            "email": email,
            "total_points": entry.total_points,
            "event_count": entry.event_count,
            "first_engaged_at": first.isoformat() if first else None,
        })
    return entries


def registrant_score(engine: Engine, webinar_id: str, registration_id: str) -> int:
    """Σ points_awarded for one registrant; 0 without ledger rows."""
    with Session(engine) as session:
        rows = session.scalars(
            select(EngagementEvent.points_awarded).where(
                EngagementEvent.webinar_id == webinar_id,
                EngagementEvent.registration_id == registration_id,
            )
        ).all()
    return sum(rows)


def registrant_events(engine: Engine, webinar_id: str, registration_id: str) -> list[dict[str, Any]]:
    """One registrant's ledger rows, oldest first."""
    with Session(engine) as session:
        get_registration(session, webinar_id, registration_id)
        rows = session.scalars(
            select(EngagementEvent)
            .where(
                EngagementEvent.webinar_id == webinar_id,
                EngagementEvent.registration_id == registration_id,
            )
            .order_by(EngagementEvent.created_at, EngagementEvent.id)
        ).all()
        return [
            {
                "id": row.id,
                "kind": row.kind,
                "points_awarded": row.points_awarded,
                "payload": row.payload or {},
                "source_id": row.source_id,
                "created_at": parse_timestamp(row.created_at).isoformat(),
            }
            for row in rows
        ]


def registrant_watch_time(engine: Engine, webinar_id: str, registration_id: str) -> dict[str, Any]:
    """Watch seconds summed over every session and the highest milestone reached."""
    with Session(engine) as session:
        get_registration(session, webinar_id, registration_id)
        sessions = session.scalars(
            select(WatchSession).where(
                WatchSession.webinar_id == webinar_id,
                WatchSession.registration_id == registration_id,
            )
        ).all()
        total = sum(max(s.last_position_seconds or 0, 0) for s in sessions)
        highest = max((m for s in sessions for m in (s.milestones_hit or [])), default=0)
        return {
            "registration_id": registration_id,
            "session_count": len(sessions),
            "total_watch_seconds": total,
            "highest_milestone": highest,
        }


def score_distribution(engine: Engine, webinar_id: str) -> list[dict[str, Any]]:
    with Session(engine) as session:
        get_webinar(session, webinar_id)
        _scores, totals = _all_totals(session, webinar_id)
    return [b.to_dict() for b in scoring.distribution(totals)]


def score_summary(engine: Engine, webinar_id: str, *, top_n: int = 5) -> dict[str, Any]:
    with Session(engine) as session:
        get_webinar(session, webinar_id)
        _scores, totals = _all_totals(session, webinar_id)
    summary = scoring.summarize(totals).to_dict()
    summary["top_scorers"] = leaderboard(engine, webinar_id, limit=top_n)
    return summary


def export_leaderboard_csv(engine: Engine, webinar_id: str) -> str:
    """Leaderboard as CSV text for sales follow-up."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(["rank", "name", "email", "total_points", "event_count", "first_engaged_at"])
    for row in leaderboard(engine, webinar_id):
        writer.writerow([
            row["rank"], row["name"], row["email"],
            row["total_points"], row["event_count"], row["first_engaged_at"] or "",
        ])
    return buf.getvalue()
