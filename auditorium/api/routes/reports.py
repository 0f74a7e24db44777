"""
auditorium.api.routes.reports — Read-only reporting for hosts
==============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Query
from fastapi.responses import Response

from auditorium.api.deps import RuntimeDep, WebinarHostDep
from auditorium.services import reaction_service, reporting_service

router = APIRouter(prefix="/reports/webinars/{webinar_id}", tags=["reports"])


@router.get("/engagement")
def engagement_totals(webinar_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    return reporting_service.engagement_totals(runtime.engine, webinar_id)


@router.get("/watch")
def watch_summary(webinar_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    return reporting_service.watch_summary(runtime.engine, webinar_id)


@router.get("/leaderboard")
def leaderboard(
    webinar_id: str,
    host: WebinarHostDep,
    runtime: RuntimeDep,
    limit: int | None = Query(None, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    min_score: int | None = Query(None, ge=0),
):
    return reporting_service.leaderboard(
        runtime.engine, webinar_id, limit=limit, offset=offset, min_score=min_score,
    )


@router.get("/leaderboard.csv")
def leaderboard_csv(webinar_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    body = reporting_service.export_leaderboard_csv(runtime.engine, webinar_id)
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="leaderboard-{webinar_id}.csv"'},
    )


@router.get("/distribution")
def score_distribution(webinar_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    return reporting_service.score_distribution(runtime.engine, webinar_id)


@router.get("/summary")
def score_summary(
    webinar_id: str,
    host: WebinarHostDep,
    runtime: RuntimeDep,
    top: int = Query(5, ge=1, le=100),
):
    return reporting_service.score_summary(runtime.engine, webinar_id, top_n=top)


@router.get("/registrants/{registration_id}/score")
def registrant_score(webinar_id: str, registration_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    return {
        "registration_id": registration_id,
        "total_points": reporting_service.registrant_score(
            runtime.engine, webinar_id, registration_id,
        ),
    }


@router.get("/registrants/{registration_id}/events")
def registrant_events(webinar_id: str, registration_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    return reporting_service.registrant_events(runtime.engine, webinar_id, registration_id)


@router.get("/registrants/{registration_id}/watch")
def registrant_watch_time(webinar_id: str, registration_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    return reporting_service.registrant_watch_time(runtime.engine, webinar_id, registration_id)


@router.get("/reactions")
def reaction_counts(webinar_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    return reaction_service.reaction_counts(runtime.engine, webinar_id)
