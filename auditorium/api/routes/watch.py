"""
auditorium.api.routes.watch — Watch sessions
=============================================

``/end`` accepts an empty body so a page-unload beacon can close a session
without knowing the final position.
"""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel, Field

from auditorium.api.deps import AttendeeDep, RuntimeDep
from auditorium.services import watch_service

router = APIRouter(prefix="/webinars/{webinar_id}/watch-sessions", tags=["watch"])


class WatchProgress(BaseModel):
    position_seconds: float = Field(ge=0)
    duration_seconds: float = Field(ge=0)


class WatchEnd(BaseModel):
    position_seconds: float | None = Field(default=None, ge=0)
    duration_seconds: float | None = Field(default=None, ge=0)


@router.post("", status_code=201)
def start_watch_session(webinar_id: str, actor: AttendeeDep, runtime: RuntimeDep):
    return watch_service.start_watch_session(
        runtime.engine, webinar_id=webinar_id, registration_id=actor.registration_id,
    )


@router.post("/{session_id}/progress")
def update_watch_progress(
    webinar_id: str, session_id: str, body: WatchProgress, actor: AttendeeDep, runtime: RuntimeDep,
):
    fresh = watch_service.update_watch_progress(
        runtime.engine, runtime.weights,
        session_id=session_id,
        position_seconds=body.position_seconds,
        duration_seconds=body.duration_seconds,
        registration_id=actor.registration_id,
    )
    return {"session_id": session_id, "new_milestones": fresh}


@router.post("/{session_id}/end")
def end_watch_session(
    webinar_id: str, session_id: str, actor: AttendeeDep, runtime: RuntimeDep,
    body: WatchEnd | None = None,
):
    body = body or WatchEnd()
    return watch_service.end_watch_session(
        runtime.engine,
        session_id=session_id,
        position_seconds=body.position_seconds,
        duration_seconds=body.duration_seconds,
        registration_id=actor.registration_id,
    )
