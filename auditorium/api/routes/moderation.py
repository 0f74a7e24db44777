"""
auditorium.api.routes.moderation — Host endpoints (JWT-protected, host role)
=============================================================================
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from auditorium.api.deps import HostDep, RuntimeDep, WebinarHostDep
from auditorium.errors import AuthorizationError
from auditorium.services import (
    chat_service,
    engagement_service,
    poll_service,
    qa_service,
    reaction_service,
    reconciliation_service,
)

router = APIRouter(tags=["moderation"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class PinUpdate(BaseModel):
    pinned: bool


class HiddenUpdate(BaseModel):
    hidden: bool


class HighlightUpdate(BaseModel):
    highlighted: bool


class AnswerCreate(BaseModel):
    answer: str


class PollCreate(BaseModel):
    question: str
    options: list[dict[str, Any]]
    allow_multiple: bool = False
    show_results_live: bool = True


class WeightsUpdate(BaseModel):
    points: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Chat moderation
# ---------------------------------------------------------------------------
@router.post("/webinars/{webinar_id}/chat/{message_id}/pin")
def pin_message(webinar_id: str, message_id: str, body: PinUpdate, host: WebinarHostDep, runtime: RuntimeDep):
    return chat_service.set_message_pinned(
        runtime.engine, runtime.feed,
        webinar_id=webinar_id, message_id=message_id, pinned=body.pinned,
    )


@router.post("/webinars/{webinar_id}/chat/{message_id}/hide")
def hide_message(webinar_id: str, message_id: str, body: HiddenUpdate, host: WebinarHostDep, runtime: RuntimeDep):
    return chat_service.set_message_hidden(
        runtime.engine, runtime.feed,
        webinar_id=webinar_id, message_id=message_id, hidden=body.hidden,
    )


@router.delete("/webinars/{webinar_id}/chat/{message_id}", status_code=204)
def delete_message(webinar_id: str, message_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    chat_service.delete_chat_message(
        runtime.engine, runtime.feed, webinar_id=webinar_id, message_id=message_id,
    )


@router.get("/webinars/{webinar_id}/chat/all")
def list_all_messages(
    webinar_id: str, host: WebinarHostDep, runtime: RuntimeDep,
    limit: int = Query(200, ge=1, le=1000),
):
    """Moderator view, hidden messages included."""
    return chat_service.list_chat_messages(
        runtime.engine, webinar_id, limit=limit, include_hidden=True,
    )


# ---------------------------------------------------------------------------
# Q&A moderation
# ---------------------------------------------------------------------------
@router.post("/webinars/{webinar_id}/questions/{question_id}/answer")
def answer_question(
    webinar_id: str, question_id: str, body: AnswerCreate, host: WebinarHostDep, runtime: RuntimeDep,
):
    return qa_service.answer_question(
        runtime.engine, runtime.feed,
        webinar_id=webinar_id, question_id=question_id, answer=body.answer,
    )


@router.post("/webinars/{webinar_id}/questions/{question_id}/highlight")
def highlight_question(
    webinar_id: str, question_id: str, body: HighlightUpdate, host: WebinarHostDep, runtime: RuntimeDep,
):
    return qa_service.set_question_highlighted(
        runtime.engine, runtime.feed,
        webinar_id=webinar_id, question_id=question_id, highlighted=body.highlighted,
    )


@router.post("/webinars/{webinar_id}/questions/{question_id}/hide")
def hide_question(
    webinar_id: str, question_id: str, body: HiddenUpdate, host: WebinarHostDep, runtime: RuntimeDep,
):
    return qa_service.set_question_hidden(
        runtime.engine, runtime.feed,
        webinar_id=webinar_id, question_id=question_id, hidden=body.hidden,
    )


@router.delete("/webinars/{webinar_id}/questions/{question_id}", status_code=204)
def delete_question(webinar_id: str, question_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    qa_service.delete_question(
        runtime.engine, runtime.feed, webinar_id=webinar_id, question_id=question_id,
    )


# ---------------------------------------------------------------------------
# Poll lifecycle
# ---------------------------------------------------------------------------
@router.post("/webinars/{webinar_id}/polls", status_code=201)
def create_poll(webinar_id: str, body: PollCreate, host: WebinarHostDep, runtime: RuntimeDep):
    return poll_service.create_poll(
        runtime.engine, runtime.feed,
        webinar_id=webinar_id,
        question=body.question,
        options=body.options,
        allow_multiple=body.allow_multiple,
        show_results_live=body.show_results_live,
    )


@router.post("/webinars/{webinar_id}/polls/{poll_id}/activate")
def activate_poll(webinar_id: str, poll_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    return poll_service.activate_poll(
        runtime.engine, runtime.feed, webinar_id=webinar_id, poll_id=poll_id,
    )


@router.post("/webinars/{webinar_id}/polls/{poll_id}/close")
def close_poll(webinar_id: str, poll_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    return poll_service.close_poll(
        runtime.engine, runtime.feed, webinar_id=webinar_id, poll_id=poll_id,
    )


@router.delete("/webinars/{webinar_id}/polls/{poll_id}", status_code=204)
def delete_poll(webinar_id: str, poll_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    poll_service.delete_poll(
        runtime.engine, runtime.feed, webinar_id=webinar_id, poll_id=poll_id,
    )


@router.get("/webinars/{webinar_id}/polls/{poll_id}/results")
def poll_results(webinar_id: str, poll_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    return poll_service.get_poll_results(runtime.engine, poll_id).to_dict()


# ---------------------------------------------------------------------------
# Repair path
# ---------------------------------------------------------------------------
@router.post("/webinars/{webinar_id}/reconcile")
def reconcile(webinar_id: str, host: WebinarHostDep, runtime: RuntimeDep):
    """Rebuild upvote counters from detail rows and re-derive poll results."""
    report = reconciliation_service.recompute_upvote_counts(
        runtime.engine, runtime.feed, webinar_id=webinar_id,
    )
    polls = poll_service.list_polls(runtime.engine, webinar_id, include_drafts=True)["polls"]
    report["polls"] = [
        reconciliation_service.recompute_poll_results(runtime.engine, p["id"]) for p in polls
    ]
    return report


@router.post("/maintenance/prune-reactions")
def prune_reactions(host: HostDep, runtime: RuntimeDep):
    removed = reaction_service.prune_reactions(
        runtime.engine, older_than_hours=runtime.config.reaction_retention_hours,
    )
    return {"removed": removed}


# ---------------------------------------------------------------------------
# Weight tables
# ---------------------------------------------------------------------------
def _own_company(host, company_id: str) -> None:
    if host.company_id != company_id:
        raise AuthorizationError("Weight tables of another company")


@router.get("/companies/{company_id}/weights")
def get_weights(company_id: str, host: HostDep, runtime: RuntimeDep):
    _own_company(host, company_id)
    return engagement_service.get_weight_table(runtime.weights, company_id)


@router.put("/companies/{company_id}/weights")
def put_weights(company_id: str, body: WeightsUpdate, host: HostDep, runtime: RuntimeDep):
    _own_company(host, company_id)
    engagement_service.set_weights(
        runtime.engine, runtime.feed, company_id=company_id, points=body.points,
    )
    # Local reload; other API processes follow via NOTIFY.
    runtime.weights.handle_notify(engagement_service.WEIGHTS_TABLE)
    return engagement_service.get_weight_table(runtime.weights, company_id)


@router.delete("/companies/{company_id}/weights")
def delete_weights(
    company_id: str, host: HostDep, runtime: RuntimeDep,
    kind: list[str] | None = Query(None),
):
    _own_company(host, company_id)
    removed = engagement_service.reset_weights(
        runtime.engine, runtime.feed, company_id=company_id, kinds=kind,
    )
    runtime.weights.handle_notify(engagement_service.WEIGHTS_TABLE)
    return {"removed": removed, **engagement_service.get_weight_table(runtime.weights, company_id)}
