"""
auditorium.api.routes.interactions — Attendee writes and page-load snapshots
=============================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from auditorium.api.deps import AttendeeDep, RuntimeDep, ViewerDep
from auditorium.services import (
    chat_service,
    engagement_service,
    poll_service,
    qa_service,
    reaction_service,
)

router = APIRouter(prefix="/webinars/{webinar_id}", tags=["interactions"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ChatMessageCreate(BaseModel):
    message: str
    message_id: str | None = Field(default=None, max_length=36)


class QuestionCreate(BaseModel):
    question: str
    question_id: str | None = Field(default=None, max_length=36)


class PollResponseCreate(BaseModel):
    option_ids: list[str]
    response_id: str | None = Field(default=None, max_length=36)


class ReactionCreate(BaseModel):
    emoji: str
    reaction_id: str | None = Field(default=None, max_length=36)


class CtaClick(BaseModel):
    cta: str
    click_id: str | None = Field(default=None, max_length=200)


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------
@router.post("/chat", status_code=201)
def send_chat_message(webinar_id: str, body: ChatMessageCreate, actor: AttendeeDep, runtime: RuntimeDep):
    return chat_service.send_chat_message(
        runtime.engine, runtime.feed, runtime.weights,
        webinar_id=webinar_id,
        registration_id=actor.registration_id,
        message=body.message,
        message_id=body.message_id,
        max_length=runtime.config.max_chat_message_length,
    )


@router.get("/chat")
def list_chat_messages(
    webinar_id: str,
    actor: ViewerDep,
    runtime: RuntimeDep,
    limit: int = Query(100, ge=1, le=500),
):
    return chat_service.list_chat_messages(runtime.engine, webinar_id, limit=limit)


@router.get("/chat/pinned")
def list_pinned_messages(webinar_id: str, actor: ViewerDep, runtime: RuntimeDep):
    return chat_service.list_pinned_messages(runtime.engine, webinar_id)


# ---------------------------------------------------------------------------
# Q&A
# ---------------------------------------------------------------------------
@router.post("/questions", status_code=201)
def submit_question(webinar_id: str, body: QuestionCreate, actor: AttendeeDep, runtime: RuntimeDep):
    return qa_service.submit_question(
        runtime.engine, runtime.feed, runtime.weights,
        webinar_id=webinar_id,
        registration_id=actor.registration_id,
        question=body.question,
        question_id=body.question_id,
    )


@router.post("/questions/{question_id}/upvote")
def add_upvote(webinar_id: str, question_id: str, actor: AttendeeDep, runtime: RuntimeDep):
    count = qa_service.add_upvote(
        runtime.engine, runtime.feed, runtime.weights,
        webinar_id=webinar_id,
        question_id=question_id,
        registration_id=actor.registration_id,
    )
    return {"question_id": question_id, "upvote_count": count}


@router.delete("/questions/{question_id}/upvote")
def remove_upvote(webinar_id: str, question_id: str, actor: AttendeeDep, runtime: RuntimeDep):
    count = qa_service.remove_upvote(
        runtime.engine, runtime.feed,
        webinar_id=webinar_id,
        question_id=question_id,
        registration_id=actor.registration_id,
    )
    return {"question_id": question_id, "upvote_count": count}


@router.get("/questions")
def list_questions(webinar_id: str, actor: ViewerDep, runtime: RuntimeDep):
    return qa_service.list_questions(
        runtime.engine, webinar_id, registration_id=actor.registration_id,
    )


# ---------------------------------------------------------------------------
# Polls
# ---------------------------------------------------------------------------
@router.post("/polls/{poll_id}/responses", status_code=201)
def submit_poll_response(
    webinar_id: str, poll_id: str, body: PollResponseCreate, actor: AttendeeDep, runtime: RuntimeDep,
):
    return poll_service.submit_poll_response(
        runtime.engine, runtime.feed, runtime.weights,
        webinar_id=webinar_id,
        poll_id=poll_id,
        registration_id=actor.registration_id,
        option_ids=body.option_ids,
        response_id=body.response_id,
    )


@router.get("/polls")
def list_polls(webinar_id: str, actor: ViewerDep, runtime: RuntimeDep):
    return poll_service.list_polls(
        runtime.engine, webinar_id,
        registration_id=actor.registration_id,
        include_drafts=actor.is_host,
    )


# ---------------------------------------------------------------------------
# Reactions & CTA
# ---------------------------------------------------------------------------
@router.post("/reactions", status_code=201)
def send_reaction(webinar_id: str, body: ReactionCreate, actor: AttendeeDep, runtime: RuntimeDep):
    return reaction_service.send_reaction(
        runtime.engine, runtime.feed, runtime.weights,
        webinar_id=webinar_id,
        registration_id=actor.registration_id,
        emoji=body.emoji,
        reaction_id=body.reaction_id,
    )


@router.post("/cta-clicks")
def track_cta_click(webinar_id: str, body: CtaClick, actor: AttendeeDep, runtime: RuntimeDep):
    return engagement_service.track_cta_click(
        runtime.engine, runtime.weights,
        webinar_id=webinar_id,
        registration_id=actor.registration_id,
        cta=body.cta,
        click_id=body.click_id,
    )
