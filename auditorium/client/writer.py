"""
auditorium.client.writer — Where Sync Units Send Their Writes
==============================================================

Sync units never touch the Event Store directly; they go through an
:class:`EngagementWriter`.  Two implementations:

* :class:`ServiceWriter` — calls the service layer in-process via
  :func:`~auditorium.database.engine.run_db` (embedded use, tests).
* :class:`HttpWriter` — calls the REST API with ``httpx`` and maps error
  responses back onto the :mod:`auditorium.errors` taxonomy, so a unit
  cannot tell the two apart.

Both raise :class:`~auditorium.errors.AuditoriumError` subclasses only.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from sqlalchemy import Engine

from auditorium.database.engine import run_db
from auditorium.engine.weights import WeightCache
from auditorium.errors import (
    CONSTRAINT_ERRORS,
    AuditoriumError,
    AuthenticationError,
    AuthorizationError,
    ConstraintViolation,
    FeatureDisabledError,
    InvalidInputError,
    NotFoundError,
    WriteFailedError,
)
from auditorium.realtime.feed import ChangeFeed
from auditorium.services import (
    chat_service,
    engagement_service,
    poll_service,
    qa_service,
    reaction_service,
    watch_service,
)

logger = logging.getLogger(__name__)


class EngagementWriter(Protocol):
    webinar_id: str
    registration_id: str

    async def send_chat_message(self, message_id: str, message: str) -> dict[str, Any]: ...

    async def submit_question(self, question_id: str, question: str) -> dict[str, Any]: ...

    async def add_upvote(self, question_id: str) -> int: ...

    async def remove_upvote(self, question_id: str) -> int: ...

    async def submit_poll_response(
        self, response_id: str, poll_id: str, option_ids: list[str],
    ) -> dict[str, Any]: ...

    async def send_reaction(self, reaction_id: str, emoji: str) -> dict[str, Any]: ...

    async def track_cta_click(self, cta: str, click_id: str | None = None) -> dict[str, Any]: ...

    async def start_watch_session(self) -> dict[str, Any]: ...

    async def update_watch_progress(
        self, session_id: str, position_seconds: float, duration_seconds: float,
    ) -> list[int]: ...

    async def end_watch_session(
        self, session_id: str, position_seconds: float, duration_seconds: float,
    ) -> dict[str, Any]: ...


# ---------------------------------------------------------------------------
# In-process
# ---------------------------------------------------------------------------
class ServiceWriter:
    """Writer bound to one registrant, backed by the service layer."""

    def __init__(
        self,
        engine: Engine,
        feed: ChangeFeed,
        weights: WeightCache,
        *,
        webinar_id: str,
        registration_id: str,
    ) -> None:
        self.engine = engine
        self.feed = feed
        self.weights = weights
        self.webinar_id = webinar_id
        self.registration_id = registration_id

    async def send_chat_message(self, message_id: str, message: str) -> dict[str, Any]:
        return await run_db(
            chat_service.send_chat_message, self.engine, self.feed, self.weights,
            webinar_id=self.webinar_id, registration_id=self.registration_id,
            message=message, message_id=message_id,
        )

    async def submit_question(self, question_id: str, question: str) -> dict[str, Any]:
        return await run_db(
            qa_service.submit_question, self.engine, self.feed, self.weights,
            webinar_id=self.webinar_id, registration_id=self.registration_id,
            question=question, question_id=question_id,
        )

    async def add_upvote(self, question_id: str) -> int:
        return await run_db(
            qa_service.add_upvote, self.engine, self.feed, self.weights,
            webinar_id=self.webinar_id, question_id=question_id,
            registration_id=self.registration_id,
        )

    async def remove_upvote(self, question_id: str) -> int:
        return await run_db(
            qa_service.remove_upvote, self.engine, self.feed,
            webinar_id=self.webinar_id, question_id=question_id,
            registration_id=self.registration_id,
        )

    async def submit_poll_response(
        self, response_id: str, poll_id: str, option_ids: list[str],
    ) -> dict[str, Any]:
        return await run_db(
            poll_service.submit_poll_response, self.engine, self.feed, self.weights,
            webinar_id=self.webinar_id, poll_id=poll_id,
            registration_id=self.registration_id, option_ids=option_ids,
            response_id=response_id,
        )

    async def send_reaction(self, reaction_id: str, emoji: str) -> dict[str, Any]:
        return await run_db(
            reaction_service.send_reaction, self.engine, self.feed, self.weights,
            webinar_id=self.webinar_id, registration_id=self.registration_id,
            emoji=emoji, reaction_id=reaction_id,
        )

    async def track_cta_click(self, cta: str, click_id: str | None = None) -> dict[str, Any]:
        return await run_db(
            engagement_service.track_cta_click, self.engine, self.weights,
            webinar_id=self.webinar_id, registration_id=self.registration_id,
            cta=cta, click_id=click_id,
        )

    async def start_watch_session(self) -> dict[str, Any]:
        return await run_db(
            watch_service.start_watch_session, self.engine,
            webinar_id=self.webinar_id, registration_id=self.registration_id,
        )

    async def update_watch_progress(
        self, session_id: str, position_seconds: float, duration_seconds: float,
    ) -> list[int]:
        return await run_db(
            watch_service.update_watch_progress, self.engine, self.weights,
            session_id=session_id, position_seconds=position_seconds,
            duration_seconds=duration_seconds, registration_id=self.registration_id,
        )

    async def end_watch_session(
        self, session_id: str, position_seconds: float, duration_seconds: float,
    ) -> dict[str, Any]:
        return await run_db(
            watch_service.end_watch_session, self.engine,
            session_id=session_id, position_seconds=position_seconds,
            duration_seconds=duration_seconds, registration_id=self.registration_id,
        )


# ---------------------------------------------------------------------------
# Over HTTP
# ---------------------------------------------------------------------------
_STATUS_ERRORS: dict[int, type[AuditoriumError]] = {
    404: NotFoundError,
    409: ConstraintViolation,
    422: InvalidInputError,
}


def error_from_response(response: httpx.Response) -> AuditoriumError:
    """Rebuild the domain error behind an API error response."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    detail = str(body.get("detail") or response.reason_phrase or "request failed")
    code = body.get("code")

    if code in CONSTRAINT_ERRORS:
        return CONSTRAINT_ERRORS[code](detail)
    if response.status_code == 403:
        if code == FeatureDisabledError.code:
            return FeatureDisabledError(detail)
        return AuthorizationError(detail)
    if response.status_code == 401:
        return AuthenticationError(detail)
    cls = _STATUS_ERRORS.get(response.status_code, WriteFailedError)
    return cls(detail)


class HttpWriter:
    """Writer that talks to the REST API as one authenticated registrant.

    The bearer token carries ``webinar_id`` and ``registration_id``; they
    are passed here too only to build URLs and label optimistic rows.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        webinar_id: str,
        registration_id: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.webinar_id = webinar_id
        self.registration_id = registration_id
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {token}"}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpWriter:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _call(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        url = f"/api/webinars/{self.webinar_id}{path}"
        try:
            response = await self._client.request(method, url, json=payload, headers=self._headers)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise WriteFailedError(f"Request failed: {exc}") from exc
        if response.is_error:
            raise error_from_response(response)
        return response.json()

    async def send_chat_message(self, message_id: str, message: str) -> dict[str, Any]:
        return await self._call("POST", "/chat", {"message_id": message_id, "message": message})

    async def submit_question(self, question_id: str, question: str) -> dict[str, Any]:
        return await self._call(
            "POST", "/questions", {"question_id": question_id, "question": question},
        )

    async def add_upvote(self, question_id: str) -> int:
        body = await self._call("POST", f"/questions/{question_id}/upvote")
        return body["upvote_count"]

    async def remove_upvote(self, question_id: str) -> int:
        body = await self._call("DELETE", f"/questions/{question_id}/upvote")
        return body["upvote_count"]

    async def submit_poll_response(
        self, response_id: str, poll_id: str, option_ids: list[str],
    ) -> dict[str, Any]:
        return await self._call(
            "POST", f"/polls/{poll_id}/responses",
            {"response_id": response_id, "option_ids": list(option_ids)},
        )

    async def send_reaction(self, reaction_id: str, emoji: str) -> dict[str, Any]:
        return await self._call("POST", "/reactions", {"reaction_id": reaction_id, "emoji": emoji})

    async def track_cta_click(self, cta: str, click_id: str | None = None) -> dict[str, Any]:
        return await self._call("POST", "/cta-clicks", {"cta": cta, "click_id": click_id})

    async def start_watch_session(self) -> dict[str, Any]:
        return await self._call("POST", "/watch-sessions")

    async def update_watch_progress(
        self, session_id: str, position_seconds: float, duration_seconds: float,
    ) -> list[int]:
        body = await self._call(
            "POST", f"/watch-sessions/{session_id}/progress",
            {"position_seconds": position_seconds, "duration_seconds": duration_seconds},
        )
        return list(body["new_milestones"])

    async def end_watch_session(
        self, session_id: str, position_seconds: float, duration_seconds: float,
    ) -> dict[str, Any]:
        return await self._call(
            "POST", f"/watch-sessions/{session_id}/end",
            {"position_seconds": position_seconds, "duration_seconds": duration_seconds},
        )
