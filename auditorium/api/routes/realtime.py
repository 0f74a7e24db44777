"""
auditorium.api.routes.realtime — WebSocket gateway
===================================================

``/api/webinars/{webinar_id}/realtime?token=…`` carries JSON frames both
ways for one :class:`~auditorium.realtime.gateway.GatewaySession`.  Browsers
cannot set headers on a WebSocket handshake, so the bearer token rides in
the query string.

Close codes: 4401 bad token, 4403 token not valid for this webinar.
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from auditorium.api.deps import Runtime, decode_actor, get_runtime
from auditorium.errors import AuthenticationError
from auditorium.realtime.gateway import GatewaySession
from auditorium.realtime.messages import ServerEvent, frame

logger = logging.getLogger(__name__)
router = APIRouter(tags=["realtime"])


async def _pump(session: GatewaySession, websocket: WebSocket) -> None:
    while True:
        message = await session.outbound.get()
        await websocket.send_text(json.dumps(message))


@router.websocket("/webinars/{webinar_id}/realtime")
async def realtime(
    websocket: WebSocket,
    webinar_id: str,
    token: str = Query(""),
    runtime: Runtime = Depends(get_runtime),
):
    try:
        actor = decode_actor(token)
    except AuthenticationError:
        await websocket.close(code=4401)
        return
    if not actor.can_access(webinar_id):
        await websocket.close(code=4403)
        return

    await websocket.accept()
    session = GatewaySession(
        runtime.hub,
        runtime.presence,
        webinar_id=webinar_id,
        registration_id=actor.registration_id or f"host:{actor.sub}",
        display_name=actor.name,
    )
    sender = asyncio.create_task(_pump(session, websocket), name=f"ws-send-{session.connection_id}")
    logger.info("Realtime connection %s opened (webinar=%s)", session.connection_id, webinar_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                session.send(frame("", ServerEvent.ERROR, {"reason": "invalid JSON"}))
                continue
            if not isinstance(data, dict):
                session.send(frame("", ServerEvent.ERROR, {"reason": "frames must be objects"}))
                continue
            session.handle(data)
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        session.close()
        logger.info("Realtime connection %s closed", session.connection_id)
