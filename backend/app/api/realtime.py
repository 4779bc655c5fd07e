"""
Realtime session layer.

One authenticated WebSocket per client. Frames are JSON objects of the form
{"event": <name>, "data": <payload>}:

    inbound   submit-turn  {chat, message}
    outbound  turn-result  {content, chat}
    outbound  turn-error   {error, code}

Connections without a valid identity are closed before they are accepted, so the
orchestrator is never reached. Each submitted turn runs as its own task; replies
go back only to the socket that submitted the turn.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, ValidationError

from backend.app.conversation.store import require_chat_owner
from backend.app.core.auth.jwt_auth import extract_token, resolve_user
from backend.app.core.errors import ChatMemoryError, InvalidInput
from backend.app.observability.logging import log_event, turn_id_ctx
from backend.app.orchestrator.factory import AppServices

router = APIRouter(tags=["realtime"])

SUBMIT_TURN = "submit-turn"
TURN_RESULT = "turn-result"
TURN_ERROR = "turn-error"


class SubmitTurnPayload(BaseModel):
    chat: str
    message: str


class RealtimeSession:
    def __init__(self, websocket: WebSocket, user: dict[str, Any], services: AppServices):
        self.websocket = websocket
        self.user = user
        self.services = services
        self._send_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    async def send(self, event: str, data: dict[str, Any]):
        try:
            async with self._send_lock:
                await self.websocket.send_json({"event": event, "data": data})
        except (WebSocketDisconnect, RuntimeError) as exc:
            log_event("realtime_undeliverable", level=logging.WARNING, event_name=event, user_id=self.user["id"], error=str(exc))

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(self, data: Any):
        task = asyncio.create_task(self.handle_turn(data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_turn(self, data: Any):
        token = turn_id_ctx.set(uuid.uuid4().hex)
        user_id = self.user["id"]
        try:
            try:
                payload = SubmitTurnPayload.model_validate(data if isinstance(data, dict) else {})
            except ValidationError as exc:
                raise InvalidInput("submit-turn requires 'chat' and 'message' strings") from exc
            if not payload.chat.strip():
                raise InvalidInput("chat is required")
            if not payload.message.strip():
                raise InvalidInput("message must not be empty")

            if self.services.settings.validate_chat_ownership:
                await asyncio.to_thread(require_chat_owner, self.services.conversation_store, payload.chat, user_id)

            result = await self.services.orchestrator.process_turn(payload.chat, user_id, payload.message)
            await self.send(TURN_RESULT, result.to_event_payload())
        except ChatMemoryError as exc:
            log_event("turn_failed", level=logging.WARNING, user_id=user_id, error_class=exc.code, stage=exc.stage, error=str(exc))
            await self.send(TURN_ERROR, exc.to_payload())
        except Exception as exc:
            log_event("turn_failed_unexpectedly", level=logging.ERROR, user_id=user_id, error_class=type(exc).__name__, error=str(exc))
            await self.send(TURN_ERROR, {"error": "Internal error", "code": "InternalError"})
        finally:
            turn_id_ctx.reset(token)


@router.websocket("/ws")
async def realtime_endpoint(websocket: WebSocket):
    services: AppServices = websocket.app.state.services
    token = extract_token(
        websocket.cookies,
        websocket.headers,
        websocket.query_params,
        services.settings.auth_cookie_name,
    )
    user = await asyncio.to_thread(resolve_user, token, services)
    if user is None:
        log_event("realtime_rejected", level=logging.WARNING, reason="missing token" if not token else "invalid token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Authentication error")
        return

    await websocket.accept()
    session = RealtimeSession(websocket, user, services)
    log_event("realtime_connected", user_id=user["id"])

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await session.send(TURN_ERROR, InvalidInput("frames must be JSON objects").to_payload())
                continue

            event = frame.get("event") if isinstance(frame, dict) else None
            if event == SUBMIT_TURN:
                session.submit(frame.get("data"))
            else:
                await session.send(TURN_ERROR, InvalidInput(f"unsupported event: {event}").to_payload())
    except WebSocketDisconnect:
        # In-flight turns keep running; their results are dropped on send.
        log_event("realtime_disconnected", user_id=user["id"], in_flight=session.in_flight)
