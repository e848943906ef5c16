"""Chat router providing the WebSocket endpoint.

This module provides:
    - WebSocket /ws/chat?token=<jwt>: Real-time room and private chat

Every frame in both directions is a JSON object ``{"event": ..., "data": ...}``.

Protocol Flow:
    1. Client connects with a token from /login or /signup
       → invalid or missing token: socket closed with code 1008
       → Server sends: {event: "connected", data: {connectionId, username}}
    2. {event: "join_room", data: {room, username, password?}}
       → Room receives: {event: "room_users", data: [{username, connectionId}]}
       → Joiner receives: {event: "message_history", data: [...]} if any
    3. {event: "send_message", data: {room, text}}
       → Room receives: {event: "receive_message", data: {...}}
    4. {event: "send_private_message", data: {toUsername, text}}
       → Sender (and recipient if online): {event: "receive_private_message"}
       → Sender, if recipient offline: {event: "private_message_error"}
    5. {event: "request_private_history", data: {otherUsername}}
       → Sender receives: {event: "private_message_history", data: {...}}
    6. {event: "typing", data: {room}}
       → Room receives: {event: "typing_users", data: [...]} now and on expiry
    7. On disconnect → affected rooms receive updated room_users/typing_users

A client that exceeds its rate limit is closed with code 1008 and no reply.
Frames that are not a JSON envelope, binary frames included, get
{event: "error", data: "Invalid event format"}.
"""
import logging
from typing import Any, Optional, Tuple

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from .coordinator import get_coordinator
from .schemas import EventEnvelope

logger = logging.getLogger(__name__)

router = APIRouter()

# 1008 = Policy Violation
POLICY_VIOLATION = 1008


def decode_frame(raw: str) -> Tuple[Optional[str], Any]:
    """Parse a text frame into (event, data); (None, None) if malformed."""
    try:
        envelope = EventEnvelope.model_validate_json(raw)
    except ValidationError:
        return None, None
    return envelope.event, envelope.data


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Session token from /login or /signup"),
) -> None:
    """WebSocket endpoint for one chat client.

    Args:
        websocket: The WebSocket connection.
        token: Credential presented at connection time.
    """
    coordinator = get_coordinator()

    await websocket.accept()
    info = coordinator.open(websocket)

    try:
        if not await coordinator.authenticate(info, token):
            logger.info(f"[WS] Rejecting connection {info.connectionId}")
            await websocket.close(code=POLICY_VIOLATION)
            return

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            # Binary frames are never a valid envelope, but still count as events
            raw = message.get("text")
            event, data = decode_frame(raw) if raw is not None else (None, None)
            logger.debug("[WS] %s received: event=%s", info.connectionId, event)

            if not await coordinator.handle_event(info, event, data):
                logger.warning(f"[WS] Closing connection {info.connectionId} (admission refused)")
                await websocket.close(code=POLICY_VIOLATION)
                return

    except WebSocketDisconnect:
        logger.info(f"[WS] Client {info.connectionId} disconnected")

    finally:
        await coordinator.disconnect(info)
