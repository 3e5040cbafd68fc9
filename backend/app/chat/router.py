"""Chat router providing the WebSocket endpoint and a diagnostics route.

This module provides:
    - WebSocket /ws/chat: Real-time chat messaging
    - GET /chat/online: Usernames with at least one live connection

Every frame is a JSON object with an ``event`` key.

Protocol Events (client -> server):
    - join: {event: "join", username}
    - getMessages: {event: "getMessages", type: "global"}
                   {event: "getMessages", type: "direct", me, mate}
    - sendMessage: {event: "sendMessage", text, sender_username,
                    receiver_username?, type?, file_url?}

Protocol Events (server -> client):
    - history: {event: "history", messages: [...]} (requester only)
    - receiveMessage: {event: "receiveMessage", message: {...}}
    - error: {event: "error", error: "..."} (malformed frames only)
"""
import json
import logging

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .hub import ChatHub
from .schemas import HistoryRequest, SendMessagePayload

logger = logging.getLogger(__name__)

router = APIRouter()


def get_chat_hub(connection) -> ChatHub:
    """Return the hub stored on the application by the lifespan."""
    return connection.app.state.chat_hub


async def _send_error(websocket: WebSocket, error: str) -> None:
    await websocket.send_json({"event": "error", "error": error})


@router.get("/chat/online")
async def online_users(request: Request) -> JSONResponse:
    """List usernames that currently have a live connection.

    Returns:
        JSON with the sorted usernames and the total connection count.
    """
    hub = get_chat_hub(request)
    return JSONResponse({
        "users": hub.registry.online_usernames(),
        "connections": len(hub.registry),
    })


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for a single chat client.

    Protocol Flow:
        1. Client connects, then sends {event: "join", username}
        2. Client asks for history with getMessages
           → Server sends history to this connection only
        3. Client sends sendMessage
           → Server stores it, then emits receiveMessage to the targets
        4. On disconnect the connection is dropped from the registry

    A message that cannot be stored is dropped without telling the sender;
    the same goes for a history request the store cannot answer.
    """
    hub = get_chat_hub(websocket)
    await websocket.accept()
    logger.info("[WS] New connection")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            raw = message.get("text")
            if raw is None:
                await _send_error(websocket, "Invalid frame: expected JSON text")
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await _send_error(websocket, "Invalid frame: expected JSON")
                continue

            if not isinstance(data, dict):
                await _send_error(websocket, "Invalid frame: expected a JSON object")
                continue

            event = data.get("event")
            logger.debug("[WS] Received: event=%s", event or "?")

            # --- Handle JOIN ---
            if event == "join":
                username = data.get("username")
                if not isinstance(username, str) or not username.strip():
                    await _send_error(websocket, "join requires a username")
                    continue
                hub.join(websocket, username)
                logger.info(f"[WS] JOIN as {username}")
                continue

            # --- Handle GET MESSAGES (history) ---
            if event == "getMessages":
                try:
                    request = HistoryRequest.model_validate(data)
                except ValidationError as e:
                    logger.warning(f"[WS] Rejected getMessages: {e.errors()[0]['msg']}")
                    await _send_error(websocket, "Invalid getMessages request")
                    continue
                await hub.history.send_history(websocket, request)
                continue

            # --- Handle SEND MESSAGE ---
            if event == "sendMessage":
                try:
                    payload = SendMessagePayload.model_validate(data)
                except ValidationError as e:
                    logger.warning(f"[WS] Rejected sendMessage: {e.errors()[0]['msg']}")
                    await _send_error(websocket, "Invalid sendMessage payload")
                    continue
                await hub.router.send_message(payload)
                continue

            await _send_error(websocket, f"Unknown event: {event}")

    except WebSocketDisconnect:
        logger.info("[WS] Client disconnected")
    finally:
        username = hub.leave(websocket)
        if username:
            logger.info(
                f"[WS] {username} now has {hub.registry.connection_count(username)} connections"
            )
