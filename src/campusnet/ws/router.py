"""WebSocket endpoint with JWT authentication and channel multiplexing."""

import json
import uuid

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from campusnet.auth.dependencies import authenticate
from campusnet.config import get_settings
from campusnet.database import get_session_factory
from campusnet.errors import CampusError, Forbidden
from campusnet.messaging.service import require_participant
from campusnet.posts.service import get_post
from campusnet.ws.manager import manager, parse_channel

logger = structlog.get_logger()

router = APIRouter()


async def authorize_channel(user_id: int, channel: str) -> str | None:
    """Return an error message if the user may not subscribe to ``channel``."""
    parsed = parse_channel(channel)
    if parsed is None:
        return f"Invalid channel: {channel}"
    kind, target_id = parsed
    async with get_session_factory()() as db:
        try:
            if kind == "conversation":
                await require_participant(db, target_id, user_id)
            else:
                await get_post(db, target_id)
        except CampusError as e:
            return e.detail
    return None


async def authenticate_socket(token: str) -> int:
    """Resolve the handshake token to an active user id, as the HTTP routes do."""
    async with get_session_factory()() as db:
        profile = await authenticate(db, token)
        return profile.id


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
) -> None:
    """Single WebSocket endpoint with JWT authentication and channel multiplexing.

    Protocol:
        Client -> Server:
            {"action": "subscribe", "channel": "conversation:7"}
            {"action": "unsubscribe", "channel": "post:12"}
            {"action": "ping"}

        Server -> Client:
            {"channel": "conversation:7", "data": {"table": ..., "kind": ..., "row": {...}}}
            {"type": "notification", "payload": {...}}
            {"type": "pong"}
            {"type": "error", "message": "..."}
            {"type": "subscribed", "channel": "post:12"}
            {"type": "unsubscribed", "channel": "post:12"}
    """
    try:
        user_id = await authenticate_socket(token)
    except Forbidden as e:
        await websocket.close(code=4003, reason=e.detail)
        return
    except CampusError as e:
        await websocket.close(code=4001, reason=f"Authentication failed: {e.detail}")
        return

    if manager.user_connection_count(user_id) >= get_settings().ws_max_connections_per_user:
        await websocket.close(code=4008, reason="Too many connections")
        return

    conn_id = str(uuid.uuid4())
    await manager.connect(websocket, conn_id, user_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue

            action = msg.get("action")

            if action == "subscribe":
                channel = msg.get("channel", "")
                error = await authorize_channel(user_id, channel)
                if error is None and await manager.subscribe(conn_id, channel):
                    await websocket.send_json({"type": "subscribed", "channel": channel})
                else:
                    await websocket.send_json({"type": "error", "message": error or f"Invalid channel: {channel}"})

            elif action == "unsubscribe":
                channel = msg.get("channel", "")
                await manager.unsubscribe(conn_id, channel)
                await websocket.send_json({"type": "unsubscribed", "channel": channel})

            elif action == "ping":
                await websocket.send_json({"type": "pong"})

            else:
                await websocket.send_json({"type": "error", "message": f"Unknown action: {action}"})

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("ws_error", conn_id=conn_id)
    finally:
        await manager.disconnect(conn_id)
