"""WebSocket endpoint tests: auth, protocol and channel authorization."""

from __future__ import annotations

import jwt
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from campusnet.auth.jwt import create_access_token, verify_token
from campusnet.errors import Forbidden, Unauthorized
from campusnet.feed.changes import commit
from campusnet.messaging.service import get_or_create_conversation
from campusnet.moderation.service import ban_user
from campusnet.ws import router as ws_router
from campusnet.ws.router import authenticate_socket, authorize_channel


@pytest.fixture
def ws_token() -> str:
    return create_access_token(1)


async def _token_only(token: str) -> int:
    try:
        return int(verify_token(token, expected_type="access")["sub"])
    except jwt.InvalidTokenError as e:
        raise Unauthorized(str(e)) from e


@pytest.fixture
def test_client(monkeypatch) -> TestClient:
    """Sync TestClient; the lifespan is not entered, so the handshake checks the token only."""
    monkeypatch.setattr(ws_router, "authenticate_socket", _token_only)
    from campusnet.main import create_app

    return TestClient(create_app())


class TestWebSocketAuth:
    def test_connect_with_valid_token(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_connect_with_invalid_token(self, test_client: TestClient) -> None:
        with pytest.raises(Exception):
            with test_client.websocket_connect("/ws?token=invalid.jwt.token") as ws:
                ws.receive_json()

    def test_connect_with_expired_token(self, test_client: TestClient) -> None:
        token = create_access_token(1, expires_minutes=-1)
        with pytest.raises(Exception):
            with test_client.websocket_connect(f"/ws?token={token}") as ws:
                ws.receive_json()

    def test_banned_user_closed_with_4003(self, test_client: TestClient, ws_token: str, monkeypatch) -> None:
        async def banned(token: str) -> int:
            raise Forbidden("Account is banned")

        monkeypatch.setattr(ws_router, "authenticate_socket", banned)
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
                ws.receive_json()
        assert exc_info.value.code == 4003


class TestAuthenticateSocket:
    @pytest.mark.asyncio
    async def test_active_user(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        assert await authenticate_socket(create_access_token(ana.id)) == ana.id

    @pytest.mark.asyncio
    async def test_unknown_user_rejected(self, store) -> None:
        with pytest.raises(Unauthorized):
            await authenticate_socket(create_access_token(404))

    @pytest.mark.asyncio
    async def test_banned_user_rejected(self, db, make_profile) -> None:
        admin = await make_profile("dean", role="admin")
        ana = await make_profile("ana")
        await ban_user(db, admin.id, ana.id, "spam")
        await db.commit()

        with pytest.raises(Forbidden):
            await authenticate_socket(create_access_token(ana.id))


class TestWebSocketProtocol:
    def test_invalid_json(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_text("not valid json {{{")
            data = ws.receive_json()
            assert data["type"] == "error"
            assert "Invalid JSON" in data["message"]

    def test_unknown_action(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "explode"})
            assert "Unknown action" in ws.receive_json()["message"]

    def test_subscribe_to_invalid_channel(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "subscribe", "channel": "mining"})
            assert ws.receive_json() == {"type": "error", "message": "Invalid channel: mining"}

    def test_unsubscribe(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "unsubscribe", "channel": "post:1"})
            assert ws.receive_json() == {"type": "unsubscribed", "channel": "post:1"}


class TestAuthorizeChannel:
    @pytest.mark.asyncio
    async def test_conversation_members_only(self, db, redis, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        cai = await make_profile("cai")
        conversation = await get_or_create_conversation(db, ana.id, ben.id)
        await commit(db, redis)

        assert await authorize_channel(ben.id, f"conversation:{conversation.id}") is None
        assert await authorize_channel(cai.id, f"conversation:{conversation.id}") is not None
        assert await authorize_channel(ana.id, "conversation:999") is not None

    @pytest.mark.asyncio
    async def test_post_channel_requires_existing_post(self, db, make_profile, make_post) -> None:
        ana = await make_profile("ana")
        post = await make_post(ana)

        assert await authorize_channel(ana.id, f"post:{post.id}") is None
        assert await authorize_channel(ana.id, "post:999") is not None
