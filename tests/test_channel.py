"""
tests/test_channel.py - WebSocket channel gateway tests.

Covers the per-channel state machine (unauthenticated / authenticated /
closed), framing errors, size and idle limits, and the end-to-end
login -> channel -> command flow.
"""

import asyncio
import json
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from mcp_testbed.main import create_apps
from mcp_testbed.websocket import ChannelConnection, ChannelGateway, _with_timeout


GENERIC_ERROR = {"type": "error", "message": "Unknown message type or not authenticated"}
FORMAT_ERROR = {"type": "error", "message": "Invalid message format"}


def _auth(ws, token):
    ws.send_json({"type": "auth", "sessionToken": token})
    return ws.receive_json()


class _StalledSocket:
    """A client that sends one ping and then never reads its replies."""

    def __init__(self):
        self.closed = None
        self._sent_ping = False

    async def accept(self):
        pass

    async def receive(self):
        if not self._sent_ping:
            self._sent_ping = True
            return {"type": "websocket.receive", "text": '{"type": "ping"}'}
        return {"type": "websocket.disconnect", "code": 1000}

    async def send_json(self, data):
        await asyncio.sleep(3600)

    async def close(self, code=1000, reason=None):
        self.closed = (code, reason)


# -----------------------------------------------------------------------------
# End-to-end
# -----------------------------------------------------------------------------

class TestScenario:
    def test_login_auth_get_status(self, auth_client, channel_client):
        resp = auth_client.post("/mcp/auth", json={"username": "alice", "password": "x"})
        assert resp.status_code == 200
        token = resp.json()["sessionToken"]
        assert len(token) == 32

        with channel_client.websocket_connect("/mcp") as ws:
            reply = _auth(ws, token)
            assert reply["type"] == "auth_response"
            assert reply["success"] is True
            assert reply["username"] == "alice"
            assert reply["permissions"] == ["read", "write", "admin"]

            ws.send_json({"type": "command", "action": "get_status", "requestId": "1"})
            reply = ws.receive_json()
            assert reply["type"] == "command_response"
            assert reply["action"] == "get_status"
            assert reply["requestId"] == "1"
            assert reply["data"]["activeSessions"] == 1
            assert reply["data"]["activeChannels"] == 1
            assert reply["data"]["status"] == "online"

    def test_active_sessions_track_logins(self, login, channel_client):
        tokens = [login(f"user{i}") for i in range(3)]
        with channel_client.websocket_connect("/mcp") as ws:
            _auth(ws, tokens[0])
            ws.send_json({"type": "command", "action": "get_status", "requestId": "a"})
            assert ws.receive_json()["data"]["activeSessions"] == 3
            login("late")
            ws.send_json({"type": "command", "action": "get_status", "requestId": "b"})
            assert ws.receive_json()["data"]["activeSessions"] == 4

    def test_list_and_update_resources(self, login, channel_client):
        with channel_client.websocket_connect("/mcp") as ws:
            _auth(ws, login())
            ws.send_json({"type": "command", "action": "list_resources", "requestId": 2})
            reply = ws.receive_json()
            assert [r["id"] for r in reply["data"]["resources"]] == ["res1", "res2", "res3"]

            ws.send_json({
                "type": "command", "action": "update_resource", "requestId": 3,
                "resourceId": "res3", "data": {"status": "active"},
            })
            reply = ws.receive_json()
            assert reply["success"] is True
            assert reply["data"]["resourceId"] == "res3"

            ws.send_json({"type": "command", "action": "update_resource", "requestId": 4, "resourceId": "res3"})
            reply = ws.receive_json()
            assert reply["success"] is False
            assert reply["requestId"] == 4

            ws.send_json({"type": "command", "action": "self_destruct", "requestId": 5})
            reply = ws.receive_json()
            assert reply == {
                "type": "command_response",
                "action": "self_destruct",
                "requestId": 5,
                "success": False,
                "error": "Unknown command",
            }


# -----------------------------------------------------------------------------
# Authentication state machine
# -----------------------------------------------------------------------------

class TestChannelAuth:
    def test_unknown_token_keeps_channel_open(self, login, channel_client):
        token = login()
        with channel_client.websocket_connect("/mcp") as ws:
            reply = _auth(ws, "0123456789abcdef0123456789abcdef")
            assert reply == {"type": "auth_response", "success": False, "message": "Invalid session token"}

            reply = _auth(ws, token)
            assert reply["success"] is True

    def test_command_before_auth_rejected(self, channel_client):
        with channel_client.websocket_connect("/mcp") as ws:
            ws.send_json({"type": "command", "action": "get_status", "requestId": "1"})
            assert ws.receive_json() == GENERIC_ERROR

    @pytest.mark.parametrize("message", [
        {"type": "auth"},
        {"type": "auth", "sessionToken": ""},
        {"type": "hello"},
        {},
    ])
    def test_unknown_messages(self, login, channel_client, message):
        with channel_client.websocket_connect("/mcp") as ws:
            ws.send_json(message)
            assert ws.receive_json() == GENERIC_ERROR
            _auth(ws, login())
            ws.send_json(message)
            assert ws.receive_json() == GENERIC_ERROR

    def test_failed_reauth_drops_binding(self, login, channel_client):
        with channel_client.websocket_connect("/mcp") as ws:
            assert _auth(ws, login())["success"] is True
            assert _auth(ws, "f" * 32)["success"] is False
            ws.send_json({"type": "command", "action": "get_status", "requestId": "1"})
            assert ws.receive_json() == GENERIC_ERROR

    def test_reauth_switches_user(self, login, channel_client):
        with channel_client.websocket_connect("/mcp") as ws:
            assert _auth(ws, login("alice"))["username"] == "alice"
            assert _auth(ws, login("bob"))["username"] == "bob"

    def test_session_survives_channel_close(self, login, channel_client, registry):
        token = login()
        with channel_client.websocket_connect("/mcp") as ws:
            assert _auth(ws, token)["success"] is True
        assert registry.lookup(token) is not None
        with channel_client.websocket_connect("/mcp") as ws:
            assert _auth(ws, token)["success"] is True

    def test_revoked_token_rejected(self, login, channel_client, registry):
        token = login()
        registry.revoke(token)
        with channel_client.websocket_connect("/mcp") as ws:
            assert _auth(ws, token)["success"] is False


class TestPing:
    def test_ping_in_every_state(self, login, channel_client):
        with channel_client.websocket_connect("/mcp") as ws:
            ws.send_json({"type": "ping"})
            reply = ws.receive_json()
            assert reply["type"] == "pong"
            assert datetime.fromisoformat(reply["timestamp"])

            # still unauthenticated
            ws.send_json({"type": "command", "action": "get_status"})
            assert ws.receive_json() == GENERIC_ERROR

            _auth(ws, login())
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

            # still authenticated
            ws.send_json({"type": "command", "action": "get_status", "requestId": "p"})
            assert ws.receive_json()["requestId"] == "p"

    def test_binary_frame(self, channel_client):
        with channel_client.websocket_connect("/mcp") as ws:
            ws.send_bytes(b'{"type": "ping"}')
            assert ws.receive_json()["type"] == "pong"


# -----------------------------------------------------------------------------
# Framing and limits
# -----------------------------------------------------------------------------

class TestFraming:
    @pytest.mark.parametrize("frame", ["not json", "{", "null", "", "[" * 60000])
    def test_malformed_keeps_channel_open(self, channel_client, frame):
        with channel_client.websocket_connect("/mcp") as ws:
            ws.send_text(frame)
            assert ws.receive_json() == FORMAT_ERROR
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

    @pytest.mark.parametrize("frame", ["[]", "[1, 2]", "5", '"ping"'])
    def test_non_object_json_is_unknown(self, login, channel_client, frame):
        with channel_client.websocket_connect("/mcp") as ws:
            ws.send_text(frame)
            assert ws.receive_json() == GENERIC_ERROR
            _auth(ws, login())
            ws.send_text(frame)
            assert ws.receive_json() == GENERIC_ERROR

    def test_replies_in_arrival_order(self, login, channel_client):
        with channel_client.websocket_connect("/mcp") as ws:
            _auth(ws, login())
            for i in range(10):
                ws.send_json({"type": "command", "action": "list_resources", "requestId": i})
            assert [ws.receive_json()["requestId"] for _ in range(10)] == list(range(10))

    def test_message_too_large(self, config, registry):
        config["channel"]["max_message_bytes"] = 64
        _, channel_app = create_apps(config, registry=registry)
        with TestClient(channel_app).websocket_connect("/mcp") as ws:
            ws.send_text(json.dumps({"type": "ping", "pad": "x" * 200}))
            assert ws.receive_json() == {"type": "error", "message": "Message too large"}
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

    def test_idle_channel_closed(self, config, registry):
        config["channel"]["read_timeout"] = 0.2
        _, channel_app = create_apps(config, registry=registry)
        with TestClient(channel_app).websocket_connect("/mcp") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
            assert exc_info.value.code == 1000

    def test_stalled_write_closes_channel(self, registry):
        gateway = ChannelGateway(registry, write_timeout=0.05)
        ws = _StalledSocket()
        asyncio.run(gateway.serve(ws))
        assert ws.closed == (1011, "Write timeout")
        assert gateway.connection_count == 0

    def test_wrong_path_rejected(self, channel_client):
        with pytest.raises(WebSocketDisconnect):
            with channel_client.websocket_connect("/other") as ws:
                ws.receive_json()


class TestConnectionTracking:
    def test_count_follows_open_channels(self, apps, channel_client):
        gateway = apps[1].state.gateway
        assert gateway.connection_count == 0
        with channel_client.websocket_connect("/mcp") as ws1:
            ws1.send_json({"type": "ping"})
            ws1.receive_json()
            assert gateway.connection_count == 1
            with channel_client.websocket_connect("/mcp") as ws2:
                ws2.send_json({"type": "ping"})
                ws2.receive_json()
                assert gateway.connection_count == 2
        assert gateway.connection_count == 0


# -----------------------------------------------------------------------------
# ChannelConnection without a socket
# -----------------------------------------------------------------------------

class TestChannelConnection:
    def _channel(self, apps):
        gateway = apps[1].state.gateway
        return ChannelConnection(gateway.registry, gateway.dispatcher)

    def test_starts_unauthenticated(self, apps):
        channel = self._channel(apps)
        assert channel.is_authenticated is False
        assert channel.session is None

    def test_authenticate_binds_session(self, apps, registry):
        issued = registry.issue("alice", "x")
        channel = self._channel(apps)
        reply = channel.handle(json.dumps({"type": "auth", "sessionToken": issued.token}))
        assert reply["success"] is True
        assert channel.is_authenticated
        assert channel.token == issued.token
        assert channel.session is issued.record

    def test_non_string_token_fails(self, apps):
        channel = self._channel(apps)
        reply = channel.handle('{"type": "auth", "sessionToken": 12345}')
        assert reply["success"] is False
        assert not channel.is_authenticated


def test_with_timeout():
    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(_with_timeout(asyncio.sleep(1), 0.05))
    assert asyncio.run(_with_timeout(asyncio.sleep(0, result="done"), 0)) == "done"
