"""
MCP Testbed - Channel Gateway
===============================
Runs the persistent WebSocket channel: one message loop per connection,
each with its own authentication state.

Channel states:
    - unauthenticated : Initial state. Accepts "auth" and "ping" only.
    - authenticated   : Bound to a SessionRecord. Accepts "command",
                        "ping" and "auth" (re-authentication).
    - closed          : Connection gone, binding discarded. The session
                        itself stays valid for the next channel.

Every inbound frame produces exactly one reply, processed strictly in
arrival order. Bad input never closes the channel: it gets an "error"
(or failed "auth_response" / "command_response") reply instead. The
channel is closed by the server only when it stays idle longer than the
read timeout or a reply cannot be written within the write timeout.

Usage:
    gateway = ChannelGateway(registry)

    @app.websocket("/mcp")
    async def channel_endpoint(websocket: WebSocket):
        await gateway.serve(websocket)
"""

import asyncio
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from mcp_testbed.commands import CommandDispatcher
from mcp_testbed.errors import MessageFormatError, MessageTooLarge, SessionInvalid
from mcp_testbed.protocol import (
    UNKNOWN_OR_UNAUTHENTICATED,
    AuthMessage,
    CommandMessage,
    PingMessage,
    decode_message,
    make_auth_failure,
    make_auth_success,
    make_error,
    make_pong,
)
from mcp_testbed.resources import ResourceProvider, StaticResourceProvider
from mcp_testbed.sessions import SessionRecord, SessionRegistry


# Close codes (RFC 6455)
CLOSE_NORMAL = 1000
CLOSE_INTERNAL_ERROR = 1011


class ChannelConnection:
    """
    Authentication state and message handling for one open channel.

    Attributes:
        token:   Session token the channel is bound to (None if unbound).
        session: Bound SessionRecord (None while unauthenticated).
    """

    def __init__(
        self,
        registry: SessionRegistry,
        dispatcher: CommandDispatcher,
        max_message_bytes: int = 0,
    ):
        self.registry = registry
        self.dispatcher = dispatcher
        self.max_message_bytes = max_message_bytes
        self.token: str | None = None
        self.session: SessionRecord | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    def handle(self, raw: str | bytes) -> dict[str, Any]:
        """
        Process one inbound frame and return the reply to send.

        Args:
            raw: Frame content as received from the socket.

        Returns:
            The reply message dict.
        """
        try:
            message = decode_message(raw, self.max_message_bytes)
        except (MessageFormatError, MessageTooLarge) as e:
            return make_error(e.message)

        if isinstance(message, PingMessage):
            return make_pong()

        if isinstance(message, AuthMessage):
            try:
                return make_auth_success(self._authenticate(message.session_token))
            except SessionInvalid as e:
                return make_auth_failure(e.message)

        if isinstance(message, CommandMessage) and self.session is not None:
            return self.dispatcher.dispatch(message, self.session)

        return make_error(UNKNOWN_OR_UNAUTHENTICATED)

    def _authenticate(self, token: Any) -> SessionRecord:
        """
        Bind the channel to the session behind token.

        A failed attempt also drops any previous binding.

        Raises:
            SessionInvalid: If the token is unknown, revoked or expired.
        """
        record = self.registry.lookup(token)
        if record is None:
            self.token = None
            self.session = None
            print("[AUTH] Channel authentication failed: invalid session token", flush=True)
            raise SessionInvalid()

        self.token = token
        self.session = record
        print(f"[AUTH] User {record.username} authenticated via WebSocket", flush=True)
        return record


class ChannelGateway:
    """
    Accepts channel connections and runs their message loops.

    This is a simple in-memory gateway suitable for single-server
    deployment; sessions come from the shared SessionRegistry.

    Attributes:
        registry:           Session registry used for channel authentication.
        dispatcher:         Command dispatcher shared by all channels.
        max_message_bytes:  Largest accepted frame in bytes (0 = unlimited).
        read_timeout:       Seconds a channel may stay silent (0 = forever).
        write_timeout:      Seconds allowed for sending one reply (0 = forever).
        active_connections: Open WebSockets and their channel state.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        provider: ResourceProvider | None = None,
        *,
        max_message_bytes: int = 65536,
        read_timeout: float = 300,
        write_timeout: float = 10,
    ):
        self.registry = registry
        self.dispatcher = CommandDispatcher(
            registry,
            StaticResourceProvider() if provider is None else provider,
            connection_count=lambda: self.connection_count,
        )
        self.max_message_bytes = max_message_bytes
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.active_connections: dict[WebSocket, ChannelConnection] = {}

    @property
    def connection_count(self) -> int:
        """Return the number of currently open channels."""
        return len(self.active_connections)

    async def connect(self, websocket: WebSocket) -> ChannelConnection:
        """
        Accept a new WebSocket connection in the unauthenticated state.

        Args:
            websocket: The incoming WebSocket connection to accept.
        """
        await websocket.accept()
        channel = ChannelConnection(self.registry, self.dispatcher, self.max_message_bytes)
        self.active_connections[websocket] = channel
        print(f"[WS] New WebSocket connection established ({self.connection_count} open)", flush=True)
        return channel

    def disconnect(self, websocket: WebSocket) -> None:
        """
        Forget a connection and its session binding.

        Args:
            websocket: The WebSocket connection to remove.
        """
        if self.active_connections.pop(websocket, None) is not None:
            print(f"[WS] WebSocket connection closed ({self.connection_count} open)", flush=True)

    async def serve(self, websocket: WebSocket) -> None:
        """
        Run the message loop for one connection until it closes.

        Args:
            websocket: The incoming WebSocket connection.
        """
        channel = await self.connect(websocket)
        try:
            while True:
                try:
                    message = await _with_timeout(websocket.receive(), self.read_timeout)
                except asyncio.TimeoutError:
                    print("[WS] Closing idle channel", flush=True)
                    await self._close(websocket, CLOSE_NORMAL, "Idle timeout")
                    break

                if message["type"] == "websocket.disconnect":
                    break

                frame = message.get("text")
                if frame is None:
                    frame = message.get("bytes") or b""

                reply = channel.handle(frame)

                try:
                    await _with_timeout(websocket.send_json(reply), self.write_timeout)
                except asyncio.TimeoutError:
                    print("[WS] Reply write timed out, closing channel", flush=True)
                    await self._close(websocket, CLOSE_INTERNAL_ERROR, "Write timeout")
                    break
        except WebSocketDisconnect:
            pass
        finally:
            self.disconnect(websocket)

    async def _close(self, websocket: WebSocket, code: int, reason: str) -> None:
        try:
            await websocket.close(code=code, reason=reason)
        except Exception:
            pass  # peer may already be gone


async def _with_timeout(awaitable, timeout: float):
    """Await with a timeout in seconds; 0 or None waits forever."""
    return await asyncio.wait_for(awaitable, timeout or None)
