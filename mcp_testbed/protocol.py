"""
MCP Testbed - Channel Message Protocol
========================================
Typed messages exchanged over the WebSocket channel.

Every frame carries exactly one JSON object with a "type" field.

Client -> server:
    {"type": "auth", "sessionToken": "..."}
    {"type": "command", "action": "...", "requestId": <any>, ...fields}
    {"type": "ping"}

Server -> client:
    {"type": "auth_response", "success": true, "username": "...", "permissions": [...]}
    {"type": "auth_response", "success": false, "message": "..."}
    {"type": "command_response", "action": "...", "requestId": <echo>, "success": ..., ...}
    {"type": "pong", "timestamp": "2026-02-08T12:00:00+00:00"}
    {"type": "error", "message": "..."}

decode_message() turns a raw frame into one of the client variants.
Anything that parses but is not a recognised shape becomes UnknownMessage,
so the gateway can answer it with the generic error instead of failing.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from mcp_testbed.errors import MessageFormatError, MessageTooLarge
from mcp_testbed.sessions import SessionRecord


# -----------------------------------------------------------------------------
# Message types
# -----------------------------------------------------------------------------

class MessageType(str, Enum):
    """All message types of the channel protocol."""

    # Client -> Server
    AUTH             = "auth"
    COMMAND          = "command"
    PING             = "ping"

    # Server -> Client
    AUTH_RESPONSE    = "auth_response"
    COMMAND_RESPONSE = "command_response"
    PONG             = "pong"
    ERROR            = "error"


UNKNOWN_OR_UNAUTHENTICATED = "Unknown message type or not authenticated"


# -----------------------------------------------------------------------------
# Client messages
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class AuthMessage:
    """Bind the channel to the session identified by session_token."""
    session_token: Any


@dataclass(frozen=True)
class PingMessage:
    """Keepalive; answered with a pong in every channel state."""


@dataclass(frozen=True)
class CommandMessage:
    """
    A command request. The raw payload is kept so that requestId and any
    action-specific fields are echoed exactly as the client sent them.
    """
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def action(self) -> Any:
        return self.payload.get("action")

    @property
    def has_request_id(self) -> bool:
        return "requestId" in self.payload

    @property
    def request_id(self) -> Any:
        return self.payload.get("requestId")

    @property
    def resource_id(self) -> Any:
        return self.payload.get("resourceId")

    @property
    def data(self) -> Any:
        return self.payload.get("data")


@dataclass(frozen=True)
class UnknownMessage:
    """Well-formed JSON with an unrecognised type or shape."""
    payload: dict[str, Any] = field(default_factory=dict)


ClientMessage = Union[AuthMessage, CommandMessage, PingMessage, UnknownMessage]


def decode_message(raw: str | bytes, max_bytes: int = 0) -> ClientMessage:
    """
    Parse one channel frame.

    Args:
        raw:       Frame content (text, or UTF-8 encoded bytes).
        max_bytes: Maximum encoded size in bytes; 0 disables the check.

    Returns:
        The decoded client message variant.

    Raises:
        MessageTooLarge:    If the frame exceeds max_bytes.
        MessageFormatError: If the frame is not JSON, or is JSON null.
    """
    encoded = raw if isinstance(raw, bytes) else raw.encode("utf-8")
    if max_bytes and len(encoded) > max_bytes:
        raise MessageTooLarge()

    try:
        payload = json.loads(encoded)
    except (ValueError, RecursionError):
        raise MessageFormatError()

    # null has no fields at all; other non-object JSON simply has no "type"
    if payload is None:
        raise MessageFormatError()
    if not isinstance(payload, dict):
        return UnknownMessage(payload={})

    msg_type = payload.get("type")
    if msg_type == MessageType.AUTH.value and payload.get("sessionToken"):
        return AuthMessage(session_token=payload["sessionToken"])
    if msg_type == MessageType.COMMAND.value:
        return CommandMessage(payload=payload)
    if msg_type == MessageType.PING.value:
        return PingMessage()
    return UnknownMessage(payload=payload)


# -----------------------------------------------------------------------------
# Factory helpers - Server -> Client messages
# -----------------------------------------------------------------------------

def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def make_auth_success(record: SessionRecord) -> dict[str, Any]:
    """Build a successful auth_response for the bound session."""
    return {
        "type": MessageType.AUTH_RESPONSE.value,
        "success": True,
        "username": record.username,
        "permissions": list(record.permissions),
    }


def make_auth_failure(message: str) -> dict[str, Any]:
    """Build a failed auth_response."""
    return {
        "type": MessageType.AUTH_RESPONSE.value,
        "success": False,
        "message": message,
    }


def make_command_response(
    command: CommandMessage,
    *,
    success: bool,
    data: Any = None,
    error: str | None = None,
) -> dict[str, Any]:
    """
    Build a command_response for the given command.

    requestId is copied verbatim, and left out only when the client left
    it out. The same goes for action.
    """
    msg: dict[str, Any] = {"type": MessageType.COMMAND_RESPONSE.value}
    if "action" in command.payload:
        msg["action"] = command.action
    if command.has_request_id:
        msg["requestId"] = command.request_id
    msg["success"] = success
    if data is not None:
        msg["data"] = data
    if error is not None:
        msg["error"] = error
    return msg


def make_pong() -> dict[str, Any]:
    """Build a pong keepalive response."""
    return {"type": MessageType.PONG.value, "timestamp": utc_now_iso()}


def make_error(message: str) -> dict[str, Any]:
    """Build a channel-level error message."""
    return {"type": MessageType.ERROR.value, "message": message}
