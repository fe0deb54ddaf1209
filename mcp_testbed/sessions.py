"""
MCP Testbed - Session Registry
================================
Process-wide mapping from opaque session token to session record.

Lifecycle:
    1. POST /mcp/auth calls issue() with the submitted credentials
    2. The credential policy (auth.py) accepts or rejects the pair
    3. A fresh 128-bit token is generated and bound to a SessionRecord
    4. Every channel authentication calls lookup() with the client's token
    5. get_status reports size()

Sessions are not revoked when a channel closes: the same token may be
presented again on a new channel. Revocation and TTL expiry are available
but off by default (ttl=0 means sessions live for the process lifetime).

Usage:
    registry = SessionRegistry()
    issued = registry.issue("alice", "secret")
    record = registry.lookup(issued.token)   # SessionRecord or None
    registry.size()                          # 1
"""

import secrets
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from mcp_testbed.auth import CredentialPolicy, accept_non_empty
from mcp_testbed.errors import AuthError


# 16 random bytes, hex encoded -> 32 characters
TOKEN_BYTES = 16

DEFAULT_PERMISSIONS = ("read", "write", "admin")


@dataclass(frozen=True)
class SessionRecord:
    """
    Immutable record of one logged-in session.

    Attributes:
        username:      Name submitted at login.
        authenticated: Always True for records held by the registry.
        created_at:    UTC creation time.
        permissions:   Permission names reported to the client.
    """
    username: str
    authenticated: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    permissions: tuple[str, ...] = DEFAULT_PERMISSIONS


@dataclass(frozen=True)
class IssuedSession:
    """Result of a successful login: the token and the record it is bound to."""
    token: str
    record: SessionRecord


def generate_token() -> str:
    """Return a fresh, unguessable session token (32 lowercase hex chars)."""
    return secrets.token_hex(TOKEN_BYTES)


class SessionRegistry:
    """
    Thread-safe in-memory session store.

    All public methods take the internal lock, so the registry can be
    shared by the login route, every channel and get_status regardless of
    whether they run on the event loop or in a worker thread.

    Attributes:
        policy:      Credential policy used by issue().
        permissions: Permissions granted to every new session.
        ttl:         Session lifetime in seconds (0 disables expiry).
    """

    def __init__(
        self,
        policy: CredentialPolicy = accept_non_empty,
        permissions: tuple[str, ...] | list[str] = DEFAULT_PERMISSIONS,
        ttl: float = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policy = policy
        self.permissions = tuple(dict.fromkeys(permissions))
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        # token -> (record, monotonic issue time)
        self._sessions: dict[str, tuple[SessionRecord, float]] = {}

    def issue(self, username, password) -> IssuedSession:
        """
        Validate credentials and create a new session.

        Args:
            username: Submitted username.
            password: Submitted password (proof checked by the policy only).

        Returns:
            The issued token together with its SessionRecord.

        Raises:
            AuthError: If the credential policy rejects the pair.
        """
        if not self.policy(username, password):
            raise AuthError()

        record = SessionRecord(username=username, permissions=self.permissions)
        with self._lock:
            token = generate_token()
            while token in self._sessions:
                token = generate_token()
            self._sessions[token] = (record, self._clock())
        return IssuedSession(token=token, record=record)

    def lookup(self, token) -> SessionRecord | None:
        """
        Find the session bound to a token.

        Returns:
            The SessionRecord, or None for unknown, revoked or expired tokens.
        """
        if not isinstance(token, str) or not token:
            return None
        with self._lock:
            entry = self._sessions.get(token)
            if entry is None or self._is_expired(entry[1]):
                return None
            return entry[0]

    def size(self) -> int:
        """Return the number of active (unexpired) sessions."""
        with self._lock:
            return sum(1 for _, issued in self._sessions.values() if not self._is_expired(issued))

    def __len__(self) -> int:
        return self.size()

    def revoke(self, token: str) -> bool:
        """
        Remove a session. Channels already bound to it keep their binding
        until they re-authenticate or close.

        Returns:
            True if the token existed.
        """
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def purge_expired(self) -> int:
        """
        Drop every expired session.

        Returns:
            Number of sessions removed (always 0 when ttl is disabled).
        """
        with self._lock:
            expired = [t for t, (_, issued) in self._sessions.items() if self._is_expired(issued)]
            for token in expired:
                del self._sessions[token]
        return len(expired)

    def clear(self) -> None:
        """Remove all sessions."""
        with self._lock:
            self._sessions.clear()

    def _is_expired(self, issued_at: float) -> bool:
        return self.ttl > 0 and self._clock() - issued_at >= self.ttl
