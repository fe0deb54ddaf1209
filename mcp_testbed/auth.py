"""
MCP Testbed - Credential Policy
=================================
Decides whether a username/password pair presented to POST /mcp/auth may
open a session.

Security model:
- This is a protocol test server: there are no user accounts and no
  stored passwords.
- The default policy accepts any pair where both values are non-empty
  strings. It is a placeholder that real deployments replace by passing
  their own policy to SessionRegistry.
- A policy is any callable (username, password) -> bool.

Usage:
    registry = SessionRegistry(policy=accept_non_empty)

    def only_alice(username, password):
        return username == "alice" and password == "secret"

    registry = SessionRegistry(policy=only_alice)
"""

from typing import Any, Callable


CredentialPolicy = Callable[[Any, Any], bool]


def accept_non_empty(username: Any, password: Any) -> bool:
    """
    Accept any pair of non-empty strings.

    Args:
        username: Value of the "username" field from the login body.
        password: Value of the "password" field from the login body.

    Returns:
        True if both values are non-empty strings, False otherwise.
    """
    if not isinstance(username, str) or not isinstance(password, str):
        return False
    return bool(username) and bool(password)


def static_users(users: dict[str, str]) -> CredentialPolicy:
    """
    Create a policy that accepts only the given username/password pairs.

    Intended for tests and local experiments, not for real deployments:
    passwords are compared in plain text.

    Args:
        users: Mapping of username to password.

    Returns:
        A credential policy callable.
    """
    def _check(username: Any, password: Any) -> bool:
        if not accept_non_empty(username, password):
            return False
        return users.get(username) == password

    return _check
