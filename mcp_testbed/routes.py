"""
MCP Testbed - HTTP Login Route
================================
The single HTTP endpoint of the test server.

    POST /mcp/auth  {"username": "...", "password": "..."}
        200 {"success": true, "sessionToken": "<32 hex>", "wsEndpoint": "ws://..."}
        401 {"success": false, "message": "Invalid credentials"}
        400 {"success": false, "message": "Invalid request format"}

Any other method or path answers 404 {"success": false, "message":
"Endpoint not found"}; see the exception handlers in main.py.
"""

import json

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mcp_testbed.errors import RequestFormatError
from mcp_testbed.sessions import SessionRegistry


# =============================================================================
# Request/Response Models (Pydantic)
# =============================================================================

class LoginRequest(BaseModel):
    """Login body. Missing or null fields are left to the credential policy."""
    username: str | None = Field(None, description="Account name")
    password: str | None = Field(None, description="Password (any non-empty value)")


class LoginResponse(BaseModel):
    """Session token returned after a successful login."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    session_token: str = Field(alias="sessionToken")
    ws_endpoint: str = Field(alias="wsEndpoint")


# =============================================================================
# Router Factory
# =============================================================================

def create_router(registry: SessionRegistry, ws_endpoint: str) -> APIRouter:
    """
    Create the login router.

    Args:
        registry:    Session registry that issues tokens.
        ws_endpoint: Channel URL handed to clients after login.

    Returns:
        Configured APIRouter with the login endpoint registered.
    """
    router = APIRouter(prefix="/mcp")

    @router.post("/auth", response_model=LoginResponse)
    async def login(request: Request):
        """
        Validate credentials and issue a session token for the channel.

        The body is parsed by hand so that malformed JSON maps to 400 rather
        than FastAPI's default 422.
        """
        try:
            body = json.loads(await request.body())
            req = LoginRequest.model_validate(body)
        except (ValueError, RecursionError, ValidationError):
            raise RequestFormatError()

        # AuthError propagates to the 401 handler
        issued = registry.issue(req.username, req.password)
        print(f"[AUTH] Session issued for {issued.record.username}", flush=True)

        return LoginResponse(session_token=issued.token, ws_endpoint=ws_endpoint)

    return router
