"""
MCP Testbed - FastAPI Applications
====================================
Creates the two FastAPI applications that make up the test server and
wires them to one shared SessionRegistry.

Responsibilities:
    - Create the login app (POST /mcp/auth) with CORS and JSON error handlers
    - Create the channel app (WebSocket at channel.path, default /mcp)
    - Build the SessionRegistry, ChannelGateway and CommandDispatcher
    - Sweep expired sessions in the background when a session TTL is set

Architecture:
    The login app and the channel app listen on separate ports (see app.py),
    so they are separate ASGI applications. Both receive the same registry:
    tokens issued by the login app are looked up by the channel app.
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mcp_testbed.config import DEFAULTS, default_config, ws_endpoint
from mcp_testbed.errors import AuthError, McpError, RequestFormatError, RouteNotFound
from mcp_testbed.resources import ResourceProvider
from mcp_testbed.routes import create_router
from mcp_testbed.sessions import SessionRegistry
from mcp_testbed.websocket import ChannelGateway


# HTTP status for each error raised on the login path
ERROR_STATUS = {
    AuthError: 401,
    RequestFormatError: 400,
    RouteNotFound: 404,
}

# Upper bound between sweeps of expired sessions
MAX_SWEEP_INTERVAL = 60


def create_registry(config: dict | None = None) -> SessionRegistry:
    """Build a SessionRegistry from the "sessions" config section."""
    sessions = (config or DEFAULTS)["sessions"]
    return SessionRegistry(
        permissions=sessions.get("permissions", DEFAULTS["sessions"]["permissions"]),
        ttl=sessions.get("ttl", 0) or 0,
    )


def create_auth_app(registry: SessionRegistry, config: dict | None = None) -> FastAPI:
    """
    Application factory for the HTTP login listener.

    Args:
        registry: Session registry that issues tokens.
        config:   Loaded configuration; DEFAULTS if None.

    Returns:
        Configured FastAPI application.
    """
    config = config or default_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = None
        if registry.ttl > 0:
            sweeper = asyncio.create_task(_sweep_sessions(registry))
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper

    app = FastAPI(
        title="MCP Testbed",
        description="Login endpoint of the MCP protocol test server",
        version="1.0.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    # -- CORS middleware -------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _install_error_handlers(app)

    app.state.registry = registry
    app.state.config = config

    app.include_router(create_router(registry, ws_endpoint(config)))
    return app


def create_channel_app(gateway: ChannelGateway, config: dict | None = None) -> FastAPI:
    """
    Application factory for the WebSocket channel listener.

    Args:
        gateway: Channel gateway running the per-connection message loops.
        config:  Loaded configuration; DEFAULTS if None.

    Returns:
        Configured FastAPI application.
    """
    config = config or default_config()

    app = FastAPI(
        title="MCP Testbed Channel",
        version="1.0.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    _install_error_handlers(app)

    app.state.gateway = gateway
    app.state.config = config

    @app.websocket(config["channel"]["path"])
    async def channel_endpoint(websocket: WebSocket):
        """Persistent command channel; see websocket.py for the message loop."""
        await gateway.serve(websocket)

    return app


def create_apps(
    config: dict | None = None,
    registry: SessionRegistry | None = None,
    provider: ResourceProvider | None = None,
) -> tuple[FastAPI, FastAPI]:
    """
    Create the login app and the channel app sharing one registry.

    Args:
        config:   Loaded configuration; DEFAULTS if None.
        registry: Existing registry to share; built from config if None.
        provider: Resource provider for commands; static mock data if None.

    Returns:
        (auth_app, channel_app)
    """
    config = config or default_config()
    if registry is None:
        registry = create_registry(config)

    channel = config["channel"]
    gateway = ChannelGateway(
        registry,
        provider,
        max_message_bytes=channel.get("max_message_bytes", 0) or 0,
        read_timeout=channel.get("read_timeout", 0) or 0,
        write_timeout=channel.get("write_timeout", 0) or 0,
    )
    return create_auth_app(registry, config), create_channel_app(gateway, config)


# -- Internal helpers ----------------------------------------------------------

def _install_error_handlers(app: FastAPI) -> None:
    """Answer every failure with the {"success": false, "message": ...} shape."""

    @app.exception_handler(McpError)
    async def mcp_error_handler(request: Request, exc: McpError):
        status = ERROR_STATUS.get(type(exc), 400)
        return JSONResponse(status_code=status, content={"success": False, "message": exc.message})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        # Unknown paths and wrong methods both count as "not found"
        if exc.status_code in (404, 405):
            return JSONResponse(
                status_code=404,
                content={"success": False, "message": RouteNotFound.message},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": str(exc.detail)},
        )


async def _sweep_sessions(registry: SessionRegistry) -> None:
    """Periodically drop expired sessions while the app is running."""
    interval = min(registry.ttl, MAX_SWEEP_INTERVAL)
    while True:
        await asyncio.sleep(interval)
        removed = registry.purge_expired()
        if removed:
            print(f"[AUTH] Expired {removed} session(s)", flush=True)
