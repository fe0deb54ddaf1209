"""
MCP Testbed - Server Package
==============================
A minimal MCP protocol test server.

This package provides:
- HTTP login endpoint issuing opaque session tokens
- In-memory, thread-safe session registry
- Persistent WebSocket channel authenticated with the session token
- Command dispatch over the channel (get_status, list_resources, update_resource)

Architecture:
    main.py      -> FastAPI app factories (login app + channel app)
    routes.py    -> POST /mcp/auth handler
    auth.py      -> Pluggable credential policy
    sessions.py  -> Session tokens, records and the registry
    websocket.py -> Channel gateway: per-connection state and message loop
    protocol.py  -> Channel message types and reply factories
    commands.py  -> Command dispatch table
    resources.py -> Resource data provider (static mock data)
    config.py    -> config.yaml + environment configuration
    errors.py    -> Error taxonomy
"""
