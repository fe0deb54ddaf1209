#!/usr/bin/env python3
"""
MCP Testbed - Entry Point
===========================
One-command startup for the MCP protocol test server.

Usage:
    python app.py                          # Start with default settings
    python app.py --port 9000 --ws-port 9001
    python app.py --config ./testbed.yaml

This script:
    1. Loads environment variables from .env
    2. Loads configuration from config.yaml (+ MCP_* environment overrides)
    3. Creates the login app and the channel app
    4. Runs both on their own ports with uvicorn

Client flow once running:
    1. POST http://localhost:8080/mcp/auth {"username": "test", "password": "test"}
    2. Connect a WebSocket to ws://localhost:8081/mcp
    3. Send {"type": "auth", "sessionToken": "<token from step 1>"}
    4. Send {"type": "command", "action": "get_status", "requestId": "123"}
"""

import os
import asyncio
import argparse
import uvicorn
from dotenv import load_dotenv


def build_servers(config: dict) -> list[uvicorn.Server]:
    """Create one uvicorn server per listener, sharing one session registry."""
    from mcp_testbed.main import create_apps

    auth_app, channel_app = create_apps(config)
    return [
        uvicorn.Server(uvicorn.Config(
            auth_app,
            host=config["web"]["host"],
            port=config["web"]["port"],
            log_level="info",
        )),
        uvicorn.Server(uvicorn.Config(
            channel_app,
            host=config["channel"]["host"],
            port=config["channel"]["port"],
            log_level="info",
        )),
    ]


async def serve(config: dict) -> None:
    """Run both listeners until both have shut down."""
    servers = build_servers(config)
    await asyncio.gather(*(server.serve() for server in servers))


def main():
    """Parse arguments, load config, and start both listeners."""

    # -- Parse command-line arguments ------------------------------------------
    parser = argparse.ArgumentParser(
        description="MCP Testbed - protocol test server (HTTP login + WebSocket commands)",
    )
    parser.add_argument(
        "--host", type=str, default=None,
        help="Host binding address for both listeners (overrides config.yaml)",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Port for the HTTP login endpoint (overrides config.yaml)",
    )
    parser.add_argument(
        "--ws-port", type=int, default=None,
        help="Port for the WebSocket channel (overrides config.yaml)",
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Path to a config.yaml file (default: ./config.yaml)",
    )
    args = parser.parse_args()

    # config.yaml and .env are read from the working directory
    project_dir = os.getcwd()

    from mcp_testbed.config import ConfigManager, ws_endpoint
    config_manager = ConfigManager(project_dir, config_path=args.config)

    # -- Load environment variables from .env ----------------------------------
    # Must happen before load() so MCP_* values from .env take effect
    if os.path.exists(config_manager.env_path):
        load_dotenv(config_manager.env_path)

    # -- Load configuration ----------------------------------------------------
    config = config_manager.load()
    if "_config_error" in config:
        print(f"[CONFIG] Using defaults for invalid settings: {config['_config_error']}", flush=True)

    # Command-line args override config file and environment
    if args.host:
        config["web"]["host"] = args.host
        config["channel"]["host"] = args.host
    if args.port:
        config["web"]["port"] = args.port
    if args.ws_port:
        config["channel"]["port"] = args.ws_port

    web = config["web"]

    # -- Print startup banner --------------------------------------------------
    print()
    print("  ╔══════════════════════════════════════════════╗")
    print("  ║           MCP TESTBED v1.0                   ║")
    print("  ║   Protocol Test Server                       ║")
    print("  ╚══════════════════════════════════════════════╝")
    print()
    print(f"  Login   : POST http://{web['host']}:{web['port']}/mcp/auth")
    print(f"  Channel : {ws_endpoint(config)}")
    print()
    print('  1. POST {"username":"test","password":"test"} to the login URL')
    print("  2. Connect a WebSocket to the channel URL")
    print('  3. Send {"type":"auth","sessionToken":"TOKEN_FROM_STEP_1"}')
    print('  4. Send {"type":"command","action":"get_status","requestId":"123"}')
    print()

    # -- Start the listeners ---------------------------------------------------
    asyncio.run(serve(config))


if __name__ == "__main__":
    main()
