"""
Test fixtures - every test gets a fresh session registry and fresh apps,
and MCP_* environment variables from the developer's shell are hidden so
configuration tests see only what they set themselves.
"""
import pytest
from fastapi.testclient import TestClient

from mcp_testbed.config import ENV_OVERRIDES, default_config
from mcp_testbed.main import create_apps
from mcp_testbed.sessions import SessionRegistry


@pytest.fixture(autouse=True)
def _clear_mcp_env(monkeypatch):
    for var in ENV_OVERRIDES:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def config():
    cfg = default_config()
    cfg["channel"]["read_timeout"] = 5
    cfg["channel"]["write_timeout"] = 5
    return cfg


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def apps(config, registry):
    return create_apps(config, registry=registry)


@pytest.fixture
def auth_client(apps):
    return TestClient(apps[0])


@pytest.fixture
def channel_client(apps):
    return TestClient(apps[1])


@pytest.fixture
def login(auth_client):
    """Log in through the HTTP endpoint and return the session token."""
    def _login(username="alice", password="x"):
        resp = auth_client.post("/mcp/auth", json={"username": username, "password": password})
        assert resp.status_code == 200
        return resp.json()["sessionToken"]
    return _login
