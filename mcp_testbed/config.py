"""
MCP Testbed - Configuration Manager
=====================================
Loads the server configuration from three sources, later ones winning:

1. DEFAULTS       - Built-in values below
2. config.yaml    - Optional settings file in the project directory
3. Environment    - MCP_* variables (a .env file is loaded into the
                    environment by app.py before the config is read)

Command-line flags in app.py are applied on top of the loaded result.

Usage:
    config = ConfigManager(project_dir="/path/to/project")
    settings = config.load()                 # Returns merged config dict
    settings["web"]["port"]                  # 8080
    ws_endpoint(settings)                    # "ws://localhost:8081/mcp"
"""

import os
import yaml
from typing import Any


# Default configuration values used when config.yaml is missing or incomplete.
DEFAULTS = {
    "web": {
        "host": "0.0.0.0",
        "port": 8080,
    },
    "channel": {
        "host": "0.0.0.0",
        "port": 8081,
        "path": "/mcp",
        "public_url": None,
        "max_message_bytes": 65536,
        "read_timeout": 300,
        "write_timeout": 10,
    },
    "sessions": {
        "ttl": 0,
        "permissions": ["read", "write", "admin"],
    },
}

# Environment variable -> (section, key, converter)
ENV_OVERRIDES = {
    "MCP_HTTP_HOST": ("web", "host", str),
    "MCP_HTTP_PORT": ("web", "port", int),
    "MCP_WS_HOST": ("channel", "host", str),
    "MCP_WS_PORT": ("channel", "port", int),
    "MCP_WS_PUBLIC_URL": ("channel", "public_url", str),
    "MCP_SESSION_TTL": ("sessions", "ttl", float),
}


class ConfigManager:
    """
    Configuration loader for the test server.

    Attributes:
        project_dir: Root directory of the project.
        config_path: Full path to config.yaml.
        env_path:    Full path to .env file.
    """

    def __init__(self, project_dir: str, config_path: str | None = None):
        """
        Initialize the config manager.

        Args:
            project_dir: Absolute path to the project root directory.
            config_path: Explicit settings file; defaults to <project_dir>/config.yaml.
        """
        self.project_dir = project_dir
        self.config_path = config_path or os.path.join(project_dir, "config.yaml")
        self.env_path = os.path.join(project_dir, ".env")

    def load(self, environ: dict[str, str] | None = None) -> dict:
        """
        Load and merge configuration from config.yaml, defaults and environment.

        Missing values are filled from DEFAULTS. A corrupt config file or an
        unparseable environment value falls back to the previous value and
        is reported under "_config_error".

        Args:
            environ: Environment mapping to read overrides from (os.environ by default).

        Returns:
            A dictionary containing the full configuration.
        """
        config = _deep_copy(DEFAULTS)
        errors = []

        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    user_config = yaml.safe_load(f) or {}
                if not isinstance(user_config, dict):
                    raise yaml.YAMLError("top level of config file must be a mapping")
                _deep_merge(config, user_config)
            except (yaml.YAMLError, OSError) as e:
                errors.append(str(e))

        env = os.environ if environ is None else environ
        for var, (section, key, convert) in ENV_OVERRIDES.items():
            value = env.get(var)
            if not value:
                continue
            try:
                config[section][key] = convert(value)
            except ValueError:
                errors.append(f"{var}: invalid value {value!r}")

        if errors:
            config["_config_error"] = "; ".join(errors)

        return config


def default_config() -> dict:
    """Return a fresh copy of DEFAULTS that callers may modify."""
    return _deep_copy(DEFAULTS)


def ws_endpoint(config: dict) -> str:
    """
    Channel endpoint URL advertised to clients after login.

    Returns channel.public_url when set, otherwise a localhost URL built
    from the channel port and path.
    """
    channel = config["channel"]
    if channel.get("public_url"):
        return channel["public_url"]
    return f"ws://localhost:{channel['port']}{channel['path']}"


# -- Helper Functions ---------------------------------------------------------

def _deep_copy(d: dict) -> dict:
    """Create a deep copy of a nested dictionary."""
    result = {}
    for key, value in d.items():
        if isinstance(value, dict):
            result[key] = _deep_copy(value)
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _deep_merge(base: dict, override: dict[str, Any]) -> None:
    """
    Recursively merge 'override' into 'base' (in-place).

    For nested dicts, values are merged recursively.
    For all other types, override replaces base.
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
