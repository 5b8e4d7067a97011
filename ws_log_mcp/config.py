"""Configuration loading, environment overlay, and validation."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from .types import (
    DEFAULT_PORT,
    INITIAL_RECONNECT_S,
    MAX_LOG_LINES,
    MAX_RECONNECT_S,
    BridgeConfig,
    ReconnectConfig,
    ServerConfig,
    UpstreamConfig,
)

CONFIG_FILENAMES = [
    "ws-log-mcp.yaml",
    "ws-log-mcp.yml",
    "ws-log-mcp.json",
]

TRANSPORTS = ("sse", "stdio")
LOG_LEVELS = ("critical", "error", "warning", "info", "debug", "trace")


class ConfigError(ValueError):
    """Raised for configuration that cannot be interpreted at all."""


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def parse_auth(value: str) -> tuple[str, str]:
    """Split a ``username:password`` string on its first colon."""
    user, sep, password = value.partition(":")
    if not sep:
        raise ConfigError("WS_AUTH must be in the form username:password")
    return user, password


def _apply_env(raw: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    """Overlay environment variables onto a raw config dict.

    ``WS_AUTH`` takes precedence over ``WS_USER``/``WS_PASSWORD``.
    """
    upstream = dict(raw.get("upstream", {}))
    server = dict(raw.get("server", {}))

    if env.get("WS_URL"):
        upstream["url"] = env["WS_URL"]
    if env.get("WS_AUTH"):
        upstream["user"], upstream["password"] = parse_auth(env["WS_AUTH"])
    else:
        if env.get("WS_USER"):
            upstream["user"] = env["WS_USER"]
        if env.get("WS_PASSWORD"):
            upstream["password"] = env["WS_PASSWORD"]

    if env.get("MCP_TRANSPORT"):
        server["transport"] = env["MCP_TRANSPORT"]
    if env.get("PORT"):
        try:
            server["port"] = int(env["PORT"])
        except ValueError:
            raise ConfigError(f"PORT must be an integer, got {env['PORT']!r}") from None

    merged = dict(raw)
    merged["upstream"] = upstream
    merged["server"] = server
    return merged


def _build_config(raw: dict[str, Any]) -> BridgeConfig:
    """Build a BridgeConfig from a raw dict."""
    upstream_raw = raw.get("upstream", {})
    upstream = UpstreamConfig(
        url=upstream_raw.get("url", ""),
        user=upstream_raw.get("user", ""),
        password=upstream_raw.get("password", ""),
    )

    reconnect_raw = raw.get("reconnect", {})
    reconnect = ReconnectConfig(
        initial_delay=float(reconnect_raw.get("initial_delay", INITIAL_RECONNECT_S)),
        max_delay=float(reconnect_raw.get("max_delay", MAX_RECONNECT_S)),
    )

    server_raw = raw.get("server", {})
    server = ServerConfig(
        transport=server_raw.get("transport", "sse"),
        host=server_raw.get("host", "127.0.0.1"),
        port=int(server_raw.get("port", DEFAULT_PORT)),
        notify_timeout=float(server_raw.get("notify_timeout", 5.0)),
    )

    return BridgeConfig(
        upstream=upstream,
        capacity=int(raw.get("buffer", {}).get("capacity", MAX_LOG_LINES)),
        reconnect=reconnect,
        server=server,
        log_level=str(raw.get("log_level", "info")).lower(),
    )


def validate_config(config: BridgeConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if not config.upstream.url:
        errors.append("Set WS_URL to the WebSocket endpoint (e.g. wss://host/path?appId=...)")

    if not config.upstream.user or not config.upstream.password:
        errors.append("Set WS_USER and WS_PASSWORD, or WS_AUTH=username:password")

    if config.capacity < 1:
        errors.append(f"buffer.capacity must be >= 1, got {config.capacity}")

    if config.reconnect.initial_delay <= 0:
        errors.append("reconnect.initial_delay must be > 0")

    if config.reconnect.max_delay < config.reconnect.initial_delay:
        errors.append(
            f"reconnect.max_delay ({config.reconnect.max_delay}) must be >= "
            f"reconnect.initial_delay ({config.reconnect.initial_delay})"
        )

    if config.server.transport not in TRANSPORTS:
        errors.append(
            f"server.transport must be one of {', '.join(TRANSPORTS)}, "
            f"got {config.server.transport!r}"
        )

    if config.log_level not in LOG_LEVELS:
        errors.append(
            f"log_level must be one of {', '.join(LOG_LEVELS)}, got {config.log_level!r}"
        )

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
    env: Mapping[str, str] | None = None,
) -> BridgeConfig:
    """Load config from dict, explicit path, or auto-discover, then overlay the environment.

    Pass ``env={}`` to ignore the process environment.
    """
    if env is None:
        env = os.environ

    if config_dict is not None:
        return _build_config(_apply_env(config_dict, env))

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        return _build_config(_apply_env({}, env))

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(_apply_env(raw, env))
