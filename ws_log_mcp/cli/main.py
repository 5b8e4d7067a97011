"""CLI: ws-log-mcp serve, config validate."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from ..config import ConfigError, load_config, validate_config
from ..mcp.server import LogBridge, create_connection
from ..types import BridgeConfig


def _load(args) -> BridgeConfig:
    try:
        config = load_config(config_path=args.config)
    except (ConfigError, FileNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    # CLI flags override file and environment
    if getattr(args, "transport", None):
        config.server.transport = args.transport
    if getattr(args, "host", None):
        config.server.host = args.host
    if getattr(args, "port", None):
        config.server.port = args.port
    return config


def _configure_logging(level: str) -> None:
    # stdout carries the protocol in stdio mode; logs always go to stderr
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


def cmd_serve(args):
    """Connect upstream and serve MCP over stdio or HTTP+SSE."""
    config = _load(args)
    errors = validate_config(config)
    if errors:
        for err in errors:
            print(err, file=sys.stderr)
        sys.exit(1)

    _configure_logging(config.log_level)
    bridge = LogBridge(
        capacity=config.capacity,
        notify_timeout=config.server.notify_timeout,
    )
    connection = create_connection(config, bridge)

    if config.server.transport == "stdio":
        asyncio.run(bridge.run_stdio(connection))
        return

    import uvicorn

    from ..sse import create_app

    app = create_app(bridge, connection)
    host, port = config.server.host, config.server.port
    print(f"WebSocket MCP server (SSE) listening on http://{host}:{port}")
    print(f"  SSE endpoint: GET http://{host}:{port}/mcp")
    print(f"  Messages:     POST http://{host}:{port}/messages/?session_id=...")
    uvicorn.run(
        app, host=host, port=port, log_level=config.log_level,
        timeout_graceful_shutdown=2,
    )


def cmd_config_validate(args):
    """Validate configuration from file and environment."""
    config = _load(args)
    errors = validate_config(config)
    if errors:
        print("Config validation failed:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    print("Config is valid.")
    print(f"  Upstream:  {config.upstream.url}")
    print(f"  User:      {config.upstream.user}")
    print(f"  Transport: {config.server.transport}")
    print(f"  Capacity:  {config.capacity:,} lines")
    print(f"  Backoff:   {config.reconnect.initial_delay}s .. {config.reconnect.max_delay}s")


def main():
    parser = argparse.ArgumentParser(
        prog="ws-log-mcp",
        description="Bridge a log-streaming WebSocket into an MCP server",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Start the MCP server")
    serve_parser.add_argument(
        "--transport", "-t", choices=["sse", "stdio"],
        help="Downstream transport (default: MCP_TRANSPORT or sse)",
    )
    serve_parser.add_argument("--host", help="Bind address for SSE mode")
    serve_parser.add_argument("--port", "-p", type=int, help="Port for SSE mode")

    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config and environment")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: ws-log-mcp config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
