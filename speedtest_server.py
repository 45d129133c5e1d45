#!/usr/bin/env python3
"""
Speedtest server -- download, upload, latency, and warmup endpoints.

Usage::

    python speedtest_server.py                      # serve on 0.0.0.0:3001
    python speedtest_server.py --port 8000          # custom HTTP port
    python speedtest_server.py --ws-port 8080       # also answer WebSocket pings
    python speedtest_server.py --config cfg.json    # explicit config file
    python speedtest_server.py --init-config        # write defaults and exit
    python speedtest_server.py --log-level DEBUG
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from server.app import SERVER_INFO, ProcessFault, create_app, serve
from server.config import ServerConfig, config_path, load_config, save_config
from ui.dashboard import configure_logging, console, print_banner

logger = logging.getLogger("speedtest_server")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def build_config(args: argparse.Namespace) -> ServerConfig:
    """Layer CLI flags over the file/environment config and validate."""
    config = load_config(args.config).with_overrides(
        host=args.host,
        port=args.port,
        ws_port=args.ws_port,
        server_name=args.name,
        location=args.location,
        log_level=args.log_level.upper() if args.log_level else None,
    )
    config.validate()
    return config


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Speedtest server -- network throughput and latency endpoints",
    )
    # Network
    parser.add_argument("--host", type=str, metavar="ADDR", help="Interface to bind (default: 0.0.0.0)")
    parser.add_argument("--port", "-p", type=int, metavar="PORT", help="HTTP port (default: 3001)")
    parser.add_argument("--ws-port", type=int, metavar="PORT", help="WebSocket ping port, 0 to disable (default: 0)")

    # Identity
    parser.add_argument("--name", type=str, help="Server name reported to clients")
    parser.add_argument("--location", type=str, help="Server location reported to clients")

    # Config file
    parser.add_argument("--config", "-c", type=str, metavar="FILE", help=f"Config file (default: {config_path()})")
    parser.add_argument("--init-config", action="store_true", help="Write the effective config to the config file and exit")

    # Output
    parser.add_argument("--log-level", type=str, metavar="LEVEL", help="DEBUG, INFO, WARNING, ERROR (default: INFO)")
    parser.add_argument("--no-banner", action="store_true", help="Skip the startup banner")

    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)

    try:
        config = build_config(args)
    except ValueError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    if args.init_config:
        path = save_config(config, args.config)
        console.print(f"[green]Config written to:[/green] {path}")
        return

    configure_logging(config.log_level)
    app = create_app(config)

    if not args.no_banner:
        print_banner(config, app[SERVER_INFO])

    try:
        asyncio.run(serve(config, app))
    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped[/yellow]")
    except ProcessFault as exc:
        logger.critical("Shutting down after process fault: %s", exc)
        sys.exit(1)
    except OSError as exc:
        console.print(f"\n[red]Error: {exc}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
