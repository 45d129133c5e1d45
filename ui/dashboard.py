"""
Rich-based console output for the server: logging handler and startup banner.

Everything printed by the server goes through the shared ``console`` so log
lines and the banner never interleave badly.
"""
from __future__ import annotations

import logging
from typing import Sequence, Tuple

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from server.config import ServerConfig
from server.info import ServerInfo

console = Console()

ENDPOINTS: Sequence[Tuple[str, str, str]] = (
    ("GET", "/api/ping", "Basic ping test"),
    ("GET", "/api/info", "Server information"),
    ("GET", "/api/latency-advanced", "Advanced latency test"),
    ("GET", "/api/warmup-advanced", "Connection warmup"),
    ("GET", "/api/download/{size}", "Download test"),
    ("GET", "/api/download-adaptive", "Adaptive download test"),
    ("POST", "/api/upload", "Upload test"),
    ("POST", "/api/upload-multi", "Multi-connection upload"),
)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def configure_logging(level: str = "INFO") -> None:
    """Route the root logger (and aiohttp's access log) through ``rich``."""
    handler = RichHandler(
        console=console,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    # Access lines are noisy during throughput tests.
    logging.getLogger("aiohttp.access").setLevel(max(logging.getLevelName(level), logging.WARNING))


# ---------------------------------------------------------------------------
# Banner
# ---------------------------------------------------------------------------

def print_banner(config: ServerConfig, info: ServerInfo) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="dim")
    table.add_column(style="bold")
    table.add_row("Port:", str(config.port))
    table.add_row("Server:", info.name)
    table.add_row("Location:", info.location)
    table.add_row("System:", f"{info.platform} ({info.arch})")
    table.add_row("Cores:", str(info.cores))
    table.add_row("Memory:", info.memory)
    if config.ws_port:
        table.add_row("WebSocket:", f"ws://{config.host}:{config.ws_port}/ws")

    console.print()
    console.print(Panel(table, title="[bold cyan]Speed Test Server[/bold cyan]", border_style="cyan"))
    print_endpoints()


def print_endpoints() -> None:
    table = Table(title="Available Endpoints", box=box.ROUNDED)
    table.add_column("Method", style="bold")
    table.add_column("Path", style="cyan")
    table.add_column("Description", style="dim")
    for method, path, description in ENDPOINTS:
        table.add_row(method, path, description)
    console.print(table)
    console.print()
