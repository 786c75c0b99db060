"""Entry point for healthrelay."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel

from healthrelay.config import settings
from healthrelay.exporter.loop import ExporterLoop

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


def run_server() -> None:
    """Serve the aggregated health endpoint (the exporter runs alongside)."""
    console.print(Panel(f"Serving health on {settings.health_path}", title="healthrelay", style="bold green"))
    uvicorn.run(
        "healthrelay.api.server:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def run_exporter() -> None:
    """Run only the exporter loop as a standalone relay with no HTTP surface."""
    console.print(Panel("Starting standalone health exporter", title="healthrelay", style="bold blue"))
    try:
        asyncio.run(ExporterLoop().run())
    except KeyboardInterrupt:
        console.print("[dim]Exporter interrupted[/dim]")


def main() -> None:
    parser = argparse.ArgumentParser(description="Health report export and aggregation")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Serve the aggregated health endpoint")
    sub.add_parser("export", help="Run the standalone health exporter")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "export":
        run_exporter()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
