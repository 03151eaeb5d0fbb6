"""Typer CLI entrypoint: `tool-bridge [port] [command] [args...]`."""

from __future__ import annotations

import asyncio
from typing import List, Optional

import typer

from toolbridge.bridge import Bridge
from toolbridge.config import Settings
from toolbridge.infra.logging import setup_logging
from toolbridge.models.service_models import LocalService

app = typer.Typer(
    add_completion=False,
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
    help="MCP tool-service bridge (newline-delimited JSON over TCP)",
)


def default_service_from_argv(name: str, command: Optional[str], args: Optional[List[str]]) -> Optional[LocalService]:
    """The optional `command args...` tail becomes a registered (not started) local service."""
    if not command:
        return None
    return LocalService(
        name=name,
        command=command,
        args=list(args or []),
        description=f"Default service {name}",
    )


def _run_bridge(settings: Settings, default_service: Optional[LocalService]) -> None:
    bridge = Bridge(settings, default_service=default_service)
    asyncio.run(bridge.serve_forever())


@app.command()
def main(
    port: Optional[int] = typer.Argument(None, help="TCP port to listen on (default 8752)"),
    command: Optional[str] = typer.Argument(None, help="Command for the default local service"),
    args: Optional[List[str]] = typer.Argument(None, help="Arguments for the default local service"),
    host: Optional[str] = typer.Option(None, "--host", help="Listen address (default 127.0.0.1)"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
) -> None:
    settings = Settings()
    if port is not None:
        if not 0 < port < 65536:
            raise typer.BadParameter(f"invalid port: {port}", param_hint="port")
        settings.port = port
    if host:
        settings.host = host
    if log_level:
        settings.log_level = log_level.upper()

    setup_logging(settings.service_name, settings.log_level)
    default_service = default_service_from_argv(settings.default_service_name, command, args)
    _run_bridge(settings, default_service)


if __name__ == "__main__":
    app()
