# toolbridge/mcp_host/transports/stdio_client.py
from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from typing import Any, Tuple

from mcp import StdioServerParameters
from mcp.client.stdio import stdio_client

from toolbridge.mcp_host.transports.session import McpSessionClient
from toolbridge.mcp_host.types import ConnectSpec

logger = logging.getLogger("toolbridge.mcp.stdio")


def _safe_env_for_log(env: dict[str, str]) -> dict[str, str]:
    shown: dict[str, str] = {}
    if "PATH" in env:
        shown["PATH"] = env["PATH"]
    for k, v in env.items():
        if k.startswith(("MCP_", "npm_config_", "UV_", "PYTHON")):
            shown[k] = v
    return shown


class StdioMcpClient(McpSessionClient):
    """
    STDIO transport using the official MCP SDK: the child process is spawned
    by `stdio_client` and lives exactly as long as the owner task.
    """

    transport_label = "stdio"

    async def _open_transport(self, stack: AsyncExitStack, spec: ConnectSpec) -> Tuple[Any, Any]:
        if spec["type"] != "stdio":
            raise ValueError(f"StdioMcpClient cannot open a {spec['type']!r} transport")

        env = dict(spec.get("env") or {})
        logger.info(
            "Starting MCP stdio server: argv=%s cwd=%s env=%s",
            " ".join([spec["command"], *spec.get("args", [])]),
            spec.get("cwd") or "(none)",
            _safe_env_for_log(env),
        )
        params = StdioServerParameters(
            command=spec["command"],
            args=list(spec.get("args") or []),
            env=env or None,
            cwd=spec.get("cwd") or None,
        )
        read_stream, write_stream = await stack.enter_async_context(stdio_client(params))
        return read_stream, write_stream
