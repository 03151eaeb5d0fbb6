from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from typing import Any, Tuple

from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client

from toolbridge.mcp_host.transports.session import McpSessionClient
from toolbridge.mcp_host.types import ConnectSpec

logger = logging.getLogger("toolbridge.mcp.http")


class HttpMcpClient(McpSessionClient):
    """
    Network transport for MCP.

    Notes:
      * `httpStream` uses the SDK's Streamable HTTP client (the default).
      * `sse` is kept for older servers; the SDK marks it as legacy.
    """

    transport_label = "http"

    async def _open_transport(self, stack: AsyncExitStack, spec: ConnectSpec) -> Tuple[Any, Any]:
        kind = spec["type"]
        url = (spec.get("url") or "").strip()
        if not url:
            raise ValueError("MCP HTTP transport requires a url")

        if kind == "sse":
            logger.info("Connecting MCP SSE: url=%s", url)
            read_stream, write_stream = await stack.enter_async_context(
                sse_client(url, timeout=self.timeout_sec)
            )
            return read_stream, write_stream

        if kind == "httpStream":
            logger.info("Connecting MCP Streamable HTTP: url=%s", url)
            # The client yields a (read, write, get_session_id) triple.
            read_stream, write_stream, _session_id = await stack.enter_async_context(
                streamablehttp_client(url, timeout=self.timeout_sec)
            )
            return read_stream, write_stream

        raise ValueError(f"Unsupported MCP transport kind: {kind!r}")
