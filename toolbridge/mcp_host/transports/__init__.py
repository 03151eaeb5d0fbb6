from __future__ import annotations

from .http_client import HttpMcpClient
from .session import McpSessionClient
from .stdio_client import StdioMcpClient

__all__ = ["HttpMcpClient", "McpSessionClient", "StdioMcpClient"]
