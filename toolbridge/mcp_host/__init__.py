# toolbridge/mcp_host/__init__.py
from __future__ import annotations

from .factory import McpAdapterFactory
from .manager import ConnectionManager, ServiceConnection
from .supervisor import ReconnectionSupervisor, RestartState
from .types import (
    AdapterFactory,
    ConnectSpec,
    RemoteConnectSpec,
    StdioConnectSpec,
    ToolCallOutcome,
    ToolClientAdapter,
    TransportKind,
)

__all__ = [
    "AdapterFactory",
    "ConnectSpec",
    "ConnectionManager",
    "McpAdapterFactory",
    "ReconnectionSupervisor",
    "RemoteConnectSpec",
    "RestartState",
    "ServiceConnection",
    "StdioConnectSpec",
    "ToolCallOutcome",
    "ToolClientAdapter",
    "TransportKind",
]
