# toolbridge/mcp_host/types.py
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Protocol, TypedDict, Union, runtime_checkable

from toolbridge.models.service_models import ToolInfo

TransportKind = Literal["stdio", "httpStream", "sse"]


class StdioConnectSpec(TypedDict):
    type: Literal["stdio"]
    command: str
    args: List[str]
    env: Dict[str, str]
    cwd: Optional[str]


class RemoteConnectSpec(TypedDict):
    type: Literal["httpStream", "sse"]
    url: str


ConnectSpec = Union[StdioConnectSpec, RemoteConnectSpec]


class ToolCallOutcome(TypedDict, total=False):
    content: List[Dict[str, Any]]
    structured: Any
    is_error: bool


@runtime_checkable
class ToolClientAdapter(Protocol):
    """
    One connected backend. Everything may raise; the connection manager
    absorbs failures.
    """

    async def connect(self, spec: ConnectSpec) -> None: ...

    async def get_all_tools(self) -> List[ToolInfo]: ...

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> ToolCallOutcome: ...

    async def close(self) -> None: ...

    async def wait_closed(self) -> Optional[str]:
        """Resolve when an established connection ends; returns the error text, if any."""
        ...


class AdapterFactory(Protocol):
    def create(self, spec: ConnectSpec, *, label: str = "") -> ToolClientAdapter: ...
