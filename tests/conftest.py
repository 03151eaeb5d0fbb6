from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from toolbridge.config import Settings
from toolbridge.models.service_models import ToolInfo
from toolbridge.models.wire_models import BridgeResponse


class FakeAdapter:
    """In-memory stand-in for an MCP client."""

    def __init__(self, factory: "FakeFactory", spec: Dict[str, Any], label: str) -> None:
        self.factory = factory
        self.spec = spec
        self.label = label
        self.connected = False
        self.close_calls = 0
        self._closed = asyncio.Event()
        self._close_error: Optional[str] = None

    async def connect(self, spec: Dict[str, Any]) -> None:
        self.factory.connect_calls += 1
        if self.factory.connect_gate is not None:
            await self.factory.connect_gate.wait()
        if self.factory.fail_connect:
            raise ConnectionError("connect refused")
        self.connected = True

    async def get_all_tools(self) -> List[ToolInfo]:
        if self.factory.fail_tools:
            raise RuntimeError("tools/list failed")
        return [ToolInfo(name=n, description=f"{n} tool", input_schema={"type": "object"}) for n in self.factory.tools]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        self.factory.calls.append((self.label, name, dict(arguments)))
        if name == "fail":
            raise RuntimeError("backend exploded")
        if name == "error":
            return {"content": [{"type": "text", "text": "bad input"}], "is_error": True}
        if name == "slow":
            await asyncio.sleep(3600)
        return {"content": [{"type": "text", "text": str(arguments.get("text", "hi"))}], "is_error": False}

    async def close(self) -> None:
        self.close_calls += 1
        self._closed.set()

    async def wait_closed(self) -> Optional[str]:
        await self._closed.wait()
        return self._close_error

    def drop(self, error: str = "stream ended") -> None:
        self._close_error = error
        self._closed.set()


class FakeFactory:
    def __init__(self) -> None:
        self.created: List[FakeAdapter] = []
        self.calls: List[Any] = []
        self.connect_calls = 0
        self.fail_connect = False
        self.fail_tools = False
        self.connect_gate: Optional[asyncio.Event] = None
        self.tools = ["say", "fail", "error", "slow"]

    def create(self, spec: Dict[str, Any], *, label: str = "") -> FakeAdapter:
        adapter = FakeAdapter(self, spec, label)
        self.created.append(adapter)
        return adapter


class FakePeer:
    def __init__(self) -> None:
        self.sent: List[BridgeResponse] = []
        self.closed = False

    def send(self, response: BridgeResponse) -> None:
        self.sent.append(response)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def fast_settings(tmp_path: Path) -> Settings:
    return Settings(
        host="127.0.0.1",
        port=0,
        request_timeout_sec=5,
        sweep_interval_sec=0.05,
        idle_timeout_sec=30,
        max_restart_attempts=5,
        restart_base_delay_sec=0.01,
        stability_window_sec=30,
        connect_timeout_sec=1,
        ping_interval_sec=0,
        tool_list_retries=1,
        plugins_root=str(tmp_path / "plugins"),
    )


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()
