# toolbridge/mcp_host/transports/session.py
from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, suppress
from typing import Any, Dict, List, Optional, Tuple

from mcp import ClientSession

from toolbridge.infra.logging import preview
from toolbridge.mcp_host.types import ConnectSpec, ToolCallOutcome
from toolbridge.models.service_models import ToolInfo

logger = logging.getLogger("toolbridge.mcp.session")


class McpSessionClient:
    """
    Shared lifecycle for SDK-backed adapters.

    The SDK transports are anyio context managers whose cancel scopes must be
    exited by the task that entered them, so the transport and the
    ClientSession live inside a single owner task (`_run`). `connect()` waits
    for that task to finish `initialize()`; `close()` signals it to unwind.
    While connected the owner task pings the server every `ping_interval_sec`;
    a failed ping ends the connection and resolves `wait_closed()`.
    """

    transport_label = "mcp"

    def __init__(
        self,
        *,
        label: str = "",
        timeout_sec: float = 60,
        call_timeout_sec: float = 180,
        ping_interval_sec: float = 30,
        kill_timeout_sec: float = 10,
    ) -> None:
        self.label = label
        self.timeout_sec = timeout_sec
        self.call_timeout_sec = call_timeout_sec
        self.ping_interval_sec = ping_interval_sec
        self.kill_timeout_sec = kill_timeout_sec

        self._session: ClientSession | None = None
        self._runner: asyncio.Task[None] | None = None
        self._ready: asyncio.Future[None] | None = None
        self._stop = asyncio.Event()
        self._closed = asyncio.Event()
        self._close_error: Optional[str] = None

    # ---- subclass hook ------------------------------------------------------ #

    async def _open_transport(self, stack: AsyncExitStack, spec: ConnectSpec) -> Tuple[Any, Any]:
        raise NotImplementedError

    # ---- lifecycle ----------------------------------------------------------- #

    async def connect(self, spec: ConnectSpec) -> None:
        if self._runner is not None:
            return

        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._runner = asyncio.create_task(self._run(spec), name=f"mcp-{self.transport_label}-{self.label}")
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            await self._abort()
            raise TimeoutError(f"MCP initialize() timed out after {self.timeout_sec}s") from None
        except BaseException:
            await self._abort()
            raise
        logger.info("MCP %s connected: %s", self.transport_label, self.label)

    async def _abort(self) -> None:
        runner = self._runner
        if self._ready is not None and not self._ready.done():
            self._ready.cancel()
            # still inside initialize(), which never checks _stop
            if runner is not None and not runner.done():
                self._stop.set()
                runner.cancel()
                await asyncio.gather(runner, return_exceptions=True)
                logger.info("MCP %s connect aborted: %s", self.transport_label, self.label)
                return
        await self.close()

    async def _run(self, spec: ConnectSpec) -> None:
        assert self._ready is not None
        try:
            async with AsyncExitStack() as stack:
                read_stream, write_stream = await self._open_transport(stack, spec)
                session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
                await session.initialize()
                self._session = session
                if not self._ready.done():
                    self._ready.set_result(None)
                await self._watch(session)
        except Exception as e:
            if not self._ready.done():
                self._ready.set_exception(e)
            elif not self._stop.is_set():
                self._close_error = str(e) or e.__class__.__name__
                logger.warning("MCP %s connection lost: %s (%s)", self.transport_label, self.label, self._close_error)
        finally:
            self._session = None
            self._closed.set()

    async def _watch(self, session: ClientSession) -> None:
        while not self._stop.is_set():
            if self.ping_interval_sec <= 0:
                await self._stop.wait()
                return
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.ping_interval_sec)
            except asyncio.TimeoutError:
                await asyncio.wait_for(session.send_ping(), timeout=self.timeout_sec)

    async def close(self) -> None:
        runner = self._runner
        if runner is None:
            return
        self._stop.set()
        try:
            await asyncio.wait_for(asyncio.shield(runner), timeout=self.kill_timeout_sec)
        except asyncio.TimeoutError:
            runner.cancel()
            with suppress(BaseException):
                await runner
            logger.warning("MCP %s close timed out; owner task cancelled: %s", self.transport_label, self.label)
        except Exception:
            logger.debug("Ignoring MCP %s close error", self.transport_label, exc_info=True)
        logger.info("MCP %s closed: %s", self.transport_label, self.label)

    async def wait_closed(self) -> Optional[str]:
        await self._closed.wait()
        return self._close_error

    # ---- operations ---------------------------------------------------------- #

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError("MCP client not connected")
        return self._session

    async def get_all_tools(self) -> List[ToolInfo]:
        session = self._require_session()
        tools: List[ToolInfo] = []
        cursor: Optional[str] = None
        while True:
            if cursor is None:
                page = await asyncio.wait_for(session.list_tools(), timeout=self.timeout_sec)
            else:
                page = await asyncio.wait_for(session.list_tools(cursor=cursor), timeout=self.timeout_sec)
            for t in getattr(page, "tools", []) or []:
                tools.append(
                    ToolInfo(
                        name=t.name,
                        description=getattr(t, "description", None),
                        input_schema=getattr(t, "inputSchema", None) or {},
                    )
                )
            cursor = getattr(page, "nextCursor", None)
            if not cursor:
                break
        logger.debug("MCP tools discovered (%s): %s", self.label, [t.name for t in tools])
        return tools

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> ToolCallOutcome:
        session = self._require_session()
        logger.info("MCP %s call: service=%s tool=%s args=%s", self.transport_label, self.label, name, preview(arguments, 600))
        result = await asyncio.wait_for(
            session.call_tool(name, arguments=arguments or {}),
            timeout=self.call_timeout_sec,
        )

        outcome = ToolCallOutcome(
            content=[cb.model_dump(mode="json", exclude_none=True) for cb in (getattr(result, "content", None) or [])],
            is_error=bool(getattr(result, "isError", False)),
        )
        structured = getattr(result, "structuredContent", None)
        if structured is not None:
            outcome["structured"] = structured
        return outcome
