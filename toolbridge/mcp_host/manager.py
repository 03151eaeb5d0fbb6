# toolbridge/mcp_host/manager.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Mapping, Optional, Set

from tenacity import retry, stop_after_attempt, wait_exponential_jitter

from toolbridge.config import Settings
from toolbridge.mcp_host.factory import local_connect_spec, remote_connect_spec
from toolbridge.mcp_host.supervisor import ReconnectionSupervisor
from toolbridge.mcp_host.types import AdapterFactory, ConnectSpec, ToolCallOutcome, ToolClientAdapter
from toolbridge.models.service_models import LocalService, RemoteService, ToolInfo
from toolbridge.registry import ServiceRegistry

logger = logging.getLogger("toolbridge.mcp.manager")


def _retryable(retries: int):
    retries = max(1, int(retries))
    return retry(
        stop=stop_after_attempt(retries),
        wait=wait_exponential_jitter(initial=0.2, max=2.0),
        reraise=True,
    )


@dataclass
class ServiceConnection:
    name: str
    client: Optional[ToolClientAdapter] = None
    ready: bool = False
    tools: List[ToolInfo] = field(default_factory=list)
    last_error: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.client is not None


class ConnectionManager:
    """
    Owns one adapter per active service.

    A service is *active* as soon as its adapter is allocated, before the
    handshake finishes. Connection state outlives a dropped client so
    `last_error` stays visible; `close_service` removes it entirely.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        factory: AdapterFactory,
        settings: Settings,
    ) -> None:
        self.registry = registry
        self.factory = factory
        self.settings = settings
        self.supervisor = ReconnectionSupervisor(
            registry,
            self.start_service,
            max_attempts=settings.max_restart_attempts,
            base_delay_sec=settings.restart_base_delay_sec,
            stability_window_sec=settings.stability_window_sec,
        )
        self._conns: Dict[str, ServiceConnection] = {}
        self._tasks: Set[asyncio.Task[Any]] = set()

    # ---- snapshots ----------------------------------------------------------- #

    def connection(self, name: str) -> Optional[ServiceConnection]:
        return self._conns.get(name)

    def is_active(self, name: str) -> bool:
        conn = self._conns.get(name)
        return bool(conn and conn.active)

    def is_ready(self, name: str) -> bool:
        conn = self._conns.get(name)
        return bool(conn and conn.active and conn.ready)

    def tools_for(self, name: str) -> List[ToolInfo]:
        conn = self._conns.get(name)
        return list(conn.tools) if conn else []

    def last_error(self, name: str) -> Optional[str]:
        conn = self._conns.get(name)
        return conn.last_error if conn else None

    def active_names(self) -> List[str]:
        return [name for name, conn in self._conns.items() if conn.active]

    def _is_current(self, name: str, client: ToolClientAdapter) -> bool:
        conn = self._conns.get(name)
        return conn is not None and conn.client is client

    # ---- background tasks ---------------------------------------------------- #

    def spawn(self, coro: Awaitable[Any], *, name: Optional[str] = None) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _close_client(self, name: str, client: ToolClientAdapter) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.debug("Ignoring close error for %s: %s", name, e)

    # ---- start --------------------------------------------------------------- #

    async def start_local(
        self,
        name: str,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> None:
        if self.is_active(name):
            logger.debug("Service %s already active; start ignored", name)
            return
        spec = local_connect_spec(name, command, args, env, cwd, plugins_root=self.settings.plugins_root)
        logger.info("Starting local service %s: %s %s (cwd=%s)", name, spec["command"], spec["args"], spec["cwd"])
        await self._open(name, spec)

    async def connect_remote(self, name: str, endpoint: str, connection_type: str = "httpStream") -> None:
        if self.is_active(name):
            logger.debug("Service %s already active; connect ignored", name)
            return
        spec = remote_connect_spec(endpoint, connection_type)
        logger.info("Connecting remote service %s: %s (%s)", name, spec["url"], spec["type"])
        await self._open(name, spec)

    async def start_service(self, name: str) -> None:
        """Start `name` from its stored descriptor."""
        svc = self.registry.get(name)
        if svc is None:
            logger.info("Service %s is not registered; nothing to start", name)
            return
        if isinstance(svc, LocalService):
            await self.start_local(name, svc.command, svc.args, svc.env, svc.cwd)
        elif isinstance(svc, RemoteService):
            await self.connect_remote(name, svc.endpoint, svc.connection_type)

    async def _open(self, name: str, spec: ConnectSpec) -> None:
        client = self.factory.create(spec, label=name)
        conn = self._conns.setdefault(name, ServiceConnection(name=name))
        # recorded before the first await so concurrent starts see it active
        conn.client = client
        conn.ready = False
        conn.tools = []

        try:
            await client.connect(spec)
        except Exception as e:
            err = str(e) or e.__class__.__name__
            if not self._is_current(name, client):
                logger.debug("Connect failure for a superseded %s client: %s", name, err)
                return
            logger.warning("Failed to connect service %s: %s", name, err)
            conn.last_error = err
            self.spawn(self._close_client(name, client), name=f"close-{name}")
            self.handle_service_closure(name, client)
            return

        if not self._is_current(name, client):
            logger.info("Service %s was closed while connecting; dropping late connection", name)
            self.spawn(self._close_client(name, client), name=f"close-{name}")
            return

        conn.last_error = None
        self.supervisor.reset(name)
        self.supervisor.mark_connected(name, lambda: self._is_current(name, client))
        self.spawn(self._watch(name, client), name=f"watch-{name}")
        logger.info("Service %s connected", name)
        await self.fetch_tools(name)

    async def _watch(self, name: str, client: ToolClientAdapter) -> None:
        error = await client.wait_closed()
        if not self._is_current(name, client):
            return
        conn = self._conns[name]
        conn.last_error = error or "Connection closed"
        logger.warning("Service %s connection dropped: %s", name, conn.last_error)
        self.handle_service_closure(name, client)

    # ---- closure / reconnection ---------------------------------------------- #

    def handle_service_closure(self, name: str, client: Optional[ToolClientAdapter] = None) -> Optional[float]:
        """
        Clear the active client and hand the service to the supervisor.
        Returns the scheduled retry delay, if any.
        """
        conn = self._conns.get(name)
        if conn is not None:
            if client is not None and conn.client is not client:
                return None
            conn.client = None
            conn.ready = False
            conn.tools = []
        return self.supervisor.on_closure(name)

    # ---- tools --------------------------------------------------------------- #

    async def fetch_tools(self, name: str) -> List[ToolInfo]:
        conn = self._conns.setdefault(name, ServiceConnection(name=name))
        client = conn.client
        if client is None:
            conn.tools = []
            conn.ready = True
            return []

        fetch = _retryable(self.settings.tool_list_retries)(client.get_all_tools)
        try:
            tools = list(await fetch())
        except Exception as e:
            logger.warning("Failed to list tools for %s: %s", name, e)
            tools = []

        if not self._is_current(name, client):
            return []
        conn.tools = tools
        conn.ready = True
        logger.info("Service %s ready with %d tools", name, len(tools))
        return list(tools)

    async def call_tool(self, name: str, tool: str, arguments: Dict[str, Any]) -> ToolCallOutcome:
        conn = self._conns.get(name)
        if conn is None or conn.client is None:
            raise RuntimeError(f"Service '{name}' is not active")
        return await conn.client.call_tool(tool, arguments or {})

    # ---- teardown ------------------------------------------------------------ #

    def close_service(self, name: str) -> bool:
        """
        Schedule the adapter close without waiting, then forget the service
        everywhere (connection state, restart state, registry).
        Returns True when a client was active.
        """
        conn = self._conns.pop(name, None)
        self.supervisor.forget(name)
        self.registry.unregister(name)
        if conn is None or conn.client is None:
            return False
        self.spawn(self._close_client(name, conn.client), name=f"close-{name}")
        logger.info("Service %s closed", name)
        return True

    def close_all(self) -> List[asyncio.Task[Any]]:
        """Detach every client and schedule their closes; the registry is left alone."""
        self.supervisor.clear()
        tasks: List[asyncio.Task[Any]] = []
        conns = list(self._conns.items())
        self._conns.clear()
        for name, conn in conns:
            if conn.client is not None:
                tasks.append(self.spawn(self._close_client(name, conn.client), name=f"close-{name}"))
        if tasks:
            logger.info("Closing %d active services", len(tasks))
        return tasks

    def reset(self) -> None:
        self.close_all()
        self.registry.clear()

    async def aclose(self) -> None:
        closing = self.close_all()
        if closing:
            await asyncio.gather(*closing, return_exceptions=True)
        await self.supervisor.aclose()
        pending = [t for t in self._tasks if not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
