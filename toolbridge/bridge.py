# toolbridge/bridge.py
from __future__ import annotations

import asyncio
import logging
import signal
from contextlib import suppress
from typing import Optional, Union

from toolbridge.config import Settings
from toolbridge.dispatcher import CommandDispatcher
from toolbridge.mcp_host.factory import McpAdapterFactory
from toolbridge.mcp_host.manager import ConnectionManager
from toolbridge.mcp_host.types import AdapterFactory
from toolbridge.models.service_models import LocalService, RemoteService
from toolbridge.registry import ServiceRegistry
from toolbridge.server import BridgeServer
from toolbridge.tracker import RequestTracker

logger = logging.getLogger("toolbridge.bridge")


class Bridge:
    """
    Owns every component for one bridge process. Nothing is started at
    construction; `start()` opens the listener and the timeout sweeper,
    `shutdown()` undoes it (idempotent).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        factory: Optional[AdapterFactory] = None,
        default_service: Optional[Union[LocalService, RemoteService]] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.registry = ServiceRegistry()
        self.tracker = RequestTracker(
            timeout_sec=self.settings.request_timeout_sec,
            sweep_interval_sec=self.settings.sweep_interval_sec,
        )
        self.manager = ConnectionManager(self.registry, factory or McpAdapterFactory(self.settings), self.settings)
        self.dispatcher = CommandDispatcher(self.registry, self.manager, self.tracker)
        self.server = BridgeServer(self.dispatcher, self.tracker, self.settings)
        self.dispatcher.peer_count = self.server.peer_count

        if default_service is not None:
            # registered only; nothing starts until a spawn
            self.registry.register(default_service)

        self._sweeper: Optional[asyncio.Task[None]] = None
        self._stop: Optional[asyncio.Event] = None
        self._started = False

    @property
    def port(self) -> Optional[int]:
        return self.server.port

    async def start(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        if self._started:
            return
        self._stop = asyncio.Event()
        await self.server.start(host, port)
        self._sweeper = asyncio.create_task(self.tracker.run_sweeper(), name="request-sweeper")
        self._started = True
        logger.info("Bridge started (registered services: %s)", self.registry.names())

    async def shutdown(self) -> None:
        if not self._started:
            return
        self._started = False
        logger.info("Shutting down bridge...")
        if self._sweeper is not None:
            self._sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        await self.server.close()
        await self.manager.aclose()
        self.tracker.clear()
        if self._stop is not None:
            self._stop.set()
        logger.info("Bridge stopped")

    def request_stop(self) -> None:
        if self._stop is not None:
            self._stop.set()

    async def serve_forever(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        await self.start(host, port)
        assert self._stop is not None
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # add_signal_handler is unavailable on some platforms
                pass
        try:
            await self._stop.wait()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.shutdown()
