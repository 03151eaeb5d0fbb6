# toolbridge/server.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional, Set

from toolbridge.config import Settings
from toolbridge.dispatcher import CommandDispatcher
from toolbridge.errors import INVALID_REQUEST
from toolbridge.models.wire_models import BridgeResponse
from toolbridge.tracker import RequestTracker

logger = logging.getLogger("toolbridge.server")


class PeerConnection:
    """One accepted client socket."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer
        peer = writer.get_extra_info("peername")
        self.address = f"{peer[0]}:{peer[1]}" if isinstance(peer, tuple) and len(peer) >= 2 else str(peer)
        self.last_activity = time.monotonic()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self.writer.is_closing()

    def send(self, response: BridgeResponse) -> None:
        if self.closed:
            return
        self.writer.write(response.encode())
        self.last_activity = time.monotonic()

    async def next_line(self, idle_timeout: float) -> Optional[bytes]:
        """
        Next raw line, or None on EOF / idle timeout. Activity is any line
        read or reply written; pending requests do not keep a peer alive.
        """
        while True:
            remaining = idle_timeout - (time.monotonic() - self.last_activity)
            if remaining <= 0:
                logger.info("Client idle timeout: %s", self.address)
                return None
            try:
                line = await asyncio.wait_for(self.reader.readline(), timeout=remaining)
            except asyncio.TimeoutError:
                continue
            if not line:
                return None
            self.last_activity = time.monotonic()
            return line

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Ignoring close error for %s: %s", self.address, e)


class BridgeServer:
    """
    Newline-delimited JSON over TCP. Commands from one connection are handled
    in arrival order; a disconnect purges that connection's pending requests.
    """

    def __init__(self, dispatcher: CommandDispatcher, tracker: RequestTracker, settings: Settings) -> None:
        self.dispatcher = dispatcher
        self.tracker = tracker
        self.settings = settings
        self._server: Optional[asyncio.Server] = None
        self._peers: Set[PeerConnection] = set()

    @property
    def port(self) -> Optional[int]:
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    def peer_count(self) -> int:
        return len(self._peers)

    async def start(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        host = host or self.settings.host
        port = self.settings.port if port is None else port
        self._server = await asyncio.start_server(
            self._handle_client,
            host=host,
            port=port,
            limit=self.settings.max_line_bytes,
        )
        logger.info("Bridge listening on %s:%s", host, self.port)

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = PeerConnection(reader, writer)
        self._peers.add(peer)
        logger.info("New client connection: %s", peer.address)
        try:
            while not peer.closed:
                try:
                    raw = await peer.next_line(self.settings.idle_timeout_sec)
                except (ValueError, asyncio.LimitOverrunError):
                    peer.send(BridgeResponse.fail(None, INVALID_REQUEST, "Message exceeds maximum line length"))
                    break
                if raw is None:
                    break
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                response = self.dispatcher.dispatch_line(line, peer)
                if response is not None:
                    peer.send(response)
                    await writer.drain()
        except (ConnectionError, OSError) as e:
            logger.info("Client connection error %s: %s", peer.address, e)
        finally:
            self._peers.discard(peer)
            self.tracker.drop_peer(peer)
            await peer.close()
            logger.info("Client disconnected: %s", peer.address)

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
        for peer in list(self._peers):
            await peer.close()
        if self._server is not None:
            await self._server.wait_closed()
            self._server = None
