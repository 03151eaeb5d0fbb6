# toolbridge/client.py
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import suppress
from typing import Any, Dict, List, Optional

from toolbridge.errors import BridgeError

logger = logging.getLogger("toolbridge.client")


class BridgeClient:
    """
    Asyncio client for the bridge wire protocol.

    Replies are matched to requests by id, so tool calls may be in flight
    while other commands run on the same connection.

        async with BridgeClient("127.0.0.1", 8752) as bridge:
            await bridge.register("echo", type="local", command="python", args=["server.py"])
            await bridge.spawn("echo")
            result = await bridge.toolcall("say", {"text": "hi"}, name="echo")
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 8752, *, timeout_sec: float = 200.0) -> None:
        self.host = host
        self.port = port
        self.timeout_sec = timeout_sec
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._waiters: Dict[str, asyncio.Future[Dict[str, Any]]] = {}

    async def connect(self) -> "BridgeClient":
        self._reader, self._writer = await asyncio.open_connection(self.host, self.port, limit=16 * 1024 * 1024)
        self._reader_task = asyncio.create_task(self._read_loop(), name="bridge-client-reader")
        return self

    async def close(self) -> None:
        if self._reader_task is not None:
            self._reader_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None
        if self._writer is not None:
            self._writer.close()
            with suppress(ConnectionError, OSError):
                await self._writer.wait_closed()
            self._writer = None
        self._fail_waiters(ConnectionError("Bridge connection closed"))

    async def __aenter__(self) -> "BridgeClient":
        return await self.connect()

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _fail_waiters(self, err: BaseException) -> None:
        waiters, self._waiters = self._waiters, {}
        for fut in waiters.values():
            if not fut.done():
                fut.set_exception(err)

    async def _read_loop(self) -> None:
        assert self._reader is not None
        try:
            while True:
                line = await self._reader.readline()
                if not line:
                    break
                try:
                    msg = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Ignoring undecodable bridge reply: %r", line[:200])
                    continue
                fut = self._waiters.pop(str(msg.get("id")), None)
                if fut is not None and not fut.done():
                    fut.set_result(msg)
                else:
                    logger.debug("Unmatched bridge reply: %s", msg)
        except (ConnectionError, OSError) as e:
            logger.info("Bridge connection error: %s", e)
        self._fail_waiters(ConnectionError("Bridge closed the connection"))

    # ---- raw requests -------------------------------------------------------- #

    async def send_raw(self, line: str) -> None:
        if self._writer is None:
            raise ConnectionError("Not connected")
        self._writer.write(line.encode("utf-8") + b"\n")
        await self._writer.drain()

    async def request(
        self,
        command: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        id: Optional[str] = None,
        timeout_sec: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send one command and return the raw reply envelope."""
        id = id or str(uuid.uuid4())
        fut: asyncio.Future[Dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._waiters[id] = fut
        try:
            await self.send_raw(json.dumps({"id": id, "command": command, "params": params or {}}))
            return await asyncio.wait_for(fut, timeout=timeout_sec or self.timeout_sec)
        finally:
            self._waiters.pop(id, None)

    async def call(self, command: str, params: Optional[Dict[str, Any]] = None, **kw: Any) -> Dict[str, Any]:
        """Like `request`, but returns `result` and raises BridgeError on failure."""
        reply = await self.request(command, params, **kw)
        if not reply.get("success"):
            err = reply.get("error") or {}
            raise BridgeError(err.get("message", "Bridge request failed"), code=err.get("code"), data=reply.get("result"))
        return reply.get("result") or {}

    # ---- helpers ------------------------------------------------------------- #

    async def ping(self, name: Optional[str] = None) -> Dict[str, Any]:
        return await self.call("ping", {"name": name} if name else {})

    async def status(self) -> Dict[str, Any]:
        return await self.call("status")

    async def list_services(self) -> List[Dict[str, Any]]:
        return (await self.call("list")).get("services", [])

    async def list_tools(self, name: Optional[str] = None) -> Dict[str, Any]:
        return await self.call("listtools", {"name": name} if name else {})

    async def register(self, name: str, **descriptor: Any) -> Dict[str, Any]:
        return await self.call("register", {"name": name, **descriptor})

    async def unregister(self, name: str) -> Dict[str, Any]:
        return await self.call("unregister", {"name": name})

    async def spawn(self, name: str, **params: Any) -> Dict[str, Any]:
        return await self.call("spawn", {"name": name, **params})

    async def shutdown(self, name: str) -> Dict[str, Any]:
        return await self.call("shutdown", {"name": name})

    async def toolcall(self, method: str, arguments: Optional[Dict[str, Any]] = None, *, name: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"method": method, "params": arguments or {}}
        if name:
            params["name"] = name
        return await self.call("toolcall", params)

    async def reset(self) -> Dict[str, Any]:
        return await self.call("reset")
