# toolbridge/tracker.py
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

from toolbridge.errors import INTERNAL_ERROR
from toolbridge.models.wire_models import BridgeResponse

logger = logging.getLogger("toolbridge.tracker")


class Peer(Protocol):
    """What the tracker needs from a client connection."""

    @property
    def closed(self) -> bool: ...

    def send(self, response: BridgeResponse) -> None: ...


@dataclass
class PendingRequest:
    id: str
    peer: Peer
    service: Optional[str] = None
    inner_call_id: Optional[str] = None
    created_at: float = field(default_factory=time.monotonic)

    def age(self, now: Optional[float] = None) -> float:
        return (time.monotonic() if now is None else now) - self.created_at


class RequestTracker:
    """
    Outstanding tool calls keyed by request id.

    Each entry is removed exactly once, by whichever comes first: `resolve`
    (the reply), `sweep` (timeout) or `drop_peer` (the caller went away).
    Removing an id that is already gone is a no-op.
    """

    def __init__(self, *, timeout_sec: float = 180.0, sweep_interval_sec: float = 5.0) -> None:
        self.timeout_sec = timeout_sec
        self.sweep_interval_sec = sweep_interval_sec
        self._pending: Dict[str, PendingRequest] = {}

    def track(self, id: str, peer: Peer, service: Optional[str] = None) -> PendingRequest:
        entry = PendingRequest(id=id, peer=peer, service=service)
        self._pending[id] = entry
        return entry

    def resolve(self, id: str) -> Optional[PendingRequest]:
        return self._pending.pop(id, None)

    def get(self, id: str) -> Optional[PendingRequest]:
        return self._pending.get(id)

    def pending_for(self, peer: Peer) -> List[PendingRequest]:
        return [p for p in self._pending.values() if p.peer is peer]

    def sweep(self, now: Optional[float] = None) -> List[str]:
        now = time.monotonic() if now is None else now
        expired = [p for p in self._pending.values() if now - p.created_at > self.timeout_sec]
        for entry in expired:
            self._pending.pop(entry.id, None)
            logger.warning("Request %s timed out after %.0fs (service=%s)", entry.id, entry.age(now), entry.service)
            if entry.peer.closed:
                continue
            try:
                entry.peer.send(BridgeResponse.fail(entry.id, INTERNAL_ERROR, "Request timeout"))
            except Exception as e:
                logger.debug("Could not deliver timeout for %s: %s", entry.id, e)
        return [e.id for e in expired]

    def drop_peer(self, peer: Peer) -> int:
        ids = [p.id for p in self._pending.values() if p.peer is peer]
        for id in ids:
            self._pending.pop(id, None)
        if ids:
            logger.info("Dropped %d pending requests for a closed connection", len(ids))
        return len(ids)

    def clear(self) -> None:
        self._pending.clear()

    async def run_sweeper(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_sec)
            try:
                self.sweep()
            except Exception:
                logger.exception("Pending request sweep failed")

    def __contains__(self, id: object) -> bool:
        return id in self._pending

    def __len__(self) -> int:
        return len(self._pending)
