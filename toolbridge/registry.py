# toolbridge/registry.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Union

from toolbridge.models.service_models import LocalService, RemoteService

logger = logging.getLogger("toolbridge.registry")

Descriptor = Union[LocalService, RemoteService]


class ServiceRegistry:
    """
    In-memory `name -> descriptor` table. No I/O, never raises:
    failures come back as False/None so callers can shape error replies.
    """

    def __init__(self) -> None:
        self._services: Dict[str, Descriptor] = {}

    def register(self, descriptor: Descriptor) -> bool:
        if descriptor is None or not descriptor.is_valid():
            return False
        replaced = descriptor.name in self._services
        self._services[descriptor.name] = descriptor
        logger.info("Service %s: %s (type=%s)", "replaced" if replaced else "registered", descriptor.name, descriptor.type)
        return True

    def unregister(self, name: str) -> bool:
        if self._services.pop(name, None) is None:
            return False
        logger.info("Service unregistered: %s", name)
        return True

    def get(self, name: str) -> Optional[Descriptor]:
        return self._services.get(name)

    def list(self) -> List[Descriptor]:
        return list(self._services.values())

    def touch(self, name: str) -> None:
        svc = self._services.get(name)
        if svc is not None:
            svc.last_used_at = datetime.now(timezone.utc)

    def clear(self) -> None:
        self._services.clear()

    def names(self) -> List[str]:
        return list(self._services.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._services

    def __len__(self) -> int:
        return len(self._services)

    def __iter__(self) -> Iterator[Descriptor]:
        return iter(list(self._services.values()))
