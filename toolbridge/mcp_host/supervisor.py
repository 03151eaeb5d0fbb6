# toolbridge/mcp_host/supervisor.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set

from toolbridge.registry import ServiceRegistry

logger = logging.getLogger("toolbridge.mcp.supervisor")


@dataclass
class RestartState:
    attempts: int = 0
    retry_handle: Optional[asyncio.TimerHandle] = None
    stability_handle: Optional[asyncio.TimerHandle] = None

    def cancel_retry(self) -> None:
        if self.retry_handle is not None:
            self.retry_handle.cancel()
            self.retry_handle = None

    def cancel_stability(self) -> None:
        if self.stability_handle is not None:
            self.stability_handle.cancel()
            self.stability_handle = None


class ReconnectionSupervisor:
    """
    Per-service capped exponential backoff.

    Every closure bumps `attempts`; retry `n` fires after
    `base_delay_sec * 2**(n-1)`. Past `max_attempts` the service is left down
    until it is re-registered or explicitly spawned again (`reset`). A
    connection that stays up for `stability_window_sec` clears the counter.
    Timer handles live on the RestartState so removing a service cancels any
    retry deterministically.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        restart: Callable[[str], Awaitable[None]],
        *,
        max_attempts: int = 5,
        base_delay_sec: float = 5.0,
        stability_window_sec: float = 60.0,
    ) -> None:
        self.registry = registry
        self._restart = restart
        self.max_attempts = max_attempts
        self.base_delay_sec = base_delay_sec
        self.stability_window_sec = stability_window_sec
        self._states: Dict[str, RestartState] = {}
        self._tasks: Set[asyncio.Task[None]] = set()

    # ---- queries ------------------------------------------------------------- #

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_sec * (2 ** (max(1, attempt) - 1))

    def attempts(self, name: str) -> int:
        state = self._states.get(name)
        return state.attempts if state else 0

    def is_exhausted(self, name: str) -> bool:
        return self.attempts(name) > self.max_attempts

    def is_retry_pending(self, name: str) -> bool:
        state = self._states.get(name)
        return bool(state and state.retry_handle is not None)

    # ---- transitions --------------------------------------------------------- #

    def on_closure(self, name: str) -> Optional[float]:
        """
        Schedule the next retry for `name`. Returns the delay used, or None
        when no retry was scheduled (unregistered or out of attempts).
        """
        if name not in self.registry:
            self.forget(name)
            logger.info("Service %s closed and is no longer registered; not reconnecting", name)
            return None

        state = self._states.setdefault(name, RestartState())
        state.cancel_stability()
        if state.retry_handle is not None:
            # a retry is already queued; one closure per in-flight attempt
            return None

        state.attempts += 1
        if state.attempts > self.max_attempts:
            logger.error("Service %s has failed too many times (%d). Will not reconnect again.", name, state.attempts - 1)
            return None

        delay = self.delay_for(state.attempts)
        loop = asyncio.get_running_loop()
        state.retry_handle = loop.call_later(delay, self._fire_retry, name)
        logger.info("Reconnecting service %s in %.1fs (attempt %d/%d)", name, delay, state.attempts, self.max_attempts)
        return delay

    def _fire_retry(self, name: str) -> None:
        state = self._states.get(name)
        if state is not None:
            state.retry_handle = None
        if name not in self.registry:
            return
        task = asyncio.get_running_loop().create_task(self._run_restart(name), name=f"restart-{name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_restart(self, name: str) -> None:
        try:
            await self._restart(name)
        except Exception:
            logger.exception("Restart of service %s raised", name)

    def mark_connected(self, name: str, still_current: Callable[[], bool]) -> None:
        """Arm the stability check for a fresh connection."""
        state = self._states.setdefault(name, RestartState())
        state.cancel_stability()
        loop = asyncio.get_running_loop()
        state.stability_handle = loop.call_later(self.stability_window_sec, self._check_stable, name, still_current)

    def _check_stable(self, name: str, still_current: Callable[[], bool]) -> None:
        state = self._states.get(name)
        if state is None:
            return
        state.stability_handle = None
        if still_current():
            if state.attempts:
                logger.info("Service %s stable for %.0fs; restart counter cleared", name, self.stability_window_sec)
            state.attempts = 0

    def reset(self, name: str) -> None:
        """Zero the counter and drop any queued retry (explicit spawn / re-register)."""
        state = self._states.get(name)
        if state is None:
            return
        state.cancel_retry()
        state.attempts = 0

    def forget(self, name: str) -> None:
        state = self._states.pop(name, None)
        if state is not None:
            state.cancel_retry()
            state.cancel_stability()

    def clear(self) -> None:
        for name in list(self._states):
            self.forget(name)

    async def aclose(self) -> None:
        self.clear()
        tasks = [t for t in self._tasks if not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
