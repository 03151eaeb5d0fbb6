# toolbridge/dispatcher.py
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from toolbridge.errors import (
    INTERNAL_ERROR,
    BridgeError,
    InternalError,
    NotFoundError,
    ToolExecutionError,
    ValidationError,
)
from toolbridge.infra.logging import preview
from toolbridge.mcp_host.manager import ConnectionManager
from toolbridge.mcp_host.types import ToolCallOutcome
from toolbridge.models.service_models import LocalService, descriptor_from_params
from toolbridge.models.wire_models import BridgeCommand, BridgeResponse, ErrorBody, parse_command
from toolbridge.registry import ServiceRegistry
from toolbridge.tracker import Peer, RequestTracker

logger = logging.getLogger("toolbridge.dispatcher")

Handler = Callable[[BridgeCommand, Peer], Optional[Dict[str, Any]]]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _first_text(content: List[Dict[str, Any]]) -> Optional[str]:
    for item in content or []:
        if isinstance(item, dict) and item.get("type") == "text" and item.get("text"):
            return str(item["text"])
    return None


def _tool_result(outcome: ToolCallOutcome) -> Dict[str, Any]:
    """`{content, structuredContent?}`; raises ToolExecutionError when the tool flagged `isError`."""
    content = list(outcome.get("content") or [])
    result: Dict[str, Any] = {"content": content}
    if outcome.get("structured") is not None:
        result["structuredContent"] = outcome["structured"]
    if outcome.get("is_error"):
        raise ToolExecutionError(_first_text(content) or "Remote tool error", data=result)
    return result


class CommandDispatcher:
    """
    Routes one decoded command to its handler and shapes the reply.

    Handlers are synchronous: they return a result dict, raise a BridgeError,
    or (for `toolcall`) return None after scheduling the backend call, whose
    reply is written later through the request tracker.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        manager: ConnectionManager,
        tracker: RequestTracker,
        peer_count: Callable[[], int] = lambda: 0,
    ) -> None:
        self.registry = registry
        self.manager = manager
        self.tracker = tracker
        self.peer_count = peer_count
        self._handlers: Dict[str, Handler] = {
            "ping": self._ping,
            "status": self._status,
            "listtools": self._listtools,
            "list": self._list,
            "spawn": self._spawn,
            "shutdown": self._shutdown,
            "register": self._register,
            "unregister": self._unregister,
            "toolcall": self._toolcall,
            "reset": self._reset,
        }

    # ---- entry points -------------------------------------------------------- #

    def dispatch_line(self, line: str, peer: Peer) -> Optional[BridgeResponse]:
        try:
            cmd = parse_command(line)
        except BridgeError as e:
            logger.warning("Rejected client message: %s", e.message)
            return BridgeResponse.from_error(e.request_id, e)
        return self.dispatch(cmd, peer)

    def dispatch(self, cmd: BridgeCommand, peer: Peer) -> Optional[BridgeResponse]:
        handler = self._handlers.get(cmd.command)
        if handler is None:
            return BridgeResponse.from_error(cmd.id, NotFoundError(f"Unknown command: {cmd.command}"))

        logger.debug("Command %s id=%s params=%s", cmd.command, cmd.id, preview(cmd.params, 400))
        try:
            result = handler(cmd, peer)
        except BridgeError as e:
            logger.info("Command %s id=%s failed: %s (%d)", cmd.command, cmd.id, e.message, e.code)
            return BridgeResponse.from_error(cmd.id, e)
        except Exception as e:
            logger.exception("Command %s id=%s raised", cmd.command, cmd.id)
            return BridgeResponse.fail(cmd.id, INTERNAL_ERROR, f"Internal server error: {e}")

        if result is None:
            return None
        return BridgeResponse.ok(cmd.id, result)

    # ---- helpers ------------------------------------------------------------- #

    def _service_summary(self, name: str) -> Dict[str, Any]:
        return {
            "active": self.manager.is_active(name),
            "ready": self.manager.is_ready(name),
            "toolCount": len(self.manager.tools_for(name)),
        }

    @staticmethod
    def _require_name(params: Dict[str, Any]) -> str:
        name = params.get("name")
        if not name or not isinstance(name, str):
            raise ValidationError("Missing required parameter: name")
        return name

    # ---- handlers ------------------------------------------------------------ #

    def _ping(self, cmd: BridgeCommand, peer: Peer) -> Dict[str, Any]:
        name = cmd.params.get("name")
        if not name:
            active = self.manager.active_names()
            return {
                "status": "ok",
                "timestamp": _now_ms(),
                "activeServices": active,
                "serviceCount": len(active),
            }

        svc = self.registry.get(name)
        if svc is None:
            raise NotFoundError(f"Service '{name}' not registered")
        self.registry.touch(name)
        active = self.manager.is_active(name)
        return {
            "status": "ok" if active else "registered_not_active",
            "name": name,
            "type": svc.type,
            "description": svc.description,
            "timestamp": _now_ms(),
            "active": active,
            "ready": self.manager.is_ready(name),
        }

    def _status(self, cmd: BridgeCommand, peer: Peer) -> Dict[str, Any]:
        service_status: Dict[str, Any] = {}
        for svc in self.registry.list():
            entry = self._service_summary(svc.name)
            entry["type"] = svc.type
            entry["error"] = self.manager.last_error(svc.name)
            service_status[svc.name] = entry
        active = self.manager.active_names()
        return {
            "activeServices": active,
            "serviceCount": len(active),
            "registeredServices": self.registry.names(),
            "serviceStatus": service_status,
            "pendingRequests": len(self.tracker),
            "activeConnections": self.peer_count(),
        }

    def _listtools(self, cmd: BridgeCommand, peer: Peer) -> Dict[str, Any]:
        name = cmd.params.get("name")
        if name:
            if not self.manager.is_active(name):
                raise InternalError(f"Service '{name}' not active")
            return {"tools": [t.to_wire() for t in self.manager.tools_for(name)]}
        return {
            "serviceTools": {
                n: [t.to_wire() for t in self.manager.tools_for(n)] for n in self.manager.active_names()
            }
        }

    def _list(self, cmd: BridgeCommand, peer: Peer) -> Dict[str, Any]:
        services = []
        for svc in self.registry.list():
            services.append({**svc.to_wire(), **self._service_summary(svc.name)})
        return {"services": services}

    def _spawn(self, cmd: BridgeCommand, peer: Peer) -> Dict[str, Any]:
        if not cmd.params:
            raise ValidationError("Missing parameters")
        name = self._require_name(cmd.params)

        svc = self.registry.get(name)
        if svc is None:
            command = cmd.params.get("command")
            if not command:
                raise ValidationError(f"Service '{name}' is not registered and no command provided.")
            try:
                svc = LocalService(
                    name=name,
                    command=command,
                    args=cmd.params.get("args") or [],
                    env=cmd.params.get("env") or {},
                    cwd=cmd.params.get("cwd"),
                    description=f"Auto-registered service {name}",
                )
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid spawn parameters: {e.errors()[0].get('msg')}") from e
            if not self.registry.register(svc):
                raise ValidationError("Failed to register service")
            logger.info("Auto-registered new service: %s", name)

        # an explicit spawn lifts a service out of the terminal restart state
        self.manager.supervisor.reset(name)
        self.manager.spawn(self.manager.start_service(name), name=f"start-{name}")

        result: Dict[str, Any] = {"status": "started", "name": name, "type": svc.type}
        if isinstance(svc, LocalService):
            result.update(command=svc.command, args=list(svc.args), cwd=svc.cwd)
        else:
            result.update(endpoint=svc.endpoint, connectionType=svc.connection_type)
        return result

    def _shutdown(self, cmd: BridgeCommand, peer: Peer) -> Dict[str, Any]:
        name = self._require_name(cmd.params)
        if not self.manager.is_active(name):
            raise ValidationError(f"Service '{name}' not active")
        self.manager.close_service(name)
        return {"status": "shutdown", "name": name}

    def _register(self, cmd: BridgeCommand, peer: Peer) -> Dict[str, Any]:
        params = cmd.params
        name, kind = params.get("name"), params.get("type")
        if not name or not kind:
            raise ValidationError("Missing required parameters: name, type")
        if kind == "local" and not params.get("command"):
            raise ValidationError("Missing parameter 'command' for local service")
        if kind == "remote" and not params.get("endpoint"):
            raise ValidationError("Missing 'endpoint' for remote service")
        if kind not in ("local", "remote"):
            raise ValidationError(f"Invalid service type: {kind}")

        try:
            descriptor = descriptor_from_params(params)
        except PydanticValidationError as e:
            errors = e.errors()
            detail = errors[0].get("msg") if errors else str(e)
            raise ValidationError(f"Failed to register service: {detail}") from e

        if not self.registry.register(descriptor):
            raise ValidationError("Failed to register service")
        self.manager.supervisor.reset(name)
        return {"status": "registered", "name": name}

    def _unregister(self, cmd: BridgeCommand, peer: Peer) -> Dict[str, Any]:
        name = self._require_name(cmd.params)
        if name not in self.registry:
            raise ValidationError(f"Service '{name}' not registered")
        self.manager.close_service(name)
        return {"status": "unregistered", "name": name}

    def _reset(self, cmd: BridgeCommand, peer: Peer) -> Dict[str, Any]:
        logger.info("Resetting bridge: closing all services and clearing registry")
        self.manager.reset()
        self.tracker.clear()
        return {"status": "reset", "message": "All services closed and registry cleared"}

    # ---- tool calls ---------------------------------------------------------- #

    def _toolcall(self, cmd: BridgeCommand, peer: Peer) -> None:
        params = cmd.params
        method = params.get("method")
        if not method or not isinstance(method, str):
            raise ValidationError("Missing required parameter: method")
        arguments = params.get("params") or {}
        if not isinstance(arguments, dict):
            raise ValidationError("Tool arguments ('params') must be an object")

        name = params.get("name")
        if not name:
            active = self.manager.active_names()
            name = active[0] if active else None
        if not name:
            raise ValidationError("No service specified and no default available")
        if not self.manager.is_active(name):
            raise InternalError(f"Service '{name}' is not active")
        if cmd.id in self.tracker:
            raise ValidationError(f"Request id '{cmd.id}' is already pending")

        self.registry.touch(name)
        entry = self.tracker.track(cmd.id, peer, service=name)
        entry.inner_call_id = str(uuid.uuid4())
        self.manager.spawn(self._forward_tool_call(cmd.id, name, method, arguments), name=f"toolcall-{cmd.id}")
        return None

    async def _forward_tool_call(self, id: str, service: str, method: str, arguments: Dict[str, Any]) -> None:
        try:
            outcome = await self.manager.call_tool(service, method, arguments)
            result = _tool_result(outcome)
        except asyncio.CancelledError:
            self.tracker.resolve(id)
            raise
        except ToolExecutionError as e:
            logger.info("Tool %s on %s reported an error: %s", method, service, e.message)
            # the backend content stays in `result` next to the error body
            response = BridgeResponse(id=id, success=False, result=e.data, error=ErrorBody(code=e.code, message=e.message))
        except Exception as e:
            logger.error("Error handling tool call for %s: %s", service, e)
            response = BridgeResponse.fail(id, INTERNAL_ERROR, f"Tool call failed: {e}")
        else:
            response = BridgeResponse.ok(id, result)

        entry = self.tracker.resolve(id)
        if entry is None:
            logger.info("Dropping late reply for request %s (service=%s)", id, service)
            return
        if entry.peer.closed:
            return
        try:
            entry.peer.send(response)
        except Exception as e:
            logger.debug("Could not deliver reply for %s: %s", id, e)
