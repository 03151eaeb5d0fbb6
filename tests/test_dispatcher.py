from __future__ import annotations

import asyncio
import json

import pytest
from conftest import FakePeer, wait_until

from toolbridge.bridge import Bridge
from toolbridge.errors import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND, PARSE_ERROR, TOOL_ERROR


def _send(bridge: Bridge, peer: FakePeer, command: str, params=None, id: str = "1"):
    line = json.dumps({"id": id, "command": command, "params": params or {}})
    return bridge.dispatcher.dispatch_line(line, peer)


def _with_bridge(factory, settings, body):
    async def scenario():
        bridge = Bridge(settings, factory=factory)
        try:
            return await body(bridge, FakePeer())
        finally:
            await bridge.manager.aclose()

    return asyncio.run(scenario())


async def _register_and_spawn(bridge, peer, name="echo"):
    _send(bridge, peer, "register", {"name": name, "type": "local", "command": "echo", "args": ["hi"]})
    _send(bridge, peer, "spawn", {"name": name})
    await wait_until(lambda: bridge.manager.is_ready(name))


def test_parse_failures(factory, fast_settings):
    async def body(bridge, peer):
        bad = bridge.dispatcher.dispatch_line('{"id": "x9", "command": ', peer)
        no_cmd = bridge.dispatcher.dispatch_line('{"id": "x10", "jsonrpc": "2.0"}', peer)
        unknown = _send(bridge, peer, "explode")
        return bad, no_cmd, unknown

    bad, no_cmd, unknown = _with_bridge(factory, fast_settings, body)
    assert (bad.id, bad.error.code) == ("x9", PARSE_ERROR)
    assert (no_cmd.id, no_cmd.error.code) == ("x10", INVALID_REQUEST)
    assert unknown.error.code == METHOD_NOT_FOUND
    assert unknown.error.message == "Unknown command: explode"


def test_ping_bridge_and_named_service(factory, fast_settings):
    async def body(bridge, peer):
        plain = _send(bridge, peer, "ping")
        missing = _send(bridge, peer, "ping", {"name": "nope"})
        _send(bridge, peer, "register", {"name": "echo", "type": "local", "command": "echo"})
        idle = _send(bridge, peer, "ping", {"name": "echo"})
        touched = bridge.registry.get("echo").last_used_at
        return plain, missing, idle, touched

    plain, missing, idle, touched = _with_bridge(factory, fast_settings, body)
    assert plain.result["status"] == "ok"
    assert plain.result["activeServices"] == [] and plain.result["serviceCount"] == 0
    assert missing.error.code == METHOD_NOT_FOUND
    assert idle.result["status"] == "registered_not_active"
    assert idle.result["active"] is False and idle.result["type"] == "local"
    assert touched is not None


def test_register_validation_messages(factory, fast_settings):
    async def body(bridge, peer):
        return [
            _send(bridge, peer, "register", {"name": "x"}),
            _send(bridge, peer, "register", {"name": "x", "type": "local"}),
            _send(bridge, peer, "register", {"name": "x", "type": "remote"}),
            _send(bridge, peer, "register", {"name": "x", "type": "ftp", "command": "a"}),
            _send(bridge, peer, "list"),
        ]

    *errors, listed = _with_bridge(factory, fast_settings, body)
    assert all(r.error.code == INVALID_PARAMS for r in errors)
    assert [r.error.message for r in errors[:3]] == [
        "Missing required parameters: name, type",
        "Missing parameter 'command' for local service",
        "Missing 'endpoint' for remote service",
    ]
    assert listed.result == {"services": []}


def test_register_then_list_shows_inactive_service(factory, fast_settings):
    async def body(bridge, peer):
        reg = _send(bridge, peer, "register", {"name": "web", "type": "remote", "endpoint": "http://h/mcp"})
        return reg, _send(bridge, peer, "list")

    reg, listed = _with_bridge(factory, fast_settings, body)
    assert reg.result == {"status": "registered", "name": "web"}
    [svc] = listed.result["services"]
    assert svc["name"] == "web" and svc["connectionType"] == "httpStream"
    assert (svc["active"], svc["ready"], svc["toolCount"]) == (False, False, 0)
    assert factory.created == []


def test_spawn_auto_registers_and_starts(factory, fast_settings):
    async def body(bridge, peer):
        missing = _send(bridge, peer, "spawn", {"name": "ghost"})
        started = _send(bridge, peer, "spawn", {"name": "tmp", "command": "node", "args": ["srv.js"]})
        await wait_until(lambda: bridge.manager.is_ready("tmp"))
        status = _send(bridge, peer, "status")
        tools = _send(bridge, peer, "listtools", {"name": "tmp"})
        all_tools = _send(bridge, peer, "listtools")
        return missing, started, status, tools, all_tools, bridge.registry.get("tmp").description

    missing, started, status, tools, all_tools, description = _with_bridge(factory, fast_settings, body)
    assert missing.error.code == INVALID_PARAMS
    assert started.result["status"] == "started"
    assert started.result["command"] == "node" and started.result["args"] == ["srv.js"]
    assert description == "Auto-registered service tmp"
    assert status.result["activeServices"] == ["tmp"]
    assert status.result["serviceStatus"]["tmp"]["toolCount"] == 4
    assert [t["name"] for t in tools.result["tools"]][0] == "say"
    assert "inputSchema" in tools.result["tools"][0]
    assert list(all_tools.result["serviceTools"]) == ["tmp"]


def test_shutdown_then_toolcall_reports_not_active(factory, fast_settings):
    async def body(bridge, peer):
        await _register_and_spawn(bridge, peer)
        down = _send(bridge, peer, "shutdown", {"name": "echo"})
        again = _send(bridge, peer, "shutdown", {"name": "echo"})
        call = _send(bridge, peer, "toolcall", {"name": "echo", "method": "say"}, id="t1")
        await asyncio.sleep(0.02)
        return down, again, call, len(bridge.tracker), bridge.registry.names(), peer.sent

    down, again, call, pending, names, sent = _with_bridge(factory, fast_settings, body)
    assert down.result == {"status": "shutdown", "name": "echo"}
    assert again.error.code == INVALID_PARAMS
    assert call.error.code == INTERNAL_ERROR
    assert call.error.message == "Service 'echo' is not active"
    assert pending == 0 and names == [] and sent == []
    assert factory.calls == []


def test_toolcall_without_any_service(factory, fast_settings):
    async def body(bridge, peer):
        no_method = _send(bridge, peer, "toolcall", {"params": {}})
        no_service = _send(bridge, peer, "toolcall", {"method": "say"})
        return no_method, no_service, len(bridge.tracker)

    no_method, no_service, pending = _with_bridge(factory, fast_settings, body)
    assert no_method.error.code == INVALID_PARAMS
    assert no_service.error.code == INVALID_PARAMS
    assert no_service.error.message == "No service specified and no default available"
    assert pending == 0


def test_toolcall_success_error_and_exception(factory, fast_settings):
    async def body(bridge, peer):
        await _register_and_spawn(bridge, peer)
        # no name: first active service is used
        assert _send(bridge, peer, "toolcall", {"method": "say", "params": {"text": "hello"}}, id="ok") is None
        _send(bridge, peer, "toolcall", {"name": "echo", "method": "error"}, id="app")
        _send(bridge, peer, "toolcall", {"name": "echo", "method": "fail"}, id="boom")
        await wait_until(lambda: len(peer.sent) == 3)
        return {r.id: r for r in peer.sent}, len(bridge.tracker), bridge.registry.get("echo").last_used_at

    replies, pending, last_used = _with_bridge(factory, fast_settings, body)
    assert replies["ok"].success is True
    assert replies["ok"].result == {"content": [{"type": "text", "text": "hello"}]}

    assert replies["app"].success is False
    assert replies["app"].error.code == TOOL_ERROR
    assert replies["app"].error.message == "bad input"
    assert replies["app"].result["content"][0]["text"] == "bad input"

    assert replies["boom"].error.code == INTERNAL_ERROR
    assert "backend exploded" in replies["boom"].error.message
    assert pending == 0
    assert last_used is not None
    assert factory.calls[0] == ("echo", "say", {"text": "hello"})


def test_duplicate_pending_id_is_rejected(factory, fast_settings):
    async def body(bridge, peer):
        await _register_and_spawn(bridge, peer)
        first = _send(bridge, peer, "toolcall", {"name": "echo", "method": "slow"}, id="same")
        dup = _send(bridge, peer, "toolcall", {"name": "echo", "method": "say"}, id="same")
        return first, dup, len(bridge.tracker)

    first, dup, pending = _with_bridge(factory, fast_settings, body)
    assert first is None
    assert dup.error.code == INVALID_PARAMS
    assert pending == 1


def test_reply_after_peer_drop_is_discarded(factory, fast_settings):
    async def body(bridge, peer):
        await _register_and_spawn(bridge, peer)
        _send(bridge, peer, "toolcall", {"name": "echo", "method": "say"}, id="gone")
        bridge.tracker.drop_peer(peer)
        await asyncio.sleep(0.02)
        return peer.sent, len(bridge.tracker)

    sent, pending = _with_bridge(factory, fast_settings, body)
    assert sent == [] and pending == 0


def test_unregister_and_reset(factory, fast_settings):
    async def body(bridge, peer):
        await _register_and_spawn(bridge, peer, "a")
        await _register_and_spawn(bridge, peer, "b")
        unknown = _send(bridge, peer, "unregister", {"name": "zzz"})
        gone = _send(bridge, peer, "unregister", {"name": "a"})
        bridge.tracker.track("stale", peer)
        reset = _send(bridge, peer, "reset")
        return unknown, gone, reset, _send(bridge, peer, "list"), _send(bridge, peer, "status"), len(bridge.tracker)

    unknown, gone, reset, listed, status, pending = _with_bridge(factory, fast_settings, body)
    assert unknown.error.code == INVALID_PARAMS
    assert gone.result == {"status": "unregistered", "name": "a"}
    assert reset.result["status"] == "reset"
    assert listed.result["services"] == []
    assert status.result["activeServices"] == [] and status.result["serviceCount"] == 0
    assert pending == 0


def test_listtools_for_inactive_service(factory, fast_settings):
    async def body(bridge, peer):
        _send(bridge, peer, "register", {"name": "echo", "type": "local", "command": "echo"})
        return _send(bridge, peer, "listtools", {"name": "echo"})

    reply = _with_bridge(factory, fast_settings, body)
    assert reply.error.code == INTERNAL_ERROR
    assert reply.error.message == "Service 'echo' not active"


def test_spawn_lifts_terminal_restart_state(factory, fast_settings):
    fast_settings.max_restart_attempts = 1
    fast_settings.restart_base_delay_sec = 0.001

    async def body(bridge, peer):
        factory.fail_connect = True
        _send(bridge, peer, "register", {"name": "svc", "type": "local", "command": "node"})
        _send(bridge, peer, "spawn", {"name": "svc"})
        await wait_until(lambda: bridge.manager.supervisor.is_exhausted("svc"))
        status = _send(bridge, peer, "status")

        factory.fail_connect = False
        _send(bridge, peer, "spawn", {"name": "svc"})
        await wait_until(lambda: bridge.manager.is_ready("svc"))
        return status, bridge.manager.supervisor.attempts("svc")

    status, attempts = _with_bridge(factory, fast_settings, body)
    assert status.result["serviceStatus"]["svc"]["active"] is False
    assert status.result["serviceStatus"]["svc"]["error"] == "connect refused"
    assert attempts == 0


def test_tool_result_raises_tool_execution_error_on_is_error():
    from toolbridge.dispatcher import _tool_result
    from toolbridge.errors import ToolExecutionError

    outcome = {"content": [{"type": "image", "data": "x"}, {"type": "text", "text": "nope"}], "structured": {"k": 1}, "is_error": True}
    with pytest.raises(ToolExecutionError) as exc:
        _tool_result(outcome)
    err = exc.value
    assert err.code == TOOL_ERROR
    assert err.message == "nope"
    assert err.data == {"content": outcome["content"], "structuredContent": {"k": 1}}
    assert _tool_result({"content": [], "is_error": False}) == {"content": []}
