from __future__ import annotations

from toolbridge.models.service_models import LocalService, RemoteService, descriptor_from_params
from toolbridge.registry import ServiceRegistry


def test_register_and_get_local_service():
    reg = ServiceRegistry()
    assert reg.register(LocalService(name="echo", command="echo", args=["hi"]))
    svc = reg.get("echo")
    assert svc is not None
    assert svc.command == "echo"
    assert svc.description == "MCP Service: echo"
    assert "echo" in reg
    assert len(reg) == 1


def test_local_without_command_is_rejected_and_registry_unchanged():
    reg = ServiceRegistry()
    reg.register(LocalService(name="keep", command="node"))

    assert reg.register(LocalService(name="bad", command="")) is False
    assert reg.register(LocalService(name="bad", command="   ")) is False
    assert reg.names() == ["keep"]


def test_remote_without_endpoint_is_rejected():
    reg = ServiceRegistry()
    assert reg.register(RemoteService(name="web", endpoint="")) is False
    assert reg.get("web") is None


def test_register_overwrites_last_write_wins():
    reg = ServiceRegistry()
    reg.register(LocalService(name="svc", command="a", args=["1"], env={"X": "1"}))
    reg.register(RemoteService(name="svc", endpoint="http://localhost:9000/mcp"))

    listed = reg.list()
    assert [s.name for s in listed] == ["svc"]
    assert listed[0].type == "remote"


def test_unregister_and_touch():
    reg = ServiceRegistry()
    reg.register(LocalService(name="svc", command="a"))
    assert reg.get("svc").last_used_at is None

    reg.touch("svc")
    assert reg.get("svc").last_used_at is not None
    reg.touch("missing")

    assert reg.unregister("svc") is True
    assert reg.unregister("svc") is False
    assert reg.list() == []


def test_descriptor_from_params_reads_camel_case_and_normalizes_transport():
    svc = descriptor_from_params(
        {"name": "web", "type": "remote", "endpoint": "http://h/mcp", "connectionType": "http", "description": "Web"}
    )
    assert isinstance(svc, RemoteService)
    assert svc.connection_type == "httpStream"
    assert svc.description == "Web"

    wire = svc.to_wire()
    assert wire["connectionType"] == "httpStream"
    assert "createdAt" in wire and wire["lastUsedAt"] is None


def test_descriptor_args_and_env_are_coerced_to_strings():
    svc = descriptor_from_params({"name": "py", "type": "local", "command": "python", "args": ["-m", 3], "env": {"N": 1}})
    assert svc.args == ["-m", "3"]
    assert svc.env == {"N": "1"}
