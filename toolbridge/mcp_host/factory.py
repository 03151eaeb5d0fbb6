# toolbridge/mcp_host/factory.py
from __future__ import annotations

import logging
import os
from typing import Dict, List, Mapping, Optional

from toolbridge.config import Settings
from toolbridge.mcp_host.transports.http_client import HttpMcpClient
from toolbridge.mcp_host.transports.stdio_client import StdioMcpClient
from toolbridge.mcp_host.types import ConnectSpec, RemoteConnectSpec, StdioConnectSpec, ToolClientAdapter

logger = logging.getLogger("toolbridge.mcp.factory")


# --------- Connect-spec helpers --------------------------------------------- #

def expand_path(path: Optional[str]) -> Optional[str]:
    """Expand a leading `~` to the user's home directory; other paths pass through."""
    if not path:
        return path
    if path == "~" or path.startswith("~/"):
        return os.path.expanduser(path)
    return path


def merge_env(
    caller_env: Optional[Mapping[str, str]],
    *,
    cwd: Optional[str],
    base_env: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Caller env over the process env. Package-manager cache defaults are only
    added when the caller did not set them.
    """
    caller = dict(caller_env or {})
    merged: Dict[str, str] = {**(os.environ if base_env is None else base_env), **caller}

    defaults = {
        "npm_config_prefer_offline": "true",
        "UV_LINK_MODE": "copy",
        "PYTHONUNBUFFERED": "1",
    }
    if cwd:
        defaults["npm_config_cache"] = os.path.join(cwd, ".npm-cache")
    for key, value in defaults.items():
        if key not in caller:
            merged[key] = value
    return merged


def resolve_cwd(name: str, cwd: Optional[str], plugins_root: Optional[str]) -> Optional[str]:
    """
    Explicit cwd wins (after `~` expansion). Otherwise fall back to
    `<plugins_root>/<name>` when that directory exists.
    """
    if cwd:
        return expand_path(cwd)
    if plugins_root:
        candidate = os.path.join(expand_path(plugins_root) or plugins_root, name)
        if os.path.isdir(candidate):
            return candidate
    return None


def local_connect_spec(
    name: str,
    command: str,
    args: Optional[List[str]] = None,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
    *,
    plugins_root: Optional[str] = None,
) -> StdioConnectSpec:
    workdir = resolve_cwd(name, cwd, plugins_root)
    actual_command = expand_path(command) or command
    actual_args = list(args or [])

    # Always enforce unbuffered mode when running Python interpreters
    if os.path.basename(actual_command).startswith("python") and "-u" not in actual_args:
        actual_args = ["-u"] + actual_args

    return StdioConnectSpec(
        type="stdio",
        command=actual_command,
        args=actual_args,
        env=merge_env(env, cwd=workdir),
        cwd=workdir,
    )


def remote_connect_spec(endpoint: str, connection_type: str = "httpStream") -> RemoteConnectSpec:
    kind = "sse" if connection_type == "sse" else "httpStream"
    return RemoteConnectSpec(type=kind, url=endpoint.strip())


# --------- Adapter factory ------------------------------------------------- #

class McpAdapterFactory:
    """
    Default factory: official MCP SDK clients for stdio, Streamable HTTP and SSE.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def create(self, spec: ConnectSpec, *, label: str = "") -> ToolClientAdapter:
        common = dict(
            label=label,
            timeout_sec=self.settings.connect_timeout_sec,
            call_timeout_sec=self.settings.request_timeout_sec,
            ping_interval_sec=self.settings.ping_interval_sec,
        )
        kind = spec.get("type")
        if kind == "stdio":
            return StdioMcpClient(**common)
        if kind in ("httpStream", "sse"):
            return HttpMcpClient(**common)
        raise ValueError(f"Unsupported MCP transport kind: {kind!r}")
