# toolbridge/config.py
from __future__ import annotations
import os
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Listener
    host: str = os.getenv("TOOL_BRIDGE_HOST", "127.0.0.1")
    port: int = int(os.getenv("TOOL_BRIDGE_PORT", "8752"))
    max_line_bytes: int = int(os.getenv("TOOL_BRIDGE_MAX_LINE_BYTES", str(16 * 1024 * 1024)))

    # Identity / logging
    service_name: str = os.getenv("SERVICE_NAME", "tool-bridge")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Request tracking
    request_timeout_sec: float = float(os.getenv("TOOL_BRIDGE_REQUEST_TIMEOUT_SECONDS", "180"))
    sweep_interval_sec: float = float(os.getenv("TOOL_BRIDGE_SWEEP_INTERVAL_SECONDS", "5"))
    idle_timeout_sec: float = float(os.getenv("TOOL_BRIDGE_IDLE_TIMEOUT_SECONDS", "120"))

    # Reconnection supervision
    max_restart_attempts: int = int(os.getenv("TOOL_BRIDGE_MAX_RESTART_ATTEMPTS", "5"))
    restart_base_delay_sec: float = float(os.getenv("TOOL_BRIDGE_RESTART_BASE_DELAY_SECONDS", "5"))
    stability_window_sec: float = float(os.getenv("TOOL_BRIDGE_STABILITY_WINDOW_SECONDS", "60"))

    # MCP backends
    connect_timeout_sec: float = float(os.getenv("TOOL_BRIDGE_CONNECT_TIMEOUT_SECONDS", "60"))
    ping_interval_sec: float = float(os.getenv("TOOL_BRIDGE_PING_INTERVAL_SECONDS", "30"))
    tool_list_retries: int = int(os.getenv("TOOL_BRIDGE_TOOL_LIST_RETRIES", "2"))
    plugins_root: str = os.getenv("TOOL_BRIDGE_PLUGINS_ROOT", "~/mcp_plugins")

    # Seeded from the CLI `command args...` tail
    default_service_name: str = os.getenv("TOOL_BRIDGE_DEFAULT_SERVICE", "default")

    model_config = SettingsConfigDict(env_prefix="TOOL_BRIDGE_", env_file=None, extra="ignore")


settings = Settings()
