# toolbridge/infra/logging.py
from __future__ import annotations
import json
import logging
from typing import Any, Optional

_QUIET = ("mcp", "httpx", "httpcore", "anyio")


def _resolve_level(level_name: Optional[str]) -> int:
    level = logging.getLevelName((level_name or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(service_name: str = "tool-bridge", level_name: Optional[str] = None) -> None:
    """
    One line per record, tagged with the bridge's service name. Called once
    from the CLI; library users configure logging themselves.
    """
    level = _resolve_level(level_name)
    logging.basicConfig(
        level=level,
        format=f"%(asctime)s | %(levelname)s | %(name)s | svc={service_name} | %(message)s",
    )
    # SDK transports log every frame at INFO
    for name in _QUIET:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def preview(obj: Any, limit: int = 800) -> str:
    """Compact JSON rendering for log lines, truncated to `limit` chars."""
    try:
        s = obj if isinstance(obj, str) else json.dumps(obj, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        s = str(obj)
    return s if len(s) <= limit else s[:limit] + f"...(+{len(s)-limit}B)"
