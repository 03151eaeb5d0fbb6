from __future__ import annotations

from .service_models import (
    LocalService,
    RemoteService,
    ServiceDescriptor,
    ToolInfo,
    descriptor_from_params,
)
from .wire_models import BridgeCommand, BridgeResponse, ErrorBody, parse_command, salvage_id

__all__ = [
    "LocalService",
    "RemoteService",
    "ServiceDescriptor",
    "ToolInfo",
    "descriptor_from_params",
    "BridgeCommand",
    "BridgeResponse",
    "ErrorBody",
    "parse_command",
    "salvage_id",
]
