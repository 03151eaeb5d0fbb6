# toolbridge/models/service_models.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ─────────────────────────────────────────────────────────────
# Service descriptors (registry entries)
# ─────────────────────────────────────────────────────────────

class _ServiceBase(_WireModel):
    name: str
    description: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    last_used_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _default_description(self) -> "_ServiceBase":
        if not self.description:
            self.description = f"MCP Service: {self.name}"
        return self

    def is_valid(self) -> bool:
        return bool(self.name)


class LocalService(_ServiceBase):
    """A backend launched as a subprocess speaking MCP over stdio."""

    type: Literal["local"] = "local"
    command: str = ""
    args: List[str] = Field(default_factory=list)
    cwd: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)

    @field_validator("args", mode="before")
    @classmethod
    def _coerce_args(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(a) for a in v]

    @field_validator("env", mode="before")
    @classmethod
    def _coerce_env(cls, v: Any) -> Dict[str, str]:
        return {str(k): str(val) for k, val in (v or {}).items()}

    def is_valid(self) -> bool:
        return super().is_valid() and bool(self.command and self.command.strip())


ConnectionType = Literal["httpStream", "sse"]

_CONNECTION_ALIASES = {
    "httpstream": "httpStream",
    "http-stream": "httpStream",
    "http_stream": "httpStream",
    "http": "httpStream",
    "streamable_http": "httpStream",
    "streamable-http": "httpStream",
    "streamablehttp": "httpStream",
    "sse": "sse",
    "server-sent-events": "sse",
}


class RemoteService(_ServiceBase):
    """A backend reached over streamable HTTP or server-sent events."""

    type: Literal["remote"] = "remote"
    endpoint: str = ""
    connection_type: ConnectionType = "httpStream"

    @field_validator("connection_type", mode="before")
    @classmethod
    def _normalize_connection_type(cls, v: Any) -> str:
        if v is None or v == "":
            return "httpStream"
        s = str(v).strip()
        return _CONNECTION_ALIASES.get(s.lower(), s)

    def is_valid(self) -> bool:
        return super().is_valid() and bool(self.endpoint and self.endpoint.strip())


ServiceDescriptor = Annotated[Union[LocalService, RemoteService], Field(discriminator="type")]

_descriptor_adapter: TypeAdapter[Union[LocalService, RemoteService]] = TypeAdapter(ServiceDescriptor)


def descriptor_from_params(params: Dict[str, Any]) -> Union[LocalService, RemoteService]:
    """
    Build a descriptor from wire params (`type` selects the variant).
    Raises pydantic.ValidationError on a bad shape; emptiness checks are left
    to the registry.
    """
    return _descriptor_adapter.validate_python(params)


# ─────────────────────────────────────────────────────────────
# Tools
# ─────────────────────────────────────────────────────────────

class ToolInfo(BaseModel):
    """One tool as advertised by a backend's tools/list."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
