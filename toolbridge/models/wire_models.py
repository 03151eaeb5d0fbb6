# toolbridge/models/wire_models.py
from __future__ import annotations

import json
import re
import uuid
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from toolbridge.errors import BridgeError, InvalidRequestError, ParseError

_ID_PATTERN = re.compile(r'"id"\s*:\s*(?:"((?:[^"\\]|\\.)*)"|(-?\d+))')


class ErrorBody(BaseModel):
    code: int
    message: str
    data: Optional[Any] = None


class BridgeCommand(BaseModel):
    """Inbound envelope: `{id, command, params}`."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    command: str
    params: Dict[str, Any] = Field(default_factory=dict)


class BridgeResponse(BaseModel):
    """Outbound envelope; exactly one per command."""

    id: Optional[str] = None
    success: bool
    result: Optional[Dict[str, Any]] = None
    error: Optional[ErrorBody] = None

    @classmethod
    def ok(cls, id: Optional[str], result: Dict[str, Any]) -> "BridgeResponse":
        return cls(id=id, success=True, result=result)

    @classmethod
    def fail(cls, id: Optional[str], code: int, message: str, data: Any = None) -> "BridgeResponse":
        return cls(id=id, success=False, error=ErrorBody(code=code, message=message, data=data))

    @classmethod
    def from_error(cls, id: Optional[str], err: BridgeError) -> "BridgeResponse":
        return cls.fail(id, err.code, err.message, err.data)

    def to_wire(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "success": self.success}
        if self.result is not None:
            payload["result"] = self.result
        if self.error is not None:
            payload["error"] = self.error.model_dump(exclude_none=True)
        return payload

    def encode(self) -> bytes:
        return (json.dumps(self.to_wire(), ensure_ascii=False, default=str) + "\n").encode("utf-8")


def salvage_id(raw: str) -> Optional[str]:
    """Best-effort id extraction from a line that failed to parse."""
    m = _ID_PATTERN.search(raw or "")
    if not m:
        return None
    return m.group(1) if m.group(1) is not None else m.group(2)


def parse_command(line: str) -> BridgeCommand:
    """
    Decode one newline-delimited message.
      - malformed JSON            -> ParseError (id salvaged from the raw text)
      - not an object / no command -> InvalidRequestError
    A missing id is generated; non-string ids are stringified.
    """
    try:
        payload = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"Invalid JSON: {e}", request_id=salvage_id(line)) from e

    if not isinstance(payload, dict):
        raise InvalidRequestError("Invalid request: expected a JSON object")

    raw_id = payload.get("id")
    command = payload.get("command")
    if not command or not isinstance(command, str):
        raise InvalidRequestError(
            "Invalid request: missing 'command'",
            request_id=None if raw_id in (None, "") else str(raw_id),
        )

    params = payload.get("params")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise InvalidRequestError(
            "Invalid request: 'params' must be an object",
            request_id=None if raw_id in (None, "") else str(raw_id),
        )

    fields: Dict[str, Any] = {"command": command, "params": params}
    if raw_id not in (None, ""):
        fields["id"] = str(raw_id)
    return BridgeCommand(**fields)
