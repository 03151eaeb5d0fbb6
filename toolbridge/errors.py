# toolbridge/errors.py
from __future__ import annotations

from typing import Any, Optional

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
TOOL_ERROR = -32000


class BridgeError(RuntimeError):
    """
    Base for every error the dispatcher turns into an error envelope.
    Subclasses pin the wire code; `data` is passed through untouched.
    `request_id` is set when the error is raised before an envelope exists
    (decode failures), so the reply can still reference the caller's id.
    """

    code: int = INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        data: Optional[Any] = None,
        code: Optional[int] = None,
        request_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.data = data
        self.request_id = request_id
        if code is not None:
            self.code = code


class ParseError(BridgeError):
    code = PARSE_ERROR


class InvalidRequestError(BridgeError):
    code = INVALID_REQUEST


class NotFoundError(BridgeError):
    code = METHOD_NOT_FOUND


class ValidationError(BridgeError):
    code = INVALID_PARAMS


class InternalError(BridgeError):
    code = INTERNAL_ERROR


class ToolExecutionError(BridgeError):
    """The backend tool itself reported failure (`isError`)."""

    code = TOOL_ERROR
