"""JSON-RPC 2.0 message model used by the streaming transport."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

PROTOCOL_VERSION = "2.0"

RequestId = str | int


class ErrorCode(IntEnum):
    """Standard JSON-RPC 2.0 error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


def _validate_id(value: Any) -> RequestId:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValueError(f"invalid JSON-RPC id: {value!r}")
    return value


@dataclass
class Message:
    """A JSON-RPC request, notification or response."""

    method: str | None = None
    id: RequestId | None = None
    params: Any = None
    result: Any = None
    error: dict[str, Any] | None = None
    jsonrpc: str = PROTOCOL_VERSION

    @classmethod
    def from_dict(cls, data: Any) -> Message:
        """Build a message from a decoded JSON object."""
        if not isinstance(data, dict):
            raise ValueError("JSON-RPC message must be an object")
        method = data.get("method")
        if method is not None and not isinstance(method, str):
            raise ValueError("JSON-RPC method must be a string")
        request_id = data.get("id")
        if request_id is not None:
            request_id = _validate_id(request_id)
        error = data.get("error")
        if error is not None and not isinstance(error, dict):
            raise ValueError("JSON-RPC error must be an object")
        if method is None and "result" not in data and error is None:
            raise ValueError("message is neither a request nor a response")
        return cls(
            method=method,
            id=request_id,
            params=data.get("params"),
            result=data.get("result"),
            error=error,
            jsonrpc=data.get("jsonrpc", PROTOCOL_VERSION),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the wire representation of the message."""
        out: dict[str, Any] = {"jsonrpc": self.jsonrpc}
        if self.method is not None:
            if self.id is not None:
                out["id"] = self.id
            out["method"] = self.method
            if self.params is not None:
                out["params"] = self.params
            return out
        out["id"] = self.id
        if self.error is not None:
            out["error"] = self.error
        else:
            out["result"] = self.result
        return out

    def is_request(self) -> bool:
        """True for a request that expects a response."""
        return self.method is not None and self.id is not None

    def is_notification(self) -> bool:
        """True for a request without an id."""
        return self.method is not None and self.id is None

    def is_response(self) -> bool:
        """True for a result or error response."""
        return self.method is None and (self.id is not None or self.error is not None)


def parse_message(data: str | bytes) -> Message:
    """Decode a JSON-RPC message; raises ValueError when malformed."""
    return Message.from_dict(json.loads(data))


def request_id_key(request_id: RequestId) -> str:
    """Return the string form of a request id used for bookkeeping keys."""
    if isinstance(request_id, bool) or not isinstance(request_id, (str, int)):
        raise TypeError(f"invalid request id: {request_id!r}")
    return str(request_id)


def result_response(request_id: RequestId | None, result: Any) -> Message:
    """Build a successful response."""
    return Message(id=request_id, result=result)


def error_response(
    request_id: RequestId | None, code: int, message: str, data: Any = None
) -> Message:
    """Build an error response."""
    error: dict[str, Any] = {"code": int(code), "message": message}
    if data is not None:
        error["data"] = data
    return Message(id=request_id, error=error)


def notification(method: str, params: Any = None) -> Message:
    """Build a notification (a request without an id)."""
    return Message(method=method, params=params)