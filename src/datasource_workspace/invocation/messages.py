"""
Messages exchanged between the caller and an isolated worker.

Both directions use one JSON document terminated by a newline. The request
carries ``{dir, dataSourceName, methodName, args}``; the response carries
``{error?, callbackArgs}``. ``error.errorData`` holds the structured report
used when the invocation machinery itself failed (as opposed to the connector
reporting a failure).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple


class ProtocolError(ValueError):
    """Raised when a message cannot be decoded into the expected shape."""


class ErrorOrigin(str, Enum):
    """Where a worker-side failure came from."""

    INVOKE = "invoke"
    OTHER = "other"


@dataclass(slots=True, frozen=True)
class OperationRequest:
    """One operation to run against one configured connection."""

    workspace_directory: Path
    connection_name: str
    operation_name: str
    arguments: Tuple[Any, ...] = ()

    def to_message(self) -> Dict[str, Any]:
        return {
            "dir": str(self.workspace_directory),
            "dataSourceName": self.connection_name,
            "methodName": self.operation_name,
            "args": list(self.arguments),
        }

    def encode(self) -> bytes:
        return (json.dumps(self.to_message(), ensure_ascii=False) + "\n").encode("utf-8")

    @classmethod
    def from_message(cls, message: Mapping[str, Any]) -> "OperationRequest":
        if not isinstance(message, Mapping):
            raise ProtocolError(f"Request must be a JSON object, got {type(message).__name__}.")
        try:
            directory = message["dir"]
            name = message["dataSourceName"]
            method = message["methodName"]
        except KeyError as exc:
            raise ProtocolError(f"Request is missing {exc.args[0]!r}.") from exc
        args = message.get("args") or []
        if not isinstance(args, list):
            raise ProtocolError("Request 'args' must be a list.")
        return cls(workspace_directory=Path(str(directory)), connection_name=str(name), operation_name=str(method), arguments=tuple(args))


@dataclass(slots=True, frozen=True)
class RawErrorPayload:
    """Serialized failure as reported by a worker."""

    message: str
    origin: ErrorOrigin = ErrorOrigin.OTHER
    code: Optional[str] = None
    details: Any = None
    stack: Optional[str] = None
    error_data: Optional[Mapping[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": self.message, "origin": self.origin.value}
        if self.code is not None:
            payload["code"] = self.code
        if self.details is not None:
            payload["details"] = self.details
        if self.stack is not None:
            payload["stack"] = self.stack
        if self.error_data is not None:
            payload["errorData"] = dict(self.error_data)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RawErrorPayload":
        if not isinstance(payload, Mapping):
            return cls(message=str(payload))
        try:
            origin = ErrorOrigin(str(payload.get("origin", ErrorOrigin.OTHER.value)))
        except ValueError:
            origin = ErrorOrigin.OTHER
        code = payload.get("code")
        error_data = payload.get("errorData")
        return cls(
            message=str(payload.get("message", "")),
            origin=origin,
            code=str(code) if code is not None else None,
            details=payload.get("details"),
            stack=payload.get("stack"),
            error_data=error_data if isinstance(error_data, Mapping) else None,
        )


@dataclass(slots=True, frozen=True)
class OperationResponse:
    """The single reply produced by a worker."""

    error: Optional[RawErrorPayload] = None
    callback_args: Tuple[Any, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_message(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"callbackArgs": list(self.callback_args)}
        if self.error is not None:
            message["error"] = self.error.to_dict()
        return message

    def encode(self) -> bytes:
        # default=str keeps non-JSON values (dates, decimals) from killing the reply
        return (json.dumps(self.to_message(), ensure_ascii=False, default=str) + "\n").encode("utf-8")

    @classmethod
    def decode(cls, raw: bytes | str) -> "OperationResponse":
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        try:
            message = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"Worker response is not valid JSON: {exc}") from exc
        if not isinstance(message, Mapping):
            raise ProtocolError(f"Worker response must be a JSON object, got {type(message).__name__}.")
        args = message.get("callbackArgs") or []
        if not isinstance(args, Sequence) or isinstance(args, (str, bytes)):
            raise ProtocolError("Worker response 'callbackArgs' must be a list.")
        # any non-null "error" means failure, even an empty one
        raw_error = message.get("error")
        error = RawErrorPayload.from_dict(raw_error) if raw_error is not None else None
        return cls(
            error=error,
            callback_args=tuple(args),
        )


__all__ = [
    "ErrorOrigin",
    "OperationRequest",
    "OperationResponse",
    "ProtocolError",
    "RawErrorPayload",
]
