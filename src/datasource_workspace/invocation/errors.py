"""
Typed errors produced by the invocation layer.

Every failure that reaches a caller is a :class:`ClassifiedError`. The
``kind`` tells callers how to react: a missing connector is a configuration
problem the user can fix, an invocation error means the workspace plumbing is
broken, a timeout means nothing answered in time, and anything else is
generic.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional

from ..connectors.base import INVALID_CONNECTOR_CODE

BUSY_CODE = "ER_CONNECTION_BUSY"
TIMEOUT_CODE = "ETIMEDOUT"


class ErrorKind(str, Enum):
    MISSING_CONNECTOR = "MissingConnector"
    INVOCATION_ERROR = "InvocationError"
    TIMEOUT = "Timeout"
    GENERIC = "Generic"


class ClassifiedError(Exception):
    """
    Base class for errors reconstructed on the caller side.

    Attributes
    ----------
    message:
        Human readable summary.
    code:
        Machine readable error code when one is known.
    stack:
        Worker-side traceback text, when the failure happened in another process.
    origin:
        ``"invoke"`` when the connector operation itself failed, ``"other"`` otherwise.
    details:
        Connector supplied diagnostic payload.
    extra:
        Additional diagnostic fields copied from a structured error report.
    """

    kind: ErrorKind = ErrorKind.GENERIC

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        stack: Optional[str] = None,
        origin: Optional[str] = None,
        details: Any = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.stack = stack
        self.origin = origin
        self.details = details
        self.extra: Dict[str, Any] = dict(extra or {})

    @property
    def reported_by_connector(self) -> bool:
        """``True`` when the connector ran and reported the failure itself."""
        return self.origin == "invoke"

    def to_details(self) -> Dict[str, Any]:
        """Shape returned to callers of ``test_connection`` for connector-reported failures."""

        return {"message": self.message, "code": self.code, "details": self.details, "stack": self.stack}

    def to_dict(self) -> Dict[str, Any]:
        payload = self.to_details()
        payload["kind"] = self.kind.value
        payload["origin"] = self.origin
        if self.extra:
            payload["extra"] = dict(self.extra)
        return payload


class MissingConnectorError(ClassifiedError):
    """The configured connector is not installed."""

    kind = ErrorKind.MISSING_CONNECTOR

    def __init__(self, connector: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", INVALID_CONNECTOR_CODE)
        super().__init__(f'Connector "{connector}" is not installed.', **kwargs)
        self.connector = connector


class InvocationError(ClassifiedError):
    """The invocation machinery (not the connector) failed."""

    kind = ErrorKind.INVOCATION_ERROR


class OperationTimeoutError(ClassifiedError):
    """No outcome arrived within the configured window."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str, *, timeout_ms: int, **kwargs: Any) -> None:
        kwargs.setdefault("code", TIMEOUT_CODE)
        super().__init__(message, **kwargs)
        self.timeout_ms = timeout_ms


class GenericOperationError(ClassifiedError):
    """Any failure that does not fit a more specific kind."""

    kind = ErrorKind.GENERIC


class ConnectionBusyError(GenericOperationError):
    """Another operation is already running against the same connection."""

    def __init__(self, connection_name: str) -> None:
        super().__init__(f"Data source '{connection_name}' is busy with another operation.", code=BUSY_CODE)
        self.connection_name = connection_name


__all__ = [
    "BUSY_CODE",
    "ClassifiedError",
    "ConnectionBusyError",
    "ErrorKind",
    "GenericOperationError",
    "InvocationError",
    "MissingConnectorError",
    "OperationTimeoutError",
    "TIMEOUT_CODE",
]
