"""
Out-of-process operation invocation.

The worker channel runs one connector operation per spawned process and turns
the single reply into either callback values or a classified error.
"""

from .arguments import Callback, normalize_arguments
from .channel import WorkerInvocationChannel, default_worker_command
from .classifier import INVOCATION_ERROR_MARKER, classify_error, embed_invocation_error
from .errors import (
    ClassifiedError,
    ConnectionBusyError,
    ErrorKind,
    GenericOperationError,
    InvocationError,
    MissingConnectorError,
    OperationTimeoutError,
)
from .guard import ConnectionGuard
from .messages import ErrorOrigin, OperationRequest, OperationResponse, ProtocolError, RawErrorPayload

__all__ = [
    "Callback",
    "ClassifiedError",
    "ConnectionBusyError",
    "ConnectionGuard",
    "ErrorKind",
    "ErrorOrigin",
    "GenericOperationError",
    "INVOCATION_ERROR_MARKER",
    "InvocationError",
    "MissingConnectorError",
    "OperationRequest",
    "OperationResponse",
    "OperationTimeoutError",
    "ProtocolError",
    "RawErrorPayload",
    "WorkerInvocationChannel",
    "classify_error",
    "default_worker_command",
    "embed_invocation_error",
    "normalize_arguments",
]
