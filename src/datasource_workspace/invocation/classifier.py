"""
Reconstruction of typed errors from raw worker failures.

Rules are tried in order and the first match wins:

1. ``connector "<id>" is not installed`` for the connection's own connector
   becomes :class:`MissingConnectorError`.
2. A structured invocation report becomes :class:`InvocationError`. The report
   travels either in ``errorData`` or, for workers that only send a message,
   after :data:`INVOCATION_ERROR_MARKER` as a JSON blob.
3. Everything else becomes :class:`GenericOperationError`.

The classifier never raises; an undecodable report is logged and degrades to
the generic rule.
"""

from __future__ import annotations

import json
import re
from typing import Any, Mapping, Optional

from ..core.logging import get_logger
from .errors import ClassifiedError, GenericOperationError, InvocationError, MissingConnectorError
from .messages import ErrorOrigin, RawErrorPayload

INVOCATION_ERROR_MARKER = "\n--invocation-error-data--\n"

_MISSING_CONNECTOR = re.compile(r'connector "(?P<name>[^"]+)" is not installed', re.IGNORECASE)

LOGGER = get_logger(__name__)


def embed_invocation_error(message: str, report: Mapping[str, Any]) -> str:
    """Append a JSON invocation report to ``message`` using the marker convention."""

    return f"{message}{INVOCATION_ERROR_MARKER}{json.dumps(dict(report), default=str)}"


def classify_error(error: RawErrorPayload | BaseException | str, connector_id: Optional[str] = None) -> ClassifiedError:
    """
    Map a raw failure onto a :class:`ClassifiedError`.

    Parameters
    ----------
    error:
        A worker error payload, an exception raised locally, or a bare message.
    connector_id:
        Connector configured for the connection. A missing-connector message
        naming a different connector (a transitive dependency, say) is not
        treated as a missing connector. When omitted any name matches.
    """

    if isinstance(error, ClassifiedError):
        return error
    payload = _as_payload(error)
    classified = _missing_connector(payload, connector_id) or _invocation_error(payload) or _generic(payload)
    if isinstance(error, BaseException):
        classified.__cause__ = error
    return classified


def _as_payload(error: RawErrorPayload | BaseException | str) -> RawErrorPayload:
    if isinstance(error, RawErrorPayload):
        return error
    if isinstance(error, BaseException):
        return RawErrorPayload(
            message=str(error) or error.__class__.__name__,
            code=_optional_str(getattr(error, "code", None)),
            details=getattr(error, "details", None),
        )
    return RawErrorPayload(message=str(error))


def _missing_connector(payload: RawErrorPayload, connector_id: Optional[str]) -> Optional[ClassifiedError]:
    match = _MISSING_CONNECTOR.search(payload.message)
    if match is None:
        return None
    name = match.group("name")
    if connector_id is not None and name != connector_id:
        return None
    return MissingConnectorError(name, stack=payload.stack, origin=payload.origin.value, details=payload.details)


def _invocation_error(payload: RawErrorPayload) -> Optional[ClassifiedError]:
    report: Any = payload.error_data
    if report is None:
        head, marker, blob = payload.message.partition(INVOCATION_ERROR_MARKER)
        if not marker:
            return None
        try:
            report = json.loads(blob)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Cannot decode invocation error report", extra={"error": str(exc), "report": blob[:200]})
            return None

    if not isinstance(report, Mapping):
        LOGGER.warning("Ignoring invocation error report that is not an object", extra={"report": repr(report)[:200]})
        return None

    properties = report.get("properties")
    extra = dict(properties) if isinstance(properties, Mapping) else {}
    message = report.get("message")
    return InvocationError(
        str(message) if message is not None else payload.message.partition(INVOCATION_ERROR_MARKER)[0],
        code=_optional_str(extra.get("code")) or payload.code,
        stack=_optional_str(report.get("stack")),
        origin=payload.origin.value,
        details=payload.details,
        extra=extra,
    )


def _generic(payload: RawErrorPayload) -> ClassifiedError:
    return GenericOperationError(
        payload.message,
        code=payload.code,
        stack=payload.stack,
        origin=payload.origin.value if isinstance(payload.origin, ErrorOrigin) else None,
        details=payload.details,
    )


def _optional_str(value: object | None) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text or None


__all__ = ["INVOCATION_ERROR_MARKER", "classify_error", "embed_invocation_error"]
