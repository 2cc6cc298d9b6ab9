"""
Worker entry point: ``python -m datasource_workspace.invocation.worker``.

Reads one request line from stdin, runs the operation against a freshly built
connector and writes exactly one response line to stdout before exiting.
Whatever goes wrong, a response is written; the parent must never be left
waiting on a worker that simply vanished.

While the operation runs ``sys.stdout`` is pointed at stderr so that chatty
connectors cannot corrupt the response line.
"""

from __future__ import annotations

import json
import sys
import traceback
from typing import Any, Dict, Mapping, Optional, TextIO

from ..config import load_settings
from ..connectors import ConnectorFactory, ConnectorNotInstalledError
from ..core.definitions import DataSourceDefinitionStore
from ..core.logging import configure_logging, get_logger
from ..core.models import ModelCatalog, attach_models
from .messages import ErrorOrigin, OperationRequest, OperationResponse, ProtocolError, RawErrorPayload

ALLOWED_OPERATIONS = frozenset(
    {
        "ping",
        "automigrate",
        "autoupdate",
        "discover_model_definitions",
        "discover_schemas",
    }
)
MODEL_OPERATIONS = frozenset({"automigrate", "autoupdate"})

LOGGER = get_logger(__name__)


class UnknownOperationError(ValueError):
    """Raised when a request names an operation outside the allowlist."""


def handle_request(message: Any, *, factory: Optional[ConnectorFactory] = None) -> OperationResponse:
    """Run one request and describe the outcome; never raises."""

    try:
        request = OperationRequest.from_message(message)
    except ProtocolError as exc:
        return _machinery_failure(exc)

    extra: Dict[str, Any] = {"connection": request.connection_name, "operation": request.operation_name}
    connector = None
    try:
        if request.operation_name not in ALLOWED_OPERATIONS:
            raise UnknownOperationError(f"Operation '{request.operation_name}' cannot be invoked in a worker.")
        store = DataSourceDefinitionStore.from_workspace(request.workspace_directory)
        definition = store.require(request.connection_name)
        connector = (factory or ConnectorFactory()).create(definition)
        if request.operation_name in MODEL_OPERATIONS:
            settings = load_settings(request.workspace_directory)
            catalog = ModelCatalog.from_workspace(request.workspace_directory)
            attach_models(connector, catalog.models_for(definition, settings.model_facet))
    except ConnectorNotInstalledError as exc:
        LOGGER.warning("Connector not installed", extra={**extra, "connector": exc.connector})
        return OperationResponse(error=RawErrorPayload(message=str(exc), origin=ErrorOrigin.OTHER, code=exc.code, stack=traceback.format_exc()))
    except Exception as exc:
        LOGGER.error("Failed to prepare operation", extra={**extra, "error": str(exc)})
        if connector is not None:
            _disconnect_quietly(connector)
        return _machinery_failure(exc)

    try:
        result = getattr(connector, request.operation_name)(*request.arguments)
    except Exception as exc:
        LOGGER.info("Connector reported a failure", extra={**extra, "error": str(exc)})
        return OperationResponse(
            error=RawErrorPayload(
                message=str(exc) or exc.__class__.__name__,
                origin=ErrorOrigin.INVOKE,
                code=_optional_str(getattr(exc, "code", None)),
                details=getattr(exc, "details", None),
                stack=traceback.format_exc(),
            )
        )
    finally:
        _disconnect_quietly(connector)

    LOGGER.debug("Operation completed", extra=extra)
    return OperationResponse(callback_args=() if result is None else (result,))


def _machinery_failure(exc: BaseException) -> OperationResponse:
    stack = "".join(traceback.format_exception(exc))
    properties: Dict[str, Any] = {"name": exc.__class__.__name__}
    for attribute in ("code", "details"):
        value = getattr(exc, attribute, None)
        if value is not None:
            properties[attribute] = value
    if isinstance(exc, KeyError) and exc.args:
        message = str(exc.args[0])
    else:
        message = str(exc) or exc.__class__.__name__
    return OperationResponse(
        error=RawErrorPayload(
            message=message,
            origin=ErrorOrigin.OTHER,
            code=_optional_str(properties.get("code")),
            stack=stack,
            error_data={"message": message, "stack": stack, "properties": properties},
        )
    )


def _disconnect_quietly(connector: Any) -> None:
    disconnect = getattr(connector, "disconnect", None)
    if disconnect is None:
        return
    try:
        disconnect()
    except Exception as exc:  # pragma: no cover - best effort cleanup
        LOGGER.warning("Connector disconnect failed", extra={"error": str(exc)})


def _optional_str(value: object | None) -> Optional[str]:
    return None if value is None else str(value)


def read_message(stream: TextIO) -> Mapping[str, Any] | Any:
    line = stream.readline()
    if not line.strip():
        raise ProtocolError("No request received on stdin.")
    try:
        return json.loads(line)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Request is not valid JSON: {exc}") from exc


def main(stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None) -> int:
    configure_logging()
    source = stdin or sys.stdin
    sink = stdout or sys.stdout
    original_stdout = sys.stdout
    sys.stdout = sys.stderr
    try:
        try:
            response = handle_request(read_message(source))
        except ProtocolError as exc:
            response = _machinery_failure(exc)
        sink.write(response.encode().decode("utf-8"))
        sink.flush()
    finally:
        sys.stdout = original_stdout
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
