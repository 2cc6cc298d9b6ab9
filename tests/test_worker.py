from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from datasource_workspace.connectors import ConnectorError, ConnectorFactory, MemoryConnector
from datasource_workspace.invocation import ErrorOrigin, OperationRequest, OperationResponse, ProtocolError, RawErrorPayload
from datasource_workspace.invocation.worker import handle_request, main

DISCONNECTED: list[str] = []


class RejectingModelsConnector(MemoryConnector):
    """Refuses every model and records disconnects."""

    def attach(self, model) -> None:
        raise ConnectorError(f"Model '{model.name}' is not supported.", code="ER_BAD_MODEL")

    def disconnect(self) -> None:
        DISCONNECTED.append(self.name)
        super().disconnect()


def request(workspace: Path, name: str, method: str, *args) -> dict:
    return OperationRequest(workspace_directory=workspace, connection_name=name, operation_name=method, arguments=tuple(args)).to_message()


def test_request_message_shape(workspace):
    message = request(workspace, "db", "discover_schemas", "customer", {"relations": True})

    assert message == {"dir": str(workspace), "dataSourceName": "db", "methodName": "discover_schemas", "args": ["customer", {"relations": True}]}
    assert OperationRequest.from_message(message).arguments == ("customer", {"relations": True})
    with pytest.raises(ProtocolError):
        OperationRequest.from_message({"dir": str(workspace)})


def test_response_decoding_rejects_bad_shapes():
    with pytest.raises(ProtocolError):
        OperationResponse.decode(b"not json\n")
    with pytest.raises(ProtocolError):
        OperationResponse.decode("[1, 2]")
    with pytest.raises(ProtocolError):
        OperationResponse.decode('{"callbackArgs": "x"}')

    decoded = OperationResponse.decode('{"error": {"message": "m", "origin": "nonsense"}}')
    assert decoded.error == RawErrorPayload(message="m", origin=ErrorOrigin.OTHER)
    assert not decoded.ok


def test_response_with_empty_error_is_a_failure():
    for raw in ('{"error": {}, "callbackArgs": [1]}', '{"error": ""}'):
        assert not OperationResponse.decode(raw).ok

    assert OperationResponse.decode('{"error": null, "callbackArgs": [1]}').ok


def test_ping_succeeds_for_memory_connector(workspace):
    response = handle_request(request(workspace, "db", "ping"))

    assert response.ok
    assert response.callback_args == ()


def test_discovery_returns_single_callback_value(workspace):
    response = handle_request(request(workspace, "db", "discover_model_definitions", {"views": True, "limit": 10, "offset": 0}))

    assert response.ok
    (tables,) = response.callback_args
    assert len(tables) == 10


def test_connector_failure_is_reported_with_invoke_origin(workspace):
    response = handle_request(request(workspace, "offline", "ping"))

    assert response.error is not None
    assert response.error.origin is ErrorOrigin.INVOKE
    assert response.error.code == "ECONNREFUSED"
    assert "offline" in response.error.message
    assert "Traceback" in response.error.stack


def test_missing_connector_is_reported_with_other_origin(workspace):
    response = handle_request(request(workspace, "legacy", "ping"))

    assert response.error.origin is ErrorOrigin.OTHER
    assert response.error.message == 'Connector "mysql" is not installed.'
    assert response.error.code == "ER_INVALID_CONNECTOR"


def test_unknown_connection_is_a_machinery_failure(workspace):
    response = handle_request(request(workspace, "ghost", "ping"))

    error = response.error
    assert error.origin is ErrorOrigin.OTHER
    assert error.message == "Data source 'ghost' is not defined."
    assert error.error_data["properties"]["name"] == "KeyError"
    assert error.error_data["message"] == error.message


def test_operations_outside_the_allowlist_are_refused(workspace):
    response = handle_request(request(workspace, "db", "__class__"))

    assert response.error.origin is ErrorOrigin.OTHER
    assert response.error.error_data["properties"]["name"] == "UnknownOperationError"


def test_migrations_attach_configured_models(workspace):
    response = handle_request(request(workspace, "db", "automigrate", ["Customer", "Invoice"]))
    assert response.ok

    response = handle_request(request(workspace, "db", "autoupdate", "Ghost"))
    assert response.error.origin is ErrorOrigin.INVOKE
    assert response.error.code == "ER_UNKNOWN_MODEL"


def test_failed_model_attachment_still_disconnects(workspace):
    DISCONNECTED.clear()
    factory = ConnectorFactory(load_entry_points=False)
    factory.register("memory", RejectingModelsConnector)

    response = handle_request(request(workspace, "db", "automigrate"), factory=factory)

    assert response.error.origin is ErrorOrigin.OTHER
    assert response.error.code == "ER_BAD_MODEL"
    assert DISCONNECTED == ["db"]


def test_main_writes_exactly_one_line(workspace, capsys):
    stdin = io.StringIO(json.dumps(request(workspace, "db", "discover_schemas", "customer")) + "\n")
    stdout = io.StringIO()

    assert main(stdin=stdin, stdout=stdout) == 0

    lines = stdout.getvalue().splitlines()
    assert len(lines) == 1
    response = OperationResponse.decode(lines[0])
    assert list(response.callback_args[0]) == ["app.customer"]


def test_main_answers_garbage_input(capsys):
    stdout = io.StringIO()

    main(stdin=io.StringIO("this is not json\n"), stdout=stdout)

    response = OperationResponse.decode(stdout.getvalue())
    assert response.error.origin is ErrorOrigin.OTHER
    assert "not valid JSON" in response.error.message
