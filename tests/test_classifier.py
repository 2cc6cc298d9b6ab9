from __future__ import annotations

import json
import logging

from datasource_workspace.invocation import (
    INVOCATION_ERROR_MARKER,
    ErrorKind,
    ErrorOrigin,
    GenericOperationError,
    InvocationError,
    MissingConnectorError,
    RawErrorPayload,
    classify_error,
    embed_invocation_error,
    normalize_arguments,
)


def test_normalize_arguments_extracts_trailing_callback():
    def done(error=None, *values):  # pragma: no cover - never called
        pass

    args, callback = normalize_arguments("discover_schemas", "customer", None, {"relations": True}, done)

    assert args == ["customer", {"relations": True}]
    assert callback is done


def test_normalize_arguments_synthesises_logging_callback(caplog):
    args, callback = normalize_arguments("automigrate", None, "Customer")

    assert args == ["Customer"]
    with caplog.at_level(logging.ERROR, logger="datasource_workspace.invocation.arguments"):
        callback(None, "ignored")
        callback(RuntimeError("boom"))

    messages = [record for record in caplog.records if record.name == "datasource_workspace.invocation.arguments"]
    assert len(messages) == 1
    assert messages[0].operation == "automigrate"
    assert messages[0].error == "boom"


def test_normalize_arguments_keeps_falsy_values():
    args, _ = normalize_arguments("get", 0, "", False, [], None)
    assert args == [0, "", False, []]


def test_missing_connector_for_configured_connector():
    payload = RawErrorPayload(message='Connector "mysql" is not installed.', origin=ErrorOrigin.OTHER)

    error = classify_error(payload, "mysql")

    assert isinstance(error, MissingConnectorError)
    assert error.kind is ErrorKind.MISSING_CONNECTOR
    assert error.code == "ER_INVALID_CONNECTOR"
    assert error.message == 'Connector "mysql" is not installed.'
    assert error.connector == "mysql"


def test_missing_connector_for_another_connector_stays_generic():
    error = classify_error(RawErrorPayload(message='WARNING: connector "postgresql" is not installed'), "mysql")

    assert error.kind is ErrorKind.GENERIC
    assert error.message == 'WARNING: connector "postgresql" is not installed'


def test_missing_connector_without_configured_id():
    error = classify_error(RuntimeError('connector "oracle" is not installed'))

    assert error.kind is ErrorKind.MISSING_CONNECTOR
    assert error.message == 'Connector "oracle" is not installed.'
    assert isinstance(error.__cause__, RuntimeError)


def test_marker_report_becomes_invocation_error():
    report = {"message": "cannot load workspace", "stack": "Traceback ...", "properties": {"code": "ENOENT", "path": "/tmp/ws"}}
    payload = RawErrorPayload(message=embed_invocation_error("worker failed", report))

    error = classify_error(payload, "memory")

    assert isinstance(error, InvocationError)
    assert error.kind is ErrorKind.INVOCATION_ERROR
    assert error.message == "cannot load workspace"
    assert error.stack == "Traceback ..."
    assert error.code == "ENOENT"
    assert error.extra == {"code": "ENOENT", "path": "/tmp/ws"}
    assert error.to_dict()["extra"]["path"] == "/tmp/ws"


def test_structured_error_data_becomes_invocation_error():
    payload = RawErrorPayload(
        message="Data source 'ghost' is not defined.",
        code="ER_MISSING",
        error_data={"message": "Data source 'ghost' is not defined.", "stack": "trace", "properties": {"name": "KeyError"}},
    )

    error = classify_error(payload)

    assert error.kind is ErrorKind.INVOCATION_ERROR
    assert error.code == "ER_MISSING"
    assert error.extra == {"name": "KeyError"}


def test_malformed_marker_report_falls_back_to_generic(caplog):
    message = f"worker failed{INVOCATION_ERROR_MARKER}{{not json"

    with caplog.at_level(logging.WARNING, logger="datasource_workspace.invocation.classifier"):
        error = classify_error(RawErrorPayload(message=message, code="E1"))

    assert isinstance(error, GenericOperationError)
    assert error.message == message
    assert error.code == "E1"
    assert any("Cannot decode" in record.getMessage() for record in caplog.records)


def test_non_object_report_falls_back_to_generic():
    message = "worker failed" + INVOCATION_ERROR_MARKER + json.dumps(["not", "an", "object"])

    assert classify_error(message).kind is ErrorKind.GENERIC


def test_generic_keeps_connector_fields():
    payload = RawErrorPayload(message="ER_ACCESS_DENIED", origin=ErrorOrigin.INVOKE, code="ER_ACCESS_DENIED", details={"user": "root"}, stack="trace")

    error = classify_error(payload, "mysql")

    assert error.kind is ErrorKind.GENERIC
    assert error.reported_by_connector
    assert error.to_details() == {"message": "ER_ACCESS_DENIED", "code": "ER_ACCESS_DENIED", "details": {"user": "root"}, "stack": "trace"}


def test_classified_errors_pass_through():
    original = MissingConnectorError("mysql")
    assert classify_error(original) is original
