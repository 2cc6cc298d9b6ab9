from __future__ import annotations

import anyio
import pytest

from datasource_workspace.core.context import WorkspaceContext
from datasource_workspace.core.definitions import DataSourceDefinition, DefinitionValidationError
from datasource_workspace.invocation import ConnectionBusyError, ErrorKind, GenericOperationError, MissingConnectorError
from datasource_workspace.services import (
    BlockingDataSourceOperations,
    ConnectionTestResult,
    DataSourceOperations,
    DiscoveryOptions,
    DiscoveryOptionsError,
    DirectProbeChecker,
    IsolatedWorkerChecker,
)

pytestmark = pytest.mark.anyio


class Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def __call__(self, *args) -> None:
        self.calls.append(args)


class SlowChecker:
    name = "slow"

    async def check(self, definition: DataSourceDefinition) -> ConnectionTestResult:
        await anyio.sleep(0.2)
        return ConnectionTestResult(status=True)


@pytest.fixture
def operations(context) -> DataSourceOperations:
    return DataSourceOperations.from_context(context)


@pytest.fixture
def direct_operations(workspace, settings) -> DataSourceOperations:
    context = WorkspaceContext.build_default(workspace_dir=workspace, settings=settings.with_overrides(connection_checker="direct"))
    return DataSourceOperations.from_context(context)


async def test_checker_follows_settings(operations, direct_operations):
    assert isinstance(operations.checker, IsolatedWorkerChecker)
    assert isinstance(direct_operations.checker, DirectProbeChecker)
    assert isinstance(operations.unsaved_checker, DirectProbeChecker)


async def test_test_connection_succeeds_for_memory_connector(operations):
    recorder = Recorder()

    result = await operations.test_connection("db")
    await operations.test_connection("db", callback=recorder)

    assert result == ConnectionTestResult(status=True)
    assert recorder.calls == [(None, True)]


async def test_test_connection_is_repeatable(operations, direct_operations):
    for ops in (operations, direct_operations):
        first = await ops.test_connection("offline")
        second = await ops.test_connection("offline")
        assert first.status is False and second.status is False
        assert first.details["code"] == second.details["code"] == "ECONNREFUSED"
        assert (await ops.test_connection("db")).status is True


async def test_connector_failure_is_a_result_not_an_error(operations):
    recorder = Recorder()

    await operations.test_connection("offline", callback=recorder)

    ((error, status, details),) = recorder.calls
    assert error is None
    assert status is False
    assert set(details) == {"message", "code", "details", "stack"}
    assert "offline" in details["message"]


async def test_missing_connector_is_an_error(operations):
    recorder = Recorder()

    with pytest.raises(MissingConnectorError) as excinfo:
        await operations.test_connection("legacy")
    await operations.test_connection("legacy", callback=recorder)

    assert excinfo.value.code == "ER_INVALID_CONNECTOR"
    assert excinfo.value.message == 'Connector "mysql" is not installed.'
    ((error,),) = recorder.calls
    assert error.kind is ErrorKind.MISSING_CONNECTOR


async def test_direct_probe_reports_missing_connector_as_setup_failure(direct_operations):
    with pytest.raises(GenericOperationError) as excinfo:
        await direct_operations.test_connection("legacy")

    assert excinfo.value.code == "ER_INVALID_CONNECTOR"
    assert "connector is installed" in excinfo.value.message


async def test_unsaved_definition_is_probed_in_process(operations):
    draft = DataSourceDefinition(name="draft", connector="memory", facet_name="server")

    assert (await operations.test_connection(draft)).status is True
    with pytest.raises(DefinitionValidationError):
        await operations.test_connection(DataSourceDefinition(name="draft", connector="", facet_name="server"))


async def test_unknown_connection_is_delivered_to_callback(operations):
    recorder = Recorder()

    await operations.test_connection("ghost", callback=recorder)
    await operations.get_schema("ghost", callback=recorder)

    assert len(recorder.calls) == 2
    assert all(isinstance(call[0], KeyError) and len(call) == 1 for call in recorder.calls)


async def test_concurrent_operations_on_one_connection_are_rejected(context):
    operations = DataSourceOperations.from_context(context, checker=SlowChecker())
    results: list[object] = []

    async def run() -> None:
        try:
            results.append(await operations.test_connection("db"))
        except ConnectionBusyError as exc:
            results.append(exc)

    async with anyio.create_task_group() as group:
        group.start_soon(run)
        group.start_soon(run)

    assert sum(isinstance(item, ConnectionTestResult) for item in results) == 1
    assert sum(isinstance(item, ConnectionBusyError) for item in results) == 1


async def test_get_schema_pages_through_tables(operations):
    recorder = Recorder()

    await operations.get_schema("db", {"views": True, "limit": 10, "offset": 0}, callback=recorder)

    ((error, tables),) = recorder.calls
    assert error is None
    assert len(tables) == 10
    assert all(set(entry) == {"type", "name", "owner"} for entry in tables)
    assert len(await operations.get_schema("db")) == 12


async def test_discover_model_definition_follows_relations(operations):
    schemas = await operations.discover_model_definition("db", "purchase_order", {"schema": "app", "relations": True})

    assert set(schemas) == {"app.purchase_order", "app.customer"}
    assert schemas["app.purchase_order"]["options"]["relations"]["customer"]["type"] == "belongsTo"


async def test_discovery_errors_reported_by_connector(operations):
    with pytest.raises(GenericOperationError) as excinfo:
        await operations.discover_model_definition("db", "missing_table")

    assert excinfo.value.code == "ER_NO_SUCH_TABLE"
    assert excinfo.value.reported_by_connector


async def test_invalid_discovery_options(operations):
    recorder = Recorder()

    with pytest.raises(DiscoveryOptionsError):
        await operations.get_schema("db", {"limit": "10"})
    await operations.get_schema("db", {"views": "yes"}, callback=recorder)

    ((error,),) = recorder.calls
    assert isinstance(error, DiscoveryOptionsError)


async def test_migrations_run_in_worker(operations):
    recorder = Recorder()

    assert await operations.autoupdate("db") is None
    await operations.automigrate("db", ["Customer"], callback=recorder)
    with pytest.raises(GenericOperationError) as excinfo:
        await operations.automigrate("db", "Ghost")

    assert recorder.calls == [(None,)]
    assert excinfo.value.code == "ER_UNKNOWN_MODEL"


async def test_invoke_rejects_operations_outside_allowlist(operations):
    with pytest.raises(Exception) as excinfo:
        await operations.invoke("db", "__class__")

    assert excinfo.value.kind is ErrorKind.INVOCATION_ERROR
    assert excinfo.value.extra["name"] == "UnknownOperationError"


def test_discovery_options_parsing():
    parsed = DiscoveryOptions.parse({"schema": "app", "views": True, "limit": 10, "offset": 0, "custom": 1})

    assert parsed.owner == "app"
    assert parsed.to_dict() == {"custom": 1, "owner": "app", "views": True, "limit": 10, "offset": 0}
    assert DiscoveryOptions.parse(None).to_dict() == {}
    assert DiscoveryOptions.parse(parsed) is parsed
    for invalid in ({"owner": "a", "schema": "b"}, {"limit": True}, {"offset": -1}, {"relations": 1}, ["views"]):
        with pytest.raises(DiscoveryOptionsError):
            DiscoveryOptions.parse(invalid)


def test_blocking_operations_bridge(context):
    with BlockingDataSourceOperations.from_context(context) as operations:
        assert operations.test_connection("db").status is True
        assert len(operations.get_schema("db", {"limit": 3})) == 3
        with pytest.raises(MissingConnectorError):
            operations.test_connection("legacy")

    with pytest.raises(RuntimeError):
        operations.get_schema("db")
