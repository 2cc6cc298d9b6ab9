from __future__ import annotations

import sys
import threading
import types

import pytest

from datasource_workspace.connectors import (
    BaseConnector,
    ConnectorError,
    ConnectorFactory,
    ConnectorNotInstalledError,
    EventEmitter,
    MemoryConnector,
)
from datasource_workspace.core.definitions import DataSourceDefinition
from datasource_workspace.core.models import ModelDefinition

from conftest import TABLE_COUNT, VIEW_COUNT, memory_tables


def build_memory(**settings) -> MemoryConnector:
    payload = {"name": "db", "owner": "app", "tables": memory_tables()}
    payload.update(settings)
    return MemoryConnector(payload)


def test_event_emitter_once_listeners_fire_once():
    emitter = EventEmitter()
    seen: list[str] = []
    emitter.once("connected", lambda: seen.append("once"))
    emitter.on("connected", lambda: seen.append("always"))

    assert emitter.emit("connected") is True
    assert emitter.emit("connected") is True
    assert seen == ["once", "always", "always"]
    assert emitter.listener_count("connected") == 1
    assert emitter.emit("error") is False


def test_event_emitter_once_is_safe_across_threads():
    emitter = EventEmitter()
    calls: list[int] = []
    emitter.once("connected", lambda: calls.append(1))

    threads = [threading.Thread(target=emitter.emit, args=("connected",)) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert calls == [1]


def test_connect_reports_through_events():
    events: list[object] = []
    healthy = build_memory()
    healthy.once("connected", lambda: events.append("connected"))
    healthy.connect()

    offline = build_memory(offline=True)
    offline.once("error", events.append)
    offline.connect()

    assert events[0] == "connected"
    assert healthy.connected
    assert isinstance(events[1], ConnectorError)
    assert events[1].code == "ECONNREFUSED"
    assert not offline.connected


def test_ping_raises_for_offline_connector():
    with pytest.raises(ConnectorError, match="offline"):
        build_memory(offline=True).ping()
    build_memory().ping()


def test_discover_model_definitions_filters_and_pages():
    connector = build_memory()

    tables = connector.discover_model_definitions()
    assert len(tables) == TABLE_COUNT
    assert {"type": "table", "name": "customer", "owner": "app"} in tables

    with_views = connector.discover_model_definitions({"views": True})
    assert len(with_views) == TABLE_COUNT + VIEW_COUNT

    page = connector.discover_model_definitions({"views": True, "limit": 10, "offset": 0})
    assert page == with_views[:10]
    assert connector.discover_model_definitions({"views": True, "offset": 10}) == with_views[10:]
    assert connector.discover_model_definitions({"owner": "other"}) == []
    assert len(connector.discover_model_definitions({"owner": "other", "all": True})) == TABLE_COUNT


def test_discover_schemas_builds_model_definitions():
    connector = build_memory()

    schemas = connector.discover_schemas("purchase_order", {"relations": True})

    order = schemas["app.purchase_order"]
    assert order["name"] == "PurchaseOrder"
    assert order["options"]["memory"] == {"schema": "app", "table": "purchase_order"}
    assert order["properties"]["customerId"]["type"] == "Number"
    assert order["options"]["relations"]["customer"] == {"model": "Customer", "type": "belongsTo", "foreignKey": "customerId"}
    customer = schemas["app.customer"]
    assert customer["properties"]["id"]["id"] is True
    assert customer["properties"]["emailAddress"]["required"] is True

    assert list(connector.discover_schemas("purchase_order")) == ["app.purchase_order"]


def test_discover_schemas_unknown_table():
    with pytest.raises(ConnectorError) as excinfo:
        build_memory().discover_schemas("missing")
    assert excinfo.value.code == "ER_NO_SUCH_TABLE"


def test_migrations_use_attached_models():
    connector = build_memory()
    connector.attach(ModelDefinition(name="Customer", facet_name="common", properties={"id": {"type": "number", "id": True}}))
    connector.attach(ModelDefinition(name="Invoice", facet_name="common", properties={"total": "number"}, options={"table": "invoice"}))

    connector.autoupdate()
    connector.collections["Customer"].append({"id": 1})
    connector.autoupdate("Customer")
    assert connector.collections["Customer"] == [{"id": 1}]

    connector.automigrate(["Customer"])
    assert connector.collections["Customer"] == []
    assert "app.invoice" in connector.tables

    with pytest.raises(ConnectorError) as excinfo:
        connector.automigrate("Ghost")
    assert excinfo.value.code == "ER_UNKNOWN_MODEL"


def test_base_connector_reports_unsupported_operations():
    connector = BaseConnector({"name": "bare"})
    with pytest.raises(ConnectorError) as excinfo:
        connector.discover_model_definitions()
    assert excinfo.value.code == "ER_NOT_SUPPORTED"


def test_factory_resolves_builtin_and_path_connectors(monkeypatch):
    module = types.ModuleType("fake_connectors")

    class Echo(BaseConnector):
        connector_id = "echo"

    module.Echo = Echo
    monkeypatch.setitem(sys.modules, "fake_connectors", module)
    factory = ConnectorFactory(load_entry_points=False)

    memory = factory.create(DataSourceDefinition(name="db", connector="memory", facet_name="server", options={"owner": "x"}))
    assert isinstance(memory, MemoryConnector)
    assert memory.owner == "x"

    echo = factory.create(DataSourceDefinition(name="e", connector="fake_connectors:Echo", facet_name="server"))
    assert isinstance(echo, Echo)
    assert echo.name == "e"
    assert "fake_connectors:Echo" in factory.available()


def test_factory_reports_missing_connector():
    factory = ConnectorFactory(load_entry_points=False)

    with pytest.raises(ConnectorNotInstalledError) as excinfo:
        factory.resolve("mysql")

    assert str(excinfo.value) == 'Connector "mysql" is not installed.'
    assert excinfo.value.code == "ER_INVALID_CONNECTOR"
    assert excinfo.value.connector == "mysql"
