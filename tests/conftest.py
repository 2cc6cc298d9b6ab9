from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from datasource_workspace.cli.main import app
from datasource_workspace.config import WorkspaceSettings
from datasource_workspace.core.context import WorkspaceContext

TABLE_COUNT = 12
VIEW_COUNT = 2


def memory_tables() -> list[dict]:
    tables: list[dict] = [
        {
            "name": "customer",
            "columns": [
                {"name": "id", "type": "integer", "id": True, "nullable": False},
                {"name": "email_address", "type": "varchar", "nullable": False},
            ],
        },
        {
            "name": "purchase_order",
            "columns": [
                {"name": "id", "type": "integer", "id": True, "nullable": False},
                {"name": "customer_id", "type": "integer"},
            ],
            "foreignKeys": [{"column": "customer_id", "references": "customer.id"}],
        },
    ]
    tables.extend({"name": f"ledger_{index:02d}"} for index in range(TABLE_COUNT - len(tables)))
    tables.extend({"name": f"report_{index}", "type": "view"} for index in range(VIEW_COUNT))
    return tables


def write_workspace(root: Path) -> Path:
    """Lay out a workspace with a healthy, an offline and an uninstalled data source."""

    server = root / "server"
    server.mkdir(parents=True, exist_ok=True)
    definitions = {
        "db": {"connector": "memory", "owner": "app", "tables": memory_tables()},
        "offline": {"connector": "memory", "offline": True},
        "legacy": {"connector": "mysql", "host": "localhost", "port": 3306},
    }
    (server / "datasources.yaml").write_text(yaml.safe_dump(definitions, sort_keys=False), encoding="utf-8")
    (server / "model-config.json").write_text(
        json.dumps(
            {
                "_meta": {"sources": ["../common/models"]},
                "Customer": {"dataSource": "db", "public": True},
                "Invoice": {"dataSource": "db"},
                "Audit": {"dataSource": "offline", "public": False},
            }
        ),
        encoding="utf-8",
    )

    models = root / "common" / "models"
    models.mkdir(parents=True, exist_ok=True)
    (models / "customer.json").write_text(
        json.dumps({"name": "Customer", "properties": {"id": {"type": "number", "id": True}, "email": {"type": "string", "required": True}}}),
        encoding="utf-8",
    )
    (models / "invoice.yaml").write_text(
        yaml.safe_dump({"name": "Invoice", "properties": {"id": {"type": "number", "id": True}, "total": "number"}, "options": {"table": "invoice"}}),
        encoding="utf-8",
    )
    return root


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    monkeypatch.delenv("DATASOURCE_WORKSPACE_CONFIG", raising=False)
    monkeypatch.delenv("WORKSPACE_DIR", raising=False)


@pytest.fixture
def workspace(tmp_path) -> Path:
    return write_workspace(tmp_path / "workspace")


@pytest.fixture
def settings() -> WorkspaceSettings:
    return WorkspaceSettings(worker_timeout_ms=30000, worker_exit_grace_ms=2000, test_connection_timeout_ms=2000)


@pytest.fixture
def context(workspace, settings) -> WorkspaceContext:
    return WorkspaceContext.build_default(workspace_dir=workspace, settings=settings)


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def cli_app():
    return app
