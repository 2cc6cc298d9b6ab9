from __future__ import annotations

import json
from unittest.mock import patch

from typer.testing import CliRunner

from datasource_workspace.cli.main import app
from datasource_workspace.services import ConnectionTestResult


def invoke(cli_runner: CliRunner, workspace, args: list[str]):
    return cli_runner.invoke(app, ["--workspace", str(workspace), "--log-level", "CRITICAL", *args])


def test_sources_list(cli_runner, workspace):
    result = invoke(cli_runner, workspace, ["sources", "list"])

    assert result.exit_code == 0
    assert "db" in result.stdout
    assert "legacy" in result.stdout
    assert "mysql" in result.stdout


def test_sources_list_filters_by_facet(cli_runner, workspace):
    result = invoke(cli_runner, workspace, ["sources", "list", "--facet", "client"])

    assert result.exit_code == 0
    assert "No data sources are defined" in result.stdout


def test_sources_describe_json(cli_runner, workspace):
    result = invoke(cli_runner, workspace, ["sources", "describe", "legacy", "--json"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload == {"host": "localhost", "port": 3306, "name": "legacy", "connector": "mysql", "facetName": "server"}


def test_sources_describe_lists_models(cli_runner, workspace):
    result = invoke(cli_runner, workspace, ["sources", "describe", "db"])

    assert result.exit_code == 0
    assert "Connector: memory" in result.stdout
    assert "Models: Customer, Invoice" in result.stdout


def test_sources_describe_unknown(cli_runner, workspace):
    result = invoke(cli_runner, workspace, ["sources", "describe", "ghost"])

    assert result.exit_code == 1


def test_sources_test_success(cli_runner, workspace):
    result = invoke(cli_runner, workspace, ["sources", "test", "db"])

    assert result.exit_code == 0
    assert "Connection to 'db' succeeded." in result.stdout


def test_sources_test_connector_failure(cli_runner, workspace):
    result = invoke(cli_runner, workspace, ["--checker", "direct", "sources", "test", "offline"])

    assert result.exit_code == 1
    assert "Connection to 'offline' failed" in result.stdout
    assert "ECONNREFUSED" in result.stdout


def test_sources_test_missing_connector(cli_runner, workspace):
    result = invoke(cli_runner, workspace, ["sources", "test", "legacy"])

    assert result.exit_code == 1
    assert 'Connector "mysql" is not installed.' in result.output


def test_sources_test_rejects_unknown_checker(cli_runner, workspace):
    result = invoke(cli_runner, workspace, ["--checker", "remote", "sources", "test", "db"])

    assert result.exit_code != 0


def test_sources_audit_summarises_results(cli_runner, workspace):
    result = invoke(cli_runner, workspace, ["--checker", "direct", "sources", "audit"])

    assert result.exit_code == 1
    assert "Audit complete: 1 passed, 2 failed." in result.stdout


def test_sources_audit_json_without_failing(cli_runner, workspace):
    with patch(
        "datasource_workspace.cli.main.BlockingDataSourceOperations.test_connection",
        return_value=ConnectionTestResult(status=True),
    ):
        result = invoke(cli_runner, workspace, ["sources", "audit", "--json", "--no-fail-on-error"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["passed"] == 3
    assert {record["name"] for record in payload["results"]} == {"db", "offline", "legacy"}


def test_sources_discover_pages(cli_runner, workspace):
    result = invoke(cli_runner, workspace, ["sources", "discover", "db", "--views", "--limit", "10", "--offset", "0"])

    assert result.exit_code == 0
    assert len(json.loads(result.stdout)) == 10


def test_sources_schema(cli_runner, workspace):
    result = invoke(cli_runner, workspace, ["sources", "schema", "db", "customer"])

    assert result.exit_code == 0
    assert list(json.loads(result.stdout)) == ["app.customer"]


def test_sources_migrate_requires_confirmation(cli_runner, workspace):
    declined = cli_runner.invoke(app, ["--workspace", str(workspace), "--log-level", "CRITICAL", "sources", "migrate", "db"], input="n\n")
    confirmed = invoke(cli_runner, workspace, ["sources", "migrate", "db", "--model", "Customer", "--yes"])

    assert declined.exit_code == 1
    assert confirmed.exit_code == 0
    assert "Migrated Customer in 'db'." in confirmed.stdout


def test_sources_update_reports_connector_errors(cli_runner, workspace):
    result = invoke(cli_runner, workspace, ["sources", "update", "db", "--model", "Ghost"])

    assert result.exit_code == 1
    assert "ER_UNKNOWN_MODEL" in result.output


def test_broken_workspace_is_reported(cli_runner, tmp_path):
    facet = tmp_path / "server"
    facet.mkdir()
    (facet / "datasources.yaml").write_text("db:\n  host: localhost\n", encoding="utf-8")

    result = invoke(cli_runner, tmp_path, ["sources", "list"])

    assert result.exit_code == 1
    assert "Failed to load workspace" in result.output
