"""
Typer application for inspecting and operating workspace data sources.

Connection tests run through the configured checker (an isolated worker
process by default); migrations and discovery always run in a worker so a
misbehaving connector cannot take the CLI down with it.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from ..config import SUPPORTED_CHECKERS, SettingsError, load_settings
from ..core import DataSourceDefinition, DefinitionLoadError, DefinitionValidationError, WorkspaceContext, configure_logging, log_progress
from ..invocation import ClassifiedError
from ..services import BlockingDataSourceOperations, DiscoveryOptionsError

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Validate and operate workspace data sources without risking the calling process.\n\n"
        "Command groups:\n"
        "- sources: list, describe, test, audit, discover, migrate and update data sources."
    ),
)
sources_app = typer.Typer(help="Inspect data source definitions and run connector operations in isolated workers.")
app.add_typer(sources_app, name="sources")

_OPERATION_ERRORS = (ClassifiedError, DefinitionValidationError, DiscoveryOptionsError, KeyError)


@app.callback(invoke_without_command=False)
def main(
    ctx: typer.Context,
    workspace: Optional[Path] = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Workspace directory. Defaults to WORKSPACE_DIR or the current directory.",
        exists=True,
        file_okay=False,
    ),
    checker: Optional[str] = typer.Option(
        None,
        "--checker",
        help="Connection checker: 'isolated' (worker process) or 'direct' (in-process probe).",
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override DATASOURCE_WORKSPACE_LOG_LEVEL."),
) -> None:
    """
    Configure the workspace context.

    The callback stores the resolved context in Typer's state so child commands
    can retrieve it via :class:`typer.Context`.
    """

    configure_logging(log_level, force=log_level is not None)
    if checker is not None and checker not in SUPPORTED_CHECKERS:
        raise typer.BadParameter(f"Expected one of: {', '.join(sorted(SUPPORTED_CHECKERS))}.", param_hint="--checker")

    try:
        settings = load_settings(workspace).with_overrides(connection_checker=checker)
        context = WorkspaceContext.build_default(workspace_dir=workspace, settings=settings, observability_tags=("cli",))
    except (DefinitionLoadError, DefinitionValidationError, SettingsError) as exc:
        typer.echo(f"Failed to load workspace: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    state = ctx.ensure_object(dict)
    state["context"] = context


def _require_context(ctx: typer.Context) -> WorkspaceContext:
    state = ctx.ensure_object(dict)
    context = state.get("context")
    if not isinstance(context, WorkspaceContext):
        raise typer.Exit(code=2)
    return context


def _require_definition(context: WorkspaceContext, name: str) -> DataSourceDefinition:
    try:
        definition = context.definitions.get(name)
    except DefinitionValidationError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    if definition is None:
        typer.echo(f"Data source '{name}' is not defined.", err=True)
        raise typer.Exit(code=1)
    return definition


def _describe_error(exc: BaseException) -> str:
    if isinstance(exc, ClassifiedError):
        code = f" {exc.code}" if exc.code else ""
        return f"[{exc.kind.value}{code}] {exc.message}"
    if isinstance(exc, KeyError) and exc.args:
        return str(exc.args[0])
    return str(exc)


def _run(operations: BlockingDataSourceOperations, method: str, *args: Any) -> Any:
    try:
        return getattr(operations, method)(*args)
    except _OPERATION_ERRORS as exc:
        typer.echo(f"Operation failed: {_describe_error(exc)}", err=True)
        raise typer.Exit(code=1) from exc


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


@sources_app.command("list")
def sources_list(
    ctx: typer.Context,
    facet: Optional[str] = typer.Option(None, "--facet", "-f", help="Only list data sources of this facet."),
) -> None:
    """List data source definitions found in the workspace."""

    context = _require_context(ctx)
    entries = context.definitions.list(facet=facet)
    if not entries:
        typer.echo("No data sources are defined in this workspace.")
        raise typer.Exit(code=0)

    header = f"{'Name':<22} {'Facet':<12} Connector"
    typer.echo(header)
    typer.echo("-" * len(header))
    for entry in entries:
        typer.echo(f"{entry.name:<22} {entry.facet_name:<12} {entry.connector}")


@sources_app.command("describe")
def sources_describe(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the data source."),
    output_json: bool = typer.Option(False, "--json", help="Emit the definition in JSON format."),
) -> None:
    """Show the stored definition of a data source."""

    context = _require_context(ctx)
    definition = _require_definition(context, name)
    if output_json:
        _echo_json(definition.to_dict())
        return

    typer.echo(f"Name: {definition.name}")
    typer.echo(f"Facet: {definition.facet_name}")
    typer.echo(f"Connector: {definition.connector}")
    models = context.models_for(definition)
    if models:
        typer.echo(f"Models: {', '.join(model.name for model in models)}")
    for key, value in sorted(definition.options.items()):
        typer.echo(f"{key}: {json.dumps(value, ensure_ascii=False, default=str)}")


@sources_app.command("test")
def sources_test(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the data source."),
    output_json: bool = typer.Option(False, "--json", help="Emit the result in JSON format."),
) -> None:
    """Check that a data source is reachable. Exits with 1 when it is not."""

    context = _require_context(ctx)
    definition = _require_definition(context, name)
    with BlockingDataSourceOperations.from_context(context) as operations:
        result = _run(operations, "test_connection", definition.name)

    if output_json:
        _echo_json({"name": definition.name, "status": result.status, "details": result.details})
    elif result.status:
        typer.echo(f"Connection to '{definition.name}' succeeded.")
    else:
        details = result.details or {}
        typer.echo(f"Connection to '{definition.name}' failed: {details.get('message', 'unknown error')}")
        if details.get("code"):
            typer.echo(f"Code: {details['code']}")
    if not result.status:
        raise typer.Exit(code=1)


@sources_app.command("audit")
def sources_audit(
    ctx: typer.Context,
    facet: Optional[str] = typer.Option(None, "--facet", "-f", help="Only audit data sources of this facet."),
    output_json: bool = typer.Option(False, "--json", help="Emit the audit report in JSON format."),
    fail_on_error: bool = typer.Option(True, "--fail-on-error/--no-fail-on-error", help="Control whether failures set a non-zero exit code."),
) -> None:
    """Test every data source in the workspace and emit a summary report."""

    context = _require_context(ctx)
    definitions = context.definitions.list(facet=facet)
    if not definitions:
        typer.echo("No data sources available for audit.")
        raise typer.Exit(code=0)

    logger = context.get_logger("audit")
    records: List[Dict[str, Any]] = []
    failures = 0
    with BlockingDataSourceOperations.from_context(context) as operations:
        for index, definition in enumerate(definitions, start=1):
            step = f"{index}/{len(definitions)}"
            log_progress(logger, "Testing connection", phase="audit", step=step, extra={"connection": definition.name})
            record: Dict[str, Any] = {
                "name": definition.name,
                "facet": definition.facet_name,
                "connector": definition.connector,
                "success": False,
                "message": "",
                "details": None,
            }
            try:
                result = operations.test_connection(definition.name)
            except _OPERATION_ERRORS as exc:
                record["message"] = _describe_error(exc)
                if isinstance(exc, ClassifiedError):
                    record["details"] = exc.to_dict()
            else:
                record["success"] = result.status
                record["message"] = "connected" if result.status else str((result.details or {}).get("message", ""))
                record["details"] = result.details

            if not record["success"]:
                failures += 1
            log_progress(
                logger,
                "Connection tested",
                phase="audit",
                step=step,
                status="pass" if record["success"] else "fail",
                extra={"connection": definition.name},
            )
            records.append(record)

    passed = len(records) - failures
    if output_json:
        _echo_json({"results": records, "passed": passed, "failed": failures})
    else:
        header = f"{'Name':<22} {'Connector':<12} {'Result':<7} Message"
        typer.echo(header)
        typer.echo("-" * len(header))
        for record in records:
            message = str(record["message"]).replace("\n", " ").strip()
            result_str = "pass" if record["success"] else "fail"
            typer.echo(f"{record['name']:<22} {record['connector']:<12} {result_str:<7} {message}")
        typer.echo(f"Audit complete: {passed} passed, {failures} failed.")

    if failures and fail_on_error:
        raise typer.Exit(code=1)


@sources_app.command("discover")
def sources_discover(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the data source."),
    owner: Optional[str] = typer.Option(None, "--owner", help="Schema/owner to list."),
    views: bool = typer.Option(False, "--views", help="Include views."),
    include_all: bool = typer.Option(False, "--all", help="List objects of every owner."),
    limit: Optional[int] = typer.Option(None, "--limit", min=0, help="Maximum number of entries."),
    offset: Optional[int] = typer.Option(None, "--offset", min=0, help="Number of entries to skip."),
) -> None:
    """List the tables (and optionally views) visible to a data source."""

    context = _require_context(ctx)
    definition = _require_definition(context, name)
    options: Dict[str, Any] = {"owner": owner, "views": views or None, "all": include_all or None, "limit": limit, "offset": offset}
    with BlockingDataSourceOperations.from_context(context) as operations:
        entries = _run(operations, "get_schema", definition.name, {key: value for key, value in options.items() if value is not None})
    _echo_json(entries or [])


@sources_app.command("schema")
def sources_schema(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the data source."),
    table: str = typer.Argument(..., help="Table or view to describe."),
    owner: Optional[str] = typer.Option(None, "--owner", help="Schema/owner of the table."),
    relations: bool = typer.Option(False, "--relations", help="Include tables referenced through foreign keys."),
) -> None:
    """Describe a table as model definitions."""

    context = _require_context(ctx)
    definition = _require_definition(context, name)
    options: Dict[str, Any] = {"owner": owner, "relations": relations or None}
    with BlockingDataSourceOperations.from_context(context) as operations:
        schemas = _run(operations, "discover_model_definition", definition.name, table, {key: value for key, value in options.items() if value is not None})
    _echo_json(schemas or {})


@sources_app.command("migrate")
def sources_migrate(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the data source."),
    model: Optional[List[str]] = typer.Option(None, "--model", "-m", help="Model to migrate. Can be repeated; defaults to all attached models."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """
    Drop and recreate the storage of the attached models.

    This destroys existing data in the affected tables. Use ``update`` to keep it.
    """

    context = _require_context(ctx)
    definition = _require_definition(context, name)
    target = ", ".join(model) if model else "all attached models"
    if not yes:
        typer.confirm(f"Drop and recreate storage for {target} in '{definition.name}'? Existing data will be lost.", abort=True)
    with BlockingDataSourceOperations.from_context(context) as operations:
        _run(operations, "automigrate", definition.name, list(model) if model else None)
    typer.echo(f"Migrated {target} in '{definition.name}'.")


@sources_app.command("update")
def sources_update(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the data source."),
    model: Optional[List[str]] = typer.Option(None, "--model", "-m", help="Model to update. Can be repeated; defaults to all attached models."),
) -> None:
    """Create or alter storage for the attached models without dropping data."""

    context = _require_context(ctx)
    definition = _require_definition(context, name)
    target = ", ".join(model) if model else "all attached models"
    with BlockingDataSourceOperations.from_context(context) as operations:
        _run(operations, "autoupdate", definition.name, list(model) if model else None)
    typer.echo(f"Updated {target} in '{definition.name}'.")


__all__ = ["app"]
