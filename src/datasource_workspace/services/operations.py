"""
Data source operation facade.

:class:`DataSourceOperations` is the surface used by the CLI and by embedding
applications. Connection tests go through the configured
:class:`~datasource_workspace.services.checkers.ConnectionChecker`; migrations
and discovery always run in a worker process.

Every operation can be used in two ways:

* awaited without a callback, it returns its value or raises;
* given ``callback=``, it never raises and calls ``callback(error)`` or
  ``callback(None, *values)`` exactly once, always after yielding to the event
  loop at least once.

``test_connection`` reports connector-side failures as data: ``(False, details)``
instead of an exception.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import LoggerAdapter
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import anyio.lowlevel
from anyio.from_thread import BlockingPortal, start_blocking_portal

from ..connectors import ConnectorFactory
from ..core.context import WorkspaceContext
from ..core.definitions import DataSourceDefinition
from ..core.logging import bind_extra
from ..invocation.channel import WorkerInvocationChannel
from ..invocation.errors import ClassifiedError
from ..invocation.guard import ConnectionGuard
from .checkers import ConnectionChecker, ConnectionTestResult, DirectProbeChecker, build_checker
from .probe import ConnectionProbe

Callback = Callable[..., Any]


class DiscoveryOptionsError(ValueError):
    """Raised when discovery options carry a value of the wrong type."""


@dataclass(slots=True)
class DiscoveryOptions:
    """
    Options understood by ``get_schema`` and ``discover_model_definition``.

    ``owner`` and ``schema`` are synonyms. Keys not listed here are passed to
    the connector untouched.
    """

    owner: Optional[str] = None
    relations: Optional[bool] = None
    all: Optional[bool] = None
    views: Optional[bool] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, options: "DiscoveryOptions | Mapping[str, Any] | None") -> "DiscoveryOptions":
        if options is None:
            return cls()
        if isinstance(options, DiscoveryOptions):
            return options
        if not isinstance(options, Mapping):
            raise DiscoveryOptionsError(f"Discovery options must be a mapping, got {type(options).__name__}.")

        values = dict(options)
        owner = values.pop("owner", None)
        schema = values.pop("schema", None)
        if owner is not None and schema is not None and owner != schema:
            raise DiscoveryOptionsError("'owner' and 'schema' name the same option and must agree.")
        parsed = cls(
            owner=_typed(owner if owner is not None else schema, str, "owner"),
            relations=_typed(values.pop("relations", None), bool, "relations"),
            all=_typed(values.pop("all", None), bool, "all"),
            views=_typed(values.pop("views", None), bool, "views"),
            limit=_typed(values.pop("limit", None), int, "limit"),
            offset=_typed(values.pop("offset", None), int, "offset"),
            extra=values,
        )
        for label in ("limit", "offset"):
            value = getattr(parsed, label)
            if value is not None and value < 0:
                raise DiscoveryOptionsError(f"'{label}' must not be negative, got {value}.")
        return parsed

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extra)
        for key in ("owner", "relations", "all", "views", "limit", "offset"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


def _typed(value: Any, expected: type, label: str) -> Any:
    if value is None:
        return None
    # bool is an int subclass; reject it where a number is expected
    if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
        raise DiscoveryOptionsError(f"'{label}' must be of type {expected.__name__}, got {value!r}.")
    return value


class _Outcome:
    """Collects the single ``(error, *values)`` delivery from the invocation channel."""

    __slots__ = ("error", "values")

    def __init__(self) -> None:
        self.error: Optional[BaseException] = None
        self.values: tuple[Any, ...] = ()

    def __call__(self, error: Optional[BaseException] = None, *values: Any) -> None:
        self.error = error
        self.values = values

    def result(self) -> Any:
        if self.error is not None:
            raise self.error
        if not self.values:
            return None
        return self.values[0] if len(self.values) == 1 else self.values


@dataclass(slots=True)
class DataSourceOperations:
    """Async facade over connection checks, migrations and discovery."""

    context: WorkspaceContext
    checker: ConnectionChecker
    channel: WorkerInvocationChannel
    guard: ConnectionGuard
    unsaved_checker: ConnectionChecker
    logger: LoggerAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = self.context.get_logger(self.__class__.__name__)

    @classmethod
    def from_context(
        cls,
        context: WorkspaceContext,
        *,
        channel: Optional[WorkerInvocationChannel] = None,
        factory: Optional[ConnectorFactory] = None,
        checker: Optional[ConnectionChecker] = None,
    ) -> "DataSourceOperations":
        settings = context.settings
        factory = factory or ConnectorFactory()
        channel = channel or WorkerInvocationChannel(timeout_ms=settings.worker_timeout_ms, exit_grace_ms=settings.worker_exit_grace_ms)
        return cls(
            context=context,
            checker=checker or build_checker(settings, workspace_dir=context.workspace_dir, channel=channel, factory=factory),
            channel=channel,
            guard=ConnectionGuard(settings.concurrency),
            unsaved_checker=DirectProbeChecker(ConnectionProbe(factory=factory, timeout_ms=settings.test_connection_timeout_ms)),
        )

    # ------------------------------------------------------------------ connection tests

    async def test_connection(
        self,
        target: str | DataSourceDefinition,
        *,
        callback: Optional[Callback] = None,
    ) -> Optional[ConnectionTestResult]:
        """
        Check that a data source is reachable.

        ``target`` is either the name of a stored data source or an unsaved
        :class:`DataSourceDefinition`. Unsaved definitions are always probed in
        process because a worker can only load definitions from the workspace.
        With a callback the outcome is delivered as ``callback(None, True)`` or
        ``callback(None, False, details)``.
        """

        async def run() -> ConnectionTestResult:
            if isinstance(target, DataSourceDefinition):
                target.validate()
                definition, checker = target, self.unsaved_checker
            else:
                definition, checker = self.context.require_definition(target), self.checker
            log = bind_extra(self.logger, connection=definition.name, connector=definition.connector)
            async with self.guard.hold(definition.name):
                result = await checker.check(definition)
            log.info("Connection tested", extra={"status": result.status, "checker": checker.name})
            return result

        if callback is None:
            return await run()
        await self._deliver(run, callback, lambda result: result.as_values())
        return None

    # ------------------------------------------------------------------ migrations

    async def automigrate(
        self,
        name: str,
        models: Optional[str | Sequence[str]] = None,
        *,
        callback: Optional[Callback] = None,
    ) -> None:
        """
        Drop and recreate the storage backing ``models`` (all attached models when omitted).

        **Destructive**: existing rows in the affected tables are lost. Use
        :meth:`autoupdate` to keep data.
        """

        return await self.invoke(name, "automigrate", _model_names(models), callback=callback)

    async def autoupdate(
        self,
        name: str,
        models: Optional[str | Sequence[str]] = None,
        *,
        callback: Optional[Callback] = None,
    ) -> None:
        """Alter storage to match ``models`` without dropping data."""

        return await self.invoke(name, "autoupdate", _model_names(models), callback=callback)

    # ------------------------------------------------------------------ discovery

    async def discover_model_definition(
        self,
        name: str,
        model_name: str,
        options: DiscoveryOptions | Mapping[str, Any] | None = None,
        *,
        callback: Optional[Callback] = None,
    ) -> Optional[Dict[str, Any]]:
        """Describe table ``model_name`` (and with ``relations`` its referenced tables) as model definitions."""

        async def run() -> Any:
            parsed = DiscoveryOptions.parse(options).to_dict()
            return await self._call(name, "discover_schemas", model_name, parsed or None)

        return await self._dispatch(run, callback)

    async def get_schema(
        self,
        name: str,
        options: DiscoveryOptions | Mapping[str, Any] | None = None,
        *,
        callback: Optional[Callback] = None,
    ) -> Optional[List[Dict[str, Any]]]:
        """List the tables (and with ``views`` the views) visible to the data source."""

        async def run() -> Any:
            parsed = DiscoveryOptions.parse(options).to_dict()
            return await self._call(name, "discover_model_definitions", parsed or None)

        return await self._dispatch(run, callback)

    # ------------------------------------------------------------------ generic

    async def invoke(self, name: str, operation: str, *args: Any, callback: Optional[Callback] = None) -> Any:
        """Run ``operation(*args)`` for data source ``name`` in a worker process."""

        async def run() -> Any:
            return await self._call(name, operation, *args)

        return await self._dispatch(run, callback)

    async def _call(self, name: str, operation: str, *args: Any) -> Any:
        definition = self.context.require_definition(name)
        outcome = _Outcome()
        log = bind_extra(self.logger, connection=name, operation=operation)
        async with self.guard.hold(definition.name):
            await self.channel.invoke(
                self.context.workspace_dir,
                definition.name,
                operation,
                *args,
                outcome,
                connector_id=definition.connector,
            )
        if isinstance(outcome.error, ClassifiedError):
            log.warning("Operation failed", extra={"kind": outcome.error.kind.value, "code": outcome.error.code})
        else:
            log.debug("Operation completed")
        return outcome.result()

    async def _dispatch(self, run: Callable[[], Any], callback: Optional[Callback]) -> Any:
        if callback is None:
            return await run()
        await self._deliver(run, callback, lambda value: () if value is None else (value,))
        return None

    async def _deliver(self, run: Callable[[], Any], callback: Callback, to_values: Callable[[Any], tuple[Any, ...]]) -> None:
        try:
            value = await run()
        except Exception as exc:
            await anyio.lowlevel.checkpoint()
            callback(exc)
            return
        await anyio.lowlevel.checkpoint()
        callback(None, *to_values(value))


def _model_names(models: Optional[str | Sequence[str]]) -> Optional[str | List[str]]:
    if models is None or isinstance(models, str):
        return models
    return list(models)


class BlockingDataSourceOperations:
    """
    Synchronous wrapper around :class:`DataSourceOperations`.

    Runs the async facade on a private event loop thread through an anyio
    ``BlockingPortal``. Instantiate once and reuse; call :meth:`close` (or use
    it as a context manager) when done.
    """

    def __init__(self, operations: DataSourceOperations) -> None:
        self.operations = operations
        self._portal_cm = start_blocking_portal()
        self._portal: BlockingPortal = self._portal_cm.__enter__()
        self._closed = False

    @classmethod
    def from_context(cls, context: WorkspaceContext, **kwargs: Any) -> "BlockingDataSourceOperations":
        return cls(DataSourceOperations.from_context(context, **kwargs))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._portal_cm.__exit__(None, None, None)

    def __enter__(self) -> "BlockingDataSourceOperations":
        if self._closed:
            raise RuntimeError("Cannot enter a closed BlockingDataSourceOperations")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        if self._closed:
            raise RuntimeError("Cannot use BlockingDataSourceOperations after close()")
        return self._portal.call(func, *args)

    def test_connection(self, target: str | DataSourceDefinition) -> ConnectionTestResult:
        return self._call(self.operations.test_connection, target)

    def automigrate(self, name: str, models: Optional[str | Sequence[str]] = None) -> None:
        return self._call(self.operations.automigrate, name, models)

    def autoupdate(self, name: str, models: Optional[str | Sequence[str]] = None) -> None:
        return self._call(self.operations.autoupdate, name, models)

    def discover_model_definition(self, name: str, model_name: str, options: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return self._call(self.operations.discover_model_definition, name, model_name, options)

    def get_schema(self, name: str, options: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        return self._call(self.operations.get_schema, name, options)


__all__ = [
    "BlockingDataSourceOperations",
    "DataSourceOperations",
    "DiscoveryOptions",
    "DiscoveryOptionsError",
]
