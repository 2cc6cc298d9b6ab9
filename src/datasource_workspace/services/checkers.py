"""
Interchangeable connection-check strategies.

``isolated`` runs ``ping`` in a worker process through the invocation channel;
``direct`` probes the connector in the current process. Both return a
:class:`ConnectionTestResult` for outcomes the connector itself reported and
raise :class:`~datasource_workspace.invocation.errors.ClassifiedError` for
everything else (missing connector, broken plumbing, timeouts).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from ..config import CHECKER_DIRECT, CHECKER_ISOLATED, WorkspaceSettings
from ..connectors import ConnectorFactory
from ..core.definitions import DataSourceDefinition
from ..invocation.channel import WorkerInvocationChannel
from ..invocation.classifier import classify_error
from ..invocation.errors import ClassifiedError
from ..invocation.messages import OperationRequest
from .probe import ConnectionProbe

PING_OPERATION = "ping"


@dataclass(slots=True, frozen=True)
class ConnectionTestResult:
    """Outcome of a connection test that reached the connector."""

    status: bool
    details: Optional[Dict[str, Any]] = None

    def as_values(self) -> tuple[Any, ...]:
        """Values handed to a ``callback(error, status, details?)``."""
        return (self.status,) if self.details is None else (self.status, self.details)


@runtime_checkable
class ConnectionChecker(Protocol):
    name: str

    async def check(self, definition: DataSourceDefinition) -> ConnectionTestResult: ...


def _reported(error: ClassifiedError) -> ConnectionTestResult:
    if error.reported_by_connector:
        return ConnectionTestResult(status=False, details=error.to_details())
    raise error


@dataclass(slots=True)
class IsolatedWorkerChecker:
    """Ping the connection from a worker process. Only stored definitions can be checked."""

    channel: WorkerInvocationChannel
    workspace_dir: Path
    name: str = CHECKER_ISOLATED

    async def check(self, definition: DataSourceDefinition) -> ConnectionTestResult:
        response = await self.channel.request(
            OperationRequest(
                workspace_directory=self.workspace_dir,
                connection_name=definition.name,
                operation_name=PING_OPERATION,
                arguments=(),
            )
        )
        if response.error is None:
            return ConnectionTestResult(status=True)
        return _reported(classify_error(response.error, definition.connector))


@dataclass(slots=True)
class DirectProbeChecker:
    """Connect in-process and wait for the first connector event or the timeout."""

    probe: ConnectionProbe = field(default_factory=ConnectionProbe)
    name: str = CHECKER_DIRECT

    async def check(self, definition: DataSourceDefinition) -> ConnectionTestResult:
        try:
            await self.probe.probe(definition)
        except ClassifiedError as exc:
            return _reported(exc)
        return ConnectionTestResult(status=True)


def build_checker(
    settings: WorkspaceSettings,
    *,
    workspace_dir: Path,
    channel: Optional[WorkerInvocationChannel] = None,
    factory: Optional[ConnectorFactory] = None,
) -> ConnectionChecker:
    """Return the checker selected by ``settings.connection_checker``."""

    if settings.connection_checker == CHECKER_DIRECT:
        return DirectProbeChecker(ConnectionProbe(factory=factory or ConnectorFactory(), timeout_ms=settings.test_connection_timeout_ms))
    if settings.connection_checker == CHECKER_ISOLATED:
        channel = channel or WorkerInvocationChannel(timeout_ms=settings.worker_timeout_ms, exit_grace_ms=settings.worker_exit_grace_ms)
        return IsolatedWorkerChecker(channel=channel, workspace_dir=workspace_dir)
    raise ValueError(f"Unknown connection checker '{settings.connection_checker}'.")


__all__ = [
    "ConnectionChecker",
    "ConnectionTestResult",
    "DirectProbeChecker",
    "IsolatedWorkerChecker",
    "PING_OPERATION",
    "build_checker",
]
