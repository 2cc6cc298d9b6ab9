"""
Operate workspace data source connectors without trusting them.

Connector operations (connectivity checks, migrations, discovery) run inside a
short-lived worker process by default; failures come back as typed errors.
Start from :class:`~datasource_workspace.services.DataSourceOperations` or the
``datasource-workspace`` CLI.
"""

from .core import DataSourceDefinition, WorkspaceContext
from .invocation import (
    ClassifiedError,
    ErrorKind,
    GenericOperationError,
    InvocationError,
    MissingConnectorError,
    OperationTimeoutError,
    WorkerInvocationChannel,
    classify_error,
    normalize_arguments,
)
from .services import BlockingDataSourceOperations, ConnectionProbe, ConnectionTestResult, DataSourceOperations

__all__ = [
    "BlockingDataSourceOperations",
    "ClassifiedError",
    "ConnectionProbe",
    "ConnectionTestResult",
    "DataSourceDefinition",
    "DataSourceOperations",
    "ErrorKind",
    "GenericOperationError",
    "InvocationError",
    "MissingConnectorError",
    "OperationTimeoutError",
    "WorkerInvocationChannel",
    "WorkspaceContext",
    "classify_error",
    "normalize_arguments",
]
