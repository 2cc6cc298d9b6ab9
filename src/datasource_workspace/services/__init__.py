"""
Service layer: connection checks and the data source operation facade.
"""

from .checkers import ConnectionChecker, ConnectionTestResult, DirectProbeChecker, IsolatedWorkerChecker, build_checker
from .operations import BlockingDataSourceOperations, DataSourceOperations, DiscoveryOptions, DiscoveryOptionsError
from .probe import ConnectionProbe, ProbeOutcome

__all__ = [
    "BlockingDataSourceOperations",
    "ConnectionChecker",
    "ConnectionProbe",
    "ConnectionTestResult",
    "DataSourceOperations",
    "DirectProbeChecker",
    "DiscoveryOptions",
    "DiscoveryOptionsError",
    "IsolatedWorkerChecker",
    "ProbeOutcome",
    "build_checker",
]
