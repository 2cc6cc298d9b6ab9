"""
Connector contract, the connector factory and the built-in memory connector.

Concrete database or API drivers are installed separately and discovered
through the ``datasource_workspace.connectors`` entry point group.
"""

from .base import (
    BaseConnector,
    Connector,
    ConnectorError,
    ConnectorNotInstalledError,
    EVENT_CONNECTED,
    EVENT_ERROR,
    EventEmitter,
    INVALID_CONNECTOR_CODE,
)
from .factory import ENTRY_POINT_GROUP, ConnectorFactory
from .memory import MemoryConnector

__all__ = [
    "BaseConnector",
    "Connector",
    "ConnectorError",
    "ConnectorFactory",
    "ConnectorNotInstalledError",
    "ENTRY_POINT_GROUP",
    "EVENT_CONNECTED",
    "EVENT_ERROR",
    "EventEmitter",
    "INVALID_CONNECTOR_CODE",
    "MemoryConnector",
]
