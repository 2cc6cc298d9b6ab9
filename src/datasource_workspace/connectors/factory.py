"""
Resolution of connector identifiers to connector implementations.

Lookup order for an identifier such as ``mysql``:

1. Connectors registered explicitly on the factory (built-ins included).
2. Entry points in the ``datasource_workspace.connectors`` group.
3. A ``package.module:ClassName`` path.

Anything else raises :class:`ConnectorNotInstalledError`, whose message
(``Connector "<id>" is not installed.``) is what the error classifier
recognises on the caller side of the worker boundary.
"""

from __future__ import annotations

import importlib
from importlib.metadata import entry_points
from typing import Any, Callable, Dict, Mapping, MutableMapping, Optional

from ..core.definitions import DataSourceDefinition
from ..core.logging import get_logger
from .base import Connector, ConnectorNotInstalledError
from .memory import MemoryConnector

ENTRY_POINT_GROUP = "datasource_workspace.connectors"

ConnectorConstructor = Callable[[Mapping[str, Any]], Connector]

LOGGER = get_logger(__name__)


class ConnectorFactory:
    """Build connector instances from data source definitions."""

    def __init__(self, *, load_entry_points: bool = True) -> None:
        self._constructors: MutableMapping[str, ConnectorConstructor] = {}
        self._load_entry_points = load_entry_points
        self.register(MemoryConnector.connector_id, MemoryConnector)

    def register(self, connector_id: str, constructor: ConnectorConstructor) -> None:
        """Register or overwrite the constructor used for ``connector_id``."""

        self._constructors[connector_id] = constructor

    def resolve(self, connector_id: str) -> ConnectorConstructor:
        """Return the constructor for ``connector_id`` or raise :class:`ConnectorNotInstalledError`."""

        constructor = self._constructors.get(connector_id)
        if constructor is not None:
            return constructor

        if self._load_entry_points:
            constructor = self._from_entry_points(connector_id)
            if constructor is not None:
                self._constructors[connector_id] = constructor
                return constructor

        if ":" in connector_id:
            constructor = self._from_path(connector_id)
            if constructor is not None:
                self._constructors[connector_id] = constructor
                return constructor

        raise ConnectorNotInstalledError(connector_id)

    def create(self, definition: DataSourceDefinition) -> Connector:
        """Instantiate the connector configured by ``definition``."""

        constructor = self.resolve(definition.connector)
        LOGGER.debug("Creating connector", extra={"connection": definition.name, "connector": definition.connector})
        return constructor(definition.settings())

    def available(self) -> Dict[str, str]:
        """Map of explicitly registered connector ids to their implementation names."""

        return {key: getattr(value, "__qualname__", repr(value)) for key, value in sorted(self._constructors.items())}

    @staticmethod
    def _from_entry_points(connector_id: str) -> Optional[ConnectorConstructor]:
        for entry_point in entry_points(group=ENTRY_POINT_GROUP):
            if entry_point.name != connector_id:
                continue
            try:
                return entry_point.load()
            except ImportError as exc:
                LOGGER.warning(
                    "Connector entry point failed to load",
                    extra={"connector": connector_id, "entry_point": entry_point.value, "error": str(exc)},
                )
                return None
        return None

    @staticmethod
    def _from_path(path: str) -> Optional[ConnectorConstructor]:
        module_name, _, attribute = path.partition(":")
        try:
            module = importlib.import_module(module_name)
        except ImportError:
            return None
        return getattr(module, attribute, None)


__all__ = ["ConnectorFactory", "ENTRY_POINT_GROUP"]
