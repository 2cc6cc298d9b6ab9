"""
Data source definitions and the workspace store that loads them.

A definition names one configured connection: the connector that drives it, the
facet it belongs to, and the connector-specific options (host, credentials,
tables, ...). Definitions live next to the facet they belong to::

    <workspace>/<facet>/datasources.yaml   (or .yml / .json)

Each file holds a mapping of connection name to settings. ``connector`` is
required; every other key is handed to the connector untouched. The ``name``
and ``facetName`` keys, when present, must agree with the mapping key and the
facet directory.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, MutableMapping, Optional, Tuple

import yaml

DEFINITION_FILENAMES = ("datasources.yaml", "datasources.yml", "datasources.json")
_RESERVED_KEYS = {"name", "connector", "facetName", "facet_name"}


class DefinitionLoadError(RuntimeError):
    """Raised when a definition file cannot be read or parsed."""


class DefinitionValidationError(ValueError):
    """Raised when a definition violates a presence or uniqueness rule."""


@dataclass(slots=True, frozen=True)
class DataSourceDefinition:
    """
    A named, persisted connection configuration.

    Parameters
    ----------
    name:
        Connection name, unique within its facet.
    connector:
        Connector identifier resolved by :class:`~datasource_workspace.connectors.ConnectorFactory`.
    facet_name:
        Facet the connection belongs to (``server``, ``common``, ...).
    options:
        Connector specific settings. Treated as immutable for the duration of a call.
    """

    name: str
    connector: str
    facet_name: str
    options: Mapping[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        """Check the presence rules for ``name``, ``connector`` and ``facet_name``."""

        missing = [label for label, value in (("name", self.name), ("connector", self.connector), ("facetName", self.facet_name)) if not value]
        if missing:
            label = self.name or "<unnamed>"
            raise DefinitionValidationError(f"Data source '{label}' is missing required field(s): {', '.join(missing)}.")

    def settings(self) -> Dict[str, Any]:
        """Return the flat settings mapping handed to connectors."""

        payload: Dict[str, Any] = dict(self.options)
        payload["name"] = self.name
        payload["connector"] = self.connector
        return payload

    def to_dict(self) -> Dict[str, Any]:
        payload = self.settings()
        payload["facetName"] = self.facet_name
        return payload

    def to_json(self) -> str:
        """Return a JSON representation useful for CLI output."""

        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2, default=str)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any], *, name: Optional[str] = None, facet_name: Optional[str] = None) -> "DataSourceDefinition":
        """Build a definition from a flat settings mapping."""

        if not isinstance(payload, Mapping):
            raise DefinitionValidationError(f"Data source settings must be a mapping, got {type(payload)!r}.")
        resolved_name = _optional_str(payload.get("name")) or name or ""
        if name and resolved_name != name:
            raise DefinitionValidationError(f"Data source '{name}' declares a conflicting name '{resolved_name}'.")
        resolved_facet = _optional_str(payload.get("facetName") or payload.get("facet_name")) or facet_name or ""
        if facet_name and resolved_facet != facet_name:
            raise DefinitionValidationError(f"Data source '{resolved_name}' declares facet '{resolved_facet}' but lives in '{facet_name}'.")
        options = {key: value for key, value in payload.items() if key not in _RESERVED_KEYS}
        definition = cls(
            name=resolved_name,
            connector=_optional_str(payload.get("connector")) or "",
            facet_name=resolved_facet,
            options=options,
        )
        definition.validate()
        return definition


class DataSourceDefinitionStore:
    """In-memory catalogue of :class:`DataSourceDefinition` entries keyed by facet and name."""

    def __init__(self, workspace_dir: Optional[Path] = None) -> None:
        self.workspace_dir = workspace_dir
        self._entries: MutableMapping[Tuple[str, str], DataSourceDefinition] = {}

    def register(self, definition: DataSourceDefinition, *, replace: bool = False) -> None:
        """Register a definition, enforcing name uniqueness within its facet."""

        definition.validate()
        key = (definition.facet_name, definition.name)
        if key in self._entries and not replace:
            raise DefinitionValidationError(f"Data source '{definition.name}' already exists in facet '{definition.facet_name}'.")
        self._entries[key] = definition

    def unregister(self, name: str, facet: Optional[str] = None) -> None:
        for key in [key for key in self._entries if key[1] == name and (facet is None or key[0] == facet)]:
            self._entries.pop(key, None)

    def get(self, name: str, facet: Optional[str] = None) -> Optional[DataSourceDefinition]:
        """
        Retrieve a definition by name.

        When ``facet`` is omitted the name must be unambiguous across facets.
        """

        if facet is not None:
            return self._entries.get((facet, name))
        matches = [entry for (_, entry_name), entry in self._entries.items() if entry_name == name]
        if len(matches) > 1:
            facets = ", ".join(sorted(entry.facet_name for entry in matches))
            raise DefinitionValidationError(f"Data source '{name}' is defined in several facets ({facets}); pass a facet explicitly.")
        return matches[0] if matches else None

    def require(self, name: str, facet: Optional[str] = None) -> DataSourceDefinition:
        """Retrieve a definition or raise an informative error."""

        definition = self.get(name, facet)
        if definition is None:
            scope = f" in facet '{facet}'" if facet else ""
            raise KeyError(f"Data source '{name}' is not defined{scope}.")
        return definition

    def list(self, *, facet: Optional[str] = None) -> List[DataSourceDefinition]:
        """Return definitions sorted by facet then name, optionally filtered by facet."""

        entries = sorted(self._entries.values(), key=lambda item: (item.facet_name, item.name))
        if facet:
            return [entry for entry in entries if entry.facet_name == facet]
        return entries

    def __iter__(self) -> Iterator[DataSourceDefinition]:
        return iter(self.list())

    def __len__(self) -> int:
        return len(self._entries)

    @classmethod
    def from_workspace(cls, workspace_dir: Path | str) -> "DataSourceDefinitionStore":
        """Load every facet's definition file found directly under ``workspace_dir``."""

        root = Path(workspace_dir)
        if not root.is_dir():
            raise DefinitionLoadError(f"Workspace directory '{root}' does not exist.")

        store = cls(workspace_dir=root)
        for facet_dir in sorted(path for path in root.iterdir() if path.is_dir() and not path.name.startswith(".")):
            location = _definition_file(facet_dir)
            if location is None:
                continue
            payload = read_document(location)
            if payload is None:
                continue
            if not isinstance(payload, Mapping):
                raise DefinitionLoadError(f"Definition file '{location}' must contain a mapping of data source names.")
            for name, settings in payload.items():
                try:
                    definition = DataSourceDefinition.from_mapping(settings, name=str(name), facet_name=facet_dir.name)
                    store.register(definition)
                except DefinitionValidationError as exc:
                    raise DefinitionLoadError(f"Invalid data source in '{location}': {exc}") from exc
        return store


def _definition_file(facet_dir: Path) -> Optional[Path]:
    for filename in DEFINITION_FILENAMES:
        candidate = facet_dir / filename
        if candidate.is_file():
            return candidate
    return None


def read_document(location: Path) -> Any:
    """Parse a JSON or YAML workspace document, picking the parser from the suffix."""

    try:
        with location.open("r", encoding="utf-8") as handle:
            if location.suffix == ".json":
                return json.load(handle)
            return yaml.safe_load(handle)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise DefinitionLoadError(f"Failed to parse '{location}': {exc}") from exc


def _optional_str(value: object | None) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


__all__ = [
    "DEFINITION_FILENAMES",
    "DataSourceDefinition",
    "DataSourceDefinitionStore",
    "DefinitionLoadError",
    "DefinitionValidationError",
    "read_document",
]
