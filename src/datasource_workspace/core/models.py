"""
Model definitions and model configuration used when a connection is opened
with its attached models.

Layout inside a workspace::

    <workspace>/<facet>/model-config.json      # model name -> {"dataSource": ..., "public": ...}
    <workspace>/<modelFacet>/models/*.json      # one model definition per file (.yaml also accepted)

``ModelCatalog.models_for`` answers "which model definitions are configured for
this facet/connection pair", which is what migrations need before they can
create tables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional, Protocol, Sequence, Tuple

from .definitions import DataSourceDefinition, DefinitionLoadError, read_document

MODEL_CONFIG_FILENAMES = ("model-config.json", "model-config.yaml", "model-config.yml")
MODEL_SUFFIXES = (".json", ".yaml", ".yml")


@dataclass(slots=True, frozen=True)
class ModelDefinition:
    """Shape of a persisted model: its properties and connector options."""

    name: str
    facet_name: str
    properties: Mapping[str, Any] = field(default_factory=dict)
    options: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "facetName": self.facet_name,
            "properties": dict(self.properties),
            "options": dict(self.options),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ModelDefinition":
        return cls(
            name=str(payload["name"]),
            facet_name=str(payload.get("facetName", "")),
            properties=dict(payload.get("properties") or {}),
            options=dict(payload.get("options") or {}),
        )


@dataclass(slots=True, frozen=True)
class ModelConfig:
    """Binding of a model to a data source inside one facet."""

    name: str
    facet_name: str
    data_source: Optional[str]
    public: bool = True


class ModelAttachable(Protocol):
    """Anything models can be attached to (connectors implement this)."""

    def attach(self, model: ModelDefinition) -> None:
        """Attach ``model`` so that migrations and queries know about it."""


class ModelCatalog:
    """In-memory index of model definitions and model configs across facets."""

    def __init__(self) -> None:
        self._definitions: MutableMapping[Tuple[str, str], ModelDefinition] = {}
        self._configs: List[ModelConfig] = []

    def add_definition(self, definition: ModelDefinition) -> None:
        self._definitions[(definition.facet_name, definition.name)] = definition

    def add_config(self, config: ModelConfig) -> None:
        self._configs.append(config)

    def configs_for(self, definition: DataSourceDefinition) -> List[ModelConfig]:
        """Model configs in the connection's facet that point at the connection."""

        return [config for config in self._configs if config.facet_name == definition.facet_name and config.data_source == definition.name]

    def models_for(self, definition: DataSourceDefinition, model_facet: Optional[str] = None) -> List[ModelDefinition]:
        """
        Return the model definitions configured for ``definition``.

        Parameters
        ----------
        definition:
            Connection whose model configs are consulted.
        model_facet:
            Facet holding the model definitions. Defaults to ``common``.
        """

        facet = model_facet or "common"
        names = [config.name for config in self.configs_for(definition)]
        return [self._definitions[(facet, name)] for name in names if (facet, name) in self._definitions]

    @classmethod
    def from_workspace(cls, workspace_dir: Path | str) -> "ModelCatalog":
        root = Path(workspace_dir)
        catalog = cls()
        if not root.is_dir():
            raise DefinitionLoadError(f"Workspace directory '{root}' does not exist.")
        for facet_dir in sorted(path for path in root.iterdir() if path.is_dir() and not path.name.startswith(".")):
            for config in _load_model_configs(facet_dir):
                catalog.add_config(config)
            for definition in _load_model_definitions(facet_dir):
                catalog.add_definition(definition)
        return catalog


def attach_models(target: ModelAttachable, models: Sequence[ModelDefinition]) -> None:
    """Attach every model in order; the first failure propagates and stops the loop."""

    for model in models:
        target.attach(model)


def _load_model_configs(facet_dir: Path) -> Iterable[ModelConfig]:
    location = next((facet_dir / name for name in MODEL_CONFIG_FILENAMES if (facet_dir / name).is_file()), None)
    if location is None:
        return []
    payload = read_document(location) or {}
    if not isinstance(payload, Mapping):
        raise DefinitionLoadError(f"Model config '{location}' must contain a mapping.")
    configs = []
    for name, entry in payload.items():
        # "_meta" holds sources and mixins, not models
        if str(name).startswith("_") or not isinstance(entry, Mapping):
            continue
        data_source = entry.get("dataSource")
        configs.append(
            ModelConfig(
                name=str(name),
                facet_name=facet_dir.name,
                data_source=str(data_source) if data_source else None,
                public=bool(entry.get("public", True)),
            )
        )
    return configs


def _load_model_definitions(facet_dir: Path) -> Iterable[ModelDefinition]:
    models_dir = facet_dir / "models"
    if not models_dir.is_dir():
        return []
    definitions = []
    for location in sorted(models_dir.iterdir()):
        if location.suffix not in MODEL_SUFFIXES or not location.is_file():
            continue
        payload = read_document(location)
        if not isinstance(payload, Mapping):
            raise DefinitionLoadError(f"Model definition '{location}' must contain a mapping.")
        definitions.append(
            ModelDefinition(
                name=str(payload.get("name") or location.stem),
                facet_name=facet_dir.name,
                properties=dict(payload.get("properties") or {}),
                options=dict(payload.get("options") or {}),
            )
        )
    return definitions


__all__ = [
    "ModelAttachable",
    "ModelCatalog",
    "ModelConfig",
    "ModelDefinition",
    "attach_models",
]
