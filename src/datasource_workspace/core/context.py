"""
Workspace context shared by the CLI and the operation facade.

The context bundles what every operation needs to know about the workspace it
runs against: where it lives, the settings loaded from ``workspace.toml``, the
data source definitions and the model catalogue. Building it once per command
keeps the facade free of filesystem lookups.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import LoggerAdapter
from pathlib import Path
from typing import Mapping, Optional, Sequence

from ..config import WorkspaceSettings, get_workspace_directory, load_settings
from .definitions import DataSourceDefinition, DataSourceDefinitionStore
from .logging import get_logger as _get_logger
from .models import ModelCatalog, ModelDefinition


@dataclass(slots=True)
class WorkspaceContext:
    """
    Resolved workspace state.

    Attributes
    ----------
    workspace_dir:
        Root directory handed to workers so they can load the same definitions.
    settings:
        Timeouts, checker strategy and concurrency policy.
    definitions:
        Data source definitions found in the workspace.
    models:
        Model definitions and model configs found in the workspace.
    observability_tags:
        Tags attached to every logger handed out by :meth:`get_logger`.
    """

    workspace_dir: Path
    settings: WorkspaceSettings
    definitions: DataSourceDefinitionStore
    models: ModelCatalog = field(default_factory=ModelCatalog)
    observability_tags: Sequence[str] = field(default_factory=tuple)

    @classmethod
    def build_default(
        cls,
        *,
        workspace_dir: Optional[Path] = None,
        settings: Optional[WorkspaceSettings] = None,
        observability_tags: Optional[Sequence[str]] = None,
    ) -> "WorkspaceContext":
        """
        Construct a context by reading the workspace from disk.

        Parameters
        ----------
        workspace_dir:
            Workspace root. Defaults to :func:`~datasource_workspace.config.get_workspace_directory`.
        settings:
            Preloaded settings. When omitted :func:`~datasource_workspace.config.load_settings` is used.
        observability_tags:
            Optional tags for log records emitted through the context.
        """

        root = (workspace_dir or get_workspace_directory()).resolve()
        return cls(
            workspace_dir=root,
            settings=settings or load_settings(root),
            definitions=DataSourceDefinitionStore.from_workspace(root),
            models=ModelCatalog.from_workspace(root),
            observability_tags=tuple(observability_tags or ()),
        )

    def require_definition(self, name: str, facet: Optional[str] = None) -> DataSourceDefinition:
        return self.definitions.require(name, facet)

    def models_for(self, definition: DataSourceDefinition, model_facet: Optional[str] = None) -> list[ModelDefinition]:
        return self.models.models_for(definition, model_facet or self.settings.model_facet)

    def get_logger(self, name: str, *, extra: Optional[Mapping[str, object]] = None) -> LoggerAdapter:
        """Return a logger adapter enriched with the context's observability tags."""

        tags = tuple(self.observability_tags)
        return _get_logger(name, tags=tags if tags else None, extra=extra)
