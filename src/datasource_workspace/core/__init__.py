"""
Core infrastructure shared across the workspace tooling.

Exposes the definition store, the model catalogue, the workspace context and
the logging helpers. Nothing here talks to connectors or spawns processes.
"""

from .context import WorkspaceContext
from .definitions import DataSourceDefinition, DataSourceDefinitionStore, DefinitionLoadError, DefinitionValidationError
from .logging import bind_extra, configure_logging, get_logger, log_progress
from .models import ModelCatalog, ModelConfig, ModelDefinition, attach_models

__all__ = [
    "DataSourceDefinition",
    "DataSourceDefinitionStore",
    "DefinitionLoadError",
    "DefinitionValidationError",
    "ModelCatalog",
    "ModelConfig",
    "ModelDefinition",
    "WorkspaceContext",
    "attach_models",
    "bind_extra",
    "configure_logging",
    "get_logger",
    "log_progress",
]
