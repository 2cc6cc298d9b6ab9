"""
Workspace settings shared by the operation facade, the worker channel and the CLI.

Settings are read from a TOML document. The lookup order is:

1. Explicit ``DATASOURCE_WORKSPACE_CONFIG`` environment variable.
2. ``<workspace>/workspace.toml``.
3. ``<workspace>/.workspace/workspace.toml``.
4. Built-in defaults.

Only the ``[datasources]`` table is interpreted::

    [datasources]
    test_connection_timeout = 60000   # ms, direct probe
    worker_timeout = 120000           # ms, isolated worker
    worker_exit_grace = 5000          # ms granted to a worker after it replied
    connection_checker = "isolated"   # or "direct"
    concurrency = "reject"            # or "queue"
    model_facet = "common"
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

DEFAULT_TEST_CONNECTION_TIMEOUT_MS = 60000
DEFAULT_WORKER_TIMEOUT_MS = 120000
DEFAULT_WORKER_EXIT_GRACE_MS = 5000
DEFAULT_MODEL_FACET = "common"

CHECKER_ISOLATED = "isolated"
CHECKER_DIRECT = "direct"
SUPPORTED_CHECKERS = {CHECKER_ISOLATED, CHECKER_DIRECT}

CONCURRENCY_REJECT = "reject"
CONCURRENCY_QUEUE = "queue"
SUPPORTED_CONCURRENCY = {CONCURRENCY_REJECT, CONCURRENCY_QUEUE}

_ENV_CONFIG = "DATASOURCE_WORKSPACE_CONFIG"
_ENV_WORKSPACE = "WORKSPACE_DIR"


class SettingsError(ValueError):
    """Raised when a settings document contains unusable values."""


@dataclass(slots=True, frozen=True)
class WorkspaceSettings:
    """Runtime knobs for connection checks and worker invocations."""

    test_connection_timeout_ms: int = DEFAULT_TEST_CONNECTION_TIMEOUT_MS
    worker_timeout_ms: int = DEFAULT_WORKER_TIMEOUT_MS
    worker_exit_grace_ms: int = DEFAULT_WORKER_EXIT_GRACE_MS
    connection_checker: str = CHECKER_ISOLATED
    concurrency: str = CONCURRENCY_REJECT
    model_facet: str = DEFAULT_MODEL_FACET
    source_path: Optional[Path] = field(default=None, compare=False)

    @property
    def test_connection_timeout(self) -> float:
        """Direct probe timeout in seconds."""
        return self.test_connection_timeout_ms / 1000.0

    @property
    def worker_timeout(self) -> float:
        """Isolated worker timeout in seconds."""
        return self.worker_timeout_ms / 1000.0

    @property
    def worker_exit_grace(self) -> float:
        return self.worker_exit_grace_ms / 1000.0

    def with_overrides(self, **changes: Any) -> "WorkspaceSettings":
        """Return a copy with the non-``None`` overrides applied and validated."""

        filtered = {key: value for key, value in changes.items() if value is not None}
        updated = replace(self, **filtered)
        updated.validate()
        return updated

    def validate(self) -> None:
        if self.connection_checker not in SUPPORTED_CHECKERS:
            raise SettingsError(f"Unknown connection_checker '{self.connection_checker}'. Expected one of: {', '.join(sorted(SUPPORTED_CHECKERS))}.")
        if self.concurrency not in SUPPORTED_CONCURRENCY:
            raise SettingsError(f"Unknown concurrency policy '{self.concurrency}'. Expected one of: {', '.join(sorted(SUPPORTED_CONCURRENCY))}.")
        for label, value in (
            ("test_connection_timeout", self.test_connection_timeout_ms),
            ("worker_timeout", self.worker_timeout_ms),
        ):
            if value <= 0:
                raise SettingsError(f"{label} must be a positive number of milliseconds, got {value}.")
        if self.worker_exit_grace_ms < 0:
            raise SettingsError(f"worker_exit_grace must not be negative, got {self.worker_exit_grace_ms}.")


def get_workspace_directory() -> Path:
    """Return the workspace root: ``WORKSPACE_DIR`` when set, otherwise the current directory."""

    override = os.getenv(_ENV_WORKSPACE)
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd()


def _candidate_paths(workspace_dir: Path) -> Iterable[Path]:
    env_override = os.getenv(_ENV_CONFIG)
    if env_override:
        yield Path(env_override).expanduser()
    yield workspace_dir / "workspace.toml"
    yield workspace_dir / ".workspace" / "workspace.toml"


def _load_toml(path: Path) -> Dict[str, Any]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _milliseconds(section: Mapping[str, Any], key: str, default: int) -> int:
    value = section.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise SettingsError(f"'{key}' must be a number of milliseconds, got {value!r}.")
    try:
        return int(float(value))
    except ValueError as exc:
        raise SettingsError(f"'{key}' must be a number of milliseconds, got {value!r}.") from exc


def settings_from_mapping(raw: Mapping[str, Any], *, source_path: Optional[Path] = None) -> WorkspaceSettings:
    """Build settings from a parsed TOML document."""

    section = raw.get("datasources", {}) if isinstance(raw, Mapping) else {}
    if not isinstance(section, Mapping):
        section = {}

    settings = WorkspaceSettings(
        test_connection_timeout_ms=_milliseconds(section, "test_connection_timeout", DEFAULT_TEST_CONNECTION_TIMEOUT_MS),
        worker_timeout_ms=_milliseconds(section, "worker_timeout", DEFAULT_WORKER_TIMEOUT_MS),
        worker_exit_grace_ms=_milliseconds(section, "worker_exit_grace", DEFAULT_WORKER_EXIT_GRACE_MS),
        connection_checker=str(section.get("connection_checker", CHECKER_ISOLATED)).strip().lower(),
        concurrency=str(section.get("concurrency", CONCURRENCY_REJECT)).strip().lower(),
        model_facet=str(section.get("model_facet", DEFAULT_MODEL_FACET)).strip() or DEFAULT_MODEL_FACET,
        source_path=source_path,
    )
    settings.validate()
    return settings


def load_settings(workspace_dir: Optional[Path] = None, *, strict: bool = False) -> WorkspaceSettings:
    """
    Load settings for a workspace.

    Parameters
    ----------
    workspace_dir:
        Workspace root. Defaults to :func:`get_workspace_directory`.
    strict:
        When ``True`` a missing settings file raises ``FileNotFoundError`` instead of
        falling back to defaults.
    """

    root = workspace_dir or get_workspace_directory()
    for path in _candidate_paths(root):
        if path.is_file():
            return settings_from_mapping(_load_toml(path), source_path=path)

    if strict:
        raise FileNotFoundError(f"No workspace settings found. Configure {_ENV_CONFIG} or create {root / 'workspace.toml'}.")

    return WorkspaceSettings()


__all__ = [
    "CHECKER_DIRECT",
    "CHECKER_ISOLATED",
    "CONCURRENCY_QUEUE",
    "CONCURRENCY_REJECT",
    "SettingsError",
    "WorkspaceSettings",
    "get_workspace_directory",
    "load_settings",
    "settings_from_mapping",
]
