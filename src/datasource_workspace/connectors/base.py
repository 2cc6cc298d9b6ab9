"""
Base protocols for connectors.

A connector drives one external system (database, REST API, ...). It exposes
a small set of operations that the workspace invokes either in-process or
inside an isolated worker: liveness (``connect``/``ping``), migrations and
discovery. Connection progress is reported through events rather than return
values: ``connect()`` starts the attempt and the connector later emits
``"connected"`` or ``"error"``, possibly from another thread.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Optional, Protocol, Sequence, runtime_checkable

from ..core.models import ModelDefinition

EVENT_CONNECTED = "connected"
EVENT_ERROR = "error"
EVENT_DISCONNECTED = "disconnected"

INVALID_CONNECTOR_CODE = "ER_INVALID_CONNECTOR"

Listener = Callable[..., Any]


class ConnectorError(RuntimeError):
    """Raised by connectors when an operation fails on the connector side."""

    def __init__(self, message: str, *, code: Optional[str] = None, details: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.details = details


class ConnectorNotInstalledError(ConnectorError):
    """Raised when no implementation can be found for a connector identifier."""

    def __init__(self, connector: str) -> None:
        super().__init__(f'Connector "{connector}" is not installed.', code=INVALID_CONNECTOR_CODE)
        self.connector = connector


class EventEmitter:
    """
    Minimal thread-safe event emitter.

    ``once`` listeners are removed before they run, so a listener registered
    with ``once`` fires at most one time even when two threads emit concurrently.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[tuple[Listener, bool]]] = {}
        self._listener_lock = threading.Lock()

    def on(self, event: str, listener: Listener) -> None:
        with self._listener_lock:
            self._listeners.setdefault(event, []).append((listener, False))

    def once(self, event: str, listener: Listener) -> None:
        with self._listener_lock:
            self._listeners.setdefault(event, []).append((listener, True))

    def remove_listener(self, event: str, listener: Listener) -> None:
        with self._listener_lock:
            entries = self._listeners.get(event, [])
            self._listeners[event] = [entry for entry in entries if entry[0] is not listener]

    def listener_count(self, event: str) -> int:
        with self._listener_lock:
            return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> bool:
        """Call the listeners registered for ``event``; return ``True`` when any ran."""

        with self._listener_lock:
            entries = list(self._listeners.get(event, []))
            if not entries:
                return False
            self._listeners[event] = [entry for entry in entries if not entry[1]]
        for listener, _ in entries:
            listener(*args)
        return True


@runtime_checkable
class Connector(Protocol):
    """Protocol implemented by all connectors."""

    name: str

    def on(self, event: str, listener: Listener) -> None: ...

    def once(self, event: str, listener: Listener) -> None: ...

    def remove_listener(self, event: str, listener: Listener) -> None: ...

    def connect(self) -> None:
        """Start a connection attempt; report the outcome through events."""

    def disconnect(self) -> None:
        """Release connection resources."""

    def ping(self) -> None:
        """Run a lightweight round trip; raise :class:`ConnectorError` on failure."""

    def attach(self, model: ModelDefinition) -> None:
        """Make a model known to the connector."""

    def automigrate(self, models: Optional[str | Sequence[str]] = None) -> None:
        """Drop and recreate storage for the given (or all attached) models."""

    def autoupdate(self, models: Optional[str | Sequence[str]] = None) -> None:
        """Alter storage for the given (or all attached) models without dropping data."""

    def discover_model_definitions(self, options: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """List tables/collections visible to the connection."""

    def discover_schemas(self, name: str, options: Optional[Mapping[str, Any]] = None) -> Dict[str, Dict[str, Any]]:
        """Describe one table (and optionally its relations) as model definitions."""


class BaseConnector(EventEmitter):
    """
    Convenience base class for connectors.

    Subclasses implement :meth:`_open`; the base class turns its outcome into
    ``connected``/``error`` events. Optional capabilities raise
    :class:`ConnectorError` until overridden.
    """

    connector_id: str = "base"

    def __init__(self, settings: Mapping[str, Any]) -> None:
        super().__init__()
        self.settings: Mapping[str, Any] = dict(settings)
        self.name = str(self.settings.get("name") or self.connector_id)
        self.connected = False
        self.models: MutableMapping[str, ModelDefinition] = {}

    def connect(self) -> None:
        try:
            self._open()
        except ConnectorError as exc:
            self.emit(EVENT_ERROR, exc)
            return
        self.connected = True
        self.emit(EVENT_CONNECTED)

    def disconnect(self) -> None:
        self.connected = False
        self.emit(EVENT_DISCONNECTED)

    def ping(self) -> None:
        if not self.connected:
            self._open()
            self.connected = True

    def attach(self, model: ModelDefinition) -> None:
        self.models[model.name] = model

    def automigrate(self, models: Optional[str | Sequence[str]] = None) -> None:
        raise ConnectorError(f"Connector '{self.connector_id}' does not support automigrate.", code="ER_NOT_SUPPORTED")

    def autoupdate(self, models: Optional[str | Sequence[str]] = None) -> None:
        raise ConnectorError(f"Connector '{self.connector_id}' does not support autoupdate.", code="ER_NOT_SUPPORTED")

    def discover_model_definitions(self, options: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        raise ConnectorError(f"Connector '{self.connector_id}' does not support discovery.", code="ER_NOT_SUPPORTED")

    def discover_schemas(self, name: str, options: Optional[Mapping[str, Any]] = None) -> Dict[str, Dict[str, Any]]:
        raise ConnectorError(f"Connector '{self.connector_id}' does not support discovery.", code="ER_NOT_SUPPORTED")

    def _open(self) -> None:
        """Establish the underlying connection. Raise :class:`ConnectorError` on failure."""

    def _resolve_models(self, models: Optional[str | Sequence[str]]) -> List[str]:
        if models is None:
            return list(self.models)
        names = [models] if isinstance(models, str) else list(models)
        unknown = [name for name in names if name not in self.models]
        if unknown:
            raise ConnectorError(f"Model(s) not attached to '{self.name}': {', '.join(unknown)}.", code="ER_UNKNOWN_MODEL")
        return names


__all__ = [
    "BaseConnector",
    "Connector",
    "ConnectorError",
    "ConnectorNotInstalledError",
    "EVENT_CONNECTED",
    "EVENT_DISCONNECTED",
    "EVENT_ERROR",
    "EventEmitter",
    "INVALID_CONNECTOR_CODE",
    "Listener",
]
