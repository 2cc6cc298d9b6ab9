"""
In-process connection probe.

The probe builds the connector in the current process, starts a connection
attempt and waits for whichever comes first: the connector's ``connected``
event, its ``error`` event or the configured timeout. Connectors may emit from
any thread (including synchronously from inside ``connect()``), so the outcome
is recorded in a thread-safe latch and awaited from a worker thread rather
than polled.

The timeout covers the connection attempt itself: ``connect()`` runs on a
worker thread, so a connector that blocks inside it still times out. The
timeout only abandons the attempt. A call still in flight is left to finish on
its own; anything it reports afterwards is ignored.
"""

from __future__ import annotations

import threading
import traceback
from dataclasses import dataclass, field
from logging import LoggerAdapter
from typing import Any, Optional

import anyio
import anyio.to_thread

from ..config import DEFAULT_TEST_CONNECTION_TIMEOUT_MS
from ..connectors import EVENT_CONNECTED, EVENT_ERROR, Connector, ConnectorFactory
from ..core.definitions import DataSourceDefinition
from ..core.logging import bind_extra, get_logger
from ..invocation.errors import GenericOperationError, OperationTimeoutError

INVALID_SETUP_MESSAGE = "Cannot connect to the data source. Ensure the configuration is valid and the connector is installed."

OUTCOME_CONNECTED = "connected"
OUTCOME_ERROR = "error"
OUTCOME_TIMEOUT = "timeout"


class ProbeOutcome:
    """
    One-shot latch shared between connector listeners and the waiting task.

    The first call to :meth:`settle` wins; later calls return ``False`` and
    leave the recorded outcome untouched.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self.kind: Optional[str] = None
        self.error: Optional[BaseException] = None

    def settle(self, kind: str, error: Optional[BaseException] = None) -> bool:
        with self._lock:
            if self.kind is not None:
                return False
            self.kind = kind
            self.error = error
        self._event.set()
        return True

    def connected(self, *_: Any) -> None:
        self.settle(OUTCOME_CONNECTED)

    def failed(self, error: Any = None, *_: Any) -> None:
        if not isinstance(error, BaseException):
            error = RuntimeError(str(error) if error is not None else "Connection failed.")
        self.settle(OUTCOME_ERROR, error)

    @property
    def settled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


@dataclass(slots=True)
class ConnectionProbe:
    """
    Direct connectivity check bounded by ``timeout_ms``.

    :meth:`probe` returns ``None`` when the connector reports ``connected`` and
    raises a :class:`~datasource_workspace.invocation.errors.ClassifiedError`
    otherwise. A failure the connector itself reported carries
    ``origin="invoke"``; setup failures and timeouts do not.
    """

    factory: ConnectorFactory = field(default_factory=ConnectorFactory)
    timeout_ms: int = DEFAULT_TEST_CONNECTION_TIMEOUT_MS
    logger: LoggerAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = get_logger(__name__)

    async def probe(self, definition: DataSourceDefinition) -> None:
        log = bind_extra(self.logger, connection=definition.name, connector=definition.connector)
        try:
            connector = self.factory.create(definition)
        except Exception as exc:
            log.warning("Connector could not be constructed", extra={"error": str(exc)})
            raise self._setup_failure(exc) from exc

        outcome = ProbeOutcome()
        on_connected, on_error = outcome.connected, outcome.failed
        connector.once(EVENT_CONNECTED, on_connected)
        connector.once(EVENT_ERROR, on_error)
        deadline = anyio.current_time() + self.timeout_ms / 1000.0
        try:
            with anyio.move_on_at(deadline):
                try:
                    await anyio.to_thread.run_sync(connector.connect, abandon_on_cancel=True)
                except Exception as exc:
                    log.warning("Connection attempt raised", extra={"error": str(exc)})
                    raise self._setup_failure(exc) from exc

                if not outcome.settled:
                    remaining = max(0.0, deadline - anyio.current_time())
                    await anyio.to_thread.run_sync(outcome.wait, remaining, abandon_on_cancel=True)
            outcome.settle(OUTCOME_TIMEOUT)
        finally:
            connector.remove_listener(EVENT_CONNECTED, on_connected)
            connector.remove_listener(EVENT_ERROR, on_error)

        if outcome.kind == OUTCOME_CONNECTED:
            log.debug("Connection established", extra={"outcome": "connected"})
            _disconnect(connector, log)
            return
        if outcome.kind == OUTCOME_TIMEOUT:
            log.warning("Connection attempt timed out", extra={"outcome": "timeout", "timeout_ms": self.timeout_ms})
            raise OperationTimeoutError(f"connection timed out after {self.timeout_ms}ms", timeout_ms=self.timeout_ms, origin="other")

        error = outcome.error
        log.info("Connector reported a failure", extra={"outcome": "error", "error": str(error)})
        raise GenericOperationError(
            str(error) or error.__class__.__name__,
            code=_optional_str(getattr(error, "code", None)),
            details=getattr(error, "details", None),
            stack="".join(traceback.format_exception(error)),
            origin="invoke",
        ) from error

    @staticmethod
    def _setup_failure(exc: BaseException) -> GenericOperationError:
        return GenericOperationError(
            INVALID_SETUP_MESSAGE,
            code=_optional_str(getattr(exc, "code", None)),
            details={"cause": str(exc)},
            origin="other",
        )


def _disconnect(connector: Connector, log: LoggerAdapter) -> None:
    try:
        connector.disconnect()
    except Exception as exc:  # pragma: no cover - best effort cleanup
        log.warning("Connector disconnect failed", extra={"error": str(exc)})


def _optional_str(value: object | None) -> Optional[str]:
    return None if value is None else str(value)


__all__ = ["ConnectionProbe", "INVALID_SETUP_MESSAGE", "ProbeOutcome"]
