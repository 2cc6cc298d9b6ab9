"""
Run connector operations inside a separate worker process.

Each call spawns a fresh ``python -m datasource_workspace.invocation.worker``,
writes one request line to its stdin and waits for the first line on its
stdout. That first line is the response; anything after it is ignored. The
wait is bounded: a worker that hangs is killed and the caller receives an
:class:`OperationTimeoutError`. A worker that dies without replying produces a
:class:`GenericOperationError`. In every case the callback runs exactly once.

The caller resumes as soon as the response line arrives. Reaping the worker
(waiting out ``exit_grace_ms``, then killing it) happens on a background
thread so delivery never waits for the worker to exit.
"""

from __future__ import annotations

import contextlib
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from logging import LoggerAdapter
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence

import anyio
import anyio.to_thread
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import DEFAULT_WORKER_EXIT_GRACE_MS, DEFAULT_WORKER_TIMEOUT_MS
from ..core.logging import bind_extra, get_logger
from .arguments import normalize_arguments
from .classifier import classify_error
from .errors import ClassifiedError, GenericOperationError, OperationTimeoutError
from .messages import OperationRequest, OperationResponse, ProtocolError

WORKER_MODULE = "datasource_workspace.invocation.worker"
MAX_RESPONSE_BYTES = 16 * 1024 * 1024


def default_worker_command() -> List[str]:
    return [sys.executable, "-m", WORKER_MODULE]


@dataclass(slots=True)
class WorkerInvocationChannel:
    """
    Spawn-per-call worker channel.

    Parameters
    ----------
    timeout_ms:
        Upper bound for the whole exchange (spawn, request, first response line).
    exit_grace_ms:
        Time a worker gets to exit on its own after replying before it is killed.
    command:
        Worker command line. Tests substitute small scripts here.
    env:
        Environment for the worker; ``None`` inherits the caller's environment.
    """

    timeout_ms: int = DEFAULT_WORKER_TIMEOUT_MS
    exit_grace_ms: int = DEFAULT_WORKER_EXIT_GRACE_MS
    command: Sequence[str] = field(default_factory=default_worker_command)
    env: Optional[Mapping[str, str]] = None
    logger: LoggerAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = get_logger(__name__)

    async def invoke(
        self,
        workspace_dir: Path,
        connection_name: str,
        operation_name: str,
        *args: Any,
        connector_id: Optional[str] = None,
    ) -> None:
        """
        Run ``operation_name`` against ``connection_name`` and deliver the outcome.

        ``args`` may end with an error-first callback. On failure it receives the
        classified error as its only argument; on success it receives ``None``
        followed by the worker's callback arguments.
        """

        clean_args, callback = normalize_arguments(operation_name, *args)
        request = OperationRequest(
            workspace_directory=Path(workspace_dir),
            connection_name=connection_name,
            operation_name=operation_name,
            arguments=tuple(clean_args),
        )
        error: Optional[ClassifiedError] = None
        values: tuple[Any, ...] = ()
        try:
            response = await self.request(request)
        except ClassifiedError as exc:
            error = exc
        else:
            if response.error is not None:
                error = classify_error(response.error, connector_id)
            else:
                values = response.callback_args

        if error is not None:
            callback(error)
        else:
            callback(None, *values)

    async def request(self, request: OperationRequest) -> OperationResponse:
        """Exchange one request for one response, raising :class:`ClassifiedError` on transport failures."""

        log = bind_extra(self.logger, connection=request.connection_name, operation=request.operation_name)
        started = time.monotonic()
        process: Optional[subprocess.Popen] = None
        timed_out = False
        try:
            with anyio.fail_after(self.timeout_ms / 1000.0):
                process = await self._spawn(log)
                log = bind_extra(log, pid=process.pid)
                log.debug("Worker started")
                line = await anyio.to_thread.run_sync(_exchange, process, request.encode(), abandon_on_cancel=True)
        except TimeoutError as exc:
            timed_out = True
            log.warning("Worker did not respond in time", extra={"timeout_ms": self.timeout_ms})
            raise OperationTimeoutError(
                f"Worker did not respond within {self.timeout_ms}ms",
                timeout_ms=self.timeout_ms,
                origin="other",
            ) from exc
        except OSError as exc:
            log.error("Worker pipe failed", extra={"error": str(exc)})
            raise GenericOperationError(f"Lost contact with worker process: {exc}", origin="other") from exc
        finally:
            if process is not None:
                self._release(process, kill_now=timed_out, log=log)

        if line is None:
            log.error("Worker exited without responding", extra={"exit_code": process.returncode})
            raise GenericOperationError(
                f"Worker exited before sending a response (exit code {process.returncode})",
                code="ER_WORKER_EXITED",
                origin="other",
            )

        try:
            response = OperationResponse.decode(line)
        except ProtocolError as exc:
            log.error("Malformed worker response", extra={"error": str(exc)})
            raise GenericOperationError(str(exc), code="ER_WORKER_PROTOCOL", origin="other") from exc

        log.debug(
            "Worker responded",
            extra={"outcome": "error" if response.error else "ok", "duration": time.monotonic() - started},
        )
        return response

    async def _spawn(self, log: LoggerAdapter) -> subprocess.Popen:
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(BlockingIOError),
                wait=wait_exponential(multiplier=0.1, max=1),
                stop=stop_after_attempt(3),
                sleep=anyio.sleep,
                reraise=True,
            ):
                with attempt:
                    return subprocess.Popen(
                        list(self.command),
                        stdin=subprocess.PIPE,
                        stdout=subprocess.PIPE,
                        stderr=None,
                        env=dict(self.env) if self.env is not None else None,
                    )
        except OSError as exc:
            log.error("Failed to start worker", extra={"error": str(exc)})
            raise GenericOperationError(f"Failed to start worker process: {exc}", origin="other") from exc
        raise AssertionError("unreachable")  # pragma: no cover

    def _release(self, process: subprocess.Popen, *, kill_now: bool, log: LoggerAdapter) -> threading.Thread:
        """Hand the worker to a background reaper; returns the reaper thread."""

        if kill_now:
            log.debug("Killing worker")
            with contextlib.suppress(ProcessLookupError):
                process.kill()
        reaper = threading.Thread(
            target=reap_worker,
            args=(process, self.exit_grace_ms / 1000.0, log),
            name=f"worker-reaper-{process.pid}",
            daemon=True,
        )
        reaper.start()
        return reaper


def _exchange(process: subprocess.Popen, payload: bytes) -> Optional[bytes]:
    """Send the request and return the first response line, or ``None`` if stdout closed first."""

    assert process.stdin is not None and process.stdout is not None
    try:
        process.stdin.write(payload)
        process.stdin.close()
    except (BrokenPipeError, ValueError):
        # the worker died before reading; stdout tells the rest
        pass

    try:
        line = process.stdout.readline(MAX_RESPONSE_BYTES + 1)
    finally:
        process.stdout.close()
    if not line:
        process.wait()
        return None
    if len(line) > MAX_RESPONSE_BYTES:
        raise GenericOperationError(
            f"Worker response exceeded {MAX_RESPONSE_BYTES} bytes",
            code="ER_WORKER_PROTOCOL",
            origin="other",
        )
    return line


def reap_worker(process: subprocess.Popen, grace: float, log: Optional[LoggerAdapter] = None) -> int:
    """Wait up to ``grace`` seconds for ``process`` to exit, then kill it. Returns the exit code."""

    try:
        return process.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        if log is not None:
            log.debug("Killing worker after exit grace", extra={"pid": process.pid})
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        return process.wait()


__all__ = ["MAX_RESPONSE_BYTES", "WORKER_MODULE", "WorkerInvocationChannel", "default_worker_command", "reap_worker"]
