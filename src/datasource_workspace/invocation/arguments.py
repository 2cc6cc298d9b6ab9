"""Argument normalisation for operations invoked by name."""

from __future__ import annotations

from typing import Any, Callable, List, Tuple

from ..core.logging import get_logger

Callback = Callable[..., Any]

LOGGER = get_logger(__name__)


def _default_callback(operation_name: str) -> Callback:
    def _log_error(error: Any = None, *_: Any) -> None:
        if error is not None:
            LOGGER.error("Operation failed without a callback", extra={"operation": operation_name, "error": str(error)})

    return _log_error


def normalize_arguments(operation_name: str, *args: Any) -> Tuple[List[Any], Callback]:
    """
    Split ``(arg, ..., [callback])`` into clean positional arguments and a callback.

    A trailing callable is taken as the completion callback; without one a
    callback that only logs errors is supplied. ``None`` values are dropped so
    callers can leave optional positional parameters (discovery options, a
    model name) unset without every operation special-casing them.
    """

    values = list(args)
    if values and callable(values[-1]):
        callback = values.pop()
    else:
        callback = _default_callback(operation_name)
    return [value for value in values if value is not None], callback


__all__ = ["Callback", "normalize_arguments"]
