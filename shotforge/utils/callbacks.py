"""Fire-and-forget delivery of caller-supplied event callbacks.

Orchestrator callbacks are observers: their return values are ignored and a
callback that raises must not break the run that emitted the event.
"""

from collections.abc import Callable
from typing import Any

from shotforge.utils.logging import get_logger

log = get_logger(__name__)


def fire(callback: Callable[..., Any] | None, *args: Any, event: str = "") -> None:
    """Invoke an optional callback, logging (not raising) its failures.

    Args:
        callback: Callback or None
        *args: Positional arguments for the callback
        event: Event name used in the failure log
    """
    if callback is None:
        return
    try:
        callback(*args)
    except Exception as e:
        log.error(
            "callback_failed",
            callback_event=event or getattr(callback, "__name__", "callback"),
            error_type=type(e).__name__,
            error_message=str(e),
        )
