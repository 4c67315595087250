"""Fire-and-log wrapper for side calls whose failure must not propagate."""

import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class BestEffortResult:
    """Outcome of a best-effort call. Callers may ignore it."""

    operation: str
    ok: bool
    value: Any = None
    error: str | None = None


def attempt(operation: str, func: Callable[..., Any], *args, **kwargs) -> BestEffortResult:
    """Run ``func`` and report failure as a value instead of raising.

    Failures are logged at WARNING with the traceback attached.
    """
    try:
        value = func(*args, **kwargs)
    except Exception as e:
        logger.warning("Best-effort %s failed: %s", operation, e, exc_info=True)
        return BestEffortResult(operation=operation, ok=False, error=str(e))
    return BestEffortResult(operation=operation, ok=True, value=value)
