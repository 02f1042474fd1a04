"""Pipeline stage wrapper.

A stage is a named call whose result or failure is captured in a
StageResult, so the orchestrator decides explicitly which failures abort
the run and which stay isolated to one language.

Stage boundaries are logged as `EXPORT (<message>)`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger("glossexport.export")


def log_export(message: str, level: int = logging.INFO) -> None:
    """Emit one `EXPORT (...)` log line."""
    logger.log(level, "EXPORT (%s)", message)


@dataclass
class StageResult:
    """Value or error produced by one stage."""

    name: str
    value: Any = None
    error: Exception | None = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return the value, re-raising the captured error if there is one."""
        if self.error is not None:
            raise self.error
        return self.value


def run_stage(
    name: str,
    fn: Callable[..., Any],
    *args,
    catch: tuple[type[Exception], ...] = (Exception,),
    **kwargs,
) -> StageResult:
    """Run fn as a named stage.

    Only exceptions matching `catch` are captured; anything else
    propagates unchanged.
    """
    start = time.monotonic()
    try:
        value = fn(*args, **kwargs)
    except catch as e:
        elapsed = time.monotonic() - start
        log_export(f"{name} failed: {e}", logging.ERROR)
        return StageResult(name=name, error=e, elapsed=elapsed)

    elapsed = time.monotonic() - start
    logger.debug("Stage %s finished in %.3fs", name, elapsed)
    return StageResult(name=name, value=value, elapsed=elapsed)
