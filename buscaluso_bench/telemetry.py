from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict

from rich.console import Console
from rich.logging import RichHandler

log = logging.getLogger("buscaluso_bench.telemetry")

_LEVELS = {0: logging.WARNING, 1: logging.INFO}


def verbosity_level(verbose: int) -> int:
    """Map a -v count to a logging level (0 warnings, 1 info, 2+ debug)."""
    return _LEVELS.get(verbose, logging.DEBUG if verbose > 1 else logging.WARNING)


def configure_logging(verbose: int = 0) -> None:
    """Send package logs to stderr at the level chosen by `verbose`."""
    logger = logging.getLogger("buscaluso_bench")
    logger.setLevel(verbosity_level(verbose))
    for handler in list(logger.handlers):
        if getattr(handler, "_buscaluso_bench", False):
            logger.removeHandler(handler)
    handler = RichHandler(console=Console(stderr=True), show_path=False, markup=False)
    handler._buscaluso_bench = True  # type: ignore[attr-defined]
    logger.addHandler(handler)


@contextmanager
def timed(stage: str, ctx: Dict[str, Any] | None = None):
    """Context manager that logs elapsed ms for the given stage."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        payload = {"stage": stage, "ms": elapsed_ms}
        if ctx:
            payload.update(ctx)
        log.info("timing %s %dms", stage, elapsed_ms, extra=payload)
