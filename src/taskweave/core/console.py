"""Console output and logging configuration.

Provides Rich-based console output and logging setup:
    - console: Main Rich console for stdout (tables, panels)
    - stderr_console: Rich console for log records
    - setup_logging(): Configure logging with Rich handler and per-module levels
    - get_logger(): Get a named logger instance
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from rich.console import Console
from rich.logging import RichHandler

console = Console()
stderr_console = Console(stderr=True)


def _normalize_level(level: str | int) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return int(level)


def setup_logging(
    level: str | int = logging.INFO,
    verbose: bool = False,
    module_levels: Mapping[str, str | int] | None = None,
) -> logging.Logger:
    """Configure logging with a Rich handler and return the app logger.

    ``module_levels`` maps logger names (``taskweave.swarm``, ``taskweave.healing``,
    ...) to levels, so one subsystem can be traced while the rest stays at
    ``level``. With ``verbose`` every taskweave logger runs at DEBUG and the
    overrides are ignored.
    """
    numeric_level = logging.DEBUG if verbose else _normalize_level(level)

    handler = RichHandler(
        console=stderr_console,
        markup=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(numeric_level)
    root.addHandler(handler)

    logger = logging.getLogger("taskweave")
    logger.handlers.clear()
    logger.setLevel(numeric_level)

    for name, module_level in (module_levels or {}).items():
        module_logger = logging.getLogger(name)
        module_logger.setLevel(logging.NOTSET if verbose else _normalize_level(module_level))

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or "taskweave")
