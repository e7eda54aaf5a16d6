"""Rich-based logging for wildcheck.

Diagnostics go to stderr so that stdout carries nothing but results.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

_console = Console(stderr=True)
_root_configured = False


def configure_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    verbose: bool = False,
) -> None:
    """Configure the ``wildcheck`` root logger.

    Args:
        level: Base log level (e.g. ``logging.DEBUG``).
        log_file: Optional filesystem path for a persistent log file.
        verbose: When ``True``, forces ``DEBUG`` level.
    """
    global _root_configured

    if verbose:
        level = logging.DEBUG

    root = logging.getLogger("wildcheck")
    root.setLevel(level)
    # reconfiguring replaces handlers; release open log files
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = False

    rich_handler = RichHandler(
        console=_console,
        rich_tracebacks=True,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
    )
    rich_handler.setLevel(level)
    root.addHandler(rich_handler)

    if log_file:
        file_path = Path(log_file)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(file_path, encoding="utf-8")
        file_handler.setLevel(level)
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    _root_configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a named child logger under the ``wildcheck`` hierarchy.

    Configures the root logger with defaults on first use.

    Args:
        name: Logger name, typically ``__name__`` of the calling module.

    Returns:
        :class:`logging.Logger` instance.
    """
    if not _root_configured:
        configure_logging()

    if name.startswith("wildcheck.") or name == "wildcheck":
        return logging.getLogger(name)
    return logging.getLogger(f"wildcheck.{name}")
