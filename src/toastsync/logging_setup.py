"""Logging configuration for the CLI."""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

_DEFAULT_LEVEL = os.environ.get("TOASTSYNC_LOG_LEVEL", "WARNING")


def configure_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Route library logging through rich; verbose lowers the level to INFO."""
    level: str | int = logging.INFO if verbose else _DEFAULT_LEVEL
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(level)

    # google client libraries are chatty at INFO
    logging.getLogger("google").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
