"""Logger factory and console logging setup."""

from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

_LOGGER_PREFIX = "tax_rules"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the tax_rules namespace."""
    if name == _LOGGER_PREFIX or name.startswith(_LOGGER_PREFIX + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    level: str = "WARNING", console: Optional[Console] = None
) -> logging.Logger:
    """
    Route tax_rules logs to a rich console handler.

    Meant for the CLI. Library code only calls ``get_logger`` and leaves
    handler setup to the application. Calling this twice replaces the
    previously installed handler.
    """
    root = logging.getLogger(_LOGGER_PREFIX)
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(level.upper())
    root.propagate = False
    return root


def reset_logging() -> None:
    """Remove installed handlers and restore propagation."""
    root = logging.getLogger(_LOGGER_PREFIX)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.NOTSET)
    root.propagate = True
