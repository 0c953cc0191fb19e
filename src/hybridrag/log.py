"""Logging setup: stdlib loggers rendered through rich."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_NOISY_LOGGERS = ("LiteLLM", "litellm", "httpx", "httpcore", "openai")


def configure_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Install a RichHandler on the ``hybridrag`` logger.

    Args:
        verbose: Log at DEBUG instead of WARNING.
        console: Console to write to (stderr by default).
    """
    level = logging.DEBUG if verbose else logging.WARNING
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    root = logging.getLogger("hybridrag")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
