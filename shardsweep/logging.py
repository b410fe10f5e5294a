"""
Logging setup for shardsweep.

All harness output goes through standard ``logging`` loggers rendered by a
rich handler on one shared console, so log lines and the final failure
report interleave cleanly on the terminal.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

# Shared console for log lines and reports
console = Console(stderr=True)


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure the root logger with a rich handler.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)

    Returns:
        The configured root logger
    """
    root = logging.getLogger()
    root.handlers.clear()

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(numeric_level)

    handler = RichHandler(
        console=console,
        show_path=False,
        log_time_format="%Y-%m-%dT%H:%M:%S.%f",
        markup=False,
    )
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter("%(name)s | %(message)s"))
    root.addHandler(handler)

    # Suppress per-request chatter from the HTTP client
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
