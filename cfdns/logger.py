"""
cfdns/logger.py

Responsibility: Configures the process-wide logging pipeline and formats
durations for log messages.
Does NOT: decide what gets logged — every module logs through its own
logging.getLogger(__name__).
"""

from __future__ import annotations

import logging
import sys

_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are only interesting when debugging
_NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler")


def configure_logging(verbose: bool = False) -> None:
    """
    Installs a single stderr handler on the root logger.

    Args:
        verbose: Start at DEBUG instead of INFO.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
    root.addHandler(handler)
    set_verbose(verbose)


def set_verbose(verbose: bool) -> None:
    """
    Switches between DEBUG and INFO. Re-applied after every config reload.

    Args:
        verbose: True for DEBUG.
    """
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.INFO)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)


def format_duration(seconds: float) -> str:
    """
    Formats a duration compactly for log messages.

    Examples: "850ns", "12.50µs", "250.00ms", "3.21s", "1m5s", "2h0m7s".

    Args:
        seconds: The duration in seconds.

    Returns:
        The formatted duration.
    """
    if seconds < 1e-6:
        return f"{round(seconds * 1e9)}ns"
    if seconds < 1e-3:
        return f"{seconds * 1e6:.2f}µs"
    if seconds < 1:
        return f"{seconds * 1e3:.2f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"

    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    return f"{minutes}m{secs}s"
