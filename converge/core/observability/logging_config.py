"""
Logging setup for the ``converge`` entrypoint.

Called once from main.py; modules log through
``logging.getLogger(__name__)``. Console output goes to stderr so that
``--json`` output on stdout stays parseable.

Console level: ``--debug`` / ``--verbose`` / ``--quiet``, else
``CONVERGE_LOG_LEVEL``, else WARNING. ``CONVERGE_LOG_FILE`` adds a file
handler whose level defaults to the console's and can be raised or
lowered with ``CONVERGE_LOG_FILE_LEVEL``.
"""

from __future__ import annotations

import logging
import os
import sys

# ── Formats ─────────────────────────────────────────────────────

# Thread names tell pool workers apart when parallelism > 1.
_DEBUG_FORMAT = ("%(asctime)s %(levelname)-5s %(threadName)s %(name)s:%(lineno)d: %(message)s", "%H:%M:%S")
_INFO_FORMAT = ("%(asctime)s [%(name)s] %(message)s", "%H:%M:%S")
_PLAIN_FORMAT = ("%(message)s", None)
_FILE_FORMAT = (
    "%(asctime)s %(levelname)-5s %(threadName)s %(name)s:%(lineno)d: %(message)s",
    "%Y-%m-%d %H:%M:%S",
)


def resolve_level(*, debug: bool = False, verbose: bool = False, quiet: bool = False) -> str:
    """Console level name from CLI flags, falling back to the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return os.environ.get("CONVERGE_LOG_LEVEL", "WARNING")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Replace the root logger's handlers with converge's console (and file) handlers."""
    console_level = _parse_level(level)
    handlers = [_handler(logging.StreamHandler(sys.stderr), console_level, _console_format(console_level))]

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handlers.append(_handler(logging.FileHandler(log_file, encoding="utf-8"), file_level, _FILE_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(min(h.level for h in handlers))


def _console_format(level: int) -> tuple[str, str | None]:
    if level <= logging.DEBUG:
        return _DEBUG_FORMAT
    if level <= logging.INFO:
        return _INFO_FORMAT
    return _PLAIN_FORMAT


def _handler(handler: logging.Handler, level: int, fmt: tuple[str, str | None]) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt[0], datefmt=fmt[1]))
    return handler


def _parse_level(level: str | None) -> int:
    """Level name to its numeric value; anything unknown means WARNING."""
    numeric = getattr(logging, level.upper(), None) if level else None
    return numeric if isinstance(numeric, int) else logging.WARNING
