"""
Logging configuration — central setup for the CLI.

Called once at startup by main.py.  Every module that does
``logger = logging.getLogger(__name__)`` inherits this config.

Levels are resolved in precedence order:
    CLI flag  >  HCV_LOG_LEVEL env var  >  WARNING (default)

Optional file output via HCV_LOG_FILE / HCV_LOG_FILE_LEVEL env vars.

Several hosts converge at once in worker threads, so every record is
tagged with the target it concerns.  The orchestrator enters
``target_context(host.name)`` for the duration of a run; handlers
expose it as ``%(target)s`` (``-`` outside a run) and as
``%(target_prefix)s`` (``[web-1] `` or empty).
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
import sys
from collections.abc import Iterator

_current_target: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "hcv_target", default=None
)

# ── Format strings ──────────────────────────────────────────────

# WARNING level: the message, prefixed by its target during a run
_FMT_MINIMAL = "%(target_prefix)s%(message)s"

# INFO level: timestamped with target and module
_FMT_VERBOSE = "%(asctime)s %(target_prefix)s[%(name)s] %(message)s"
_DATEFMT_VERBOSE = "%H:%M:%S"

# DEBUG level: full diagnostic with file:line
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(target)s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"

# File output: always full detail
_FMT_FILE = "%(asctime)s %(levelname)-5s %(target)s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"


@contextlib.contextmanager
def target_context(target: str) -> Iterator[None]:
    """Tag every record logged inside the block (this thread) with ``target``."""
    token = _current_target.set(target)
    try:
        yield
    finally:
        _current_target.reset(token)


def current_target() -> str | None:
    return _current_target.get()


class TargetFilter(logging.Filter):
    """Adds ``target`` and ``target_prefix`` attributes to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        target = _current_target.get()
        record.target = target or "-"
        record.target_prefix = f"[{target}] " if target else ""
        return True


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure Python logging for the entire process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a log file.
        log_file_level: Optional separate level for the log file.
            Defaults to the same as ``level``.
    """
    numeric_level = _parse_level(level)
    target_filter = TargetFilter()

    # ── Console handler (stderr) ────────────────────────────────
    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_DEBUG
    elif numeric_level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT_VERBOSE
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    console.addFilter(target_filter)

    # ── Root logger ─────────────────────────────────────────────
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    # Effective root level = minimum of console and file levels
    effective_level = numeric_level

    # ── File handler (optional) ─────────────────────────────────
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        fh.addFilter(target_filter)
        root.addHandler(fh)

    root.setLevel(effective_level)

    # Don't propagate exceptions from logging itself
    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Convert a level name string to its numeric constant."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
