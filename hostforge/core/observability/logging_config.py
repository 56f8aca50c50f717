"""
Logging configuration — one setup for the whole process.

The CLI group calls it once, before any command runs. Modules only do
``logger = logging.getLogger(__name__)``.

Console level, first match wins:

    --debug  >  --verbose  >  --quiet  >  HOSTFORGE_LOG_LEVEL  >  WARNING

A provisioning run can take half an hour and touch a machine you may
lose access to, so a full transcript is worth keeping: set
HOSTFORGE_LOG_FILE (and optionally HOSTFORGE_LOG_FILE_LEVEL=DEBUG) and the
file gets every probe and command while the terminal stays terse.
"""

from __future__ import annotations

import logging
import os
import sys

ENV_LOG_LEVEL = "HOSTFORGE_LOG_LEVEL"
ENV_LOG_FILE = "HOSTFORGE_LOG_FILE"
ENV_LOG_FILE_LEVEL = "HOSTFORGE_LOG_FILE_LEVEL"

# level → (format, datefmt); the step markers (✓ ✗ ⊘) read best bare
_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s %(message)s", "%H:%M:%S"),
    logging.WARNING: ("%(message)s", None),
}
_FILE_FORMAT = ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%Y-%m-%d %H:%M:%S")

# paramiko logs every packet exchange at DEBUG
_NOISY_LOGGERS = ("paramiko", "paramiko.transport", "urllib3")


def _parse_level(level: str | None) -> int:
    """Level name → numeric constant; anything unrecognised is WARNING."""
    numeric = getattr(logging, (level or "").upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING


def _console_handler(level: int) -> logging.Handler:
    key = max(k for k in _CONSOLE_FORMATS if k <= max(level, logging.DEBUG))
    fmt, datefmt = _CONSOLE_FORMATS[key]
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(*_FILE_FORMAT))
    return handler


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure the root logger.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional transcript file, appended to.
        log_file_level: Level for the transcript; defaults to ``level``.
        quiet_third_party: Hold paramiko and friends at WARNING unless
            the console is at DEBUG.
    """
    console_level = _parse_level(level)
    handlers = [_console_handler(console_level)]
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handlers.append(_file_handler(log_file, file_level))
        root_level = min(root_level, file_level)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    # A broken stderr must not take a half-finished run down with it
    logging.raiseExceptions = False


def resolve_level(debug: bool = False, verbose: bool = False, quiet: bool = False) -> str:
    """Pick the console level from CLI flags, then the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return os.environ.get(ENV_LOG_LEVEL, "WARNING")


def setup_from_env(level: str) -> None:
    """setup_logging() with the transcript options taken from the environment."""
    setup_logging(
        level=level,
        log_file=os.environ.get(ENV_LOG_FILE),
        log_file_level=os.environ.get(ENV_LOG_FILE_LEVEL),
    )
