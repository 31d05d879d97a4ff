"""Logging for beepboop.

Everything logs under the ``beepboop`` logger. Records go to a file
(``logging.file`` or ``BEEP_BOOP_LOG``) or, failing that, to stderr when it is
a terminal. Nothing is ever written to stdout, which belongs to the MCP stdio
transport.

Level names are the ones BEEP_BOOP_LOG_LEVEL accepts: error, warn, info,
debug, plus trace for per-poll and per-attempt detail.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from beepboop.config.schema import LoggingConfig

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LEVEL_NAMES: dict[str, int] = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

# -v count from the CLI, clamped to the last entry
VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, logging.DEBUG, TRACE)

DEFAULT_LEVEL = logging.INFO
LOG_FILE_ENV = "BEEP_BOOP_LOG"

logger = logging.getLogger("beepboop")

_OWNED = "_beepboop_owned"


class _CoordinationFormatter(logging.Formatter):
    """``2024-01-15T10:30:00 info coordination: message``"""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(component)s: %(message)s", "%Y-%m-%dT%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        prefix = logger.name + "."
        record.component = record.name[len(prefix):] if record.name.startswith(prefix) else "main"
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Numeric level for `config`.

    A verbosity count wins over a level name. Unknown names fall back to info.
    """
    if config is None:
        return DEFAULT_LEVEL
    if config.verbose is not None:
        index = min(max(config.verbose, 0), len(VERBOSITY_LEVELS) - 1)
        return VERBOSITY_LEVELS[index]
    if config.level:
        return LEVEL_NAMES.get(config.level.strip().lower(), DEFAULT_LEVEL)
    return DEFAULT_LEVEL


def _open_handler(config: LoggingConfig | None) -> tuple[logging.Handler, str | None]:
    path = (config.file if config else None) or os.environ.get(LOG_FILE_ENV)
    if path:
        try:
            return logging.FileHandler(os.path.expanduser(path), mode="a", encoding="utf-8"), None
        except OSError as e:
            failure = f"Could not open log file {path}: {e}"
        if sys.stderr.isatty():
            return logging.StreamHandler(sys.stderr), failure
        return logging.NullHandler(), failure
    if sys.stderr.isatty():
        return logging.StreamHandler(sys.stderr), None
    return logging.NullHandler(), None


def setup_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """Attach the beepboop handler and set the level.

    Safe to call more than once: later calls only adjust the level.

    Args:
        config: Level, verbosity and file settings; None means info to stderr.

    Returns:
        The ``beepboop`` logger.
    """
    level = resolve_level(config)
    logger.setLevel(level)

    owned = [h for h in logger.handlers if getattr(h, _OWNED, False)]
    if owned:
        for handler in owned:
            handler.setLevel(level)
        return logger

    handler, failure = _open_handler(config)
    setattr(handler, _OWNED, True)
    handler.setLevel(level)
    handler.setFormatter(_CoordinationFormatter())
    logger.addHandler(handler)
    if failure:
        logger.warning(failure)
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """The ``beepboop`` logger, or its child `name` (e.g. "coordination")."""
    if name:
        return logger.getChild(name)
    return logger
