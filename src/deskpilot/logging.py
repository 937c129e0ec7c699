"""Logger setup for deskpilot.

All loggers hang off ``deskpilot``. Output goes to the configured log file
(or ``DESKPILOT_LOG``), otherwise to stderr when it is a terminal.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deskpilot.config.schema import LoggingConfig

TRACE = 5  # Wire frames and stream chunks
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("deskpilot")

# -v count -> level
_VERBOSITY = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

_QUIET_LIBRARIES = ("websockets", "httpx", "httpcore", "LiteLLM")

_handlers: list[logging.Handler] = []


class _LowercaseLevelFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective level: a verbosity count beats a level name; INFO otherwise."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _VERBOSITY[max(0, min(config.verbose, len(_VERBOSITY) - 1))]
    if config.level:
        level = logging.getLevelNamesMapping().get(config.level.upper())
        return level if level is not None else logging.INFO
    return logging.INFO


def _open_handler(path: str | None) -> logging.Handler | None:
    if path:
        try:
            return logging.FileHandler(os.path.expanduser(path), mode="a", encoding="utf-8")
        except OSError as e:
            if not sys.stderr.isatty():
                return None
            print(f"[deskpilot] Cannot write log file {path}: {e}", file=sys.stderr)
    if sys.stderr.isatty():
        return logging.StreamHandler(sys.stderr)
    return None


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Attach deskpilot's handler once; later calls do nothing."""
    if _handlers:
        return

    level = resolve_level(config)
    logger.setLevel(level)

    handler = _open_handler(config.file if config and config.file else os.environ.get("DESKPILOT_LOG"))
    if handler is not None:
        handler.setLevel(level)
        handler.setFormatter(_LowercaseLevelFormatter("%(asctime)s %(levelname)s: %(message)s", datefmt="%H:%M:%S"))
        logger.addHandler(handler)
    _handlers.append(handler or logging.NullHandler())

    if level > TRACE:
        for name in _QUIET_LIBRARIES:
            logging.getLogger(name).setLevel(logging.WARNING)


def reset_logging() -> None:
    """Detach and close the handler installed by ``setup_logging``."""
    while _handlers:
        handler = _handlers.pop()
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


def get_logger(name: str | None = None) -> logging.Logger:
    """The ``deskpilot`` logger, or its child ``name`` (e.g. "channel")."""
    return logger.getChild(name) if name else logger
