"""Logger configuration for the ``reqforge`` namespace.

Engine code runs on many worker and dispatcher threads, so every record
carries the name of the thread that emitted it.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

_ROOT = "reqforge"
_TEXT_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s (%(threadName)s): %(message)s"


class _JsonFormatter(logging.Formatter):
    """Render each record as a single JSON line.

    Keys: timestamp (UTC, ISO 8601), level, logger, thread, message, and
    exception when the record carries a traceback.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(
    level: int = logging.INFO,
    *,
    json_format: bool = False,
) -> logging.Logger:
    """Attach a stderr handler to the ``reqforge`` logger.

    The handler is installed once. Later calls only change the level, so the
    CLI and embedding code can both call this without doubling output.

    Args:
        level: Threshold for the logger and its handler.
        json_format: Emit one JSON object per line instead of plain text.

    Returns:
        The ``reqforge`` logger.
    """
    root = logging.getLogger(_ROOT)
    root.setLevel(level)

    if root.handlers:
        for existing in root.handlers:
            existing.setLevel(level)
        return root

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)

    # Records stop here; the host application's root handlers never see them twice
    root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """Return ``reqforge.<name>``, e.g. ``get_logger("engine.worker")``."""
    return logging.getLogger(f"{_ROOT}.{name}")
