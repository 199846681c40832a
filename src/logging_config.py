"""JSON logging setup for the register.

:func:`configure_logging` installs a :class:`JsonFormatter` on a console
handler and a rotating file handler.  Modules log through
``logging.getLogger(__name__)`` and attach context with
``extra={"request_id": ..., "extra": {...}}``; the nested ``extra`` dict
is flattened into the JSON record.

Configuration comes from the arguments or, when they are omitted, from
``POS_LOG_DIR`` (default ``logs``) and ``POS_LOG_LEVEL`` (default
``INFO``).
"""

import json
import logging
import logging.handlers
import os
from datetime import datetime, UTC
from typing import Optional, Union

LOG_FILE_NAME = "pos_register.log"
MAX_LOG_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 3

_RESERVED_KEYS = ("timestamp", "level", "module", "message")


class JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "module": record.module,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None)
        if request_id is not None:
            log_record["request_id"] = request_id
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            for key, value in extra.items():
                # never let context overwrite the base fields
                if key not in _RESERVED_KEYS:
                    log_record[key] = value
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


def _resolve_level(level: Union[int, str, None]) -> int:
    if level is None:
        level = os.environ.get("POS_LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def configure_logging(log_dir: Optional[str] = None, level: Union[int, str, None] = None) -> None:
    """Configure the root logger with JSON console and rotating file output.

    Args:
        log_dir: Directory for ``pos_register.log``; created if missing.
        level: Level name or number for the root logger and both handlers.
    """
    log_dir = log_dir or os.environ.get("POS_LOG_DIR", "logs")
    level = _resolve_level(level)
    os.makedirs(log_dir, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = JsonFormatter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    root.addHandler(console_handler)

    file_handler = logging.handlers.RotatingFileHandler(
        filename=os.path.join(log_dir, LOG_FILE_NAME),
        maxBytes=MAX_LOG_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(level)
    root.addHandler(file_handler)
