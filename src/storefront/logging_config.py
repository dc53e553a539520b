"""Configure application logging using the Python standard library.

This module defines a function that sets up a root logger with both
console and rotating file handlers.  Logs are formatted as JSON for
structured logging and include useful context fields (timestamp,
level, message, module, state, user_email, and extra).  The console
handler only shows warnings so the interactive screen stays readable.
"""

import json
import logging
import logging.handlers
import os
from datetime import datetime, UTC


class JsonFormatter(logging.Formatter):
    """Format log records as JSON strings."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "module": record.module,
            "message": record.getMessage(),
        }
        # Context fields injected by callers through ``extra``
        if hasattr(record, "state"):
            log_record["state"] = getattr(record, "state")
        if hasattr(record, "user_email"):
            log_record["user_email"] = getattr(record, "user_email")
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            # Merge extra dict into top‑level (avoid nested 'extra')
            log_record.update(extra)
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


def configure_logging(
    log_dir: str = "logs",
    level: int = logging.INFO,
    console_level: int = logging.WARNING,
) -> None:
    """Configure root logger with JSON formatting and rotating file handler.

    Args:
        log_dir: Directory where log files are written.  The directory
            will be created if it does not exist.
        level: Logging level for the root logger and the log file.
        console_level: Minimum level echoed to stderr.
    """
    os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger()
    logger.setLevel(level)
    # Remove any default handlers (e.g. from basicConfig)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    formatter = JsonFormatter()
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(max(level, console_level))
    logger.addHandler(console_handler)
    file_handler = logging.handlers.RotatingFileHandler(
        filename=os.path.join(log_dir, "storefront.log"),
        maxBytes=5 * 1024 * 1024,  # 5 MB per log file
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(level)
    logger.addHandler(file_handler)
