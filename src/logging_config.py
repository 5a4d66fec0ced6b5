"""Configure application logging using the Python standard library.

Sets up the root logger with a console handler and a rotating file
handler.  Records are formatted as JSON and carry the context fields the
marketplace attaches through ``extra``: ``request_id`` (order or task id),
``user_id`` and a free-form ``extra`` dict that is merged into the top
level of the record.
"""

import json
import logging
import logging.handlers
import os
from datetime import datetime, timezone

LOG_FILE_NAME = "farm_to_door.log"


class JsonFormatter(logging.Formatter):
    """Format log records as JSON strings."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.module,
            "message": record.getMessage(),
        }
        if hasattr(record, "request_id"):
            log_record["request_id"] = getattr(record, "request_id")
        if hasattr(record, "user_id"):
            log_record["user_id"] = getattr(record, "user_id")
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            # Merge into the top level; never nest under "extra"
            for key, value in extra.items():
                log_record.setdefault(key, value)
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


def configure_logging(log_dir: str = "logs", level: int = logging.INFO) -> None:
    """Configure root logger with JSON formatting and rotating file handler.

    Calling it again replaces the handlers installed by a previous call.

    Args:
        log_dir: Directory where log files are written.  The directory
            will be created if it does not exist.
        level: Logging level for the root logger.
    """
    os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger()
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    formatter = JsonFormatter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    file_handler = logging.handlers.RotatingFileHandler(
        filename=os.path.join(log_dir, LOG_FILE_NAME),
        maxBytes=5 * 1024 * 1024,  # 5 MB per log file
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(level)
    logger.addHandler(file_handler)
