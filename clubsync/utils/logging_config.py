# clubsync/utils/logging_config.py
"""
Logging setup driven by the monitoring config classes.

``LOG_FORMAT=json`` emits one JSON object per line and carries any
``extra=`` fields attached by importer code; ``text`` keeps a readable
single-line format for development.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from flask.logging import default_handler

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RESERVED_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys() | {"message", "asctime"}
)

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JsonFormatter(logging.Formatter):
    """Emit one JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key, value in vars(record).items():
            if key in _RESERVED_RECORD_ATTRS or key.startswith("_"):
                continue
            log_entry[key] = value
        return json.dumps(log_entry, default=str)


def _build_formatter(log_format: str) -> logging.Formatter:
    if str(log_format).lower() == "json":
        return JsonFormatter()
    return logging.Formatter(TEXT_FORMAT)


def setup_logging(app):
    """Configure ``app.logger`` handlers from the Flask config."""
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = _build_formatter(app.config.get("LOG_FORMAT", "text"))

    logger = app.logger
    logger.removeHandler(default_handler)
    for handler in list(logger.handlers):
        if getattr(handler, "_clubsync_handler", False):
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)

    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(level)
        console_handler._clubsync_handler = True
        logger.addHandler(console_handler)

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "clubsync.log"),
            maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
            backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        file_handler._clubsync_handler = True
        logger.addHandler(file_handler)

    # Importer modules log through module-level loggers; route them alongside app.logger.
    importer_logger = logging.getLogger("clubsync")
    importer_logger.setLevel(level)
    importer_logger.handlers = [h for h in logger.handlers if getattr(h, "_clubsync_handler", False)]
    importer_logger.propagate = not importer_logger.handlers

    app.logger.debug("Logging configured", extra={"log_level": level_name})
    return logger
