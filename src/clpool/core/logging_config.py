"""
JSON log output for the pool engine.

Pool and registry records carry their payload through ``extra``; the
formatter lifts those fields to the top level of each JSON line and stamps
the service, environment and call site.

    from clpool.core.logging_config import setup_logging

    setup_logging(log_file="/var/log/clpool/engine.json", level="DEBUG")
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pythonjsonlogger import jsonlogger

DEFAULT_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Emits one JSON object per record, tagged with service and environment."""

    def __init__(
        self,
        fmt: str = DEFAULT_FORMAT,
        timestamp: bool = True,
        environment: Optional[str] = None,
        service_name: str = "clpool",
    ):
        super().__init__(fmt=fmt)
        self.timestamp = timestamp
        self.environment = environment or "development"
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if self.timestamp and not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        if not log_record.get("level"):
            log_record["level"] = record.levelname.lower()

        log_record["environment"] = self.environment
        log_record["service"] = self.service_name
        log_record["source"] = {
            "function": record.funcName,
            "module": record.module,
            "line": record.lineno,
        }


def _file_handler(log_file: str, max_bytes: int, backup_count: int) -> logging.Handler:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(filename=log_file, maxBytes=max_bytes, backupCount=backup_count)


def setup_logging(
    name: str = "clpool",
    log_file: Optional[str] = None,
    level: str = "INFO",
    environment: str = "development",
    enable_console: bool = True,
    enable_file: bool = True,
    max_bytes: int = 100 * 1024 * 1024,  # 100MB
    backup_count: int = 10,
) -> logging.Logger:
    """
    Point the ``name`` logger at JSON handlers, replacing any it already has.

    Console output goes to stderr so command output on stdout stays
    machine-readable. The file handler rotates at ``max_bytes``; a path that
    cannot be opened is reported on the remaining handlers and skipped.
    """
    numeric_level = getattr(logging, level.upper())
    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)
    logger.handlers = []

    formatter = CustomJsonFormatter(environment=environment, service_name=name.split(".")[0])

    handlers: List[logging.Handler] = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stderr))

    file_error: Optional[OSError] = None
    if enable_file and log_file:
        try:
            handlers.append(_file_handler(log_file, max_bytes, backup_count))
        except OSError as exc:
            file_error = exc

    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if file_error is not None:
        logger.warning(
            "Could not open log file %s: %s",
            log_file,
            file_error,
            extra={"event": "logging.file_handler_failed"},
        )

    return logger
