"""Logging configuration for lanesearch.

This module defines the logging infrastructure:
- Standard application logging with rotation
- Structured JSON logging for machine parsing
- Performance logging around lane reveals

Entry points should call ``configure_logging`` once at startup.
"""

import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, ensure_ascii=False, default=str)


@contextmanager
def log_performance(
    operation: str,
    logger: Optional[logging.Logger] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Iterator[Dict[str, Any]]:
    """Context manager for logging operation performance.

    Works around ``await`` expressions as well as plain code.  The yielded
    dict can be filled with extra fields that end up in structured logs.

    Args:
        operation: Name of the operation
        logger: Logger to use (default: root logger)
        metadata: Initial extra fields

    Example:
        with log_performance("reveal youtube", logger) as fields:
            outcome = await engine.reveal(...)
            fields["served"] = len(outcome.served)
    """
    if logger is None:
        logger = logging.getLogger()

    fields: Dict[str, Any] = dict(metadata or {})
    start_time = time.perf_counter()
    success = False
    try:
        yield fields
        success = True
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        fields.update(
            {
                "event_type": "performance",
                "operation": operation,
                "duration_ms": round(duration_ms, 2),
                "success": success,
            }
        )
        logger.info(
            "%s completed in %.2fms (success=%s)",
            operation,
            duration_ms,
            success,
            extra={"extra_fields": fields},
        )


def configure_logging(
    log_file: Optional[Path] = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    use_json: bool = False,
    console_output: bool = True,
    force: bool = False,
) -> None:
    """Configure root logging handlers with optional JSON formatting.

    Parameters
    ----------
    log_file: Path, optional
        If provided, logs will be written to this file with rotation.  The
        directory will be created if it does not exist.
    level: int
        Logging level (e.g. ``logging.INFO`` or ``logging.DEBUG``).
    max_bytes: int
        Maximum size of each log file before rotation.
    backup_count: int
        Number of rotated log files to keep.
    use_json: bool
        If True, use JSON structured logging format.
    console_output: bool
        If True, enable console output handler.
    force: bool
        If True, replace handlers already installed on the root logger.
    """
    root = logging.getLogger()
    if root.handlers:
        if not force:
            return
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()

    root.setLevel(level)

    if use_json:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    if console_output:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def level_from_name(name: str, default: int = logging.INFO) -> int:
    return LEVELS.get(str(name).upper(), default)
