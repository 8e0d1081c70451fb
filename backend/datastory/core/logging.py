"""
Structured logging configuration.

JSON lines for production, readable text for development. Every record
carries a correlation_id so one upload or generation can be followed
through the parser, profiler and LLM client.
"""
import os
import sys
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

# Attributes every LogRecord has; anything else was passed via `extra=`.
_RESERVED_ATTRS = frozenset((
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'pathname', 'process',
    'processName', 'relativeCreated', 'stack_info', 'thread', 'threadName',
    'exc_info', 'exc_text', 'message', 'correlation_id', 'taskName',
))


class CorrelationIdFilter(logging.Filter):
    """Ensure correlation_id is present on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "system"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line with the extra fields flattened in."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
            "correlation_id": getattr(record, "correlation_id", "system"),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            log_data[key] = value

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Readable text formatter for development."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, 'correlation_id'):
            record.correlation_id = 'system'
        return super().format(record)


def configure_logging(log_level: str = None) -> None:
    """
    Configure root logging.

    LOG_FORMAT selects 'json' or 'text' (default). The level comes from the
    argument, falling back to LOG_LEVEL.
    """
    log_format = os.getenv('LOG_FORMAT', 'text').lower()
    level_name = (log_level or os.getenv('LOG_LEVEL', 'INFO')).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(JSONFormatter() if log_format == 'json' else TextFormatter())
    root_logger.addHandler(handler)

    # Quiet chatty clients
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('groq').setLevel(logging.WARNING)

    if log_format == 'json':
        root_logger.info("Structured JSON logging enabled")
