"""Structured logging configuration for Knowledgeverse."""

import json
import logging
import sys
import time
import uuid
from typing import Callable
from contextvars import ContextVar
from functools import wraps

# Context variable for request tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class StructuredFormatter(logging.Formatter):
    """JSON-structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(''),
        }

        # Add extra fields
        if hasattr(record, 'duration_ms'):
            log_data['duration_ms'] = record.duration_ms
        if hasattr(record, 'tool_name'):
            log_data['tool_name'] = record.tool_name
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """
    Install a single stderr handler on the root logger.

    stdout is reserved for the MCP stdio transport, so logs always go to stderr.
    """
    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def with_request_id(func: Callable) -> Callable:
    """Decorator to add request ID to tool calls."""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        request_id = str(uuid.uuid4())[:8]
        token = request_id_var.set(request_id)
        start = time.perf_counter()

        try:
            return await func(*args, **kwargs)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            logger = logging.getLogger(func.__module__)
            logger.info(
                "Tool completed",
                extra={'duration_ms': round(duration_ms, 2), 'tool_name': func.__name__}
            )
            request_id_var.reset(token)

    return wrapper
