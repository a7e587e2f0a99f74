"""
Logging utility module for shardstream.

Provides JSON-structured logging with a poll-cycle id that ties together
every log line emitted during one poll cycle.
"""

import json
import logging
import uuid
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from contextvars import ContextVar

# Context variable for the id of the poll cycle being run
_poll_cycle_id: ContextVar[Optional[str]] = ContextVar('poll_cycle_id', default=None)

# Attributes every LogRecord has; anything else came in through ``extra=``
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord('', logging.INFO, '', 0, '', None, None))
) | {'message', 'asctime'}


def get_poll_cycle_id() -> Optional[str]:
    """Get the current poll cycle id from context."""
    return _poll_cycle_id.get()


def set_poll_cycle_id(cycle_id: Optional[str] = None) -> str:
    """Set the poll cycle id in context.

    Args:
        cycle_id: Optional cycle id. If None, generates a new UUID.

    Returns:
        The cycle id that was set
    """
    if cycle_id is None:
        cycle_id = str(uuid.uuid4())
    _poll_cycle_id.set(cycle_id)
    return cycle_id


def clear_poll_cycle_id():
    """Clear the poll cycle id from context."""
    _poll_cycle_id.set(None)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including fields passed via ``extra``."""
        log_data: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        cycle_id = get_poll_cycle_id()
        if cycle_id:
            log_data['poll_cycle_id'] = cycle_id

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and not key.startswith('_'):
                log_data[key] = value

        return json.dumps(log_data, default=str)


def get_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Get a JSON logger.

    Args:
        name: Logger name (typically __name__ or the package name)
        level: Logging level (default: INFO)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid adding handlers multiple times
    if logger.handlers:
        return logger

    logger.setLevel(level)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())

    logger.addHandler(handler)
    logger.propagate = False

    return logger


def configure_logging(level: str = "INFO", json_output: bool = True) -> logging.Logger:
    """Configure the ``shardstream`` package logger.

    Args:
        level: Level name (DEBUG, INFO, ...)
        json_output: Emit JSON lines; plain text otherwise

    Returns:
        The package logger
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    if json_output:
        return get_logger("shardstream", numeric_level)

    logger = logging.getLogger("shardstream")
    logger.setLevel(numeric_level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(handler)
    return logger


class PollCycleContext:
    """Context manager that tags log lines with a poll cycle id."""

    def __init__(self, cycle_id: Optional[str] = None):
        self.cycle_id = cycle_id
        self._previous_id: Optional[str] = None

    def __enter__(self) -> str:
        self._previous_id = get_poll_cycle_id()
        return set_poll_cycle_id(self.cycle_id)

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._previous_id is not None:
            set_poll_cycle_id(self._previous_id)
        else:
            clear_poll_cycle_id()
