"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""Logging infrastructure with contextual data and redaction.

Loggers are built explicitly and handed to the components that need them.
Nothing here swaps the logger class or the record factory for the whole
process, so two pipelines with different log settings can run side by side.
"""

import json
import logging
import os
import re
import sys
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from re import Pattern
from typing import Any

from rich.logging import RichHandler

from resultsync.core.config import LoggingConfig

ROOT_LOGGER_NAME = "resultsync"


class LogRedactor:
    """
    Redacts sensitive information from log messages.
    """

    def __init__(self) -> None:
        """
        Initialize the log redactor with patterns for sensitive information.

        Sets up regex patterns to detect and redact api keys, passwords and
        bearer tokens.
        """
        self.patterns: dict[str, Pattern] = {
            "api_key": re.compile(
                r'(api[_-]?key|token)["\']?\s*[:=]\s*["\']?([^"\'&\s]{8,})', re.IGNORECASE
            ),
            "password": re.compile(
                r'(password|passwd|secret)["\']?\s*[:=]\s*["\']?([^"\'&\s]+)', re.IGNORECASE
            ),
            "bearer_token": re.compile(r"(Bearer)\s+([^\"'&\s]{8,})", re.IGNORECASE),
        }

    def redact(self, message: str) -> str:
        """
        Redact sensitive information from the message.
        """
        if not isinstance(message, str):
            return message

        for field, pattern in self.patterns.items():
            if field == "bearer_token":
                message = pattern.sub(r"\1 [REDACTED]", message)
            else:
                # Keep the key, redact the value
                message = pattern.sub(r"\1: [REDACTED]", message)
        return message


class RedactingFilter(logging.Filter):
    """Filter that rewrites record messages through a LogRedactor."""

    def __init__(self, redactor: LogRedactor | None = None) -> None:
        super().__init__()
        self.redactor = redactor or LogRedactor()

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redactor.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs log records as JSON.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if getattr(record, "context_data", None):
            log_data["context"] = record.context_data

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(log_data, default=str)


class RichContextFormatter(logging.Formatter):
    """
    Formatter for Rich console output with context data.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        context = getattr(record, "context_data", None)
        if context:
            context_str = " ".join(f"[{k}={v}]" for k, v in context.items())
            message = f"{message} {context_str}"

        return message


def create_logger(
    name: str = ROOT_LOGGER_NAME,
    config: LoggingConfig | None = None,
) -> logging.Logger:
    """
    Build a logger with its own handlers.

    The returned logger does not propagate to the root logger, so its output is
    governed only by ``config``. Calling this twice with the same name replaces
    the handlers installed by the first call.

    Args:
        name: Logger name, normally under the ``resultsync`` namespace
        config: Logging settings, defaults to ``LoggingConfig()``

    Returns:
        The configured logger
    """
    config = config or LoggingConfig()
    level = config.get_log_level_int()
    handlers: list[logging.Handler] = []

    if config.json_format:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(JSONFormatter())
        handlers.append(console_handler)
    elif config.use_rich:
        rich_handler = RichHandler(rich_tracebacks=True, markup=False, show_time=True)
        rich_handler.setFormatter(RichContextFormatter("%(message)s"))
        handlers.append(rich_handler)
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        handlers.append(console_handler)

    if config.log_file:
        os.makedirs(os.path.dirname(os.path.abspath(config.log_file)), exist_ok=True)
        file_handler = logging.FileHandler(config.log_file)
        if config.json_format:
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
            )
        handlers.append(file_handler)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        if config.redact_sensitive:
            handler.addFilter(RedactingFilter())
        logger.addHandler(handler)

    logger.debug(f"Logging configured with level {logging.getLevelName(level)}")
    return logger


def get_logger(name: str, parent: logging.Logger | None = None) -> logging.Logger:
    """
    Get a child logger for a component.

    Args:
        name: Component name, e.g. ``"parsers"``
        parent: Injected parent logger; defaults to the ``resultsync`` logger

    Returns:
        A logger named ``<parent>.<name>``
    """
    if parent is None:
        parent = logging.getLogger(ROOT_LOGGER_NAME)
    return parent.getChild(name)


@contextmanager
def log_operation(
    logger: logging.Logger,
    operation_name: str,
    level: int = logging.INFO,
    context: dict[str, Any] | None = None,
) -> Any:
    """
    Context manager for logging operations with timing and context tracking.

    Args:
        logger: The logger instance to use
        operation_name: Name of the operation being performed
        level: Log level to use
        context: Additional context data to include in the logs

    Raises:
        Exception: Re-raises any exception that occurs within the context
    """
    start_time = time.time()
    context = dict(context or {})
    context["operation_id"] = str(uuid.uuid4())[:8]

    logger.log(level, f"Starting {operation_name}", extra={"context_data": context})

    try:
        yield
    except Exception as e:
        duration = time.time() - start_time
        error_context = {
            **context,
            "error_type": type(e).__name__,
            "error": str(e),
            "duration": f"{duration:.2f}s",
        }
        logger.error(
            f"Failed {operation_name} after {duration:.2f}s",
            extra={"context_data": error_context},
        )
        raise
    else:
        duration = time.time() - start_time
        logger.log(
            level,
            f"Completed {operation_name} in {duration:.2f}s",
            extra={"context_data": context},
        )
