"""
Stocker Logging Module

Structured logging with correlation IDs, Rich console output for interactive
use and JSON output for unattended runs.
"""

from __future__ import annotations

import logging
import os
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler

from .config import LogLevel

# Context variable for correlation ID tracking
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# Rich console for log output; command results go to stdout separately
console = Console(stderr=True)


def get_correlation_id() -> str:
    """Get the current correlation ID or generate a new one."""
    current_id = correlation_id.get()
    if not current_id:
        current_id = str(uuid.uuid4())[:8]
        correlation_id.set(current_id)
    return current_id


def set_correlation_id(cid: Optional[str] = None) -> str:
    """Set a new correlation ID and return it."""
    if cid is None:
        cid = str(uuid.uuid4())[:8]
    correlation_id.set(cid)
    return cid


def add_correlation_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add correlation ID to all log entries."""
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


def add_process_info(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add process information to log entries."""
    event_dict["pid"] = os.getpid()
    event_dict["component"] = "stocker"
    return event_dict


def configure_logging(
    log_level: LogLevel = LogLevel.INFO,
    use_json: bool = False,
    use_rich: bool = True
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: The minimum log level to output
        use_json: Whether to use JSON formatting (for unattended runs)
        use_rich: Whether to use Rich formatting (for interactive use)
    """
    level = getattr(logging, log_level.value)

    # Suppress noisy third-party logging
    logging.getLogger("yfinance").setLevel(logging.CRITICAL)
    logging.getLogger("peewee").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        add_correlation_id,
        add_process_info,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if use_json:
        renderer = structlog.processors.JSONRenderer()
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))
    elif use_rich:
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    if use_rich and not use_json:
        handler: logging.Handler = RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
    else:
        handler = logging.StreamHandler(sys.stderr)

    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger with the given name.

    Args:
        name: Logger name, typically __name__

    Returns:
        Configured structured logger
    """
    return structlog.get_logger(name)


class Timer:
    """Context manager for timing operations with automatic logging."""

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        **context: Any
    ):
        self.logger = logger
        self.operation = operation
        self.context = context
        self.start_time: Optional[float] = None
        self.duration: Optional[float] = None

    def __enter__(self) -> Timer:
        self.start_time = time.perf_counter()
        self.logger.debug(
            f"Starting {self.operation}",
            operation=self.operation,
            **self.context
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return

        self.duration = time.perf_counter() - self.start_time
        if exc_type is None:
            self.logger.debug(
                f"Completed {self.operation}",
                operation=self.operation,
                duration_seconds=round(self.duration, 3),
                **self.context
            )
        else:
            self.logger.warning(
                f"Failed {self.operation}",
                operation=self.operation,
                duration_seconds=round(self.duration, 3),
                error_type=exc_type.__name__,
                error_message=str(exc_val) if exc_val else None,
                **self.context
            )
