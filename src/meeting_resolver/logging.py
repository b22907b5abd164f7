"""Logging configuration for the meeting resolver."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from meeting_resolver.config import get_settings

_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.processors.add_log_level,
    structlog.processors.StackInfoRenderer(),
    structlog.dev.set_exc_info,
    structlog.processors.TimeStamper(fmt="iso"),
]


def setup_logging() -> None:
    """Configure structured logging through the standard library root logger."""
    settings = get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", level=log_level, handlers=[])
    root = logging.getLogger()
    root.setLevel(log_level)

    console_renderer = (
        structlog.dev.ConsoleRenderer(colors=True)
        if settings.is_development
        else structlog.processors.JSONRenderer()
    )
    console = logging.StreamHandler()
    console.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=console_renderer,
            foreign_pre_chain=_SHARED_PROCESSORS,
        )
    )
    root.addHandler(console)

    if settings.log_to_file:
        try:
            Path(settings.log_directory).mkdir(parents=True, exist_ok=True)
        except OSError:
            settings.log_to_file = False

    if settings.log_to_file:
        try:
            file_handler = RotatingFileHandler(
                settings.log_file_path,
                maxBytes=settings.log_file_max_bytes,
                backupCount=settings.log_file_backup_count,
                encoding="utf-8",
            )
        except OSError:
            file_handler = None
        if file_handler is not None:
            file_handler.setFormatter(
                structlog.stdlib.ProcessorFormatter(
                    processor=structlog.processors.JSONRenderer(),
                    foreign_pre_chain=_SHARED_PROCESSORS,
                )
            )
            root.addHandler(file_handler)

    # Reduce noise from HTTP and SDK clients
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("google_genai").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
