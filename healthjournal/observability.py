"""Structured logging setup shared by the services, adapters and CLI."""

import logging
import sys

import structlog

from healthjournal.config import LoggingConfig


def configure_structlog(config: LoggingConfig | None = None) -> None:
    """Configure structlog only; stdlib handlers are left to the host application.

    JSON lines in production, a readable console renderer in development.
    """
    config = config or LoggingConfig()

    renderer: structlog.types.Processor
    if config.format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Full setup for a process that owns logging, such as the CLI.

    Routes the stdlib root logger to stderr at the configured level, then
    configures structlog on top of it.
    """
    config = config or LoggingConfig()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, config.level),
        force=True,
    )
    configure_structlog(config)
