# Structured logging with channel tagging
import sys
import logging
import structlog
from typing import Optional

from core.config.settings import Settings
from .channels import LogChannel, get_channel_for_component
from .correlation import CorrelationIdManager, add_correlation_context

# Global flag to prevent duplicate logging configuration
_logging_configured = False


def configure_logging(settings: Settings) -> None:
    """Configure structlog on top of the standard library root logger."""
    global _logging_configured

    # Prevent duplicate configuration
    if _logging_configured:
        return

    level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_context,
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.logging.json_format
        else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from external libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    _logging_configured = True


def get_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance, tagged with the component's channel."""
    channel = get_channel_for_component(component or name)
    return structlog.get_logger(name, channel=channel.value)


def get_channel_logger(name: str, channel: LogChannel) -> structlog.BoundLogger:
    # Initial values, not bind(): the proxy stays lazy until configure_logging has run
    return structlog.get_logger(name, channel=channel.value)


def get_trading_logger_safe(name: str) -> structlog.BoundLogger:
    return get_channel_logger(name, LogChannel.TRADING)


def get_api_logger_safe(name: str) -> structlog.BoundLogger:
    return get_channel_logger(name, LogChannel.API)


def get_database_logger_safe(name: str) -> structlog.BoundLogger:
    return get_channel_logger(name, LogChannel.DATABASE)


def get_performance_logger_safe(name: str) -> structlog.BoundLogger:
    return get_channel_logger(name, LogChannel.PERFORMANCE)


def get_error_logger_safe(name: str) -> structlog.BoundLogger:
    return get_channel_logger(name, LogChannel.ERROR)


__all__ = [
    "configure_logging",
    "get_logger",
    "get_channel_logger",
    "get_trading_logger_safe",
    "get_api_logger_safe",
    "get_database_logger_safe",
    "get_performance_logger_safe",
    "get_error_logger_safe",
    "CorrelationIdManager",
    "LogChannel",
]
