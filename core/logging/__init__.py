# Structured logging with channel tagging
import sys
import logging
import structlog
from typing import Optional, Any, Dict

from core.config.settings import Settings
from .channels import LogChannel, get_channel_for_component, get_channel_level
from .correlation import CorrelationIdManager

# Global flag to prevent duplicate logging configuration
_logging_configured = False


def _add_correlation_id(logger, name, event_dict):
    """Add correlation ID to log events if available"""
    correlation_id = CorrelationIdManager.get_correlation_id()
    if correlation_id:
        event_dict.setdefault("correlation_id", correlation_id)
        correlation_context = CorrelationIdManager.get_correlation_context()
        if correlation_context:
            event_dict.setdefault("correlation_context", correlation_context)
    return event_dict


def _standard_context_processor(settings: Settings):
    def add_standard_context(logger, name, event_dict):
        """Bind standard context fields once from settings."""
        event_dict.setdefault("env", settings.environment.value)
        event_dict.setdefault("service", settings.app_name)
        event_dict.setdefault("version", settings.version)
        return event_dict
    return add_standard_context


def _redaction_processor(redact_keys):
    keys_to_redact = {key.lower() for key in redact_keys}

    def _redact(obj):
        if isinstance(obj, dict):
            out = {}
            for k, v in obj.items():
                if isinstance(k, str) and k.lower() in keys_to_redact:
                    out[k] = "[REDACTED]"
                else:
                    out[k] = _redact(v)
            return out
        if isinstance(obj, list):
            return [_redact(v) for v in obj]
        return obj

    def redact_sensitive(logger, name, event_dict):
        """Redact sensitive fields from event dict recursively."""
        return _redact(event_dict)
    return redact_sensitive


def configure_logging(settings: Settings) -> None:
    """Configure stdlib logging and structlog from settings."""
    global _logging_configured

    if _logging_configured:
        return

    shared_processors = [
        _add_correlation_id,
        _standard_context_processor(settings),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        _redaction_processor(settings.logging.redact_keys),
    ]

    if settings.logging.console_json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(settings.logging.level.upper())

    for channel in LogChannel:
        logging.getLogger(f"channel.{channel.value}").setLevel(
            get_channel_level(channel, settings.logging).upper()
        )

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    _logging_configured = True


def get_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    logger = structlog.get_logger(name)
    if component:
        channel = get_channel_for_component(component)
        logger = logger.bind(component=component, channel=channel.value)
    return logger


def get_channel_logger(name: str, channel: LogChannel) -> structlog.BoundLogger:
    """Get a logger for a specific channel."""
    return structlog.get_logger(f"channel.{channel.value}.{name}").bind(channel=channel.value)


def get_trading_logger_safe(name: str) -> structlog.BoundLogger:
    """Get a trading logger safely."""
    return get_channel_logger(name, LogChannel.TRADING)


def get_error_logger_safe(name: str) -> structlog.BoundLogger:
    """Get an error logger safely."""
    return get_channel_logger(name, LogChannel.ERROR)


def get_performance_logger_safe(name: str) -> structlog.BoundLogger:
    """Get a performance logger safely."""
    return get_channel_logger(name, LogChannel.PERFORMANCE)


def get_database_logger_safe(name: str) -> structlog.BoundLogger:
    """Get a database logger safely."""
    return get_channel_logger(name, LogChannel.DATABASE)


def bind_user_context(logger: structlog.BoundLogger, user_id: str,
                      trigger: Optional[str] = None) -> structlog.BoundLogger:
    """Bind run context consistently to a logger."""
    ctx: Dict[str, Any] = {"user_id": user_id}
    if trigger:
        ctx["trigger"] = trigger
    return logger.bind(**ctx)


__all__ = [
    "LogChannel",
    "configure_logging",
    "get_logger",
    "get_channel_logger",
    "get_trading_logger_safe",
    "get_error_logger_safe",
    "get_performance_logger_safe",
    "get_database_logger_safe",
    "bind_user_context",
]
