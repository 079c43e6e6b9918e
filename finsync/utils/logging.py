"""Structured logging configuration using structlog."""

import logging
import re
import sys
from typing import Any, Optional

import structlog
from pydantic import SecretStr
from structlog.typing import EventDict, Processor

from finsync.config.settings import AppConfig, settings

REDACTED = "***"

# Event keys whose values are OAuth tokens, API keys or client secrets
SECRET_KEYS = frozenset(
    {
        "access_token",
        "api_key",
        "authorization",
        "client_secret",
        "id_token",
        "password",
        "refresh_token",
        "token",
    }
)

# Gemini and Google endpoints accept the API key or token as a query parameter
_SECRET_QUERY_PARAM = re.compile(r"([?&](?:key|access_token)=)[^&\s\"']+")

NOISY_LOGGERS = {
    # Logs every discovery-cache miss at WARNING
    "googleapiclient.discovery_cache": logging.ERROR,
    "google_auth_httplib2": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}


def add_sync_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Move the sync run id to the front of the event for easier grepping."""
    sync_id = event_dict.pop("sync_id", None)
    if sync_id:
        return {"sync_id": sync_id, **event_dict}
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credentials before the event is rendered."""
    for key, value in event_dict.items():
        if key.lower() in SECRET_KEYS and value is not None:
            event_dict[key] = REDACTED
        elif isinstance(value, SecretStr):
            event_dict[key] = REDACTED
        elif isinstance(value, str) and "=" in value:
            event_dict[key] = _SECRET_QUERY_PARAM.sub(rf"\1{REDACTED}", value)
    return event_dict


def configure_logging(config: Optional[AppConfig] = None) -> None:
    """Configure structured logging."""
    config = config or settings.app

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_sync_id,
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
    ]

    if config.log_format == "json":
        processors: list[Processor] = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, config.log_level),
    )

    # HTTP client request logs carry URLs and headers outside redact_secrets
    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)
