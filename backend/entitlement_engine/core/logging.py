"""structlog setup for the webhook service.

Every line is one JSON object in production (ConsoleRenderer when debug is
on). Stdlib loggers (uvicorn, httpx, SQLAlchemy, botocore) go through the
same ProcessorFormatter, so their output is JSON too. Each entry carries:
- service name
- correlation_id of the delivery that produced it (request or worker job)
- profile fields (email) and secrets masked
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id

# Keys whose values never reach the log stream
REDACTED_KEYS = frozenset({"email", "authorization", "webhook_signature", "whop_webhook_secret", "whop_api_key"})


def add_correlation_id(logger, method, event_dict):
    """Fill correlation_id from the request context.

    Worker jobs bind their own value via structlog.contextvars; that one wins.
    """
    if "correlation_id" in event_dict:
        return event_dict
    cid = correlation_id.get(None)
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def redact_sensitive_fields(logger, method, event_dict):
    for key in REDACTED_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "[redacted]"
    return event_dict


def _service_name_adder(service_name: str):
    def add_service_name(logger, method, event_dict):
        event_dict.setdefault("service", service_name)
        return event_dict

    return add_service_name


def configure_structlog(
    log_level: str = "INFO",
    json_logs: bool = True,
    service_name: str = "tierlist-webhooks",
) -> None:
    """Configure structlog and route stdlib logging through it.

    Must run before modules that log at import time: loggers are cached on
    first use.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _service_name_adder(service_name),
        add_correlation_id,
        redact_sensitive_fields,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    formatter_processors = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if json_logs:
        formatter_processors.append(structlog.processors.format_exc_info)
    formatter_processors.append(renderer)

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structlog": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": formatter_processors,
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "structlog",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["stdout"], "level": log_level},
        "loggers": {
            "uvicorn.access": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
            "botocore": {"level": "WARNING"},
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    })

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
