import logging
import sys
from typing import Any

import structlog

# Driver chatter that drowns out callback logs at INFO.
NOISY_LOGGERS = ("pymongo", "httpx", "httpcore", "arq.jobs")


def configure_logging(debug: bool = False) -> None:
    """JSON lines in production, console rendering with DEBUG=true."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    renderer = structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_request_id(request_id: str) -> None:
    structlog.contextvars.bind_contextvars(request_id=request_id)


def bind_webhook_context(**values: Any) -> None:
    """Tag every following log line of this task with the callback's identifiers."""
    structlog.contextvars.bind_contextvars(**{k: v for k, v in values.items() if v is not None})
