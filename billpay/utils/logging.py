"""Structured logging configuration using structlog.

Every entry carries ``service`` and ``environment``. Work on a single
purchase runs inside ``bind_transaction(code)`` so that gateway calls,
lock warnings and settlement outcomes all carry ``transaction_code``.
"""

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

SERVICE_NAME = "billpay-storefront"

# Gateway credentials must never reach the log stream
REDACTED_KEYS = frozenset({"rqid", "password", "indotel_password", "authorization"})


def add_service(environment: str) -> Processor:
    """Build a processor stamping the service name and deployment environment."""

    def processor(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("environment", environment)
        return event_dict

    return processor


def redact_credentials(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def bind_transaction(code: str) -> AbstractContextManager[Any]:
    """Attach ``transaction_code`` to every log entry emitted in this context."""
    return structlog.contextvars.bound_contextvars(transaction_code=code)


def build_processors(
    log_format: Literal["json", "console"] = "json",
    environment: str = "development",
) -> list[Processor]:
    renderer: Processor = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    return [
        structlog.contextvars.merge_contextvars,
        add_service(environment),
        redact_credentials,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        renderer,
    ]


def setup_logging(
    log_level: str = "INFO",
    log_format: Literal["json", "console"] = "json",
    environment: str = "development",
) -> None:
    """Configure structlog and route stdlib logging to stdout.

    ``"json"`` is meant for staging/production log shipping, ``"console"``
    for local development.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=build_processors(log_format, environment),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    # Third-party chatter
    for name in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> Any:
    """Get a structlog logger."""
    return structlog.get_logger(name)
