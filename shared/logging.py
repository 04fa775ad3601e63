"""
Structured logging for the phones marketplace API.

Every event is rendered as one JSON line carrying the service, the component
(``marketplace.cache.proxy`` -> ``cache.proxy``) and the correlation fields
of the request being served: ``request_id`` and, once authenticated,
``partner_id``.
"""

import sys
import uuid
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

import structlog

# Correlation fields of the request handled by the current task
_request_context: ContextVar[Dict[str, str]] = ContextVar("request_context", default={})

# Libraries whose INFO output duplicates our own request log
NOISY_LOGGERS = ("uvicorn.access", "asyncio")


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structlog and the stdlib root logger for a service."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_component,
            add_request_context,
            structlog.processors.JSONRenderer(sort_keys=True)
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def add_component(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Split ``<service>.<component>`` logger names into two fields."""
    service, _, component = event_dict.get("logger", "").partition(".")
    if component:
        event_dict["service"] = service
        event_dict["component"] = component
    return event_dict


def add_request_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Copy the correlation fields of the current request onto the event."""
    for key, value in _request_context.get().items():
        event_dict.setdefault(key, value)
    return event_dict


@contextmanager
def request_context(request_id: Optional[str] = None) -> Iterator[str]:
    """Bind a request id (generated when absent) for the enclosed block."""
    request_id = request_id or str(uuid.uuid4())
    token = _request_context.set({"request_id": request_id})
    try:
        yield request_id
    finally:
        _request_context.reset(token)


def bind_partner(partner_uuid: str) -> None:
    """Attach the authenticated partner to the current request context."""
    _request_context.set({**_request_context.get(), "partner_id": partner_uuid})


def current_request_id() -> Optional[str]:
    return _request_context.get().get("request_id")


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger, named ``marketplace.<component>`` by convention."""
    return structlog.get_logger(name)
