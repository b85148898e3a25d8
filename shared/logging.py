"""
Structured JSON logging for the Chain RPC Gateway.

Per-request fields (request id, masked caller key) live in structlog's
context variables and are merged into every event logged while the request
is handled. Full API keys are redacted from event values before rendering.
"""

import logging
import re
import sys
import uuid
from typing import Any, Dict, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars

API_KEY_PATTERN = re.compile(r"\beth_[0-9a-f]{32}\b")


def _mask(match: "re.Match") -> str:
    key = match.group(0)
    return f"{key[:8]}...{key[-4:]}"


def redact_api_keys(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask anything shaped like a full API key in string values."""
    for name, value in event_dict.items():
        if isinstance(value, str) and "eth_" in value:
            event_dict[name] = API_KEY_PATTERN.sub(_mask, value)
    return event_dict


def _service_name_adder(service_name: str):
    def add_service(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return add_service


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured logging for a service."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _service_name_adder(service_name),
            redact_api_keys,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind the request id for the current request, generating one if absent."""
    request_id = request_id or str(uuid.uuid4())
    bind_contextvars(request_id=request_id)
    return request_id


def set_api_key_context(masked_key: Optional[str] = None):
    """Bind the caller's key. Only ever pass the masked form."""
    if masked_key:
        bind_contextvars(api_key=masked_key)


def clear_context():
    clear_contextvars()


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
