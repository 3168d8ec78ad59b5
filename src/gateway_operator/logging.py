"""Structured logging configuration for the Gateway Operator."""

import json
import logging
import sys
from typing import Any

from .utils.context import get_context_dict


def setup_structured_logging(development_mode: bool = False) -> None:
    """Configure structured JSON logging."""
    logging.basicConfig(
        level=logging.DEBUG if development_mode else logging.INFO,
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # The kubernetes client logs every request body at DEBUG.
    logging.getLogger("kubernetes").setLevel(logging.WARNING)


def log_resource_event(
    logger: logging.Logger,
    controller: str,
    resource_kind: str,
    resource_name: str,
    namespace: str,
    uid: str,
    event: str,
    reason: str,
    message: str,
    level: int = logging.INFO,
    **kwargs: Any,
) -> None:
    """Log a structured resource event."""
    log_data = {
        "controller": controller,
        "resource": resource_kind,
        "name": resource_name,
        "namespace": namespace,
        "uid": uid,
        "event": event,
        "reason": reason,
        "message": message,
    }
    log_data.update(get_context_dict())
    log_data.update(sanitize_secrets(kwargs))
    logger.log(level, json.dumps(log_data, default=str))


def sanitize_secrets(log_data: dict[str, Any]) -> dict[str, Any]:
    """Remove secret fields from log data."""
    secret_fields = {"tls.key", "private_key", "ca_key", "token", "password"}
    sanitized = log_data.copy()
    for field in secret_fields:
        if field in sanitized:
            sanitized[field] = "***REDACTED***"
    return sanitized
