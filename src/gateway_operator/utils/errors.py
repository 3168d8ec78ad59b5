"""Operator exceptions and error sanitization utilities."""

from __future__ import annotations

import re
from typing import Any


class OperatorError(Exception):
    """Base class for errors raised by the operator."""


class StoreError(OperatorError):
    """An object store call failed for a reason other than not-found or conflict."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class NotFoundError(StoreError):
    """The requested object does not exist."""

    def __init__(self, message: str):
        super().__init__(message, status=404)


class ConflictError(StoreError):
    """A write lost an optimistic-concurrency race (stale resourceVersion)."""

    def __init__(self, message: str):
        super().__init__(message, status=409)


class AlreadyExistsError(ConflictError):
    """A create collided with an existing object of the same name."""


class AmbiguousChildrenError(OperatorError):
    """More than one managed child was found where exactly one is expected."""

    def __init__(self, kind: str, count: int, owner: str):
        super().__init__(f"found {count} {kind} objects for {owner}, expected at most 1")
        self.kind = kind
        self.count = count
        self.owner = owner


class MissingDependencyError(OperatorError):
    """An object the pass depends on does not exist yet."""


class UnsupportedGatewayError(OperatorError):
    """The Gateway is not handled by this controller; it is ignored, not failed."""


class InvalidParametersRefError(OperatorError):
    """A GatewayClass parametersRef cannot be resolved; retrying will not help."""


class UnsupportedImageError(OperatorError):
    """A ControlPlane image or version is not supported."""


class UnsupportedDatabaseModeError(OperatorError):
    """A DataPlane requests a database backend other than DB-less."""


# Errors that are surfaced once and not retried with backoff.
FATAL_ERRORS = (InvalidParametersRefError, UnsupportedImageError, UnsupportedDatabaseModeError)


# Patterns that might expose sensitive information
SENSITIVE_PATTERNS = [
    r"(-----BEGIN [A-Z ]*PRIVATE KEY-----)[\s\S]*?-----END [A-Z ]*PRIVATE KEY-----",
    r"(bearer)[:\s]+[A-Za-z0-9\-_\.=]+",
    r"(authorization)[:\s]+[^\s,;\)]+",
]

# Fields to redact completely
SENSITIVE_FIELDS = {
    "tls.key",
    "private_key",
    "password",
    "token",
    "credentials",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove sensitive information.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with sensitive data redacted
    """
    sanitized = message

    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, r"\1 [REDACTED]", sanitized, flags=re.IGNORECASE)

    for field in SENSITIVE_FIELDS:
        sanitized = re.sub(
            rf"{re.escape(field)}[:=\s]+([^\s,;\)]+)",
            f"{field}: [REDACTED]",
            sanitized,
            flags=re.IGNORECASE,
        )

    return sanitized


def sanitize_exception(error: Exception) -> str:
    """Sanitize exception message."""
    return sanitize_error_message(str(error))


def sanitize_dict(data: dict[str, Any], sensitive_keys: set[str] | None = None) -> dict[str, Any]:
    """Sanitize dictionary by redacting sensitive fields.

    Args:
        data: Dictionary to sanitize
        sensitive_keys: Additional keys to redact (merged with SENSITIVE_FIELDS)

    Returns:
        Sanitized dictionary with sensitive values redacted
    """
    all_sensitive = SENSITIVE_FIELDS | (sensitive_keys or set())
    sanitized: dict[str, Any] = {}

    for key, value in data.items():
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in all_sensitive):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_dict(value, sensitive_keys)
        elif isinstance(value, str):
            sanitized[key] = sanitize_error_message(value)
        else:
            sanitized[key] = value

    return sanitized
