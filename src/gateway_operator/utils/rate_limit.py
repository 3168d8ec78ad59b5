"""Rate limiting utilities for Kubernetes API calls."""

from __future__ import annotations

import os
import threading
import time
from functools import wraps
from typing import Any, Callable, TypeVar

from kubernetes.client.exceptions import ApiException

from .. import metrics

_F = TypeVar("_F", bound=Callable[..., Any])

# Rate limit configuration
_K8S_RATE_LIMIT_PER_SECOND = float(os.getenv("K8S_RATE_LIMIT_PER_SECOND", "20.0"))


class RateLimiter:
    """Spaces calls at least ``1 / per_second`` seconds apart across threads."""

    def __init__(self, per_second: float):
        self.min_interval = 1.0 / per_second if per_second > 0 else 0.0
        self._last_call = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        with self._lock:
            elapsed = time.monotonic() - self._last_call
            if elapsed < self.min_interval:
                time.sleep(self.min_interval - elapsed)
            self._last_call = time.monotonic()


_k8s_limiter = RateLimiter(_K8S_RATE_LIMIT_PER_SECOND)


def rate_limit_k8s(func: _F) -> _F:
    """Decorator to rate limit Kubernetes API calls."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        _k8s_limiter.wait()
        return func(*args, **kwargs)

    return wrapper  # type: ignore


def is_rate_limit_error(e: Exception) -> bool:
    """Kubernetes API rate limit errors return 429, or 503 mentioning a rate limit."""
    if not isinstance(e, ApiException):
        return False
    return e.status == 429 or (e.status == 503 and "rate limit" in str(e).lower())


def handle_rate_limit_error(e: Exception, attempt: int, max_retries: int = 3) -> bool:
    """Sleep with exponential backoff if ``e`` is a rate limit error.

    Args:
        e: Exception raised by the API call
        attempt: Zero-based number of retries already made
        max_retries: Maximum number of retries

    Returns:
        True if the caller should retry the call
    """
    if not is_rate_limit_error(e) or attempt >= max_retries:
        return False
    metrics.rate_limit_hits_total.labels(api_type="k8s").inc()
    time.sleep(2 ** attempt)
    return True
