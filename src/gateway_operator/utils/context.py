"""Per-pass context propagation: correlation IDs, trace identifiers and write tracking."""

from __future__ import annotations

import contextvars
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace

# Context variables for the reconciliation pass being executed
correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)
reconcile_key: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "reconcile_key", default=None
)
pass_writes: contextvars.ContextVar[list[str] | None] = contextvars.ContextVar(
    "pass_writes", default=None
)


def get_correlation_id() -> str | None:
    """Get the correlation ID from the current context."""
    return correlation_id.get()


@contextmanager
def reconcile_context(key: str, corr_id: str | None = None) -> Iterator[str]:
    """Bind a fresh correlation ID and the reconciled key for the duration of a pass.

    Args:
        key: Identity being reconciled, e.g. "Gateway/default/my-gateway"
        corr_id: Correlation ID to use instead of a generated one

    Yields:
        The correlation ID
    """
    corr_id = corr_id or uuid.uuid4().hex[:16]
    corr_token = correlation_id.set(corr_id)
    key_token = reconcile_key.set(key)
    try:
        yield corr_id
    finally:
        reconcile_key.reset(key_token)
        correlation_id.reset(corr_token)


def get_context_dict(additional: dict[str, Any] | None = None) -> dict[str, Any]:
    """Get a dictionary of context values for structured logs."""
    ctx: dict[str, Any] = {}

    corr_id = get_correlation_id()
    if corr_id:
        ctx["correlation_id"] = corr_id
    key = reconcile_key.get()
    if key:
        ctx["reconcile_key"] = key

    trace_ctx = propagate_trace_context()
    if trace_ctx:
        ctx.update(trace_ctx)

    if additional:
        ctx.update(additional)

    return ctx


def propagate_trace_context() -> dict[str, Any] | None:
    """Get the active OpenTelemetry trace identifiers, if a span is recording."""
    span = trace.get_current_span()
    if span and span.is_recording():
        span_context = span.get_span_context()
        if span_context.is_valid:
            return {
                "trace_id": format(span_context.trace_id, "032x"),
                "span_id": format(span_context.span_id, "016x"),
            }
    return None


@contextmanager
def track_writes() -> Iterator[list[str]]:
    """Collect the writes the object store performs until the block exits."""
    writes: list[str] = []
    token = pass_writes.set(writes)
    try:
        yield writes
    finally:
        pass_writes.reset(token)


def record_write(operation: str, kind: str, path: str) -> None:
    writes = pass_writes.get()
    if writes is not None:
        writes.append(f"{operation} {kind} {path}")
