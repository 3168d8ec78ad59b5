"""Base handler class with common functionality for the reconcilers."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

import kopf

from .. import metrics
from ..config import OperatorConfig
from ..kinds import ResourceKind
from ..logging import log_resource_event
from ..store.base import ObjectStore
from ..tracing import set_span_status, trace_span
from ..utils.context import reconcile_context, track_writes
from ..utils.errors import FATAL_ERRORS, ConflictError, NotFoundError, sanitize_exception
from ..utils.events import EventRecorder

if TYPE_CHECKING:
    from .finalizers import FinalizerLifecycleManager

CONTROLLER = "gateway-operator"


@dataclass(frozen=True)
class Result:
    """Outcome of a reconciliation pass.

    ``requeue_after`` is the delay in seconds before the same identity is
    reconciled again. None means wait for the next watch event.
    """

    requeue_after: float | None = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


DONE = Result()


class BaseHandler:
    """Base class for the reconcilers with logging, metrics and error policy."""

    finalizers: FinalizerLifecycleManager

    def __init__(
        self,
        kind: ResourceKind,
        store: ObjectStore,
        config: OperatorConfig,
        events: EventRecorder | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize base handler.

        Args:
            kind: The reconciled resource kind (Gateway or ControlPlane)
            store: Object store used for every read and write
            config: Operator configuration
            events: Event recorder, kopf-backed by default
            clock: Source of the current time, used for deletion grace periods
        """
        self.kind = kind
        self.store = store
        self.config = config
        self.events = events or EventRecorder()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logging.getLogger(__name__)

    def reconcile(self, namespace: str, name: str) -> Result:
        raise NotImplementedError

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    def _get_resource_context(self, meta: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": meta.get("name", "unknown"),
            "namespace": meta.get("namespace", ""),
            "uid": meta.get("uid", "unknown"),
        }

    def _log(
        self, level: int, meta: dict[str, Any], message: str, event: str, reason: str, **kwargs: Any
    ) -> None:
        if not self.logger.isEnabledFor(level):
            return
        ctx = self._get_resource_context(meta)
        log_resource_event(
            self.logger,
            controller=CONTROLLER,
            resource_kind=self.kind.kind,
            resource_name=ctx["name"],
            namespace=ctx["namespace"],
            uid=ctx["uid"],
            event=event,
            reason=reason,
            message=message,
            level=level,
            **kwargs,
        )

    def log_debug(
        self, meta: dict[str, Any], message: str, event: str = "debug", reason: str = "Debug", **kwargs: Any
    ) -> None:
        self._log(logging.DEBUG, meta, message, event, reason, **kwargs)

    def log_info(
        self, meta: dict[str, Any], message: str, event: str = "info", reason: str = "Info", **kwargs: Any
    ) -> None:
        """Log an info-level structured log message.

        Args:
            meta: Resource metadata
            message: Log message
            event: Event type (default: "info")
            reason: Reason for the event (default: "Info")
            **kwargs: Additional fields to include in the log
        """
        self._log(logging.INFO, meta, message, event, reason, **kwargs)

    def log_warning(
        self, meta: dict[str, Any], message: str, event: str = "warning", reason: str = "Warning", **kwargs: Any
    ) -> None:
        self._log(logging.WARNING, meta, message, event, reason, **kwargs)

    def log_error(
        self,
        meta: dict[str, Any],
        message: str,
        error: Exception | None = None,
        event: str = "error",
        reason: str = "Error",
        **kwargs: Any,
    ) -> None:
        """Log an error-level structured log message.

        Args:
            meta: Resource metadata
            message: Log message
            error: Optional exception to include sanitized error details
            event: Event type (default: "error")
            reason: Reason for the event (default: "Error")
            **kwargs: Additional fields to include in the log
        """
        if error is not None:
            kwargs["error"] = sanitize_exception(error)
            kwargs["error_type"] = type(error).__name__
        self._log(logging.ERROR, meta, message, event, reason, **kwargs)

    # -------------------------------------------------------------------------
    # Pass execution
    # -------------------------------------------------------------------------

    def object_reference(self, namespace: str, name: str) -> dict[str, Any]:
        """Minimal body for posting events about an identity that may be gone."""
        return {
            "apiVersion": self.kind.api_version,
            "kind": self.kind.kind,
            "metadata": {"name": name, "namespace": namespace},
        }

    def reconcile_with_metrics(
        self,
        namespace: str,
        name: str,
        reconcile_fn: Callable[[], Result],
    ) -> Result:
        """Run one pass with metrics, tracing and the error policy.

        - Write conflicts end the pass with a short fixed requeue.
        - Fatal validation errors are logged and reported once, not retried.
        - Everything else is re-raised for handle() to turn into a kopf retry.
        """
        meta = {"name": name, "namespace": namespace}
        start_time = time.time()
        with reconcile_context(f"{self.kind.kind}/{namespace}/{name}"), trace_span(
            f"reconcile.{self.kind.kind.lower()}",
            kind=self.kind.kind,
            attributes={"resource.name": name, "resource.namespace": namespace},
        ):
            try:
                result = reconcile_fn()
                metrics.reconcile_total.labels(kind=self.kind.kind, result="success").inc()
                if result.requeue:
                    metrics.requeue_total.labels(kind=self.kind.kind, reason="requeue_after").inc()
                set_span_status(True)
                return result
            except ConflictError as e:
                self.log_debug(meta, "Write conflict, requeueing", reason="Conflict", error=sanitize_exception(e))
                metrics.reconcile_total.labels(kind=self.kind.kind, result="conflict").inc()
                metrics.requeue_total.labels(kind=self.kind.kind, reason="conflict").inc()
                return Result(requeue_after=self.config.requeue_without_backoff)
            except FATAL_ERRORS as e:
                sanitized_error = sanitize_exception(e)
                self.log_error(meta, "Validation failed", error=e, reason="ValidationFailed")
                self.events.validate_failed(self.object_reference(namespace, name), sanitized_error)
                metrics.error_total.labels(kind=self.kind.kind, error_type=type(e).__name__).inc()
                metrics.reconcile_total.labels(kind=self.kind.kind, result="fatal").inc()
                set_span_status(False, sanitized_error)
                return DONE
            except Exception as e:
                sanitized_error = sanitize_exception(e)
                self.log_error(meta, "Reconciliation failed", error=e, reason="ReconciliationFailed")
                self.events.reconcile_failed(
                    self.object_reference(namespace, name), f"Reconciliation failed: {sanitized_error}"
                )
                metrics.error_total.labels(kind=self.kind.kind, error_type=type(e).__name__).inc()
                metrics.reconcile_total.labels(kind=self.kind.kind, result="error").inc()
                raise
            finally:
                duration = time.time() - start_time
                metrics.reconcile_duration_seconds.labels(kind=self.kind.kind).observe(duration)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def record_resource_status(self, ready: bool) -> None:
        metrics.resource_status_total.labels(kind=self.kind.kind, status="ready" if ready else "not_ready").inc()

    # -------------------------------------------------------------------------
    # kopf entry point
    # -------------------------------------------------------------------------

    def retry_delay(self, retry: int) -> float:
        """Capped exponential backoff for the ``retry``-th consecutive failure."""
        return min(self.config.max_retry_delay, self.config.min_retry_delay * self.config.retry_backoff**retry)

    def cleanup_pending(self, namespace: str, name: str) -> list[str]:
        """Cleanup finalizers still present on the object, [] once it is gone."""
        try:
            obj = self.store.get(self.kind, name, namespace)
        except NotFoundError:
            return []
        return self.finalizers.pending(obj)

    def handle(self, namespace: str, name: str, retry: int = 0, deleting: bool = False) -> None:
        """Run passes for a kopf handler call until one of them writes nothing.

        Each pass still performs at most one mutation. Failures and requeue
        requests are raised as kopf.TemporaryError so kopf schedules the next
        attempt. On deletion the call keeps failing until the cleanup
        finalizers are gone, which holds kopf's own finalizer in place.

        Args:
            namespace: Namespace of the intent resource
            name: Name of the intent resource
            retry: kopf's count of consecutive failed attempts
            deleting: True when called from the deletion handler
        """
        meta = {"name": name, "namespace": namespace}
        for _ in range(self.config.max_passes):
            with track_writes() as writes:
                try:
                    result = self.reconcile(namespace, name)
                except Exception as e:
                    delay = self.retry_delay(retry)
                    metrics.requeue_total.labels(kind=self.kind.kind, reason="error").inc()
                    raise kopf.TemporaryError(f"Reconciliation failed: {sanitize_exception(e)}", delay=delay) from e
            if result.requeue:
                raise kopf.TemporaryError(f"Requeue in {result.requeue_after}s", delay=result.requeue_after)
            if not writes:
                break
            self.log_debug(meta, f"Pass wrote {writes[0]}, running another", reason="Write")
        else:
            metrics.requeue_total.labels(kind=self.kind.kind, reason="pass_limit").inc()
            raise kopf.TemporaryError("Changes still pending", delay=self.config.requeue_without_backoff)

        if deleting:
            pending = self.cleanup_pending(namespace, name)
            if pending:
                raise kopf.TemporaryError(
                    f"Waiting for cleanup finalizers {', '.join(pending)}", delay=self.config.min_retry_delay
                )
