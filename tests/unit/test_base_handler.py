"""Tests for base handler functionality."""

from __future__ import annotations

from unittest.mock import MagicMock, Mock, patch

import kopf
import pytest
from conftest import make_gateway

from gateway_operator.config import OperatorConfig
from gateway_operator.constants import FINALIZER_CLEANUP_DATA_PLANES
from gateway_operator.handlers.base import DONE, BaseHandler, Result
from gateway_operator.handlers.finalizers import CleanupStage, FinalizerLifecycleManager
from gateway_operator.kinds import CONTROL_PLANE, DATA_PLANE, GATEWAY
from gateway_operator.utils.errors import ConflictError, InvalidParametersRefError


def make_handler(events=None):
    return BaseHandler(GATEWAY, MagicMock(), OperatorConfig(), events=events or MagicMock())


class TestResult:
    """Test cases for the pass Result."""

    def test_done_does_not_requeue(self):
        """Test that DONE waits for the next watch event."""
        assert not DONE.requeue

    def test_requeue_after(self):
        """Test that a delay requests a requeue, including a zero one."""
        assert Result(requeue_after=5.0).requeue
        assert Result(requeue_after=0).requeue


class TestBaseHandler:
    """Test cases for BaseHandler class."""

    def test_init(self):
        """Test handler initialization."""
        handler = make_handler()
        assert handler.kind is GATEWAY
        assert handler.logger is not None
        assert handler.clock().tzinfo is not None

    def test_object_reference(self):
        """Test the minimal body used for events about an identity."""
        handler = BaseHandler(CONTROL_PLANE, MagicMock(), OperatorConfig())
        reference = handler.object_reference("default", "cp")

        assert reference == {
            "apiVersion": CONTROL_PLANE.api_version,
            "kind": "ControlPlane",
            "metadata": {"name": "cp", "namespace": "default"},
        }

    def test_reconcile_not_implemented(self):
        """Test that the base class has no pass of its own."""
        with pytest.raises(NotImplementedError):
            make_handler().reconcile("default", "gw")

    @patch("gateway_operator.handlers.base.metrics")
    def test_reconcile_with_metrics_success(self, mock_metrics):
        """Test successful reconciliation with metrics."""
        handler = make_handler()
        reconcile_fn = Mock(return_value=DONE)

        result = handler.reconcile_with_metrics("default", "gw", reconcile_fn)

        assert result == DONE
        reconcile_fn.assert_called_once()
        mock_metrics.reconcile_total.labels.assert_any_call(kind="Gateway", result="success")
        assert mock_metrics.reconcile_duration_seconds.labels.called

    @patch("gateway_operator.handlers.base.metrics")
    def test_reconcile_with_metrics_requeue(self, mock_metrics):
        """Test that requested requeues are counted."""
        handler = make_handler()

        result = handler.reconcile_with_metrics("default", "gw", lambda: Result(requeue_after=3.0))

        assert result.requeue_after == 3.0
        mock_metrics.requeue_total.labels.assert_called_with(kind="Gateway", reason="requeue_after")

    @patch("gateway_operator.handlers.base.metrics")
    def test_reconcile_with_metrics_conflict(self, mock_metrics):
        """Test that write conflicts requeue after a short fixed delay."""
        events = MagicMock()
        handler = make_handler(events)

        def conflicting_fn():
            raise ConflictError("the object has been modified")

        result = handler.reconcile_with_metrics("default", "gw", conflicting_fn)

        assert result == Result(requeue_after=0.2)
        mock_metrics.reconcile_total.labels.assert_any_call(kind="Gateway", result="conflict")
        events.reconcile_failed.assert_not_called()

    @patch("gateway_operator.handlers.base.metrics")
    def test_reconcile_with_metrics_fatal(self, mock_metrics):
        """Test that fatal validation errors are reported once and not retried."""
        events = MagicMock()
        handler = make_handler(events)

        def invalid_fn():
            raise InvalidParametersRefError("wrong kind")

        result = handler.reconcile_with_metrics("default", "gw", invalid_fn)

        assert result == DONE
        events.validate_failed.assert_called_once_with(handler.object_reference("default", "gw"), "wrong kind")
        mock_metrics.error_total.labels.assert_called_with(kind="Gateway", error_type="InvalidParametersRefError")
        mock_metrics.reconcile_total.labels.assert_any_call(kind="Gateway", result="fatal")

    @patch("gateway_operator.handlers.base.metrics")
    @patch("gateway_operator.handlers.base.sanitize_exception")
    def test_reconcile_with_metrics_failure(self, mock_sanitize, mock_metrics):
        """Test failed reconciliation with metrics and error handling."""
        events = MagicMock()
        handler = make_handler(events)
        test_error = ValueError("Test error")
        mock_sanitize.return_value = "Sanitized error"

        def failing_fn():
            raise test_error

        with pytest.raises(ValueError):
            handler.reconcile_with_metrics("default", "gw", failing_fn)

        # Called once for the event message and once for the structured log.
        assert mock_sanitize.call_count == 2
        mock_sanitize.assert_any_call(test_error)
        events.reconcile_failed.assert_called_once_with(
            handler.object_reference("default", "gw"), "Reconciliation failed: Sanitized error"
        )
        mock_metrics.error_total.labels.assert_called_with(kind="Gateway", error_type="ValueError")
        mock_metrics.reconcile_total.labels.assert_any_call(kind="Gateway", result="error")

    @patch("gateway_operator.handlers.base.metrics")
    def test_record_resource_status_ready(self, mock_metrics):
        """Test recording a ready resource."""
        make_handler().record_resource_status(True)
        mock_metrics.resource_status_total.labels.assert_called_with(kind="Gateway", status="ready")

    @patch("gateway_operator.handlers.base.metrics")
    def test_record_resource_status_not_ready(self, mock_metrics):
        """Test recording a resource that is not ready."""
        make_handler().record_resource_status(False)
        mock_metrics.resource_status_total.labels.assert_called_with(kind="Gateway", status="not_ready")


class ScriptedHandler(BaseHandler):
    """Handler whose passes run the given steps in order, then do nothing."""

    def __init__(self, store, steps, config=None):
        super().__init__(GATEWAY, store, config or OperatorConfig(), events=MagicMock())
        self.steps = list(steps)
        self.passes = 0
        self.finalizers = FinalizerLifecycleManager(
            store, GATEWAY, [CleanupStage("DataPlanes", FINALIZER_CLEANUP_DATA_PLANES, DATA_PLANE, lambda obj: [])]
        )

    def reconcile(self, namespace, name):
        self.passes += 1
        if not self.steps:
            return DONE
        return self.steps.pop(0)()


def write(store, value="x"):
    def step():
        store.patch(GATEWAY, "gw", "default", {"metadata": {"labels": {"step": value}}})
        return DONE

    return step


def fail(error):
    def step():
        raise error

    return step


class TestHandle:
    """Test cases for running passes from kopf handlers."""

    def test_runs_until_quiet(self, store):
        """Test that passes repeat while they write and stop at the first quiet one."""
        make_gateway(store)
        handler = ScriptedHandler(store, [write(store, "a"), write(store, "b")])

        assert handler.handle("default", "gw") is None
        assert handler.passes == 3

    def test_failure_is_retried_with_backoff(self, store):
        """Test that a failed pass becomes a kopf retry with exponential delay."""
        make_gateway(store)
        handler = ScriptedHandler(store, [fail(ValueError("boom"))])

        with pytest.raises(kopf.TemporaryError) as excinfo:
            handler.handle("default", "gw", retry=3)

        assert excinfo.value.delay == 8.0
        assert "boom" in str(excinfo.value)

    def test_requeue_after_is_kept(self, store):
        """Test that a requested delay reaches kopf unchanged."""
        make_gateway(store)
        handler = ScriptedHandler(store, [lambda: Result(requeue_after=30.0)])

        with pytest.raises(kopf.TemporaryError) as excinfo:
            handler.handle("default", "gw", retry=5)

        assert excinfo.value.delay == 30.0

    def test_conflict_retries_without_backoff(self, store, config):
        """Test that a write conflict is retried after the short fixed delay."""
        make_gateway(store)
        handler = ScriptedHandler(store, [])
        handler.reconcile = lambda namespace, name: handler.reconcile_with_metrics(
            namespace, name, fail(ConflictError("the object has been modified"))
        )

        with pytest.raises(kopf.TemporaryError) as excinfo:
            handler.handle("default", "gw", retry=4)

        assert excinfo.value.delay == config.requeue_without_backoff

    def test_pass_limit(self, store):
        """Test that a call stops after the configured number of writing passes."""
        make_gateway(store)
        config = OperatorConfig(max_passes=3)
        handler = ScriptedHandler(store, [write(store, str(index)) for index in range(5)], config)

        with pytest.raises(kopf.TemporaryError) as excinfo:
            handler.handle("default", "gw")

        assert handler.passes == 3
        assert excinfo.value.delay == config.requeue_without_backoff

    def test_deletion_waits_for_cleanup_finalizers(self, store, config):
        """Test that a deletion call fails while cleanup finalizers remain."""
        gateway = make_gateway(store)
        gateway["metadata"]["finalizers"] = [FINALIZER_CLEANUP_DATA_PLANES]
        store.update(GATEWAY, gateway)
        handler = ScriptedHandler(store, [])

        with pytest.raises(kopf.TemporaryError) as excinfo:
            handler.handle("default", "gw", deleting=True)
        assert excinfo.value.delay == config.min_retry_delay
        assert FINALIZER_CLEANUP_DATA_PLANES in str(excinfo.value)

        store.patch(GATEWAY, "gw", "default", {"metadata": {"finalizers": []}})
        assert handler.handle("default", "gw", deleting=True) is None

    def test_deletion_of_missing_object(self, store):
        """Test that nothing is left to wait for once the object is gone."""
        assert ScriptedHandler(store, []).handle("default", "gw", deleting=True) is None

    def test_retry_delay(self):
        """Test the capped exponential backoff."""
        handler = make_handler()
        assert handler.retry_delay(0) == 1.0
        assert handler.retry_delay(1) == 2.0
        assert handler.retry_delay(10) == 60.0
