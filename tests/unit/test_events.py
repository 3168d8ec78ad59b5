"""Tests for Kubernetes event utilities."""

from __future__ import annotations

from unittest.mock import patch

from gateway_operator.utils.events import EventRecorder, RecordingEventRecorder

GATEWAY_BODY = {
    "apiVersion": "gateway.networking.k8s.io/v1beta1",
    "kind": "Gateway",
    "metadata": {"name": "gw", "namespace": "default"},
}


class TestEventRecorder:
    """Test cases for the kopf-backed recorder."""

    @patch("gateway_operator.utils.events.kopf.event")
    def test_emit_normal(self, mock_event):
        """Test emitting normal event."""
        EventRecorder().emit(GATEWAY_BODY, "TestReason", "Test message")

        mock_event.assert_called_once_with(
            GATEWAY_BODY,
            reason="TestReason",
            message="Test message",
            type="Normal",
        )

    @patch("gateway_operator.utils.events.kopf.event")
    def test_emit_warning(self, mock_event):
        """Test emitting warning event."""
        EventRecorder().emit(GATEWAY_BODY, "ErrorReason", "Error occurred", type_="Warning")

        mock_event.assert_called_once_with(
            GATEWAY_BODY,
            reason="ErrorReason",
            message="Error occurred",
            type="Warning",
        )

    @patch("gateway_operator.utils.events.kopf.event")
    def test_reconcile_failed(self, mock_event):
        """Test that reconcile failures are warnings."""
        EventRecorder().reconcile_failed(GATEWAY_BODY, "Reconciliation failed: boom")

        call_args = mock_event.call_args
        assert call_args[0][0] == GATEWAY_BODY
        assert call_args[1]["reason"] == "ReconcileFailed"
        assert call_args[1]["type"] == "Warning"

    @patch("gateway_operator.utils.events.kopf.event")
    def test_validate_failed(self, mock_event):
        """Test that validation failures are warnings carrying the message."""
        EventRecorder().validate_failed(GATEWAY_BODY, "unsupported ControlPlane image")

        call_args = mock_event.call_args
        assert call_args[1]["reason"] == "ValidateFailed"
        assert call_args[1]["message"] == "unsupported ControlPlane image"
        assert call_args[1]["type"] == "Warning"

    @patch("gateway_operator.utils.events.kopf.event")
    def test_child_events(self, mock_event):
        """Test messages of child lifecycle events."""
        recorder = EventRecorder()
        recorder.child_created(GATEWAY_BODY, "DataPlane", "gw-abcde")
        recorder.child_updated(GATEWAY_BODY, "ControlPlane", "gw-fghij")
        recorder.child_deleted(GATEWAY_BODY, "NetworkPolicy", "gw-klmno")

        calls = [(c[1]["reason"], c[1]["message"], c[1]["type"]) for c in mock_event.call_args_list]
        assert calls == [
            ("ResourceCreated", "DataPlane gw-abcde created", "Normal"),
            ("ResourceUpdated", "ControlPlane gw-fghij updated", "Normal"),
            ("ResourceDeleted", "NetworkPolicy gw-klmno deleted", "Normal"),
        ]

    @patch("gateway_operator.utils.events.kopf.event")
    def test_finalizer_removed(self, mock_event):
        """Test the finalizer removal event."""
        EventRecorder().finalizer_removed(GATEWAY_BODY, "example.com/cleanup")

        assert "example.com/cleanup" in mock_event.call_args[1]["message"]


class TestRecordingEventRecorder:
    """Test cases for the in-memory recorder."""

    @patch("gateway_operator.utils.events.kopf.event")
    def test_records_without_posting(self, mock_event):
        """Test that events are kept in memory and never posted."""
        recorder = RecordingEventRecorder()
        recorder.child_created(GATEWAY_BODY, "DataPlane", "gw-abcde")
        recorder.validate_failed(GATEWAY_BODY, "bad")

        mock_event.assert_not_called()
        assert recorder.reasons() == ["ResourceCreated", "ValidateFailed"]
        assert recorder.events[0] == {
            "kind": "Gateway",
            "name": "gw",
            "namespace": "default",
            "reason": "ResourceCreated",
            "message": "DataPlane gw-abcde created",
            "type": "Normal",
        }
        assert recorder.events[1]["type"] == "Warning"
