"""Utility functions for the Gateway Operator."""

from .certificates import CertificateAuthority
from .conditions import (
    conditions_of,
    get_condition,
    is_condition_true,
    is_ready,
    needs_status_update,
    new_condition,
    set_condition,
    set_ready,
    set_ready_and_programmed,
)
from .context import get_context_dict, get_correlation_id, reconcile_context
from .errors import sanitize_exception
from .events import EventRecorder, RecordingEventRecorder
from .metadata import ensure_finalizers, ensure_object_meta_is_updated, is_owned_by, label_as_managed
from .rate_limit import handle_rate_limit_error, rate_limit_k8s

__all__ = [
    "CertificateAuthority",
    "conditions_of",
    "get_condition",
    "is_condition_true",
    "is_ready",
    "needs_status_update",
    "new_condition",
    "set_condition",
    "set_ready",
    "set_ready_and_programmed",
    "get_context_dict",
    "get_correlation_id",
    "reconcile_context",
    "sanitize_exception",
    "EventRecorder",
    "RecordingEventRecorder",
    "ensure_finalizers",
    "ensure_object_meta_is_updated",
    "is_owned_by",
    "label_as_managed",
    "handle_rate_limit_error",
    "rate_limit_k8s",
]
