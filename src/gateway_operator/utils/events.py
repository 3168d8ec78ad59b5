"""Utilities for emitting Kubernetes events about reconciled resources."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_CHILD_CREATED,
    EVENT_REASON_CHILD_DELETED,
    EVENT_REASON_CHILD_UPDATED,
    EVENT_REASON_FINALIZER_REMOVED,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_VALIDATE_FAILED,
)


class EventRecorder:
    """Posts events through kopf.

    Events are attached to the full object body, which must carry apiVersion,
    kind and metadata.
    """

    def emit(self, obj: dict[str, Any], reason: str, message: str, type_: str = "Normal") -> None:
        """Emit a Kubernetes event.

        Args:
            obj: Object the event is about
            reason: Event reason
            message: Event message
            type_: Event type (Normal or Warning)
        """
        kopf.event(obj, reason=reason, message=message, type=type_)

    def reconcile_failed(self, obj: dict[str, Any], message: str) -> None:
        self.emit(obj, EVENT_REASON_RECONCILE_FAILED, message, type_="Warning")

    def validate_failed(self, obj: dict[str, Any], message: str) -> None:
        self.emit(obj, EVENT_REASON_VALIDATE_FAILED, message, type_="Warning")

    def child_created(self, obj: dict[str, Any], kind: str, name: str) -> None:
        self.emit(obj, EVENT_REASON_CHILD_CREATED, f"{kind} {name} created")

    def child_updated(self, obj: dict[str, Any], kind: str, name: str) -> None:
        self.emit(obj, EVENT_REASON_CHILD_UPDATED, f"{kind} {name} updated")

    def child_deleted(self, obj: dict[str, Any], kind: str, name: str) -> None:
        self.emit(obj, EVENT_REASON_CHILD_DELETED, f"{kind} {name} deleted")

    def finalizer_removed(self, obj: dict[str, Any], finalizer: str) -> None:
        self.emit(obj, EVENT_REASON_FINALIZER_REMOVED, f"Finalizer {finalizer} removed")


class RecordingEventRecorder(EventRecorder):
    """Keeps events in memory instead of posting them; used outside kopf."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def emit(self, obj: dict[str, Any], reason: str, message: str, type_: str = "Normal") -> None:
        meta = obj.get("metadata") or {}
        self.events.append({
            "kind": obj.get("kind"),
            "name": meta.get("name"),
            "namespace": meta.get("namespace"),
            "reason": reason,
            "message": message,
            "type": type_,
        })

    def reasons(self) -> list[str]:
        return [event["reason"] for event in self.events]
