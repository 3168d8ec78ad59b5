"""Object store interface used by the reconcilers."""

from __future__ import annotations

from typing import Any, Protocol

from ..kinds import ResourceKind


class ObjectStore(Protocol):
    """Versioned, optimistically concurrent access to cluster objects.

    Objects are JSON-shaped dicts in Kubernetes wire form. Writes that carry
    ``metadata.resourceVersion`` fail with ``ConflictError`` when the stored
    object has moved on. Missing objects raise ``NotFoundError``.
    """

    def get(self, kind: ResourceKind, name: str, namespace: str | None = None) -> dict[str, Any]: ...

    def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]: ...

    def create(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]: ...

    def update(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]: ...

    def update_status(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]: ...

    def patch(
        self, kind: ResourceKind, name: str, namespace: str | None, patch: dict[str, Any]
    ) -> dict[str, Any]: ...

    def patch_status(
        self, kind: ResourceKind, name: str, namespace: str | None, status: dict[str, Any]
    ) -> dict[str, Any]: ...

    def delete(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str | None = None,
        grace_period_seconds: int | None = None,
    ) -> None: ...


def label_selector(labels: dict[str, str] | None) -> str | None:
    """Render equality-based label requirements as a selector string."""
    if not labels:
        return None
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def matches_labels(obj: dict[str, Any], labels: dict[str, str] | None) -> bool:
    if not labels:
        return True
    current = (obj.get("metadata") or {}).get("labels") or {}
    return all(current.get(key) == value for key, value in labels.items())


def merge_patch(target: Any, patch: Any) -> Any:
    """Apply an RFC 7386 JSON merge patch and return the result.

    ``None`` values delete keys, dicts merge recursively, everything else
    (lists included) replaces the target value.
    """
    if not isinstance(patch, dict):
        return patch
    result = dict(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result
