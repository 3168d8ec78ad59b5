"""Helpers for object metadata: finalizers, managed labels and ownership."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..constants import LABEL_MANAGED, LABEL_OWNER_NAME, LABEL_OWNER_NAMESPACE, LABEL_OWNER_UID

OWNER_REFERENCE_FIELDS = ("apiVersion", "kind", "name", "uid", "controller", "blockOwnerDeletion")


def meta_of(obj: dict[str, Any]) -> dict[str, Any]:
    meta = obj.get("metadata")
    if meta is None:
        meta = obj["metadata"] = {}
    return meta


def object_key(obj: dict[str, Any]) -> str:
    """Human-readable identity, e.g. "ControlPlane default/cp-x7k2p"."""
    meta = obj.get("metadata") or {}
    name = meta.get("name") or meta.get("generateName", "") + "*"
    namespace = meta.get("namespace")
    path = f"{namespace}/{name}" if namespace else name
    return f"{obj.get('kind', 'Object')} {path}"


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def deletion_timestamp(obj: dict[str, Any]) -> datetime | None:
    return parse_timestamp((obj.get("metadata") or {}).get("deletionTimestamp"))


# -----------------------------------------------------------------------------
# Finalizers
# -----------------------------------------------------------------------------


def has_finalizer(obj: dict[str, Any], finalizer: str) -> bool:
    return finalizer in ((obj.get("metadata") or {}).get("finalizers") or [])


def ensure_finalizers(obj: dict[str, Any], *finalizers: str) -> bool:
    """Add missing finalizers in place. Returns True if any was added."""
    meta = meta_of(obj)
    current = list(meta.get("finalizers") or [])
    changed = False
    for finalizer in finalizers:
        if finalizer not in current:
            current.append(finalizer)
            changed = True
    if changed:
        meta["finalizers"] = current
    return changed


def remove_finalizer(obj: dict[str, Any], finalizer: str) -> bool:
    """Remove a finalizer in place. Returns True if it was present."""
    meta = meta_of(obj)
    current = list(meta.get("finalizers") or [])
    if finalizer not in current:
        return False
    current.remove(finalizer)
    meta["finalizers"] = current
    return True


# -----------------------------------------------------------------------------
# Labels and ownership
# -----------------------------------------------------------------------------


def label_as_managed(obj: dict[str, Any], value: str) -> None:
    labels = meta_of(obj).setdefault("labels", {})
    labels[LABEL_MANAGED] = value


def managed_labels(value: str) -> dict[str, str]:
    return {LABEL_MANAGED: value}


def owner_reference(owner: dict[str, Any]) -> dict[str, Any]:
    meta = owner.get("metadata") or {}
    return {
        "apiVersion": owner["apiVersion"],
        "kind": owner["kind"],
        "name": meta["name"],
        "uid": meta["uid"],
        "controller": True,
        "blockOwnerDeletion": True,
    }


def set_owner(child: dict[str, Any], owner: dict[str, Any]) -> None:
    """Make ``owner`` the controlling owner of a namespaced child."""
    meta = meta_of(child)
    reference = owner_reference(owner)
    others = [ref for ref in meta.get("ownerReferences") or [] if ref.get("uid") != reference["uid"]]
    meta["ownerReferences"] = others + [reference]


def owner_labels(owner: dict[str, Any]) -> dict[str, str]:
    """Labels standing in for an owner reference on cluster-scoped children."""
    meta = owner.get("metadata") or {}
    return {
        LABEL_OWNER_UID: meta["uid"],
        LABEL_OWNER_NAME: meta["name"],
        LABEL_OWNER_NAMESPACE: meta.get("namespace", ""),
    }


def set_owner_labels(child: dict[str, Any], owner: dict[str, Any]) -> None:
    meta_of(child).setdefault("labels", {}).update(owner_labels(owner))


def is_owned_by(obj: dict[str, Any], owner_uid: str) -> bool:
    """True if ``obj`` points at ``owner_uid`` by owner reference or owner label."""
    meta = obj.get("metadata") or {}
    if (meta.get("labels") or {}).get(LABEL_OWNER_UID) == owner_uid:
        return True
    return any(ref.get("uid") == owner_uid for ref in meta.get("ownerReferences") or [])


def _owner_reference_key(ref: dict[str, Any]) -> tuple:
    return tuple(ref.get(field) for field in OWNER_REFERENCE_FIELDS)


def ensure_object_meta_is_updated(existing: dict[str, Any], generated: dict[str, Any]) -> bool:
    """Copy generated labels and owner references onto ``existing`` in place.

    Labels the operator did not generate are left alone. Owner references are
    compared field by field and replaced as a whole when they differ.

    Returns:
        True if ``existing`` was modified
    """
    existing_meta = meta_of(existing)
    generated_meta = generated.get("metadata") or {}
    changed = False

    generated_labels = generated_meta.get("labels") or {}
    labels = dict(existing_meta.get("labels") or {})
    for key, value in generated_labels.items():
        if labels.get(key) != value:
            labels[key] = value
            changed = True
    if changed:
        existing_meta["labels"] = labels

    generated_refs = generated_meta.get("ownerReferences") or []
    existing_refs = existing_meta.get("ownerReferences") or []
    if sorted(map(_owner_reference_key, generated_refs), key=repr) != sorted(
        map(_owner_reference_key, existing_refs), key=repr
    ):
        existing_meta["ownerReferences"] = [dict(ref) for ref in generated_refs]
        changed = True

    return changed


def is_subset(desired: Any, existing: Any) -> bool:
    """True if every field set in ``desired`` has the same value in ``existing``.

    Fields only present in ``existing`` (API server defaults such as
    ``terminationMessagePath`` or ``defaultMode``) are ignored. Lists must have
    the same length and match element by element.
    """
    if isinstance(desired, dict):
        if not isinstance(existing, dict):
            return False
        return all(is_subset(value, existing.get(key)) for key, value in desired.items())
    if isinstance(desired, list):
        if not isinstance(existing, list) or len(desired) != len(existing):
            return False
        return all(is_subset(d, e) for d, e in zip(desired, existing))
    return desired == existing
