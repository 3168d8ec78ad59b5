"""In-memory object store with API-server-like write semantics.

Used by the unit tests and for dry runs. It mirrors what the reconcilers rely
on from a real API server:

- uid, resourceVersion and generation bookkeeping, and generateName;
- optimistic concurrency on resourceVersion;
- status subresources that are only written through the status calls;
- deletion blocked by finalizers (deletionTimestamp is set instead), with
  physical removal once the last finalizer is gone;
- background garbage collection of dependents through ownerReferences.
"""

from __future__ import annotations

import copy
import itertools
import random
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ..kinds import ResourceKind
from ..utils.context import record_write
from ..utils.errors import AlreadyExistsError, ConflictError, NotFoundError, StoreError
from ..utils.metadata import format_timestamp
from .base import matches_labels, merge_patch

_NAME_SUFFIX_ALPHABET = "bcdfghjklmnpqrstvwxz2456789"

Key = tuple[str, str, str]


def _spec_of(obj: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in obj.items() if key not in ("metadata", "status")}


class InMemoryObjectStore:
    """Thread-safe ObjectStore implementation backed by a dict."""

    def __init__(self, clock: Callable[[], datetime] | None = None, seed: int | None = None):
        self._objects: dict[Key, dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._versions = itertools.count(1)
        self._random = random.Random(seed)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._injected_conflicts: list[tuple[str, str]] = []
        self.actions: list[tuple[str, str, str]] = []

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def inject_conflict(self, verb: str, kind: ResourceKind) -> None:
        """Make the next ``verb`` call on ``kind`` fail with ConflictError."""
        self._injected_conflicts.append((verb, kind.kind))

    def mutations(self) -> list[tuple[str, str, str]]:
        """Recorded writes as (verb, kind, namespace/name)."""
        return list(self.actions)

    def clear_actions(self) -> None:
        self.actions.clear()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _key(self, kind: ResourceKind, name: str, namespace: str | None) -> Key:
        return (kind.kind, (namespace or "") if kind.namespaced else "", name)

    def _next_version(self) -> str:
        return str(next(self._versions))

    def _record(self, verb: str, kind: ResourceKind, name: str, namespace: str | None) -> None:
        path = f"{namespace}/{name}" if kind.namespaced and namespace else name
        self.actions.append((verb, kind.kind, path))
        record_write(verb, kind.kind, path)

    def _check_injected(self, verb: str, kind: ResourceKind) -> None:
        if (verb, kind.kind) in self._injected_conflicts:
            self._injected_conflicts.remove((verb, kind.kind))
            raise ConflictError(f"injected conflict on {verb} {kind.kind}")

    def _stored(self, kind: ResourceKind, name: str, namespace: str | None) -> dict[str, Any]:
        obj = self._objects.get(self._key(kind, name, namespace))
        if obj is None:
            raise NotFoundError(f"{kind.kind} {namespace + '/' if namespace else ''}{name} not found")
        return obj

    def _check_version(self, stored: dict[str, Any], incoming: dict[str, Any] | None) -> None:
        expected = ((incoming or {}).get("metadata") or {}).get("resourceVersion")
        actual = stored["metadata"]["resourceVersion"]
        if expected and expected != actual:
            name = stored["metadata"]["name"]
            raise ConflictError(
                f"Operation cannot be fulfilled on {stored['kind']} {name}: "
                f"the object has been modified (resourceVersion {expected} != {actual})"
            )

    def _store(self, kind: ResourceKind, previous: dict[str, Any], updated: dict[str, Any]) -> dict[str, Any]:
        meta = updated.setdefault("metadata", {})
        for field in ("uid", "creationTimestamp", "deletionTimestamp", "deletionGracePeriodSeconds"):
            if field in previous["metadata"]:
                meta[field] = previous["metadata"][field]
            else:
                meta.pop(field, None)
        meta["name"] = previous["metadata"]["name"]
        if kind.namespaced:
            meta["namespace"] = previous["metadata"]["namespace"]
        updated["apiVersion"] = kind.api_version
        updated["kind"] = kind.kind

        generation = previous["metadata"].get("generation", 1)
        if _spec_of(updated) != _spec_of(previous):
            generation += 1
        meta["generation"] = generation
        meta["resourceVersion"] = self._next_version()

        key = self._key(kind, meta["name"], meta.get("namespace"))
        self._objects[key] = updated
        self._remove_if_finalized(key)
        return copy.deepcopy(updated)

    def _remove_if_finalized(self, key: Key) -> None:
        obj = self._objects.get(key)
        if obj is None:
            return
        meta = obj["metadata"]
        if meta.get("deletionTimestamp") and not meta.get("finalizers"):
            self._remove(key)

    def _remove(self, key: Key) -> None:
        obj = self._objects.pop(key)
        self._collect_dependents(obj["metadata"]["uid"])

    def _collect_dependents(self, owner_uid: str) -> None:
        for key, obj in list(self._objects.items()):
            references = obj["metadata"].get("ownerReferences") or []
            if any(ref.get("uid") == owner_uid for ref in references) and key in self._objects:
                self._mark_deleted(key, grace_period_seconds=None)

    def _mark_deleted(self, key: Key, grace_period_seconds: int | None) -> None:
        obj = self._objects[key]
        meta = obj["metadata"]
        if not meta.get("finalizers"):
            self._remove(key)
            return
        if not meta.get("deletionTimestamp"):
            grace = grace_period_seconds or 0
            meta["deletionTimestamp"] = format_timestamp(self._clock() + timedelta(seconds=grace))
            meta["deletionGracePeriodSeconds"] = grace
            meta["resourceVersion"] = self._next_version()

    # -------------------------------------------------------------------------
    # ObjectStore
    # -------------------------------------------------------------------------

    def get(self, kind: ResourceKind, name: str, namespace: str | None = None) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._stored(kind, name, namespace))

    def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            items = [
                copy.deepcopy(obj)
                for (kind_name, obj_namespace, _), obj in sorted(self._objects.items())
                if kind_name == kind.kind
                and (namespace is None or not kind.namespaced or obj_namespace == namespace)
                and matches_labels(obj, labels)
            ]
            return items

    def create(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self._check_injected("create", kind)
            created = copy.deepcopy(obj)
            meta = created.setdefault("metadata", {})
            if not meta.get("name"):
                prefix = meta.get("generateName")
                if not prefix:
                    raise StoreError("name or generateName is required", status=422)
                while True:
                    suffix = "".join(self._random.choice(_NAME_SUFFIX_ALPHABET) for _ in range(5))
                    if self._key(kind, prefix + suffix, meta.get("namespace")) not in self._objects:
                        break
                meta["name"] = prefix + suffix
            if kind.namespaced and not meta.get("namespace"):
                raise StoreError(f"{kind.kind} {meta['name']} requires a namespace", status=422)
            if not kind.namespaced:
                meta.pop("namespace", None)

            key = self._key(kind, meta["name"], meta.get("namespace"))
            if key in self._objects:
                raise AlreadyExistsError(f"{kind.kind} {meta['name']} already exists")

            created["apiVersion"] = kind.api_version
            created["kind"] = kind.kind
            meta["uid"] = str(uuid.uuid4())
            meta["resourceVersion"] = self._next_version()
            meta["generation"] = 1
            meta["creationTimestamp"] = format_timestamp(self._clock())
            meta.pop("deletionTimestamp", None)
            if kind.status_subresource:
                created.pop("status", None)

            self._objects[key] = created
            self._record("create", kind, meta["name"], meta.get("namespace"))
            return copy.deepcopy(created)

    def update(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        meta = obj.get("metadata") or {}
        with self._lock:
            self._check_injected("update", kind)
            stored = self._stored(kind, meta.get("name", ""), meta.get("namespace"))
            self._check_version(stored, obj)
            updated = copy.deepcopy(obj)
            if kind.status_subresource:
                if "status" in stored:
                    updated["status"] = copy.deepcopy(stored["status"])
                else:
                    updated.pop("status", None)
            self._record("update", kind, meta["name"], meta.get("namespace"))
            return self._store(kind, stored, updated)

    def update_status(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        meta = obj.get("metadata") or {}
        with self._lock:
            self._check_injected("update_status", kind)
            stored = self._stored(kind, meta.get("name", ""), meta.get("namespace"))
            self._check_version(stored, obj)
            updated = copy.deepcopy(stored)
            updated["status"] = copy.deepcopy(obj.get("status") or {})
            self._record("update_status", kind, meta["name"], meta.get("namespace"))
            return self._store(kind, stored, updated)

    def patch(
        self, kind: ResourceKind, name: str, namespace: str | None, patch: dict[str, Any]
    ) -> dict[str, Any]:
        with self._lock:
            self._check_injected("patch", kind)
            stored = self._stored(kind, name, namespace)
            self._check_version(stored, patch)
            updated = merge_patch(copy.deepcopy(stored), copy.deepcopy(patch))
            if kind.status_subresource:
                if "status" in stored:
                    updated["status"] = copy.deepcopy(stored["status"])
                else:
                    updated.pop("status", None)
            self._record("patch", kind, name, namespace)
            return self._store(kind, stored, updated)

    def patch_status(
        self, kind: ResourceKind, name: str, namespace: str | None, status: dict[str, Any]
    ) -> dict[str, Any]:
        with self._lock:
            self._check_injected("patch_status", kind)
            stored = self._stored(kind, name, namespace)
            updated = copy.deepcopy(stored)
            updated["status"] = merge_patch(stored.get("status") or {}, copy.deepcopy(status))
            self._record("patch_status", kind, name, namespace)
            return self._store(kind, stored, updated)

    def delete(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str | None = None,
        grace_period_seconds: int | None = None,
    ) -> None:
        with self._lock:
            self._check_injected("delete", kind)
            self._stored(kind, name, namespace)
            self._record("delete", kind, name, namespace)
            self._mark_deleted(self._key(kind, name, namespace), grace_period_seconds)
