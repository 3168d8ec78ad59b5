"""Create-or-update of managed children owned by an intent resource."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable

from .. import metrics
from ..constants import LABEL_OWNER_UID
from ..kinds import ResourceKind
from ..store.base import ObjectStore
from ..utils.errors import AmbiguousChildrenError, NotFoundError
from ..utils.metadata import ensure_object_meta_is_updated, is_owned_by, label_as_managed, managed_labels, object_key

logger = logging.getLogger(__name__)

# Copies kind-specific fields from the generated object onto the existing one
# and returns True if anything changed.
Comparator = Callable[[dict[str, Any], dict[str, Any]], bool]


@dataclass
class SyncResult:
    changed: bool
    object: dict[str, Any]
    operation: str = "none"


class ChildSynchronizer:
    """Keeps exactly one child of a given role in line with its generated form."""

    def __init__(self, store: ObjectStore):
        self.store = store

    def list_owned(
        self,
        kind: ResourceKind,
        owner: dict[str, Any],
        managed_value: str,
        extra_labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """Children of ``owner`` carrying the managed label ``managed_value``.

        Cluster-scoped kinds are selected by the owner-uid label as well,
        namespaced kinds are listed in the owner's namespace and filtered by
        owner reference.
        """
        meta = owner["metadata"]
        labels = {**managed_labels(managed_value), **(extra_labels or {})}
        if kind.namespaced:
            candidates = self.store.list(kind, namespace=meta["namespace"], labels=labels)
        else:
            labels[LABEL_OWNER_UID] = meta["uid"]
            candidates = self.store.list(kind, labels=labels)
        return [obj for obj in candidates if is_owned_by(obj, meta["uid"])]

    def ensure(
        self,
        kind: ResourceKind,
        desired: dict[str, Any],
        candidates: list[dict[str, Any]],
        compare: Comparator | None = None,
        owner: str = "",
        managed_value: str | None = None,
    ) -> SyncResult:
        """Create ``desired`` or bring the single existing candidate in line with it.

        Args:
            kind: Kind of the child
            desired: Generated child, labelled and owned
            candidates: Existing children of the same role
            compare: Kind-specific field comparison
            owner: Owner description for error messages
            managed_value: Managed label value to stamp on the child

        Raises:
            AmbiguousChildrenError: If more than one candidate exists
        """
        if managed_value:
            label_as_managed(desired, managed_value)

        if len(candidates) > 1:
            raise AmbiguousChildrenError(kind.kind, len(candidates), owner or object_key(desired))

        if not candidates:
            created = self.store.create(kind, desired)
            metrics.child_operations_total.labels(kind=kind.kind, operation="create").inc()
            logger.debug(f"Created {object_key(created)}")
            return SyncResult(changed=True, object=created, operation="create")

        existing = copy.deepcopy(candidates[0])
        changed = ensure_object_meta_is_updated(existing, desired)
        if compare is not None and compare(existing, desired):
            changed = True
        if not changed:
            return SyncResult(changed=False, object=candidates[0])

        updated = self.store.update(kind, existing)
        metrics.child_operations_total.labels(kind=kind.kind, operation="update").inc()
        logger.debug(f"Updated {object_key(updated)}")
        return SyncResult(changed=True, object=updated, operation="update")

    def delete_all(self, kind: ResourceKind, children: list[dict[str, Any]]) -> int:
        """Delete children, ignoring ones that are already gone. Returns the count issued."""
        deleted = 0
        for child in children:
            meta = child["metadata"]
            try:
                self.store.delete(kind, meta["name"], meta.get("namespace"))
            except NotFoundError:
                continue
            deleted += 1
            metrics.child_operations_total.labels(kind=kind.kind, operation="delete").inc()
        return deleted
