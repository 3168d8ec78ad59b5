"""Ordered, one-step-per-pass teardown of children guarded by finalizers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from .. import metrics
from ..kinds import ResourceKind
from ..store.base import ObjectStore
from ..utils.events import EventRecorder
from ..utils.metadata import deletion_timestamp, has_finalizer, object_key
from .base import DONE, Result
from .synchronizer import ChildSynchronizer

logger = logging.getLogger(__name__)


class DeletionPhase(Enum):
    ACTIVE = "Active"
    GRACE_PERIOD_PENDING = "GracePeriodPending"
    DELETING_CHILDREN = "Deleting"
    FINALIZER_REMOVED = "FinalizerRemoved"
    TERMINAL = "Terminal"


@dataclass(frozen=True)
class CleanupStage:
    """One family of children and the finalizer that guards it.

    ``name`` is the family name used in state names, e.g. "Bindings".
    """

    name: str
    finalizer: str
    kind: ResourceKind
    list_children: Callable[[dict[str, Any]], list[dict[str, Any]]]


@dataclass(frozen=True)
class DeletionOutcome:
    phase: DeletionPhase
    stage: CleanupStage | None = None
    result: Result = DONE
    deleted: int = 0

    @property
    def state(self) -> str:
        """State name such as "DeletingBindings" or "RolesFinalizerRemoved"."""
        if self.phase is DeletionPhase.DELETING_CHILDREN and self.stage is not None:
            return f"Deleting{self.stage.name}"
        if self.phase is DeletionPhase.FINALIZER_REMOVED and self.stage is not None:
            return f"{self.stage.name}FinalizerRemoved"
        return self.phase.value


class FinalizerLifecycleManager:
    """Runs the deletion state machine of an intent resource.

    Every pass performs at most one kind of mutation and returns:

    1. While the deletion timestamp lies in the future, request a requeue at
       exactly that time.
    2. For each stage in order, delete all remaining children, or, once none
       remain, remove the stage's finalizer with a resourceVersion
       precondition.
    3. With all stages clean and their finalizers gone, report Terminal.
    """

    def __init__(
        self,
        store: ObjectStore,
        owner_kind: ResourceKind,
        stages: list[CleanupStage],
        events: EventRecorder | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.owner_kind = owner_kind
        self.stages = list(stages)
        self.events = events or EventRecorder()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.children = ChildSynchronizer(store)

    def run(self, obj: dict[str, Any]) -> DeletionOutcome:
        deleted_at = deletion_timestamp(obj)
        if deleted_at is None:
            return DeletionOutcome(DeletionPhase.ACTIVE)

        now = self.clock()
        if deleted_at > now:
            delay = (deleted_at - now).total_seconds()
            logger.debug(f"{object_key(obj)} deletion still under grace period, requeue in {delay}s")
            return DeletionOutcome(DeletionPhase.GRACE_PERIOD_PENDING, result=Result(requeue_after=delay))

        for stage in self.stages:
            children = stage.list_children(obj)
            if children:
                deleted = self.children.delete_all(stage.kind, children)
                for child in children:
                    self.events.child_deleted(obj, stage.kind.kind, child["metadata"]["name"])
                return DeletionOutcome(DeletionPhase.DELETING_CHILDREN, stage=stage, deleted=deleted)

            if has_finalizer(obj, stage.finalizer):
                self.remove_finalizer(obj, stage.finalizer)
                return DeletionOutcome(DeletionPhase.FINALIZER_REMOVED, stage=stage)

        return DeletionOutcome(DeletionPhase.TERMINAL)

    def pending(self, obj: dict[str, Any]) -> list[str]:
        return [stage.finalizer for stage in self.stages if has_finalizer(obj, stage.finalizer)]

    def remove_finalizer(self, obj: dict[str, Any], finalizer: str) -> dict[str, Any]:
        """Patch the finalizer away, failing with ConflictError if ``obj`` is stale."""
        meta = obj["metadata"]
        remaining = [f for f in meta.get("finalizers") or [] if f != finalizer]
        patched = self.store.patch(
            self.owner_kind,
            meta["name"],
            meta.get("namespace"),
            {"metadata": {"finalizers": remaining, "resourceVersion": meta.get("resourceVersion")}},
        )
        metrics.finalizer_removed_total.labels(kind=self.owner_kind.kind, finalizer=finalizer).inc()
        self.events.finalizer_removed(obj, finalizer)
        return patched
