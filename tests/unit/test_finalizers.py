"""Tests for the finalizer driven deletion state machine."""

from __future__ import annotations

import pytest

from gateway_operator.handlers.base import DONE
from gateway_operator.handlers.finalizers import (
    CleanupStage,
    DeletionOutcome,
    DeletionPhase,
    FinalizerLifecycleManager,
)
from gateway_operator.kinds import CONFIG_MAP, CONTROL_PLANE
from gateway_operator.utils.errors import ConflictError

FINALIZER_A = "example.com/cleanup-a"
FINALIZER_B = "example.com/cleanup-b"


def make_stage(store, name: str, finalizer: str) -> CleanupStage:
    return CleanupStage(
        name=name,
        finalizer=finalizer,
        kind=CONFIG_MAP,
        list_children=lambda obj: store.list(CONFIG_MAP, namespace="default", labels={"stage": name}),
    )


@pytest.fixture
def manager(store, clock, recorder) -> FinalizerLifecycleManager:
    stages = [make_stage(store, "Alphas", FINALIZER_A), make_stage(store, "Betas", FINALIZER_B)]
    return FinalizerLifecycleManager(store, CONTROL_PLANE, stages, events=recorder, clock=clock)


@pytest.fixture
def owner(store) -> dict:
    store.create(
        CONTROL_PLANE,
        {"metadata": {"name": "cp", "namespace": "default", "finalizers": [FINALIZER_A, FINALIZER_B]}},
    )
    for name, stage in (("alpha", "Alphas"), ("beta", "Betas")):
        store.create(CONFIG_MAP, {"metadata": {"name": name, "namespace": "default", "labels": {"stage": stage}}})
    return store.get(CONTROL_PLANE, "cp", "default")


class TestDeletionOutcome:
    """Test cases for state names."""

    def test_state_names(self):
        """Test the state names reported for each phase."""
        stage = CleanupStage("Bindings", "f", CONFIG_MAP, lambda obj: [])

        assert DeletionOutcome(DeletionPhase.DELETING_CHILDREN, stage=stage).state == "DeletingBindings"
        assert DeletionOutcome(DeletionPhase.FINALIZER_REMOVED, stage=stage).state == "BindingsFinalizerRemoved"
        assert DeletionOutcome(DeletionPhase.ACTIVE).state == "Active"
        assert DeletionOutcome(DeletionPhase.TERMINAL).state == "Terminal"


class TestFinalizerLifecycleManager:
    """Test cases for FinalizerLifecycleManager."""

    def test_active_object(self, manager, owner, store):
        """Test that a live object is left alone."""
        store.clear_actions()

        outcome = manager.run(owner)

        assert outcome.phase is DeletionPhase.ACTIVE
        assert outcome.result == DONE
        assert store.mutations() == []

    def test_grace_period(self, manager, owner, store, clock):
        """Test that a future deletion timestamp requeues at that time."""
        store.delete(CONTROL_PLANE, "cp", "default", grace_period_seconds=30)
        store.clear_actions()

        outcome = manager.run(store.get(CONTROL_PLANE, "cp", "default"))

        assert outcome.phase is DeletionPhase.GRACE_PERIOD_PENDING
        assert outcome.result.requeue_after == 30.0
        assert store.mutations() == []

        clock.advance(30)
        assert manager.run(store.get(CONTROL_PLANE, "cp", "default")).state == "DeletingAlphas"

    def test_stages_run_one_step_per_pass(self, manager, owner, store, recorder):
        """Test the ordered teardown until the owner is gone."""
        store.delete(CONTROL_PLANE, "cp", "default")
        states = []
        steps = []
        for _ in range(4):
            store.clear_actions()
            states.append(manager.run(store.get(CONTROL_PLANE, "cp", "default")).state)
            steps.append(store.mutations())

        assert states == ["DeletingAlphas", "AlphasFinalizerRemoved", "DeletingBetas", "BetasFinalizerRemoved"]
        assert steps == [
            [("delete", "ConfigMap", "default/alpha")],
            [("patch", "ControlPlane", "default/cp")],
            [("delete", "ConfigMap", "default/beta")],
            [("patch", "ControlPlane", "default/cp")],
        ]
        assert store.list(CONTROL_PLANE) == []
        assert recorder.reasons() == ["ResourceDeleted", "FinalizerRemoved", "ResourceDeleted", "FinalizerRemoved"]

    def test_terminal_when_clean(self, manager):
        """Test that an owner without children or finalizers is terminal."""
        obj = {
            "metadata": {
                "name": "cp",
                "namespace": "default",
                "deletionTimestamp": "2026-01-01T11:00:00Z",
            }
        }

        assert manager.run(obj).phase is DeletionPhase.TERMINAL

    def test_stale_finalizer_removal_conflicts(self, manager, owner, store):
        """Test that removing a finalizer from a stale copy fails."""
        store.delete(CONTROL_PLANE, "cp", "default")
        stale = store.get(CONTROL_PLANE, "cp", "default")
        store.patch(CONTROL_PLANE, "cp", "default", {"metadata": {"labels": {"touched": "yes"}}})

        with pytest.raises(ConflictError):
            manager.remove_finalizer(stale, FINALIZER_A)
