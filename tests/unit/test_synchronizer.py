"""Tests for create-or-update of managed children."""

from __future__ import annotations

import pytest

from gateway_operator.constants import LABEL_MANAGED, LABEL_VALUE_CONTROL_PLANE
from gateway_operator.handlers.synchronizer import ChildSynchronizer
from gateway_operator.kinds import CLUSTER_ROLE, CONTROL_PLANE, SERVICE_ACCOUNT
from gateway_operator.utils.errors import AmbiguousChildrenError
from gateway_operator.utils.metadata import set_owner, set_owner_labels


@pytest.fixture
def sync(store) -> ChildSynchronizer:
    return ChildSynchronizer(store)


@pytest.fixture
def owner(store) -> dict:
    return store.create(CONTROL_PLANE, {"metadata": {"name": "cp", "namespace": "default"}, "spec": {}})


def service_account(owner: dict, name: str = "cp-sa", labels: dict | None = None) -> dict:
    body = {"metadata": {"name": name, "namespace": "default", "labels": dict(labels or {})}}
    set_owner(body, owner)
    return body


class TestListOwned:
    """Test cases for ChildSynchronizer.list_owned."""

    def test_namespaced_children(self, sync, store, owner):
        """Test that only managed children of the owner are listed."""
        other = store.create(CONTROL_PLANE, {"metadata": {"name": "other", "namespace": "default"}, "spec": {}})
        managed = {LABEL_MANAGED: LABEL_VALUE_CONTROL_PLANE}
        store.create(SERVICE_ACCOUNT, service_account(owner, "mine", managed))
        store.create(SERVICE_ACCOUNT, service_account(other, "theirs", managed))
        store.create(SERVICE_ACCOUNT, service_account(owner, "unmanaged"))

        children = sync.list_owned(SERVICE_ACCOUNT, owner, LABEL_VALUE_CONTROL_PLANE)

        assert [child["metadata"]["name"] for child in children] == ["mine"]

    def test_cluster_scoped_children(self, sync, store, owner):
        """Test that cluster-scoped children are found through owner labels."""
        role = {"metadata": {"name": "cp-role", "labels": {LABEL_MANAGED: LABEL_VALUE_CONTROL_PLANE}}, "rules": []}
        set_owner_labels(role, owner)
        store.create(CLUSTER_ROLE, role)
        store.create(
            CLUSTER_ROLE,
            {"metadata": {"name": "unrelated", "labels": {LABEL_MANAGED: LABEL_VALUE_CONTROL_PLANE}}, "rules": []},
        )

        children = sync.list_owned(CLUSTER_ROLE, owner, LABEL_VALUE_CONTROL_PLANE)

        assert [child["metadata"]["name"] for child in children] == ["cp-role"]


class TestEnsure:
    """Test cases for ChildSynchronizer.ensure."""

    def test_creates_when_missing(self, sync, store, owner):
        """Test that a missing child is created with the managed label."""
        result = sync.ensure(SERVICE_ACCOUNT, service_account(owner), [], managed_value=LABEL_VALUE_CONTROL_PLANE)

        assert result.changed
        assert result.operation == "create"
        assert result.object["metadata"]["labels"][LABEL_MANAGED] == LABEL_VALUE_CONTROL_PLANE
        assert store.mutations() == [
            ("create", "ControlPlane", "default/cp"),
            ("create", "ServiceAccount", "default/cp-sa"),
        ]

    def test_unchanged_child_is_not_written(self, sync, store, owner):
        """Test that an up to date child is left alone."""
        existing = sync.ensure(SERVICE_ACCOUNT, service_account(owner), [], managed_value=LABEL_VALUE_CONTROL_PLANE)
        store.clear_actions()

        result = sync.ensure(
            SERVICE_ACCOUNT, service_account(owner), [existing.object], managed_value=LABEL_VALUE_CONTROL_PLANE
        )

        assert not result.changed
        assert result.operation == "none"
        assert store.mutations() == []

    def test_updates_missing_labels(self, sync, store, owner):
        """Test that generated labels are restored on the existing child."""
        existing = store.create(SERVICE_ACCOUNT, service_account(owner))
        store.clear_actions()

        result = sync.ensure(
            SERVICE_ACCOUNT, service_account(owner), [existing], managed_value=LABEL_VALUE_CONTROL_PLANE
        )

        assert result.operation == "update"
        assert store.mutations() == [("update", "ServiceAccount", "default/cp-sa")]

    def test_comparator_drives_update(self, sync, store, owner):
        """Test that a comparator reporting drift triggers an update."""
        existing = sync.ensure(SERVICE_ACCOUNT, service_account(owner), [], managed_value=LABEL_VALUE_CONTROL_PLANE)
        store.clear_actions()

        def compare(current, desired):
            current["automountServiceAccountToken"] = False
            return True

        result = sync.ensure(
            SERVICE_ACCOUNT,
            service_account(owner),
            [existing.object],
            compare=compare,
            managed_value=LABEL_VALUE_CONTROL_PLANE,
        )

        assert result.changed
        assert store.get(SERVICE_ACCOUNT, "cp-sa", "default")["automountServiceAccountToken"] is False

    def test_ambiguous_children(self, sync, store, owner):
        """Test that more than one candidate is refused."""
        first = store.create(SERVICE_ACCOUNT, service_account(owner, "a"))
        second = store.create(SERVICE_ACCOUNT, service_account(owner, "b"))

        with pytest.raises(AmbiguousChildrenError) as exc_info:
            sync.ensure(SERVICE_ACCOUNT, service_account(owner), [first, second], owner="ControlPlane default/cp")

        assert exc_info.value.count == 2
        assert "ControlPlane default/cp" in str(exc_info.value)


class TestDeleteAll:
    """Test cases for ChildSynchronizer.delete_all."""

    def test_ignores_missing_children(self, sync, store, owner):
        """Test that children that are already gone are skipped."""
        existing = store.create(SERVICE_ACCOUNT, service_account(owner, "a"))
        gone = {"metadata": {"name": "b", "namespace": "default"}}

        assert sync.delete_all(SERVICE_ACCOUNT, [existing, gone]) == 1
        assert store.list(SERVICE_ACCOUNT, namespace="default") == []
