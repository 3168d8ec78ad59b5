"""Mapping of watch events to the intent resources they concern.

kopf runs the reconcilers from its create, update, resume and delete handlers
on Gateways and ControlPlanes. Changes to anything else reach them through
the reconcile-trigger annotation, which EventMapper patches onto the owner.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from .. import metrics
from ..constants import (
    ANNOTATION_RECONCILE_TRIGGER,
    API_GROUP,
    KIND_GATEWAY_CONFIGURATION,
    LABEL_MANAGED,
    LABEL_OWNER_NAME,
    LABEL_OWNER_NAMESPACE,
    LABEL_VALUE_CONTROL_PLANE,
)
from ..kinds import (
    CLUSTER_ROLE,
    CLUSTER_ROLE_BINDING,
    CONTROL_PLANE,
    DATA_PLANE,
    DEPLOYMENT,
    GATEWAY,
    GATEWAY_CLASS,
    GATEWAY_CONFIGURATION,
    NETWORK_POLICY,
    SECRET,
    SERVICE,
    SERVICE_ACCOUNT,
    ResourceKind,
)
from ..store.base import ObjectStore
from ..utils.errors import NotFoundError

logger = logging.getLogger(__name__)

INTENT_KINDS = {GATEWAY.kind: GATEWAY, CONTROL_PLANE.kind: CONTROL_PLANE}


@dataclass(frozen=True, order=True)
class ObjectKey:
    """Identity of one intent resource."""

    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"


KeyMapper = Callable[[dict[str, Any]], list[ObjectKey]]


def owner_keys(body: dict[str, Any], owner_kind: ResourceKind) -> list[ObjectKey]:
    """Keys of the ``owner_kind`` owners named in the object's owner references."""
    meta = body.get("metadata") or {}
    return [
        ObjectKey(owner_kind.kind, meta.get("namespace", ""), ref["name"])
        for ref in meta.get("ownerReferences") or []
        if ref.get("kind") == owner_kind.kind and ref.get("name")
    ]


def labelled_owner_keys(body: dict[str, Any]) -> list[ObjectKey]:
    """ControlPlane key of a cluster-scoped child, read from its owner labels."""
    labels = (body.get("metadata") or {}).get("labels") or {}
    if labels.get(LABEL_MANAGED) != LABEL_VALUE_CONTROL_PLANE:
        return []
    name = labels.get(LABEL_OWNER_NAME)
    namespace = labels.get(LABEL_OWNER_NAMESPACE)
    if not name or not namespace:
        return []
    return [ObjectKey(CONTROL_PLANE.kind, namespace, name)]


def _dedupe(keys: list[ObjectKey]) -> list[ObjectKey]:
    return sorted(set(keys))


def trigger_source(kind: str, body: dict[str, Any]) -> str:
    """Annotation value naming the change, e.g. "DataPlane/dp-x7k2p@1234"."""
    meta = body.get("metadata") or {}
    return f"{kind}/{meta.get('name', '')}@{meta.get('resourceVersion', '')}"


class EventMapper:
    """Turns a watched object into the intent resources to reconcile, and triggers them.

    Owned namespaced kinds follow owner references, cluster-scoped children
    follow owner labels, and changes to GatewayClasses of this controller, or
    to the GatewayConfigurations they reference, fan out to every Gateway of
    those classes. Gateways and ControlPlanes never map to themselves: kopf
    already reacts to their own changes.
    """

    def __init__(self, store: ObjectStore, controller_name: str):
        self.store = store
        self.controller_name = controller_name

    def mappers(self) -> dict[str, KeyMapper]:
        """Mapper per watched kind."""
        return {
            GATEWAY_CLASS.kind: self.for_gateway_class,
            GATEWAY_CONFIGURATION.kind: self.for_gateway_configuration,
            CONTROL_PLANE.kind: lambda body: owner_keys(body, GATEWAY),
            DATA_PLANE.kind: self.for_data_plane,
            NETWORK_POLICY.kind: lambda body: owner_keys(body, GATEWAY),
            SERVICE_ACCOUNT.kind: lambda body: owner_keys(body, CONTROL_PLANE),
            SECRET.kind: lambda body: owner_keys(body, CONTROL_PLANE),
            DEPLOYMENT.kind: lambda body: owner_keys(body, CONTROL_PLANE),
            CLUSTER_ROLE.kind: labelled_owner_keys,
            CLUSTER_ROLE_BINDING.kind: labelled_owner_keys,
            SERVICE.kind: self.for_data_plane_service,
        }

    def keys_for(self, kind: str, body: dict[str, Any]) -> list[ObjectKey]:
        return _dedupe(self.mappers()[kind](body))

    def trigger(self, key: ObjectKey, source: str) -> bool:
        """Patch the reconcile-trigger annotation of ``key``. Returns False if it is gone."""
        try:
            self.store.patch(
                INTENT_KINDS[key.kind],
                key.name,
                key.namespace,
                {"metadata": {"annotations": {ANNOTATION_RECONCILE_TRIGGER: source}}},
            )
        except NotFoundError:
            logger.debug(f"{key} is gone, not triggered by {source}")
            return False
        metrics.reconcile_triggers_total.labels(kind=key.kind).inc()
        return True

    def trigger_for(self, kind: str, body: dict[str, Any]) -> list[ObjectKey]:
        """Trigger every intent resource a change to ``body`` concerns and return those triggered."""
        source = trigger_source(kind, body)
        return [key for key in self.keys_for(kind, body) if self.trigger(key, source)]

    def for_data_plane(self, body: dict[str, Any]) -> list[ObjectKey]:
        """The owning Gateway and every ControlPlane linked to the DataPlane."""
        meta = body.get("metadata") or {}
        namespace = meta.get("namespace", "")
        keys = owner_keys(body, GATEWAY)
        for controlplane in self.store.list(CONTROL_PLANE, namespace=namespace):
            if (controlplane.get("spec") or {}).get("dataplane") == meta.get("name"):
                keys.append(ObjectKey(CONTROL_PLANE.kind, namespace, controlplane["metadata"]["name"]))
        return keys

    def for_data_plane_service(self, body: dict[str, Any]) -> list[ObjectKey]:
        """Services feed ControlPlane defaults and Gateway addresses through their DataPlane."""
        meta = body.get("metadata") or {}
        keys = []
        for ref in owner_keys(body, DATA_PLANE):
            try:
                dataplane = self.store.get(DATA_PLANE, ref.name, ref.namespace)
            except NotFoundError:
                continue
            keys.extend(self.for_data_plane(dataplane))
        if not keys:
            logger.debug(f"Service {meta.get('namespace')}/{meta.get('name')} has no live DataPlane owner")
        return keys

    def is_own_class(self, gateway_class: dict[str, Any]) -> bool:
        return (gateway_class.get("spec") or {}).get("controllerName") == self.controller_name

    def gateways_for_classes(self, class_names: set[str]) -> list[ObjectKey]:
        if not class_names:
            return []
        return [
            ObjectKey(GATEWAY.kind, gateway["metadata"]["namespace"], gateway["metadata"]["name"])
            for gateway in self.store.list(GATEWAY)
            if (gateway.get("spec") or {}).get("gatewayClassName") in class_names
        ]

    def for_gateway_class(self, body: dict[str, Any]) -> list[ObjectKey]:
        if not self.is_own_class(body):
            return []
        return self.gateways_for_classes({body["metadata"]["name"]})

    def for_gateway_configuration(self, body: dict[str, Any]) -> list[ObjectKey]:
        meta = body.get("metadata") or {}
        class_names = set()
        for gateway_class in self.store.list(GATEWAY_CLASS):
            if not self.is_own_class(gateway_class):
                continue
            ref = (gateway_class.get("spec") or {}).get("parametersRef") or {}
            if (
                ref.get("group") == API_GROUP
                and ref.get("kind") == KIND_GATEWAY_CONFIGURATION
                and ref.get("namespace") == meta.get("namespace")
                and ref.get("name") == meta.get("name")
            ):
                class_names.add(gateway_class["metadata"]["name"])
        return self.gateways_for_classes(class_names)
