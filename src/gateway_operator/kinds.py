"""Resource kinds handled by the operator and how to address them."""

from __future__ import annotations

from dataclasses import dataclass

from .constants import (
    API_GROUP,
    GATEWAY_API_GROUP,
    KIND_CONTROL_PLANE,
    KIND_DATA_PLANE,
    KIND_GATEWAY,
    KIND_GATEWAY_CLASS,
    KIND_GATEWAY_CONFIGURATION,
)


@dataclass(frozen=True)
class ResourceKind:
    """Addressing information for one Kubernetes resource kind.

    Kinds with an ``api`` are served by the typed kubernetes client
    (``CoreV1Api`` and friends) using ``resource`` as the snake_case name in
    the generated method names. Kinds without one are custom resources served
    by ``CustomObjectsApi``.
    """

    group: str
    version: str
    kind: str
    plural: str
    namespaced: bool = True
    status_subresource: bool = False
    api: str | None = None
    resource: str | None = None

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def is_custom(self) -> bool:
        return self.api is None

    def __str__(self) -> str:
        return self.kind


GATEWAY = ResourceKind(GATEWAY_API_GROUP, "v1beta1", KIND_GATEWAY, "gateways", status_subresource=True)
GATEWAY_CLASS = ResourceKind(
    GATEWAY_API_GROUP, "v1beta1", KIND_GATEWAY_CLASS, "gatewayclasses", namespaced=False, status_subresource=True
)
GATEWAY_CONFIGURATION = ResourceKind(API_GROUP, "v1alpha1", KIND_GATEWAY_CONFIGURATION, "gatewayconfigurations")
CONTROL_PLANE = ResourceKind(API_GROUP, "v1alpha1", KIND_CONTROL_PLANE, "controlplanes", status_subresource=True)
DATA_PLANE = ResourceKind(API_GROUP, "v1beta1", KIND_DATA_PLANE, "dataplanes", status_subresource=True)

SERVICE_ACCOUNT = ResourceKind(
    "", "v1", "ServiceAccount", "serviceaccounts", api="CoreV1Api", resource="service_account"
)
SECRET = ResourceKind("", "v1", "Secret", "secrets", api="CoreV1Api", resource="secret")
CONFIG_MAP = ResourceKind("", "v1", "ConfigMap", "configmaps", api="CoreV1Api", resource="config_map")
SERVICE = ResourceKind(
    "", "v1", "Service", "services", status_subresource=True, api="CoreV1Api", resource="service"
)
DEPLOYMENT = ResourceKind(
    "apps", "v1", "Deployment", "deployments", status_subresource=True, api="AppsV1Api", resource="deployment"
)
NETWORK_POLICY = ResourceKind(
    "networking.k8s.io", "v1", "NetworkPolicy", "networkpolicies", api="NetworkingV1Api", resource="network_policy"
)
CLUSTER_ROLE = ResourceKind(
    "rbac.authorization.k8s.io",
    "v1",
    "ClusterRole",
    "clusterroles",
    namespaced=False,
    api="RbacAuthorizationV1Api",
    resource="cluster_role",
)
CLUSTER_ROLE_BINDING = ResourceKind(
    "rbac.authorization.k8s.io",
    "v1",
    "ClusterRoleBinding",
    "clusterrolebindings",
    namespaced=False,
    api="RbacAuthorizationV1Api",
    resource="cluster_role_binding",
)
