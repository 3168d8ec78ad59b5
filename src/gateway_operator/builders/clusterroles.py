"""ClusterRole rules needed by each supported ingress controller version."""

from __future__ import annotations

import copy
from typing import Any

from ..utils.errors import UnsupportedImageError

_READ = ["get", "list", "watch"]
_STATUS_RW = ["get", "patch", "update"]
_STATUS_GATEWAY = ["get", "update"]
_ALL = ["get", "list", "watch", "create", "update", "patch", "delete"]


def _rule(group: str, resource: str, verbs: list[str]) -> dict[str, Any]:
    return {"apiGroups": [group], "resources": [resource], "verbs": list(verbs)}


def _with_status(group: str, resource: str, status_verbs: list[str] = _STATUS_RW) -> list[dict[str, Any]]:
    return [_rule(group, resource, _READ), _rule(group, f"{resource}/status", status_verbs)]


_CORE_RULES = [
    _rule("", "endpoints", ["list", "watch"]),
    _rule("", "endpoints/status", _STATUS_RW),
    _rule("", "events", ["create", "patch"]),
    _rule("", "nodes", ["list", "watch"]),
    _rule("", "pods", _READ),
    _rule("", "secrets", ["list", "watch"]),
    _rule("", "secrets/status", _STATUS_RW),
    *_with_status("", "services"),
]

_KONG_RULES = [
    _rule("configuration.konghq.com", "ingressclassparameterses", _READ),
    *_with_status("configuration.konghq.com", "kongclusterplugins"),
    *_with_status("configuration.konghq.com", "kongconsumers"),
    *_with_status("configuration.konghq.com", "kongingresses"),
    *_with_status("configuration.konghq.com", "kongplugins"),
    *_with_status("configuration.konghq.com", "tcpingresses"),
    *_with_status("configuration.konghq.com", "udpingresses"),
]

_INGRESS_RULES = [
    *_with_status("extensions", "ingresses"),
    _rule("networking.k8s.io", "ingressclasses", _READ),
    *_with_status("networking.k8s.io", "ingresses"),
]

_GATEWAY_API_RULES_2_7 = [
    *_with_status("gateway.networking.k8s.io", "gatewayclasses", _STATUS_GATEWAY),
    _rule("gateway.networking.k8s.io", "gateways", ["get", "list", "update", "watch"]),
    _rule("gateway.networking.k8s.io", "gateways/status", _STATUS_GATEWAY),
    *_with_status("gateway.networking.k8s.io", "httproutes", _STATUS_GATEWAY),
    _rule("gateway.networking.k8s.io", "referencegrants", _READ),
    _rule("gateway.networking.k8s.io", "referencegrants/status", ["get"]),
    *_with_status("gateway.networking.k8s.io", "tcproutes", _STATUS_GATEWAY),
    *_with_status("gateway.networking.k8s.io", "tlsroutes", _STATUS_GATEWAY),
    *_with_status("gateway.networking.k8s.io", "udproutes", _STATUS_GATEWAY),
]

_KNATIVE_RULES = _with_status("networking.internal.knative.dev", "ingresses")

_LEADER_ELECTION_RULES = [
    _rule("", "configmaps", _ALL),
    _rule("coordination.k8s.io", "leases", _ALL),
]

RULES_GE_2_7_LT_2_9 = [
    *_CORE_RULES,
    *_KONG_RULES,
    *_INGRESS_RULES,
    *_GATEWAY_API_RULES_2_7,
    *_KNATIVE_RULES,
    *_LEADER_ELECTION_RULES,
]

RULES_GE_2_9 = [
    *_CORE_RULES,
    _rule("discovery.k8s.io", "endpointslices", ["list", "watch"]),
    *_KONG_RULES,
    *_INGRESS_RULES,
    *_GATEWAY_API_RULES_2_7,
    *_with_status("gateway.networking.k8s.io", "grpcroutes", _STATUS_GATEWAY),
    *_KNATIVE_RULES,
    *_LEADER_ELECTION_RULES,
]

RULES_BY_ROLE_VERSION: dict[str, list[dict[str, Any]]] = {
    "2.9.3": RULES_GE_2_9,
    "2.7": RULES_GE_2_7_LT_2_9,
}


def cluster_role_rules(role_version: str) -> list[dict[str, Any]]:
    """Return a copy of the rules generated for a ClusterRole version."""
    try:
        return copy.deepcopy(RULES_BY_ROLE_VERSION[role_version])
    except KeyError as e:
        raise UnsupportedImageError(f"no ClusterRole rules for version {role_version}") from e
