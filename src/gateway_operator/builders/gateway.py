"""Desired children of a Gateway: DataPlane, ControlPlane and NetworkPolicy."""

from __future__ import annotations

import copy
from typing import Any

from ..constants import (
    ANNOTATION_MANAGED_ENV,
    DATA_PLANE_ADMIN_API_PORT,
    DATA_PLANE_METRICS_PORT,
    DATA_PLANE_PROXY_PORT,
    DATA_PLANE_PROXY_SSL_PORT,
    LABEL_APP,
    LABEL_NAMESPACE_NAME,
    LABEL_VALUE_GATEWAY,
)
from ..kinds import CONTROL_PLANE, DATA_PLANE, NETWORK_POLICY
from ..utils.metadata import is_subset, managed_labels, set_owner
from .defaults import control_plane_options_equal, data_plane_options_equal, format_managed_env_annotation


def _gateway_child_meta(gateway: dict[str, Any], prefix: str) -> dict[str, Any]:
    return {
        "generateName": prefix,
        "namespace": gateway["metadata"]["namespace"],
        "labels": managed_labels(LABEL_VALUE_GATEWAY),
    }


def generate_data_plane(gateway: dict[str, Any], options: dict[str, Any]) -> dict[str, Any]:
    """DataPlane for a Gateway built from already defaulted options."""
    dataplane = {
        "apiVersion": DATA_PLANE.api_version,
        "kind": DATA_PLANE.kind,
        "metadata": _gateway_child_meta(gateway, f"{gateway['metadata']['name']}-"),
        "spec": copy.deepcopy(options),
    }
    set_owner(dataplane, gateway)
    return dataplane


def generate_control_plane(
    gateway: dict[str, Any],
    gateway_class_name: str,
    options: dict[str, Any],
    managed_env: list[str],
) -> dict[str, Any]:
    """ControlPlane for a Gateway.

    ``options`` must already name the DataPlane and carry the defaulted
    environment; ``managed_env`` lists the variables that defaulting wrote.
    """
    spec = copy.deepcopy(options)
    spec["gatewayClass"] = gateway_class_name
    meta = _gateway_child_meta(gateway, f"{gateway['metadata']['name']}-")
    meta["annotations"] = {ANNOTATION_MANAGED_ENV: format_managed_env_annotation(managed_env)}
    controlplane = {
        "apiVersion": CONTROL_PLANE.api_version,
        "kind": CONTROL_PLANE.kind,
        "metadata": meta,
        "spec": spec,
    }
    set_owner(controlplane, gateway)
    return controlplane


def _tcp_port(port: int) -> dict[str, Any]:
    return {"protocol": "TCP", "port": port}


def generate_network_policy(
    gateway: dict[str, Any], dataplane: dict[str, Any], controlplane: dict[str, Any]
) -> dict[str, Any]:
    """NetworkPolicy limiting the DataPlane admin API to the ControlPlane pods.

    Proxy and metrics ports stay open to any source.
    """
    dataplane_meta = dataplane["metadata"]
    limit_admin_api = {
        "ports": [_tcp_port(DATA_PLANE_ADMIN_API_PORT)],
        "from": [
            {
                "podSelector": {"matchLabels": {LABEL_APP: controlplane["metadata"]["name"]}},
                # Requires the NamespaceDefaultLabelName feature gate.
                "namespaceSelector": {"matchLabels": {LABEL_NAMESPACE_NAME: dataplane_meta["namespace"]}},
            }
        ],
    }
    allow_proxy = {"ports": [_tcp_port(DATA_PLANE_PROXY_PORT), _tcp_port(DATA_PLANE_PROXY_SSL_PORT)]}
    allow_metrics = {"ports": [_tcp_port(DATA_PLANE_METRICS_PORT)]}

    policy = {
        "apiVersion": NETWORK_POLICY.api_version,
        "kind": NETWORK_POLICY.kind,
        "metadata": _gateway_child_meta(gateway, f"{dataplane_meta['name']}-limit-admin-api-"),
        "spec": {
            "podSelector": {"matchLabels": {LABEL_APP: dataplane_meta["name"]}},
            "policyTypes": ["Ingress"],
            "ingress": [limit_admin_api, allow_proxy, allow_metrics],
        },
    }
    set_owner(policy, gateway)
    return policy


def compare_network_policy(existing: dict[str, Any], generated: dict[str, Any]) -> bool:
    if is_subset(generated["spec"], existing.get("spec")):
        return False
    existing["spec"] = copy.deepcopy(generated["spec"])
    return True


def compare_data_plane(existing: dict[str, Any], generated: dict[str, Any]) -> bool:
    """Replace the DataPlane options when they differ from the defaulted desired ones."""
    spec = existing.get("spec") or {}
    if data_plane_options_equal(spec, generated["spec"]):
        return False
    existing["spec"] = {**spec, **copy.deepcopy(generated["spec"])}
    return True


def compare_control_plane(existing: dict[str, Any], generated: dict[str, Any]) -> bool:
    """Replace the ControlPlane options and the managed env list when they differ."""
    spec = existing.get("spec") or {}
    if control_plane_options_equal(spec, generated["spec"]):
        return False
    existing["spec"] = {**spec, **copy.deepcopy(generated["spec"])}
    annotations = existing["metadata"].setdefault("annotations", {})
    annotations[ANNOTATION_MANAGED_ENV] = generated["metadata"]["annotations"][ANNOTATION_MANAGED_ENV]
    return True


def gateway_addresses(service: dict[str, Any]) -> list[dict[str, str]]:
    """Addresses of a proxy Service: load balancer IP first, then cluster IP.

    Raises:
        ValueError: If the Service has no cluster IP yet or its load balancer
            ingress carries no IP
    """
    meta = service.get("metadata") or {}
    cluster_ip = (service.get("spec") or {}).get("clusterIP")
    if not cluster_ip:
        raise ValueError(f"service {meta.get('name')} doesn't have a ClusterIP yet, not ready")

    ips: list[str] = []
    ingress = ((service.get("status") or {}).get("loadBalancer") or {}).get("ingress") or []
    if ingress:
        ip = ingress[0].get("ip")
        if not ip:
            raise ValueError(
                f"missing loadbalancer.ingress[0].ip in service {meta.get('namespace')}/{meta.get('name')}"
            )
        ips.append(ip)
    ips.append(cluster_ip)
    return [{"type": "IPAddress", "value": ip} for ip in ips]
