"""Desired children of a ControlPlane and their kind-specific comparisons."""

from __future__ import annotations

import copy
from typing import Any

from ..constants import (
    CLUSTER_CERTIFICATE_MOUNT_PATH,
    CLUSTER_CERTIFICATE_VOLUME,
    CONTROL_PLANE_CONTAINER_NAME,
    LABEL_APP,
    LABEL_VALUE_CONTROL_PLANE,
    TLS_CA_KEY,
    TLS_CERT_KEY,
    TLS_PRIVATE_KEY_KEY,
)
from ..kinds import CLUSTER_ROLE, CLUSTER_ROLE_BINDING, DEPLOYMENT, SECRET, SERVICE_ACCOUNT
from ..utils.certificates import CertificateAuthority
from ..utils.containers import ensure_container, get_volume, get_volume_mount
from ..utils.metadata import is_subset, managed_labels, set_owner, set_owner_labels
from ..versions import cluster_role_version_for_image
from .clusterroles import cluster_role_rules


def _meta(controlplane: dict[str, Any], namespaced: bool = True) -> dict[str, Any]:
    cp_meta = controlplane["metadata"]
    meta: dict[str, Any] = {
        "generateName": f"{cp_meta['name']}-",
        "labels": managed_labels(LABEL_VALUE_CONTROL_PLANE),
    }
    if namespaced:
        meta["namespace"] = cp_meta["namespace"]
    return meta


def generate_service_account(controlplane: dict[str, Any]) -> dict[str, Any]:
    service_account = {
        "apiVersion": SERVICE_ACCOUNT.api_version,
        "kind": SERVICE_ACCOUNT.kind,
        "metadata": _meta(controlplane),
    }
    set_owner(service_account, controlplane)
    return service_account


def generate_cluster_role(controlplane: dict[str, Any], image: str | None) -> dict[str, Any]:
    """ClusterRole for the controller image, owned through owner labels.

    Raises:
        UnsupportedImageError: If no rule set covers the image version
    """
    role_version = cluster_role_version_for_image(image)
    cluster_role = {
        "apiVersion": CLUSTER_ROLE.api_version,
        "kind": CLUSTER_ROLE.kind,
        "metadata": _meta(controlplane, namespaced=False),
        "rules": cluster_role_rules(role_version),
    }
    set_owner_labels(cluster_role, controlplane)
    return cluster_role


def generate_cluster_role_binding(
    controlplane: dict[str, Any], cluster_role_name: str, service_account_name: str
) -> dict[str, Any]:
    binding = {
        "apiVersion": CLUSTER_ROLE_BINDING.api_version,
        "kind": CLUSTER_ROLE_BINDING.kind,
        "metadata": _meta(controlplane, namespaced=False),
        "roleRef": {
            "apiGroup": CLUSTER_ROLE.group,
            "kind": CLUSTER_ROLE.kind,
            "name": cluster_role_name,
        },
        "subjects": [
            {
                "kind": SERVICE_ACCOUNT.kind,
                "name": service_account_name,
                "namespace": controlplane["metadata"]["namespace"],
            }
        ],
    }
    set_owner_labels(binding, controlplane)
    return binding


def certificate_common_name(controlplane: dict[str, Any]) -> str:
    meta = controlplane["metadata"]
    return f"{meta['name']}.{meta['namespace']}"


def generate_certificate_secret(
    controlplane: dict[str, Any], ca: CertificateAuthority | None = None
) -> dict[str, Any]:
    """kubernetes.io/tls Secret with a client certificate for the admin API.

    A certificate is issued only when ``ca`` is given. Without it the Secret
    carries no data and certificate_comparator issues one on demand.
    """
    secret: dict[str, Any] = {
        "apiVersion": SECRET.api_version,
        "kind": SECRET.kind,
        "metadata": _meta(controlplane),
        "type": "kubernetes.io/tls",
    }
    if ca is not None:
        secret["data"] = ca.secret_data(certificate_common_name(controlplane))
    set_owner(secret, controlplane)
    return secret


def deployment_replicas(controlplane: dict[str, Any]) -> int:
    """Desired replicas; a ControlPlane without a DataPlane is scaled to zero."""
    spec = controlplane.get("spec") or {}
    if not spec.get("dataplane"):
        return 0
    replicas = (spec.get("deployment") or {}).get("replicas")
    return 1 if replicas is None else replicas


def generate_deployment(
    controlplane: dict[str, Any],
    service_account_name: str,
    certificate_secret_name: str,
    image: str,
) -> dict[str, Any]:
    """Deployment running the controller from the ControlPlane's pod template."""
    name = controlplane["metadata"]["name"]
    options = (controlplane.get("spec") or {}).get("deployment") or {}
    template = copy.deepcopy(options.get("podTemplateSpec") or {})
    template_meta = template.setdefault("metadata", {})
    template_meta.setdefault("labels", {})[LABEL_APP] = name
    pod_spec = template.setdefault("spec", {})
    pod_spec["serviceAccountName"] = service_account_name

    container = ensure_container(pod_spec, CONTROL_PLANE_CONTAINER_NAME)
    container["image"] = image

    if get_volume(pod_spec, CLUSTER_CERTIFICATE_VOLUME) is None:
        pod_spec.setdefault("volumes", []).append({
            "name": CLUSTER_CERTIFICATE_VOLUME,
            "secret": {
                "secretName": certificate_secret_name,
                "items": [{"key": key, "path": key} for key in (TLS_CERT_KEY, TLS_PRIVATE_KEY_KEY, TLS_CA_KEY)],
            },
        })
    if get_volume_mount(container, CLUSTER_CERTIFICATE_VOLUME) is None:
        container.setdefault("volumeMounts", []).append({
            "name": CLUSTER_CERTIFICATE_VOLUME,
            "mountPath": CLUSTER_CERTIFICATE_MOUNT_PATH,
            "readOnly": True,
        })

    meta = _meta(controlplane)
    meta["labels"][LABEL_APP] = name
    deployment = {
        "apiVersion": DEPLOYMENT.api_version,
        "kind": DEPLOYMENT.kind,
        "metadata": meta,
        "spec": {
            "replicas": deployment_replicas(controlplane),
            "selector": {"matchLabels": {LABEL_APP: name}},
            "template": template,
        },
    }
    set_owner(deployment, controlplane)
    return deployment


def is_deployment_ready(deployment: dict[str, Any]) -> bool:
    """Ready once pods exist and enough of them are available."""
    status = deployment.get("status") or {}
    desired = (deployment.get("spec") or {}).get("replicas")
    replicas = status.get("replicas") or 0
    available = status.get("availableReplicas") or 0
    return replicas > 0 and available >= (replicas if desired is None else desired)


# -----------------------------------------------------------------------------
# Comparisons
#
# Each takes the existing object and the generated one, copies the fields that
# differ onto the existing object and returns True if it did.
# -----------------------------------------------------------------------------


def update_spec_fields(existing: dict[str, Any], generated: dict[str, Any], *fields: str) -> bool:
    changed = False
    for field in fields:
        if not is_subset(generated.get(field), existing.get(field)):
            existing[field] = copy.deepcopy(generated.get(field))
            changed = True
    return changed


def compare_service_account(existing: dict[str, Any], generated: dict[str, Any]) -> bool:
    return False


def compare_cluster_role(existing: dict[str, Any], generated: dict[str, Any]) -> bool:
    return update_spec_fields(existing, generated, "rules")


def compare_cluster_role_binding(existing: dict[str, Any], generated: dict[str, Any]) -> bool:
    return update_spec_fields(existing, generated, "roleRef", "subjects")


def compare_deployment(existing: dict[str, Any], generated: dict[str, Any]) -> bool:
    return update_spec_fields(existing, generated, "spec")


def certificate_comparator(ca: CertificateAuthority, common_name: str):
    """Build a Secret comparison that reissues certificates the CA no longer vouches for.

    A new certificate is signed only when the existing one is not current.
    """

    def compare(existing: dict[str, Any], generated: dict[str, Any]) -> bool:
        changed = False
        if existing.get("type") != generated.get("type"):
            existing["type"] = generated["type"]
            changed = True
        if not ca.is_current(existing.get("data")):
            existing["data"] = ca.secret_data(common_name)
            changed = True
        return changed

    return compare
