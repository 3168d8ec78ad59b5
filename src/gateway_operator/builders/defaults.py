"""Defaulting and equality of DataPlane and ControlPlane options."""

from __future__ import annotations

import copy
from typing import Any, Iterable

from ..constants import (
    ANNOTATION_MANAGED_ENV,
    CLUSTER_CERTIFICATE_MOUNT_PATH,
    CONTROL_PLANE_CONTAINER_NAME,
    DATA_PLANE_ADMIN_API_PORT,
    DATA_PLANE_CONTAINER_NAME,
    DEFAULT_DATA_PLANE_IMAGE,
    ENV_ADMIN_CA_CERT_FILE,
    ENV_ADMIN_TLS_CLIENT_CERT_FILE,
    ENV_ADMIN_TLS_CLIENT_KEY_FILE,
    ENV_ADMIN_URL,
    ENV_CONTROLLER_NAME,
    ENV_POD_NAME,
    ENV_POD_NAMESPACE,
    ENV_PUBLISH_SERVICE,
    TLS_CA_KEY,
    TLS_CERT_KEY,
    TLS_PRIVATE_KEY_KEY,
)
from ..utils.containers import (
    ensure_container,
    env_names,
    env_var,
    get_container,
    normalize_env,
    pod_spec_of,
    read_pod_spec,
    put_env,
    reject_env,
)

# Variables that only make sense while a DataPlane is linked.
DATA_PLANE_ENV_NAMES = (ENV_PUBLISH_SERVICE, ENV_ADMIN_URL)

DEFAULTED_ENV_NAMES = frozenset({
    ENV_POD_NAMESPACE,
    ENV_POD_NAME,
    ENV_CONTROLLER_NAME,
    ENV_PUBLISH_SERVICE,
    ENV_ADMIN_URL,
    ENV_ADMIN_TLS_CLIENT_CERT_FILE,
    ENV_ADMIN_TLS_CLIENT_KEY_FILE,
    ENV_ADMIN_CA_CERT_FILE,
})


def controller_publish_service(service_name: str, namespace: str) -> str:
    return f"{namespace}/{service_name}"


def controller_kong_admin_url(service_name: str, namespace: str) -> str:
    return f"https://{service_name}.{namespace}.svc:{DATA_PLANE_ADMIN_API_PORT}"


def _field_ref(path: str) -> dict[str, Any]:
    return {"fieldRef": {"apiVersion": "v1", "fieldPath": path}}


def control_plane_default_env(
    namespace: str, controller_name: str, dataplane_service_name: str = ""
) -> dict[str, dict[str, Any]]:
    """Environment entries the operator manages on the controller container."""
    defaults: dict[str, dict[str, Any]] = {
        ENV_POD_NAMESPACE: {"name": ENV_POD_NAMESPACE, "valueFrom": _field_ref("metadata.namespace")},
        ENV_POD_NAME: {"name": ENV_POD_NAME, "valueFrom": _field_ref("metadata.name")},
        ENV_CONTROLLER_NAME: {"name": ENV_CONTROLLER_NAME, "value": controller_name},
    }
    if namespace and dataplane_service_name:
        defaults[ENV_PUBLISH_SERVICE] = {
            "name": ENV_PUBLISH_SERVICE,
            "value": controller_publish_service(dataplane_service_name, namespace),
        }
        defaults[ENV_ADMIN_URL] = {
            "name": ENV_ADMIN_URL,
            "value": controller_kong_admin_url(dataplane_service_name, namespace),
        }
    for name, key in (
        (ENV_ADMIN_TLS_CLIENT_CERT_FILE, TLS_CERT_KEY),
        (ENV_ADMIN_TLS_CLIENT_KEY_FILE, TLS_PRIVATE_KEY_KEY),
        (ENV_ADMIN_CA_CERT_FILE, TLS_CA_KEY),
    ):
        defaults[name] = {"name": name, "value": f"{CLUSTER_CERTIFICATE_MOUNT_PATH}/{key}"}
    return defaults


def set_control_plane_defaults(
    options: dict[str, Any],
    namespace: str,
    controller_name: str,
    dataplane_service_name: str = "",
    dont_override: Iterable[str] = (),
) -> bool:
    """Write the managed environment of the controller container in place.

    Variables named in ``dont_override`` belong to the caller and are never
    touched. DataPlane-derived variables are removed when no DataPlane
    service is known.

    Returns:
        True if ``options`` changed
    """
    dont_override = set(dont_override)
    container = ensure_container(pod_spec_of(options.setdefault("deployment", {})), CONTROL_PLANE_CONTAINER_NAME)
    env = list(container.get("env") or [])
    changed = False

    defaults = control_plane_default_env(namespace, controller_name, dataplane_service_name)
    for name, item in defaults.items():
        if name in dont_override:
            continue
        if env_var(env, name) != item:
            env = put_env(env, item)
            changed = True

    for name in DATA_PLANE_ENV_NAMES:
        if name in defaults or name in dont_override:
            continue
        if env_var(env, name) is not None:
            env = reject_env(env, name)
            changed = True

    if changed:
        container["env"] = env
    return changed


def managed_env_names(options: dict[str, Any], dont_override: Iterable[str] = ()) -> list[str]:
    """Names of the defaulted variables present on the controller container."""
    container = get_container(read_pod_spec(options.get("deployment")), CONTROL_PLANE_CONTAINER_NAME)
    present = env_names((container or {}).get("env") or [])
    return sorted((present & DEFAULTED_ENV_NAMES) - set(dont_override))


def read_managed_env_annotation(obj: dict[str, Any]) -> set[str]:
    annotations = (obj.get("metadata") or {}).get("annotations") or {}
    value = annotations.get(ANNOTATION_MANAGED_ENV) or ""
    return {name.strip() for name in value.split(",") if name.strip()}


def format_managed_env_annotation(names: Iterable[str]) -> str:
    return ",".join(sorted(names))


def caller_env_names(obj: dict[str, Any]) -> set[str]:
    """Controller variables set by the caller rather than by defaulting.

    Everything on the container that the managed-env annotation does not list
    was put there by someone else.
    """
    spec = obj.get("spec") or {}
    container = get_container(read_pod_spec(spec.get("deployment")), CONTROL_PLANE_CONTAINER_NAME)
    present = env_names((container or {}).get("env") or [])
    return present - read_managed_env_annotation(obj)


# -----------------------------------------------------------------------------
# Options
# -----------------------------------------------------------------------------


def _default_deployment(options: dict[str, Any], container_name: str, image: str) -> None:
    deployment = options.setdefault("deployment", {})
    if deployment.get("replicas") is None:
        deployment["replicas"] = 1
    container = ensure_container(pod_spec_of(deployment), container_name)
    if not container.get("image"):
        container["image"] = image


def default_data_plane_options(options: dict[str, Any] | None) -> dict[str, Any]:
    """Copy of DataPlane options with replicas and the proxy image filled in."""
    result = copy.deepcopy(options or {})
    _default_deployment(result, DATA_PLANE_CONTAINER_NAME, DEFAULT_DATA_PLANE_IMAGE)
    return result


def default_control_plane_options(options: dict[str, Any] | None, image: str) -> dict[str, Any]:
    """Copy of ControlPlane options with replicas and the controller image filled in."""
    result = copy.deepcopy(options or {})
    _default_deployment(result, CONTROL_PLANE_CONTAINER_NAME, image)
    return result


def _comparable_deployment(deployment: dict[str, Any] | None, ignore_env: Iterable[str]) -> dict[str, Any]:
    deployment = copy.deepcopy(deployment or {})
    ignored = set(ignore_env)
    template = deployment.get("podTemplateSpec") or {}
    for container in (template.get("spec") or {}).get("containers") or []:
        env = [item for item in container.get("env") or [] if item.get("name") not in ignored]
        container.pop("env", None)
        if env:
            container["env"] = normalize_env(env)
    return deployment


def deployment_options_equal(
    left: dict[str, Any] | None, right: dict[str, Any] | None, ignore_env: Iterable[str] = ()
) -> bool:
    """Compare deployment options; env order and ``ignore_env`` variables do not matter."""
    ignore_env = tuple(ignore_env)
    return _comparable_deployment(left, ignore_env) == _comparable_deployment(right, ignore_env)


def data_plane_options_equal(existing: dict[str, Any], desired: dict[str, Any]) -> bool:
    return deployment_options_equal(existing.get("deployment"), desired.get("deployment"))


def control_plane_options_equal(existing: dict[str, Any], desired: dict[str, Any]) -> bool:
    """Compare ControlPlane options ignoring the admin URL.

    The admin URL is owned by the ControlPlane's own defaulting.
    """
    if (existing.get("dataplane") or "") != (desired.get("dataplane") or ""):
        return False
    return deployment_options_equal(
        existing.get("deployment"), desired.get("deployment"), ignore_env=(ENV_ADMIN_URL,)
    )
