"""Validation predicates for ControlPlanes and DataPlanes.

These are pure checks an admission webhook can call before objects reach the
reconcilers. The ControlPlane reconciler reuses them when resolving images.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from .constants import CONTROL_PLANE_CONTAINER_NAME, DATA_PLANE_CONTAINER_NAME, ENV_KONG_DATABASE
from .kinds import CONFIG_MAP, SECRET
from .store.base import ObjectStore
from .utils.containers import get_container, read_pod_spec
from .utils.errors import NotFoundError, StoreError, UnsupportedDatabaseModeError, UnsupportedImageError
from .versions import is_control_plane_image_supported

__all__ = [
    "control_plane_image",
    "is_control_plane_image_supported",
    "validate_control_plane",
    "validate_dataplane",
    "validate_dataplane_deploy_options",
]

SUPPORTED_DATABASE_MODES = ("", "off")


def control_plane_image(
    options: dict[str, Any], default_image: str, development_mode: bool = False
) -> str:
    """Resolve the controller image of ControlPlane options.

    An explicit container image wins and is validated unless running in
    development mode. Otherwise ``default_image`` is used.

    Raises:
        UnsupportedImageError: If the explicit image is not supported
    """
    pod_spec = read_pod_spec(options.get("deployment"))
    container = get_container(pod_spec, CONTROL_PLANE_CONTAINER_NAME) or {}
    image = container.get("image")
    if image:
        if not development_mode and not is_control_plane_image_supported(image):
            raise UnsupportedImageError(f"unsupported ControlPlane image {image}")
        return image
    return default_image


def validate_control_plane(
    controlplane: dict[str, Any], default_image: str, development_mode: bool = False
) -> None:
    """Raise UnsupportedImageError if the ControlPlane asks for an unsupported image."""
    control_plane_image(controlplane.get("spec") or {}, default_image, development_mode)


def _database_mode_from_source(store: ObjectStore, namespace: str, source: dict[str, Any]) -> str:
    config_map_ref = source.get("configMapKeyRef")
    if config_map_ref:
        try:
            config_map = store.get(CONFIG_MAP, config_map_ref["name"], namespace)
        except NotFoundError as e:
            raise StoreError(
                f"failed to get configMap {config_map_ref['name']} in configMapKeyRef: {e}"
            ) from e
        value = (config_map.get("data") or {}).get(config_map_ref.get("key", ""))
        if value:
            return value

    secret_ref = source.get("secretKeyRef")
    if secret_ref:
        try:
            secret = store.get(SECRET, secret_ref["name"], namespace)
        except NotFoundError as e:
            raise StoreError(f"failed to get secret {secret_ref['name']} in secretRef: {e}") from e
        encoded = (secret.get("data") or {}).get(secret_ref.get("key", ""))
        if encoded:
            try:
                return base64.b64decode(encoded, validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError):
                return ""
    return ""


def validate_dataplane_deploy_options(store: ObjectStore, namespace: str, options: dict[str, Any]) -> None:
    """Only DB-less DataPlanes are supported.

    ``KONG_DATABASE`` on the proxy container may be a literal or come from a
    ConfigMap or Secret key. The last occurrence wins, like in a pod.

    Raises:
        UnsupportedDatabaseModeError: If a database backend is requested
        StoreError: If a referenced ConfigMap or Secret cannot be read
    """
    pod_spec = read_pod_spec(options.get("deployment"))
    container = get_container(pod_spec, DATA_PLANE_CONTAINER_NAME) or {}

    database_mode = ""
    for item in container.get("env") or []:
        if item.get("name") != ENV_KONG_DATABASE:
            continue
        if item.get("value"):
            database_mode = item["value"]
        elif item.get("valueFrom"):
            database_mode = _database_mode_from_source(store, namespace, item["valueFrom"]) or database_mode

    if database_mode not in SUPPORTED_DATABASE_MODES:
        raise UnsupportedDatabaseModeError(
            f"database backend {database_mode} of dataplane not supported currently"
        )


def validate_dataplane(store: ObjectStore, dataplane: dict[str, Any]) -> None:
    namespace = (dataplane.get("metadata") or {}).get("namespace", "")
    validate_dataplane_deploy_options(store, namespace, dataplane.get("spec") or {})
