"""Helpers for pod specs, containers, environment variables and volumes."""

from __future__ import annotations

from typing import Any

EnvList = list[dict[str, Any]]


def get_container(pod_spec: dict[str, Any], name: str) -> dict[str, Any] | None:
    """Return the container with the given name, or None."""
    for container in pod_spec.get("containers") or []:
        if container.get("name") == name:
            return container
    return None


def ensure_container(pod_spec: dict[str, Any], name: str) -> dict[str, Any]:
    """Return the named container, appending an empty one if missing."""
    container = get_container(pod_spec, name)
    if container is None:
        container = {"name": name}
        pod_spec.setdefault("containers", []).append(container)
    return container


def pod_spec_of(deployment_options: dict[str, Any]) -> dict[str, Any]:
    """Return ``podTemplateSpec.spec`` of deployment options, creating it if absent."""
    template = deployment_options.get("podTemplateSpec")
    if template is None:
        template = deployment_options["podTemplateSpec"] = {}
    spec = template.get("spec")
    if spec is None:
        spec = template["spec"] = {}
    return spec


def read_pod_spec(deployment_options: dict[str, Any] | None) -> dict[str, Any]:
    """Return ``podTemplateSpec.spec`` of deployment options without modifying them."""
    template = (deployment_options or {}).get("podTemplateSpec") or {}
    return template.get("spec") or {}


def env_var(env: EnvList, name: str) -> dict[str, Any] | None:
    for item in env:
        if item.get("name") == name:
            return item
    return None


def env_value(env: EnvList, name: str) -> str:
    """Value of the first env var with the given name, "" when absent."""
    item = env_var(env, name)
    return (item or {}).get("value") or ""


def reject_env(env: EnvList, name: str) -> EnvList:
    """Copy of ``env`` without any variable called ``name``."""
    return [item for item in env if item.get("name") != name]


def put_env(env: EnvList, item: dict[str, Any]) -> EnvList:
    """Copy of ``env`` with ``item`` replacing the first variable of the same name.

    Later duplicates are dropped. The variable is appended when missing.
    """
    result: EnvList = []
    placed = False
    for existing in env:
        if existing.get("name") != item["name"]:
            result.append(existing)
        elif not placed:
            result.append(item)
            placed = True
    if not placed:
        result.append(item)
    return result


def env_names(env: EnvList) -> set[str]:
    return {item["name"] for item in env if item.get("name")}


def normalize_env(env: EnvList) -> list[tuple]:
    """Order-insensitive representation of an env list for comparisons."""
    return sorted(
        (item.get("name", ""), item.get("value") or "", repr(item.get("valueFrom")))
        for item in env
    )


def get_volume(pod_spec: dict[str, Any], name: str) -> dict[str, Any] | None:
    for volume in pod_spec.get("volumes") or []:
        if volume.get("name") == name:
            return volume
    return None


def get_volume_mount(container: dict[str, Any], name: str) -> dict[str, Any] | None:
    for mount in container.get("volumeMounts") or []:
        if mount.get("name") == name:
            return mount
    return None
