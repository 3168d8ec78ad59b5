"""ObjectStore backed by the official kubernetes client."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from .. import metrics
from ..kinds import ResourceKind
from ..utils.context import record_write
from ..utils.errors import AlreadyExistsError, ConflictError, NotFoundError, StoreError
from ..utils.rate_limit import handle_rate_limit_error, rate_limit_k8s
from .base import label_selector

logger = logging.getLogger(__name__)


def load_kubernetes_config() -> None:
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


def _status_reason(e: ApiException) -> str:
    try:
        return json.loads(e.body or "{}").get("reason", "")
    except (TypeError, ValueError):
        return ""


def _path(meta: dict[str, Any]) -> str:
    namespace = meta.get("namespace")
    return f"{namespace}/{meta.get('name')}" if namespace else meta.get("name", "")


def translate_api_exception(e: ApiException, kind: ResourceKind) -> StoreError:
    """Map an ApiException onto the store's error types."""
    message = f"{kind.kind}: {e.status} {e.reason}"
    if e.status == 404:
        return NotFoundError(message)
    if e.status == 409:
        if _status_reason(e) == "AlreadyExists":
            return AlreadyExistsError(message)
        return ConflictError(message)
    return StoreError(message, status=e.status)


class KubernetesObjectStore:
    """ObjectStore over the typed APIs and CustomObjectsApi.

    Built-in kinds are addressed through their typed API class (``CoreV1Api``,
    ``AppsV1Api``, ...) by composing the generated method names from
    ``ResourceKind.resource``. Custom resources go through
    ``CustomObjectsApi``. Every result is returned as a camelCase dict.
    """

    def __init__(self, api_client: client.ApiClient | None = None):
        self.api_client = api_client or client.ApiClient()
        self.custom = client.CustomObjectsApi(self.api_client)
        self._typed_apis: dict[str, Any] = {}

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _typed(self, kind: ResourceKind, verb: str, suffix: str = "") -> Callable[..., Any]:
        api = self._typed_apis.get(kind.api)
        if api is None:
            api = self._typed_apis[kind.api] = getattr(client, kind.api)(self.api_client)
        scope = "namespaced_" if kind.namespaced else ""
        return getattr(api, f"{verb}_{scope}{kind.resource}{suffix}")

    def _call(self, operation: str, kind: ResourceKind, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        metric_operation = f"{operation}_{kind.kind.lower()}"
        start_time = time.time()
        attempt = 0
        try:
            while True:
                try:
                    result = rate_limit_k8s(fn)(*args, **kwargs)
                    metrics.api_call_total.labels(api_type="k8s", operation=metric_operation, result="success").inc()
                    return result
                except ApiException as e:
                    if handle_rate_limit_error(e, attempt):
                        attempt += 1
                        continue
                    metrics.api_call_total.labels(api_type="k8s", operation=metric_operation, result="error").inc()
                    raise translate_api_exception(e, kind) from e
        finally:
            duration = time.time() - start_time
            metrics.api_call_duration_seconds.labels(api_type="k8s", operation=metric_operation).observe(duration)

    def _to_dict(self, kind: ResourceKind, obj: Any) -> dict[str, Any]:
        data = obj if isinstance(obj, dict) else self.api_client.sanitize_for_serialization(obj)
        data.setdefault("apiVersion", kind.api_version)
        data.setdefault("kind", kind.kind)
        return data

    def _custom_args(self, kind: ResourceKind, namespace: str | None) -> tuple:
        if kind.namespaced:
            return (kind.group, kind.version, namespace, kind.plural)
        return (kind.group, kind.version, kind.plural)

    def _custom(self, kind: ResourceKind, verb: str, suffix: str = "") -> Callable[..., Any]:
        scope = "namespaced" if kind.namespaced else "cluster"
        return getattr(self.custom, f"{verb}_{scope}_custom_object{suffix}")

    # -------------------------------------------------------------------------
    # ObjectStore
    # -------------------------------------------------------------------------

    def get(self, kind: ResourceKind, name: str, namespace: str | None = None) -> dict[str, Any]:
        if kind.is_custom:
            result = self._call("get", kind, self._custom(kind, "get"), *self._custom_args(kind, namespace), name)
        elif kind.namespaced:
            result = self._call("get", kind, self._typed(kind, "read"), name, namespace)
        else:
            result = self._call("get", kind, self._typed(kind, "read"), name)
        return self._to_dict(kind, result)

    def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        selector = label_selector(labels)
        if kind.is_custom:
            if kind.namespaced and namespace:
                result = self._call(
                    "list", kind, self.custom.list_namespaced_custom_object,
                    kind.group, kind.version, namespace, kind.plural, label_selector=selector,
                )
            else:
                result = self._call(
                    "list", kind, self.custom.list_cluster_custom_object,
                    kind.group, kind.version, kind.plural, label_selector=selector,
                )
            return [self._to_dict(kind, item) for item in result.get("items", [])]

        if not kind.namespaced:
            result = self._call("list", kind, self._typed(kind, "list"), label_selector=selector)
        elif namespace:
            result = self._call("list", kind, self._typed(kind, "list"), namespace, label_selector=selector)
        else:
            api = self._typed_apis.get(kind.api) or getattr(client, kind.api)(self.api_client)
            self._typed_apis[kind.api] = api
            fn = getattr(api, f"list_{kind.resource}_for_all_namespaces")
            result = self._call("list", kind, fn, label_selector=selector)
        return [self._to_dict(kind, item) for item in result.items or []]

    def create(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        namespace = (obj.get("metadata") or {}).get("namespace")
        if kind.is_custom:
            result = self._call("create", kind, self._custom(kind, "create"), *self._custom_args(kind, namespace), obj)
        elif kind.namespaced:
            result = self._call("create", kind, self._typed(kind, "create"), namespace, obj)
        else:
            result = self._call("create", kind, self._typed(kind, "create"), obj)
        created = self._to_dict(kind, result)
        record_write("create", kind.kind, _path(created.get("metadata") or {}))
        return created

    def _replace(self, kind: ResourceKind, obj: dict[str, Any], suffix: str) -> dict[str, Any]:
        meta = obj.get("metadata") or {}
        name, namespace = meta["name"], meta.get("namespace")
        operation = "update_status" if suffix else "update"
        if kind.is_custom:
            fn = self._custom(kind, "replace", suffix)
            result = self._call(operation, kind, fn, *self._custom_args(kind, namespace), name, obj)
        elif kind.namespaced:
            result = self._call(operation, kind, self._typed(kind, "replace", suffix), name, namespace, obj)
        else:
            result = self._call(operation, kind, self._typed(kind, "replace", suffix), name, obj)
        record_write(operation, kind.kind, _path(meta))
        return self._to_dict(kind, result)

    def update(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        return self._replace(kind, obj, "")

    def update_status(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        return self._replace(kind, obj, "_status")

    def _patch(
        self, kind: ResourceKind, name: str, namespace: str | None, body: dict[str, Any], suffix: str
    ) -> dict[str, Any]:
        operation = "patch_status" if suffix else "patch"
        if kind.is_custom:
            fn = self._custom(kind, "patch", suffix)
            result = self._call(operation, kind, fn, *self._custom_args(kind, namespace), name, body)
        elif kind.namespaced:
            result = self._call(operation, kind, self._typed(kind, "patch", suffix), name, namespace, body)
        else:
            result = self._call(operation, kind, self._typed(kind, "patch", suffix), name, body)
        record_write(operation, kind.kind, _path({"name": name, "namespace": namespace}))
        return self._to_dict(kind, result)

    def patch(
        self, kind: ResourceKind, name: str, namespace: str | None, patch: dict[str, Any]
    ) -> dict[str, Any]:
        return self._patch(kind, name, namespace, patch, "")

    def patch_status(
        self, kind: ResourceKind, name: str, namespace: str | None, status: dict[str, Any]
    ) -> dict[str, Any]:
        return self._patch(kind, name, namespace, {"status": status}, "_status")

    def delete(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str | None = None,
        grace_period_seconds: int | None = None,
    ) -> None:
        body = client.V1DeleteOptions(
            grace_period_seconds=grace_period_seconds,
            propagation_policy="Background",
        )
        if kind.is_custom:
            self._call(
                "delete", kind, self._custom(kind, "delete"), *self._custom_args(kind, namespace), name, body=body
            )
        elif kind.namespaced:
            self._call("delete", kind, self._typed(kind, "delete"), name, namespace, body=body)
        else:
            self._call("delete", kind, self._typed(kind, "delete"), name, body=body)
        record_write("delete", kind.kind, _path({"name": name, "namespace": namespace}))
