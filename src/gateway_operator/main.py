"""Main entry point for the Gateway Operator.

Run with ``kopf run -m gateway_operator.main``. Gateways and ControlPlanes are
reconciled from kopf's create, update, resume and delete handlers; every
other watched kind only patches a trigger annotation onto the Gateway or
ControlPlane it concerns.
"""

from __future__ import annotations

import logging
from typing import Any

import kopf

from . import health
from . import logging as structured_logging
from .config import OperatorConfig
from .constants import API_GROUP, LABEL_DATA_PLANE_SERVICE_TYPE, LABEL_MANAGED, LABEL_VALUE_PROXY_SERVICE
from .handlers import ControlPlaneHandler, EventMapper, GatewayHandler
from .kinds import (
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
from .store import KubernetesObjectStore, load_kubernetes_config
from .tracing import initialize_tracing
from .utils.events import EventRecorder

logger = logging.getLogger(__name__)


def resource_of(kind: ResourceKind) -> tuple[str, ...]:
    return (kind.group, kind.version, kind.plural) if kind.group else (kind.version, kind.plural)


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    """Configure kopf and build the reconcilers."""
    config = OperatorConfig.from_env()
    structured_logging.setup_structured_logging(config.development_mode)
    initialize_tracing()

    settings.persistence.finalizer = f"{API_GROUP}/kopf-finalizer"
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=API_GROUP)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(prefix=API_GROUP)
    settings.posting.level = 0
    settings.networking.request_timeout = 30.0
    settings.execution.max_workers = config.max_workers
    if config.leader_election:
        settings.peering.name = "gateway-operator"
        settings.peering.mandatory = True
    else:
        settings.peering.standalone = True

    load_kubernetes_config()
    store = KubernetesObjectStore()
    events = EventRecorder()

    memo.config = config
    memo.stopping = False
    memo.handlers = {
        GATEWAY.kind: GatewayHandler(store, config, events),
        CONTROL_PLANE.kind: ControlPlaneHandler(store, config, events),
    }
    memo.mapper = EventMapper(store, config.controller_name)
    memo.metrics_server = health.start_metrics_server(
        config.metrics_port,
        health.create_combined_wsgi_app(ready_check=lambda: not memo.stopping),
    )
    logger.info(f"Gateway operator started as {config.controller_name}")


@kopf.on.cleanup()
def shutdown(memo: kopf.Memo, **_: Any) -> None:
    """Report not ready and stop the metrics server."""
    memo.stopping = True
    server = getattr(memo, "metrics_server", None)
    if server is not None:
        server.shutdown()


def gateway_is_managed(body: kopf.Body, memo: kopf.Memo, **_: Any) -> bool:
    """kopf filter: leave Gateways of other controllers and their finalizers alone."""
    return memo.handlers[GATEWAY.kind].is_managed(dict(body))


@kopf.on.create(*resource_of(GATEWAY), when=gateway_is_managed)
@kopf.on.update(*resource_of(GATEWAY), when=gateway_is_managed)
@kopf.on.resume(*resource_of(GATEWAY), when=gateway_is_managed)
def reconcile_gateway(namespace: str, name: str, retry: int, memo: kopf.Memo, **_: Any) -> None:
    memo.handlers[GATEWAY.kind].handle(namespace, name, retry)


@kopf.on.delete(*resource_of(GATEWAY), when=gateway_is_managed)
def reconcile_gateway_deletion(namespace: str, name: str, retry: int, memo: kopf.Memo, **_: Any) -> None:
    """Tear down the Gateway's children; kopf's finalizer is released once ours are gone."""
    memo.handlers[GATEWAY.kind].handle(namespace, name, retry, deleting=True)


@kopf.on.create(*resource_of(CONTROL_PLANE))
@kopf.on.update(*resource_of(CONTROL_PLANE))
@kopf.on.resume(*resource_of(CONTROL_PLANE))
def reconcile_control_plane(namespace: str, name: str, retry: int, memo: kopf.Memo, **_: Any) -> None:
    memo.handlers[CONTROL_PLANE.kind].handle(namespace, name, retry)


@kopf.on.delete(*resource_of(CONTROL_PLANE))
def reconcile_control_plane_deletion(namespace: str, name: str, retry: int, memo: kopf.Memo, **_: Any) -> None:
    memo.handlers[CONTROL_PLANE.kind].handle(namespace, name, retry, deleting=True)


def watch(kind: ResourceKind, **filters: Any) -> None:
    """Register an event handler that triggers the intent resources ``kind`` maps to."""

    @kopf.on.event(*resource_of(kind), id=f"trigger-{kind.plural}", **filters)
    def on_event(body: kopf.Body, memo: kopf.Memo, **_: Any) -> None:
        memo.mapper.trigger_for(kind.kind, dict(body))


for _kind in (GATEWAY_CLASS, GATEWAY_CONFIGURATION, CONTROL_PLANE, DATA_PLANE):
    watch(_kind)
for _kind in (NETWORK_POLICY, SERVICE_ACCOUNT, SECRET, DEPLOYMENT, CLUSTER_ROLE, CLUSTER_ROLE_BINDING):
    watch(_kind, labels={LABEL_MANAGED: kopf.PRESENT})
watch(SERVICE, labels={LABEL_DATA_PLANE_SERVICE_TYPE: LABEL_VALUE_PROXY_SERVICE})
