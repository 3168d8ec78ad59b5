"""Reconciler for ControlPlane resources."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from ..builders.controlplane import (
    certificate_comparator,
    certificate_common_name,
    compare_cluster_role,
    compare_cluster_role_binding,
    compare_deployment,
    compare_service_account,
    generate_certificate_secret,
    generate_cluster_role,
    generate_cluster_role_binding,
    generate_deployment,
    generate_service_account,
    is_deployment_ready,
)
from ..builders.defaults import (
    caller_env_names,
    format_managed_env_annotation,
    managed_env_names,
    set_control_plane_defaults,
)
from ..config import OperatorConfig
from ..constants import (
    ANNOTATION_MANAGED_ENV,
    COND_PROVISIONED,
    COND_SCHEDULED,
    FINALIZER_CLEANUP_CLUSTER_ROLE,
    FINALIZER_CLEANUP_CLUSTER_ROLE_BINDING,
    LABEL_DATA_PLANE_SERVICE_TYPE,
    LABEL_VALUE_CONTROL_PLANE,
    LABEL_VALUE_DATA_PLANE,
    LABEL_VALUE_PROXY_SERVICE,
    REASON_NO_DATA_PLANE,
    REASON_POD_SCHEDULED,
    REASON_PODS_NOT_READY,
    REASON_PODS_READY,
    REASON_UNABLE_TO_PROVISION,
)
from ..kinds import (
    CLUSTER_ROLE,
    CLUSTER_ROLE_BINDING,
    CONTROL_PLANE,
    DATA_PLANE,
    DEPLOYMENT,
    SECRET,
    SERVICE,
    SERVICE_ACCOUNT,
)
from ..store.base import ObjectStore
from ..tracing import trace_span
from ..utils.certificates import CertificateAuthority
from ..utils.conditions import (
    conditions_of,
    get_condition,
    init_ready,
    is_condition_true,
    needs_status_update,
    new_condition,
    set_condition,
    set_ready,
)
from ..utils.errors import (
    AmbiguousChildrenError,
    MissingDependencyError,
    NotFoundError,
    UnsupportedImageError,
    sanitize_exception,
)
from ..utils.events import EventRecorder
from ..utils.metadata import deletion_timestamp, ensure_finalizers, meta_of, object_key
from ..validation import control_plane_image
from .base import DONE, BaseHandler, Result
from .finalizers import CleanupStage, FinalizerLifecycleManager
from .synchronizer import ChildSynchronizer, Comparator


class ControlPlaneHandler(BaseHandler):
    """Converges a ControlPlane one mutation at a time.

    Children: ServiceAccount, ClusterRole, ClusterRoleBinding, the mTLS
    certificate Secret and the controller Deployment. The two cluster-scoped
    kinds cannot carry owner references to a namespaced ControlPlane, so they
    are tracked by owner labels and removed behind finalizers.
    """

    def __init__(
        self,
        store: ObjectStore,
        config: OperatorConfig,
        events: EventRecorder | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(CONTROL_PLANE, store, config, events, clock)
        self.children = ChildSynchronizer(store)
        self.finalizers = FinalizerLifecycleManager(
            store,
            CONTROL_PLANE,
            [
                CleanupStage(
                    "Bindings",
                    FINALIZER_CLEANUP_CLUSTER_ROLE_BINDING,
                    CLUSTER_ROLE_BINDING,
                    self.list_cluster_role_bindings,
                ),
                CleanupStage("Roles", FINALIZER_CLEANUP_CLUSTER_ROLE, CLUSTER_ROLE, self.list_cluster_roles),
            ],
            events=self.events,
            clock=self.clock,
        )

    def list_cluster_role_bindings(self, controlplane: dict[str, Any]) -> list[dict[str, Any]]:
        return self.children.list_owned(CLUSTER_ROLE_BINDING, controlplane, LABEL_VALUE_CONTROL_PLANE)

    def list_cluster_roles(self, controlplane: dict[str, Any]) -> list[dict[str, Any]]:
        return self.children.list_owned(CLUSTER_ROLE, controlplane, LABEL_VALUE_CONTROL_PLANE)

    def reconcile(self, namespace: str, name: str) -> Result:
        return self.reconcile_with_metrics(namespace, name, lambda: self._reconcile(namespace, name))

    # -------------------------------------------------------------------------
    # Pass
    # -------------------------------------------------------------------------

    def _reconcile(self, namespace: str, name: str) -> Result:
        try:
            controlplane = self.store.get(CONTROL_PLANE, name, namespace)
        except NotFoundError:
            self.log_debug({"name": name, "namespace": namespace}, "ControlPlane is gone", reason="NotFound")
            return DONE
        meta = controlplane["metadata"]

        if deletion_timestamp(controlplane) is not None:
            outcome = self.finalizers.run(controlplane)
            self.log_info(meta, f"Deletion state {outcome.state}", event="delete", reason=outcome.state)
            return outcome.result

        if ensure_finalizers(controlplane, FINALIZER_CLEANUP_CLUSTER_ROLE, FINALIZER_CLEANUP_CLUSTER_ROLE_BINDING):
            self.store.update(CONTROL_PLANE, controlplane)
            self.log_debug(meta, "Cleanup finalizers added", reason="FinalizersAdded")
            return DONE

        conditions = conditions_of(controlplane)
        init_ready(conditions)

        if not is_condition_true(COND_SCHEDULED, conditions):
            set_condition(
                new_condition(COND_SCHEDULED, True, REASON_POD_SCHEDULED, "", meta.get("generation")), conditions
            )
            self.store.update_status(CONTROL_PLANE, controlplane)
            self.log_debug(meta, "ControlPlane marked as scheduled", reason=REASON_POD_SCHEDULED)
            return DONE

        recovering = self.provisioning_failed(controlplane)
        spec = controlplane.setdefault("spec", {})
        dataplane_name = spec.get("dataplane") or ""
        with trace_span("controlplane.resolve_dataplane", kind=CONTROL_PLANE.kind):
            try:
                service_name = self.dataplane_service_name(controlplane)
            except (MissingDependencyError, AmbiguousChildrenError) as e:
                self.record_provisioning_failure(controlplane, e)
                raise

        if self.apply_defaults(controlplane, service_name):
            self.store.update(CONTROL_PLANE, controlplane)
            self.log_debug(meta, "ControlPlane updated after defaults were set", reason="DefaultsApplied")
            return DONE

        self.ensure_data_plane_status(controlplane)
        if not dataplane_name:
            self.log_debug(meta, "DataPlane not set, Deployment will remain dormant", reason=REASON_NO_DATA_PLANE)

        try:
            image = control_plane_image(spec, self.config.default_control_plane_image, self.config.development_mode)
        except UnsupportedImageError as e:
            self.record_provisioning_failure(controlplane, e)
            raise

        with trace_span("controlplane.ensure_children", kind=CONTROL_PLANE.kind):
            sync = self.ensure_child(
                controlplane, SERVICE_ACCOUNT, generate_service_account(controlplane), compare_service_account
            )
            if sync.changed:
                return DONE
            service_account = sync.object

            sync = self.ensure_child(
                controlplane, CLUSTER_ROLE, generate_cluster_role(controlplane, image), compare_cluster_role
            )
            if sync.changed:
                return DONE
            cluster_role = sync.object

            bindings = self.list_cluster_role_bindings(controlplane)
            if len(bindings) == 1 and bindings[0].get("roleRef", {}).get("name") != cluster_role["metadata"]["name"]:
                # roleRef is immutable; the binding is recreated on the next pass.
                self.children.delete_all(CLUSTER_ROLE_BINDING, bindings)
                return DONE
            sync = self.ensure_child(
                controlplane,
                CLUSTER_ROLE_BINDING,
                generate_cluster_role_binding(
                    controlplane, cluster_role["metadata"]["name"], service_account["metadata"]["name"]
                ),
                compare_cluster_role_binding,
                candidates=bindings,
            )
            if sync.changed:
                return DONE

            sync = self.ensure_certificate(controlplane)
            if sync.changed:
                return DONE
            certificate = sync.object

            sync = self.ensure_child(
                controlplane,
                DEPLOYMENT,
                generate_deployment(
                    controlplane, service_account["metadata"]["name"], certificate["metadata"]["name"], image
                ),
                compare_deployment,
            )
            if sync.changed:
                if not dataplane_name:
                    self.log_debug(meta, "DataPlane not set, Deployment scaled down to 0 replicas")
                    self.update_status(controlplane)
                return DONE
            deployment = sync.object

        if not is_deployment_ready(deployment):
            self.log_debug(meta, "Deployment not yet ready, waiting", reason=REASON_PODS_NOT_READY)
            if not dataplane_name or recovering:
                self.update_status(controlplane)
            self.record_resource_status(False)
            return DONE

        set_condition(
            new_condition(COND_PROVISIONED, True, REASON_PODS_READY, "", meta.get("generation")), conditions
        )
        set_ready(conditions)
        if self.update_status(controlplane):
            self.log_info(meta, "ControlPlane is ready", event="ready", reason=REASON_PODS_READY)
        self.record_resource_status(True)
        return DONE

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def dataplane_service_name(self, controlplane: dict[str, Any]) -> str:
        """Name of the proxy Service of the linked DataPlane, "" when there is none.

        Raises:
            MissingDependencyError: If the DataPlane has no proxy Service yet
            AmbiguousChildrenError: If it has more than one
        """
        meta = controlplane["metadata"]
        dataplane_name = (controlplane.get("spec") or {}).get("dataplane")
        if not dataplane_name:
            return ""
        try:
            dataplane = self.store.get(DATA_PLANE, dataplane_name, meta["namespace"])
        except NotFoundError:
            self.log_debug(meta, f"DataPlane {dataplane_name} not found", reason="NoDataPlane")
            return ""

        services = self.children.list_owned(
            SERVICE,
            dataplane,
            LABEL_VALUE_DATA_PLANE,
            extra_labels={LABEL_DATA_PLANE_SERVICE_TYPE: LABEL_VALUE_PROXY_SERVICE},
        )
        if not services:
            raise MissingDependencyError(f"no proxy Service found for {object_key(dataplane)}")
        if len(services) > 1:
            raise AmbiguousChildrenError(SERVICE.kind, len(services), object_key(dataplane))
        return services[0]["metadata"]["name"]

    def apply_defaults(self, controlplane: dict[str, Any], service_name: str) -> bool:
        """Default the controller environment and record which variables are managed."""
        meta = controlplane["metadata"]
        spec = controlplane["spec"]
        dont_override = caller_env_names(controlplane)
        changed = set_control_plane_defaults(
            spec, meta["namespace"], self.config.controller_name, service_name, dont_override
        )
        managed = format_managed_env_annotation(managed_env_names(spec, dont_override))
        annotations = meta_of(controlplane).setdefault("annotations", {})
        if annotations.get(ANNOTATION_MANAGED_ENV) != managed:
            annotations[ANNOTATION_MANAGED_ENV] = managed
            changed = True
        return changed

    def ensure_data_plane_status(self, controlplane: dict[str, Any]) -> None:
        """Track DataPlane linkage in the Provisioned condition (in memory)."""
        conditions = conditions_of(controlplane)
        generation = controlplane["metadata"].get("generation")
        condition, found = get_condition(COND_PROVISIONED, conditions)
        if not (controlplane.get("spec") or {}).get("dataplane"):
            if not found or condition.get("reason") != REASON_NO_DATA_PLANE:
                set_condition(
                    new_condition(
                        COND_PROVISIONED, False, REASON_NO_DATA_PLANE, "DataPlane is not set", generation
                    ),
                    conditions,
                )
                set_ready(conditions)
        elif not found or condition.get("reason") in (REASON_NO_DATA_PLANE, REASON_UNABLE_TO_PROVISION):
            set_condition(
                new_condition(
                    COND_PROVISIONED,
                    False,
                    REASON_PODS_NOT_READY,
                    "DataPlane was set, ControlPlane is being provisioned",
                    generation,
                ),
                conditions,
            )
            set_ready(conditions)

    def cluster_ca(self) -> CertificateAuthority:
        try:
            secret = self.store.get(
                SECRET, self.config.cluster_ca_secret_name, self.config.cluster_ca_secret_namespace
            )
        except NotFoundError as e:
            raise MissingDependencyError(
                f"cluster CA secret {self.config.cluster_ca_secret_namespace}/"
                f"{self.config.cluster_ca_secret_name} not found"
            ) from e
        return CertificateAuthority.from_secret(secret)

    def ensure_certificate(self, controlplane: dict[str, Any]):
        """Keep one certificate Secret signed by the cluster CA.

        A certificate is signed only for a Secret about to be created, or when
        the existing one is no longer current.
        """
        try:
            ca = self.cluster_ca()
        except MissingDependencyError as e:
            self.record_provisioning_failure(controlplane, e)
            raise
        secrets = self.children.list_owned(SECRET, controlplane, LABEL_VALUE_CONTROL_PLANE)
        desired = generate_certificate_secret(controlplane, None if secrets else ca)
        return self.ensure_child(
            controlplane,
            SECRET,
            desired,
            certificate_comparator(ca, certificate_common_name(controlplane)),
            candidates=secrets,
        )

    def provisioning_failed(self, controlplane: dict[str, Any]) -> bool:
        condition, found = get_condition(COND_PROVISIONED, conditions_of(controlplane))
        return found and condition.get("reason") == REASON_UNABLE_TO_PROVISION

    def record_provisioning_failure(self, controlplane: dict[str, Any], error: Exception) -> None:
        """Persist ``error`` as a False Provisioned condition before the pass fails."""
        conditions = conditions_of(controlplane)
        set_condition(
            new_condition(
                COND_PROVISIONED,
                False,
                REASON_UNABLE_TO_PROVISION,
                sanitize_exception(error),
                controlplane["metadata"].get("generation"),
            ),
            conditions,
        )
        set_ready(conditions)
        self.update_status(controlplane)

    def ensure_child(
        self,
        controlplane: dict[str, Any],
        kind,
        desired: dict[str, Any],
        compare: Comparator,
        candidates: list[dict[str, Any]] | None = None,
    ):
        if candidates is None:
            candidates = self.children.list_owned(kind, controlplane, LABEL_VALUE_CONTROL_PLANE)
        sync = self.children.ensure(
            kind,
            desired,
            candidates,
            compare,
            owner=object_key(controlplane),
            managed_value=LABEL_VALUE_CONTROL_PLANE,
        )
        if sync.operation == "create":
            self.events.child_created(controlplane, kind.kind, sync.object["metadata"]["name"])
            self.log_info(controlplane["metadata"], f"{kind.kind} created", event="create", reason="ChildCreated")
        elif sync.operation == "update":
            self.events.child_updated(controlplane, kind.kind, sync.object["metadata"]["name"])
            self.log_info(controlplane["metadata"], f"{kind.kind} updated", event="update", reason="ChildUpdated")
        return sync

    def update_status(self, controlplane: dict[str, Any]) -> bool:
        """Persist status only when the condition set changed. Returns True if written."""
        meta = controlplane["metadata"]
        try:
            current = self.store.get(CONTROL_PLANE, meta["name"], meta["namespace"])
        except NotFoundError:
            return False
        if not needs_status_update(conditions_of(current), conditions_of(controlplane)):
            return False
        self.store.update_status(CONTROL_PLANE, controlplane)
        return True
