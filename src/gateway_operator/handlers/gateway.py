"""Reconciler for Gateway resources."""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any, Callable

from ..builders.defaults import (
    default_control_plane_options,
    default_data_plane_options,
    managed_env_names,
    set_control_plane_defaults,
)
from ..builders.gateway import (
    compare_control_plane,
    compare_data_plane,
    compare_network_policy,
    gateway_addresses,
    generate_control_plane,
    generate_data_plane,
    generate_network_policy,
)
from ..config import OperatorConfig
from ..constants import (
    API_GROUP,
    COND_ACCEPTED,
    COND_CONTROL_PLANE_READY,
    COND_DATA_PLANE_READY,
    COND_GATEWAY_SERVICE,
    CONTROL_PLANE_CONTAINER_NAME,
    FINALIZER_CLEANUP_CONTROL_PLANES,
    FINALIZER_CLEANUP_DATA_PLANES,
    FINALIZER_CLEANUP_NETWORK_POLICIES,
    KIND_GATEWAY_CONFIGURATION,
    LABEL_DATA_PLANE_SERVICE_TYPE,
    LABEL_VALUE_DATA_PLANE,
    LABEL_VALUE_GATEWAY,
    LABEL_VALUE_PROXY_SERVICE,
    MESSAGE_RESOURCE_CREATED,
    MESSAGE_RESOURCE_UPDATED,
    MESSAGE_WAITING_TO_BECOME_READY,
    REASON_ACCEPTED,
    REASON_GATEWAY_SERVICE_ERROR,
    REASON_INVALID_PARAMETERS,
    REASON_READY,
    REASON_RESOURCE_CREATED_OR_UPDATED,
    REASON_UNABLE_TO_PROVISION,
    REASON_WAITING_TO_BECOME_READY,
)
from ..kinds import CONTROL_PLANE, DATA_PLANE, GATEWAY, GATEWAY_CLASS, GATEWAY_CONFIGURATION, NETWORK_POLICY, SERVICE
from ..store.base import ObjectStore
from ..tracing import trace_span
from ..utils.conditions import (
    conditions_of,
    get_condition,
    init_ready_and_programmed,
    is_condition_true,
    is_ready,
    needs_status_update,
    new_condition,
    set_condition,
    set_ready_and_programmed,
)
from ..utils.containers import env_names, get_container, read_pod_spec
from ..utils.errors import (
    AmbiguousChildrenError,
    InvalidParametersRefError,
    MissingDependencyError,
    NotFoundError,
    OperatorError,
    StoreError,
    UnsupportedDatabaseModeError,
    UnsupportedGatewayError,
    sanitize_exception,
)
from ..utils.events import EventRecorder
from ..utils.metadata import deletion_timestamp, ensure_finalizers, object_key
from ..validation import validate_dataplane_deploy_options
from .base import DONE, BaseHandler, Result
from .finalizers import CleanupStage, FinalizerLifecycleManager
from .synchronizer import ChildSynchronizer


class GatewayHandler(BaseHandler):
    """Converges a Gateway into a DataPlane, a ControlPlane and a NetworkPolicy.

    Only Gateways whose GatewayClass names this operator's controller are
    touched. Every other Gateway is left exactly as it is.
    """

    def __init__(
        self,
        store: ObjectStore,
        config: OperatorConfig,
        events: EventRecorder | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(GATEWAY, store, config, events, clock)
        self.children = ChildSynchronizer(store)
        self.finalizers = FinalizerLifecycleManager(
            store,
            GATEWAY,
            [
                CleanupStage("DataPlanes", FINALIZER_CLEANUP_DATA_PLANES, DATA_PLANE, self.list_data_planes),
                CleanupStage(
                    "ControlPlanes", FINALIZER_CLEANUP_CONTROL_PLANES, CONTROL_PLANE, self.list_control_planes
                ),
                CleanupStage(
                    "NetworkPolicies", FINALIZER_CLEANUP_NETWORK_POLICIES, NETWORK_POLICY, self.list_network_policies
                ),
            ],
            events=self.events,
            clock=self.clock,
        )

    def list_data_planes(self, gateway: dict[str, Any]) -> list[dict[str, Any]]:
        return self.children.list_owned(DATA_PLANE, gateway, LABEL_VALUE_GATEWAY)

    def list_control_planes(self, gateway: dict[str, Any]) -> list[dict[str, Any]]:
        return self.children.list_owned(CONTROL_PLANE, gateway, LABEL_VALUE_GATEWAY)

    def list_network_policies(self, gateway: dict[str, Any]) -> list[dict[str, Any]]:
        return self.children.list_owned(NETWORK_POLICY, gateway, LABEL_VALUE_GATEWAY)

    def reconcile(self, namespace: str, name: str) -> Result:
        return self.reconcile_with_metrics(namespace, name, lambda: self._reconcile(namespace, name))

    # -------------------------------------------------------------------------
    # Pass
    # -------------------------------------------------------------------------

    def _reconcile(self, namespace: str, name: str) -> Result:
        try:
            gateway = self.store.get(GATEWAY, name, namespace)
        except NotFoundError:
            self.log_debug({"name": name, "namespace": namespace}, "Gateway is gone", reason="NotFound")
            return DONE
        meta = gateway["metadata"]

        if deletion_timestamp(gateway) is not None:
            outcome = self.finalizers.run(gateway)
            self.log_info(meta, f"Deletion state {outcome.state}", event="delete", reason=outcome.state)
            return outcome.result

        try:
            gateway_class = self.verify_gateway_class_support(gateway)
        except UnsupportedGatewayError as e:
            self.log_debug(meta, f"Resource not supported, ignoring: {e}", reason="UnsupportedGateway")
            return DONE

        if ensure_finalizers(
            gateway, FINALIZER_CLEANUP_CONTROL_PLANES, FINALIZER_CLEANUP_DATA_PLANES, FINALIZER_CLEANUP_NETWORK_POLICIES
        ):
            self.store.update(GATEWAY, gateway)
            self.log_debug(meta, "Cleanup finalizers added", reason="FinalizersAdded")
            return DONE

        old_gateway = copy.deepcopy(gateway)
        conditions = conditions_of(gateway)
        if not is_condition_true(COND_ACCEPTED, conditions):
            set_condition(
                new_condition(
                    COND_ACCEPTED,
                    True,
                    REASON_ACCEPTED,
                    f"this gateway has been picked up by the {self.config.controller_name} and will be processed",
                    meta.get("generation"),
                ),
                conditions,
            )
        init_ready_and_programmed(conditions)

        try:
            gateway_config = self.gateway_configuration(gateway_class)
        except (InvalidParametersRefError, MissingDependencyError) as e:
            self.record_failure(gateway, old_gateway, COND_ACCEPTED, REASON_INVALID_PARAMETERS, e)
            raise

        with trace_span("gateway.provision_dataplane", kind=GATEWAY.kind):
            try:
                dataplane = self.provision_data_plane(gateway, gateway_config)
            except OperatorError:
                if self.provisioning_failed(gateway, COND_DATA_PLANE_READY):
                    self.persist_gate(gateway, old_gateway, COND_DATA_PLANE_READY)
                raise
        if not is_condition_true(COND_DATA_PLANE_READY, conditions):
            self.persist_gate(gateway, old_gateway, COND_DATA_PLANE_READY)
            self.log_debug(meta, "DataPlane not ready yet", reason=REASON_WAITING_TO_BECOME_READY)
            self.record_resource_status(False)
            return DONE
        if not is_condition_true(COND_DATA_PLANE_READY, conditions_of(old_gateway)):
            self.log_debug(meta, "DataPlane is ready", reason=REASON_READY)

        try:
            service = self.proxy_service(dataplane)
        except (MissingDependencyError, AmbiguousChildrenError) as e:
            self.record_failure(gateway, old_gateway, COND_GATEWAY_SERVICE, REASON_GATEWAY_SERVICE_ERROR, e)
            raise

        with trace_span("gateway.provision_controlplane", kind=GATEWAY.kind):
            try:
                controlplane = self.provision_control_plane(
                    gateway, gateway_class, gateway_config, dataplane, service["metadata"]["name"]
                )
            except OperatorError:
                if self.provisioning_failed(gateway, COND_CONTROL_PLANE_READY):
                    self.persist_gate(gateway, old_gateway, COND_CONTROL_PLANE_READY)
                raise
        if not is_condition_true(COND_CONTROL_PLANE_READY, conditions):
            self.persist_gate(gateway, old_gateway, COND_CONTROL_PLANE_READY)
            self.log_debug(meta, "ControlPlane not ready yet", reason=REASON_WAITING_TO_BECOME_READY)
            self.record_resource_status(False)
            return DONE
        if not is_condition_true(COND_CONTROL_PLANE_READY, conditions_of(old_gateway)):
            self.log_debug(meta, "ControlPlane is ready", reason=REASON_READY)

        sync = self.children.ensure(
            NETWORK_POLICY,
            generate_network_policy(gateway, dataplane, controlplane),
            self.list_network_policies(gateway),
            compare_network_policy,
            owner=object_key(gateway),
            managed_value=LABEL_VALUE_GATEWAY,
        )
        if sync.changed:
            self.record_child_change(gateway, NETWORK_POLICY.kind, sync.object, sync.operation)
            return DONE

        status = gateway.setdefault("status", {})
        try:
            status["addresses"] = gateway_addresses(service)
            set_condition(
                new_condition(COND_GATEWAY_SERVICE, True, REASON_READY, "", meta.get("generation")), conditions
            )
        except ValueError as e:
            self.log_info(meta, f"Could not determine gateway status: {e}", reason=REASON_GATEWAY_SERVICE_ERROR)
            set_condition(
                new_condition(
                    COND_GATEWAY_SERVICE, False, REASON_GATEWAY_SERVICE_ERROR, str(e), meta.get("generation")
                ),
                conditions,
            )

        set_ready_and_programmed(conditions)
        addresses_changed = status.get("addresses") != (old_gateway.get("status") or {}).get("addresses")
        if addresses_changed or needs_status_update(conditions_of(old_gateway), conditions):
            self.patch_status(gateway)
            self.log_info(meta, "Gateway status updated", event="status", reason="StatusUpdated")
        self.record_resource_status(is_condition_true(COND_GATEWAY_SERVICE, conditions))
        return DONE

    # -------------------------------------------------------------------------
    # Class and configuration
    # -------------------------------------------------------------------------

    def verify_gateway_class_support(self, gateway: dict[str, Any]) -> dict[str, Any]:
        """Return the Gateway's class if this controller implements it.

        Raises:
            UnsupportedGatewayError: If no class is named, the class does not
                exist or it belongs to another controller
        """
        class_name = (gateway.get("spec") or {}).get("gatewayClassName")
        if not class_name:
            raise UnsupportedGatewayError("no gatewayClassName set")
        try:
            gateway_class = self.store.get(GATEWAY_CLASS, class_name)
        except NotFoundError as e:
            raise UnsupportedGatewayError(f"gatewayclass {class_name} not found") from e
        controller_name = (gateway_class.get("spec") or {}).get("controllerName")
        if controller_name != self.config.controller_name:
            raise UnsupportedGatewayError(
                f"gatewayclass {class_name} is managed by {controller_name}, expected {self.config.controller_name}"
            )
        return gateway_class

    def is_managed(self, gateway: dict[str, Any]) -> bool:
        """True for Gateways of this controller, and for any Gateway still holding cleanup finalizers."""
        if self.finalizers.pending(gateway):
            return True
        try:
            self.verify_gateway_class_support(gateway)
        except UnsupportedGatewayError:
            return False
        return True

    def gateway_configuration(self, gateway_class: dict[str, Any]) -> dict[str, Any]:
        """Spec of the GatewayConfiguration the class points at, {} when there is none.

        Raises:
            InvalidParametersRefError: If the reference has the wrong group or
                kind, or lacks a namespace or name
            MissingDependencyError: If the referenced object does not exist
        """
        class_name = gateway_class["metadata"]["name"]
        ref = (gateway_class.get("spec") or {}).get("parametersRef")
        if not ref:
            return {}
        if ref.get("group") != API_GROUP or ref.get("kind") != KIND_GATEWAY_CONFIGURATION:
            raise InvalidParametersRefError(
                f"controller only supports {API_GROUP} {KIND_GATEWAY_CONFIGURATION} resources "
                f"for GatewayClass parametersRef, got {ref.get('group')} {ref.get('kind')}"
            )
        if not ref.get("namespace") or not ref.get("name"):
            raise InvalidParametersRefError(
                f"GatewayClass {class_name} has invalid ParametersRef: both namespace and name must be provided"
            )
        try:
            gateway_config = self.store.get(GATEWAY_CONFIGURATION, ref["name"], ref["namespace"])
        except NotFoundError as e:
            raise MissingDependencyError(
                f"GatewayConfiguration {ref['namespace']}/{ref['name']} of GatewayClass {class_name} not found"
            ) from e
        return gateway_config.get("spec") or {}

    # -------------------------------------------------------------------------
    # DataPlane
    # -------------------------------------------------------------------------

    def provision_data_plane(
        self, gateway: dict[str, Any], gateway_config: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Create or align the Gateway's DataPlane and mirror its readiness.

        Returns the DataPlane when it was left untouched, None after a write.
        DataPlaneReady is set on the Gateway in memory either way.
        """
        meta = gateway["metadata"]
        conditions = conditions_of(gateway)
        generation = meta.get("generation")
        desired = default_data_plane_options(gateway_config.get("dataPlaneOptions"))
        try:
            validate_dataplane_deploy_options(self.store, meta["namespace"], desired)
        except (UnsupportedDatabaseModeError, StoreError) as e:
            set_condition(
                new_condition(
                    COND_DATA_PLANE_READY, False, REASON_UNABLE_TO_PROVISION, sanitize_exception(e), generation
                ),
                conditions,
            )
            raise

        dataplanes = self.list_data_planes(gateway)
        if len(dataplanes) > 1:
            error = AmbiguousChildrenError(DATA_PLANE.kind, len(dataplanes), object_key(gateway))
            set_condition(
                new_condition(COND_DATA_PLANE_READY, False, REASON_UNABLE_TO_PROVISION, str(error), generation),
                conditions,
            )
            raise error

        sync = self.children.ensure(
            DATA_PLANE,
            generate_data_plane(gateway, desired),
            dataplanes,
            compare_data_plane,
            owner=object_key(gateway),
            managed_value=LABEL_VALUE_GATEWAY,
        )
        if sync.changed:
            self.record_child_change(gateway, DATA_PLANE.kind, sync.object, sync.operation)
            set_condition(self.provisioned_condition(COND_DATA_PLANE_READY, sync.operation, generation), conditions)
            return None

        dataplane = sync.object
        if is_ready(dataplane):
            set_condition(new_condition(COND_DATA_PLANE_READY, True, REASON_READY, "", generation), conditions)
        else:
            set_condition(
                new_condition(
                    COND_DATA_PLANE_READY,
                    False,
                    REASON_WAITING_TO_BECOME_READY,
                    MESSAGE_WAITING_TO_BECOME_READY,
                    generation,
                ),
                conditions,
            )
        return dataplane

    def proxy_service(self, dataplane: dict[str, Any]) -> dict[str, Any]:
        """The single proxy Service of a DataPlane.

        Raises:
            MissingDependencyError: If the DataPlane has no proxy Service yet
            AmbiguousChildrenError: If it has more than one
        """
        services = self.children.list_owned(
            SERVICE,
            dataplane,
            LABEL_VALUE_DATA_PLANE,
            extra_labels={LABEL_DATA_PLANE_SERVICE_TYPE: LABEL_VALUE_PROXY_SERVICE},
        )
        if not services:
            raise MissingDependencyError(f"no services found for dataplane {object_key(dataplane)}")
        if len(services) > 1:
            raise AmbiguousChildrenError(SERVICE.kind, len(services), object_key(dataplane))
        return services[0]

    # -------------------------------------------------------------------------
    # ControlPlane
    # -------------------------------------------------------------------------

    def desired_control_plane_options(
        self, gateway: dict[str, Any], gateway_config: dict[str, Any], dataplane_name: str, service_name: str
    ) -> tuple[dict[str, Any], list[str]]:
        """Defaulted ControlPlane options and the env names the defaulting wrote.

        Variables set in the GatewayConfiguration are caller intent and are
        never overridden.
        """
        options = copy.deepcopy(gateway_config.get("controlPlaneOptions") or {})
        container = get_container(read_pod_spec(options.get("deployment")), CONTROL_PLANE_CONTAINER_NAME)
        dont_override = env_names((container or {}).get("env") or [])
        if not options.get("dataplane"):
            options["dataplane"] = dataplane_name
        options = default_control_plane_options(options, self.config.default_control_plane_image)
        set_control_plane_defaults(
            options, gateway["metadata"]["namespace"], self.config.controller_name, service_name, dont_override
        )
        return options, managed_env_names(options, dont_override)

    def provision_control_plane(
        self,
        gateway: dict[str, Any],
        gateway_class: dict[str, Any],
        gateway_config: dict[str, Any],
        dataplane: dict[str, Any],
        service_name: str,
    ) -> dict[str, Any] | None:
        """Create or align the Gateway's ControlPlane and mirror its readiness.

        Same contract as provision_data_plane. The admin URL is ignored when
        comparing options, the ControlPlane reconciler owns its value.
        """
        meta = gateway["metadata"]
        conditions = conditions_of(gateway)
        generation = meta.get("generation")
        desired, managed_env = self.desired_control_plane_options(
            gateway, gateway_config, dataplane["metadata"]["name"], service_name
        )

        controlplanes = self.list_control_planes(gateway)
        if len(controlplanes) > 1:
            error = AmbiguousChildrenError(CONTROL_PLANE.kind, len(controlplanes), object_key(gateway))
            set_condition(
                new_condition(COND_CONTROL_PLANE_READY, False, REASON_UNABLE_TO_PROVISION, str(error), generation),
                conditions,
            )
            raise error

        sync = self.children.ensure(
            CONTROL_PLANE,
            generate_control_plane(gateway, gateway_class["metadata"]["name"], desired, managed_env),
            controlplanes,
            compare_control_plane,
            owner=object_key(gateway),
            managed_value=LABEL_VALUE_GATEWAY,
        )
        if sync.changed:
            self.record_child_change(gateway, CONTROL_PLANE.kind, sync.object, sync.operation)
            set_condition(
                self.provisioned_condition(COND_CONTROL_PLANE_READY, sync.operation, generation), conditions
            )
            return None

        controlplane = sync.object
        if is_ready(controlplane):
            set_condition(new_condition(COND_CONTROL_PLANE_READY, True, REASON_READY, "", generation), conditions)
        else:
            set_condition(
                new_condition(
                    COND_CONTROL_PLANE_READY,
                    False,
                    REASON_WAITING_TO_BECOME_READY,
                    MESSAGE_WAITING_TO_BECOME_READY,
                    generation,
                ),
                conditions,
            )
        return controlplane

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    @staticmethod
    def provisioned_condition(condition_type: str, operation: str, generation: int | None) -> dict[str, Any]:
        message = MESSAGE_RESOURCE_CREATED if operation == "create" else MESSAGE_RESOURCE_UPDATED
        return new_condition(condition_type, False, REASON_RESOURCE_CREATED_OR_UPDATED, message, generation)

    @staticmethod
    def provisioning_failed(gateway: dict[str, Any], condition_type: str) -> bool:
        condition, found = get_condition(condition_type, conditions_of(gateway))
        return found and condition.get("reason") == REASON_UNABLE_TO_PROVISION

    def record_failure(
        self,
        gateway: dict[str, Any],
        old_gateway: dict[str, Any],
        condition_type: str,
        reason: str,
        error: Exception,
    ) -> None:
        """Persist ``error`` as a False condition before the pass fails."""
        conditions = conditions_of(gateway)
        set_condition(
            new_condition(
                condition_type, False, reason, sanitize_exception(error), gateway["metadata"].get("generation")
            ),
            conditions,
        )
        set_ready_and_programmed(conditions)
        if needs_status_update(conditions_of(old_gateway), conditions):
            self.patch_status(gateway)
            self.log_info(gateway["metadata"], f"{condition_type} set to False", event="status", reason=reason)

    def persist_gate(self, gateway: dict[str, Any], old_gateway: dict[str, Any], condition_type: str) -> bool:
        """Patch status for a closed readiness gate when the gate condition moved.

        That is when the condition is new, was True before, or carries a new
        reason. Returns True if status was patched.
        """
        old, found = get_condition(condition_type, conditions_of(old_gateway))
        current, _ = get_condition(condition_type, conditions_of(gateway))
        if found and old.get("status") != "True" and current and old.get("reason") == current.get("reason"):
            return False
        self.patch_status(gateway)
        return True

    def patch_status(self, gateway: dict[str, Any]) -> dict[str, Any]:
        meta = gateway["metadata"]
        status = gateway.get("status") or {}
        body: dict[str, Any] = {"conditions": status.get("conditions") or []}
        if "addresses" in status:
            body["addresses"] = status["addresses"]
        return self.store.patch_status(GATEWAY, meta["name"], meta["namespace"], body)

    def record_child_change(self, gateway: dict[str, Any], kind: str, child: dict[str, Any], operation: str) -> None:
        name = child["metadata"]["name"]
        if operation == "create":
            self.events.child_created(gateway, kind, name)
            self.log_info(gateway["metadata"], f"{kind} {name} created", event="create", reason="ChildCreated")
        elif operation == "update":
            self.events.child_updated(gateway, kind, name)
            self.log_info(gateway["metadata"], f"{kind} {name} updated", event="update", reason="ChildUpdated")
