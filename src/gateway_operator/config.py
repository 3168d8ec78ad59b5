"""Operator configuration read from the process environment."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .constants import DEFAULT_CONTROL_PLANE_IMAGE, DEFAULT_CONTROLLER_NAME


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class OperatorConfig:
    """Runtime settings shared by the reconcilers.

    The controller name is the identity GatewayClasses must reference for
    their Gateways to be managed by this instance. It is threaded through the
    handlers rather than read from a global, so several identities can coexist
    in one process (which the tests rely on).
    """

    controller_name: str = DEFAULT_CONTROLLER_NAME
    development_mode: bool = False
    leader_election: bool = False
    cluster_ca_secret_name: str = "kong-operator-ca"
    cluster_ca_secret_namespace: str = "kong-system"
    metrics_port: int = 8080
    requeue_without_backoff: float = 0.2
    min_retry_delay: float = 1.0
    max_retry_delay: float = 60.0
    retry_backoff: float = 2.0
    max_workers: int = 4
    max_passes: int = 10
    default_control_plane_image: str = DEFAULT_CONTROL_PLANE_IMAGE

    @classmethod
    def from_env(cls) -> OperatorConfig:
        """Build the configuration from environment variables.

        Environment Variables:
            CONTROLLER_NAME: GatewayClass controllerName handled by this operator
            DEVELOPMENT_MODE: Relax image validation and enable debug logging
            LEADER_ELECTION: Use kopf peering instead of standalone mode
            CLUSTER_CA_SECRET_NAME / CLUSTER_CA_SECRET_NAMESPACE: CA used to sign mTLS certificates
            METRICS_PORT: Port for /metrics, /healthz and /readyz (default: 8080)
            REQUEUE_WITHOUT_BACKOFF_SECONDS: Delay used after write conflicts
            MIN_RETRY_DELAY_SECONDS / MAX_RETRY_DELAY_SECONDS / RETRY_BACKOFF: Error backoff
            MAX_WORKERS: Number of kopf handler threads
            MAX_PASSES: Passes run back to back for one kopf handler call
            RELATED_IMAGE_KONG_CONTROLLER: Default ControlPlane image override
        """
        return cls(
            controller_name=os.getenv("CONTROLLER_NAME", DEFAULT_CONTROLLER_NAME),
            development_mode=_env_bool("DEVELOPMENT_MODE", False),
            leader_election=_env_bool("LEADER_ELECTION", False),
            cluster_ca_secret_name=os.getenv("CLUSTER_CA_SECRET_NAME", "kong-operator-ca"),
            cluster_ca_secret_namespace=os.getenv("CLUSTER_CA_SECRET_NAMESPACE", "kong-system"),
            metrics_port=int(os.getenv("METRICS_PORT", "8080")),
            requeue_without_backoff=float(os.getenv("REQUEUE_WITHOUT_BACKOFF_SECONDS", "0.2")),
            min_retry_delay=float(os.getenv("MIN_RETRY_DELAY_SECONDS", "1.0")),
            max_retry_delay=float(os.getenv("MAX_RETRY_DELAY_SECONDS", "60.0")),
            retry_backoff=float(os.getenv("RETRY_BACKOFF", "2.0")),
            max_workers=int(os.getenv("MAX_WORKERS", "4")),
            max_passes=int(os.getenv("MAX_PASSES", "10")),
            default_control_plane_image=os.getenv("RELATED_IMAGE_KONG_CONTROLLER") or DEFAULT_CONTROL_PLANE_IMAGE,
        )
