"""Builders for the Kubernetes objects the operator manages."""

from .controlplane import (
    generate_certificate_secret,
    generate_cluster_role,
    generate_cluster_role_binding,
    generate_deployment,
    generate_service_account,
)
from .gateway import generate_control_plane, generate_data_plane, generate_network_policy

__all__ = [
    "generate_service_account",
    "generate_cluster_role",
    "generate_cluster_role_binding",
    "generate_certificate_secret",
    "generate_deployment",
    "generate_data_plane",
    "generate_control_plane",
    "generate_network_policy",
]
