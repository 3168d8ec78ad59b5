"""Kubernetes operator for Gateway, ControlPlane and DataPlane resources."""
