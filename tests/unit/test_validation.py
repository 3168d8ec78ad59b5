"""Tests for ControlPlane and DataPlane validation."""

from __future__ import annotations

import base64

import pytest

from gateway_operator.kinds import CONFIG_MAP, SECRET
from gateway_operator.utils.errors import StoreError, UnsupportedDatabaseModeError, UnsupportedImageError
from gateway_operator.validation import (
    control_plane_image,
    validate_control_plane,
    validate_dataplane,
    validate_dataplane_deploy_options,
)

DEFAULT_IMAGE = "kong/kubernetes-ingress-controller:2.9.3"


def controller_options(image: str) -> dict:
    return {"deployment": {"podTemplateSpec": {"spec": {"containers": [{"name": "controller", "image": image}]}}}}


def proxy_options(*env: dict) -> dict:
    return {"deployment": {"podTemplateSpec": {"spec": {"containers": [{"name": "proxy", "env": list(env)}]}}}}


class TestControlPlaneImage:
    """Test cases for control_plane_image."""

    def test_default_image(self):
        """Test that the default image is used when none is set."""
        assert control_plane_image({}, DEFAULT_IMAGE) == DEFAULT_IMAGE

    def test_supported_explicit_image(self):
        """Test that a supported explicit image wins."""
        image = "kong/kubernetes-ingress-controller:2.7"
        assert control_plane_image(controller_options(image), DEFAULT_IMAGE) == image

    def test_unsupported_image(self):
        """Test that an unsupported image is rejected."""
        with pytest.raises(UnsupportedImageError, match="kong/kic:0.1"):
            control_plane_image(controller_options("kong/kic:0.1"), DEFAULT_IMAGE)

    def test_development_mode_allows_any_image(self):
        """Test that development mode skips the image check."""
        assert control_plane_image(controller_options("kong/kic:0.1"), DEFAULT_IMAGE, development_mode=True) == (
            "kong/kic:0.1"
        )

    def test_validate_control_plane(self):
        """Test validating a whole ControlPlane."""
        with pytest.raises(UnsupportedImageError):
            validate_control_plane({"spec": controller_options("kong/kic:0.1")}, DEFAULT_IMAGE)


class TestDataPlaneDatabaseMode:
    """Test cases for validate_dataplane_deploy_options."""

    def test_dbless_by_default(self, store):
        """Test that no KONG_DATABASE means DB-less."""
        validate_dataplane_deploy_options(store, "default", {})
        validate_dataplane_deploy_options(store, "default", proxy_options({"name": "KONG_DATABASE", "value": "off"}))

    def test_literal_database(self, store):
        """Test that a literal database backend is rejected."""
        with pytest.raises(UnsupportedDatabaseModeError, match="postgres"):
            validate_dataplane_deploy_options(
                store, "default", proxy_options({"name": "KONG_DATABASE", "value": "postgres"})
            )

    def test_last_occurrence_wins(self, store):
        """Test that a later entry overrides an earlier one."""
        options = proxy_options(
            {"name": "KONG_DATABASE", "value": "postgres"},
            {"name": "KONG_DATABASE", "value": "off"},
        )
        validate_dataplane_deploy_options(store, "default", options)

    def test_config_map_reference(self, store):
        """Test that the mode is read from a referenced ConfigMap."""
        store.create(CONFIG_MAP, {"metadata": {"name": "kong", "namespace": "default"}, "data": {"db": "postgres"}})
        options = proxy_options(
            {"name": "KONG_DATABASE", "valueFrom": {"configMapKeyRef": {"name": "kong", "key": "db"}}}
        )

        with pytest.raises(UnsupportedDatabaseModeError):
            validate_dataplane_deploy_options(store, "default", options)

    def test_missing_config_map(self, store):
        """Test that a missing ConfigMap is a store error."""
        options = proxy_options(
            {"name": "KONG_DATABASE", "valueFrom": {"configMapKeyRef": {"name": "absent", "key": "db"}}}
        )

        with pytest.raises(StoreError, match="failed to get configMap absent"):
            validate_dataplane_deploy_options(store, "default", options)

    def test_secret_reference(self, store):
        """Test that the mode is read from a referenced Secret."""
        encoded = base64.b64encode(b"off").decode("ascii")
        store.create(SECRET, {"metadata": {"name": "kong", "namespace": "default"}, "data": {"db": encoded}})
        options = proxy_options({"name": "KONG_DATABASE", "valueFrom": {"secretKeyRef": {"name": "kong", "key": "db"}}})

        validate_dataplane_deploy_options(store, "default", options)

    def test_validate_dataplane(self, store):
        """Test validating a whole DataPlane."""
        dataplane = {
            "metadata": {"name": "dp", "namespace": "default"},
            "spec": proxy_options({"name": "KONG_DATABASE", "value": "cassandra"}),
        }

        with pytest.raises(UnsupportedDatabaseModeError):
            validate_dataplane(store, dataplane)
