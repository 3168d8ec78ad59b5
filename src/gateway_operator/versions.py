"""Supported ControlPlane images and the ClusterRole version each one needs."""

from __future__ import annotations

from packaging.specifiers import SpecifierSet
from packaging.version import InvalidVersion, Version

from .constants import DEFAULT_CONTROL_PLANE_BASE_IMAGE, DEFAULT_CONTROL_PLANE_TAG
from .utils.errors import UnsupportedImageError

# Controller versions mapped to the ClusterRole rule set generated for them.
# A new controller release that needs more permissions gets a new entry and
# the previous newest entry gets an upper bound.
ROLE_VERSIONS_FOR_CONTROLLER_VERSIONS: dict[str, str] = {
    ">=2.9": "2.9.3",
    ">=2.7,<2.9": "2.7",
}

LATEST_CLUSTER_ROLE_VERSION = "2.9.3"

SUPPORTED_CONTROL_PLANE_IMAGES = frozenset({
    f"{DEFAULT_CONTROL_PLANE_BASE_IMAGE}:2.9.3",
    f"{DEFAULT_CONTROL_PLANE_BASE_IMAGE}:2.9",
    f"{DEFAULT_CONTROL_PLANE_BASE_IMAGE}:2.7",
})


def is_control_plane_image_supported(image: str) -> bool:
    """True if ``image`` (``<name>:<tag>``) is a supported ControlPlane image."""
    return image in SUPPORTED_CONTROL_PLANE_IMAGES


def split_image(image: str) -> tuple[str, str]:
    """Split ``<name>:<tag>`` into its parts. Tag is "" when absent.

    A colon that belongs to a registry port (``registry:5000/kong``) is not a
    tag separator.
    """
    name, sep, tag = image.rpartition(":")
    if not sep or "/" in tag:
        return image, ""
    return name, tag


def parse_tag(tag: str) -> Version:
    try:
        return Version(tag)
    except InvalidVersion as e:
        raise UnsupportedImageError(f"tag {tag!r} is not a semantic version") from e


def cluster_role_version_for_image(image: str | None) -> str:
    """Pick the ClusterRole rule set version for a ControlPlane image.

    Unsupported or untagged images fall back to the default controller
    version, mirroring how the Deployment image is resolved.

    Raises:
        UnsupportedImageError: If no rule set covers the version
    """
    version_tag = DEFAULT_CONTROL_PLANE_TAG
    image_to_use = f"{DEFAULT_CONTROL_PLANE_BASE_IMAGE}:{DEFAULT_CONTROL_PLANE_TAG}"
    if image:
        _, tag = split_image(image)
        if tag and is_control_plane_image_supported(image):
            version_tag, image_to_use = tag, image

    version = parse_tag(version_tag)
    for constraint, role_version in ROLE_VERSIONS_FOR_CONTROLLER_VERSIONS.items():
        if version in SpecifierSet(constraint):
            return role_version
    raise UnsupportedImageError(f"version {image_to_use} not supported")
