"""Shared fixtures for the Gateway Operator unit tests."""

from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from gateway_operator.config import OperatorConfig
from gateway_operator.constants import (
    DEFAULT_CONTROLLER_NAME,
    LABEL_DATA_PLANE_SERVICE_TYPE,
    LABEL_VALUE_DATA_PLANE,
    LABEL_VALUE_PROXY_SERVICE,
    TLS_CERT_KEY,
    TLS_PRIVATE_KEY_KEY,
)
from gateway_operator.kinds import DATA_PLANE, GATEWAY, GATEWAY_CLASS, SECRET, SERVICE
from gateway_operator.store.memory import InMemoryObjectStore
from gateway_operator.utils.certificates import CertificateAuthority
from gateway_operator.utils.events import RecordingEventRecorder
from gateway_operator.utils.metadata import label_as_managed, set_owner


class FakeClock:
    """Settable clock shared by the store and the handlers."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def generate_ca(common_name: str = "Kong Operator CA") -> tuple[bytes, bytes]:
    """Self-signed CA certificate and key as PEM."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=3650))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    cert_pem = certificate.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return cert_pem, key_pem


def ca_secret_body(cert_pem: bytes, key_pem: bytes, name: str, namespace: str) -> dict[str, Any]:
    return {
        "metadata": {"name": name, "namespace": namespace},
        "type": "kubernetes.io/tls",
        "data": {
            TLS_CERT_KEY: base64.b64encode(cert_pem).decode("ascii"),
            TLS_PRIVATE_KEY_KEY: base64.b64encode(key_pem).decode("ascii"),
        },
    }


@pytest.fixture(scope="session")
def ca_pem() -> tuple[bytes, bytes]:
    return generate_ca()


@pytest.fixture
def ca(ca_pem) -> CertificateAuthority:
    return CertificateAuthority(*ca_pem)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> InMemoryObjectStore:
    return InMemoryObjectStore(clock=clock, seed=7)


@pytest.fixture
def config() -> OperatorConfig:
    return OperatorConfig()


@pytest.fixture
def recorder() -> RecordingEventRecorder:
    return RecordingEventRecorder()


@pytest.fixture
def ca_secret(store, config, ca_pem) -> dict[str, Any]:
    """The cluster CA Secret the ControlPlane reconciler signs certificates with."""
    return store.create(
        SECRET,
        ca_secret_body(*ca_pem, config.cluster_ca_secret_name, config.cluster_ca_secret_namespace),
    )


def make_gateway_class(
    store: InMemoryObjectStore,
    name: str = "kong",
    controller_name: str = DEFAULT_CONTROLLER_NAME,
    parameters_ref: dict[str, Any] | None = None,
) -> dict[str, Any]:
    spec: dict[str, Any] = {"controllerName": controller_name}
    if parameters_ref is not None:
        spec["parametersRef"] = parameters_ref
    return store.create(GATEWAY_CLASS, {"metadata": {"name": name}, "spec": spec})


def make_gateway(
    store: InMemoryObjectStore, name: str = "gw", namespace: str = "default", class_name: str = "kong"
) -> dict[str, Any]:
    return store.create(
        GATEWAY,
        {
            "metadata": {"name": name, "namespace": namespace},
            "spec": {
                "gatewayClassName": class_name,
                "listeners": [{"name": "http", "protocol": "HTTP", "port": 80}],
            },
        },
    )


def make_proxy_service(
    store: InMemoryObjectStore,
    dataplane: dict[str, Any],
    cluster_ip: str | None = "10.96.0.10",
    name: str | None = None,
) -> dict[str, Any]:
    """Proxy Service of a DataPlane, as the DataPlane reconciler would create it."""
    meta = dataplane["metadata"]
    service: dict[str, Any] = {
        "metadata": {
            "name": name or f"{meta['name']}-proxy",
            "namespace": meta["namespace"],
            "labels": {LABEL_DATA_PLANE_SERVICE_TYPE: LABEL_VALUE_PROXY_SERVICE},
        },
        "spec": {"type": "LoadBalancer", "ports": [{"name": "proxy", "port": 80}]},
    }
    if cluster_ip:
        service["spec"]["clusterIP"] = cluster_ip
    label_as_managed(service, LABEL_VALUE_DATA_PLANE)
    set_owner(service, dataplane)
    return store.create(SERVICE, service)


def make_data_plane(store: InMemoryObjectStore, name: str = "dp", namespace: str = "default") -> dict[str, Any]:
    return store.create(DATA_PLANE, {"metadata": {"name": name, "namespace": namespace}, "spec": {}})


def mark_ready(store: InMemoryObjectStore, kind, name: str, namespace: str) -> dict[str, Any]:
    """Give an object a True Ready condition through its status subresource."""
    obj = store.get(kind, name, namespace)
    obj["status"] = {
        "conditions": [
            {
                "type": "Ready",
                "status": "True",
                "reason": "Ready",
                "message": "",
                "lastTransitionTime": "2026-01-01T12:00:00Z",
            }
        ]
    }
    return store.update_status(kind, obj)


def converge(handler, namespace: str, name: str, store: InMemoryObjectStore, max_passes: int = 25) -> int:
    """Reconcile until a pass makes no writes. Returns the number of passes run."""
    for attempt in range(1, max_passes + 1):
        store.clear_actions()
        handler.reconcile(namespace, name)
        if not store.mutations():
            return attempt
    raise AssertionError(f"{namespace}/{name} did not converge within {max_passes} passes")
