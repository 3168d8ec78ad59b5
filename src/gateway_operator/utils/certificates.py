"""mTLS client certificates signed by the cluster CA."""

from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone
from typing import Any

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ..constants import TLS_CA_KEY, TLS_CERT_KEY, TLS_PRIVATE_KEY_KEY
from .errors import MissingDependencyError

CERTIFICATE_VALIDITY = timedelta(days=365)
# Certificates closer than this to expiry are reissued.
RENEW_BEFORE = timedelta(days=30)


def _b64decode(value: str | None) -> bytes:
    return base64.b64decode(value or "")


def _b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


class CertificateAuthority:
    """The cluster CA loaded from a kubernetes.io/tls Secret."""

    def __init__(self, cert_pem: bytes, key_pem: bytes):
        self.cert_pem = cert_pem
        self.certificate = x509.load_pem_x509_certificate(cert_pem)
        self.private_key = serialization.load_pem_private_key(key_pem, password=None)

    @classmethod
    def from_secret(cls, secret: dict[str, Any]) -> CertificateAuthority:
        data = secret.get("data") or {}
        if not data.get(TLS_CERT_KEY) or not data.get(TLS_PRIVATE_KEY_KEY):
            name = (secret.get("metadata") or {}).get("name")
            raise MissingDependencyError(f"CA secret {name} is missing {TLS_CERT_KEY} or {TLS_PRIVATE_KEY_KEY}")
        return cls(_b64decode(data[TLS_CERT_KEY]), _b64decode(data[TLS_PRIVATE_KEY_KEY]))

    def issue_client_certificate(self, common_name: str, now: datetime | None = None) -> tuple[bytes, bytes]:
        """Issue an ECDSA P-256 client certificate.

        Returns:
            Tuple of (certificate PEM, private key PEM)
        """
        now = now or datetime.now(timezone.utc)
        key = ec.generate_private_key(ec.SECP256R1())
        certificate = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
            .issuer_name(self.certificate.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=5))
            .not_valid_after(now + CERTIFICATE_VALIDITY)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH]), critical=False)
            .sign(self.private_key, hashes.SHA256())
        )
        cert_pem = certificate.public_bytes(serialization.Encoding.PEM)
        key_pem = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        return cert_pem, key_pem

    def secret_data(self, common_name: str) -> dict[str, str]:
        """Base64 Secret data holding a fresh certificate, its key and the CA."""
        cert_pem, key_pem = self.issue_client_certificate(common_name)
        return {
            TLS_CERT_KEY: _b64encode(cert_pem),
            TLS_PRIVATE_KEY_KEY: _b64encode(key_pem),
            TLS_CA_KEY: _b64encode(self.cert_pem),
        }

    def is_current(self, data: dict[str, str] | None, now: datetime | None = None) -> bool:
        """True if Secret ``data`` holds a certificate this CA issued and that is not about to expire."""
        data = data or {}
        if not all(data.get(key) for key in (TLS_CERT_KEY, TLS_PRIVATE_KEY_KEY, TLS_CA_KEY)):
            return False
        if _b64decode(data[TLS_CA_KEY]) != self.cert_pem:
            return False
        try:
            certificate = x509.load_pem_x509_certificate(_b64decode(data[TLS_CERT_KEY]))
            certificate.verify_directly_issued_by(self.certificate)
        except (ValueError, TypeError, InvalidSignature):
            return False
        now = now or datetime.now(timezone.utc)
        return certificate.not_valid_after_utc - RENEW_BEFORE > now
