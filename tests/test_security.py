"""
TLS context construction tests
"""

import ssl
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from clusterjoin.config import SecurityConfig
from clusterjoin.errors import ConfigurationError
from clusterjoin.security import build_ssl_context, check_certificate


def write_certificate(directory, name: str, not_before: datetime, not_after: datetime):
    """Self-signed certificate and key written as PEM files"""
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, name)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )

    cert_path = directory / f"{name}.crt"
    key_path = directory / f"{name}.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption()
    ))
    return str(cert_path), str(key_path)


class TestBuildSSLContext:

    def test_disabled_without_ca(self):
        assert build_ssl_context(SecurityConfig()) is None

    def test_mutual_tls_context(self, tmp_path):
        now = datetime.now(timezone.utc)
        cert_path, key_path = write_certificate(tmp_path, "node4", now - timedelta(days=1), now + timedelta(days=90))

        context = build_ssl_context(SecurityConfig(cacert_path=cert_path, cert_path=cert_path, key_path=key_path))

        assert isinstance(context, ssl.SSLContext)
        assert context.minimum_version == ssl.TLSVersion.TLSv1_2
        assert context.verify_mode == ssl.CERT_REQUIRED

    def test_ca_only_context(self, tmp_path):
        now = datetime.now(timezone.utc)
        cert_path, _ = write_certificate(tmp_path, "ca", now - timedelta(days=1), now + timedelta(days=90))

        assert build_ssl_context(SecurityConfig(cacert_path=cert_path)) is not None

    def test_expired_client_certificate(self, tmp_path):
        now = datetime.now(timezone.utc)
        cert_path, key_path = write_certificate(tmp_path, "old", now - timedelta(days=30), now - timedelta(days=1))

        with pytest.raises(ConfigurationError):
            build_ssl_context(SecurityConfig(cacert_path=cert_path, cert_path=cert_path, key_path=key_path))

    def test_cert_without_key(self, tmp_path):
        now = datetime.now(timezone.utc)
        cert_path, _ = write_certificate(tmp_path, "node4", now - timedelta(days=1), now + timedelta(days=90))

        with pytest.raises(ConfigurationError):
            build_ssl_context(SecurityConfig(cacert_path=cert_path, cert_path=cert_path))

    def test_missing_ca_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            build_ssl_context(SecurityConfig(cacert_path=str(tmp_path / "absent.crt")))

    def test_days_left_reported(self, tmp_path):
        now = datetime.now(timezone.utc)
        cert_path, _ = write_certificate(tmp_path, "node4", now - timedelta(days=1), now + timedelta(days=10, hours=1))

        assert check_certificate(cert_path) == 10
