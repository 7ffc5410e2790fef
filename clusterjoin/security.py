"""
ClusterJoin TLS Setup
Builds the client SSL context used to reach the join target
"""

import logging
import ssl
from datetime import datetime, timezone
from typing import Optional

from cryptography import x509

from .config import SecurityConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def check_certificate(cert_path: str) -> int:
    """Return days of validity left, failing on an expired or unreadable certificate"""
    try:
        with open(cert_path, 'rb') as f:
            cert_pem = f.read()
        cert = x509.load_pem_x509_certificate(cert_pem)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"cannot load certificate {cert_path}: {e}") from e

    now = datetime.now(timezone.utc)
    if now < cert.not_valid_before_utc:
        raise ConfigurationError(f"certificate {cert_path} is not valid before {cert.not_valid_before_utc}")
    if now > cert.not_valid_after_utc:
        raise ConfigurationError(f"certificate {cert_path} expired at {cert.not_valid_after_utc}")

    days_left = (cert.not_valid_after_utc - now).days
    logger.info(f"Client certificate {cert.subject.rfc4514_string()} valid for {days_left} more days")
    return days_left


def build_ssl_context(security: SecurityConfig) -> Optional[ssl.SSLContext]:
    """Client-side context for mutual TLS, or None when TLS is not configured"""
    if not security.enabled:
        return None

    if bool(security.cert_path) != bool(security.key_path):
        raise ConfigurationError("cert_path and key_path must be set together")

    try:
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=security.cacert_path)
        context.minimum_version = ssl.TLSVersion.TLSv1_2

        if security.cert_path:
            check_certificate(security.cert_path)
            context.load_cert_chain(certfile=security.cert_path, keyfile=security.key_path)

    except (OSError, ssl.SSLError) as e:
        raise ConfigurationError(f"failed to build TLS context: {e}") from e

    return context
