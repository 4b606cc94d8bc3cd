"""Certificate chain and private key loading, and TLS context creation."""

import logging
import re
import ssl
from dataclasses import dataclass
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from ipecho.domain.correlation_id import CorrelationLoggerAdapter
from ipecho.domain.errors import CertificateLoadError, KeyLoadError

TLS_LOGGER = CorrelationLoggerAdapter(logging.getLogger("ip_echo.tls"), {})

# PEM labels for each recognised private key encoding, in probe order.
KEY_ENCODINGS = {
    "EC": "EC PRIVATE KEY",
    "PKCS8": "PRIVATE KEY",
    "RSA": "RSA PRIVATE KEY",
}

# Any PEM block whose label names a private key, recognised or not.
PRIVATE_KEY_LABEL = re.compile(rb"-----BEGIN ([A-Z0-9 ]*PRIVATE KEY)-----")

HTTP2_ALPN = "h2"
HTTP1_ALPN = "http/1.1"


@dataclass(frozen=True)
class PrivateKeyBlock:
    """One PEM private key block found in the key file."""

    encoding: str
    pem: bytes


@dataclass(frozen=True)
class TransportContext:
    """Validated certificate chain (leaf first) and its single private key."""

    cert_path: str
    key_path: str
    certificates: tuple[x509.Certificate, ...]
    private_key: PrivateKeyBlock


def _read_file(path: str, error_type: type[Exception]) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise error_type(f"failed to open {path}: {exc}") from exc


def load_certificates(path: str) -> tuple[x509.Certificate, ...]:
    """Parse every PEM certificate in ``path``, preserving file order."""
    data = _read_file(path, CertificateLoadError)
    try:
        certificates = x509.load_pem_x509_certificates(data)
    except ValueError as exc:
        raise CertificateLoadError(f"failed to load certificate from {path}") from exc
    if not certificates:
        raise CertificateLoadError(f"no certificates found in file {path}")
    return tuple(certificates)


def _pem_blocks(data: bytes, label: str) -> list[bytes]:
    pattern = re.compile(
        rb"-----BEGIN "
        + re.escape(label.encode())
        + rb"-----.*?-----END "
        + re.escape(label.encode())
        + rb"-----",
        re.DOTALL,
    )
    return [match.group(0) for match in pattern.finditer(data)]


def _decode_keys(data: bytes, encoding: str, path: str) -> list[PrivateKeyBlock]:
    blocks = []
    for pem in _pem_blocks(data, KEY_ENCODINGS[encoding]):
        try:
            serialization.load_pem_private_key(pem, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise KeyLoadError(
                f"failed to read {encoding} private keys from {path}"
            ) from exc
        blocks.append(PrivateKeyBlock(encoding, pem))
    return blocks


def _reject_unsupported_labels(data: bytes, path: str) -> None:
    labels = {match.group(1).decode() for match in PRIVATE_KEY_LABEL.finditer(data)}
    unsupported = sorted(labels - set(KEY_ENCODINGS.values()))
    if unsupported:
        raise KeyLoadError(
            f"unsupported private key block {unsupported[0]} in file {path}"
        )


def load_private_key(path: str) -> PrivateKeyBlock:
    """Return the single private key in ``path``.

    Each encoding is probed independently against the whole file and the
    matches are pooled. Zero or more than one key in total is an error;
    the loader never picks one of several candidates.

    Private key blocks under any other label, such as an encrypted PKCS#8
    key, are rejected outright: OpenSSL would load the first key-like block
    it meets, which need not be the one accepted here.
    """
    data = _read_file(path, KeyLoadError)
    _reject_unsupported_labels(data, path)
    found: list[PrivateKeyBlock] = []
    for encoding in KEY_ENCODINGS:
        found.extend(_decode_keys(data, encoding, path))

    if not found:
        raise KeyLoadError(f"no private keys found in file {path}")
    if len(found) > 1:
        raise KeyLoadError(f"expected a single private key in file {path}")
    return found[0]


def load_transport_context(cert_path: str, key_path: str) -> TransportContext:
    """Load and validate the certificate chain and private key."""
    certificates = load_certificates(cert_path)
    private_key = load_private_key(key_path)
    TLS_LOGGER.info(
        "Transport context loaded",
        extra={
            "event": "transport_context_loaded",
            "certificates": len(certificates),
            "key_encoding": private_key.encoding,
        },
    )
    return TransportContext(cert_path, key_path, certificates, private_key)


def build_ssl_context(
    transport: TransportContext, http2_only: bool = False
) -> ssl.SSLContext:
    """Create the server-side TLS context shared by every listener."""
    tls_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    tls_context.minimum_version = ssl.TLSVersion.TLSv1_2
    try:
        tls_context.load_cert_chain(transport.cert_path, transport.key_path)
    except (ssl.SSLError, OSError) as exc:
        raise CertificateLoadError(
            f"certificate and key do not form a usable pair: {exc}"
        ) from exc
    if http2_only:
        tls_context.set_alpn_protocols([HTTP2_ALPN])
    else:
        tls_context.set_alpn_protocols([HTTP2_ALPN, HTTP1_ALPN])
    return tls_context
