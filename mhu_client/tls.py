# =============================================================================
# MHU Python Client -- TLS and Address Setup
# =============================================================================
#
# Everything here runs once, at client construction.  Failures are
# misconfiguration and raise HubConfigError instead of being retried.
# =============================================================================

from __future__ import annotations

import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlsplit

from cryptography import x509

from ._logging import logger
from .errors import HubConfigError
from .types import HubAddress, TLSConfig

_SCHEMES = frozenset({"tls", "tcp"})


@dataclass(frozen=True, slots=True)
class CertificateInfo:
    """Summary of the client certificate presented to the hub."""

    subject: str
    issuer: str
    serial_number: int
    not_valid_before: datetime
    not_valid_after: datetime

    @property
    def expired(self) -> bool:
        return datetime.now(timezone.utc) > self.not_valid_after


def parse_address(address: str) -> HubAddress:
    """Parse ``host:port`` (optionally ``tls://host:port`` or ``[v6]:port``).

    Raises:
        HubConfigError: If the address is empty or has no valid port.
    """
    raw = (address or "").strip()
    if not raw:
        raise HubConfigError("No hub address")

    if "://" in raw:
        scheme, _, raw = raw.partition("://")
        if scheme.lower() not in _SCHEMES:
            raise HubConfigError(f"Unsupported hub address scheme {scheme!r}")

    try:
        parts = urlsplit(f"//{raw}")
        host, port = parts.hostname, parts.port
    except ValueError as exc:
        raise HubConfigError(f"Invalid hub address {address!r}: {exc}") from exc

    if parts.path or parts.query or parts.fragment or parts.username:
        raise HubConfigError(f"Hub address {address!r} must be host:port")
    if not host or not port:
        raise HubConfigError(f"Hub address {address!r} must be host:port")
    return HubAddress(host, port)


def create_ssl_context(config: TLSConfig) -> ssl.SSLContext:
    """Build the client-side context used for every hub session.

    With ``config.verify`` off the hub's certificate and hostname are not
    checked; the client still presents its own certificate.

    Raises:
        HubConfigError: If a certificate, key or CA file cannot be loaded.
    """
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    try:
        if config.verify:
            if config.cafile:
                ctx.load_verify_locations(cafile=config.cafile)
            else:
                ctx.load_default_certs()
        else:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE

        if config.certfile:
            ctx.load_cert_chain(config.certfile, config.keyfile)
    except (OSError, ssl.SSLError) as exc:
        raise HubConfigError(f"Cannot load TLS material: {exc}") from exc

    if not config.verify:
        logger.debug("Hub certificate verification disabled")
    return ctx


def describe_certificate(path: str) -> CertificateInfo:
    """Read the first PEM certificate in *path*.

    Raises:
        HubConfigError: If the file is unreadable or not a PEM certificate.
    """
    try:
        with open(path, "rb") as fh:
            cert = x509.load_pem_x509_certificate(fh.read())
    except (OSError, ValueError) as exc:
        raise HubConfigError(f"Cannot read certificate {path!r}: {exc}") from exc

    return CertificateInfo(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        serial_number=cert.serial_number,
        not_valid_before=cert.not_valid_before_utc,
        not_valid_after=cert.not_valid_after_utc,
    )


def check_client_certificate(config: TLSConfig) -> CertificateInfo | None:
    """Log the client certificate and warn if it has expired."""
    if not config.certfile:
        return None
    info = describe_certificate(config.certfile)
    logger.debug(
        "Client certificate: subject=%s issuer=%s valid until %s",
        info.subject,
        info.issuer,
        info.not_valid_after.isoformat(),
    )
    if info.expired:
        logger.warning(
            "Client certificate %s expired on %s; the hub will likely reject it",
            config.certfile,
            info.not_valid_after.isoformat(),
        )
    return info
