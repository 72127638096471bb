"""Inspect issued TLS certificates so still-valid ones can be reused."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509
from cryptography.x509.oid import NameOID

RENEWAL_WINDOW = timedelta(days=30)


@dataclass(frozen=True, slots=True)
class CertificateInfo:
    """The parts of a certificate the ssl step cares about."""

    path: Path
    common_name: str | None
    dns_names: tuple[str, ...]
    not_valid_before: datetime
    not_valid_after: datetime

    def covers(self, domain: str) -> bool:
        """Return True when *domain* is named by the certificate."""
        names = {name.lower() for name in self.dns_names}
        if self.common_name:
            names.add(self.common_name.lower())
        return domain.lower() in names

    def is_current(
        self,
        *,
        now: datetime | None = None,
        margin: timedelta = RENEWAL_WINDOW,
    ) -> bool:
        """Return True when the certificate is valid for at least *margin* more."""
        moment = now or datetime.now(UTC)
        return self.not_valid_before <= moment and self.not_valid_after - margin > moment


def inspect_certificate(path: Path) -> CertificateInfo | None:
    """Parse the PEM or DER certificate at *path*; return None when unreadable."""
    try:
        data = Path(path).read_bytes()
    except OSError:
        return None
    try:
        cert = _load_certificate(data)
    except ValueError:
        return None

    common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    common_name = str(common_names[0].value) if common_names else None
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        dns_names = tuple(san.value.get_values_for_type(x509.DNSName))
    except x509.ExtensionNotFound:
        dns_names = ()
    return CertificateInfo(
        path=Path(path),
        common_name=common_name,
        dns_names=dns_names,
        not_valid_before=cert.not_valid_before_utc,
        not_valid_after=cert.not_valid_after_utc,
    )


def reusable_certificate(
    path: Path,
    domain: str,
    *,
    now: datetime | None = None,
) -> CertificateInfo | None:
    """Return the certificate at *path* when it covers *domain* and is not near expiry."""
    info = inspect_certificate(path)
    if info is None or not info.covers(domain) or not info.is_current(now=now):
        return None
    return info


def _load_certificate(data: bytes) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


__all__ = ["CertificateInfo", "inspect_certificate", "reusable_certificate"]
