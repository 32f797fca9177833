"""Live TLS certificate inspection."""
import socket
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from cryptography import x509
from cryptography.x509.oid import ExtensionOID, NameOID

from hearth.core.logger import get_logger

logger = get_logger(__name__)


class CertificateLevel(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    UNKNOWN = "UNKNOWN"

    @property
    def exit_code(self) -> int:
        return {"OK": 0, "WARNING": 1, "CRITICAL": 2, "UNKNOWN": 1}[self.value]


@dataclass
class CertificateInfo:
    """The bits of an X.509 certificate hearth cares about."""
    subject: str
    issuer: str
    not_before: datetime
    not_after: datetime
    sans: List[str] = field(default_factory=list)

    def days_left(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        return int((self.not_after - now).total_seconds() // 86400)

    def covers(self, hostname: str) -> bool:
        hostname = hostname.lower()
        for name in self.sans or [self.subject]:
            name = name.lower()
            if name == hostname:
                return True
            if name.startswith("*.") and hostname.endswith(name[1:]) and hostname.count(".") == name.count("."):
                return True
        return False


@dataclass
class CertificateStatus:
    domain: str
    level: CertificateLevel
    message: str
    days_left: Optional[int] = None
    certificate: Optional[CertificateInfo] = None

    @property
    def exit_code(self) -> int:
        return self.level.exit_code


def _common_name(name: x509.Name) -> str:
    attributes = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return attributes[0].value if attributes else name.rfc4514_string()


def parse_certificate(cert: x509.Certificate) -> CertificateInfo:
    try:
        san = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        sans = san.value.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        sans = []
    return CertificateInfo(
        subject=_common_name(cert.subject),
        issuer=_common_name(cert.issuer),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        sans=list(sans),
    )


def load_pem_certificate(data: bytes) -> CertificateInfo:
    """Parse the first certificate of a PEM bundle."""
    return parse_certificate(x509.load_pem_x509_certificate(data))


def fetch_certificate(host: str, port: int = 443, timeout: float = 10) -> CertificateInfo:
    """Fetch the certificate ``host`` presents, without verifying it.

    Raises:
        OSError: If the connection or handshake fails
    """
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE

    with socket.create_connection((host, port), timeout=timeout) as sock:
        with context.wrap_socket(sock, server_hostname=host) as tls:
            der = tls.getpeercert(binary_form=True)
    if not der:
        raise ssl.SSLError(f"{host}:{port} presented no certificate")
    return parse_certificate(x509.load_der_x509_certificate(der))


def classify(days_left: int, alert_days: int = 30, critical_days: int = 7) -> CertificateLevel:
    if days_left < critical_days:
        return CertificateLevel.CRITICAL
    if days_left < alert_days:
        return CertificateLevel.WARNING
    return CertificateLevel.OK


def check_domain(domain: str, alert_days: int = 30, critical_days: int = 7,
                 port: int = 443, timeout: float = 10,
                 now: Optional[datetime] = None) -> CertificateStatus:
    """Check the expiry of the certificate served for ``domain``."""
    logger.info(f"Checking SSL certificate for {domain}...")
    try:
        info = fetch_certificate(domain, port, timeout)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not retrieve certificate information for {domain}: {e}")
        return CertificateStatus(
            domain, CertificateLevel.UNKNOWN,
            f"Could not retrieve certificate information for {domain}",
        )

    days = info.days_left(now)
    level = classify(days, alert_days, critical_days)
    if level == CertificateLevel.OK:
        message = f"Certificate for {domain} is valid for {days} days"
    else:
        message = f"Certificate for {domain} expires in {days} days"
    if not info.covers(domain):
        message += f" (certificate is for {info.subject}, not {domain})"
    return CertificateStatus(domain, level, message, days, info)
