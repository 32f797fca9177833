"""
Traefik TLS tooling: live certificate checks, acme.json upkeep and
forced renewal. Certificates are obtained by Traefik itself.
"""

from .acme import AcmeStore, AcmeStoreError, AcmeValidation, StoredCertificate
from .certificates import (
    CertificateInfo,
    CertificateLevel,
    CertificateStatus,
    check_domain,
    classify,
    fetch_certificate,
    load_pem_certificate,
)
from .renewal import CertificateRenewer

__all__ = [
    "AcmeStore",
    "AcmeStoreError",
    "AcmeValidation",
    "StoredCertificate",
    "CertificateInfo",
    "CertificateLevel",
    "CertificateStatus",
    "check_domain",
    "classify",
    "fetch_certificate",
    "load_pem_certificate",
    "CertificateRenewer",
]
