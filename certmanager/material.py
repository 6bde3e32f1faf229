"""
CertificateMaterial — the immutable (certificate, key) pair the manager serves.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from acme.crypto import key_matches_certificate, read_certificate_info
from certmanager.errors import CertificateUnreadable


@dataclass(frozen=True)
class CertificateMaterial:
    certificate_pem: str
    private_key_pem: str
    issued_at: datetime
    not_after: datetime
    common_name: str
    issuer_common_name: str

    @classmethod
    def from_pem(cls, certificate_pem: str, private_key_pem: str) -> "CertificateMaterial":
        """
        Parse a PEM chain and its private key.

        Raises CertificateUnreadable if either cannot be parsed or the key was
        not the one the leaf certificate was issued for.
        """
        try:
            info = read_certificate_info(certificate_pem)
            matches = key_matches_certificate(private_key_pem, certificate_pem)
        except (ValueError, TypeError) as exc:
            raise CertificateUnreadable(f"cannot parse certificate material: {exc}") from exc
        if not matches:
            raise CertificateUnreadable("private key does not match certificate")

        return cls(
            certificate_pem=certificate_pem,
            private_key_pem=private_key_pem,
            issued_at=info.not_before,
            not_after=info.not_after,
            common_name=info.common_name,
            issuer_common_name=info.issuer_common_name,
        )

    @property
    def is_staging(self) -> bool:
        """Staging CAs put "staging" in the issuer common name (e.g. "(STAGING) ...")."""
        return "staging" in self.issuer_common_name.lower()
