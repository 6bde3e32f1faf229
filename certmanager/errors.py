"""
Exception taxonomy for the certificate lifecycle manager.

Validity problems (domain or environment mismatch, expiry) are not errors;
they are reported as a Decision by certmanager.evaluator.
"""
from __future__ import annotations

from typing import Optional


class CertManagerError(Exception):
    """Base class for all lifecycle manager errors."""


class CertificateUnreadable(CertManagerError):
    """Stored certificate or key cannot be parsed. Stores treat it as absent."""


class StorageError(CertManagerError):
    """A MaterialStore backend failed to read or write."""


class RenewalError(CertManagerError):
    """A renewal attempt failed. The previously active certificate is untouched."""

    def __init__(self, domain: str, message: str, cause: Optional[BaseException] = None) -> None:
        self.domain = domain
        self.cause = cause
        super().__init__(f"{domain}: {message}")


class ChallengeFailed(RenewalError):
    """The CA rejected or could not validate the HTTP-01 challenge."""


class CaProtocolError(RenewalError):
    """Network, transport or protocol failure talking to the ACME directory."""


class PersistenceError(RenewalError):
    """Key or certificate material could not be written to the store."""


class FatalStartupError(CertManagerError):
    """The boot-time issuance failed and there is no certificate to fall back to."""
