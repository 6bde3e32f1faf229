"""
MaterialStore — persistence contract for key and certificate material.

Backends only move named blobs (`_read` / `_write`); parsing, validation and
the "unreadable means absent" policy live here so every backend behaves the
same and callers never branch on which one is active.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from certmanager.errors import CertificateUnreadable, StorageError
from certmanager.material import CertificateMaterial

logger = logging.getLogger(__name__)

KEY_NAME = "ssl.key"
CERT_NAME = "ssl.cert"
ACCOUNT_KEY_NAME = "account.key"


class MaterialStore(ABC):
    """Load/save the domain key, certificate chain and ACME account key."""

    # ── Backend primitives ────────────────────────────────────────────────

    @abstractmethod
    def _read(self, name: str) -> Optional[bytes]:
        """Return the blob stored under *name*, None if absent. Raises StorageError."""

    @abstractmethod
    def _write(self, name: str, data: bytes, secret: bool = False) -> None:
        """Replace the blob under *name*. Raises StorageError."""

    # ── Contract ──────────────────────────────────────────────────────────

    def load_certificate(self) -> Optional[CertificateMaterial]:
        """
        Return the stored certificate with its key, or None when either is
        missing, unreadable, or they do not belong together.
        """
        try:
            cert = self._read(CERT_NAME)
            key = self._read(KEY_NAME)
            if cert is None or key is None:
                return None
            return CertificateMaterial.from_pem(cert.decode(), key.decode())
        except (CertificateUnreadable, StorageError, UnicodeDecodeError) as exc:
            logger.warning("Stored certificate is unreadable, treating as absent: %s", exc)
            return None

    def save_certificate(self, material: CertificateMaterial) -> None:
        self._write(KEY_NAME, material.private_key_pem.encode(), secret=True)
        self._write(CERT_NAME, material.certificate_pem.encode())

    def load_key(self) -> Optional[str]:
        data = self._read(KEY_NAME)
        return data.decode() if data is not None else None

    def save_key(self, pem: str) -> None:
        self._write(KEY_NAME, pem.encode(), secret=True)

    def load_account_key(self) -> Optional[bytes]:
        return self._read(ACCOUNT_KEY_NAME)

    def save_account_key(self, pem: bytes) -> None:
        self._write(ACCOUNT_KEY_NAME, pem, secret=True)
