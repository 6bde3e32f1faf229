"""
Renewal orchestration — one complete ACME issuance for the managed domain.

The orchestrator owns the RenewalGuard, the only lock in the system.  Every
exchange (boot check, hourly check, on-demand renewal) runs under it, so at
most one order is ever in flight and the single certificate slot is never
written concurrently.

Sequence per renewal:
  account key → domain key (persisted before the CA is contacted) → CSR
  → ACME auto flow (HTTP-01 tokens registered with the ChallengeResponder)
  → parse chain → persist → publish to ActiveTlsState
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Protocol, Sequence

from acme import jws as jwslib
from acme.client import (
    LETSENCRYPT_PRODUCTION,
    LETSENCRYPT_STAGING,
    AcmeError,
    ChallengeHooks,
    make_client,
)
from acme.crypto import create_csr, generate_rsa_key, load_csr_key, private_key_to_pem
from certmanager.errors import (
    CaProtocolError,
    CertificateUnreadable,
    ChallengeFailed,
    PersistenceError,
    StorageError,
)
from certmanager.material import CertificateMaterial
from certmanager.responder import ChallengeResponder
from certmanager.tls_state import ActiveTlsState
from storage.base import MaterialStore

logger = logging.getLogger(__name__)

HTTP01 = "http-01"
DEFAULT_RENEWAL_TIMEOUT = 600


class AcmeAutoClient(Protocol):
    def auto(
        self,
        csr_der: bytes,
        hooks: ChallengeHooks,
        challenge_priority: Sequence[str] = ...,
        terms_of_service_agreed: bool = ...,
        deadline: Optional[float] = ...,
    ) -> str:
        ...


ClientFactory = Callable[[str, bytes], AcmeAutoClient]


class RenewalOrchestrator:
    """Drives ACME issuance and installs the result; see module docstring."""

    def __init__(
        self,
        store: MaterialStore,
        responder: ChallengeResponder,
        tls_state: ActiveTlsState,
        client_factory: ClientFactory = make_client,
        directory_url: str = "",
        timeout_seconds: int = DEFAULT_RENEWAL_TIMEOUT,
    ) -> None:
        self.store = store
        self.responder = responder
        self.tls_state = tls_state
        self.client_factory = client_factory
        self.directory_url = directory_url
        self.timeout_seconds = timeout_seconds
        # Re-entrant so a check holding the guard can call renew()
        self.guard = threading.RLock()
        self._registered: set[str] = set()

    def directory_for(self, is_staging: bool) -> str:
        if self.directory_url:
            return self.directory_url
        return LETSENCRYPT_STAGING if is_staging else LETSENCRYPT_PRODUCTION

    def renew(self, domain: str, is_staging: bool) -> CertificateMaterial:
        """
        Obtain a fresh certificate for *domain* and make it the active one.

        Blocks while another renewal holds the guard.  Raises ChallengeFailed,
        CaProtocolError or PersistenceError; on ChallengeFailed and
        CaProtocolError the active certificate is left exactly as it was.
        """
        with self.guard:
            try:
                return self._renew(domain, is_staging)
            finally:
                # The ACME client normally removes what it created; sweep anything left
                for token in list(self._registered):
                    self.responder.remove(token)
                self._registered.clear()

    # ── Challenge hooks (called by AcmeClient.auto) ───────────────────────

    def challenge_created(self, authz: dict, challenge: dict, key_authorization: str) -> None:
        token = challenge["token"]
        self.responder.put(token, key_authorization)
        self._registered.add(token)

    def challenge_removed(self, authz: dict, challenge: dict, key_authorization: str) -> None:
        token = challenge["token"]
        self.responder.remove(token)
        self._registered.discard(token)

    # ── Internal ──────────────────────────────────────────────────────────

    def _renew(self, domain: str, is_staging: bool) -> CertificateMaterial:
        existing = self.tls_state.current() is not None
        logger.info("%s SSL Certificate for %s", "Renewing" if existing else "Creating", domain)

        account_key = self._account_key(domain)
        key_pem = self._domain_key(domain)
        csr_der = create_csr(load_csr_key(key_pem), domain)

        directory = self.directory_for(is_staging)
        deadline = time.monotonic() + self.timeout_seconds
        try:
            client = self.client_factory(directory, account_key)
            chain_pem = client.auto(
                csr_der,
                hooks=self,
                challenge_priority=(HTTP01,),
                terms_of_service_agreed=True,
                deadline=deadline,
            )
        except AcmeError as exc:
            if exc.is_challenge_failure:
                raise ChallengeFailed(domain, f"HTTP-01 validation failed: {exc}", exc) from exc
            raise CaProtocolError(domain, f"ACME exchange with {directory} failed: {exc}", exc) from exc
        except Exception as exc:
            raise CaProtocolError(domain, f"ACME exchange with {directory} failed: {exc}", exc) from exc

        try:
            material = CertificateMaterial.from_pem(chain_pem, key_pem)
        except CertificateUnreadable as exc:
            raise CaProtocolError(domain, f"CA returned an unusable certificate: {exc}", exc) from exc

        try:
            self.store.save_certificate(material)
        except StorageError as exc:
            # Serve the new certificate anyway; it will not survive a restart
            self.tls_state.publish(material)
            raise PersistenceError(domain, f"certificate issued but not persisted: {exc}", exc) from exc

        self.tls_state.publish(material)
        logger.info(
            "Installed SSL Certificate for %s (expires %s)",
            domain,
            material.not_after.strftime("%Y-%m-%d"),
        )
        return material

    def _account_key(self, domain: str) -> bytes:
        """Stored ACME account key, or a newly generated and persisted one."""
        try:
            pem = self.store.load_account_key()
        except StorageError as exc:
            raise PersistenceError(domain, f"cannot read ACME account key: {exc}", exc) from exc

        if pem is not None:
            try:
                jwslib.account_key_from_pem(pem)
                return pem
            except ValueError as exc:
                logger.warning("Stored ACME account key is unusable (%s), generating a new one", exc)

        logger.info("No ACME account key found, generating one")
        pem = jwslib.account_key_to_pem(jwslib.generate_account_key())
        try:
            self.store.save_account_key(pem)
        except StorageError as exc:
            raise PersistenceError(domain, f"cannot save ACME account key: {exc}", exc) from exc
        return pem

    def _domain_key(self, domain: str) -> str:
        """
        Stored domain key if it is a usable RSA or EC key, else a new RSA-2048 key.

        A new key is persisted here, before the CA is contacted.
        """
        try:
            key_pem = self.store.load_key()
        except StorageError as exc:
            raise PersistenceError(domain, f"cannot read private key: {exc}", exc) from exc

        if key_pem is not None:
            try:
                load_csr_key(key_pem)
                return key_pem
            except (ValueError, TypeError) as exc:
                logger.warning("Stored private key is unusable (%s), generating a new one", exc)

        logger.info("Generating RSA-2048 key for %s", domain)
        key_pem = private_key_to_pem(generate_rsa_key(key_size=2048))
        try:
            self.store.save_key(key_pem)
        except StorageError as exc:
            raise PersistenceError(domain, f"cannot save private key: {exc}", exc) from exc
        return key_pem
