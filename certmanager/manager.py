"""
CertificateManager — the single long-lived object holding the lifecycle state.

Constructed once at startup and handed to the scheduler and the host.  It
owns the material store, the challenge responder, the active TLS slot and
the renewal orchestrator; nothing in the package keeps module-level state.
"""
from __future__ import annotations

import functools
import logging
from typing import Optional

from acme.client import make_client
from certmanager.evaluator import Decision, evaluate
from certmanager.material import CertificateMaterial
from certmanager.orchestrator import ClientFactory, RenewalOrchestrator
from certmanager.responder import ChallengeResponder
from certmanager.tls_state import ActiveTlsState
from config import Settings
from storage.base import MaterialStore
from storage.filesystem import FileMaterialStore
from storage.seed import HttpSmallFileClient, SeedMaterialStore

logger = logging.getLogger(__name__)


def make_store(settings: Settings) -> MaterialStore:
    """Build the MaterialStore selected by STORAGE_BACKEND."""
    if settings.STORAGE_BACKEND == "seed":
        client = HttpSmallFileClient(settings.SEED_STORE_URL, timeout=settings.ACME_HTTP_TIMEOUT)
        return SeedMaterialStore(client, seed=settings.SEED, namespace=settings.SEED_NAMESPACE)
    return FileMaterialStore(settings.CONFIG_DIR)


class CertificateManager:
    def __init__(
        self,
        domain: str,
        is_staging: bool,
        store: MaterialStore,
        client_factory: ClientFactory = make_client,
        directory_url: str = "",
        renewal_timeout: int = 600,
    ) -> None:
        if not domain:
            raise ValueError("a domain is required")
        self.domain = domain
        self.is_staging = is_staging
        self.store = store
        self.responder = ChallengeResponder()
        self.active = ActiveTlsState()
        self.orchestrator = RenewalOrchestrator(
            store=store,
            responder=self.responder,
            tls_state=self.active,
            client_factory=client_factory,
            directory_url=directory_url,
            timeout_seconds=renewal_timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings, domain: Optional[str] = None) -> "CertificateManager":
        client_factory = functools.partial(
            make_client,
            timeout=settings.ACME_HTTP_TIMEOUT,
            ca_bundle=settings.ACME_CA_BUNDLE,
            insecure=settings.ACME_INSECURE,
        )
        return cls(
            domain=domain or settings.DOMAIN,
            is_staging=settings.is_staging,
            store=make_store(settings),
            client_factory=client_factory,
            directory_url=settings.ACME_DIRECTORY_URL,
            renewal_timeout=settings.RENEWAL_TIMEOUT_SECONDS,
        )

    @property
    def guard(self):
        """The RenewalGuard shared by every check and renewal."""
        return self.orchestrator.guard

    def candidate(self) -> Optional[CertificateMaterial]:
        """The certificate a check should judge: the served one, else the stored one."""
        return self.active.current() or self.store.load_certificate()

    def evaluate(self) -> Decision:
        return evaluate(self.candidate(), self.domain, self.is_staging)

    def renew(self) -> CertificateMaterial:
        return self.orchestrator.renew(self.domain, self.is_staging)
