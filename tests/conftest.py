"""
Shared pytest fixtures.

Certificate factory
-------------------
`cert_factory` issues real X.509 certificates from a throwaway CA so the
evaluator, the stores and the orchestrator are exercised with parseable PEM
instead of hand-written strings.

Fake ACME client
----------------
`FakeAcmeClient` stands in for acme.client.AcmeClient.  Its `auto()` drives
the challenge hooks exactly like the real flow (create → validate → remove)
and signs the CSR's public key with the throwaway CA.  It records call
windows so tests can assert that exchanges never overlap.
"""
from __future__ import annotations

import datetime
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from acme.client import AcmeError
from acme.crypto import generate_rsa_key, private_key_to_pem
from storage.filesystem import FileMaterialStore

STAGING_ISSUER = "(STAGING) Counterfeit Cashew R10"
PRODUCTION_ISSUER = "R10"


# ─── Throwaway CA ─────────────────────────────────────────────────────────────


class ThrowawayCA:
    """Signs leaf certificates with a fixed CA key."""

    def __init__(self) -> None:
        self.key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    def issue(
        self,
        public_key,
        common_name: str,
        issuer_cn: str = PRODUCTION_ISSUER,
        days_valid: float = 90,
        not_after: Optional[datetime.datetime] = None,
    ) -> str:
        now = datetime.datetime.now(datetime.timezone.utc)
        not_after = not_after or now + datetime.timedelta(days=days_valid)
        issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn)])
        cert = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
            .issuer_name(issuer)
            .public_key(public_key)
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(not_after)
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(common_name)]), critical=False)
            .sign(self.key, hashes.SHA256())
        )
        leaf = cert.public_bytes(serialization.Encoding.PEM).decode()
        return leaf + self._intermediate_pem(issuer_cn)

    def _intermediate_pem(self, issuer_cn: str) -> str:
        now = datetime.datetime.now(datetime.timezone.utc)
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn)])
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=365))
            .sign(self.key, hashes.SHA256())
        )
        return cert.public_bytes(serialization.Encoding.PEM).decode()


@pytest.fixture(scope="session")
def throwaway_ca() -> ThrowawayCA:
    return ThrowawayCA()


@pytest.fixture(scope="session")
def domain_key_pem() -> str:
    return private_key_to_pem(generate_rsa_key(key_size=2048))


@pytest.fixture()
def cert_factory(throwaway_ca: ThrowawayCA, domain_key_pem: str) -> Callable[..., tuple[str, str]]:
    """Return make(common_name, issuer_cn=..., days_valid=...) -> (cert_pem, key_pem)."""

    def make(common_name: str = "example.test", **kwargs) -> tuple[str, str]:
        key = serialization.load_pem_private_key(domain_key_pem.encode(), password=None)
        return throwaway_ca.issue(key.public_key(), common_name, **kwargs), domain_key_pem

    return make


@pytest.fixture()
def store(tmp_path: Path) -> FileMaterialStore:
    return FileMaterialStore(tmp_path / "config")


# ─── Fake ACME client ─────────────────────────────────────────────────────────


class FakeAcmeClient:
    """
    In-process ACME stand-in.

    Set `fail_with` to an exception to make `auto()` raise after the
    challenge was prepared; `delay` stretches the exchange so concurrent
    callers would overlap if they were not serialized.
    """

    def __init__(self, ca: ThrowawayCA, issuer_cn: str = STAGING_ISSUER) -> None:
        self.ca = ca
        self.issuer_cn = issuer_cn
        self.fail_with: Optional[BaseException] = None
        self.delay = 0.0
        self.windows: list[tuple[float, float]] = []
        self.directories: list[str] = []
        self.account_keys: list[bytes] = []
        self.served_during_validation: list[Optional[str]] = []
        self.responder = None
        self.remove_challenges = True
        self._lock = threading.Lock()
        self._counter = 0

    def factory(self, directory_url: str, account_key_pem: bytes) -> "FakeAcmeClient":
        self.directories.append(directory_url)
        self.account_keys.append(account_key_pem)
        return self

    def auto(self, csr_der, hooks, challenge_priority=("http-01",), terms_of_service_agreed=True, deadline=None):
        assert tuple(challenge_priority) == ("http-01",)
        assert terms_of_service_agreed is True
        start = time.monotonic()
        try:
            with self._lock:
                self._counter += 1
                token = f"token-{self._counter}"
            challenge = {"type": "http-01", "token": token, "url": f"https://ca.test/chall/{token}"}
            authz = {"identifier": {"type": "dns", "value": "example.test"}, "status": "pending"}
            key_auth = f"{token}.thumbprint"

            hooks.challenge_created(authz, challenge, key_auth)
            if self.responder is not None:
                self.served_during_validation.append(self.responder.lookup(token))
            if self.delay:
                time.sleep(self.delay)
            try:
                if self.fail_with is not None:
                    raise self.fail_with
            finally:
                if self.remove_challenges:
                    hooks.challenge_removed(authz, challenge, key_auth)

            csr = x509.load_der_x509_csr(csr_der)
            cn = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
            return self.ca.issue(csr.public_key(), cn, issuer_cn=self.issuer_cn)
        finally:
            self.windows.append((start, time.monotonic()))


@pytest.fixture()
def fake_acme(throwaway_ca: ThrowawayCA) -> FakeAcmeClient:
    return FakeAcmeClient(throwaway_ca)


@pytest.fixture()
def challenge_error() -> AcmeError:
    """The error a CA returns when it cannot fetch the expected key authorization."""
    return AcmeError(
        200,
        {"type": "urn:ietf:params:acme:error:unauthorized", "detail": "Invalid response from http://example.test"},
    )
