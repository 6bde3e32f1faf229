"""
ACME RFC 8555 HTTP client.

One client instance is bound to one directory URL and one account key, and
caches the directory, the account URL and the most recent anti-replay nonce.
Instances are created per renewal exchange and are not shared across threads.

Every resource read after account creation (authorizations, orders, the
certificate) is a signed POST-as-GET with an empty payload.  The server hands
out a new ``Replay-Nonce`` with each response, errors included, and that
nonce is used for the next request; a ``badNonce`` rejection is re-signed
with the nonce it carried, at most ``_NONCE_RETRIES`` times.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Protocol, Sequence

import josepy
import requests
import urllib3
from josepy.jwk import JWKRSA

from acme import jws as jwslib
from acme.crypto import csr_domains

logger = logging.getLogger(__name__)

LETSENCRYPT_PRODUCTION = "https://acme-v02.api.letsencrypt.org/directory"
LETSENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"

_NONCE_RETRIES = 3

# Problem types that mean the CA could not validate our challenge response
_CHALLENGE_PROBLEMS = (
    "unauthorized",
    "incorrectResponse",
    "connection",
    "dns",
    "caa",
    "tls",
)


class AcmeError(Exception):
    """
    An ACME exchange failed.

    ``body`` is the RFC 7807 problem document from the server, or a synthetic
    one (``{"type": "timeout", ...}`` and the like) for failures detected
    client-side.  ``status_code`` is 0 when no HTTP response was involved.
    """

    def __init__(self, status_code: int, body: dict) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(
            "ACME error (HTTP %s) %s: %s"
            % (status_code, body.get("type", "unknown"), body.get("detail", body))
        )

    @property
    def problem_type(self) -> str:
        return self.body.get("type", "")

    @property
    def is_challenge_failure(self) -> bool:
        """True when the CA rejected or could not validate a challenge."""
        problem = self.problem_type.rsplit(":", 1)[-1]
        return problem in _CHALLENGE_PROBLEMS


class ChallengeHooks(Protocol):
    """Receiver for the challenge lifecycle events of :meth:`AcmeClient.auto`."""

    def challenge_created(self, authz: dict, challenge: dict, key_authorization: str) -> None:
        ...

    def challenge_removed(self, authz: dict, challenge: dict, key_authorization: str) -> None:
        ...


class AcmeClient:
    """
    Speaks RFC 8555 to one CA on behalf of one account key.
    """

    def __init__(
        self,
        directory_url: str,
        account_key: JWKRSA,
        timeout: int = 30,
        ca_bundle: str = "",
        insecure: bool = False,
    ) -> None:
        self.directory_url = directory_url
        self.account_key = account_key
        self.timeout = timeout
        self.account_url: Optional[str] = None
        self._directory: Optional[dict] = None
        self._nonce: Optional[str] = None
        self._session = requests.Session()
        self._session.headers.update({"User-Agent": "acme-ssl-manager/1.0"})

        if insecure:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            self._session.verify = False
        elif ca_bundle:
            self._session.verify = ca_bundle

    # ── Discovery ─────────────────────────────────────────────────────────

    def get_directory(self) -> dict:
        """The CA's endpoint map, fetched with a plain GET on first use."""
        if self._directory is None:
            resp = self._session.get(self.directory_url, timeout=self.timeout)
            resp.raise_for_status()
            self._directory = resp.json()
        return self._directory

    def get_nonce(self) -> str:
        resp = self._session.head(self.get_directory()["newNonce"], timeout=self.timeout)
        nonce = resp.headers.get("Replay-Nonce")
        if not nonce:
            raise AcmeError(resp.status_code, {"detail": "newNonce answered without a Replay-Nonce"})
        return nonce

    # ── Account and orders ────────────────────────────────────────────────

    def create_account(self, terms_of_service_agreed: bool = True) -> str:
        """
        POST /newAccount.  Servers answer 200 with the existing account URL
        when the key is already registered, so this also serves as lookup.
        Returns the account URL.
        """
        payload = {"termsOfServiceAgreed": terms_of_service_agreed}
        resp = self._post_signed(payload, self.get_directory()["newAccount"], use_kid=False)
        account_url = resp.headers.get("Location", "")
        if not account_url:
            raise AcmeError(resp.status_code, {"detail": "newAccount response has no Location header"})
        self.account_url = account_url
        return account_url

    def create_order(self, domains: Sequence[str]) -> tuple[dict, str]:
        """POST /newOrder. Returns (order_body, order_url)."""
        identifiers = [{"type": "dns", "value": name} for name in domains]
        resp = self._post_signed({"identifiers": identifiers}, self.get_directory()["newOrder"])
        return resp.json(), resp.headers.get("Location", "")

    def get_order(self, order_url: str) -> dict:
        return self._post_signed(None, order_url).json()

    # ── Validation ────────────────────────────────────────────────────────

    def get_authorization(self, auth_url: str) -> dict:
        return self._post_signed(None, auth_url).json()

    def respond_to_challenge(self, challenge_url: str) -> dict:
        """Tell the CA the response is in place (RFC 8555 §7.5.1: payload ``{}``)."""
        return self._post_signed({}, challenge_url).json()

    def poll_authorization(
        self,
        auth_url: str,
        max_attempts: int = 10,
        poll_interval: float = 2.0,
        deadline: Optional[float] = None,
    ) -> str:
        """
        Wait for an authorization to leave 'pending'/'processing'.

        Returns 'valid'.  Raises AcmeError on timeout or 'invalid'; the error
        body carries the failing challenge's problem document when the CA
        supplied one.
        """
        authz = self._await_status(
            lambda: self.get_authorization(auth_url),
            "authorization", max_attempts, poll_interval, deadline,
        )
        if authz["status"] == "invalid":
            raise AcmeError(200, _authorization_problem(authz))
        return authz["status"]

    # ── Issuance ──────────────────────────────────────────────────────────

    def finalize_order(self, finalize_url: str, csr_der: bytes) -> dict:
        csr = josepy.b64.b64encode(csr_der).decode()
        return self._post_signed({"csr": csr}, finalize_url).json()

    def poll_order_for_certificate(
        self,
        order_url: str,
        max_attempts: int = 20,
        poll_interval: float = 3.0,
        deadline: Optional[float] = None,
    ) -> str:
        """Wait for the finalized order to become 'valid'; returns its certificate URL."""
        order = self._await_status(
            lambda: self.get_order(order_url),
            "order", max_attempts, poll_interval, deadline,
        )
        if order["status"] == "invalid":
            raise AcmeError(0, {"type": "invalid", "detail": f"Order became invalid: {order}"})
        if not order.get("certificate"):
            raise AcmeError(0, {"detail": "Order is valid but names no certificate URL"})
        return order["certificate"]

    def download_certificate(self, cert_url: str) -> str:
        """The issued chain as PEM text, leaf first."""
        resp = self._post_signed(None, cert_url, accept="application/pem-certificate-chain")
        return resp.text

    # ── Automatic flow ────────────────────────────────────────────────────

    def auto(
        self,
        csr_der: bytes,
        hooks: ChallengeHooks,
        challenge_priority: Sequence[str] = ("http-01",),
        terms_of_service_agreed: bool = True,
        deadline: Optional[float] = None,
        poll_interval: float = 2.0,
    ) -> str:
        """
        Run a complete issuance: account, order, challenges, finalize, download.

        For every pending authorization the first challenge whose type appears
        in *challenge_priority* is prepared through ``hooks.challenge_created``
        before the CA is asked to validate it, and ``hooks.challenge_removed``
        is called once the authorization resolves or fails.

        *deadline* is a ``time.monotonic()`` value after which polling stops
        with a timeout AcmeError.  Returns the PEM certificate chain.
        """
        if self.account_url is None:
            self.create_account(terms_of_service_agreed)

        domains = csr_domains(csr_der)
        order, order_url = self.create_order(domains)
        logger.info("Order created for %s with %d authorization(s)", ", ".join(domains),
                    len(order.get("authorizations", [])))

        for auth_url in order.get("authorizations", []):
            _check_deadline(deadline, "authorization")
            authz = self.get_authorization(auth_url)
            if authz.get("status") == "valid":
                # Servers may reuse a previous authorization (RFC 8555 §7.5)
                logger.info("Authorization %s already valid, skipping challenge", auth_url)
                continue

            challenge = _pick_challenge(authz, challenge_priority)
            key_auth = jwslib.compute_key_authorization(challenge["token"], self.account_key)

            hooks.challenge_created(authz, challenge, key_auth)
            try:
                self.respond_to_challenge(challenge["url"])
                self.poll_authorization(auth_url, poll_interval=poll_interval, deadline=deadline)
            finally:
                hooks.challenge_removed(authz, challenge, key_auth)

        self.finalize_order(order["finalize"], csr_der)
        cert_url = self.poll_order_for_certificate(
            order_url, poll_interval=poll_interval, deadline=deadline
        )
        return self.download_certificate(cert_url)

    # ── Internal ──────────────────────────────────────────────────────────

    def _await_status(
        self,
        fetch: Callable[[], dict],
        what: str,
        max_attempts: int,
        poll_interval: float,
        deadline: Optional[float],
    ) -> dict:
        """Re-fetch a resource until it is 'valid' or 'invalid' and return it."""
        resource: dict = {}
        for attempt in range(max_attempts):
            if attempt:
                time.sleep(poll_interval)
            _check_deadline(deadline, what)
            resource = fetch()
            if resource.get("status") in ("valid", "invalid"):
                return resource
        raise AcmeError(
            0,
            {
                "type": "timeout",
                "detail": f"{what.capitalize()} still {resource.get('status', 'pending')} "
                f"after {max_attempts} polls",
            },
        )

    def _post_signed(
        self,
        payload: Optional[dict],
        url: str,
        accept: str = "application/json",
        use_kid: bool = True,
    ) -> requests.Response:
        """
        JWS-sign *payload* and POST it to *url*.

        The nonce from each response is kept for the next request.  A
        ``badNonce`` rejection is re-signed with the nonce it carried until
        ``_NONCE_RETRIES`` attempts are used up; any other error response
        raises AcmeError with the server's problem document.
        """
        kid = None
        if use_kid:
            kid = self.account_url
            if kid is None:
                raise AcmeError(0, {"detail": "No ACME account; call create_account() first"})

        headers = {"Content-Type": "application/jose+json", "Accept": accept}
        attempts_left = _NONCE_RETRIES
        while True:
            attempts_left -= 1
            nonce, self._nonce = self._nonce or self.get_nonce(), None
            signed = jwslib.sign_request(payload, self.account_key, nonce, url, kid)
            resp = self._session.post(url, json=signed, headers=headers, timeout=self.timeout)
            self._nonce = resp.headers.get("Replay-Nonce") or None
            if resp.ok:
                return resp

            problem = _problem_document(resp)
            if attempts_left and problem.get("type", "").endswith(":badNonce"):
                logger.debug("badNonce from %s, %d attempt(s) left", url, attempts_left)
                continue
            raise AcmeError(resp.status_code, problem)


def make_client(
    directory_url: str,
    account_key_pem: bytes,
    timeout: int = 30,
    ca_bundle: str = "",
    insecure: bool = False,
) -> AcmeClient:
    """Create an AcmeClient for *directory_url* authenticated by the PEM account key."""
    return AcmeClient(
        directory_url=directory_url,
        account_key=jwslib.account_key_from_pem(account_key_pem),
        timeout=timeout,
        ca_bundle=ca_bundle,
        insecure=insecure,
    )


def _pick_challenge(authz: dict, challenge_priority: Sequence[str]) -> dict:
    challenges = authz.get("challenges", [])
    for challenge_type in challenge_priority:
        for challenge in challenges:
            if challenge.get("type") == challenge_type:
                return challenge
    identifier = authz.get("identifier", {}).get("value", "?")
    raise AcmeError(
        0,
        {
            "type": "urn:ietf:params:acme:error:unauthorized",
            "detail": f"No {'/'.join(challenge_priority)} challenge offered for {identifier}",
        },
    )


def _authorization_problem(authz: dict) -> dict:
    for challenge in authz.get("challenges", []):
        error = challenge.get("error")
        if challenge.get("status") == "invalid" and error:
            return error
    return {
        "type": "urn:ietf:params:acme:error:unauthorized",
        "detail": f"Authorization invalid: {authz}",
    }


def _check_deadline(deadline: Optional[float], what: str) -> None:
    if deadline is not None and time.monotonic() > deadline:
        raise AcmeError(0, {"type": "timeout", "detail": f"Renewal deadline exceeded while waiting for {what}"})


def _problem_document(resp: requests.Response) -> dict:
    try:
        body = resp.json()
    except ValueError:
        return {"detail": resp.text}
    return body if isinstance(body, dict) else {"detail": resp.text}
