"""
ACME account key handling and request signing (RFC 8555 §6.2).

The account key is an RSA key wrapped in a josepy ``JWKRSA``.  The
MaterialStore keeps it as PKCS8 PEM bytes; this module converts between the
two, derives HTTP-01 key authorizations from the RFC 7638 thumbprint, and
builds the flattened JWS bodies every ACME POST carries.

Domain keys, CSRs and certificate parsing live in acme/crypto.py.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import josepy
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from josepy.jwk import JWKRSA

_ALG = josepy.RS256


# ─── Account key ──────────────────────────────────────────────────────────────


def generate_account_key(key_size: int = 2048) -> JWKRSA:
    return JWKRSA(key=rsa.generate_private_key(public_exponent=65537, key_size=key_size))


def account_key_to_pem(jwk: JWKRSA) -> bytes:
    """Unencrypted PKCS8 PEM, the form the MaterialStore persists."""
    return jwk.key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def account_key_from_pem(pem: bytes) -> JWKRSA:
    """Inverse of account_key_to_pem. Raises ValueError for unparseable or non-RSA keys."""
    key = serialization.load_pem_private_key(pem, password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError(f"ACME account key must be RSA, got {type(key).__name__}")
    return JWKRSA(key=key)


# ─── Key authorization ────────────────────────────────────────────────────────


def compute_jwk_thumbprint(jwk: JWKRSA) -> str:
    return _b64(jwk.public_key().thumbprint(hash_function=hashes.SHA256))


def compute_key_authorization(token: str, jwk: JWKRSA) -> str:
    """``<token>.<thumbprint>``: the body served for an HTTP-01 challenge."""
    return token + "." + compute_jwk_thumbprint(jwk)


# ─── Request signing ──────────────────────────────────────────────────────────


def sign_request(
    payload: Optional[dict],
    account_key: JWKRSA,
    nonce: str,
    url: str,
    account_url: Optional[str] = None,
) -> dict:
    """
    Build the flattened JWS for an ACME POST.

    Until the account exists (newAccount) the protected header embeds the
    public JWK; afterwards it names the account URL as ``kid``.  A *payload*
    of None yields the empty payload of a POST-as-GET.
    """
    protected: dict[str, Any] = {"alg": _ALG.name, "nonce": nonce, "url": url}
    if not account_url:
        protected["jwk"] = account_key.public_key().to_partial_json()
    else:
        protected["kid"] = account_url

    encoded_protected = _b64(_json(protected))
    encoded_payload = "" if payload is None else _b64(_json(payload))
    signature = _ALG.sign(account_key.key, f"{encoded_protected}.{encoded_payload}".encode())

    return {"protected": encoded_protected, "payload": encoded_payload, "signature": _b64(signature)}


def _json(obj: Any) -> bytes:
    return json.dumps(obj, separators=(",", ":")).encode()


def _b64(data: bytes) -> str:
    # JOSE base64url, unpadded
    return josepy.b64.b64encode(data).decode()
