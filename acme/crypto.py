"""
Domain private-key generation, CSR creation and certificate inspection.

Account-key operations (JWK, JWS) live in acme/jws.py.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from cryptography.x509.oid import NameOID

_PEM_END = "-----END CERTIFICATE-----"


@dataclass(frozen=True)
class CertificateInfo:
    """The subset of X.509 fields the lifecycle manager makes decisions on."""

    common_name: str
    issuer_common_name: str
    not_before: datetime
    not_after: datetime


def generate_rsa_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Fresh RSA key for the certificate (not the account)."""
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def private_key_to_pem(key: PrivateKeyTypes) -> str:
    """Unencrypted PEM text, the form CertificateMaterial carries."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def load_private_key(pem: str) -> PrivateKeyTypes:
    """Parse an unencrypted PEM private key. Raises ValueError on bad input."""
    return serialization.load_pem_private_key(pem.encode(), password=None)


def load_csr_key(pem: str) -> rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey:
    """Parse a domain key that can sign a CSR. Raises ValueError for other key types."""
    key = load_private_key(pem)
    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise ValueError(f"domain key must be RSA or EC, got {type(key).__name__}")
    return key


def create_csr(private_key: PrivateKeyTypes, domain: str) -> bytes:
    """
    DER CSR for *domain*, signed by *private_key*.

    The name is carried both as the subject common name and as the single
    SubjectAlternativeName entry, since CAs validate the SAN list.
    """
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)]))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
        .sign(private_key, hashes.SHA256())
    )
    return csr.public_bytes(serialization.Encoding.DER)


def csr_domains(csr_der: bytes) -> list[str]:
    """Return the identifiers requested by a DER CSR: common name first, then SANs."""
    csr = x509.load_der_x509_csr(csr_der)
    names = [a.value for a in csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)]
    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        names.extend(san.value.get_values_for_type(x509.DNSName))
    except x509.ExtensionNotFound:
        pass
    return list(dict.fromkeys(str(n) for n in names))


def split_pem_chain(full_chain: str) -> list[str]:
    """Split a PEM chain into its certificate blocks, leaf first."""
    blocks = []
    current: list[str] = []
    for line in full_chain.splitlines(keepends=True):
        current.append(line)
        if _PEM_END in line:
            blocks.append("".join(current))
            current = []
    return blocks


def read_certificate_info(pem: str) -> CertificateInfo:
    """
    Parse the leaf of a PEM chain.

    Raises ValueError if the text holds no parseable certificate.
    """
    blocks = split_pem_chain(pem)
    if not blocks:
        raise ValueError("no PEM certificate block found")
    cert = x509.load_pem_x509_certificate(blocks[0].encode())
    return CertificateInfo(
        common_name=_common_name(cert.subject),
        issuer_common_name=_common_name(cert.issuer),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
    )


def key_matches_certificate(key_pem: str, cert_pem: str) -> bool:
    """True when the private key is the one the leaf certificate was issued for."""
    blocks = split_pem_chain(cert_pem)
    if not blocks:
        return False
    cert = x509.load_pem_x509_certificate(blocks[0].encode())
    key = load_private_key(key_pem)
    fmt = serialization.PublicFormat.SubjectPublicKeyInfo
    enc = serialization.Encoding.DER
    return key.public_key().public_bytes(enc, fmt) == cert.public_key().public_bytes(enc, fmt)


def _common_name(name: x509.Name) -> str:
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attrs[0].value) if attrs else ""
