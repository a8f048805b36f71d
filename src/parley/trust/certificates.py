# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Attestation certificates: kinds, licenses, signing keys and verifiers.

A certificate says "``signer`` endorses ``target``". It is stored together
with a Signature over the certificate hash and a License describing what the
kind of certificate asserts. Verification is dispatched on the certificate
kind: each kind has exactly one verifier registered in ``VERIFIERS``, and a
kind without a verifier never verifies.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from ..core.exceptions import AttestationInvalidError
from ..store.models import Certificate, License, Signature

logger = logging.getLogger(__name__)


# =============================================================================
# KINDS & LICENSES
# =============================================================================


class CertificateKind(str, Enum):
    """Kinds of certificate this package issues and verifies."""

    AFFIRMATION = "AffirmationCertificate"


LICENSES: dict[CertificateKind, License] = {
    CertificateKind.AFFIRMATION: License(
        name="Affirmation",
        description="[signature.issuer] affirms that content of [data] is correct.",
    ),
}


def license_for(kind: CertificateKind | str) -> License:
    """The License object stored alongside certificates of ``kind``."""
    try:
        return LICENSES[CertificateKind(kind)]
    except (KeyError, ValueError):
        raise ValueError(f"No license defined for certificate kind {kind!r}")


# =============================================================================
# KEYS
# =============================================================================


@dataclass
class KeyPair:
    """Ed25519 key pair held for a local identity."""

    private_key_bytes: bytes
    public_key_bytes: bytes

    def sign(self, data: bytes) -> bytes:
        """Sign ``data`` with the private key."""
        private_key = Ed25519PrivateKey.from_private_bytes(self.private_key_bytes)
        return private_key.sign(data)

    @property
    def private_key_hex(self) -> str:
        """Private key as hex string (for secure storage)."""
        return self.private_key_bytes.hex()

    @classmethod
    def from_private_key_hex(cls, hex_string: str) -> KeyPair:
        """Create KeyPair from stored private key hex."""
        private_bytes = bytes.fromhex(hex_string)
        private_key = Ed25519PrivateKey.from_private_bytes(private_bytes)
        public_bytes = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return cls(private_key_bytes=private_bytes, public_key_bytes=public_bytes)


def generate_keypair() -> KeyPair:
    """Generate a new Ed25519 key pair."""
    private_key = Ed25519PrivateKey.generate()
    private_bytes = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return KeyPair(private_key_bytes=private_bytes, public_key_bytes=public_bytes)


def verify_signature(public_key_bytes: bytes, signature: bytes, data: bytes) -> bool:
    """Check an Ed25519 signature. Malformed keys or signatures count as invalid."""
    try:
        Ed25519PublicKey.from_public_bytes(public_key_bytes).verify(signature, data)
        return True
    except (InvalidSignature, ValueError):
        return False


def signing_payload(certificate_hash: str) -> bytes:
    """Bytes a signer signs for the certificate stored under ``certificate_hash``."""
    return certificate_hash.encode("ascii")


# =============================================================================
# VERIFIERS
# =============================================================================


@dataclass(frozen=True)
class CertificateEvidence:
    """Everything a verifier needs, already resolved from the store."""

    certificate_hash: str
    certificate: Certificate
    license_hash: str
    license: License
    signatures: tuple[Signature, ...]
    signer_public_key: bytes | None


class CertificateVerifier(ABC):
    """Verifies certificates of exactly one kind."""

    kind: CertificateKind

    @abstractmethod
    def verify(self, evidence: CertificateEvidence) -> None:
        """Raise AttestationInvalidError unless the certificate holds."""


class AffirmationVerifier(CertificateVerifier):
    """Checks an AffirmationCertificate.

    Holds when the certificate carries the affirmation license, a signature
    by the named signer covers the certificate hash, and that signature
    verifies against the signer's public key.
    """

    kind = CertificateKind.AFFIRMATION

    def verify(self, evidence: CertificateEvidence) -> None:
        cert = evidence.certificate
        cert_hash = evidence.certificate_hash

        if cert.kind != self.kind.value:
            raise AttestationInvalidError(cert_hash, f"kind {cert.kind} is not {self.kind.value}")

        if cert.license != evidence.license_hash or evidence.license != license_for(self.kind):
            raise AttestationInvalidError(cert_hash, "license does not match certificate kind")

        if evidence.signer_public_key is None:
            raise AttestationInvalidError(cert_hash, f"no public key known for signer {cert.signer[:8]}")

        payload = signing_payload(cert_hash)
        for sig in evidence.signatures:
            if sig.issuer != cert.signer or sig.data != cert_hash:
                continue
            try:
                raw = bytes.fromhex(sig.signature)
            except ValueError:
                continue
            if verify_signature(evidence.signer_public_key, raw, payload):
                return

        raise AttestationInvalidError(cert_hash, "no valid signature by the named signer")


VERIFIERS: dict[CertificateKind, CertificateVerifier] = {
    CertificateKind.AFFIRMATION: AffirmationVerifier(),
}


def get_verifier(kind: str) -> CertificateVerifier:
    """Look up the verifier for a certificate kind string."""
    try:
        return VERIFIERS[CertificateKind(kind)]
    except (KeyError, ValueError):
        raise AttestationInvalidError("", f"unsupported certificate kind {kind!r}")


def verify_certificate(evidence: CertificateEvidence) -> bool:
    """Run the kind-specific verifier; True if the certificate holds."""
    try:
        get_verifier(evidence.certificate.kind).verify(evidence)
        return True
    except AttestationInvalidError as e:
        logger.debug(f"Certificate {evidence.certificate_hash[:8]} rejected: {e.reason}")
        return False
