# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Object store abstraction.

The conversation layer only talks to the replicated object store through
this interface: content-addressed put/get for immutable objects, put/get for
versioned objects, additive access grants, certificates, and the identities
the local instance knows about. ``memory.InMemoryObjectStore`` is the
reference implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from .models import (
    AccessGrant,
    Attestation,
    CertificateBundle,
    ObjectType,
    StoredObject,
    StoredRecord,
    VersionedObject,
    VersionedRecord,
    VersionRef,
)

VersionedListener = Callable[[VersionedRecord], Awaitable[None]]
ObjectListener = Callable[[StoredRecord], Awaitable[None]]
OutboundFilter = Callable[[str, str], Awaitable[bool]]
InboundFilter = Callable[[str, str, StoredObject | None], Awaitable[bool]]


class ObjectStore(ABC):
    """Abstract base class for object stores.

    Every method may suspend. Lookups of missing objects raise
    ``ObjectNotFoundError``; other failures raise ``StoreError``.
    """

    # -------------------------------------------------------------------------
    # IMMUTABLE OBJECTS
    # -------------------------------------------------------------------------

    @abstractmethod
    async def put(self, obj: StoredObject) -> str:
        """Store an immutable object and return its content hash.

        Storing an object that already exists is a no-op returning the same hash.
        """

    @abstractmethod
    async def get(self, ref: str) -> StoredObject:
        """Fetch an immutable object by content hash.

        Raises:
            ObjectNotFoundError: If nothing is stored under ``ref``
        """

    # -------------------------------------------------------------------------
    # VERSIONED OBJECTS
    # -------------------------------------------------------------------------

    @abstractmethod
    async def put_version(self, obj: VersionedObject, prev_version: str | None = None) -> VersionRef:
        """Store a new version of a versioned object.

        Args:
            obj: The new version
            prev_version: Version this one follows; defaults to the current head

        Returns:
            VersionRef with the identity hash and the new version hash
        """

    @abstractmethod
    async def get_latest(self, id_hash: str) -> VersionedRecord:
        """Fetch the latest version of the object with identity ``id_hash``."""

    @abstractmethod
    async def get_version(self, version_hash: str) -> VersionedRecord:
        """Fetch one specific version."""

    @abstractmethod
    async def id_hash_of(self, obj: VersionedObject) -> str:
        """Identity hash of a versioned object (computed, not looked up)."""

    @abstractmethod
    async def all_of_type(self, object_type: ObjectType) -> list[VersionedRecord]:
        """Latest version of every stored versioned object of ``object_type``."""

    # -------------------------------------------------------------------------
    # ACCESS
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_access_grant(self, grants: list[AccessGrant]) -> list[str]:
        """Persist additive access grants; returns the hashes of the grant records."""

    @abstractmethod
    async def grants_for(self, ref: str) -> list[AccessGrant]:
        """All grants whose target is ``ref``."""

    # -------------------------------------------------------------------------
    # ATTESTATION
    # -------------------------------------------------------------------------

    @abstractmethod
    async def certify(self, kind: str, target: str, signer: str) -> CertificateBundle:
        """Issue a certificate of ``kind`` over ``target`` signed by local identity ``signer``."""

    @abstractmethod
    async def verify_attestation(self, certificate_hash: str) -> bool:
        """Cryptographically verify a stored certificate. Never raises."""

    @abstractmethod
    async def attestations(self, target: str) -> list[Attestation]:
        """Certificates known locally whose target is ``target``."""

    @abstractmethod
    async def certificate_bundle(self, certificate_hash: str) -> CertificateBundle:
        """The certificate plus the signature and license objects it depends on."""

    async def attested_by(self, target: str) -> list[str]:
        """Signers of certificates over ``target``, without duplicates."""
        signers: list[str] = []
        for attestation in await self.attestations(target):
            if attestation.signer not in signers:
                signers.append(attestation.signer)
        return signers

    # -------------------------------------------------------------------------
    # IDENTITIES
    # -------------------------------------------------------------------------

    @abstractmethod
    async def self_identity(self) -> str:
        """The main identity of this instance (the local owner)."""

    @abstractmethod
    async def local_identities(self) -> list[str]:
        """Every identity whose private key this instance holds, owner first."""

    @abstractmethod
    async def known_contacts(self) -> list[str]:
        """Identities of people this instance has paired with."""

    @abstractmethod
    async def connected_peers(self) -> list[str]:
        """Identities of currently connected replication peers."""

    # -------------------------------------------------------------------------
    # ARRIVAL EVENTS
    # -------------------------------------------------------------------------

    @abstractmethod
    def on_versioned_object(self, listener: VersionedListener) -> Callable[[], None]:
        """Call ``listener`` for each versioned object received from a peer.

        Returns a function that removes the listener.
        """

    @abstractmethod
    def on_object(self, listener: ObjectListener) -> Callable[[], None]:
        """Call ``listener`` for each immutable object received from a peer.

        Returns a function that removes the listener.
        """

    @abstractmethod
    def install_sync_filters(
        self,
        object_filter: OutboundFilter | None = None,
        import_filter: InboundFilter | None = None,
    ) -> None:
        """Hand the replication layer the predicates it consults per object.

        ``object_filter(ref, type)`` decides whether an object may be sent;
        ``import_filter(ref, type, obj)`` whether a received one is accepted.
        """
