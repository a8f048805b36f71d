# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""In-memory object store.

Reference implementation of ``ObjectStore`` used by the test-suite and by
embedders that want a single-process store. Replication between two
instances is simulated with ``export_record`` / ``import_record`` (see
``replicate``), which consult the sync filters installed by the conversation
layer and fire the arrival listeners exactly like a networked store would.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from ..core.exceptions import ObjectNotFoundError, ParleyException, StoreError
from ..core.logging import instance_context, short_id
from ..trust.certificates import (
    CertificateEvidence,
    KeyPair,
    generate_keypair,
    license_for,
    signing_payload,
    verify_certificate,
)
from .backend import InboundFilter, ObjectListener, ObjectStore, OutboundFilter, VersionedListener
from .models import (
    AccessGrant,
    Attestation,
    Certificate,
    CertificateBundle,
    Group,
    License,
    MembershipSet,
    ObjectType,
    Person,
    Signature,
    StoredObject,
    StoredRecord,
    VersionedObject,
    VersionedRecord,
    VersionRef,
    content_hash,
    is_versioned,
)

logger = logging.getLogger(__name__)


def version_hash_for(obj: VersionedObject, prev_version: str | None) -> str:
    """Hash of one version: covers the content and the link to its predecessor."""
    return content_hash({"version": obj.to_dict(), "prev": prev_version})


class InMemoryObjectStore(ObjectStore):
    """Dictionary-backed object store for one local instance."""

    def __init__(self, name: str = "local"):
        self.name = name

        self._objects: dict[str, StoredObject] = {}
        self._versions: dict[str, VersionedRecord] = {}
        self._heads: dict[str, str] = {}

        self._grants: dict[str, list[AccessGrant]] = defaultdict(list)
        self._attestations: dict[str, list[Attestation]] = defaultdict(list)
        self._signatures: dict[str, list[str]] = defaultdict(list)

        self._keys: dict[str, KeyPair] = {}
        self._public_keys: dict[str, bytes] = {}
        self._owner: str | None = None
        self._contacts: list[str] = []
        self._peers: list[str] = []

        self._versioned_listeners: list[VersionedListener] = []
        self._object_listeners: list[ObjectListener] = []
        self._object_filter: OutboundFilter | None = None
        self._import_filter: InboundFilter | None = None

    def __repr__(self) -> str:
        return f"InMemoryObjectStore({self.name!r}, objects={len(self._objects)}, versions={len(self._versions)})"

    # =========================================================================
    # IMMUTABLE OBJECTS
    # =========================================================================

    async def put(self, obj: StoredObject) -> str:
        if is_versioned(obj):
            raise StoreError(f"{obj.TYPE.value} is versioned; use put_version")
        ref = content_hash(obj.to_dict())
        if ref not in self._objects:
            self._objects[ref] = obj
            self._index(ref, obj)
        return ref

    async def get(self, ref: str) -> StoredObject:
        if ref in self._objects:
            return self._objects[ref]
        if ref in self._versions:
            return self._versions[ref].obj
        raise ObjectNotFoundError(ref)

    def has(self, ref: str) -> bool:
        """Whether an object, version or identity is stored under ``ref``."""
        return ref in self._objects or ref in self._versions or ref in self._heads

    def _index(self, ref: str, obj: StoredObject) -> None:
        if isinstance(obj, Certificate):
            entry = Attestation(certificate_hash=ref, signer=obj.signer, kind=obj.kind)
            if entry not in self._attestations[obj.target]:
                self._attestations[obj.target].append(entry)
        elif isinstance(obj, Signature):
            if ref not in self._signatures[obj.data]:
                self._signatures[obj.data].append(ref)
        elif isinstance(obj, AccessGrant):
            if obj not in self._grants[obj.target]:
                self._grants[obj.target].append(obj)

    # =========================================================================
    # VERSIONED OBJECTS
    # =========================================================================

    def _id_hash(self, obj: VersionedObject) -> str:
        return content_hash(obj.id_fields())

    async def id_hash_of(self, obj: VersionedObject) -> str:
        return self._id_hash(obj)

    async def put_version(self, obj: VersionedObject, prev_version: str | None = None) -> VersionRef:
        if not is_versioned(obj):
            raise StoreError(f"{obj.TYPE.value} is not versioned; use put")
        id_hash = self._id_hash(obj)
        if prev_version is None:
            prev_version = self._heads.get(id_hash)
        elif prev_version not in self._versions:
            raise ObjectNotFoundError(prev_version, kind="previous version")

        version_hash = version_hash_for(obj, prev_version)
        if version_hash not in self._versions:
            self._versions[version_hash] = VersionedRecord(
                id_hash=id_hash,
                version_hash=version_hash,
                obj=obj,
                prev_version=prev_version,
            )
        # Local writes always become the head (last writer wins).
        self._heads[id_hash] = version_hash
        return VersionRef(id_hash, version_hash)

    async def get_latest(self, id_hash: str) -> VersionedRecord:
        head = self._heads.get(id_hash)
        if head is None:
            raise ObjectNotFoundError(id_hash, kind="versioned object")
        return self._versions[head]

    async def get_version(self, version_hash: str) -> VersionedRecord:
        try:
            return self._versions[version_hash]
        except KeyError:
            raise ObjectNotFoundError(version_hash, kind="version")

    async def all_of_type(self, object_type: ObjectType) -> list[VersionedRecord]:
        records = (self._versions[head] for head in self._heads.values())
        return [record for record in records if record.obj.TYPE == object_type]

    def _is_ancestor(self, candidate: str, of: str) -> bool:
        current: str | None = of
        while current is not None:
            if current == candidate:
                return True
            record = self._versions.get(current)
            current = record.prev_version if record else None
        return False

    # =========================================================================
    # ACCESS
    # =========================================================================

    async def create_access_grant(self, grants: list[AccessGrant]) -> list[str]:
        refs = []
        for grant in grants:
            if not self.has(grant.target):
                raise ObjectNotFoundError(grant.target, kind="grant target")
            refs.append(await self.put(grant))
        return refs

    async def grants_for(self, ref: str) -> list[AccessGrant]:
        return list(self._grants.get(ref, ()))

    async def can_read(self, principal: str, ref: str) -> bool:
        """Whether some grant lets ``principal`` replicate ``ref``.

        Group grants are resolved through the group's latest Membership Set.
        For a version hash, identity grants on its id hash count too.
        """
        grants = list(self._grants.get(ref, ()))
        record = self._versions.get(ref)
        if record is not None:
            grants.extend(g for g in self._grants.get(record.id_hash, ()) if g.identity)

        for grant in grants:
            if principal in grant.persons:
                return True
            for group_ref in grant.groups:
                if self._group_contains(group_ref, principal):
                    return True
        return False

    def _group_contains(self, group_ref: str, principal: str) -> bool:
        version = self._heads.get(group_ref, group_ref)
        record = self._versions.get(version)
        if record is None or not isinstance(record.obj, Group):
            return False
        membership = self._objects.get(record.obj.membership)
        return isinstance(membership, MembershipSet) and principal in membership

    # =========================================================================
    # ATTESTATION
    # =========================================================================

    async def certify(self, kind: str, target: str, signer: str) -> CertificateBundle:
        keypair = self._keys.get(signer)
        if keypair is None:
            raise StoreError(f"Cannot sign as {short_id(signer)}: not a local identity")
        try:
            license_obj = license_for(kind)
        except ValueError as e:
            raise StoreError(str(e)) from e

        license_hash = await self.put(license_obj)
        certificate = Certificate(
            kind=kind,
            target=target,
            license=license_hash,
            signer=signer,
            issued_at=datetime.now(UTC).isoformat(),
        )
        certificate_hash = await self.put(certificate)
        signature = Signature(
            issuer=signer,
            data=certificate_hash,
            signature=keypair.sign(signing_payload(certificate_hash)).hex(),
        )
        signature_hash = await self.put(signature)

        logger.debug(f"Certified {short_id(target)} as {kind} by {short_id(signer)}")
        return CertificateBundle(certificate=certificate_hash, signature=signature_hash, license=license_hash)

    async def verify_attestation(self, certificate_hash: str) -> bool:
        try:
            certificate = self._objects[certificate_hash]
            if not isinstance(certificate, Certificate):
                return False
            license_obj = self._objects[certificate.license]
            if not isinstance(license_obj, License):
                return False
            signatures = tuple(
                sig for sig in (self._objects[ref] for ref in self._signatures.get(certificate_hash, ()))
                if isinstance(sig, Signature)
            )
            evidence = CertificateEvidence(
                certificate_hash=certificate_hash,
                certificate=certificate,
                license_hash=certificate.license,
                license=license_obj,
                signatures=signatures,
                signer_public_key=self.public_key_for(certificate.signer),
            )
        except KeyError as e:
            logger.debug(f"Cannot verify {short_id(certificate_hash)}: missing {short_id(e.args[0])}")
            return False
        return verify_certificate(evidence)

    async def attestations(self, target: str) -> list[Attestation]:
        return list(self._attestations.get(target, ()))

    async def certificate_bundle(self, certificate_hash: str) -> CertificateBundle:
        certificate = self._objects.get(certificate_hash)
        if not isinstance(certificate, Certificate):
            raise ObjectNotFoundError(certificate_hash, kind="certificate")
        for ref in self._signatures.get(certificate_hash, ()):
            signature = self._objects[ref]
            if isinstance(signature, Signature) and signature.issuer == certificate.signer:
                return CertificateBundle(certificate=certificate_hash, signature=ref, license=certificate.license)
        raise ObjectNotFoundError(certificate_hash, kind="signature for certificate")

    # =========================================================================
    # IDENTITIES
    # =========================================================================

    async def create_local_identity(self, email: str, main: bool = False) -> str:
        """Create a Person with a signing key held by this instance.

        The first identity created (or any created with ``main=True``)
        becomes the instance owner.
        """
        ref = await self.put_version(Person(email=email))
        keypair = generate_keypair()
        self._keys[ref.id_hash] = keypair
        self._public_keys[ref.id_hash] = keypair.public_key_bytes
        if self._owner is None or main:
            self._owner = ref.id_hash
        logger.info(f"[{self.name}] Created local identity {short_id(ref.id_hash)} for {email}")
        return ref.id_hash

    def add_contact(self, person_id: str, public_key: bytes) -> None:
        """Record a paired remote identity and its verification key."""
        if person_id not in self._contacts and person_id not in self._keys:
            self._contacts.append(person_id)
        self._public_keys[person_id] = public_key

    def public_key_for(self, person_id: str) -> bytes | None:
        return self._public_keys.get(person_id)

    def set_connected_peers(self, peers: Iterable[str]) -> None:
        self._peers = list(dict.fromkeys(peers))

    async def self_identity(self) -> str:
        if self._owner is None:
            raise StoreError(f"Store {self.name!r} has no local identity")
        return self._owner

    async def local_identities(self) -> list[str]:
        owner = await self.self_identity()
        return [owner] + [person for person in self._keys if person != owner]

    async def known_contacts(self) -> list[str]:
        return list(self._contacts)

    async def connected_peers(self) -> list[str]:
        return list(self._peers)

    # =========================================================================
    # REPLICATION
    # =========================================================================

    def on_versioned_object(self, listener: VersionedListener) -> Callable[[], None]:
        self._versioned_listeners.append(listener)
        return lambda: self._remove(self._versioned_listeners, listener)

    def on_object(self, listener: ObjectListener) -> Callable[[], None]:
        self._object_listeners.append(listener)
        return lambda: self._remove(self._object_listeners, listener)

    @staticmethod
    def _remove(listeners: list, listener: object) -> None:
        if listener in listeners:
            listeners.remove(listener)

    def install_sync_filters(
        self,
        object_filter: OutboundFilter | None = None,
        import_filter: InboundFilter | None = None,
    ) -> None:
        self._object_filter = object_filter
        self._import_filter = import_filter

    async def export_record(self, ref: str) -> StoredRecord | None:
        """Transferable form of ``ref``, or None when the outbound filter refuses it."""
        record = self._versions.get(ref)
        if record is not None:
            exported = StoredRecord(
                hash=ref,
                data=record.obj.to_dict(),
                id_hash=record.id_hash,
                prev_version=record.prev_version,
            )
        elif ref in self._objects:
            exported = StoredRecord(hash=ref, data=self._objects[ref].to_dict())
        else:
            raise ObjectNotFoundError(ref)

        if self._object_filter is not None and not await self._object_filter(ref, exported.object_type):
            logger.debug(f"Outbound filter held back {exported.object_type} {short_id(ref)}")
            return None
        return exported

    async def import_record(self, record: StoredRecord) -> bool:
        """Accept an object received from a peer.

        Returns True when the object was new and accepted. Fires the arrival
        listeners for accepted objects and waits for them.

        Raises:
            StoreError: If the record's hashes do not match its content
        """
        try:
            obj = record.to_object()
        except (KeyError, ValueError) as e:
            raise StoreError(f"Malformed record {short_id(record.hash)}: {e}") from e

        if record.versioned:
            if not is_versioned(obj):
                raise StoreError(f"Record {short_id(record.hash)} claims versioning for {obj.TYPE.value}")
            if self._id_hash(obj) != record.id_hash:
                raise StoreError(f"Identity hash mismatch for {short_id(record.hash)}")
            if version_hash_for(obj, record.prev_version) != record.hash:
                raise StoreError(f"Version hash mismatch for {short_id(record.hash)}")
        elif is_versioned(obj) or content_hash(obj.to_dict()) != record.hash:
            raise StoreError(f"Content hash mismatch for {short_id(record.hash)}")

        if self.has(record.hash):
            return False

        if self._import_filter is not None and not await self._import_filter(record.hash, record.object_type, obj):
            logger.info(f"Rejected inbound {record.object_type} {short_id(record.hash)}")
            return False

        if record.versioned:
            versioned = VersionedRecord(
                id_hash=record.id_hash,
                version_hash=record.hash,
                obj=obj,
                prev_version=record.prev_version,
            )
            self._versions[record.hash] = versioned
            head = self._heads.get(record.id_hash)
            if head is None or not self._is_ancestor(record.hash, head):
                self._heads[record.id_hash] = record.hash
            for listener in list(self._versioned_listeners):
                await listener(versioned)
        else:
            self._objects[record.hash] = obj
            self._index(record.hash, obj)
            for listener in list(self._object_listeners):
                await listener(record)
        return True


async def replicate(source: InMemoryObjectStore, target: InMemoryObjectStore, refs: Iterable[str]) -> list[str]:
    """Copy ``refs`` from ``source`` to ``target`` in order.

    Returns the refs the target accepted. Refs held back by either side's
    filter are skipped; the rest continue.
    """
    accepted = []
    for ref in refs:
        with instance_context(source.name):
            record = await source.export_record(ref)
        if record is None:
            continue
        with instance_context(target.name):
            try:
                if await target.import_record(record):
                    accepted.append(ref)
            except ParleyException as e:
                logger.warning(f"Replication of {short_id(ref)} from {source.name!r} failed: {e}")
    return accepted
