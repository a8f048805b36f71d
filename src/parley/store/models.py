# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Data models for objects kept in the replicated object store.

Immutable objects (Membership Sets, certificates, grants) are addressed by
the hash of their content. Versioned objects (Groups, Topics, Channels,
Persons) are addressed by the hash of their identity fields; each stored
version additionally gets a version hash that covers the link to the
previous version.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar


class ObjectType(str, Enum):
    """Type tag carried by every stored object."""

    PERSON = "Person"
    MEMBERSHIP_SET = "MembershipSet"
    GROUP = "Group"
    TOPIC = "Topic"
    CHANNEL = "ChannelInfo"
    ACCESS = "Access"
    ID_ACCESS = "IdAccess"
    CERTIFICATE = "Certificate"
    SIGNATURE = "Signature"
    LICENSE = "License"


VERSIONED_TYPES = frozenset({ObjectType.PERSON, ObjectType.GROUP, ObjectType.TOPIC, ObjectType.CHANNEL})
GRANT_TYPES = frozenset({ObjectType.ACCESS, ObjectType.ID_ACCESS})


def canonical_json(data: dict[str, Any]) -> bytes:
    """Deterministic JSON encoding used for hashing."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def content_hash(data: dict[str, Any]) -> str:
    """SHA-256 hex digest of the canonical encoding of ``data``."""
    return hashlib.sha256(canonical_json(data)).hexdigest()


def type_name(object_type: ObjectType | str) -> str:
    """Normalise an ObjectType or raw type string to its string value."""
    if isinstance(object_type, ObjectType):
        return object_type.value
    return str(object_type)


# =============================================================================
# STORED OBJECTS
# =============================================================================


@dataclass(frozen=True)
class Person:
    """A principal. Its id hash is the participant identifier used everywhere else."""

    TYPE: ClassVar[ObjectType] = ObjectType.PERSON

    email: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.TYPE.value, "email": self.email}

    def id_fields(self) -> dict[str, Any]:
        return {"type": self.TYPE.value, "email": self.email}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Person:
        return cls(email=data["email"])


@dataclass(frozen=True)
class MembershipSet:
    """Immutable set of participant identifiers.

    Members are kept in canonical (sorted, de-duplicated) order so that the
    same set of people always produces the same content hash.
    """

    TYPE: ClassVar[ObjectType] = ObjectType.MEMBERSHIP_SET

    members: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "members", tuple(sorted(set(self.members))))

    def __contains__(self, person: object) -> bool:
        return person in self.members

    def __len__(self) -> int:
        return len(self.members)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.TYPE.value, "members": list(self.members)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MembershipSet:
        return cls(members=tuple(data.get("members", ())))


@dataclass(frozen=True)
class Group:
    """Versioned pairing of a display name with the current Membership Set."""

    TYPE: ClassVar[ObjectType] = ObjectType.GROUP

    name: str
    membership: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.TYPE.value, "name": self.name, "membership": self.membership}

    def id_fields(self) -> dict[str, Any]:
        return {"type": self.TYPE.value, "name": self.name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Group:
        return cls(name=data["name"], membership=data["membership"])


@dataclass(frozen=True)
class ChannelInfo:
    """A single-writer message log under a topic id.

    ``owner`` is None for the shared channel of a two-party topic.
    """

    TYPE: ClassVar[ObjectType] = ObjectType.CHANNEL

    id: str
    owner: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.TYPE.value, "id": self.id, "owner": self.owner}

    def id_fields(self) -> dict[str, Any]:
        return {"type": self.TYPE.value, "id": self.id, "owner": self.owner}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChannelInfo:
        return cls(id=data["id"], owner=data.get("owner"))


@dataclass(frozen=True)
class Topic:
    """Stable identity of a conversation."""

    TYPE: ClassVar[ObjectType] = ObjectType.TOPIC

    id: str
    name: str = ""
    channels: tuple[str, ...] = ()
    group: str | None = None
    certificate: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.TYPE.value,
            "id": self.id,
            "name": self.name,
            "channels": list(self.channels),
            "group": self.group,
            "certificate": self.certificate,
        }

    def id_fields(self) -> dict[str, Any]:
        return {"type": self.TYPE.value, "id": self.id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Topic:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            channels=tuple(data.get("channels", ())),
            group=data.get("group"),
            certificate=data.get("certificate"),
        )


@dataclass(frozen=True)
class AccessGrant:
    """Additive permission record letting persons and groups replicate ``target``.

    ``identity`` grants (IdAccess) cover every version of a versioned object;
    plain grants (Access) cover one immutable object.
    """

    target: str
    persons: tuple[str, ...] = ()
    groups: tuple[str, ...] = ()
    identity: bool = False
    mode: str = "add"

    @property
    def TYPE(self) -> ObjectType:  # noqa: N802
        return ObjectType.ID_ACCESS if self.identity else ObjectType.ACCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.TYPE.value,
            "target": self.target,
            "persons": sorted(self.persons),
            "groups": sorted(self.groups),
            "mode": self.mode,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccessGrant:
        return cls(
            target=data["target"],
            persons=tuple(data.get("persons", ())),
            groups=tuple(data.get("groups", ())),
            identity=data.get("type") == ObjectType.ID_ACCESS.value,
            mode=data.get("mode", "add"),
        )


@dataclass(frozen=True)
class License:
    """Human-readable statement of what a certificate kind asserts."""

    TYPE: ClassVar[ObjectType] = ObjectType.LICENSE

    name: str
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.TYPE.value, "name": self.name, "description": self.description}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> License:
        return cls(name=data["name"], description=data["description"])


@dataclass(frozen=True)
class Certificate:
    """Assertion that ``signer`` endorses ``target`` under ``license``."""

    TYPE: ClassVar[ObjectType] = ObjectType.CERTIFICATE

    kind: str
    target: str
    license: str
    signer: str
    issued_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.TYPE.value,
            "kind": self.kind,
            "target": self.target,
            "license": self.license,
            "signer": self.signer,
            "issued_at": self.issued_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Certificate:
        return cls(
            kind=data["kind"],
            target=data["target"],
            license=data["license"],
            signer=data["signer"],
            issued_at=data.get("issued_at", ""),
        )


@dataclass(frozen=True)
class Signature:
    """Ed25519 signature by ``issuer`` over the hash ``data``."""

    TYPE: ClassVar[ObjectType] = ObjectType.SIGNATURE

    issuer: str
    data: str
    signature: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.TYPE.value, "issuer": self.issuer, "data": self.data, "signature": self.signature}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Signature:
        return cls(issuer=data["issuer"], data=data["data"], signature=data["signature"])


_FROM_DICT = {
    ObjectType.PERSON.value: Person.from_dict,
    ObjectType.MEMBERSHIP_SET.value: MembershipSet.from_dict,
    ObjectType.GROUP.value: Group.from_dict,
    ObjectType.TOPIC.value: Topic.from_dict,
    ObjectType.CHANNEL.value: ChannelInfo.from_dict,
    ObjectType.ACCESS.value: AccessGrant.from_dict,
    ObjectType.ID_ACCESS.value: AccessGrant.from_dict,
    ObjectType.CERTIFICATE.value: Certificate.from_dict,
    ObjectType.SIGNATURE.value: Signature.from_dict,
    ObjectType.LICENSE.value: License.from_dict,
}

StoredObject = Person | MembershipSet | Group | ChannelInfo | Topic | AccessGrant | License | Certificate | Signature
VersionedObject = Person | Group | ChannelInfo | Topic


def object_from_dict(data: dict[str, Any]) -> StoredObject:
    """Rebuild a stored object from its dictionary form."""
    try:
        factory = _FROM_DICT[data["type"]]
    except KeyError:
        raise ValueError(f"Unknown object type: {data.get('type')!r}")
    return factory(data)


def is_versioned(obj: StoredObject) -> bool:
    return obj.TYPE in VERSIONED_TYPES


# =============================================================================
# REFERENCES & RECORDS
# =============================================================================


@dataclass(frozen=True)
class VersionRef:
    """Where a versioned object landed: its identity and the version created."""

    id_hash: str
    version_hash: str


@dataclass(frozen=True)
class VersionedRecord:
    """One version of a versioned object, linked to its predecessor."""

    id_hash: str
    version_hash: str
    obj: VersionedObject
    prev_version: str | None = None

    @property
    def ref(self) -> VersionRef:
        return VersionRef(self.id_hash, self.version_hash)


@dataclass(frozen=True)
class CertificateBundle:
    """A certificate and the objects it depends on."""

    certificate: str
    signature: str
    license: str

    @property
    def hashes(self) -> tuple[str, str, str]:
        return (self.certificate, self.signature, self.license)


@dataclass(frozen=True)
class Attestation:
    """Index entry: certificate ``certificate_hash`` by ``signer`` over some target."""

    certificate_hash: str
    signer: str
    kind: str


@dataclass(frozen=True)
class GroupRef:
    """A resolved Group version together with its Membership Set hash."""

    id_hash: str
    version_hash: str
    membership_hash: str
    certificate: CertificateBundle | None = None


@dataclass(frozen=True)
class StoredRecord:
    """Transferable form of a stored object, as moved by replication.

    ``id_hash`` is set (and ``prev_version`` may be) for versioned objects;
    ``hash`` is then the version hash.
    """

    hash: str
    data: dict[str, Any]
    id_hash: str | None = None
    prev_version: str | None = None

    @property
    def versioned(self) -> bool:
        return self.id_hash is not None

    @property
    def object_type(self) -> str:
        return self.data["type"]

    def to_object(self) -> StoredObject:
        return object_from_dict(self.data)
