# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Group membership manager.

A Group is a versioned record naming the current Membership Set of one
conversation. Membership only ever grows: each change stores a new
Membership Set and a new Group version chained to the one it extends.

Every Group version and Membership Set this instance creates is recorded in
an allow-set; the outbound sync filter uses it to make sure a Group merely
received from a peer is never re-exported.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from ..core.config import CoreSettings, get_config
from ..core.exceptions import NotFoundError, ObjectNotFoundError
from ..core.logging import short_id
from ..store.backend import ObjectStore
from ..store.models import (
    CertificateBundle,
    ChannelInfo,
    Group,
    GroupRef,
    MembershipSet,
    ObjectType,
    Topic,
    VersionedRecord,
)
from ..trust.certificates import CertificateKind
from .cache import TopicGroupCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MembershipChange:
    """Result of extending a group.

    ``group`` is the resulting version (the input version when nothing
    changed) and ``added`` holds exactly the participants that were new.
    """

    group: GroupRef
    added: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.added)


class GroupMembershipManager:
    """Creates and evolves Groups and answers membership queries."""

    def __init__(
        self,
        store: ObjectStore,
        cache: TopicGroupCache | None = None,
        config: CoreSettings | None = None,
    ):
        self.store = store
        self.cache = cache if cache is not None else TopicGroupCache()
        self.config = config or get_config()
        self._created: set[str] = set()

    # =========================================================================
    # NAMING
    # =========================================================================

    def group_name_for(self, topic_id: str) -> str:
        return f"{self.config.group_name_prefix}{topic_id}"

    def topic_id_from_group_name(self, name: str) -> str | None:
        """Topic id encoded in a Group name, or None if it is not a conversation group."""
        prefix = self.config.group_name_prefix
        if not name.startswith(prefix) or len(name) == len(prefix):
            return None
        return name[len(prefix) :]

    def created_by_self(self, ref: str) -> bool:
        """Whether ``ref`` is a Group version or Membership Set this instance created."""
        return ref in self._created

    # =========================================================================
    # CREATE / EXTEND
    # =========================================================================

    async def create_group(self, name: str, participants: Iterable[str]) -> GroupRef:
        """Store a new Membership Set and a Group version referencing it.

        The local owner is added when missing. The Membership Set is affirmed
        by the owner and both new hashes enter the allow-set.

        Not idempotent: calling twice with the same name appends a second
        version to the same Group chain.
        """
        owner = await self.store.self_identity()
        members = list(dict.fromkeys(participants))
        if owner not in members:
            members.insert(0, owner)

        membership_hash = await self.store.put(MembershipSet(tuple(members)))
        ref = await self.store.put_version(Group(name=name, membership=membership_hash))
        self._created.update((ref.version_hash, membership_hash))
        certificate = await self._affirm(membership_hash, owner)

        logger.info(
            f"Created group {name} version {short_id(ref.version_hash)} with {len(set(members))} members"
        )
        return GroupRef(
            id_hash=ref.id_hash,
            version_hash=ref.version_hash,
            membership_hash=membership_hash,
            certificate=certificate,
        )

    async def extend_group(self, version_hash: str, new_participants: Iterable[str]) -> MembershipChange:
        """Add participants to the Group version ``version_hash``.

        Returns the input version unchanged when every participant is
        already a member; nothing is stored in that case.
        """
        record, current = await self._resolve(version_hash)
        group = record.obj
        added = tuple(p for p in dict.fromkeys(new_participants) if p not in current)
        if not added:
            logger.debug(f"No new members for group version {short_id(version_hash)}")
            return MembershipChange(
                group=GroupRef(record.id_hash, version_hash, group.membership),
            )

        membership_hash = await self.store.put(MembershipSet(current.members + added))
        ref = await self.store.put_version(
            Group(name=group.name, membership=membership_hash),
            prev_version=version_hash,
        )
        self._created.update((ref.version_hash, membership_hash))
        certificate = await self._affirm(membership_hash, await self.store.self_identity())

        logger.info(
            f"Extended group {group.name} {short_id(version_hash)} -> {short_id(ref.version_hash)} "
            f"(+{len(added)} members)"
        )
        return MembershipChange(
            group=GroupRef(ref.id_hash, ref.version_hash, membership_hash, certificate),
            added=added,
        )

    async def add_members(self, version_hash: str, new_participants: Iterable[str]) -> str:
        """Add participants; returns the new Group version hash (or the input when unchanged)."""
        change = await self.extend_group(version_hash, new_participants)
        return change.group.version_hash

    async def _affirm(self, membership_hash: str, owner: str) -> CertificateBundle:
        return await self.store.certify(CertificateKind.AFFIRMATION.value, membership_hash, owner)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def _resolve(self, version_hash: str) -> tuple[VersionedRecord, MembershipSet]:
        """Load a Group version and its Membership Set.

        Raises:
            NotFoundError: If either is missing, or the set is empty
        """
        try:
            record = await self.store.get_version(version_hash)
        except ObjectNotFoundError:
            raise NotFoundError("Group", version_hash)
        if not isinstance(record.obj, Group):
            raise NotFoundError("Group", version_hash, f"object is a {record.obj.TYPE.value}")

        try:
            membership = await self.store.get(record.obj.membership)
        except ObjectNotFoundError:
            raise NotFoundError("MembershipSet", record.obj.membership)
        if not isinstance(membership, MembershipSet):
            raise NotFoundError("MembershipSet", record.obj.membership, f"object is a {membership.TYPE.value}")
        if not membership.members:
            raise NotFoundError("MembershipSet", record.obj.membership, "membership set is empty")
        return record, membership

    async def resolve_group(self, version_hash: str) -> GroupRef:
        """GroupRef for a Group version after checking its Membership Set resolves."""
        record, _ = await self._resolve(version_hash)
        return GroupRef(record.id_hash, version_hash, record.obj.membership)

    async def get_members(self, version_hash: str) -> list[str]:
        """Participants of a Group version, in canonical order."""
        _, membership = await self._resolve(version_hash)
        return list(membership.members)

    async def get_topic_members(self, topic_id: str) -> list[str]:
        """Participants of the Group associated with ``topic_id``.

        A failed resolution evicts the cached entry so the next call
        rebuilds from the store.
        """
        ref = await self.find_group_for_topic(topic_id)
        if ref is None:
            raise NotFoundError("Group", topic_id, "no group for topic")
        try:
            return await self.get_members(ref.version_hash)
        except NotFoundError:
            await self.cache.evict(topic_id)
            logger.warning(f"Evicted broken group cache entry for topic {short_id(topic_id)}")
            raise

    async def find_group_for_topic(self, topic_id: str) -> GroupRef | None:
        """Latest Group for a topic: cache first, then the store."""
        cached = await self.cache.get(topic_id)
        if cached is not None:
            return cached

        ref = await self._lookup_group(topic_id)
        if ref is not None:
            await self.cache.set(topic_id, ref)
        return ref

    async def _lookup_group(self, topic_id: str) -> GroupRef | None:
        group_name = self.group_name_for(topic_id)
        candidates: list[str] = []

        topic = await self._topic(topic_id)
        if topic is not None and topic.group:
            candidates.append(topic.group)

        # Reverse lookup: group grants on the topic's channels
        for channel_hash in await self._channel_hashes(topic_id, topic):
            for grant in await self.store.grants_for(channel_hash):
                candidates.extend(g for g in grant.groups if g not in candidates)

        candidates.append(await self.store.id_hash_of(Group(name=group_name, membership="")))

        for group_id_hash in dict.fromkeys(candidates):
            try:
                record = await self.store.get_latest(group_id_hash)
            except ObjectNotFoundError:
                continue
            if isinstance(record.obj, Group) and record.obj.name == group_name:
                try:
                    return await self.resolve_group(record.version_hash)
                except NotFoundError as e:
                    logger.debug(f"Skipping unresolvable group for {short_id(topic_id)}: {e}")
        return None

    async def _topic(self, topic_id: str) -> Topic | None:
        try:
            record = await self.store.get_latest(await self.store.id_hash_of(Topic(id=topic_id)))
        except ObjectNotFoundError:
            return None
        return record.obj if isinstance(record.obj, Topic) else None

    async def _channel_hashes(self, topic_id: str, topic: Topic | None) -> list[str]:
        if topic is not None and topic.channels:
            return list(topic.channels)
        records = await self.store.all_of_type(ObjectType.CHANNEL)
        return [r.id_hash for r in records if isinstance(r.obj, ChannelInfo) and r.obj.id == topic_id]

    # =========================================================================
    # CACHE
    # =========================================================================

    async def remember(self, topic_id: str, ref: GroupRef) -> None:
        await self.cache.set(topic_id, ref)

    async def forget(self, topic_id: str) -> None:
        await self.cache.evict(topic_id)
