# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Topic lifecycle and channel provisioning.

Two kinds of conversation exist:

- Two-party (P2P) topics. The id is both participant ids, sorted and joined
  by the reserved separator, so both sides derive the same id without
  coordinating. They have a single shared channel with no owner and never
  use Groups.
- Group topics. Membership lives in a Group, and every participant writes
  into a channel of their own. This instance only creates channels for the
  identities it holds keys for; remote participants create theirs when the
  Group reaches them (see ``reconciler``).

Changes to one topic are serialised by a per-topic asyncio lock.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import uuid
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

from ..core.config import CoreSettings, get_config
from ..core.exceptions import (
    AlreadyExistsError,
    InvalidParticipantCountError,
    InvalidTopicIdError,
    NotFoundError,
    ObjectNotFoundError,
    ParleyException,
    ValidationException,
)
from ..core.logging import short_id
from ..store.backend import ObjectStore
from ..store.models import GroupRef, Topic, VersionedRecord, VersionRef
from .access import AccessGrantComputer, certificate_chain
from .channels import ChannelRegistry
from .membership import GroupMembershipManager

logger = logging.getLogger(__name__)

_PERSON_ID = re.compile(r"^[0-9a-f]{64}$")


# =============================================================================
# TOPIC RECORDS
# =============================================================================


class TopicRegistry:
    """Reads and writes Topic records."""

    def __init__(self, store: ObjectStore):
        self.store = store

    async def topic_id_hash(self, topic_id: str) -> str:
        return await self.store.id_hash_of(Topic(id=topic_id))

    async def get_topic(self, topic_id: str) -> VersionedRecord | None:
        try:
            return await self.store.get_latest(await self.topic_id_hash(topic_id))
        except ObjectNotFoundError:
            return None

    async def save_topic(self, topic: Topic) -> VersionRef:
        return await self.store.put_version(topic)

    async def create_topic(self, topic: Topic) -> VersionRef:
        """Store the first version of a Topic.

        Raises:
            AlreadyExistsError: If a record for ``topic.id`` exists
        """
        if await self.get_topic(topic.id) is not None:
            raise AlreadyExistsError("Topic", topic.id)
        return await self.save_topic(topic)

    async def ensure_topic(
        self,
        topic_id: str,
        *,
        channel: str | None = None,
        group: str | None = None,
        name: str | None = None,
    ) -> Topic:
        """Make sure a Topic record exists and references ``channel`` and ``group``.

        Creates a minimal record when none exists. An existing record only
        gains references; nothing is removed or replaced.
        """
        record = await self.get_topic(topic_id)
        if record is None:
            topic = Topic(
                id=topic_id,
                name=name or topic_id,
                channels=(channel,) if channel else (),
                group=group,
            )
            await self.save_topic(topic)
            logger.info(f"Created topic record for {short_id(topic_id)}")
            return topic

        topic = record.obj
        channels = topic.channels
        if channel and channel not in channels:
            channels = channels + (channel,)
        updated = Topic(
            id=topic.id,
            name=topic.name,
            channels=channels,
            group=topic.group or group,
            certificate=topic.certificate,
        )
        if updated != topic:
            await self.save_topic(updated)
        return updated


# =============================================================================
# PROVISIONER
# =============================================================================


class TopicProvisioner:
    """Creates conversations and keeps their channels and grants complete."""

    def __init__(
        self,
        store: ObjectStore,
        membership: GroupMembershipManager,
        channels: ChannelRegistry | None = None,
        access: AccessGrantComputer | None = None,
        topics: TopicRegistry | None = None,
        config: CoreSettings | None = None,
    ):
        self.store = store
        self.membership = membership
        self.channels = channels or ChannelRegistry(store)
        self.access = access or AccessGrantComputer(store)
        self.topics = topics or TopicRegistry(store)
        self.config = config or get_config()
        # topic id -> (lock, holders and waiters); dropped when the count reaches zero
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

        sep = re.escape(self.config.p2p_separator)
        self._p2p_pattern = re.compile(rf"^[0-9a-f]{{64}}{sep}[0-9a-f]{{64}}$")

    @asynccontextmanager
    async def _lock(self, topic_id: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(topic_id) or (asyncio.Lock(), 0)
        self._locks[topic_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[topic_id]
            if users == 1:
                del self._locks[topic_id]
            else:
                self._locks[topic_id] = (lock, users - 1)

    # =========================================================================
    # TOPIC IDS
    # =========================================================================

    def p2p_topic_id(self, a: str, b: str) -> str:
        """Deterministic two-party id: both ids sorted and joined by the separator."""
        return self.config.p2p_separator.join(sorted((a, b)))

    def is_p2p_topic(self, topic_id: str) -> bool:
        return bool(self._p2p_pattern.match(topic_id))

    def derive_topic_id(self, participants: Iterable[str]) -> str:
        """New multi-party topic id according to ``topic_id_policy``.

        ``content`` hashes the sorted participant set, so the same people
        always get the same topic. ``unique`` gives every creation a fresh id.
        """
        if self.config.topic_id_policy == "content":
            members = sorted(set(participants))
            return hashlib.sha256("\n".join(members).encode("utf-8")).hexdigest()
        return uuid.uuid4().hex

    # =========================================================================
    # TWO-PARTY TOPICS
    # =========================================================================

    async def create_p2p_topic(self, participants: Iterable[str], name: str | None = None) -> Topic:
        """Create (or return) the two-party topic between exactly two participants.

        Raises:
            InvalidParticipantCountError: Unless exactly two distinct ids are given
            ValidationException: If a participant is not a person id hash
        """
        distinct = list(dict.fromkeys(participants))
        if len(distinct) != 2:
            raise InvalidParticipantCountError(expected=2, got=len(distinct))
        for person in distinct:
            if not _PERSON_ID.match(person):
                raise ValidationException(
                    "P2P participants must be person id hashes", field="participants", value=person
                )

        topic_id = self.p2p_topic_id(*distinct)
        async with self._lock(topic_id):
            channel = await self.channels.create_channel(topic_id, None)
            topic = Topic(id=topic_id, name=name or topic_id, channels=(channel.id_hash,))
            try:
                ref = await self.topics.create_topic(topic)
            except AlreadyExistsError:
                logger.debug(f"P2P topic {short_id(topic_id)} already exists")
                return (await self.topics.get_topic(topic_id)).obj
            await self.access.grant_channel_to_persons(channel.id_hash, distinct)
            await self.access.grant_read_access(principals=distinct, id_refs=[ref.id_hash])

        logger.info(f"Created P2P topic {short_id(distinct[0])}<->{short_id(distinct[1])}")
        return topic

    async def ensure_p2p_channels_for_peer(self, peer: str) -> Topic | None:
        """Make sure the two-party topic with ``peer`` and its shared channel exist.

        Called when a replication connection to ``peer`` is established.
        Repairs a missing shared channel and re-asserts both parties' access.
        Owned channels found on the topic are reported, never removed.
        """
        owner = await self.store.self_identity()
        if peer == owner:
            return None

        topic_id = self.p2p_topic_id(owner, peer)
        if await self.topics.get_topic(topic_id) is None:
            return await self.create_p2p_topic([owner, peer])

        async with self._lock(topic_id):
            channel = await self.channels.create_channel(topic_id, None)
            if channel.created:
                logger.info(f"Repaired missing shared channel for P2P topic with {short_id(peer)}")
            await self.access.grant_channel_to_persons(channel.id_hash, [owner, peer])
            await self.access.grant_read_access(
                principals=[owner, peer],
                id_refs=[await self.topics.topic_id_hash(topic_id)],
            )

            owned = [c for c in await self.channels.channels_for_topic(topic_id) if c.owner is not None]
            if owned:
                logger.warning(
                    f"P2P topic with {short_id(peer)} has {len(owned)} owned channels; leaving them in place"
                )
            return await self.topics.ensure_topic(topic_id, channel=channel.id_hash)

    # =========================================================================
    # GROUP TOPICS
    # =========================================================================

    async def create_group_topic(
        self,
        name: str,
        topic_id: str | None = None,
        participants: Iterable[str] = (),
        auto_add_sync_peers: bool | None = None,
    ) -> Topic:
        """Create a multi-party topic backed by a Group.

        Args:
            name: Display name of the conversation
            topic_id: Topic id; derived per ``topic_id_policy`` when omitted
            participants: Initial participants; the local owner is always added
            auto_add_sync_peers: Also add every connected replication peer.
                Defaults to the ``auto_add_sync_peers`` setting.

        Returns:
            The stored Topic. When the topic already exists with a Group it
            is returned unchanged.

        Raises:
            InvalidTopicIdError: If ``topic_id`` contains the two-party separator
        """
        if topic_id is not None and self.config.p2p_separator in topic_id:
            raise InvalidTopicIdError(topic_id, "two-party topic ids cannot back a group")
        if auto_add_sync_peers is None:
            auto_add_sync_peers = self.config.auto_add_sync_peers

        owner = await self.store.self_identity()
        members = list(dict.fromkeys(participants))
        if owner not in members:
            members.insert(0, owner)
        if auto_add_sync_peers:
            members.extend(p for p in await self.store.connected_peers() if p not in members)

        if topic_id is None:
            topic_id = self.derive_topic_id(members)

        async with self._lock(topic_id):
            existing = await self.topics.get_topic(topic_id)
            if existing is not None and existing.obj.group:
                logger.info(f"Group topic {short_id(topic_id)} already exists")
                return existing.obj

            group = await self.membership.create_group(self.membership.group_name_for(topic_id), members)
            await self.membership.remember(topic_id, group)
            await self.access.grant_group_objects(group, members)

            channels = list(existing.obj.channels) if existing is not None else []
            for channel_hash in await self._create_local_channels(topic_id, members, group):
                if channel_hash not in channels:
                    channels.append(channel_hash)

            topic = Topic(
                id=topic_id,
                name=name,
                channels=tuple(channels),
                group=group.id_hash,
                certificate=group.certificate.certificate if group.certificate else None,
            )
            ref = await self.topics.save_topic(topic)
            await self.access.grant_read_access(principals=members, id_refs=[ref.id_hash])

        logger.info(f"Created group topic {name!r} ({short_id(topic_id)}) with {len(members)} participants")
        return topic

    async def _create_local_channels(self, topic_id: str, people: Iterable[str], group: GroupRef) -> list[str]:
        """Create a channel for each local identity in ``people`` readable by the group.

        A failure for one identity is logged and the others continue.
        """
        local = set(await self.store.local_identities())
        created = []
        for person in people:
            if person not in local:
                continue
            try:
                channel = await self.channels.create_channel(topic_id, person)
                await self.access.grant_channel_to_group(channel.id_hash, group.id_hash)
            except ParleyException as e:
                logger.error(f"Failed to create channel for {short_id(person)} in {short_id(topic_id)}: {e}")
                continue
            created.append(channel.id_hash)
        return created

    async def add_participants_to_topic(self, topic_id: str, new_participants: Iterable[str]) -> GroupRef:
        """Add participants to a group topic.

        Only the newly added participants receive person grants. A topic
        without a Group (legacy) gets one synthesised from the participants
        known locally plus the new ones.

        Raises:
            InvalidTopicIdError: For two-party topics
            NotFoundError: If the topic is unknown
        """
        if self.is_p2p_topic(topic_id):
            raise InvalidTopicIdError(topic_id, "two-party topics have fixed membership")
        new_participants = list(dict.fromkeys(new_participants))

        async with self._lock(topic_id):
            group = await self.membership.find_group_for_topic(topic_id)
            record = await self.topics.get_topic(topic_id)
            if group is None:
                if record is None:
                    raise NotFoundError("Topic", topic_id)
                return await self._adopt_legacy_topic(record.obj, new_participants)

            change = await self.membership.extend_group(group.version_hash, new_participants)
            if not change.changed:
                return change.group
            await self.membership.remember(topic_id, change.group)

            local = set(await self.store.local_identities())
            local_channels = [
                c.id_hash for c in await self.channels.channels_for_topic(topic_id) if c.owner in local
            ]
            await self.access.grant_new_members(change.added, change.group, local_channels)
            # Existing members follow the chain through the group itself
            await self.access.grant_read_access(
                [change.group.membership_hash, *certificate_chain(change.group.certificate)],
                groups=[change.group.id_hash],
            )

            created = await self._create_local_channels(topic_id, change.added, change.group)
            await self._update_topic(topic_id, record, change.group, created)

        logger.info(f"Added {len(change.added)} participants to topic {short_id(topic_id)}")
        return change.group

    async def _adopt_legacy_topic(self, topic: Topic, new_participants: list[str]) -> GroupRef:
        owner = await self.store.self_identity()
        existing_channels = await self.channels.channels_for_topic(topic.id)
        known = [owner] + [c.owner for c in existing_channels if c.owner]
        members = list(dict.fromkeys(known + new_participants))

        group = await self.membership.create_group(self.membership.group_name_for(topic.id), members)
        await self.membership.remember(topic.id, group)
        await self.access.grant_group_objects(group, members)
        for channel in existing_channels:
            await self.access.grant_channel_to_group(channel.id_hash, group.id_hash)

        created = await self._create_local_channels(topic.id, members, group)
        record = await self.topics.get_topic(topic.id)
        await self._update_topic(topic.id, record, group, created)
        logger.info(f"Synthesised group for legacy topic {short_id(topic.id)} with {len(members)} participants")
        return group

    async def _update_topic(
        self,
        topic_id: str,
        record: VersionedRecord | None,
        group: GroupRef,
        new_channels: list[str],
    ) -> Topic:
        current = record.obj if record is not None else Topic(id=topic_id, name=topic_id)
        channels = list(current.channels)
        channels.extend(c for c in new_channels if c not in channels)
        topic = Topic(
            id=topic_id,
            name=current.name,
            channels=tuple(channels),
            group=group.id_hash,
            certificate=group.certificate.certificate if group.certificate else current.certificate,
        )
        if topic != current:
            await self.topics.save_topic(topic)
        return topic

    # =========================================================================
    # QUERIES / REPAIR
    # =========================================================================

    async def get_topic_participants(self, topic_id: str) -> list[str]:
        """Participants of a topic; two-party ids are read straight from the id."""
        if self.is_p2p_topic(topic_id):
            return topic_id.split(self.config.p2p_separator)
        return await self.membership.get_topic_members(topic_id)

    async def ensure_participant_channel(self, topic_id: str, group_id_hash: str) -> bool:
        """Create the owner's channel for a group topic if missing.

        Grants the group read access to a new channel and makes sure a
        local Topic record references it. Returns True when a channel was
        created.
        """
        owner = await self.store.self_identity()
        async with self._lock(topic_id):
            channel = await self.channels.create_channel(topic_id, owner)
            if channel.created:
                await self.access.grant_channel_to_group(channel.id_hash, group_id_hash)
            await self.topics.ensure_topic(topic_id, channel=channel.id_hash, group=group_id_hash)
        return channel.created
