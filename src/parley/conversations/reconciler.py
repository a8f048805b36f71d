# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Reconciler for Group versions received from peers.

When a peer adds this instance's owner to a conversation, the Group arrives
through replication before anything else exists locally. The reconciler
makes local state catch up: it caches the topic -> group mapping, creates
the owner's channel for the topic, lets the group read it and records a
Topic locally.

Replication delivers objects out of order and more than once. A Group whose
Membership Set has not arrived yet is parked and retried when the set
arrives; handling the same version twice changes nothing. A version the
store already holds a successor for is reported stale and never replaces
the cached one. Failures are logged and skipped since there is no caller
to report them to.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from ..core.exceptions import NotFoundError, ParleyException
from ..core.logging import correlation_context, short_id
from ..store.backend import ObjectStore
from ..store.models import Group, GroupRef, ObjectType, StoredRecord, VersionedRecord
from .membership import GroupMembershipManager
from .topics import TopicProvisioner

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    """What handling one received object amounted to."""

    NOT_A_GROUP = "not_a_group"
    NOT_A_CONVERSATION = "not_a_conversation"
    SELF_ECHO = "self_echo"
    STALE = "stale"
    NOT_A_MEMBER = "not_a_member"
    PENDING = "pending"
    CHANNEL_CREATED = "channel_created"
    ALREADY_JOINED = "already_joined"
    FAILED = "failed"


class ReceivedGroupReconciler:
    def __init__(
        self,
        store: ObjectStore,
        membership: GroupMembershipManager,
        provisioner: TopicProvisioner,
    ):
        self.store = store
        self.membership = membership
        self.provisioner = provisioner
        # membership hash -> Group versions waiting for it
        self._pending: dict[str, dict[str, VersionedRecord]] = {}

    @property
    def pending_count(self) -> int:
        return sum(len(records) for records in self._pending.values())

    def register(self, store: ObjectStore | None = None) -> Callable[[], None]:
        """Subscribe to the store's arrival events. Returns an unsubscribe function."""
        store = store or self.store
        remove_versioned = store.on_versioned_object(self.handle_versioned)
        remove_object = store.on_object(self.handle_object)

        def unregister() -> None:
            remove_versioned()
            remove_object()

        return unregister

    async def handle_versioned(self, record: VersionedRecord) -> ReconcileOutcome:
        """Arrival callback for versioned objects."""
        if record.obj.TYPE != ObjectType.GROUP:
            return ReconcileOutcome.NOT_A_GROUP
        with correlation_context():
            return await self.handle_received_group(record)

    async def handle_object(self, record: StoredRecord) -> None:
        """Arrival callback for immutable objects: retries Groups waiting for them."""
        if record.hash in self._pending:
            with correlation_context():
                await self.retry_pending(record.hash)

    async def handle_received_group(self, record: VersionedRecord) -> ReconcileOutcome:
        """Bring local state in line with a received Group version."""
        try:
            return await self._reconcile(record)
        except ParleyException as e:
            logger.error(f"Failed to reconcile group {short_id(record.version_hash)}: {e}")
            return ReconcileOutcome.FAILED

    async def _reconcile(self, record: VersionedRecord) -> ReconcileOutcome:
        group = record.obj
        if not isinstance(group, Group):
            return ReconcileOutcome.NOT_A_GROUP

        topic_id = self.membership.topic_id_from_group_name(group.name)
        if topic_id is None:
            logger.debug(f"Ignoring group {group.name!r}: not a conversation group")
            return ReconcileOutcome.NOT_A_CONVERSATION

        version_hash = record.version_hash
        if self.membership.created_by_self(version_hash):
            logger.debug(f"Skipping self-echo of group {short_id(version_hash)}")
            return ReconcileOutcome.SELF_ECHO
        cached = await self.membership.cache.get(topic_id)
        if cached is not None and cached.version_hash == version_hash:
            logger.debug(f"Group {short_id(version_hash)} already handled for topic {short_id(topic_id)}")
            return ReconcileOutcome.SELF_ECHO

        head = await self.store.get_latest(record.id_hash)
        if head.version_hash != version_hash:
            logger.debug(
                f"Group {short_id(version_hash)} for topic {short_id(topic_id)} superseded by "
                f"{short_id(head.version_hash)}"
            )
            return ReconcileOutcome.STALE

        owner = await self.store.self_identity()
        try:
            members = await self.membership.get_members(version_hash)
        except NotFoundError as e:
            if e.resource_type == "MembershipSet" and not e.details.get("reason"):
                self._pending.setdefault(group.membership, {})[version_hash] = record
                logger.info(
                    f"Group {short_id(version_hash)} for topic {short_id(topic_id)} waits for "
                    f"membership {short_id(group.membership)}"
                )
                return ReconcileOutcome.PENDING
            raise

        if owner not in members:
            logger.debug(f"Not a member of group {short_id(version_hash)} for topic {short_id(topic_id)}")
            return ReconcileOutcome.NOT_A_MEMBER

        ref = GroupRef(record.id_hash, version_hash, group.membership)
        await self.membership.remember(topic_id, ref)
        return await self._ensure_channel(topic_id, ref)

    async def _ensure_channel(self, topic_id: str, ref: GroupRef) -> ReconcileOutcome:
        try:
            created = await self.provisioner.ensure_participant_channel(topic_id, ref.id_hash)
        except ParleyException:
            await self.membership.forget(topic_id)
            raise
        if created:
            logger.info(f"Joined topic {short_id(topic_id)} via group {short_id(ref.version_hash)}")
            return ReconcileOutcome.CHANNEL_CREATED
        return ReconcileOutcome.ALREADY_JOINED

    async def retry_pending(self, membership_hash: str | None = None) -> dict[str, ReconcileOutcome]:
        """Retry parked Group versions.

        Args:
            membership_hash: Only retry versions waiting for this Membership
                Set; all parked versions when None.

        Returns:
            Outcome per retried version hash. Versions still missing their
            Membership Set stay parked.
        """
        keys = [membership_hash] if membership_hash is not None else list(self._pending)
        outcomes: dict[str, ReconcileOutcome] = {}
        for key in keys:
            for version_hash, record in self._pending.pop(key, {}).items():
                outcomes[version_hash] = await self.handle_received_group(record)
        return outcomes
