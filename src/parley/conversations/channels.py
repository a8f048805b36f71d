# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Channel registry: one single-writer message log per (topic, owner)."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..core.exceptions import ObjectNotFoundError
from ..core.logging import short_id
from ..store.backend import ObjectStore
from ..store.models import ChannelInfo, ObjectType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelRef:
    """A channel's identity hash; ``created`` is False when it already existed."""

    id_hash: str
    topic_id: str
    owner: str | None
    created: bool = False


class ChannelRegistry:
    def __init__(self, store: ObjectStore):
        self.store = store

    async def channel_id_hash(self, topic_id: str, owner: str | None) -> str:
        return await self.store.id_hash_of(ChannelInfo(id=topic_id, owner=owner))

    async def has_channel(self, topic_id: str, owner: str | None) -> bool:
        try:
            await self.store.get_latest(await self.channel_id_hash(topic_id, owner))
        except ObjectNotFoundError:
            return False
        return True

    async def create_channel(self, topic_id: str, owner: str | None) -> ChannelRef:
        """Create the channel for ``owner`` under ``topic_id`` unless it exists.

        ``owner=None`` is the shared channel of a two-party topic.
        """
        id_hash = await self.channel_id_hash(topic_id, owner)
        if await self.has_channel(topic_id, owner):
            return ChannelRef(id_hash, topic_id, owner, created=False)

        ref = await self.store.put_version(ChannelInfo(id=topic_id, owner=owner))
        logger.info(f"Created channel {short_id(ref.id_hash)} for topic {short_id(topic_id)} owner {short_id(owner)}")
        return ChannelRef(ref.id_hash, topic_id, owner, created=True)

    async def channels_for_topic(self, topic_id: str) -> list[ChannelRef]:
        """Every channel stored locally under ``topic_id``."""
        records = await self.store.all_of_type(ObjectType.CHANNEL)
        return [
            ChannelRef(record.id_hash, topic_id, record.obj.owner)
            for record in records
            if isinstance(record.obj, ChannelInfo) and record.obj.id == topic_id
        ]
