# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Bounded topic -> group cache.

Maps a topic id to the latest known Group version so repeated lookups skip
the store. Entries are evicted whenever resolving them fails, which forces
the next lookup to rebuild from the store instead of returning a stale ref.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import Any

from ..store.models import GroupRef

DEFAULT_CACHE_MAX_SIZE = 1000


def get_cache_max_size() -> int:
    """Get the configured cache max size from config."""
    from ..core.config import get_config

    return get_config().cache_max_size


class TopicGroupCache:
    """LRU cache of topic id -> GroupRef guarded by an asyncio lock.

    Example:
        cache = TopicGroupCache(max_size=100)
        await cache.set(topic_id, group_ref)
        await cache.get(topic_id)  # moves topic_id to most recent
    """

    def __init__(self, max_size: int | None = None) -> None:
        self._max_size = max_size if max_size is not None else get_cache_max_size()
        self._entries: OrderedDict[str, GroupRef] = OrderedDict()
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def max_size(self) -> int:
        """Maximum cache size."""
        return self._max_size

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, topic_id: str) -> GroupRef | None:
        """Get the cached group for a topic and mark it recently used."""
        async with self._lock:
            ref = self._entries.get(topic_id)
            if ref is None:
                self._misses += 1
                return None
            self._entries.move_to_end(topic_id)
            self._hits += 1
            return ref

    async def set(self, topic_id: str, ref: GroupRef) -> None:
        async with self._lock:
            self._entries[topic_id] = ref
            self._entries.move_to_end(topic_id)
            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)

    async def evict(self, topic_id: str) -> bool:
        """Drop the entry for a topic. Returns True if one was present."""
        async with self._lock:
            return self._entries.pop(topic_id, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, Any]:
        """Return cache statistics."""
        return {
            "size": len(self._entries),
            "max_size": self._max_size,
            "hits": self._hits,
            "misses": self._misses,
            "utilization": len(self._entries) / self._max_size if self._max_size > 0 else 0,
        }
