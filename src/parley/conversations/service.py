# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Wiring of the conversation components around one object store."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from ..core.config import CoreSettings, get_config
from ..core.logging import correlation_context, short_id
from ..store.backend import ObjectStore
from ..store.models import Topic
from .access import AccessGrantComputer
from .cache import TopicGroupCache
from .channels import ChannelRegistry
from .filters import SyncFilterValidator
from .membership import GroupMembershipManager
from .plan import GroupPlan
from .reconciler import ReceivedGroupReconciler
from .topics import TopicProvisioner, TopicRegistry

logger = logging.getLogger(__name__)


@dataclass
class ConversationService:
    """All conversation components sharing one store, cache and config.

    Build with ``ConversationService.create(store)``, then call
    ``register_replication_hooks()`` once so the replication layer consults
    the sync filters and feeds received objects to the reconciler.
    """

    store: ObjectStore
    config: CoreSettings
    cache: TopicGroupCache
    membership: GroupMembershipManager
    channels: ChannelRegistry
    access: AccessGrantComputer
    topics: TopicRegistry
    provisioner: TopicProvisioner
    filters: SyncFilterValidator
    reconciler: ReceivedGroupReconciler
    plan: GroupPlan
    _unregister: list[Callable[[], None]] = field(default_factory=list, repr=False)

    @classmethod
    def create(
        cls,
        store: ObjectStore,
        config: CoreSettings | None = None,
        cache: TopicGroupCache | None = None,
    ) -> ConversationService:
        config = config or get_config()
        cache = cache if cache is not None else TopicGroupCache(config.cache_max_size)
        membership = GroupMembershipManager(store, cache, config)
        channels = ChannelRegistry(store)
        access = AccessGrantComputer(store)
        topics = TopicRegistry(store)
        provisioner = TopicProvisioner(store, membership, channels, access, topics, config)
        return cls(
            store=store,
            config=config,
            cache=cache,
            membership=membership,
            channels=channels,
            access=access,
            topics=topics,
            provisioner=provisioner,
            filters=SyncFilterValidator(store, membership),
            reconciler=ReceivedGroupReconciler(store, membership, provisioner),
            plan=GroupPlan(provisioner),
        )

    def register_replication_hooks(self) -> None:
        """Install the sync filters and subscribe the reconciler. Safe to call twice."""
        if self._unregister:
            return
        self.store.install_sync_filters(self.filters.object_filter(), self.filters.import_filter())
        self._unregister.append(self.reconciler.register(self.store))
        self._unregister.append(lambda: self.store.install_sync_filters(None, None))
        logger.info("Registered conversation replication hooks")

    def unregister_replication_hooks(self) -> None:
        while self._unregister:
            self._unregister.pop()()

    async def on_peer_connected(self, peer: str) -> Topic | None:
        """Replication connection established: make sure the P2P topic with ``peer`` is intact."""
        with correlation_context():
            logger.info(f"Peer {short_id(peer)} connected")
            return await self.provisioner.ensure_p2p_channels_for_peer(peer)
