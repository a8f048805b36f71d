# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Sync filters: which objects may leave and which may enter this instance.

The replication layer consults both predicates for every candidate object.
Neither raises; every failure resolves to a refusal for the types that are
checked at all.

Outbound:
    Groups leave only if this instance created that exact version, so a
    Group received from a peer is never re-exported.

Inbound:
    Access grant records never enter: a peer must not be able to inject
    permissions. Groups enter only with a valid certificate over their
    Membership Set from a trusted signer (this instance or a known contact).
    Everything else is left to the store.
"""

from __future__ import annotations

import logging

from ..core.exceptions import ParleyException
from ..core.logging import short_id
from ..store.backend import InboundFilter, ObjectStore, OutboundFilter
from ..store.models import GRANT_TYPES, Group, ObjectType, StoredObject, type_name
from .membership import GroupMembershipManager

logger = logging.getLogger(__name__)

_GRANT_TYPE_NAMES = frozenset(t.value for t in GRANT_TYPES)


class SyncFilterValidator:
    def __init__(self, store: ObjectStore, membership: GroupMembershipManager):
        self.store = store
        self.membership = membership

    async def allow_outbound(self, ref: str, object_type: ObjectType | str) -> bool:
        if type_name(object_type) != ObjectType.GROUP.value:
            return True
        allowed = self.membership.created_by_self(ref)
        if not allowed:
            logger.debug(f"Holding back group {short_id(ref)}: not created here")
        return allowed

    async def allow_inbound(
        self,
        ref: str,
        object_type: ObjectType | str,
        obj: StoredObject | None = None,
    ) -> bool:
        name = type_name(object_type)
        if name in _GRANT_TYPE_NAMES:
            logger.warning(f"Rejected inbound {name} {short_id(ref)}: grants are never accepted from peers")
            return False
        if name != ObjectType.GROUP.value:
            return True

        try:
            return await self._group_is_attested(ref, obj)
        except ParleyException as e:
            logger.warning(f"Rejected inbound group {short_id(ref)}: {e}")
            return False

    async def _group_is_attested(self, ref: str, obj: StoredObject | None) -> bool:
        group = obj if obj is not None else await self.store.get(ref)
        if not isinstance(group, Group):
            logger.warning(f"Rejected inbound group {short_id(ref)}: object is not a Group")
            return False

        trusted = {await self.store.self_identity(), *await self.store.known_contacts()}
        attestations = await self.store.attestations(group.membership)
        if not attestations:
            logger.info(
                f"Rejected inbound group {short_id(ref)}: membership {short_id(group.membership)} has no certificate"
            )
            return False

        for attestation in attestations:
            if attestation.signer not in trusted:
                logger.info(
                    f"Ignoring certificate {short_id(attestation.certificate_hash)} "
                    f"by untrusted signer {short_id(attestation.signer)}"
                )
                continue
            if await self.store.verify_attestation(attestation.certificate_hash):
                logger.debug(f"Accepted inbound group {short_id(ref)} attested by {short_id(attestation.signer)}")
                return True
            logger.info(f"Certificate {short_id(attestation.certificate_hash)} failed verification")

        logger.info(f"Rejected inbound group {short_id(ref)}: no valid certificate from a trusted signer")
        return False

    def object_filter(self) -> OutboundFilter:
        """Outbound predicate for the replication layer."""

        async def _filter(ref: str, object_type: str) -> bool:
            return await self.allow_outbound(ref, object_type)

        return _filter

    def import_filter(self) -> InboundFilter:
        """Inbound predicate for the replication layer."""

        async def _filter(ref: str, object_type: str, obj: StoredObject | None = None) -> bool:
            return await self.allow_inbound(ref, object_type, obj)

        return _filter
