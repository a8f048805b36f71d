# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Access grant computer.

Derives the additive grants needed whenever membership or channels change.
Grants are only ever added; nothing here revokes access. Whether an object
is shared with peers at all is decided by the sync filters, not here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..core.exceptions import ParleyException
from ..core.logging import short_id
from ..store.backend import ObjectStore
from ..store.models import AccessGrant, CertificateBundle, GroupRef

logger = logging.getLogger(__name__)


@dataclass
class GrantReport:
    """Which refs received a grant and which failed."""

    granted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: GrantReport) -> GrantReport:
        self.granted.extend(r for r in other.granted if r not in self.granted)
        self.failed.update(other.failed)
        return self


def certificate_chain(bundle: CertificateBundle | None) -> tuple[str, ...]:
    """Certificate, signature and license hashes, or nothing when uncertified."""
    return bundle.hashes if bundle is not None else ()


class AccessGrantComputer:
    def __init__(self, store: ObjectStore):
        self.store = store

    async def grant_read_access(
        self,
        object_refs: Iterable[str] = (),
        principals: Iterable[str] = (),
        groups: Iterable[str] = (),
        *,
        id_refs: Iterable[str] = (),
    ) -> GrantReport:
        """Grant ``principals`` and ``groups`` read access to each ref.

        ``object_refs`` get plain grants; ``id_refs`` (identity hashes of
        versioned objects) get identity grants covering every version. One
        grant is written per object; a failure is logged and the remaining
        objects are still granted.
        """
        persons = tuple(dict.fromkeys(principals))
        group_refs = tuple(dict.fromkeys(groups))
        report = GrantReport()
        if not persons and not group_refs:
            return report

        targets = [(ref, False) for ref in dict.fromkeys(object_refs)]
        targets += [(ref, True) for ref in dict.fromkeys(id_refs)]
        for ref, identity in targets:
            grant = AccessGrant(target=ref, persons=persons, groups=group_refs, identity=identity)
            try:
                await self.store.create_access_grant([grant])
            except ParleyException as e:
                logger.warning(f"Failed to grant access to {short_id(ref)}: {e}")
                report.failed[ref] = str(e)
                continue
            report.granted.append(ref)

        logger.debug(
            f"Granted {len(report.granted)}/{len(targets)} objects to "
            f"{len(persons)} persons and {len(group_refs)} groups"
        )
        return report

    async def grant_group_objects(self, group: GroupRef, principals: Iterable[str]) -> GrantReport:
        """Grant the Group (all versions), its Membership Set and certificate chain."""
        return await self.grant_read_access(
            [group.version_hash, group.membership_hash, *certificate_chain(group.certificate)],
            principals,
            id_refs=[group.id_hash],
        )

    async def grant_new_members(
        self,
        new_members: Iterable[str],
        group: GroupRef,
        channel_refs: Iterable[str],
    ) -> GrantReport:
        """Grant only the newly added members what existing members already read.

        Covers the new Group version, the new Membership Set, every existing
        local channel of the topic and the certificate chain.
        """
        new_members = tuple(new_members)
        report = await self.grant_group_objects(group, new_members)
        report.merge(await self.grant_read_access(principals=new_members, id_refs=channel_refs))
        return report

    async def grant_channel_to_group(self, channel_ref: str, group_id_hash: str) -> GrantReport:
        return await self.grant_read_access(groups=[group_id_hash], id_refs=[channel_ref])

    async def grant_channel_to_persons(self, channel_ref: str, persons: Iterable[str]) -> GrantReport:
        return await self.grant_read_access(principals=persons, id_refs=[channel_ref])
