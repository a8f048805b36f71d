"""Tests for parley.store.memory - the in-memory object store."""

from __future__ import annotations

import pytest

from parley.core.exceptions import ObjectNotFoundError, StoreError
from parley.store.memory import InMemoryObjectStore, replicate
from parley.store.models import (
    AccessGrant,
    ChannelInfo,
    Group,
    MembershipSet,
    ObjectType,
    StoredRecord,
    Topic,
    content_hash,
)

# ============================================================================
# Immutable Objects
# ============================================================================


class TestImmutableObjects:
    @pytest.mark.asyncio
    async def test_put_is_content_addressed(self, store):
        ref1 = await store.put(MembershipSet(("b", "a")))
        ref2 = await store.put(MembershipSet(("a", "b", "a")))

        assert ref1 == ref2
        assert ref1 == content_hash({"type": "MembershipSet", "members": ["a", "b"]})
        assert await store.get(ref1) == MembershipSet(("a", "b"))

    @pytest.mark.asyncio
    async def test_get_missing_raises(self, store):
        with pytest.raises(ObjectNotFoundError):
            await store.get("0" * 64)

    @pytest.mark.asyncio
    async def test_put_rejects_versioned(self, store):
        with pytest.raises(StoreError):
            await store.put(Topic(id="t1"))


# ============================================================================
# Versioned Objects
# ============================================================================


class TestVersionedObjects:
    @pytest.mark.asyncio
    async def test_versions_chain_to_previous_head(self, store):
        first = await store.put_version(Group(name="g", membership="m1"))
        second = await store.put_version(Group(name="g", membership="m2"))

        assert first.id_hash == second.id_hash
        assert first.version_hash != second.version_hash
        latest = await store.get_latest(first.id_hash)
        assert latest.version_hash == second.version_hash
        assert latest.prev_version == first.version_hash

    @pytest.mark.asyncio
    async def test_explicit_previous_version(self, store):
        first = await store.put_version(Group(name="g", membership="m1"))
        await store.put_version(Group(name="g", membership="m2"))
        branch = await store.put_version(Group(name="g", membership="m3"), prev_version=first.version_hash)

        record = await store.get_version(branch.version_hash)
        assert record.prev_version == first.version_hash
        assert (await store.get_latest(first.id_hash)).version_hash == branch.version_hash

    @pytest.mark.asyncio
    async def test_unknown_previous_version_rejected(self, store):
        with pytest.raises(ObjectNotFoundError):
            await store.put_version(Group(name="g", membership="m"), prev_version="f" * 64)

    @pytest.mark.asyncio
    async def test_id_hash_ignores_non_identity_fields(self, store):
        a = await store.id_hash_of(Topic(id="t1", name="one"))
        b = await store.id_hash_of(Topic(id="t1", name="two"))
        assert a == b

    @pytest.mark.asyncio
    async def test_all_of_type_returns_latest(self, store):
        await store.put_version(ChannelInfo(id="t1", owner=None))
        await store.put_version(ChannelInfo(id="t2", owner=None))
        await store.put_version(Topic(id="t1"))

        channels = await store.all_of_type(ObjectType.CHANNEL)
        assert sorted(r.obj.id for r in channels) == ["t1", "t2"]


# ============================================================================
# Access Grants
# ============================================================================


class TestAccessGrants:
    @pytest.mark.asyncio
    async def test_person_grant(self, store, carol):
        ref = await store.put(MembershipSet(("x",)))
        assert not await store.can_read(carol, ref)

        await store.create_access_grant([AccessGrant(target=ref, persons=(carol,))])

        assert await store.can_read(carol, ref)
        assert len(await store.grants_for(ref)) == 1

    @pytest.mark.asyncio
    async def test_grant_on_missing_target_fails(self, store, carol):
        with pytest.raises(ObjectNotFoundError):
            await store.create_access_grant([AccessGrant(target="e" * 64, persons=(carol,))])

    @pytest.mark.asyncio
    async def test_identity_grant_covers_versions(self, store, carol):
        first = await store.put_version(ChannelInfo(id="t1", owner=carol))
        await store.create_access_grant([AccessGrant(target=first.id_hash, persons=(carol,), identity=True)])
        second = await store.put_version(ChannelInfo(id="t1", owner=carol))

        assert await store.can_read(carol, second.version_hash)

    @pytest.mark.asyncio
    async def test_group_grant_follows_latest_membership(self, store, owner, carol):
        channel = await store.put_version(ChannelInfo(id="t1", owner=owner))
        m1 = await store.put(MembershipSet((owner,)))
        group = await store.put_version(Group(name="g", membership=m1))
        await store.create_access_grant([AccessGrant(target=channel.id_hash, groups=(group.id_hash,), identity=True)])

        assert await store.can_read(owner, channel.version_hash)
        assert not await store.can_read(carol, channel.version_hash)

        m2 = await store.put(MembershipSet((owner, carol)))
        await store.put_version(Group(name="g", membership=m2))

        assert await store.can_read(carol, channel.version_hash)


# ============================================================================
# Attestation
# ============================================================================


class TestAttestation:
    @pytest.mark.asyncio
    async def test_certify_and_verify(self, store, owner):
        target = await store.put(MembershipSet((owner,)))

        bundle = await store.certify("AffirmationCertificate", target, owner)

        assert await store.verify_attestation(bundle.certificate)
        assert await store.attested_by(target) == [owner]
        assert await store.certificate_bundle(bundle.certificate) == bundle

    @pytest.mark.asyncio
    async def test_cannot_sign_for_remote_identity(self, store, carol):
        target = await store.put(MembershipSet((carol,)))
        with pytest.raises(StoreError):
            await store.certify("AffirmationCertificate", target, carol)

    @pytest.mark.asyncio
    async def test_unknown_kind_cannot_be_issued(self, store, owner):
        target = await store.put(MembershipSet((owner,)))
        with pytest.raises(StoreError):
            await store.certify("TrustKeysCertificate", target, owner)

    @pytest.mark.asyncio
    async def test_verify_missing_certificate_is_false(self, store):
        assert await store.verify_attestation("a" * 64) is False


# ============================================================================
# Identities
# ============================================================================


class TestIdentities:
    @pytest.mark.asyncio
    async def test_owner_first(self, store, owner):
        second = await store.create_local_identity("alice-work@example.com")

        assert await store.local_identities() == [owner, second]
        assert await store.self_identity() == owner

    @pytest.mark.asyncio
    async def test_no_identity(self):
        with pytest.raises(StoreError):
            await InMemoryObjectStore("empty").self_identity()

    @pytest.mark.asyncio
    async def test_contacts_and_peers(self, store, remote_store, bob):
        store.add_contact(bob, remote_store.public_key_for(bob))
        store.set_connected_peers([bob, bob])

        assert await store.known_contacts() == [bob]
        assert await store.connected_peers() == [bob]


# ============================================================================
# Replication
# ============================================================================


class TestReplication:
    @pytest.mark.asyncio
    async def test_import_fires_listeners(self, store, remote_store):
        seen_objects, seen_versions = [], []

        async def on_object(record):
            seen_objects.append(record.hash)

        async def on_version(record):
            seen_versions.append(record.version_hash)

        remote_store.on_object(on_object)
        unsubscribe = remote_store.on_versioned_object(on_version)

        m = await store.put(MembershipSet(("x",)))
        g = await store.put_version(Group(name="g", membership=m))
        accepted = await replicate(store, remote_store, [m, g.version_hash])

        assert accepted == [m, g.version_hash]
        assert seen_objects == [m]
        assert seen_versions == [g.version_hash]
        assert (await remote_store.get_latest(g.id_hash)).obj == Group(name="g", membership=m)

        unsubscribe()
        await replicate(store, remote_store, [(await store.put_version(Group(name="g", membership="m2"))).version_hash])
        assert len(seen_versions) == 1

    @pytest.mark.asyncio
    async def test_duplicate_import_is_ignored(self, store, remote_store):
        m = await store.put(MembershipSet(("x",)))
        record = await store.export_record(m)

        assert await remote_store.import_record(record) is True
        assert await remote_store.import_record(record) is False

    @pytest.mark.asyncio
    async def test_tampered_record_rejected(self, store, remote_store):
        m = await store.put(MembershipSet(("x",)))
        tampered = StoredRecord(hash=m, data={"type": "MembershipSet", "members": ["x", "y"]})

        with pytest.raises(StoreError):
            await remote_store.import_record(tampered)

    @pytest.mark.asyncio
    async def test_older_version_does_not_replace_head(self, store, remote_store):
        first = await store.put_version(Group(name="g", membership="m1"))
        second = await store.put_version(Group(name="g", membership="m2"))

        await replicate(store, remote_store, [second.version_hash])
        await replicate(store, remote_store, [first.version_hash])

        assert (await remote_store.get_latest(first.id_hash)).version_hash == second.version_hash

    @pytest.mark.asyncio
    async def test_filters_are_consulted(self, store, remote_store):
        async def deny_outbound(ref, object_type):
            return object_type != "MembershipSet"

        async def deny_inbound(ref, object_type, obj):
            return object_type != "Topic"

        store.install_sync_filters(object_filter=deny_outbound)
        remote_store.install_sync_filters(import_filter=deny_inbound)

        m = await store.put(MembershipSet(("x",)))
        t = await store.put_version(Topic(id="t1"))
        c = await store.put_version(ChannelInfo(id="t1"))

        assert await replicate(store, remote_store, [m, t.version_hash, c.version_hash]) == [c.version_hash]
