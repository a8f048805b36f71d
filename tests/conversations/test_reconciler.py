"""Tests for parley.conversations.reconciler - received Group handling."""

from __future__ import annotations

import pytest

from parley.conversations.reconciler import ReconcileOutcome
from parley.core.exceptions import StoreError
from parley.store.memory import replicate
from parley.store.models import Group, MembershipSet, Topic


async def _group_topic(service, members, topic_id="t1"):
    await service.provisioner.create_group_topic("team", topic_id, members)
    return await service.membership.find_group_for_topic(topic_id)


def _refs(group):
    return [group.membership_hash, *group.certificate.hashes, group.version_hash]


@pytest.fixture
def bob_service(remote_service, paired):
    remote_service.register_replication_hooks()
    yield remote_service
    remote_service.unregister_replication_hooks()


class TestReceivedGroup:
    @pytest.mark.asyncio
    async def test_member_joins(self, service, store, bob_service, remote_store, owner, bob):
        group = await _group_topic(service, [bob])

        accepted = await replicate(store, remote_store, _refs(group))

        assert group.version_hash in accepted
        assert await bob_service.channels.has_channel("t1", bob)
        cached = await bob_service.cache.get("t1")
        assert cached.version_hash == group.version_hash
        topic = (await bob_service.topics.get_topic("t1")).obj
        assert topic.group == group.id_hash
        channel_hash = await bob_service.channels.channel_id_hash("t1", bob)
        assert topic.channels == (channel_hash,)
        assert await remote_store.can_read(owner, channel_hash)

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_idempotent(self, service, store, bob_service, remote_store, bob):
        group = await _group_topic(service, [bob])
        await replicate(store, remote_store, _refs(group))
        record = await remote_store.get_version(group.version_hash)

        outcome = await bob_service.reconciler.handle_received_group(record)

        assert outcome == ReconcileOutcome.SELF_ECHO
        assert len(await bob_service.channels.channels_for_topic("t1")) == 1

    @pytest.mark.asyncio
    async def test_rejoin_after_cache_loss(self, service, store, bob_service, remote_store, bob):
        group = await _group_topic(service, [bob])
        await replicate(store, remote_store, _refs(group))
        await bob_service.cache.clear()
        record = await remote_store.get_version(group.version_hash)

        assert await bob_service.reconciler.handle_received_group(record) == ReconcileOutcome.ALREADY_JOINED

    @pytest.mark.asyncio
    async def test_not_a_member(self, service, store, bob_service, remote_store, carol):
        group = await _group_topic(service, [carol])
        await replicate(store, remote_store, _refs(group))
        record = await remote_store.get_version(group.version_hash)

        assert await bob_service.reconciler.handle_received_group(record) == ReconcileOutcome.NOT_A_MEMBER
        assert await bob_service.channels.channels_for_topic("t1") == []

    @pytest.mark.asyncio
    async def test_self_echo(self, service, store, bob):
        group = await _group_topic(service, [bob])
        record = await store.get_version(group.version_hash)

        assert await service.reconciler.handle_versioned(record) == ReconcileOutcome.SELF_ECHO

    @pytest.mark.asyncio
    async def test_ignores_other_objects(self, service, store, owner):
        topic = await store.put_version(Topic(id="t1"))
        other = await store.put(MembershipSet((owner,)))
        group = await store.put_version(Group(name="everyone", membership=other))

        reconciler = service.reconciler
        topic_record = await store.get_version(topic.version_hash)
        group_record = await store.get_version(group.version_hash)
        assert await reconciler.handle_versioned(topic_record) == ReconcileOutcome.NOT_A_GROUP
        assert await reconciler.handle_versioned(group_record) == ReconcileOutcome.NOT_A_CONVERSATION


class TestOutOfOrder:
    @pytest.mark.asyncio
    async def test_group_before_membership_set(self, service, store, bob_service, remote_store, bob):
        group = await _group_topic(service, [bob])

        await replicate(store, remote_store, [*group.certificate.hashes, group.version_hash])

        assert bob_service.reconciler.pending_count == 1
        assert not await bob_service.channels.has_channel("t1", bob)

        await replicate(store, remote_store, [group.membership_hash])

        assert bob_service.reconciler.pending_count == 0
        assert await bob_service.channels.has_channel("t1", bob)

    @pytest.mark.asyncio
    async def test_older_version_after_newer(self, service, store, bob_service, remote_store, owner, bob, carol):
        first = await _group_topic(service, [bob])
        await service.provisioner.add_participants_to_topic("t1", [carol])
        second = await service.membership.find_group_for_topic("t1")

        await replicate(store, remote_store, _refs(second))
        await replicate(store, remote_store, _refs(first))

        assert (await remote_store.get_latest(second.id_hash)).version_hash == second.version_hash
        assert (await bob_service.cache.get("t1")).version_hash == second.version_hash
        assert set(await bob_service.provisioner.get_topic_participants("t1")) == {owner, bob, carol}
        record = await remote_store.get_version(first.version_hash)
        assert await bob_service.reconciler.handle_received_group(record) == ReconcileOutcome.STALE

    @pytest.mark.asyncio
    async def test_stale_pending_version_is_dropped(self, service, store, bob_service, remote_store, bob, carol):
        first = await _group_topic(service, [bob])
        await service.provisioner.add_participants_to_topic("t1", [carol])
        second = await service.membership.find_group_for_topic("t1")

        await replicate(store, remote_store, [*first.certificate.hashes, first.version_hash])
        assert bob_service.reconciler.pending_count == 1
        await replicate(store, remote_store, _refs(second))

        outcomes = await bob_service.reconciler.retry_pending()

        assert outcomes == {first.version_hash: ReconcileOutcome.STALE}
        assert bob_service.reconciler.pending_count == 0
        assert (await bob_service.cache.get("t1")).version_hash == second.version_hash

    @pytest.mark.asyncio
    async def test_retry_keeps_unresolved(self, remote_service, remote_store, bob):
        pending = await remote_store.put_version(Group(name="conversation-t2", membership="a" * 64))
        record = await remote_store.get_version(pending.version_hash)

        assert await remote_service.reconciler.handle_received_group(record) == ReconcileOutcome.PENDING
        outcomes = await remote_service.reconciler.retry_pending()

        assert outcomes == {pending.version_hash: ReconcileOutcome.PENDING}
        assert remote_service.reconciler.pending_count == 1


class TestFailures:
    @pytest.mark.asyncio
    async def test_channel_failure_evicts_cache(self, service, store, bob_service, remote_store, monkeypatch):
        async def broken(topic_id, group_id_hash):
            raise StoreError("disk full")

        monkeypatch.setattr(bob_service.provisioner, "ensure_participant_channel", broken)
        group = await _group_topic(service, [await remote_store.self_identity()])

        await replicate(store, remote_store, _refs(group))

        assert await bob_service.cache.get("t1") is None
        record = await remote_store.get_version(group.version_hash)
        assert await bob_service.reconciler.handle_received_group(record) == ReconcileOutcome.FAILED

    @pytest.mark.asyncio
    async def test_register_and_unregister(self, remote_service, remote_store):
        unregister = remote_service.reconciler.register()
        assert len(remote_store._versioned_listeners) == 1
        assert len(remote_store._object_listeners) == 1

        unregister()

        assert remote_store._versioned_listeners == []
        assert remote_store._object_listeners == []
