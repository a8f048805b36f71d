"""Global test fixtures for the Parley test suite."""

from __future__ import annotations

import os

import pytest
import pytest_asyncio

from parley.conversations.service import ConversationService
from parley.core.config import CoreSettings, clear_config_cache
from parley.store.memory import InMemoryObjectStore

# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all PARLEY_ environment variables."""
    for key in list(os.environ.keys()):
        if key.startswith("PARLEY_"):
            monkeypatch.delenv(key, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def settings(clean_env) -> CoreSettings:
    """Default settings, unaffected by the environment."""
    return CoreSettings(_env_file=None)


# ============================================================================
# Store Fixtures
# ============================================================================


def pair(a: InMemoryObjectStore, a_id: str, b: InMemoryObjectStore, b_id: str) -> None:
    """Make the owners of two stores known contacts of each other."""
    a.add_contact(b_id, b.public_key_for(b_id))
    b.add_contact(a_id, a.public_key_for(a_id))


@pytest_asyncio.fixture
async def store() -> InMemoryObjectStore:
    """A store whose owner is alice."""
    s = InMemoryObjectStore("alice")
    await s.create_local_identity("alice@example.com")
    return s


@pytest_asyncio.fixture
async def owner(store) -> str:
    return await store.self_identity()


@pytest.fixture
def service(store, settings) -> ConversationService:
    return ConversationService.create(store, settings)


@pytest_asyncio.fixture
async def remote_store() -> InMemoryObjectStore:
    """A second instance, owned by bob."""
    s = InMemoryObjectStore("bob")
    await s.create_local_identity("bob@example.com")
    return s


@pytest_asyncio.fixture
async def bob(remote_store) -> str:
    return await remote_store.self_identity()


@pytest.fixture
def remote_service(remote_store, settings) -> ConversationService:
    return ConversationService.create(remote_store, settings)


@pytest.fixture
def paired(store, owner, remote_store, bob):
    """alice and bob know each other's keys."""
    pair(store, owner, remote_store, bob)
    return owner, bob


@pytest_asyncio.fixture
async def carol() -> str:
    """Identity hash of a person only known by id (no keys anywhere local)."""
    s = InMemoryObjectStore("carol")
    return await s.create_local_identity("carol@example.com")


@pytest.fixture
def pair_stores():
    """The ``pair`` helper, for tests that build extra stores."""
    return pair
