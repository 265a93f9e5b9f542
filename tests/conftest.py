"""
Shared fixtures for the sync engine tests
"""

import pytest

from workspace_sync.config import RecoveryConfig
from workspace_sync.database import Database
from workspace_sync.models.sync_models import ResolutionStrategy
from workspace_sync.sync.link_registry import LinkRegistry
from workspace_sync.sync.local_store import SqlLocalStore
from workspace_sync.sync.orchestrator import RecoveryOrchestrator
from workspace_sync.sync.resolution_applier import ResolutionApplier
from workspace_sync.sync.status_store import SyncStatusStore

from builders import FakeRetriever


@pytest.fixture
async def database():
    """Create in-memory database for testing"""
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def status_store(database):
    return SyncStatusStore(database)


@pytest.fixture
def local_store(database, status_store):
    return SqlLocalStore(database, status_store)


@pytest.fixture
def link_registry(database):
    return LinkRegistry(database)


@pytest.fixture
def recovery_config():
    return RecoveryConfig(
        default_missing_strategy=ResolutionStrategy.PREFER_EXTERNAL,
        inter_collection_delay=0,
        revalidate_on_apply=True
    )


@pytest.fixture
def applier(database, local_store, status_store, recovery_config):
    return ResolutionApplier(database, local_store, status_store, recovery_config)


@pytest.fixture
def retriever():
    return FakeRetriever()


@pytest.fixture
def orchestrator(retriever, local_store, status_store, link_registry, applier, recovery_config):
    return RecoveryOrchestrator(
        retriever=retriever,
        local_store=local_store,
        status_store=status_store,
        link_registry=link_registry,
        applier=applier,
        config=recovery_config
    )
