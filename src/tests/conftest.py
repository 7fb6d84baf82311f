"""Shared test configuration utilities and fixtures."""

from unittest.mock import patch

import pytest

from asset_publisher.database import ResourceRepository
from tests.test_utils.fake_store import MemoryObjectStore
from tests.test_utils.publish_helpers import CollectionBuilder


def _no_sleep(seconds):
    """Synchronous sleep stub used to short-circuit tenacity waits in tests."""
    return None


@pytest.fixture(scope="session", autouse=True)
def disable_retry_delays():
    """Disable retry delays globally for all tests to speed up test suite.

    Retries will still happen (testing retry logic), but without wait times.
    Only patches tenacity's internal sleep functions, not asyncio.sleep globally.
    """
    import tenacity

    original_base_run_wait = tenacity.BaseRetrying._run_wait
    original_async_run_wait = tenacity.AsyncRetrying._run_wait

    def _zero_wait(self, retry_state):
        """Invoke original wait logic but force the computed delay to zero."""
        original_base_run_wait(self, retry_state)
        retry_state.upcoming_sleep = 0.0

    async def _zero_wait_async(self, retry_state):
        """Async equivalent that still computes retry metadata without sleeping."""
        await original_async_run_wait(self, retry_state)
        retry_state.upcoming_sleep = 0.0

    with patch("tenacity.nap.sleep", side_effect=_no_sleep):
        with patch.object(tenacity.BaseRetrying, "_run_wait", _zero_wait):
            with patch.object(tenacity.AsyncRetrying, "_run_wait", _zero_wait_async):
                yield


@pytest.fixture
async def repository(tmp_path):
    """Resource repository backed by a temporary SQLite database."""
    repo = ResourceRepository(tmp_path / "resources.db")
    await repo.initialize()
    return repo


@pytest.fixture
def source_store():
    return MemoryObjectStore(backend_name="memory-1")


@pytest.fixture
def target_store(source_store):
    """Target store on the same backend as source_store (sees the same containers)."""
    return MemoryObjectStore(backend_name="memory-1", objects=source_store.objects)


@pytest.fixture
def foreign_store():
    """Target store on a different backend than source_store."""
    return MemoryObjectStore(backend_name="memory-2", protocol="other")


@pytest.fixture
def collection_builder(repository, source_store):
    return CollectionBuilder(repository, source_store)
