"""
Tests for pagination and retry utilities
"""

import asyncio

import pytest

from workspace_sync.models.sync_models import Page
from workspace_sync.sync.errors import RetrievalCancelledError, RetrievalError
from workspace_sync.utils.pagination import iterate_pages
from workspace_sync.utils.retry import RetryConfig, calculate_delay, retry_call_async

from builders import FakeRetriever, document, task_properties


async def collect(fetch_page, external_id="db-1", cancel_event=None):
    return [page async for page in iterate_pages(fetch_page, external_id, cancel_event)]


class TestIteratePages:
    """Cursor-driven page iteration"""

    @pytest.mark.asyncio
    async def test_follows_cursor_until_exhausted(self):
        retriever = FakeRetriever()
        retriever.set_documents(
            "db-1",
            [document("ext-1", task_properties("One"))],
            [document("ext-2", task_properties("Two"))],
            [],
        )

        pages = await collect(retriever.fetch_page)

        assert len(pages) == 3
        assert retriever.calls == [("db-1", None), ("db-1", "cursor-1"), ("db-1", "cursor-2")]

    @pytest.mark.asyncio
    async def test_repeated_cursor_raises(self):
        async def fetch_page(external_id, cursor):
            return Page(documents=[], next_cursor="same")

        with pytest.raises(RetrievalError):
            await collect(fetch_page)

    @pytest.mark.asyncio
    async def test_cancel_between_pages(self):
        """Cancellation is checked before each page request"""
        cancel_event = asyncio.Event()
        calls = []

        async def fetch_page(external_id, cursor):
            calls.append(cursor)
            cancel_event.set()
            return Page(documents=[], next_cursor=f"next-{len(calls)}")

        with pytest.raises(RetrievalCancelledError):
            await collect(fetch_page, cancel_event=cancel_event)

        assert calls == [None]


class TestRetry:
    """Backoff and retry"""

    def test_retry_after_overrides_backoff(self):
        config = RetryConfig(base_delay=1.0, max_delay=10.0, jitter=False)

        assert calculate_delay(1, config, retry_after=3) == 3.0
        assert calculate_delay(1, config, retry_after=120) == 10.0

    def test_exponential_backoff_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)

        assert calculate_delay(1, config) == 1.0
        assert calculate_delay(3, config) == 4.0
        assert calculate_delay(10, config) == 5.0

    @pytest.mark.asyncio
    async def test_retry_call_async_retries_listed_exceptions(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("reset")
            return "ok"

        config = RetryConfig(max_attempts=3, base_delay=0, jitter=False, exceptions=(ConnectionError,))

        assert await retry_call_async(flaky, config=config) == "ok"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_other_exceptions_not_retried(self):
        attempts = []

        async def broken():
            attempts.append(1)
            raise ValueError("bad")

        config = RetryConfig(max_attempts=3, base_delay=0, exceptions=(ConnectionError,))

        with pytest.raises(ValueError):
            await retry_call_async(broken, config=config)
        assert len(attempts) == 1
