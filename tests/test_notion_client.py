"""
Tests for the Notion API client
"""

import json

import httpx
import pytest

from workspace_sync.auth import StaticTokenProvider
from workspace_sync.notion.client import NotionClientConfig, NotionWorkspaceClient
from workspace_sync.sync.errors import AuthExpiredError, ExternalNotFoundError, RetrievalError

from builders import notion_page, task_properties


def make_client(handler, token="secret-token"):
    config = NotionClientConfig()
    config.min_request_interval = 0
    config.base_delay = 0
    config.max_delay = 0
    config.max_retries = 3
    return NotionWorkspaceClient(StaticTokenProvider(token), config=config,
                                 transport=httpx.MockTransport(handler))


def query_response(pages, next_cursor=None):
    return httpx.Response(200, json={
        "object": "list",
        "results": pages,
        "next_cursor": next_cursor,
        "has_more": next_cursor is not None,
    })


class TestFetchPage:
    """Database queries"""

    @pytest.mark.asyncio
    async def test_fetch_page_converts_documents(self):
        requests = []

        def handler(request):
            requests.append(request)
            return query_response([notion_page("page-1", task_properties("Task"))], next_cursor="abc")

        client = make_client(handler)
        page = await client.fetch_page("db-1", None)
        await client.close()

        assert page.next_cursor == "abc"
        assert len(page.documents) == 1
        doc = page.documents[0]
        assert doc.external_id == "page-1"
        assert doc.last_edited_at.year == 2024
        assert doc.properties["Title"]["title"][0]["plain_text"] == "Task"

        request = requests[0]
        assert request.method == "POST"
        assert request.url.path.endswith("/databases/db-1/query")
        assert request.headers["Authorization"] == "Bearer secret-token"
        assert request.headers["Notion-Version"]
        assert json.loads(request.content) == {"page_size": 100}

    @pytest.mark.asyncio
    async def test_cursor_sent_and_last_page_has_no_cursor(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"results": [], "next_cursor": "stale", "has_more": False})

        client = make_client(handler)
        page = await client.fetch_page("db-1", "cursor-1")
        await client.close()

        assert bodies[0]["start_cursor"] == "cursor-1"
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_archived_pages_dropped(self):
        def handler(request):
            return query_response([
                notion_page("page-1", task_properties("Kept")),
                notion_page("page-2", task_properties("Archived"), archived=True),
            ])

        client = make_client(handler)
        page = await client.fetch_page("db-1", None)
        await client.close()

        assert [d.external_id for d in page.documents] == ["page-1"]


class TestErrorHandling:
    """Status codes, retries and credentials"""

    @pytest.mark.asyncio
    async def test_rate_limit_retried_and_counted(self):
        """429 responses are retried and reported as rate limit hits"""
        responses = [
            httpx.Response(429, headers={"Retry-After": "0"}, json={"message": "slow down"}),
            query_response([notion_page("page-1", task_properties("Task"))]),
        ]

        def handler(request):
            return responses.pop(0)

        client = make_client(handler)
        page = await client.fetch_page("db-1", None)
        await client.close()

        assert page.rate_limit_hits == 1
        assert client.rate_limit_hits == 1
        assert len(page.documents) == 1

    @pytest.mark.asyncio
    async def test_server_errors_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, json={"message": "unavailable"})
            return query_response([])

        client = make_client(handler)
        page = await client.fetch_page("db-1", None)
        await client.close()

        assert len(calls) == 3
        assert page.documents == []

    @pytest.mark.asyncio
    async def test_retries_exhausted_raise_retrieval_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, json={"message": "internal"})

        client = make_client(handler)
        with pytest.raises(RetrievalError):
            await client.fetch_page("db-1", None)
        await client.close()

        assert len(calls) == 4

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"message": "bad filter"})

        client = make_client(handler)
        with pytest.raises(RetrievalError) as exc_info:
            await client.fetch_page("db-1", None)
        await client.close()

        assert len(calls) == 1
        assert "bad filter" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unauthorized_raises_auth_expired(self):
        def handler(request):
            return httpx.Response(401, json={"message": "API token is invalid."})

        client = make_client(handler)
        with pytest.raises(AuthExpiredError):
            await client.fetch_page("db-1", None)
        await client.close()

    @pytest.mark.asyncio
    async def test_not_found_raises_external_not_found(self):
        def handler(request):
            return httpx.Response(404, json={"message": "Could not find database"})

        client = make_client(handler)
        with pytest.raises(ExternalNotFoundError):
            await client.fetch_page("db-1", None)
        await client.close()

    @pytest.mark.asyncio
    async def test_missing_token_raises_auth_expired(self):
        def handler(request):
            return query_response([])

        client = make_client(handler, token="")
        with pytest.raises(AuthExpiredError):
            await client.fetch_page("db-1", None)
        await client.close()


class TestUpsertDocument:
    """Page writes"""

    @pytest.mark.asyncio
    async def test_update_existing_page(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"id": "page-1"})

        client = make_client(handler)
        properties = {"Title": {"title": [{"type": "text", "text": {"content": "Task"}}]}}
        page_id = await client.upsert_document("db-1", "page-1", properties)
        await client.close()

        assert page_id == "page-1"
        assert requests[0].method == "PATCH"
        assert requests[0].url.path.endswith("/pages/page-1")
        assert json.loads(requests[0].content) == {"properties": properties}

    @pytest.mark.asyncio
    async def test_create_page_in_database(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"id": "page-new"})

        client = make_client(handler)
        page_id = await client.upsert_document("db-1", None, {})
        await client.close()

        assert page_id == "page-new"
        assert requests[0].method == "POST"
        assert json.loads(requests[0].content)["parent"] == {"database_id": "db-1"}
