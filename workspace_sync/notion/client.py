"""
Notion API client
Paginated database queries and page writes with pacing and retries
"""

import os
import asyncio
import time
from typing import Any, Dict, Optional

import httpx
import structlog

from ..auth import TokenProvider
from ..models.sync_models import ExternalDocument, Page
from ..sync.errors import AuthExpiredError, ExternalNotFoundError, RetrievalError
from ..utils.error_handling import ErrorContext
from ..utils.retry import RetryConfig, retry_call_async
from ..utils.time_utils import parse_timestamp, utc_now

logger = structlog.get_logger(__name__)


class NotionClientConfig:
    """Configuration for the Notion API client"""

    def __init__(self):
        self.base_url = os.getenv("NOTION_BASE_URL", "https://api.notion.com/v1")
        self.notion_version = os.getenv("NOTION_VERSION", "2022-06-28")
        self.page_size = min(int(os.getenv("NOTION_PAGE_SIZE", "100")), 100)
        self.min_request_interval = float(os.getenv("NOTION_MIN_REQUEST_INTERVAL", "0.333"))
        self.timeout = float(os.getenv("NOTION_TIMEOUT", "30.0"))

        # Request settings
        self.max_retries = int(os.getenv("NOTION_MAX_RETRIES", "3"))
        self.base_delay = float(os.getenv("NOTION_BACKOFF_BASE", "1.0"))
        self.max_delay = float(os.getenv("NOTION_BACKOFF_MAX", "60.0"))

        logger.info("Notion client configuration loaded",
                    base_url=self.base_url,
                    notion_version=self.notion_version,
                    page_size=self.page_size,
                    max_retries=self.max_retries)


class NotionAPIError(Exception):
    """Base Notion API error"""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotionRateLimitError(NotionAPIError):
    """Rate limit exceeded error"""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class NotionServerError(NotionAPIError):
    """Server error (5xx)"""
    pass


RETRYABLE_ERRORS = (NotionRateLimitError, NotionServerError, httpx.TransportError)


class NotionWorkspaceClient:
    """Retrieval and write collaborator over the Notion REST API"""

    def __init__(self,
                 token_provider: TokenProvider,
                 config: Optional[NotionClientConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token_provider = token_provider
        self.config = config or NotionClientConfig()
        self.retry_config = RetryConfig(
            max_attempts=self.config.max_retries + 1,
            base_delay=self.config.base_delay,
            max_delay=self.config.max_delay,
            exceptions=RETRYABLE_ERRORS
        )
        self.rate_limit_hits = 0

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()
        self._pace_lock = asyncio.Lock()
        self._last_request_at: Optional[float] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client"""
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    timeout = httpx.Timeout(
                        connect=10.0,
                        read=self.config.timeout,
                        write=10.0,
                        pool=2.0
                    )
                    self._client = httpx.AsyncClient(
                        base_url=self.config.base_url,
                        timeout=timeout,
                        transport=self._transport,
                        headers={
                            "Accept": "application/json",
                            "Notion-Version": self.config.notion_version,
                            "User-Agent": "WorkspaceSync/1.0"
                        }
                    )
                    logger.info("HTTP client created", base_url=self.config.base_url)

        return self._client

    async def close(self) -> None:
        """Close HTTP client and cleanup resources"""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("HTTP client closed")

    async def fetch_page(self, database_id: str, cursor: Optional[str] = None) -> Page:
        """Query one page of a database

        Archived pages are dropped. ``next_cursor`` is None on the last page.
        """
        body: Dict[str, Any] = {"page_size": self.config.page_size}
        if cursor:
            body["start_cursor"] = cursor

        hits_before = self.rate_limit_hits
        data = await self.request("POST", f"/databases/{database_id}/query", json=body,
                                  resource=database_id)

        results = data.get("results") or []
        documents = [
            self._to_document(item) for item in results
            if not item.get("archived") and not item.get("in_trash")
        ]
        if len(documents) != len(results):
            logger.debug("Archived pages dropped",
                         database_id=database_id,
                         dropped=len(results) - len(documents))

        next_cursor = data.get("next_cursor") if data.get("has_more") else None
        return Page(
            documents=documents,
            next_cursor=next_cursor,
            rate_limit_hits=self.rate_limit_hits - hits_before
        )

    async def upsert_document(self,
                              database_id: str,
                              external_id: Optional[str],
                              properties: Dict[str, Any]) -> str:
        """Update a page, or create one in the database when ``external_id`` is None

        Returns:
            Id of the written page
        """
        if external_id:
            data = await self.request("PATCH", f"/pages/{external_id}",
                                      json={"properties": properties},
                                      resource=external_id)
        else:
            data = await self.request("POST", "/pages",
                                      json={"parent": {"database_id": database_id}, "properties": properties},
                                      resource=database_id)

        page_id = data.get("id")
        if not page_id:
            raise RetrievalError(
                "Notion response did not contain a page id",
                context=ErrorContext("upsert_document", database_id=database_id)
            )

        logger.info("Notion page written", database_id=database_id, page_id=page_id,
                    created=external_id is None)
        return page_id

    async def request(self,
                      method: str,
                      path: str,
                      json: Optional[Dict[str, Any]] = None,
                      resource: Optional[str] = None) -> Dict[str, Any]:
        """Send an authenticated request, retrying rate limits and transient failures

        Raises:
            AuthExpiredError: credential missing or rejected
            ExternalNotFoundError: resource does not exist or is not shared
            RetrievalError: any other failure, after retries
        """
        try:
            return await retry_call_async(self._send, method, path, json, resource,
                                          config=self.retry_config)
        except NotionAPIError as e:
            raise RetrievalError(
                f"Notion request failed: {e}",
                context=ErrorContext("notion_request", method=method, path=path,
                                     status_code=e.status_code)
            ) from e
        except httpx.HTTPError as e:
            raise RetrievalError(
                f"Notion request failed: {e}",
                context=ErrorContext("notion_request", method=method, path=path)
            ) from e

    async def _send(self, method: str, path: str, json: Optional[Dict[str, Any]],
                    resource: Optional[str]) -> Dict[str, Any]:
        client = await self._get_client()
        token = await self.token_provider.get_access_token()

        await self._pace()
        response = await client.request(
            method,
            path,
            json=json,
            headers={"Authorization": f"Bearer {token}"}
        )
        return self._handle_response(response, path, resource)

    async def _pace(self) -> None:
        """Keep the minimum spacing between consecutive requests"""
        async with self._pace_lock:
            if self._last_request_at is not None:
                wait = self.config.min_request_interval - (time.monotonic() - self._last_request_at)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_request_at = time.monotonic()

    def _handle_response(self, response: httpx.Response, path: str,
                         resource: Optional[str]) -> Dict[str, Any]:
        """Handle HTTP response and convert to appropriate exception if needed"""
        if 200 <= response.status_code < 300:
            try:
                return response.json()
            except ValueError:
                logger.warning("Failed to parse JSON response",
                               status_code=response.status_code,
                               content=response.text[:200])
                return {}

        message = self._error_message(response)

        if response.status_code == 429:
            self.rate_limit_hits += 1
            retry_after = self._retry_after(response)
            logger.warning("Notion rate limit hit", path=path, retry_after=retry_after)
            raise NotionRateLimitError(f"Rate limit exceeded: {message}", retry_after=retry_after)

        if response.status_code == 401:
            raise AuthExpiredError(context=ErrorContext("notion_request", path=path))

        if response.status_code == 404:
            raise ExternalNotFoundError(
                f"Notion resource {resource or path} not found or not shared with the integration",
                context=ErrorContext("notion_request", path=path)
            )

        if response.status_code >= 500:
            raise NotionServerError(f"Server error {response.status_code}: {message}",
                                    status_code=response.status_code)

        raise NotionAPIError(f"Client error {response.status_code}: {message}",
                             status_code=response.status_code)

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        value = response.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(data, dict):
            return data.get("message") or data.get("code") or response.reason_phrase
        return response.reason_phrase

    @staticmethod
    def _to_document(item: Dict[str, Any]) -> ExternalDocument:
        created_at = parse_timestamp(item.get("created_time"))
        return ExternalDocument(
            external_id=item["id"],
            properties=item.get("properties") or {},
            last_edited_at=parse_timestamp(item.get("last_edited_time")) or created_at or utc_now(),
            created_at=created_at,
            archived=bool(item.get("archived")),
            url=item.get("url"),
        )
