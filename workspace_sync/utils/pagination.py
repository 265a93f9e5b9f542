"""
Cursor-based pagination helpers
"""

import asyncio
from typing import AsyncIterator, Awaitable, Optional, Protocol

import structlog

from ..models.sync_models import Page
from ..sync.errors import RetrievalCancelledError, RetrievalError
from .error_handling import ErrorContext

logger = structlog.get_logger(__name__)


class PageFetcher(Protocol):
    """Retrieval collaborator: one page of documents per call"""

    def __call__(self, external_id: str, cursor: Optional[str]) -> Awaitable[Page]:
        ...


async def iterate_pages(fetch_page: PageFetcher,
                        external_id: str,
                        cancel_event: Optional[asyncio.Event] = None) -> AsyncIterator[Page]:
    """Yield pages from the first one until the cursor runs out

    Every iteration starts again from a null cursor. A cursor that repeats
    would loop forever and is reported as a RetrievalError.
    """
    cursor: Optional[str] = None
    seen_cursors = set()
    page_number = 0

    while True:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Pagination cancelled", external_id=external_id, pages=page_number)
            raise RetrievalCancelledError(
                context=ErrorContext("iterate_pages", external_id=external_id, pages=page_number)
            )

        page = await fetch_page(external_id, cursor)
        page_number += 1
        yield page

        cursor = page.next_cursor
        if not cursor:
            break

        if cursor in seen_cursors:
            raise RetrievalError(
                f"Pagination cursor repeated after {page_number} pages",
                context=ErrorContext("iterate_pages", external_id=external_id, cursor=cursor)
            )
        seen_cursors.add(cursor)

    logger.debug("Pagination completed", external_id=external_id, pages=page_number)
