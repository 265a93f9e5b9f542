"""
Linked database registry
Maps a local collection to the external database it is synced with.
"""

from typing import Dict, Optional

from sqlalchemy import select
import structlog

from ..database import Database, LinkedDatabaseModel
from ..utils.error_handling import ErrorContext
from ..utils.time_utils import utc_now
from .errors import ExternalNotFoundError

logger = structlog.get_logger(__name__)


class LinkRegistry:
    """Collection to external database id registry"""

    def __init__(self, database: Database):
        self.database = database

    async def link(self, collection: str, external_database_id: str) -> None:
        """Link or relink a collection"""
        async with self.database.transaction() as session:
            row = await session.get(LinkedDatabaseModel, collection)
            if row:
                row.external_database_id = external_database_id
                row.updated_at = utc_now()
            else:
                session.add(LinkedDatabaseModel(
                    collection=collection,
                    external_database_id=external_database_id
                ))

        logger.info("Collection linked",
                    collection=collection,
                    external_database_id=external_database_id)

    async def unlink(self, collection: str) -> bool:
        async with self.database.transaction() as session:
            row = await session.get(LinkedDatabaseModel, collection)
            if row is None:
                return False
            await session.delete(row)

        logger.info("Collection unlinked", collection=collection)
        return True

    async def get(self, collection: str) -> Optional[str]:
        async with self.database.transaction() as session:
            row = await session.get(LinkedDatabaseModel, collection)
            return row.external_database_id if row else None

    async def require(self, collection: str) -> str:
        """Get the linked external database id or raise ExternalNotFoundError"""
        external_database_id = await self.get(collection)
        if not external_database_id:
            raise ExternalNotFoundError(
                f"Collection '{collection}' is not linked to an external database",
                context=ErrorContext("require_link", collection=collection)
            )
        return external_database_id

    async def list_links(self) -> Dict[str, str]:
        async with self.database.transaction() as session:
            result = await session.execute(
                select(LinkedDatabaseModel).order_by(LinkedDatabaseModel.collection)
            )
            return {row.collection: row.external_database_id for row in result.scalars().all()}
