"""
Local system of record access
"""

from typing import Any, Dict, List, Optional, Protocol
from datetime import datetime
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ..database import Database, DatabaseError, LocalRecordModel
from ..models.sync_models import LocalRecord
from ..utils.time_utils import utc_now, ensure_utc
from .status_store import SyncStatusStore

logger = structlog.get_logger(__name__)


class LocalStore(Protocol):
    """Contract the reconciliation engine needs from the local store

    ``session`` lets the caller group a data write with its status update
    into one transaction. Stores that are not SQL backed may ignore it.
    """

    async def get_by_collection(self, collection: str,
                                session: Optional[AsyncSession] = None) -> List[LocalRecord]:
        ...

    async def get(self, collection: str, record_id: str,
                  session: Optional[AsyncSession] = None) -> Optional[LocalRecord]:
        ...

    async def get_by_external_id(self, collection: str, external_id: str,
                                 session: Optional[AsyncSession] = None) -> Optional[LocalRecord]:
        ...

    async def insert(self, collection: str, fields: Dict[str, Any],
                     external_id: Optional[str] = None,
                     session: Optional[AsyncSession] = None) -> LocalRecord:
        ...

    async def update(self, collection: str, record_id: str, fields: Dict[str, Any],
                     session: Optional[AsyncSession] = None) -> LocalRecord:
        ...

    async def set_external_id(self, collection: str, record_id: str, external_id: str,
                              session: Optional[AsyncSession] = None) -> None:
        ...

    async def count(self, collection: str, session: Optional[AsyncSession] = None) -> int:
        ...


class SqlLocalStore:
    """SQLAlchemy backed local store"""

    def __init__(self, database: Database, status_store: Optional[SyncStatusStore] = None):
        self.database = database
        self.status_store = status_store

    async def get_by_collection(self, collection: str,
                                session: Optional[AsyncSession] = None) -> List[LocalRecord]:
        """Get all records of a collection, oldest first"""
        try:
            async with self.database.transaction(session) as s:
                result = await s.execute(
                    select(LocalRecordModel)
                    .where(LocalRecordModel.collection == collection)
                    .order_by(LocalRecordModel.created_at, LocalRecordModel.id)
                )
                return [self._to_record(row) for row in result.scalars().all()]
        except Exception as e:
            logger.error("Error getting local records", collection=collection, error=str(e))
            raise DatabaseError(f"Local records retrieval failed: {str(e)}")

    async def get(self, collection: str, record_id: str,
                  session: Optional[AsyncSession] = None) -> Optional[LocalRecord]:
        async with self.database.transaction(session) as s:
            row = await self._load(s, collection, record_id)
            return self._to_record(row) if row else None

    async def get_by_external_id(self, collection: str, external_id: str,
                                 session: Optional[AsyncSession] = None) -> Optional[LocalRecord]:
        """Get the oldest record linked to an external document"""
        async with self.database.transaction(session) as s:
            result = await s.execute(
                select(LocalRecordModel)
                .where(
                    LocalRecordModel.collection == collection,
                    LocalRecordModel.external_id == external_id
                )
                .order_by(LocalRecordModel.created_at, LocalRecordModel.id)
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return self._to_record(row) if row else None

    async def count(self, collection: str, session: Optional[AsyncSession] = None) -> int:
        async with self.database.transaction(session) as s:
            result = await s.execute(
                select(func.count())
                .select_from(LocalRecordModel)
                .where(LocalRecordModel.collection == collection)
            )
            return result.scalar_one()

    async def insert(self,
                     collection: str,
                     fields: Dict[str, Any],
                     external_id: Optional[str] = None,
                     record_id: Optional[str] = None,
                     created_at: Optional[datetime] = None,
                     updated_at: Optional[datetime] = None,
                     session: Optional[AsyncSession] = None) -> LocalRecord:
        """Insert a new record

        Args:
            collection: Collection name
            fields: Field values
            external_id: Linked external document id, if already known
            record_id: Explicit id (generated when omitted)
            created_at: Creation time (now when omitted)
            updated_at: Last modification time (now when omitted)

        Returns:
            The stored record
        """
        now = utc_now()
        row = LocalRecordModel(
            id=record_id or str(uuid.uuid4()),
            collection=collection,
            fields=dict(fields),
            external_id=external_id,
            created_at=ensure_utc(created_at) or now,
            updated_at=ensure_utc(updated_at) or now,
        )

        async with self.database.transaction(session) as s:
            s.add(row)
            await s.flush()

        logger.debug("Local record inserted", collection=collection, record_id=row.id)
        return self._to_record(row)

    async def update(self,
                     collection: str,
                     record_id: str,
                     fields: Dict[str, Any],
                     updated_at: Optional[datetime] = None,
                     session: Optional[AsyncSession] = None) -> LocalRecord:
        """Merge ``fields`` into an existing record and bump ``updated_at``"""
        async with self.database.transaction(session) as s:
            row = await self._load(s, collection, record_id)
            if row is None:
                raise DatabaseError(f"Local record {record_id} not found in {collection}")

            merged = dict(row.fields or {})
            merged.update(fields)
            # Reassign so the JSON column is flagged dirty
            row.fields = merged
            row.updated_at = ensure_utc(updated_at) or utc_now()
            await s.flush()

            logger.debug("Local record updated",
                         collection=collection,
                         record_id=record_id,
                         fields=sorted(fields.keys()))
            return self._to_record(row)

    async def set_external_id(self, collection: str, record_id: str, external_id: str,
                              session: Optional[AsyncSession] = None) -> None:
        """Attach the external document id without touching ``updated_at``"""
        async with self.database.transaction(session) as s:
            row = await self._load(s, collection, record_id)
            if row is None:
                raise DatabaseError(f"Local record {record_id} not found in {collection}")
            row.external_id = external_id

    async def delete(self, collection: str, record_id: str,
                     session: Optional[AsyncSession] = None) -> bool:
        """Delete a record together with its sync status"""
        async with self.database.transaction(session) as s:
            row = await self._load(s, collection, record_id)
            if row is None:
                return False

            await s.delete(row)
            if self.status_store:
                await self.status_store.delete_for_record(collection, record_id, session=s)

            logger.info("Local record deleted", collection=collection, record_id=record_id)
            return True

    async def _load(self, session: AsyncSession, collection: str,
                    record_id: str) -> Optional[LocalRecordModel]:
        result = await session.execute(
            select(LocalRecordModel).where(
                LocalRecordModel.collection == collection,
                LocalRecordModel.id == record_id
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _to_record(row: LocalRecordModel) -> LocalRecord:
        return LocalRecord(
            id=row.id,
            collection=row.collection,
            fields=dict(row.fields or {}),
            external_id=row.external_id,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )
