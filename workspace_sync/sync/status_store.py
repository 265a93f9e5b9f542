"""
Per-record sync status ledger

One SyncStatus per (collection, local record). States move
unsynced -> pending -> synced | failed. A record only re-enters synced
through a new pending attempt, and nothing moves back to unsynced.
"""

from typing import Dict, Optional
from datetime import datetime

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ..database import Database, DatabaseError, SyncStatusModel
from ..models.sync_models import SyncState, SyncStatus
from ..utils.error_handling import ErrorContext
from ..utils.time_utils import utc_now, ensure_utc
from .errors import InvalidTransitionError

logger = structlog.get_logger(__name__)


# Allowed transitions keyed by current state
ALLOWED_TRANSITIONS = {
    SyncState.UNSYNCED: {SyncState.PENDING, SyncState.SYNCED, SyncState.FAILED},
    # pending again after an interrupted attempt
    SyncState.PENDING: {SyncState.PENDING, SyncState.SYNCED, SyncState.FAILED},
    SyncState.SYNCED: {SyncState.PENDING, SyncState.FAILED},
    SyncState.FAILED: {SyncState.PENDING, SyncState.FAILED},
}


class SyncStatusStore:
    """SyncStatus persistence and state machine enforcement"""

    def __init__(self, database: Database):
        self.database = database

    async def get(self, collection: str, local_id: str,
                  session: Optional[AsyncSession] = None) -> Optional[SyncStatus]:
        """Get the status for one record, or None when it was never synced"""
        async with self.database.transaction(session) as s:
            row = await self._load(s, collection, local_id)
            return self._to_status(row) if row else None

    async def list_for_collection(self, collection: str,
                                  session: Optional[AsyncSession] = None) -> Dict[str, SyncStatus]:
        """Get all statuses of a collection keyed by local record id"""
        try:
            async with self.database.transaction(session) as s:
                result = await s.execute(
                    select(SyncStatusModel).where(SyncStatusModel.collection == collection)
                )
                return {row.local_id: self._to_status(row) for row in result.scalars().all()}
        except Exception as e:
            logger.error("Error listing sync statuses", collection=collection, error=str(e))
            raise DatabaseError(f"Sync status retrieval failed: {str(e)}")

    async def mark_pending(self, collection: str, local_id: str,
                           session: Optional[AsyncSession] = None) -> SyncStatus:
        """Record that a sync attempt for this record has started"""
        async with self.database.transaction(session) as s:
            row = await self._transition(s, collection, local_id, SyncState.PENDING)
            row.last_error = None
            return self._to_status(row)

    async def mark_synced(self,
                          collection: str,
                          local_id: str,
                          external_id: str,
                          local_updated_at: Optional[datetime] = None,
                          external_edited_at: Optional[datetime] = None,
                          session: Optional[AsyncSession] = None) -> SyncStatus:
        """Record a successful sync and capture the baseline timestamps

        Args:
            collection: Collection name
            local_id: Local record id
            external_id: Linked external document id (required)
            local_updated_at: Local ``updated_at`` at the moment of sync
            external_edited_at: External ``last_edited_at`` at the moment of sync

        Returns:
            The updated status
        """
        if not external_id:
            raise InvalidTransitionError(
                "A synced record must carry an external id",
                context=ErrorContext("mark_synced", collection=collection, local_id=local_id)
            )

        async with self.database.transaction(session) as s:
            row = await self._transition(s, collection, local_id, SyncState.SYNCED)
            row.external_id = external_id
            row.last_error = None
            row.synced_local_updated_at = ensure_utc(local_updated_at)
            row.synced_external_edited_at = ensure_utc(external_edited_at)

            logger.debug("Record marked synced",
                         collection=collection,
                         local_id=local_id,
                         external_id=external_id)
            return self._to_status(row)

    async def mark_failed(self, collection: str, local_id: str, error: str,
                          session: Optional[AsyncSession] = None) -> SyncStatus:
        """Record a failed sync attempt

        The previous external id and baseline are kept so the next run still
        knows what was last agreed on.
        """
        async with self.database.transaction(session) as s:
            row = await self._transition(s, collection, local_id, SyncState.FAILED)
            row.last_error = error or "Unknown error"

            logger.warning("Record marked failed",
                           collection=collection,
                           local_id=local_id,
                           error=row.last_error)
            return self._to_status(row)

    async def count_by_state(self, collection: str,
                             session: Optional[AsyncSession] = None) -> Dict[str, int]:
        """Count statuses of a collection per state"""
        async with self.database.transaction(session) as s:
            result = await s.execute(
                select(SyncStatusModel.state, func.count())
                .where(SyncStatusModel.collection == collection)
                .group_by(SyncStatusModel.state)
            )
            counts = {state.value: 0 for state in SyncState}
            for state, count in result.all():
                counts[state] = count
            return counts

    async def delete_for_record(self, collection: str, local_id: str,
                                session: Optional[AsyncSession] = None) -> None:
        """Drop the status of a deleted local record"""
        async with self.database.transaction(session) as s:
            await s.execute(
                delete(SyncStatusModel).where(
                    SyncStatusModel.collection == collection,
                    SyncStatusModel.local_id == local_id
                )
            )

    async def _load(self, session: AsyncSession, collection: str,
                    local_id: str) -> Optional[SyncStatusModel]:
        result = await session.execute(
            select(SyncStatusModel).where(
                SyncStatusModel.collection == collection,
                SyncStatusModel.local_id == local_id
            )
        )
        return result.scalar_one_or_none()

    async def _transition(self, session: AsyncSession, collection: str, local_id: str,
                          target: SyncState) -> SyncStatusModel:
        """Load or create the row and move it to ``target``"""
        row = await self._load(session, collection, local_id)
        if row is None:
            row = SyncStatusModel(
                collection=collection,
                local_id=local_id,
                state=SyncState.UNSYNCED.value
            )
            session.add(row)

        current = SyncState(row.state)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Cannot move sync status from {current.value} to {target.value}",
                context=ErrorContext("sync_status_transition",
                                     collection=collection,
                                     local_id=local_id)
            )

        row.state = target.value
        row.updated_at = utc_now()
        return row

    @staticmethod
    def _to_status(row: SyncStatusModel) -> SyncStatus:
        return SyncStatus(
            collection=row.collection,
            local_id=row.local_id,
            state=SyncState(row.state),
            external_id=row.external_id,
            last_error=row.last_error,
            synced_local_updated_at=ensure_utc(row.synced_local_updated_at),
            synced_external_edited_at=ensure_utc(row.synced_external_edited_at),
            updated_at=ensure_utc(row.updated_at),
        )

