"""
Resolution application

Applies caller decisions to the local store. A batch is validated as a
whole before anything is written; after that every item is applied in its
own transaction so one failing item never aborts the rest.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime

import structlog

from ..database import Database
from ..models.sync_models import (
    ApplyResult, Conflict, ConflictType, LocalRecord, ResolutionChoice, ResolutionStrategy
)
from ..config import RecoveryConfig
from ..utils.error_handling import ErrorContext
from .errors import (
    IncompleteResolutionError, InvalidResolutionError, LocalWriteError, StaleConflictError, SyncError
)
from .conflict_detector import DetectionResult
from .local_store import LocalStore
from .status_store import SyncStatusStore

logger = structlog.get_logger(__name__)


FIELD_STRATEGIES = (ResolutionStrategy.PREFER_LOCAL, ResolutionStrategy.PREFER_EXTERNAL)


class ResolutionApplier:
    """Applies resolution choices and silent updates to the local store"""

    def __init__(self,
                 database: Database,
                 local_store: LocalStore,
                 status_store: SyncStatusStore,
                 config: Optional[RecoveryConfig] = None):
        self.database = database
        self.local_store = local_store
        self.status_store = status_store
        self.config = config or RecoveryConfig()

    async def apply(self,
                    collection: str,
                    conflicts: List[Conflict],
                    choices: List[ResolutionChoice]) -> ApplyResult:
        """Apply a fully decided batch of conflicts

        ``field_choices`` on a ``record`` conflict overwrites only the fields
        marked ``prefer_external``; every field not named keeps its local
        value.

        Args:
            collection: Collection the conflicts belong to
            conflicts: Conflict snapshot returned by the recovery run
            choices: Exactly one choice per conflict

        Returns:
            ApplyResult with applied/skipped/failed counts and per-item errors

        Raises:
            IncompleteResolutionError: choices do not cover each conflict exactly once
            InvalidResolutionError: a choice cannot apply to its conflict
        """
        choices_by_id = self.validate(collection, conflicts, choices)
        result = ApplyResult()

        for conflict in conflicts:
            await self._apply_one(collection, conflict, choices_by_id[conflict.id], result)

        logger.info("Resolutions applied",
                    collection=collection,
                    applied=result.applied,
                    skipped=result.skipped,
                    failed=result.failed)
        return result

    def validate(self,
                 collection: str,
                 conflicts: List[Conflict],
                 choices: List[ResolutionChoice]) -> Dict[str, ResolutionChoice]:
        """Check a batch before any write and index choices by conflict id"""
        conflicts_by_id: Dict[str, Conflict] = {}
        for conflict in conflicts:
            if conflict.id in conflicts_by_id:
                raise InvalidResolutionError(f"Conflict {conflict.id} appears more than once",
                                             conflict_id=conflict.id)
            conflicts_by_id[conflict.id] = conflict

        choices_by_id: Dict[str, ResolutionChoice] = {}
        duplicates: List[str] = []
        unknown: List[str] = []
        for choice in choices:
            if choice.conflict_id in choices_by_id:
                duplicates.append(choice.conflict_id)
            elif choice.conflict_id not in conflicts_by_id:
                unknown.append(choice.conflict_id)
            else:
                choices_by_id[choice.conflict_id] = choice

        missing = [conflict_id for conflict_id in conflicts_by_id if conflict_id not in choices_by_id]
        if missing or duplicates or unknown:
            raise IncompleteResolutionError(
                "Every conflict needs exactly one resolution choice",
                missing_ids=missing,
                context=ErrorContext("validate_resolutions",
                                     collection=collection,
                                     missing=missing,
                                     duplicates=duplicates,
                                     unknown=unknown)
            )

        for conflict_id, conflict in conflicts_by_id.items():
            self._validate_choice(collection, conflict, choices_by_id[conflict_id])

        return choices_by_id

    def _validate_choice(self, collection: str, conflict: Conflict, choice: ResolutionChoice) -> None:
        def invalid(message: str) -> InvalidResolutionError:
            return InvalidResolutionError(
                message,
                conflict_id=conflict.id,
                context=ErrorContext("validate_resolutions", collection=collection, conflict_id=conflict.id)
            )

        if conflict.collection != collection:
            raise invalid(f"Conflict {conflict.id} belongs to collection '{conflict.collection}'")

        if conflict.type == ConflictType.MISSING:
            if choice.strategy == ResolutionStrategy.PREFER_LOCAL:
                raise invalid(f"Conflict {conflict.id} has no local record to prefer")
        elif not conflict.local_id:
            raise invalid(f"Conflict {conflict.id} does not name a local record")

        if conflict.type == ConflictType.FIELD and not conflict.field:
            raise invalid(f"Conflict {conflict.id} does not name a field")

        if not choice.field_choices:
            return

        if conflict.type != ConflictType.RECORD:
            raise invalid(f"field_choices only apply to record conflicts, not {conflict.type.value}")
        if choice.strategy == ResolutionStrategy.SKIP:
            raise invalid(f"Conflict {conflict.id} cannot be skipped and merged at once")

        known_fields = set(conflict.local_value or {}) | set(conflict.external_value or {})
        for name, strategy in choice.field_choices.items():
            if name not in known_fields:
                raise invalid(f"Unknown field '{name}' in field_choices for {conflict.id}")
            if strategy not in FIELD_STRATEGIES:
                raise invalid(f"Field '{name}' must be resolved with prefer_local or prefer_external")

    async def apply_silent(self, collection: str, detection: DetectionResult) -> ApplyResult:
        """Apply external-wins updates and link refreshes that need no arbitration"""
        result = ApplyResult()

        for pair in detection.silent_updates:
            updates = {name: pair.external_fields.get(name) for name in pair.differing_fields}
            await self._apply_pair(collection, pair.external.external_id, pair.local, pair.external.external_id,
                                   updates, pair.external.last_edited_at, result)

        for pair in detection.links:
            await self._apply_pair(collection, pair.external.external_id, pair.local, pair.external.external_id,
                                   {}, pair.external.last_edited_at, result)

        if result.applied or result.failed:
            logger.info("Silent updates applied",
                        collection=collection,
                        applied=result.applied,
                        failed=result.failed)
        return result

    async def _apply_one(self, collection: str, conflict: Conflict,
                         choice: ResolutionChoice, result: ApplyResult) -> None:
        if choice.strategy == ResolutionStrategy.SKIP:
            # No status is written, so the conflict resurfaces on the next run
            result.skipped += 1
            logger.debug("Conflict skipped", collection=collection, conflict_id=conflict.id)
            return

        if conflict.type == ConflictType.MISSING:
            try:
                await self._import_missing(collection, conflict)
                result.applied += 1
            except StaleConflictError as e:
                logger.warning("Stale conflict not applied",
                               collection=collection,
                               conflict_id=conflict.id,
                               error=str(e))
                result.record_failure(conflict.id, e)
            except Exception as e:
                error = self._as_sync_error(e, collection, conflict.id)
                logger.error("Failed to import missing record",
                             collection=collection,
                             conflict_id=conflict.id,
                             error=str(error))
                result.record_failure(conflict.id, error)
            return

        try:
            local = await self._revalidate(collection, conflict)
        except StaleConflictError as e:
            logger.warning("Stale conflict not applied",
                           collection=collection,
                           conflict_id=conflict.id,
                           error=str(e))
            result.record_failure(conflict.id, e)
            return
        except Exception as e:
            error = self._as_sync_error(e, collection, conflict.id)
            logger.error("Failed to load local record",
                         collection=collection,
                         conflict_id=conflict.id,
                         local_id=conflict.local_id,
                         error=str(error))
            result.record_failure(conflict.id, error)
            await self._mark_failed(collection, conflict.local_id, str(error))
            return

        updates = self._field_updates(conflict, choice)
        await self._apply_pair(collection, conflict.id, local, conflict.external_id,
                               updates, conflict.external_timestamp, result)

    async def _import_missing(self, collection: str, conflict: Conflict) -> None:
        fields = dict(conflict.external_value or {})

        async with self.database.transaction() as session:
            existing = await self.local_store.get_by_external_id(
                collection, conflict.external_id, session=session
            )
            if existing is not None:
                raise StaleConflictError(
                    f"Document {conflict.external_id} is already linked to local record {existing.id}",
                    context=ErrorContext("import_missing", collection=collection, conflict_id=conflict.id)
                )

            record = await self.local_store.insert(
                collection, fields, external_id=conflict.external_id, session=session
            )
            await self.status_store.mark_synced(
                collection,
                record.id,
                conflict.external_id,
                local_updated_at=record.updated_at,
                external_edited_at=conflict.external_timestamp,
                session=session
            )

        logger.info("Missing record imported",
                    collection=collection,
                    conflict_id=conflict.id,
                    local_id=record.id)

    async def _apply_pair(self,
                          collection: str,
                          item_id: str,
                          local: LocalRecord,
                          external_id: str,
                          updates: Dict[str, Any],
                          external_edited_at: Optional[datetime],
                          result: ApplyResult) -> None:
        """Write one pair and its status atomically, recording failures per item"""
        try:
            await self.status_store.mark_pending(collection, local.id)

            async with self.database.transaction() as session:
                record = local
                if updates:
                    record = await self.local_store.update(collection, local.id, updates, session=session)
                if record.external_id != external_id:
                    await self.local_store.set_external_id(collection, local.id, external_id, session=session)
                await self.status_store.mark_synced(
                    collection,
                    local.id,
                    external_id,
                    local_updated_at=record.updated_at,
                    external_edited_at=external_edited_at,
                    session=session
                )

            result.applied += 1
            logger.debug("Pair synced",
                         collection=collection,
                         item_id=item_id,
                         local_id=local.id,
                         fields=sorted(updates.keys()))

        except Exception as e:
            error = self._as_sync_error(e, collection, item_id)
            logger.error("Failed to apply resolution",
                         collection=collection,
                         item_id=item_id,
                         local_id=local.id,
                         error=str(error))
            result.record_failure(item_id, error)
            await self._mark_failed(collection, local.id, str(error))

    async def _revalidate(self, collection: str, conflict: Conflict) -> LocalRecord:
        """Re-read the local record and refuse snapshots it has moved past"""
        local = await self.local_store.get(collection, conflict.local_id)
        if local is None:
            raise StaleConflictError(
                f"Local record {conflict.local_id} no longer exists",
                context=ErrorContext("revalidate", collection=collection, conflict_id=conflict.id)
            )

        if (self.config.revalidate_on_apply
                and conflict.local_timestamp is not None
                and local.updated_at > conflict.local_timestamp):
            raise StaleConflictError(
                f"Local record {conflict.local_id} changed after conflict {conflict.id} was detected",
                context=ErrorContext("revalidate", collection=collection, conflict_id=conflict.id)
            )
        return local

    @staticmethod
    def _field_updates(conflict: Conflict, choice: ResolutionChoice) -> Dict[str, Any]:
        """Local field values to overwrite for a record or field conflict"""
        if conflict.type == ConflictType.FIELD:
            if choice.strategy == ResolutionStrategy.PREFER_EXTERNAL:
                return {conflict.field: conflict.external_value}
            return {}

        external_value = conflict.external_value or {}
        if choice.field_choices:
            return {
                name: external_value.get(name)
                for name, strategy in choice.field_choices.items()
                if strategy == ResolutionStrategy.PREFER_EXTERNAL
            }

        if choice.strategy == ResolutionStrategy.PREFER_EXTERNAL:
            return dict(external_value)
        return {}

    async def _mark_failed(self, collection: str, local_id: str, error: str) -> None:
        try:
            await self.status_store.mark_failed(collection, local_id, error)
        except Exception as e:
            logger.error("Failed to record sync failure",
                         collection=collection,
                         local_id=local_id,
                         error=str(e))

    @staticmethod
    def _as_sync_error(error: Exception, collection: str, item_id: str) -> SyncError:
        if isinstance(error, SyncError):
            return error
        return LocalWriteError(
            f"Local write failed: {error}",
            context=ErrorContext("apply_resolution", collection=collection, item_id=item_id)
        )
