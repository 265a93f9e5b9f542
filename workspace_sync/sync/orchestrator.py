"""
Recovery orchestration

Ties retrieval, matching, detection and resolution into one run per
collection. The orchestrator keeps no state between calls: conflicts are
handed to the caller, who sends them back with its choices.
"""

import asyncio
from typing import Iterable, List, Optional, Protocol, Tuple

import structlog

from ..config import RecoveryConfig
from ..models.sync_models import (
    ApplyResult, CollectionAssessment, Conflict, ConflictType, ExternalDocument, Page,
    RecoverAllResult, RecoveryRun, ResolutionChoice, RunStatus, SyncState
)
from ..utils.error_handling import ErrorContext
from ..utils.pagination import iterate_pages
from ..utils.time_utils import utc_now
from .conflict_detector import ConflictDetector
from .errors import (
    AuthExpiredError, ExternalNotFoundError, InvalidTransitionError, RetrievalCancelledError, RetrievalError
)
from .link_registry import LinkRegistry
from .local_store import LocalStore
from .matcher import RecordMatcher
from .resolution_applier import ResolutionApplier
from .schemas import get_schema, supported_collections
from .status_store import SyncStatusStore

logger = structlog.get_logger(__name__)


RUN_TRANSITIONS = {
    RunStatus.RETRIEVING: {RunStatus.AWAITING_RESOLUTION, RunStatus.COMPLETE, RunStatus.FAILED},
    RunStatus.AWAITING_RESOLUTION: {RunStatus.COMPLETE, RunStatus.FAILED},
    RunStatus.COMPLETE: set(),
    RunStatus.FAILED: set(),
}


class DocumentRetriever(Protocol):
    """External retrieval collaborator"""

    async def fetch_page(self, external_id: str, cursor: Optional[str]) -> Page:
        ...


class RecoveryOrchestrator:
    """Runs recovery for one collection or for all of them in sequence"""

    def __init__(self,
                 retriever: DocumentRetriever,
                 local_store: LocalStore,
                 status_store: SyncStatusStore,
                 link_registry: LinkRegistry,
                 applier: ResolutionApplier,
                 config: Optional[RecoveryConfig] = None,
                 matcher: Optional[RecordMatcher] = None,
                 detector: Optional[ConflictDetector] = None):
        self.retriever = retriever
        self.local_store = local_store
        self.status_store = status_store
        self.link_registry = link_registry
        self.applier = applier
        self.config = config or RecoveryConfig()
        self.matcher = matcher or RecordMatcher()
        self.detector = detector or ConflictDetector()

    async def start_recovery(self,
                             collection: str,
                             auto_resolve: bool = False,
                             cancel_event: Optional[asyncio.Event] = None) -> RecoveryRun:
        """Retrieve, match and detect for one collection

        Silent external-wins updates and link refreshes are applied right
        away. With ``auto_resolve`` and no edit conflicts, missing documents
        are resolved with the configured default strategy and the run
        completes; otherwise it waits for the caller's resolutions.

        Args:
            collection: Collection to recover
            auto_resolve: Resolve missing-only batches without the caller
            cancel_event: Set to abort retrieval between pages

        Returns:
            RecoveryRun in ``complete``, ``awaiting_resolution`` or ``failed``

        Raises:
            ExternalNotFoundError: collection is not linked or its database is gone
            AuthExpiredError: external credentials must be renewed
            RetrievalCancelledError: retrieval was cancelled
        """
        schema = get_schema(collection)
        run = RecoveryRun(collection=collection)
        logger.info("Recovery run started",
                    collection=collection,
                    run_id=run.run_id,
                    auto_resolve=auto_resolve)

        external_database_id = await self.link_registry.require(collection)

        try:
            documents, run.rate_limit_hits = await self._retrieve(external_database_id, cancel_event)
        except (AuthExpiredError, ExternalNotFoundError, RetrievalCancelledError) as e:
            self._fail(run, e)
            raise
        except RetrievalError as e:
            # Partial page sets are never matched
            self._fail(run, e)
            return run

        try:
            local_records = await self.local_store.get_by_collection(collection)
            statuses = await self.status_store.list_for_collection(collection)

            match_result = self.matcher.match(schema, documents, local_records, statuses)
            detection = self.detector.detect(schema, match_result, statuses)

            run.retrieved_count = match_result.document_count
            run.matched_count = len(match_result.matched_pairs)
            run.new_count = len(match_result.unmatched)
            run.conflict_count = len(detection.conflicts)
            run.missing_count = detection.count(ConflictType.MISSING)
            run.record_conflict_count = detection.count(ConflictType.RECORD)
            run.field_conflict_count = detection.count(ConflictType.FIELD)

            run.apply_result = await self.applier.apply_silent(collection, detection)
            run.auto_applied_count = run.apply_result.applied

            target = RunStatus.COMPLETE
            if auto_resolve and detection.conflicts and not detection.has_edit_conflicts:
                resolved = await self._auto_resolve_missing(collection, detection.conflicts)
                run.apply_result.merge(resolved)
            elif detection.conflicts:
                run.conflicts = list(detection.conflicts)
                target = RunStatus.AWAITING_RESOLUTION

            run.apply_result.status_counts = await self.status_store.count_by_state(collection)
            self._transition(run, target)

        except Exception as e:
            logger.error("Recovery run failed", collection=collection, run_id=run.run_id, error=str(e))
            self._fail(run, e)
            raise

        logger.info("Recovery run finished",
                    collection=collection,
                    run_id=run.run_id,
                    status=run.status.value,
                    retrieved=run.retrieved_count,
                    matched=run.matched_count,
                    new=run.new_count,
                    conflicts=run.conflict_count,
                    auto_applied=run.auto_applied_count)
        return run

    async def submit_resolutions(self,
                                 collection: str,
                                 conflicts: List[Conflict],
                                 choices: List[ResolutionChoice]) -> ApplyResult:
        """Apply the caller's choices and report the collection's status counts"""
        result = await self.applier.apply(collection, conflicts, choices)
        result.status_counts = await self.status_store.count_by_state(collection)

        logger.info("Resolutions submitted",
                    collection=collection,
                    applied=result.applied,
                    skipped=result.skipped,
                    failed=result.failed,
                    status_counts=result.status_counts)
        return result

    async def recover_all(self,
                          collections: Optional[Iterable[str]] = None,
                          auto_resolve: bool = True) -> RecoverAllResult:
        """Recover collections one after another

        Unlinked collections are skipped and failing ones recorded; neither
        stops the loop. Expired credentials stop it and propagate.
        """
        names = list(collections) if collections is not None else list(supported_collections())
        result = RecoverAllResult()

        for index, collection in enumerate(names):
            if index > 0 and self.config.inter_collection_delay > 0:
                await asyncio.sleep(self.config.inter_collection_delay)

            try:
                run = await self.start_recovery(collection, auto_resolve=auto_resolve)
            except AuthExpiredError:
                logger.error("Recover all aborted, reconnect required", collection=collection)
                raise
            except ExternalNotFoundError as e:
                logger.info("Collection skipped", collection=collection, reason=str(e))
                result.skipped[collection] = str(e)
                continue
            except Exception as e:
                logger.error("Collection recovery failed", collection=collection, error=str(e))
                result.failed[collection] = str(e)
                continue

            result.runs[collection] = run
            if run.status == RunStatus.FAILED:
                result.failed[collection] = run.error or "Recovery failed"
            else:
                result.succeeded.append(collection)

        logger.info("Recover all completed",
                    succeeded=len(result.succeeded),
                    failed=len(result.failed),
                    skipped=len(result.skipped))
        return result

    async def assess_recovery_needs(self,
                                    collections: Optional[Iterable[str]] = None) -> List[CollectionAssessment]:
        """Flag linked collections that look like they lost data"""
        links = await self.link_registry.list_links()
        if collections is None:
            names = list(supported_collections())
            names.extend(name for name in links if name not in names)
        else:
            names = list(collections)

        assessments = []
        for collection in names:
            assessment = CollectionAssessment(
                collection=collection,
                linked=collection in links,
                external_database_id=links.get(collection),
            )

            if assessment.linked:
                assessment.local_count = await self.local_store.count(collection)
                counts = await self.status_store.count_by_state(collection)
                assessment.failed_count = counts.get(SyncState.FAILED.value, 0)

                if assessment.local_count == 0:
                    assessment.needs_recovery = True
                    assessment.reason = "no local records"
                elif assessment.failed_count > 0:
                    assessment.needs_recovery = True
                    assessment.reason = "has failed syncs"

            assessments.append(assessment)

        return assessments

    async def _retrieve(self, external_database_id: str,
                        cancel_event: Optional[asyncio.Event]) -> Tuple[List[ExternalDocument], int]:
        documents: List[ExternalDocument] = []
        rate_limit_hits = 0
        async for page in iterate_pages(self.retriever.fetch_page, external_database_id, cancel_event):
            documents.extend(page.documents)
            rate_limit_hits += page.rate_limit_hits
        return documents, rate_limit_hits

    async def _auto_resolve_missing(self, collection: str, conflicts: List[Conflict]) -> ApplyResult:
        strategy = self.config.default_missing_strategy
        choices = [ResolutionChoice(conflict_id=conflict.id, strategy=strategy) for conflict in conflicts]

        logger.info("Auto-resolving missing records",
                    collection=collection,
                    count=len(conflicts),
                    strategy=strategy.value)
        return await self.applier.apply(collection, conflicts, choices)

    def _transition(self, run: RecoveryRun, target: RunStatus) -> None:
        if target not in RUN_TRANSITIONS[run.status]:
            raise InvalidTransitionError(
                f"Recovery run cannot move from {run.status.value} to {target.value}",
                context=ErrorContext("recovery_run", collection=run.collection, run_id=run.run_id)
            )

        logger.debug("Recovery run transition",
                     collection=run.collection,
                     run_id=run.run_id,
                     from_status=run.status.value,
                     to_status=target.value)
        run.status = target
        if target in (RunStatus.COMPLETE, RunStatus.FAILED):
            run.completed_at = utc_now()

    def _fail(self, run: RecoveryRun, error: Exception) -> None:
        run.error = str(error)
        if run.status != RunStatus.FAILED:
            self._transition(run, RunStatus.FAILED)
