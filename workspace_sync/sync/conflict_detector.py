"""
Conflict detection for matched and unmatched documents

Every retrieved document ends up in exactly one place: a conflict, a
silent external-wins update, a link refresh, the local-ahead list or the
settled list.
"""

from typing import Dict, List, Optional
from dataclasses import dataclass, field

import structlog

from ..models.sync_models import (
    Conflict, ConflictType, CONFLICT_TYPE_ORDER, SyncState, SyncStatus
)
from .matcher import MatchResult, MatchedPair
from .schemas import CollectionSchema

logger = structlog.get_logger(__name__)


def missing_conflict_id(external_id: str) -> str:
    return f"missing-{external_id}"


def record_conflict_id(external_id: str) -> str:
    return f"record-{external_id}"


def field_conflict_id(external_id: str, field_name: str) -> str:
    return f"field-{external_id}-{field_name}"


@dataclass
class DetectionResult:
    """Classified outcome of one detection pass"""

    conflicts: List[Conflict] = field(default_factory=list)
    silent_updates: List[MatchedPair] = field(default_factory=list)  # external wins, no local edits
    links: List[MatchedPair] = field(default_factory=list)           # identical, baseline refresh
    local_ahead: List[MatchedPair] = field(default_factory=list)     # local edits only
    settled: List[MatchedPair] = field(default_factory=list)

    def count(self, conflict_type: ConflictType) -> int:
        return sum(1 for conflict in self.conflicts if conflict.type == conflict_type)

    @property
    def has_edit_conflicts(self) -> bool:
        return any(conflict.type != ConflictType.MISSING for conflict in self.conflicts)


class ConflictDetector:
    """Classifies matching results into conflicts and silent updates"""

    def detect(self,
               schema: CollectionSchema,
               match_result: MatchResult,
               statuses: Optional[Dict[str, SyncStatus]] = None) -> DetectionResult:
        """Detect conflicts for one collection

        A pair whose local side has not changed since the last sync while the
        external side has is a silent update, never a conflict. A pair changed
        on both sides (or with no sync baseline) yields a ``field`` conflict
        when one compared field differs and a ``record`` conflict otherwise.

        Args:
            schema: Schema of the collection
            match_result: Output of RecordMatcher.match
            statuses: Sync statuses keyed by local id

        Returns:
            DetectionResult with conflicts ordered missing, record, field
        """
        statuses = statuses or {}
        result = DetectionResult()

        for document in match_result.unmatched:
            result.conflicts.append(Conflict(
                id=missing_conflict_id(document.external_id),
                type=ConflictType.MISSING,
                collection=schema.name,
                external_id=document.external_id,
                external_value=dict(match_result.external_fields.get(document.external_id, {})),
                external_timestamp=document.last_edited_at,
            ))

        for pair in match_result.identical:
            if self._needs_link(pair, statuses.get(pair.local.id)):
                result.links.append(pair)
            else:
                result.settled.append(pair)

        for pair in match_result.divergent:
            self._classify_divergent(schema, pair, statuses.get(pair.local.id), result)

        # Stable sort keeps retrieval order within each group
        result.conflicts.sort(key=lambda conflict: CONFLICT_TYPE_ORDER[conflict.type])

        logger.info("Conflict detection completed",
                    collection=schema.name,
                    missing=result.count(ConflictType.MISSING),
                    record=result.count(ConflictType.RECORD),
                    field=result.count(ConflictType.FIELD),
                    silent_updates=len(result.silent_updates),
                    links=len(result.links),
                    local_ahead=len(result.local_ahead))
        return result

    def _classify_divergent(self, schema: CollectionSchema, pair: MatchedPair,
                            status: Optional[SyncStatus], result: DetectionResult) -> None:
        baseline = self._baseline(pair, status)

        if baseline is not None:
            local_changed = pair.local.updated_at > baseline.synced_local_updated_at
            external_changed = (
                baseline.synced_external_edited_at is None
                or pair.external.last_edited_at > baseline.synced_external_edited_at
            )

            if not local_changed and external_changed:
                result.silent_updates.append(pair)
                return
            if not local_changed and not external_changed:
                # Agreed on at last sync; the external copy awaits an out-of-band push
                result.settled.append(pair)
                return
            if local_changed and not external_changed:
                result.local_ahead.append(pair)
                return

        result.conflicts.extend(self._edit_conflicts(schema, pair))

    def _edit_conflicts(self, schema: CollectionSchema, pair: MatchedPair) -> List[Conflict]:
        external_id = pair.external.external_id
        fields = pair.differing_fields

        if len(fields) == 1:
            name = fields[0]
            local_value = pair.local.fields.get(name)
            external_value = pair.external_fields.get(name)
            return [Conflict(
                id=field_conflict_id(external_id, name),
                type=ConflictType.FIELD,
                collection=schema.name,
                external_id=external_id,
                local_id=pair.local.id,
                field=name,
                local_value=local_value,
                external_value=external_value,
                local_timestamp=pair.local.updated_at,
                external_timestamp=pair.external.last_edited_at,
                description=f'Field "{name}" differs: local {local_value!r}, external {external_value!r}',
            )]

        return [Conflict(
            id=record_conflict_id(external_id),
            type=ConflictType.RECORD,
            collection=schema.name,
            external_id=external_id,
            local_id=pair.local.id,
            local_value={name: pair.local.fields.get(name) for name in schema.compare_fields},
            external_value={name: pair.external_fields.get(name) for name in schema.compare_fields},
            local_timestamp=pair.local.updated_at,
            external_timestamp=pair.external.last_edited_at,
        )]

    @staticmethod
    def _baseline(pair: MatchedPair, status: Optional[SyncStatus]) -> Optional[SyncStatus]:
        """Status usable as a sync baseline for this pair, if any"""
        if status is None or not status.has_baseline:
            return None
        if status.external_id != pair.external.external_id:
            return None
        return status

    @staticmethod
    def _needs_link(pair: MatchedPair, status: Optional[SyncStatus]) -> bool:
        if pair.is_fallback or status is None:
            return True
        if status.state != SyncState.SYNCED or not status.has_baseline:
            return True
        if status.external_id != pair.external.external_id:
            return True
        return pair.local.external_id != pair.external.external_id
