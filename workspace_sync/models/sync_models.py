"""
Sync data models
Records, conflicts, resolution choices and run reports shared by the
reconciliation engine and its HTTP surface.
"""

from typing import Dict, List, Any, Optional
from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum
import uuid

from ..utils.time_utils import utc_now, format_timestamp, parse_timestamp


class SyncState(str, Enum):
    """Per-record synchronization state"""

    UNSYNCED = "unsynced"
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class ConflictType(str, Enum):
    """Kinds of divergence surfaced to the caller"""

    MISSING = "missing"    # External only, no local match
    RECORD = "record"      # Two or more fields differ, both sides changed
    FIELD = "field"        # Exactly one field differs, both sides changed


# Stable presentation order for conflicts
CONFLICT_TYPE_ORDER = {
    ConflictType.MISSING: 0,
    ConflictType.RECORD: 1,
    ConflictType.FIELD: 2,
}


class ResolutionStrategy(str, Enum):
    """Caller-chosen disposition for a conflict"""

    PREFER_LOCAL = "prefer_local"
    PREFER_EXTERNAL = "prefer_external"
    SKIP = "skip"


class RunStatus(str, Enum):
    """Recovery run states"""

    RETRIEVING = "retrieving"
    AWAITING_RESOLUTION = "awaiting_resolution"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class SyncStatus:
    """Ledger entry for one local record in one collection"""

    collection: str
    local_id: str
    state: SyncState = SyncState.UNSYNCED
    external_id: Optional[str] = None
    last_error: Optional[str] = None

    # Baseline captured on the last successful sync
    synced_local_updated_at: Optional[datetime] = None
    synced_external_edited_at: Optional[datetime] = None

    updated_at: datetime = field(default_factory=utc_now)

    @property
    def has_baseline(self) -> bool:
        return self.synced_local_updated_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection": self.collection,
            "local_id": self.local_id,
            "state": self.state.value,
            "external_id": self.external_id,
            "last_error": self.last_error,
            "synced_local_updated_at": format_timestamp(self.synced_local_updated_at),
            "synced_external_edited_at": format_timestamp(self.synced_external_edited_at),
            "updated_at": format_timestamp(self.updated_at),
        }


@dataclass
class ExternalDocument:
    """One page as retrieved from the external workspace"""

    external_id: str
    properties: Dict[str, Any]
    last_edited_at: datetime
    created_at: Optional[datetime] = None
    archived: bool = False
    url: Optional[str] = None


@dataclass
class LocalRecord:
    """One row of the local system of record"""

    id: str
    collection: str
    fields: Dict[str, Any]
    external_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class Page:
    """One page of retrieval results"""

    documents: List[ExternalDocument]
    next_cursor: Optional[str] = None
    rate_limit_hits: int = 0


@dataclass
class Conflict:
    """Divergence between the local and external copy of a record

    Conflicts are produced fresh on every run. The caller holds them until it
    submits resolutions and echoes them back unchanged.
    """

    id: str
    type: ConflictType
    collection: str
    external_id: str
    local_id: Optional[str] = None
    field: Optional[str] = None
    local_value: Any = None
    external_value: Any = None
    local_timestamp: Optional[datetime] = None
    external_timestamp: Optional[datetime] = None
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "collection": self.collection,
            "external_id": self.external_id,
            "local_id": self.local_id,
            "field": self.field,
            "local_value": self.local_value,
            "external_value": self.external_value,
            "local_timestamp": format_timestamp(self.local_timestamp),
            "external_timestamp": format_timestamp(self.external_timestamp),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Conflict":
        return cls(
            id=data["id"],
            type=ConflictType(data["type"]),
            collection=data["collection"],
            external_id=data["external_id"],
            local_id=data.get("local_id"),
            field=data.get("field"),
            local_value=data.get("local_value"),
            external_value=data.get("external_value"),
            local_timestamp=parse_timestamp(data.get("local_timestamp")),
            external_timestamp=parse_timestamp(data.get("external_timestamp")),
            description=data.get("description") or "",
        )


@dataclass
class ResolutionChoice:
    """Caller decision for one conflict

    ``field_choices`` applies to ``record`` conflicts only. Fields that are
    not named in the map keep their local value.
    """

    conflict_id: str
    strategy: ResolutionStrategy
    field_choices: Optional[Dict[str, ResolutionStrategy]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResolutionChoice":
        field_choices = data.get("field_choices")
        return cls(
            conflict_id=data["conflict_id"],
            strategy=ResolutionStrategy(data["strategy"]),
            field_choices={
                name: ResolutionStrategy(choice) for name, choice in field_choices.items()
            } if field_choices else None,
        )


@dataclass
class ApplyResult:
    """Outcome of applying a batch of resolutions"""

    applied: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    status_counts: Dict[str, int] = field(default_factory=dict)

    def record_failure(self, conflict_id: str, error: Exception) -> None:
        self.failed += 1
        self.errors.append({
            "conflict_id": conflict_id,
            "error": str(error),
            "error_type": type(error).__name__,
        })

    def merge(self, other: "ApplyResult") -> None:
        self.applied += other.applied
        self.skipped += other.skipped
        self.failed += other.failed
        self.errors.extend(other.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": self.applied,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
            "status_counts": dict(self.status_counts),
        }


@dataclass
class RecoveryRun:
    """Transient report of one recovery run for one collection"""

    collection: str
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: RunStatus = RunStatus.RETRIEVING

    retrieved_count: int = 0
    matched_count: int = 0
    new_count: int = 0
    conflict_count: int = 0

    missing_count: int = 0
    record_conflict_count: int = 0
    field_conflict_count: int = 0
    auto_applied_count: int = 0
    rate_limit_hits: int = 0

    conflicts: List[Conflict] = field(default_factory=list)
    apply_result: Optional[ApplyResult] = None
    error: Optional[str] = None

    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "collection": self.collection,
            "status": self.status.value,
            "retrieved_count": self.retrieved_count,
            "matched_count": self.matched_count,
            "new_count": self.new_count,
            "conflict_count": self.conflict_count,
            "missing_count": self.missing_count,
            "record_conflict_count": self.record_conflict_count,
            "field_conflict_count": self.field_conflict_count,
            "auto_applied_count": self.auto_applied_count,
            "rate_limit_hits": self.rate_limit_hits,
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "apply_result": self.apply_result.to_dict() if self.apply_result else None,
            "error": self.error,
            "started_at": format_timestamp(self.started_at),
            "completed_at": format_timestamp(self.completed_at),
        }


@dataclass
class RecoverAllResult:
    """Aggregate outcome of recovering several collections in sequence

    Succeeded, failed and skipped collections are kept apart.
    """

    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)
    runs: Dict[str, RecoveryRun] = field(default_factory=dict)

    @property
    def awaiting_resolution(self) -> List[str]:
        return [
            name for name, run in self.runs.items()
            if run.status == RunStatus.AWAITING_RESOLUTION
        ]

    def summary(self) -> str:
        parts = [f"{len(self.succeeded)} succeeded"]
        parts.append(f"{len(self.failed)} failed")
        parts.append(f"{len(self.skipped)} skipped")
        return ", ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded_count": len(self.succeeded),
            "failed_count": len(self.failed),
            "skipped_count": len(self.skipped),
            "succeeded": list(self.succeeded),
            "failed": dict(self.failed),
            "skipped": dict(self.skipped),
            "awaiting_resolution": self.awaiting_resolution,
            "runs": {name: run.to_dict() for name, run in self.runs.items()},
            "summary": self.summary(),
        }


@dataclass
class CollectionAssessment:
    """Whether a linked collection looks like it needs recovery"""

    collection: str
    linked: bool
    external_database_id: Optional[str] = None
    local_count: int = 0
    failed_count: int = 0
    needs_recovery: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection": self.collection,
            "linked": self.linked,
            "external_database_id": self.external_database_id,
            "local_count": self.local_count,
            "failed_count": self.failed_count,
            "needs_recovery": self.needs_recovery,
            "reason": self.reason,
        }
