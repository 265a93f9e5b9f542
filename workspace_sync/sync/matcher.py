"""
Record matching between external documents and local records

Documents are paired with local records by external id first. Records that
were never linked fall back to normalized title equality, accepted only
when exactly one local record and exactly one document share the title.
"""

import re
import unicodedata
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from collections import defaultdict

import structlog

from ..models.sync_models import ExternalDocument, LocalRecord, SyncStatus
from .schemas import CollectionSchema

logger = structlog.get_logger(__name__)


MATCH_BY_EXTERNAL_ID = "external_id"
MATCH_BY_TITLE = "title"


@dataclass
class MatchedPair:
    """A local record paired with the external document it mirrors"""

    external: ExternalDocument
    local: LocalRecord
    match_type: str
    external_fields: Dict[str, Any]
    differing_fields: List[str] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return self.match_type == MATCH_BY_TITLE


@dataclass
class MatchResult:
    """Matching buckets; every retrieved document lands in exactly one"""

    unmatched: List[ExternalDocument] = field(default_factory=list)
    identical: List[MatchedPair] = field(default_factory=list)
    divergent: List[MatchedPair] = field(default_factory=list)
    external_fields: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def matched_pairs(self) -> List[MatchedPair]:
        return self.identical + self.divergent

    @property
    def document_count(self) -> int:
        return len(self.unmatched) + len(self.identical) + len(self.divergent)


def normalize_title(title: Optional[str]) -> str:
    """Normalize a display title for fallback matching"""
    if not title:
        return ""
    text = unicodedata.normalize("NFKC", str(title)).casefold()
    text = re.sub(r"[^\w\s]", "", text)
    return re.sub(r"\s+", " ", text).strip()


def values_equal(value1: Any, value2: Any) -> bool:
    """Deep equality comparison for field values

    Empty strings and lists count as missing, strings compare with outer
    whitespace trimmed and lists compare without regard to order.
    """
    if value1 in ("", []):
        value1 = None
    if value2 in ("", []):
        value2 = None

    if value1 is None and value2 is None:
        return True

    if value1 is None or value2 is None:
        return False

    if isinstance(value1, bool) or isinstance(value2, bool):
        return value1 is value2

    if isinstance(value1, (int, float)) and isinstance(value2, (int, float)):
        return float(value1) == float(value2)

    if isinstance(value1, str) and isinstance(value2, str):
        return value1.strip() == value2.strip()

    # Handle different types
    if type(value1) != type(value2):
        return str(value1) == str(value2)

    if isinstance(value1, dict):
        if set(value1.keys()) != set(value2.keys()):
            return False
        return all(values_equal(value1[key], value2[key]) for key in value1)

    if isinstance(value1, list):
        if len(value1) != len(value2):
            return False
        try:
            return sorted(value1) == sorted(value2)
        except TypeError:
            return all(values_equal(a, b) for a, b in zip(value1, value2))

    return value1 == value2


def differing_fields(schema: CollectionSchema,
                     local_fields: Dict[str, Any],
                     external_fields: Dict[str, Any]) -> List[str]:
    """Compared fields whose values differ, in schema order"""
    return [
        name for name in schema.compare_fields
        if not values_equal(local_fields.get(name), external_fields.get(name))
    ]


class RecordMatcher:
    """Pairs external documents with local records"""

    def match(self,
              schema: CollectionSchema,
              external: List[ExternalDocument],
              local: List[LocalRecord],
              statuses: Optional[Dict[str, SyncStatus]] = None) -> MatchResult:
        """Match retrieved documents against the local records of one collection

        Args:
            schema: Schema of the collection
            external: Retrieved documents
            local: Local records of the collection
            statuses: Sync statuses keyed by local id, consulted for links
                recorded only in the status ledger

        Returns:
            MatchResult with unmatched documents and identical/divergent pairs
        """
        statuses = statuses or {}
        result = MatchResult()

        documents = self._dedupe(external)
        for document in documents:
            result.external_fields[document.external_id] = schema.extract_fields(document.properties)

        # Primary key: external id carried by the local record or its status
        linked: Dict[str, LocalRecord] = {}
        unlinked: List[LocalRecord] = []
        for record in local:
            external_id = record.external_id
            if not external_id:
                status = statuses.get(record.id)
                external_id = status.external_id if status else None

            if not external_id:
                unlinked.append(record)
            elif external_id in linked:
                logger.warning("Several local records linked to one external document",
                               collection=schema.name,
                               external_id=external_id,
                               kept=linked[external_id].id,
                               ignored=record.id)
            else:
                linked[external_id] = record

        remaining: List[ExternalDocument] = []
        for document in documents:
            record = linked.get(document.external_id)
            if record is not None:
                self._add_pair(result, schema, document, record, MATCH_BY_EXTERNAL_ID)
            else:
                remaining.append(document)

        # Fallback key: normalized title, unambiguous on both sides
        locals_by_title: Dict[str, List[LocalRecord]] = defaultdict(list)
        for record in unlinked:
            key = normalize_title(schema.title_of(record.fields))
            if key:
                locals_by_title[key].append(record)

        documents_by_title: Dict[str, List[ExternalDocument]] = defaultdict(list)
        for document in remaining:
            key = normalize_title(schema.title_of(result.external_fields[document.external_id]))
            if key:
                documents_by_title[key].append(document)

        for document in remaining:
            key = normalize_title(schema.title_of(result.external_fields[document.external_id]))
            candidates = locals_by_title.get(key, []) if key else []

            if len(candidates) == 1 and len(documents_by_title[key]) == 1:
                self._add_pair(result, schema, document, candidates[0], MATCH_BY_TITLE)
                continue

            if len(candidates) > 1 or (key and len(documents_by_title[key]) > 1 and candidates):
                logger.info("Ambiguous title match left unmatched",
                            collection=schema.name,
                            external_id=document.external_id,
                            local_candidates=len(candidates),
                            external_candidates=len(documents_by_title[key]))
            result.unmatched.append(document)

        logger.info("Matching completed",
                    collection=schema.name,
                    documents=len(documents),
                    identical=len(result.identical),
                    divergent=len(result.divergent),
                    unmatched=len(result.unmatched))
        return result

    def _add_pair(self, result: MatchResult, schema: CollectionSchema,
                  document: ExternalDocument, record: LocalRecord, match_type: str) -> None:
        external_fields = result.external_fields[document.external_id]
        pair = MatchedPair(
            external=document,
            local=record,
            match_type=match_type,
            external_fields=external_fields,
            differing_fields=differing_fields(schema, record.fields, external_fields),
        )
        if pair.differing_fields:
            result.divergent.append(pair)
        else:
            result.identical.append(pair)

    @staticmethod
    def _dedupe(documents: List[ExternalDocument]) -> List[ExternalDocument]:
        seen = set()
        unique = []
        for document in documents:
            if document.external_id in seen:
                logger.warning("Duplicate external document dropped", external_id=document.external_id)
                continue
            seen.add(document.external_id)
            unique.append(document)
        return unique
