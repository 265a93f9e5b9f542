"""
Recovery HTTP routes
"""

from typing import Any, Dict, List, Optional, Protocol

from fastapi import APIRouter, Header, HTTPException, status
from pydantic import BaseModel, Field
import structlog

from ..models.sync_models import Conflict, ConflictType, ResolutionChoice, ResolutionStrategy
from ..sync.errors import SyncError
from ..sync.orchestrator import RecoveryOrchestrator
from ..utils.error_handling import format_error_response

logger = structlog.get_logger(__name__)


class CapabilityChecker(Protocol):
    """Decides whether a caller may run an operation"""

    async def is_allowed(self, user_id: Optional[str], operation: str,
                         collection: Optional[str] = None) -> bool:
        ...


class AllowAllCapabilityChecker:
    """Capability checker that permits every operation"""

    async def is_allowed(self, user_id: Optional[str], operation: str,
                         collection: Optional[str] = None) -> bool:
        return True


class StartRecoveryRequest(BaseModel):
    """Start recovery request"""
    auto_resolve: bool = False


class ConflictPayload(BaseModel):
    """Conflict as returned by a recovery run"""
    id: str
    type: ConflictType
    collection: str
    external_id: str
    local_id: Optional[str] = None
    field: Optional[str] = None
    local_value: Any = None
    external_value: Any = None
    local_timestamp: Optional[str] = None
    external_timestamp: Optional[str] = None
    description: str = ""


class ChoicePayload(BaseModel):
    """Resolution choice for one conflict"""
    conflict_id: str
    strategy: ResolutionStrategy
    field_choices: Optional[Dict[str, ResolutionStrategy]] = None


class SubmitResolutionsRequest(BaseModel):
    """Conflict snapshot plus one choice per conflict"""
    conflicts: List[ConflictPayload]
    choices: List[ChoicePayload]


class RecoverAllRequest(BaseModel):
    """Recover all collections request"""
    collections: Optional[List[str]] = None
    auto_resolve: bool = True


class LinkRequest(BaseModel):
    """Link collection request"""
    external_database_id: str = Field(..., min_length=1)


def _error(e: SyncError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=format_error_response(e)["error"])


def create_recovery_router(orchestrator: RecoveryOrchestrator,
                           capability_checker: Optional[CapabilityChecker] = None) -> APIRouter:
    """Create FastAPI router for recovery endpoints"""
    checker = capability_checker or AllowAllCapabilityChecker()
    router = APIRouter(prefix="/recovery", tags=["recovery"])

    async def require_capability(user_id: Optional[str], operation: str,
                                 collection: Optional[str] = None) -> None:
        if not await checker.is_allowed(user_id, operation, collection):
            logger.warning("Operation denied", user_id=user_id, operation=operation, collection=collection)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Not allowed to {operation.replace('_', ' ')}"
            )

    @router.post("/all")
    async def recover_all(request: RecoverAllRequest,
                          user_id: Optional[str] = Header(None, alias="X-User-Id")):
        """Recover collections in sequence"""
        await require_capability(user_id, "recover_all")
        try:
            result = await orchestrator.recover_all(request.collections, auto_resolve=request.auto_resolve)
            return result.to_dict()
        except SyncError as e:
            raise _error(e)

    @router.get("/status")
    async def recovery_status(user_id: Optional[str] = Header(None, alias="X-User-Id")):
        """Recovery assessment for every collection"""
        await require_capability(user_id, "view_recovery_status")
        assessments = await orchestrator.assess_recovery_needs()
        return {
            "collections": [assessment.to_dict() for assessment in assessments],
            "needs_recovery": [a.collection for a in assessments if a.needs_recovery],
        }

    @router.post("/{collection}/start")
    async def start_recovery(collection: str,
                             request: Optional[StartRecoveryRequest] = None,
                             user_id: Optional[str] = Header(None, alias="X-User-Id")):
        """Start a recovery run for one collection"""
        await require_capability(user_id, "start_recovery", collection)
        request = request or StartRecoveryRequest()
        try:
            run = await orchestrator.start_recovery(collection, auto_resolve=request.auto_resolve)
            return run.to_dict()
        except SyncError as e:
            raise _error(e)

    @router.post("/{collection}/resolve")
    async def submit_resolutions(collection: str,
                                 request: SubmitResolutionsRequest,
                                 user_id: Optional[str] = Header(None, alias="X-User-Id")):
        """Apply resolution choices to a conflict snapshot"""
        await require_capability(user_id, "submit_resolutions", collection)
        conflicts = [Conflict.from_dict(payload.model_dump(mode="json")) for payload in request.conflicts]
        choices = [ResolutionChoice.from_dict(payload.model_dump(mode="json")) for payload in request.choices]
        try:
            result = await orchestrator.submit_resolutions(collection, conflicts, choices)
            return result.to_dict()
        except SyncError as e:
            raise _error(e)

    @router.get("/{collection}/link")
    async def link_status(collection: str,
                          user_id: Optional[str] = Header(None, alias="X-User-Id")):
        """Check whether a collection is linked to an external database"""
        await require_capability(user_id, "view_link", collection)
        external_database_id = await orchestrator.link_registry.get(collection)
        return {
            "collection": collection,
            "linked": external_database_id is not None,
            "external_database_id": external_database_id,
        }

    @router.put("/{collection}/link")
    async def link_collection(collection: str,
                              request: LinkRequest,
                              user_id: Optional[str] = Header(None, alias="X-User-Id")):
        """Link a collection to an external database"""
        await require_capability(user_id, "link_collection", collection)
        await orchestrator.link_registry.link(collection, request.external_database_id)
        return {"collection": collection, "linked": True, "external_database_id": request.external_database_id}

    @router.delete("/{collection}/link")
    async def unlink_collection(collection: str,
                                user_id: Optional[str] = Header(None, alias="X-User-Id")):
        """Remove the link of a collection"""
        await require_capability(user_id, "unlink_collection", collection)
        removed = await orchestrator.link_registry.unlink(collection)
        return {"collection": collection, "linked": False, "removed": removed}

    return router
