"""
Sync error taxonomy
"""

from typing import Optional

from ..utils.error_handling import GracefulError, ErrorContext


class SyncError(GracefulError):
    """Base class for reconciliation failures"""

    status_code = 500


class AuthExpiredError(SyncError):
    """External credentials are missing, revoked or expired"""

    status_code = 401

    def __init__(self, message: str = "External authorization expired; reconnect required",
                 context: Optional[ErrorContext] = None):
        super().__init__(message, context=context, recoverable=False)


class ExternalNotFoundError(SyncError):
    """Linked external database does not exist or is not shared"""

    status_code = 404

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message, context=context, recoverable=False)


class RetrievalError(SyncError):
    """Retrieval failed after retries were exhausted"""

    status_code = 502


class RetrievalCancelledError(RetrievalError):
    """Retrieval was cancelled by the caller"""

    status_code = 499

    def __init__(self, message: str = "Retrieval cancelled", context: Optional[ErrorContext] = None):
        super().__init__(message, context=context, recoverable=False)


class IncompleteResolutionError(SyncError):
    """Submitted choices do not cover every conflict in the batch"""

    status_code = 422

    def __init__(self, message: str, missing_ids=None, context: Optional[ErrorContext] = None):
        super().__init__(message, context=context, recoverable=False)
        self.missing_ids = list(missing_ids or [])


class InvalidResolutionError(SyncError):
    """A choice is not valid for the conflict it targets"""

    status_code = 422

    def __init__(self, message: str, conflict_id: Optional[str] = None,
                 context: Optional[ErrorContext] = None):
        super().__init__(message, context=context, recoverable=False)
        self.conflict_id = conflict_id


class LocalWriteError(SyncError):
    """A write to the local system of record failed"""


class StaleConflictError(SyncError):
    """Local record changed after the conflict was detected"""

    status_code = 409

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message, context=context, recoverable=False)


class InvalidTransitionError(SyncError):
    """Requested sync state transition is not allowed"""

    status_code = 409

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message, context=context, recoverable=False)
