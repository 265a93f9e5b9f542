"""
Graceful error handling utilities
"""

from typing import Any, Dict, Optional
import structlog

logger = structlog.get_logger(__name__)


class ErrorContext:
    """Context for error handling with additional metadata"""

    def __init__(self, operation: str, **metadata):
        self.operation = operation
        self.metadata = metadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            **self.metadata
        }


class GracefulError(Exception):
    """Base exception for graceful error handling"""

    def __init__(self, message: str, context: Optional[ErrorContext] = None, recoverable: bool = True):
        super().__init__(message)
        self.context = context
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": str(self),
            "type": self.__class__.__name__,
            "recoverable": self.recoverable,
            "context": self.context.to_dict() if self.context else None
        }


def is_recoverable_error(error: Exception) -> bool:
    """Check if an error is recoverable"""
    if isinstance(error, GracefulError):
        return error.recoverable

    recoverable_types = (
        ConnectionError,
        TimeoutError,
        OSError
    )
    return isinstance(error, recoverable_types)


def format_error_response(error: Exception, context: Optional[ErrorContext] = None) -> Dict[str, Any]:
    """Format an error for API responses"""
    if context is None and isinstance(error, GracefulError):
        context = error.context

    return {
        "error": {
            "message": str(error),
            "type": type(error).__name__,
            "recoverable": is_recoverable_error(error),
            "context": context.to_dict() if context else None
        }
    }
