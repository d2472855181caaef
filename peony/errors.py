"""
Shared error types for core services.
"""

from typing import Optional, Sequence


class PeonyError(Exception):
    """Base class for every error raised by the Peony core."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        thought_id: Optional[int] = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.thought_id = thought_id


class ValidationIssue(PeonyError, ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        operation: Optional[str] = None,
        thought_id: Optional[int] = None,
    ):
        super().__init__(message, operation=operation, thought_id=thought_id)
        self.field = field
        self.error_type = error_type


class ThoughtNotFound(PeonyError, LookupError):
    """Raised when a thought id is absent (or absent from the requested subset)."""

    def __init__(
        self,
        thought_id: int,
        operation: Optional[str] = None,
        reason: str = "not_found",
    ):
        if reason == "not_tend_eligible":
            message = f"thought #{thought_id} is not ready for tending"
        else:
            message = f"thought #{thought_id} not found"
        if operation:
            message = f"{operation}: {message}"
        super().__init__(message, operation=operation, thought_id=thought_id)
        self.reason = reason


class InvalidTransition(PeonyError):
    """Raised when a lifecycle guard rejects the requested operation."""

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        operation: Optional[str] = None,
        thought_id: Optional[int] = None,
        reason: str = "invalid_state",
    ):
        super().__init__(message, operation=operation, thought_id=thought_id)
        self.current_state = current_state
        self.reason = reason


class StoreError(PeonyError, RuntimeError):
    """Raised when the underlying database fails."""


class IntegrityViolation(StoreError):
    """Raised when reindexing would leave events pointing at missing thoughts."""

    def __init__(self, message: str, orphan_event_ids: Sequence[int] = (), operation: Optional[str] = None):
        super().__init__(message, operation=operation)
        self.orphan_event_ids = list(orphan_event_ids)
