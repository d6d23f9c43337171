"""
Error types for PlanGraph.

This module defines every exception raised by the repository layer:
- PlanGraphError: Base exception
- ValidationError: Malformed input, caught before any write
- ReferenceNotFoundError: Referenced node missing or of the wrong kind
- InvalidStateTransitionError: Action state machine violation
- ConcurrencyConflictError: HEAD compare-and-swap lost too many times
- StoreError / StoreUnavailableError / ConditionFailedError: storage layer

Invariants:
    - All errors inherit from PlanGraphError
    - Client faults (4xx) are raised before anything is written
    - Errors carry a code and details for programmatic handling

How to change safely:
    - Never change an existing error code; API handlers match on it
    - New errors must declare http_status
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class PlanGraphError(Exception):
    """Base exception for all PlanGraph errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
        http_status: Status an API handler should answer with
    """

    http_status = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "PLANGRAPH_ERROR"
        self.details = details or {}

    @property
    def is_client_fault(self) -> bool:
        """Whether the caller (not the backend) is at fault."""
        return 400 <= self.http_status < 500

    def to_dict(self) -> Dict[str, Any]:
        """Render as a response body."""
        return {
            "error": self.message,
            "error_code": self.code,
            "details": self.details,
            "statusCode": self.http_status,
        }


class ValidationError(PlanGraphError):
    """Input validation failed.

    Raised when:
    - Title is empty or too long
    - A numeric field is out of range
    - An operation is not allowed on the node's current data
    """

    http_status = 400

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class ReferenceNotFoundError(PlanGraphError):
    """A referenced node does not exist in the current snapshot.

    Raised when:
    - The driver of a new milestone/action is missing
    - The parent milestone is missing or not a milestone
    - A daily plan entry names an unknown action
    """

    http_status = 404

    def __init__(
        self,
        message: str,
        node_id: str,
        expected_kind: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="REFERENCE_NOT_FOUND",
            details={"node_id": node_id, "expected_kind": expected_kind},
        )
        self.node_id = node_id
        self.expected_kind = expected_kind


class InvalidStateTransitionError(PlanGraphError):
    """Action state change not permitted by the state machine."""

    http_status = 409

    def __init__(
        self,
        from_state: str,
        to_state: str,
        allowed: Optional[List[str]] = None,
    ) -> None:
        allowed = allowed or []
        super().__init__(
            f"Invalid state transition from '{from_state}' to '{to_state}'. "
            f"Valid transitions from '{from_state}': {', '.join(allowed) or 'none'}",
            code="INVALID_STATE_TRANSITION",
            details={"from_state": from_state, "to_state": to_state, "allowed": allowed},
        )
        self.from_state = from_state
        self.to_state = to_state
        self.allowed = allowed


class ConcurrencyConflictError(PlanGraphError):
    """HEAD moved underneath a mutation.

    Raised by the HEAD pointer when the compare-and-swap fails, and by the
    repository when every retry attempt lost the race.
    """

    http_status = 409

    def __init__(
        self,
        message: str,
        scope: Optional[str] = None,
        expected_rev_id: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONCURRENCY_CONFLICT",
            details={
                "scope": scope,
                "expected_rev_id": expected_rev_id,
                "attempts": attempts,
            },
        )
        self.scope = scope
        self.expected_rev_id = expected_rev_id
        self.attempts = attempts


class StoreError(PlanGraphError):
    """Base exception for key-value store operations."""

    def __init__(self, message: str, code: str = "STORE_ERROR") -> None:
        super().__init__(message, code=code)


class StoreUnavailableError(StoreError):
    """Backend unreachable or failed transiently. Not retried internally."""

    http_status = 503

    def __init__(self, message: str) -> None:
        super().__init__(message, code="STORE_UNAVAILABLE")


class ConditionFailedError(StoreError):
    """A conditional put found the item in an unexpected state."""

    http_status = 409

    def __init__(self, message: str, pk: str, sk: str) -> None:
        super().__init__(message, code="CONDITION_FAILED")
        self.details = {"pk": pk, "sk": sk}
        self.pk = pk
        self.sk = sk
