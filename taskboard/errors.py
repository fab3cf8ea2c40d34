"""
Task Board Errors

Every failure raised by the core carries a machine-readable code, a
human-readable message and structured details (offending fields, ids and,
for state errors, the entity's current authoritative state).
"""

from typing import Any, Dict, List, Optional


class TaskboardError(Exception):
    """Base task board error with structured details."""

    code = "TASKBOARD_ERROR"

    def __init__(self, message: str, details: Dict[str, Any] = None, code: Optional[str] = None):
        if code:
            self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(TaskboardError):
    """Malformed or out-of-range input. Never partially applied."""

    code = "VALIDATION_FAILED"

    def __init__(self, issues: List[Dict[str, str]], message: str = "Validation failed"):
        self.issues = issues
        super().__init__(message, details={"issues": issues})

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}])

    @property
    def fields(self) -> List[str]:
        return [issue["field"] for issue in self.issues]


class NotFoundError(TaskboardError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} '{entity_id}' not found",
            details={"entity": entity, "id": entity_id},
        )


class InvalidTransitionError(TaskboardError):
    """State-machine violation. Carries the entity as currently stored."""

    code = "INVALID_TRANSITION"

    def __init__(
        self,
        entity: str,
        entity_id: str,
        from_state: str,
        to_state: Optional[str],
        current: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ):
        self.from_state = from_state
        self.to_state = to_state
        self.current = current
        message = reason or f"Invalid transition for {entity} '{entity_id}': {from_state} -> {to_state}"
        super().__init__(
            message,
            details={
                "entity": entity,
                "id": entity_id,
                "from": from_state,
                "to": to_state,
                "current": current,
            },
        )


class ConflictError(TaskboardError):
    """Optimistic-concurrency mismatch on update."""

    code = "CONFLICT"

    def __init__(
        self,
        entity: str,
        entity_id: str,
        expected: Optional[str],
        actual: Optional[str],
        current: Optional[Dict[str, Any]] = None,
    ):
        self.expected = expected
        self.actual = actual
        self.current = current
        super().__init__(
            f"{entity} '{entity_id}' was modified concurrently",
            details={
                "entity": entity,
                "id": entity_id,
                "expected_updated_at": expected,
                "actual_updated_at": actual,
                "current": current,
            },
        )


class PermissionDeniedError(TaskboardError):
    code = "FORBIDDEN"

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message, details=details)


class InternalError(TaskboardError):
    """Store or transport failure. The core does not retry these."""

    code = "INTERNAL"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        details = {"cause": f"{type(cause).__name__}: {cause}"} if cause else {}
        super().__init__(message, details=details)
