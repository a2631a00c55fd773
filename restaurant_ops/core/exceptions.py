"""
Domain Errors and Operation Results

Every failure the order pipeline can report is a subclass of
RestaurantOpsError. Services raise these internally and convert them into
an OperationResult at their public boundary; the HTTP layer maps them to
status codes through the error handlers registered in main.py.

Forbidden covers permission and tenant failures, including ids that do
not exist. All of them render the same public body so a caller cannot
tell whether a resource from another restaurant exists; the concrete
subclass and its context are only visible in the logs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Machine-readable error codes."""
    FORBIDDEN = "forbidden"
    INVALID_PERMISSION_SPEC = "invalid_permission_spec"
    INVALID_TRANSITION = "invalid_transition"
    ORDER_LOCKED = "order_locked"
    ORDER_NOT_READY = "order_not_ready"
    ORDER_CLOSED = "order_closed"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    CONCURRENT_MODIFICATION = "concurrent_modification"


class RestaurantOpsError(Exception):
    """Base class for recoverable domain errors."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR
    status_code: int = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    @property
    def public_message(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Body returned to API clients."""
        return {
            "success": False,
            "error": self.code.value,
            "detail": self.public_message,
            **self.public_context(),
        }

    def public_context(self) -> dict[str, Any]:
        return {k: v for k, v in self.context.items() if v is not None}


# =============================================================================
# ACCESS CONTROL
# =============================================================================

class Forbidden(RestaurantOpsError):
    """Access refused. Subclasses record why, the client never sees it."""

    code = ErrorCode.FORBIDDEN
    status_code = 403
    reason = "forbidden"

    @property
    def public_message(self) -> str:
        return "You are not allowed to perform this action"

    def public_context(self) -> dict[str, Any]:
        return {}


class PermissionDenied(Forbidden):
    """The principal's role does not grant a required permission."""

    reason = "deny"


class CrossTenantAccess(Forbidden):
    """The target entity belongs to another restaurant."""

    reason = "cross_tenant"


class UnknownTarget(Forbidden):
    """No tenant-scoped entity with the requested id exists."""

    reason = "unknown_target"


class InvalidPermissionSpec(RestaurantOpsError, ValueError):
    """
    A permission string names an unknown resource or action.

    This is a programming error at a call site, not a runtime denial.
    """

    code = ErrorCode.INVALID_PERMISSION_SPEC
    status_code = 500


# =============================================================================
# ORDER LIFECYCLE
# =============================================================================

class InvalidTransition(RestaurantOpsError):
    code = ErrorCode.INVALID_TRANSITION
    status_code = 409


class OrderLocked(RestaurantOpsError):
    code = ErrorCode.ORDER_LOCKED
    status_code = 409


class OrderNotReady(RestaurantOpsError):
    code = ErrorCode.ORDER_NOT_READY
    status_code = 409


class OrderClosed(RestaurantOpsError):
    code = ErrorCode.ORDER_CLOSED
    status_code = 409


class ConcurrentModification(RestaurantOpsError):
    """Another writer committed the same aggregate first. Safe to retry."""

    code = ErrorCode.CONCURRENT_MODIFICATION
    status_code = 409


# =============================================================================
# GENERIC
# =============================================================================

class NotFound(RestaurantOpsError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class ValidationFailed(RestaurantOpsError):
    code = ErrorCode.VALIDATION_ERROR
    status_code = 422


class InvalidPermissionGrid(ValidationFailed):
    """A role's permission grid does not match the resource/action vocabulary."""

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None):
        super().__init__(message, errors=errors)


# =============================================================================
# RESULT WRAPPER
# =============================================================================

@dataclass
class OperationResult(Generic[T]):
    """
    Tagged result returned by every public service operation.

    Attributes:
        success: Whether the operation completed
        value: Payload on success
        error: Domain error on failure
    """
    success: bool
    value: Optional[T] = None
    error: Optional[RestaurantOpsError] = field(default=None)

    @classmethod
    def ok(cls, value: T) -> "OperationResult[T]":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: RestaurantOpsError) -> "OperationResult[T]":
        return cls(success=False, error=error)

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if not self.success:
            raise self.error
        return self.value
