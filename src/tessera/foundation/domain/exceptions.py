"""Domain exception hierarchy for type-safe error handling.

Exceptions carry a machine-readable error code and structured context so
that callers can log them consistently. Expected lifecycle failures
(duplicate email, invalid email) are NOT raised; they are returned as
``IdentityResult`` values. The exceptions below cover programmer errors,
lost optimistic-concurrency races and cooperative cancellation.

Example:
    >>> from tessera.foundation.domain.exceptions import StaleReservationError
    >>> raise StaleReservationError("emails/a@x.com")
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "ConcurrencyError",
    "ConflictError",
    "DomainError",
    "NotFoundError",
    "OperationCancelledError",
    "StaleReservationError",
    "ValidationError",
]


class DomainError(Exception):
    """Base class for all domain errors.

    Attributes:
        error_code: Machine-readable error code for client handling.
        message: Human-readable error description.
        context: Structured debugging information (document ids, keys).
    """

    error_code: str = "DOMAIN_ERROR"

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        """Initialize domain error with message and optional context.

        Args:
            message: Human-readable error description.
            context: Structured debugging information. Keys should be snake_case.
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """String representation including context for logging."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message

    def __repr__(self) -> str:
        """Detailed representation for debugging."""
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class NotFoundError(DomainError):
    """Raised when a requested document does not exist.

    Attributes:
        error_code: "RESOURCE_NOT_FOUND" (class constant).
        resource_type: Type of missing resource.
        resource_id: Identifier of missing resource.
    """

    error_code: str = "RESOURCE_NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: str, **extra_context: Any) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type} not found: {resource_id}"
        context = {
            "resource_type": resource_type,
            "resource_id": resource_id,
            **extra_context,
        }
        super().__init__(message, context)


class ValidationError(DomainError):
    """Raised when input fails domain validation rules.

    Used for caller mistakes that are not part of the lifecycle result
    contract, e.g. updating a user that was never assigned an id.

    Attributes:
        error_code: "VALIDATION_ERROR" (class constant).
        field: Field path that failed validation.
        reason: Human-readable validation failure reason.

    Example:
        >>> raise ValidationError("id", "User must have an id before it can be updated")
        ValidationError: Validation failed for 'id': User must have an id before it can be updated
    """

    error_code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str, **extra_context: Any) -> None:
        """Initialize validation error.

        Args:
            field: Field path that failed validation.
            reason: Human-readable validation failure reason.
            **extra_context: Additional debugging context.
        """
        self.field = field
        self.reason = reason
        message = f"Validation failed for '{field}': {reason}"
        context = {"field": field, "reason": reason, **extra_context}
        super().__init__(message, context)


class ConflictError(DomainError):
    """Raised when an operation conflicts with current store state.

    Attributes:
        error_code: "CONFLICT" (class constant).
        reason: Description of the conflict.
    """

    error_code: str = "CONFLICT"

    def __init__(self, reason: str, **context: Any) -> None:
        self.reason = reason
        message = f"Conflict: {reason}"
        super().__init__(message, context)


class ConcurrencyError(ConflictError):
    """Raised when a document was changed by another writer since it was loaded.

    Document-level optimistic concurrency: ``save_changes`` raises this when
    the stored version differs from the version the session last observed,
    and a bulk insert raises it when the target id already exists.

    Example:
        >>> raise ConcurrencyError(
        ...     "Document was modified concurrently",
        ...     document_id="Users/1",
        ...     expected_version=3,
        ...     actual_version=4,
        ... )
    """

    error_code: str = "CONCURRENCY_CONFLICT"


class StaleReservationError(ConflictError):
    """Raised when a reservation bind or release lost the version race twice.

    The reservation protocol re-reads the version and retries once before
    giving up; this error marks the second loss.

    Attributes:
        error_code: "STALE_RESERVATION" (class constant).
        key: The compare-exchange key that could not be updated.
    """

    error_code: str = "STALE_RESERVATION"

    def __init__(self, key: str, **context: Any) -> None:
        self.key = key
        message = f"Reservation '{key}' changed while it was being updated"
        super().__init__(message, key=key, **context)


class OperationCancelledError(DomainError):
    """Raised when cooperative cancellation is observed.

    When cancellation happens after the first reservation was created the
    reservation is NOT released automatically. ``needs_compensation`` is then
    true and ``reserved_keys`` names the compare-exchange keys the caller is
    responsible for reconciling.

    Attributes:
        error_code: "OPERATION_CANCELLED" (class constant).
        operation: Name of the cancelled operation.
        needs_compensation: Whether reservations were left behind.
        reserved_keys: Keys reserved before cancellation was observed.
    """

    error_code: str = "OPERATION_CANCELLED"

    def __init__(self, operation: str, reserved_keys: tuple[str, ...] = ()) -> None:
        self.operation = operation
        self.reserved_keys = reserved_keys
        self.needs_compensation = bool(reserved_keys)
        context: dict[str, Any] = {"operation": operation}
        if reserved_keys:
            context["reserved_keys"] = list(reserved_keys)
        super().__init__(f"Operation '{operation}' was cancelled", context)
