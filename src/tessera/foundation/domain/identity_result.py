"""Typed results returned by the user lifecycle operations.

Duplicate and validation failures are expected outcomes of create and
update, so they are reported as values rather than exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class IdentityError:
    """A single lifecycle failure.

    Attributes:
        code: Machine-readable code (e.g. "DuplicateEmail").
        description: Human-readable description.
    """

    code: str
    description: str


@dataclass(frozen=True)
class IdentityResult:
    """Outcome of a create, update or delete.

    Attributes:
        succeeded: Whether the operation completed.
        errors: Failures, empty on success.
    """

    succeeded: bool
    errors: tuple[IdentityError, ...] = field(default_factory=tuple)

    @classmethod
    def success(cls) -> IdentityResult:
        return cls(succeeded=True)

    @classmethod
    def failed(cls, *errors: IdentityError) -> IdentityResult:
        return cls(succeeded=False, errors=tuple(errors))

    @property
    def error_codes(self) -> list[str]:
        return [error.code for error in self.errors]

    def __str__(self) -> str:
        if self.succeeded:
            return "Succeeded"
        return "Failed : " + ",".join(self.error_codes)


class IdentityErrorDescriber:
    """Builds the ``IdentityError`` values used by the user store."""

    def duplicate_email(self, email: str) -> IdentityError:
        return IdentityError("DuplicateEmail", f"Email '{email}' is already taken.")

    def duplicate_user_name(self, user_name: str) -> IdentityError:
        return IdentityError("DuplicateUserName", f"Username '{user_name}' is already taken.")

    def invalid_email(self, email: str | None) -> IdentityError:
        return IdentityError("InvalidEmail", f"Email '{email or ''}' is invalid.")

    def invalid_user_name(self, user_name: str | None) -> IdentityError:
        return IdentityError("InvalidUserName", f"Username '{user_name or ''}' is invalid.")

    def concurrency_failure(self) -> IdentityError:
        return IdentityError(
            "ConcurrencyFailure",
            "Optimistic concurrency failure, object has been modified.",
        )
