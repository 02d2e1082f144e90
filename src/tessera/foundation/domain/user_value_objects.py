"""Value objects for unique user attributes.

Immutable, validated domain primitives. Email and user name are both
stored in canonical form (trimmed, lowercase); the canonical form is what
reservation keys are derived from, so two spellings that differ only by
case or surrounding whitespace compete for the same reservation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_MAX_LENGTH = 255


def normalize_email(value: str | None) -> str:
    """Return the canonical form of an email address ("" for None)."""
    return (value or "").strip().lower()


def normalize_user_name(value: str | None) -> str:
    """Return the canonical form of a user name ("" for None)."""
    return (value or "").strip().lower()


@dataclass(frozen=True, slots=True)
class NormalizedEmail:
    """Validated, canonical email address.

    Attributes:
        value: Trimmed lowercase email.

    Raises:
        ValueError: If the email is empty, too long or not ``local@domain.tld``.
    """

    value: str

    def __post_init__(self) -> None:
        normalized = normalize_email(self.value)
        if not normalized:
            msg = "Email cannot be empty"
            raise ValueError(msg)
        if len(normalized) > _MAX_LENGTH:
            msg = f"Email too long: {len(normalized)} chars (max {_MAX_LENGTH})"
            raise ValueError(msg)
        if not _EMAIL_PATTERN.match(normalized):
            msg = f"Invalid email format: '{normalized}'"
            raise ValueError(msg)
        object.__setattr__(self, "value", normalized)


@dataclass(frozen=True, slots=True)
class NormalizedUserName:
    """Validated, canonical user name.

    Attributes:
        value: Trimmed lowercase user name.

    Raises:
        ValueError: If the user name is empty or too long.
    """

    value: str

    def __post_init__(self) -> None:
        normalized = normalize_user_name(self.value)
        if not normalized:
            msg = "User name cannot be empty"
            raise ValueError(msg)
        if len(normalized) > _MAX_LENGTH:
            msg = f"User name too long: {len(normalized)} chars (max {_MAX_LENGTH})"
            raise ValueError(msg)
        object.__setattr__(self, "value", normalized)
