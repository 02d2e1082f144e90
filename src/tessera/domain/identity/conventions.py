"""Naming conventions for user ids, role ids and reservation keys.

User ids:
    RANDOM              Users/0b6f1c3e-...       (uuid4)
    SEQUENTIAL_NUMERIC  Users/42                 (store-wide counter)
    EMAIL               Users/jane@example.com
    USER_NAME           Users/jane

Reservation keys:
    emails/jane@example.com
    usernames/jane
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum

from tessera.domain.identity.role import IdentityRole
from tessera.domain.identity.user import IdentityUser
from tessera.foundation.domain.documents import ID_SEPARATOR
from tessera.foundation.domain.exceptions import ValidationError


class ReservationKind(str, Enum):
    """Unique attribute guarded by a reservation; the value is the key namespace."""

    EMAIL = "emails"
    USER_NAME = "usernames"


class UserIdType(str, Enum):
    RANDOM = "random"
    SEQUENTIAL_NUMERIC = "sequential"
    EMAIL = "email"
    USER_NAME = "username"


def compare_exchange_key_for(kind: ReservationKind, value: str) -> str:
    """Return the reservation key for an already normalized attribute value."""
    return f"{kind.value}{ID_SEPARATOR}{value}"


def role_id_for(role_name: str, model: type[IdentityRole] = IdentityRole) -> str:
    return f"{model.id_prefix()}{role_name.strip().lower()}"


class IdStrategy(ABC):
    """Assigns user ids under one ``UserIdType``.

    ``matches`` tells whether a user's current id already follows this
    scheme; the migration skips such users.
    """

    id_type: UserIdType

    def __init__(self, model: type[IdentityUser] = IdentityUser) -> None:
        self._prefix = model.id_prefix()

    @property
    def prefix(self) -> str:
        return self._prefix

    def suffix_of(self, doc_id: str | None) -> str | None:
        if doc_id is None or not doc_id.startswith(self._prefix):
            return None
        return doc_id[len(self._prefix) :]

    @abstractmethod
    def matches(self, user: IdentityUser) -> bool: ...

    @abstractmethod
    def new_id(self, user: IdentityUser, next_number: Callable[[], int]) -> str:
        """Return a new id for ``user``.

        Args:
            user: The user being assigned an id.
            next_number: Source of sequence numbers; only the sequential
                strategy calls it.
        """


class RandomIdStrategy(IdStrategy):
    id_type = UserIdType.RANDOM

    def matches(self, user: IdentityUser) -> bool:
        suffix = self.suffix_of(user.id)
        if not suffix:
            return False
        try:
            uuid.UUID(suffix)
        except ValueError:
            return False
        return True

    def new_id(self, user: IdentityUser, next_number: Callable[[], int]) -> str:
        return f"{self._prefix}{uuid.uuid4()}"


class SequentialIdStrategy(IdStrategy):
    id_type = UserIdType.SEQUENTIAL_NUMERIC

    def matches(self, user: IdentityUser) -> bool:
        return self.number_of(user.id) is not None

    def number_of(self, doc_id: str | None) -> int | None:
        """Return the sequence number in ``doc_id``, or None if it has none."""
        suffix = self.suffix_of(doc_id)
        if not suffix or not suffix.isdigit():
            return None
        return int(suffix)

    def new_id(self, user: IdentityUser, next_number: Callable[[], int]) -> str:
        return f"{self._prefix}{next_number()}"


class EmailIdStrategy(IdStrategy):
    id_type = UserIdType.EMAIL

    def matches(self, user: IdentityUser) -> bool:
        return bool(user.email) and self.suffix_of(user.id) == user.email

    def new_id(self, user: IdentityUser, next_number: Callable[[], int]) -> str:
        return f"{self._prefix}{user.email}"


class UserNameIdStrategy(IdStrategy):
    id_type = UserIdType.USER_NAME

    def matches(self, user: IdentityUser) -> bool:
        return bool(user.user_name) and self.suffix_of(user.id) == user.user_name

    def new_id(self, user: IdentityUser, next_number: Callable[[], int]) -> str:
        if not user.user_name:
            raise ValidationError("user_name", "A user name is required for user name ids")
        return f"{self._prefix}{user.user_name}"


_STRATEGIES: dict[UserIdType, type[IdStrategy]] = {
    UserIdType.RANDOM: RandomIdStrategy,
    UserIdType.SEQUENTIAL_NUMERIC: SequentialIdStrategy,
    UserIdType.EMAIL: EmailIdStrategy,
    UserIdType.USER_NAME: UserNameIdStrategy,
}


def strategy_for(id_type: UserIdType, model: type[IdentityUser] = IdentityUser) -> IdStrategy:
    return _STRATEGIES[id_type](model)
