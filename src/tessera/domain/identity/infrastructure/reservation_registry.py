"""Uniqueness reservations for emails and user names.

Each unique attribute value maps to one compare-exchange key whose value
is the id of the user holding it, or the empty string while the user is
being created.

Lifecycle:
1. reserve(kind, value)           -- put at version 0; fails if the key exists
2. bind(kind, value, user_id)     -- point the key at the user (read version, put)
3. release(kind, value)           -- delete the key (read version, delete)

Additional operation:
4. lookup(kind, value)            -- id of the user holding the value, if any

``bind`` and ``release`` re-read the version and retry once when another
writer changed the key in between; a second loss is reported as STALE.
``DUPLICATE`` and ``NOT_FOUND`` are final and never retried.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from tessera.domain.identity.conventions import ReservationKind, compare_exchange_key_for

if TYPE_CHECKING:
    from tessera.foundation.domain.ports import CompareExchangeStore, CompareExchangeValue

logger = logging.getLogger(__name__)

PLACEHOLDER = ""

_ATTEMPTS = 2


class ReservationOutcome(Enum):
    OK = "ok"
    DUPLICATE = "duplicate"
    STALE = "stale"
    NOT_FOUND = "not_found"
    NOT_OWNED = "not_owned"
    UNCHANGED = "unchanged"

    @property
    def succeeded(self) -> bool:
        return self in (ReservationOutcome.OK, ReservationOutcome.UNCHANGED)


class ReservationRegistry:
    """Reserve, bind and release unique attribute values.

    Attributes:
        _store: Compare-exchange store holding the reservations.
    """

    def __init__(self, store: CompareExchangeStore) -> None:
        self._store = store

    @property
    def store(self) -> CompareExchangeStore:
        return self._store

    @staticmethod
    def key_for(kind: ReservationKind, value: str) -> str:
        return compare_exchange_key_for(kind, value)

    def reserve(
        self, kind: ReservationKind, value: str, owner_id: str = PLACEHOLDER
    ) -> ReservationOutcome:
        """Claim ``value``. DUPLICATE if anyone already holds it.

        Args:
            kind: Attribute kind.
            value: Normalized attribute value.
            owner_id: Initial owner; the placeholder while the owner is unsaved.
        """
        key = self.key_for(kind, value)
        result = self._store.put(key, owner_id, 0)
        if not result.successful:
            logger.debug("reservation_duplicate", extra={"key": key, "holder": result.value})
            return ReservationOutcome.DUPLICATE
        logger.debug("reservation_created", extra={"key": key, "version": result.version})
        return ReservationOutcome.OK

    def bind(
        self,
        kind: ReservationKind,
        value: str,
        owner_id: str,
        *,
        create_missing: bool = False,
    ) -> ReservationOutcome:
        """Point an existing reservation at ``owner_id``.

        Args:
            kind: Attribute kind.
            value: Normalized attribute value.
            owner_id: Id of the user that now holds the value.
            create_missing: Create the reservation when it does not exist
                (used when repointing after a migration).

        Returns:
            OK when repointed, UNCHANGED when it already pointed at
            ``owner_id``, NOT_FOUND when missing and ``create_missing`` is
            false, STALE after losing the version race twice.
        """
        key = self.key_for(kind, value)
        for attempt in range(_ATTEMPTS):
            current = self._store.get(key)
            if current is None:
                if not create_missing:
                    logger.error(
                        "reservation_bind_missing", extra={"key": key, "owner_id": owner_id}
                    )
                    return ReservationOutcome.NOT_FOUND
                expected = 0
            elif current.value == owner_id:
                return ReservationOutcome.UNCHANGED
            else:
                expected = current.version
            result = self._store.put(key, owner_id, expected)
            if result.successful:
                logger.debug(
                    "reservation_bound",
                    extra={"key": key, "owner_id": owner_id, "version": result.version},
                )
                return ReservationOutcome.OK
            logger.debug("reservation_bind_stale", extra={"key": key, "attempt": attempt + 1})
        return ReservationOutcome.STALE

    def release(
        self,
        kind: ReservationKind,
        value: str,
        *,
        owner_id: str | None = None,
    ) -> ReservationOutcome:
        """Delete the reservation for ``value``.

        Args:
            kind: Attribute kind.
            value: Normalized attribute value.
            owner_id: When given, only delete a reservation held by this
                owner (or still holding the placeholder); otherwise NOT_OWNED.
        """
        key = self.key_for(kind, value)
        for attempt in range(_ATTEMPTS):
            current = self._store.get(key)
            if current is None:
                return ReservationOutcome.NOT_FOUND
            if owner_id is not None and current.value not in (owner_id, PLACEHOLDER):
                logger.warning(
                    "reservation_release_not_owned",
                    extra={"key": key, "owner_id": owner_id, "holder": current.value},
                )
                return ReservationOutcome.NOT_OWNED
            result = self._store.delete(key, current.version)
            if result.successful:
                logger.debug("reservation_released", extra={"key": key})
                return ReservationOutcome.OK
            logger.debug("reservation_release_stale", extra={"key": key, "attempt": attempt + 1})
        return ReservationOutcome.STALE

    def lookup(self, kind: ReservationKind, value: str) -> str | None:
        """Return the id holding ``value``; None if unreserved or not yet bound."""
        entry = self.get(kind, value)
        if entry is None or entry.value == PLACEHOLDER:
            return None
        return entry.value

    def get(self, kind: ReservationKind, value: str) -> CompareExchangeValue | None:
        return self._store.get(self.key_for(kind, value))

    def reserved_keys(self, kind: ReservationKind) -> list[str]:
        """List every reservation key of ``kind``, for administrative inspection."""
        return self._store.keys(f"{kind.value}/")
