"""Re-key every user to a different id scheme.

A document id cannot change, so each user that does not already follow
the target scheme is cloned under a new id and the original is deleted:

1. Scan users for clone provenance and, for sequential ids, the highest
   number already in use
2. Clone every user whose id does not match the target scheme (bulk insert)
3. Re-scan and point every email (and user name) reservation at the
   surviving user id
4. Delete the originals in one batch

Any error before step 4 leaves originals and clones side by side, which is
a safe state: clones carry ``migrated_from`` metadata, so a rerun deletes
the originals it already cloned instead of cloning them again, and users
that already follow the scheme are skipped. The metadata outlives the run
that wrote it, and an email or user name id can later be taken by another
user, so an original only counts as cloned while its clone still holds the
same body. Two different users never share a body because each holds its
own email reservation.

Precondition: no other writer touches users while a migration runs. The
engine does not enforce this. References to user ids held by other
document types are not migrated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from tessera.domain.identity.conventions import (
    ReservationKind,
    SequentialIdStrategy,
    UserIdType,
    strategy_for,
)
from tessera.domain.identity.infrastructure.reservation_registry import ReservationOutcome
from tessera.domain.identity.migrations.base import MigrationBase
from tessera.domain.identity.user import IdentityUser
from tessera.foundation.domain.exceptions import StaleReservationError
from tessera.foundation.domain.user_value_objects import normalize_email, normalize_user_name

if TYPE_CHECKING:
    from tessera.domain.identity.infrastructure.reservation_registry import ReservationRegistry
    from tessera.foundation.domain.ports import DocumentStore

logger = logging.getLogger(__name__)

MIGRATED_FROM = "migrated_from"

U = TypeVar("U", bound=IdentityUser)


@dataclass(frozen=True)
class MigrationResult:
    """Counts reported by ``ChangeUserIdType.migrate``.

    Attributes:
        cloned: Users written under a new id.
        skipped: Users whose id already followed the target scheme.
        reservations_repointed: Reservations changed to a new owner id.
        deleted: Original user documents removed.
    """

    cloned: int
    skipped: int
    reservations_repointed: int
    deleted: int


@dataclass(frozen=True)
class _Clone:
    """A clone written by an earlier run, as it is stored now."""

    id: str
    body: dict[str, Any]


class _Sequence:
    """Local sequence numbers drawn from one store counter read."""

    def __init__(self, document_store: DocumentStore, collection: str, floor: int) -> None:
        self._document_store = document_store
        self._collection = collection
        self._floor = floor
        self._next: int | None = None
        self.last_assigned = 0

    def __call__(self) -> int:
        if self._next is None:
            self._next = max(self._document_store.next_identity(self._collection), self._floor + 1)
        value = self._next
        self._next += 1
        self.last_assigned = value
        return value


class ChangeUserIdType(MigrationBase, Generic[U]):
    """Migrates existing users to ``new_user_id_type``.

    Example:
        >>> migration = ChangeUserIdType(store, registry, UserIdType.SEQUENTIAL_NUMERIC)
        >>> migration.migrate()
        MigrationResult(cloned=3, skipped=0, reservations_repointed=3, deleted=3)
    """

    def __init__(
        self,
        document_store: DocumentStore,
        reservations: ReservationRegistry,
        new_user_id_type: UserIdType,
        require_unique_user_name: bool = False,
        *,
        user_model: type[U] = IdentityUser,  # type: ignore[assignment]
    ) -> None:
        super().__init__(document_store)
        self._reservations = reservations
        self._new_user_id_type = new_user_id_type
        self._require_unique_user_name = require_unique_user_name
        self._user_model = user_model
        self._strategy = strategy_for(new_user_id_type, user_model)

    def migrate(self) -> MigrationResult:
        """Run the migration. Back up the database first.

        Raises:
            StaleReservationError: If a reservation kept changing while it
                was repointed; nothing has been deleted at that point.
            ConcurrencyError: If a clone target id already exists.
        """
        logger.info(
            "user_id_migration_started",
            extra={"new_user_id_type": self._new_user_id_type.value},
        )
        provenance, highest_number = self._scan_provenance()
        to_delete, cloned, skipped = self._clone_users(provenance, highest_number)
        repointed = self._repoint_reservations(set(to_delete))
        deleted = self._delete_users(to_delete)

        result = MigrationResult(
            cloned=cloned,
            skipped=skipped,
            reservations_repointed=repointed,
            deleted=deleted,
        )
        logger.info(
            "user_id_migration_completed",
            extra={
                "cloned": result.cloned,
                "skipped": result.skipped,
                "reservations_repointed": result.reservations_repointed,
                "deleted": result.deleted,
            },
        )
        return result

    def _scan_provenance(self) -> tuple[dict[str, list[_Clone]], int]:
        """Map original ids to the clones made by earlier runs; find the top number."""
        provenance: dict[str, list[_Clone]] = {}
        highest_number = 0
        for result in self.stream_with_metadata(self._user_model):
            origin = result.metadata.get(MIGRATED_FROM)
            if origin:
                clone = _Clone(result.id, result.document.to_body())
                provenance.setdefault(origin, []).append(clone)
            if isinstance(self._strategy, SequentialIdStrategy):
                number = self._strategy.number_of(result.id)
                if number is not None:
                    highest_number = max(highest_number, number)
        return provenance, highest_number

    def _clone_users(
        self, provenance: dict[str, list[_Clone]], highest_number: int
    ) -> tuple[list[str], int, int]:
        to_delete: list[str] = []
        cloned = skipped = 0
        collection = self._user_model.collection()
        sequence = _Sequence(self.document_store, collection, highest_number)

        with self.document_store.bulk_insert() as bulk_insert:
            for result in self.stream_with_metadata(self._user_model):
                user = result.document
                if self._strategy.matches(user):
                    skipped += 1
                    continue
                body = user.to_body()
                clone = next((c for c in provenance.get(result.id, []) if c.body == body), None)
                if clone is not None:
                    logger.debug(
                        "user_already_cloned",
                        extra={"user_id": result.id, "clone_id": clone.id},
                    )
                    to_delete.append(result.id)
                    continue
                new_id = self._strategy.new_id(user, sequence)
                if new_id == result.id:
                    skipped += 1
                    continue
                metadata = {**result.metadata, MIGRATED_FROM: result.id}
                bulk_insert.store(user, new_id, metadata)
                to_delete.append(result.id)
                cloned += 1

        if sequence.last_assigned:
            self.document_store.seed_identity(collection, sequence.last_assigned)
        logger.info("user_clones_written", extra={"cloned": cloned, "skipped": skipped})
        return to_delete, cloned, skipped

    def _repoint_reservations(self, to_delete: set[str]) -> int:
        repointed = 0
        for result in self.stream_with_metadata(self._user_model):
            if result.id in to_delete:
                continue
            user = result.document
            attributes = [(ReservationKind.EMAIL, normalize_email(user.email))]
            user_name = normalize_user_name(user.user_name)
            if self._require_unique_user_name and user_name:
                attributes.append((ReservationKind.USER_NAME, user_name))
            for kind, value in attributes:
                if not value:
                    continue
                outcome = self._reservations.bind(kind, value, result.id, create_missing=True)
                if outcome is ReservationOutcome.OK:
                    repointed += 1
                elif not outcome.succeeded:
                    raise StaleReservationError(
                        self._reservations.key_for(kind, value), user_id=result.id
                    )
        logger.info("user_reservations_repointed", extra={"repointed": repointed})
        return repointed

    def _delete_users(self, to_delete: list[str]) -> int:
        if not to_delete:
            return 0
        session = self.document_store.open_session()
        try:
            for user_id in to_delete:
                session.delete(user_id)
            session.save_changes()
        finally:
            session.close()
        return len(to_delete)
