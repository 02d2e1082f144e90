"""User lifecycle with cluster-wide uniqueness of email and user name.

The document store cannot enforce uniqueness across documents, so every
unique attribute value is guarded by a compare-exchange reservation:

Create:
1. Reserve the email (and user name) with a placeholder owner
2. Store the user and save
3. Bind each reservation to the user id
4. On failure: delete the user if it was saved, release the reservations

Update (email or user name changed):
1. Reserve the new value owned by the user
2. Save the user
3. Release the old value (best effort)

Delete:
1. Delete the user and save
2. Release its reservations (best effort)

Reservations are acquired before the document write and repointed after
it. A compensation that itself fails is logged as a warning naming the
orphaned key and never masks the original outcome.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Generic, TypeVar

from tessera.domain.identity.conventions import (
    ReservationKind,
    UserIdType,
    role_id_for,
    strategy_for,
)
from tessera.domain.identity.infrastructure.reservation_registry import ReservationOutcome
from tessera.domain.identity.role import IdentityRole
from tessera.domain.identity.settings import IdentitySettings
from tessera.domain.identity.user import IdentityUser
from tessera.foundation.domain.cancellation import CancellationToken
from tessera.foundation.domain.exceptions import (
    ConflictError,
    NotFoundError,
    StaleReservationError,
    ValidationError,
)
from tessera.foundation.domain.identity_result import (
    IdentityError,
    IdentityErrorDescriber,
    IdentityResult,
)
from tessera.foundation.domain.user_value_objects import normalize_email, normalize_user_name

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tessera.domain.identity.infrastructure.reservation_registry import ReservationRegistry
    from tessera.domain.identity.infrastructure.session_manager import DbSessionManager
    from tessera.foundation.domain.ports import DocumentSession

logger = logging.getLogger(__name__)

U = TypeVar("U", bound=IdentityUser)

_Attribute = tuple[ReservationKind, str]


class UserStore(Generic[U]):
    """Creates, updates, deletes and finds users.

    Attributes:
        _sessions: Session of the current unit of work.
        _reservations: Email and user name reservations.
        _settings: Uniqueness, auto-save and id-scheme configuration.
    """

    def __init__(
        self,
        sessions: DbSessionManager,
        reservations: ReservationRegistry,
        settings: IdentitySettings | None = None,
        *,
        user_model: type[U] = IdentityUser,  # type: ignore[assignment]
        role_model: type[IdentityRole] = IdentityRole,
        error_describer: IdentityErrorDescriber | None = None,
    ) -> None:
        self._sessions = sessions
        self._reservations = reservations
        self._settings = settings or IdentitySettings()
        self._user_model = user_model
        self._role_model = role_model
        self._errors = error_describer or IdentityErrorDescriber()
        self._strategy = strategy_for(self._settings.user_id_type, user_model)

    @property
    def session(self) -> DocumentSession:
        return self._sessions.get_session()

    @property
    def user_id_type(self) -> UserIdType:
        return self._strategy.id_type

    # -- lifecycle -------------------------------------------------------

    def create(self, user: U, cancellation: CancellationToken | None = None) -> IdentityResult:
        """Create ``user`` after reserving its unique attributes.

        Returns:
            Success, or a failed result with ``DuplicateEmail``,
            ``DuplicateUserName``, ``InvalidEmail``, ``InvalidUserName`` or
            ``ConcurrencyFailure``.

        Raises:
            OperationCancelledError: If cancelled; ``reserved_keys`` lists the
                reservations left for the caller to reconcile.
            Exception: Store transport errors, after compensation.
        """
        token = cancellation or CancellationToken.none()
        token.raise_if_cancelled("create")

        email = normalize_email(user.email)
        if not email:
            return IdentityResult.failed(self._errors.invalid_email(user.email))
        user_name = normalize_user_name(user.user_name)
        needs_user_name = self._settings.require_unique_user_name or (
            self.user_id_type is UserIdType.USER_NAME
        )
        if needs_user_name and not user_name:
            return IdentityResult.failed(self._errors.invalid_user_name(user.user_name))
        user.email = email
        user.user_name = user_name
        if user.id is None:
            user.id = self._strategy.new_id(user, self._next_user_number)
        user_id = user.id

        reserved: list[_Attribute] = []
        for kind, value in self._unique_attributes(user):
            token.raise_if_cancelled("create", self._keys(reserved))
            if self._reservations.reserve(kind, value) is ReservationOutcome.DUPLICATE:
                self._release_all(reserved, user_id, "create")
                logger.info(
                    "user_create_duplicate",
                    extra={"kind": kind.value, "key": self._reservations.key_for(kind, value)},
                )
                return IdentityResult.failed(self._duplicate(kind, value))
            reserved.append((kind, value))

        token.raise_if_cancelled("create", self._keys(reserved))
        session = self.session
        stored = persisted = False
        try:
            session.store(user)
            stored = True
            session.save_changes()
            persisted = True
            for kind, value in reserved:
                outcome = self._reservations.bind(kind, value, user_id)
                if not outcome.succeeded:
                    raise StaleReservationError(
                        self._reservations.key_for(kind, value), outcome=outcome.value
                    )
        except ConflictError as err:
            logger.warning(
                "user_create_conflict",
                extra={"user_id": user_id, "error_code": err.error_code, "persisted": persisted},
            )
            self._compensate_create(user, reserved, stored=stored, persisted=persisted)
            return IdentityResult.failed(self._errors.concurrency_failure())
        except Exception:
            logger.exception(
                "user_create_failed_compensating",
                extra={"user_id": user_id, "persisted": persisted},
            )
            self._compensate_create(user, reserved, stored=stored, persisted=persisted)
            raise

        logger.info("user_created", extra={"user_id": user_id})
        return IdentityResult.success()

    def update(self, user: U, cancellation: CancellationToken | None = None) -> IdentityResult:
        """Persist changes to a loaded ``user``.

        A change of email or user name reserves the new value before the
        save and releases the old value after it. A duplicate reverts the
        unique attributes to their saved values and nothing is persisted.
        Values that differ only by case normalize to the same value and
        need no reservation work.

        A concurrent write to the same document since it was loaded returns
        ``ConcurrencyFailure``, as it does for ``create``.

        Raises:
            ValidationError: If the user has no id.
            NotFoundError: If no user is stored under the id.
            OperationCancelledError: If cancelled.
        """
        token = cancellation or CancellationToken.none()
        token.raise_if_cancelled("update")
        if not user.id:
            raise ValidationError("id", "User must have an id before it can be updated")
        user_id = user.id
        session = self.session
        if session.load(self._user_model, user_id) is None:
            raise NotFoundError(self._user_model.__name__, user_id)

        email = normalize_email(user.email)
        if not email:
            return IdentityResult.failed(self._errors.invalid_email(user.email))
        user.email = email
        user.user_name = normalize_user_name(user.user_name)

        changes = {change.field_name: change for change in session.what_changed().get(user_id, [])}
        if not changes:
            logger.warning("user_update_without_changes", extra={"user_id": user_id})
            return IdentityResult.success()

        old_email = normalize_email(changes["email"].old_value) if "email" in changes else email
        if "user_name" in changes:
            old_user_name = normalize_user_name(changes["user_name"].old_value)
        else:
            old_user_name = user.user_name
        if old_email != email and user.user_name == old_email:
            logger.debug("user_name_follows_email", extra={"user_id": user_id})
            user.user_name = email

        pending: list[tuple[ReservationKind, str, str]] = []
        if email != old_email:
            pending.append((ReservationKind.EMAIL, email, old_email))
        if self._settings.require_unique_user_name and user.user_name != old_user_name:
            if not user.user_name:
                error = self._errors.invalid_user_name(user.user_name)
                user.email, user.user_name = old_email, old_user_name
                return IdentityResult.failed(error)
            pending.append((ReservationKind.USER_NAME, user.user_name, old_user_name))

        if not pending:
            if self._settings.auto_save_changes:
                try:
                    session.save_changes()
                except ConflictError as err:
                    logger.warning(
                        "user_update_conflict",
                        extra={"user_id": user_id, "error_code": err.error_code},
                    )
                    return IdentityResult.failed(self._errors.concurrency_failure())
            return IdentityResult.success()

        acquired: list[_Attribute] = []
        for kind, value, _old in pending:
            token.raise_if_cancelled("update", self._keys(acquired))
            outcome = self._reservations.reserve(kind, value, owner_id=user_id)
            if outcome is ReservationOutcome.DUPLICATE:
                if self._reservations.lookup(kind, value) == user_id:
                    continue
                self._release_all(acquired, user_id, "update")
                user.email, user.user_name = old_email, old_user_name
                logger.info(
                    "user_update_duplicate",
                    extra={"user_id": user_id, "key": self._reservations.key_for(kind, value)},
                )
                return IdentityResult.failed(self._duplicate(kind, value))
            acquired.append((kind, value))

        token.raise_if_cancelled("update", self._keys(acquired))
        try:
            session.save_changes()
        except ConflictError as err:
            logger.warning(
                "user_update_conflict",
                extra={"user_id": user_id, "error_code": err.error_code},
            )
            self._release_all(acquired, user_id, "update")
            return IdentityResult.failed(self._errors.concurrency_failure())
        except Exception:
            logger.exception(
                "user_update_failed_releasing_reservations",
                extra={"user_id": user_id, "keys": self._keys(acquired)},
            )
            self._release_all(acquired, user_id, "update")
            raise

        for kind, _value, old in pending:
            if old:
                self._release_one(kind, old, user_id, "update")
        logger.info(
            "user_updated",
            extra={"user_id": user_id, "changed": [kind.value for kind, _, _ in pending]},
        )
        return IdentityResult.success()

    def delete(self, user: U, cancellation: CancellationToken | None = None) -> IdentityResult:
        """Delete ``user``, then release its reservations.

        The deletion is saved first. Release failures are logged and do not
        fail the operation: an orphaned reservation only blocks reuse of the
        value until an administrator removes it. Reservations are released
        for the values last saved, not for unsaved edits made on the instance.

        Raises:
            ValidationError: If the user has no id.
            OperationCancelledError: If cancelled before the deletion.
        """
        token = cancellation or CancellationToken.none()
        token.raise_if_cancelled("delete")
        if not user.id:
            raise ValidationError("id", "User must have an id before it can be deleted")
        user_id = user.id

        session = self.session
        saved = self._saved_unique_state(session, user)
        for role_name in user.roles:
            role = session.load(self._role_model, role_id_for(role_name, self._role_model))
            if role is not None and user_id in role.users:
                role.users.remove(user_id)
        session.delete(user)
        session.save_changes()

        for kind, value in self._unique_attributes(saved):
            self._release_one(kind, value, user_id, "delete")
        logger.info("user_deleted", extra={"user_id": user_id})
        return IdentityResult.success()

    # -- queries ---------------------------------------------------------

    def find_by_id(self, user_id: str) -> U | None:
        return self.session.load(self._user_model, user_id)

    def find_by_email(self, email: str) -> U | None:
        """Find a user through its email reservation, never through a query."""
        owner = self._reservations.lookup(ReservationKind.EMAIL, normalize_email(email))
        if owner is None:
            return None
        return self.session.load(self._user_model, owner)

    def find_by_user_name(self, user_name: str) -> U | None:
        normalized = normalize_user_name(user_name)
        if self._settings.require_unique_user_name:
            owner = self._reservations.lookup(ReservationKind.USER_NAME, normalized)
            return self.session.load(self._user_model, owner) if owner else None
        matches = self.session.query(self._user_model, lambda u: u.user_name == normalized)
        return matches[0] if matches else None

    def users(self) -> list[U]:
        return self.session.query(self._user_model)

    # -- attributes ------------------------------------------------------

    def set_email(self, user: U, email: str | None) -> None:
        if email is None:
            raise ValidationError("email", "Email cannot be None")
        user.email = normalize_email(email)

    def set_user_name(self, user: U, user_name: str | None) -> None:
        if user_name is None:
            raise ValidationError("user_name", "User name cannot be None")
        user.user_name = normalize_user_name(user_name)

    # -- roles -----------------------------------------------------------

    def add_to_role(self, user: U, role_name: str) -> None:
        """Add ``user`` to ``role_name``, creating the role document if needed.

        Changes are saved with the next ``save_changes`` of the session.
        """
        session = self.session
        role_id = role_id_for(role_name, self._role_model)
        role = session.load(self._role_model, role_id)
        if role is None:
            role = self._role_model(name=role_name.strip().lower())
            session.store(role, role_id)
        if not any(existing.lower() == role.name.lower() for existing in user.roles):
            user.roles.append(role.name)
        if user.id is not None and user.id not in role.users:
            role.users.append(user.id)

    def remove_from_role(self, user: U, role_name: str) -> None:
        user.roles = [existing for existing in user.roles if existing.lower() != role_name.lower()]
        role = self.session.load(self._role_model, role_id_for(role_name, self._role_model))
        if role is not None and user.id is not None and user.id in role.users:
            role.users.remove(user.id)

    def get_roles(self, user: U) -> list[str]:
        return list(user.roles)

    def is_in_role(self, user: U, role_name: str) -> bool:
        if not role_name:
            raise ValidationError("role_name", "Role name cannot be empty")
        return any(existing.lower() == role_name.lower() for existing in user.roles)

    def get_users_in_role(self, role_name: str) -> list[U]:
        wanted = role_name.strip().lower()
        return self.session.query(
            self._user_model, lambda u: any(r.lower() == wanted for r in u.roles)
        )

    # -- helpers ---------------------------------------------------------

    def _unique_attributes(self, user: IdentityUser) -> list[_Attribute]:
        attributes: list[_Attribute] = [(ReservationKind.EMAIL, normalize_email(user.email))]
        user_name = normalize_user_name(user.user_name)
        if self._settings.require_unique_user_name and user_name:
            attributes.append((ReservationKind.USER_NAME, user_name))
        return attributes

    def _saved_unique_state(self, session: DocumentSession, user: U) -> U:
        """Return a copy of ``user`` carrying the email and user name last saved."""
        saved = {
            change.field_name: change.old_value
            for change in session.what_changed().get(user.id or "", [])
            if change.field_name in ("email", "user_name") and change.old_value is not None
        }
        return user.model_copy(update=saved) if saved else user

    def _keys(self, attributes: Sequence[_Attribute]) -> list[str]:
        return [self._reservations.key_for(kind, value) for kind, value in attributes]

    def _duplicate(self, kind: ReservationKind, value: str) -> IdentityError:
        if kind is ReservationKind.EMAIL:
            return self._errors.duplicate_email(value)
        return self._errors.duplicate_user_name(value)

    def _next_user_number(self) -> int:
        return self._sessions.get_document_store().next_identity(self._user_model.collection())

    def _compensate_create(
        self, user: U, reserved: Sequence[_Attribute], *, stored: bool, persisted: bool
    ) -> None:
        """Undo a failed create.

        ``stored`` is false when the session refused the instance because it
        already tracks another document under the same id; that document is
        left alone.
        """
        session = self.session
        if persisted:
            try:
                session.delete(user)
                session.save_changes()
            except Exception:
                logger.warning(
                    "user_create_compensation_failed",
                    extra={"user_id": user.id},
                    exc_info=True,
                )
        elif stored:
            session.delete(user)
        self._release_all(reserved, user.id or "", "create")

    def _release_all(self, attributes: Sequence[_Attribute], owner_id: str, operation: str) -> None:
        for kind, value in attributes:
            self._release_one(kind, value, owner_id, operation)

    def _release_one(
        self, kind: ReservationKind, value: str, owner_id: str, operation: str
    ) -> None:
        key = self._reservations.key_for(kind, value)
        try:
            outcome = self._reservations.release(kind, value, owner_id=owner_id)
        except Exception:
            logger.warning(
                "reservation_release_failed",
                extra={"key": key, "owner_id": owner_id, "operation": operation},
                exc_info=True,
            )
            return
        if outcome is not ReservationOutcome.OK:
            logger.warning(
                "reservation_release_failed",
                extra={
                    "key": key,
                    "owner_id": owner_id,
                    "operation": operation,
                    "outcome": outcome.value,
                },
            )
