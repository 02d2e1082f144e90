"""Tests for the UserStore lifecycle against in-memory stores."""

from __future__ import annotations

import logging
import threading
from unittest.mock import MagicMock

import pytest

from tessera.domain.identity.conventions import ReservationKind, UserIdType
from tessera.domain.identity.infrastructure.reservation_registry import ReservationRegistry
from tessera.domain.identity.infrastructure.session_manager import DbSessionManager
from tessera.domain.identity.role import IdentityRole
from tessera.domain.identity.settings import IdentitySettings
from tessera.domain.identity.user import IdentityUser
from tessera.domain.identity.user_store import UserStore
from tessera.foundation.domain.cancellation import CancellationToken
from tessera.foundation.domain.exceptions import (
    NotFoundError,
    OperationCancelledError,
    ValidationError,
)
from tessera.foundation.domain.ports import CompareExchangeResult
from tessera.infra.persistence.compare_exchange.memory import InMemoryCompareExchangeStore
from tessera.infra.persistence.documents.memory import InMemoryDocumentStore

USER_STORE_LOGGER = "tessera.domain.identity.user_store"


class FailingUserNameRelease(InMemoryCompareExchangeStore):
    """Raises a transport error when a user name reservation is deleted."""

    def delete(self, key: str, expected_version: int) -> CompareExchangeResult:
        if key.startswith("usernames/"):
            raise ConnectionError("compare-exchange store unreachable")
        return super().delete(key, expected_version)


class LosingBinds(InMemoryCompareExchangeStore):
    """Every conditional update loses the version race."""

    def put(self, key: str, value: str, expected_version: int) -> CompareExchangeResult:
        if expected_version != 0:
            return CompareExchangeResult(successful=False)
        return super().put(key, value, expected_version)


class CancelAfterFirstPut(InMemoryCompareExchangeStore):
    def __init__(self, token: CancellationToken) -> None:
        super().__init__()
        self._token = token

    def put(self, key: str, value: str, expected_version: int) -> CompareExchangeResult:
        result = super().put(key, value, expected_version)
        self._token.cancel()
        return result


def _make_store(
    document_store: InMemoryDocumentStore,
    compare_exchange: InMemoryCompareExchangeStore,
    **settings: object,
) -> UserStore[IdentityUser]:
    return UserStore(
        DbSessionManager(document_store),
        ReservationRegistry(compare_exchange),
        IdentitySettings(**settings),  # type: ignore[arg-type]
    )


def _stored_users(document_store: InMemoryDocumentStore) -> list[IdentityUser]:
    return document_store.open_session().query(IdentityUser)


@pytest.mark.unit
class TestCreate:
    def test_create_reserves_and_binds(
        self,
        user_store: UserStore[IdentityUser],
        compare_exchange: InMemoryCompareExchangeStore,
        document_store: InMemoryDocumentStore,
    ) -> None:
        user = IdentityUser(email=" A@X.com ", user_name="A")

        result = user_store.create(user)

        assert result.succeeded
        assert user.id is not None
        assert (user.email, user.user_name) == ("a@x.com", "a")
        email = compare_exchange.get("emails/a@x.com")
        user_name = compare_exchange.get("usernames/a")
        assert email is not None and email.value == user.id
        assert user_name is not None and user_name.value == user.id
        assert [u.id for u in _stored_users(document_store)] == [user.id]

    def test_duplicate_email_keeps_first_binding(
        self,
        user_store: UserStore[IdentityUser],
        compare_exchange: InMemoryCompareExchangeStore,
        document_store: InMemoryDocumentStore,
    ) -> None:
        first = IdentityUser(email="a@x.com", user_name="a")
        assert user_store.create(first).succeeded

        result = user_store.create(IdentityUser(email="a@x.com", user_name="b"))

        assert result.error_codes == ["DuplicateEmail"]
        entry = compare_exchange.get("emails/a@x.com")
        assert entry is not None and entry.value == first.id
        assert compare_exchange.get("usernames/b") is None
        assert len(_stored_users(document_store)) == 1

    def test_duplicate_user_name_releases_email_reservation(
        self,
        user_store: UserStore[IdentityUser],
        registry: ReservationRegistry,
        compare_exchange: InMemoryCompareExchangeStore,
        document_store: InMemoryDocumentStore,
    ) -> None:
        registry.reserve(ReservationKind.USER_NAME, "taken", owner_id="Users/other")

        result = user_store.create(IdentityUser(email="a@x.com", user_name="taken"))

        assert result.error_codes == ["DuplicateUserName"]
        assert compare_exchange.get("emails/a@x.com") is None
        assert _stored_users(document_store) == []

    def test_user_names_not_reserved_unless_required(
        self,
        document_store: InMemoryDocumentStore,
        compare_exchange: InMemoryCompareExchangeStore,
    ) -> None:
        store = _make_store(document_store, compare_exchange, require_unique_user_name=False)

        assert store.create(IdentityUser(email="a@x.com", user_name="same")).succeeded
        assert store.create(IdentityUser(email="b@x.com", user_name="same")).succeeded
        assert compare_exchange.keys("usernames/") == []

    @pytest.mark.parametrize("email", ["", "   ", None])
    def test_empty_email_is_invalid(
        self,
        user_store: UserStore[IdentityUser],
        compare_exchange: InMemoryCompareExchangeStore,
        email: str | None,
    ) -> None:
        user = IdentityUser(user_name="a")
        user.email = email  # type: ignore[assignment]

        assert user_store.create(user).error_codes == ["InvalidEmail"]
        assert compare_exchange.keys() == []

    def test_empty_user_name_is_invalid_when_required(
        self, user_store: UserStore[IdentityUser]
    ) -> None:
        result = user_store.create(IdentityUser(email="a@x.com", user_name=" "))
        assert result.error_codes == ["InvalidUserName"]

    def test_save_failure_compensates_and_propagates(
        self,
        user_store: UserStore[IdentityUser],
        compare_exchange: InMemoryCompareExchangeStore,
        document_store: InMemoryDocumentStore,
    ) -> None:
        session = user_store.session
        failure = MagicMock(side_effect=RuntimeError("document store down"))
        session.save_changes = failure  # type: ignore[method-assign]

        with pytest.raises(RuntimeError, match="document store down"):
            user_store.create(IdentityUser(email="a@x.com", user_name="a"))

        assert compare_exchange.keys() == []
        assert _stored_users(document_store) == []

    def test_lost_bind_deletes_user_and_releases(
        self, document_store: InMemoryDocumentStore
    ) -> None:
        compare_exchange = LosingBinds()
        store = _make_store(document_store, compare_exchange)

        result = store.create(IdentityUser(email="a@x.com"))

        assert result.error_codes == ["ConcurrencyFailure"]
        assert compare_exchange.keys() == []
        assert _stored_users(document_store) == []

    def test_compensation_failure_is_logged_not_raised(
        self,
        document_store: InMemoryDocumentStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        class BrokenCompensation(LosingBinds):
            def delete(self, key: str, expected_version: int) -> CompareExchangeResult:
                raise ConnectionError("unreachable")

        store = _make_store(document_store, BrokenCompensation())

        with caplog.at_level(logging.WARNING, logger=USER_STORE_LOGGER):
            result = store.create(IdentityUser(email="a@x.com"))

        assert result.error_codes == ["ConcurrencyFailure"]
        warnings = [r for r in caplog.records if r.getMessage() == "reservation_release_failed"]
        assert [r.key for r in warnings] == ["emails/a@x.com"]  # type: ignore[attr-defined]

    def test_id_clash_with_tracked_user_leaves_it_alone(
        self,
        user_store: UserStore[IdentityUser],
        sessions: DbSessionManager,
        compare_exchange: InMemoryCompareExchangeStore,
        document_store: InMemoryDocumentStore,
    ) -> None:
        existing = IdentityUser(email="b@x.com", user_name="b")
        assert user_store.create(existing).succeeded
        assert user_store.find_by_id(existing.id or "") is existing

        clash = IdentityUser(id=existing.id, email="new@x.com", user_name="new")
        result = user_store.create(clash)
        sessions.save_changes()

        assert result.error_codes == ["ConcurrencyFailure"]
        (stored,) = _stored_users(document_store)
        assert stored.id == existing.id
        assert stored.email == "b@x.com"
        assert compare_exchange.get("emails/new@x.com") is None
        assert compare_exchange.get("usernames/new") is None
        entry = compare_exchange.get("emails/b@x.com")
        assert entry is not None and entry.value == existing.id

    def test_concurrent_creates_admit_one(
        self,
        document_store: InMemoryDocumentStore,
        compare_exchange: InMemoryCompareExchangeStore,
    ) -> None:
        barrier = threading.Barrier(10)
        codes: list[list[str]] = []
        lock = threading.Lock()

        def create(index: int) -> None:
            store = _make_store(document_store, compare_exchange)
            barrier.wait()
            result = store.create(IdentityUser(email="Same@X.com", user_name=f"u{index}"))
            with lock:
                codes.append(result.error_codes)

        threads = [threading.Thread(target=create, args=(i,)) for i in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert codes.count([]) == 1
        assert codes.count(["DuplicateEmail"]) == 9
        (user,) = _stored_users(document_store)
        entry = compare_exchange.get("emails/same@x.com")
        assert entry is not None and entry.value == user.id


@pytest.mark.unit
class TestCreateIds:
    def test_random_ids_by_default(self, user_store: UserStore[IdentityUser]) -> None:
        user = IdentityUser(email="a@x.com", user_name="a")
        user_store.create(user)
        assert user.id is not None and user.id.startswith("Users/")
        assert user_store.user_id_type is UserIdType.RANDOM

    def test_sequential_ids(
        self,
        document_store: InMemoryDocumentStore,
        compare_exchange: InMemoryCompareExchangeStore,
    ) -> None:
        store = _make_store(
            document_store, compare_exchange, user_id_type=UserIdType.SEQUENTIAL_NUMERIC
        )
        first, second = IdentityUser(email="a@x.com"), IdentityUser(email="b@x.com")
        store.create(first)
        store.create(second)
        assert (first.id, second.id) == ("Users/1", "Users/2")

    def test_email_ids(
        self,
        document_store: InMemoryDocumentStore,
        compare_exchange: InMemoryCompareExchangeStore,
    ) -> None:
        store = _make_store(document_store, compare_exchange, user_id_type=UserIdType.EMAIL)
        user = IdentityUser(email="A@x.com")
        store.create(user)
        assert user.id == "Users/a@x.com"


@pytest.mark.unit
class TestCancellation:
    def test_cancelled_before_start(
        self,
        user_store: UserStore[IdentityUser],
        compare_exchange: InMemoryCompareExchangeStore,
    ) -> None:
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelledError) as exc_info:
            user_store.create(IdentityUser(email="a@x.com", user_name="a"), token)

        assert exc_info.value.needs_compensation is False
        assert compare_exchange.keys() == []

    def test_cancelled_after_first_reservation_leaves_it(
        self, document_store: InMemoryDocumentStore
    ) -> None:
        token = CancellationToken()
        compare_exchange = CancelAfterFirstPut(token)
        store = _make_store(document_store, compare_exchange, require_unique_user_name=True)

        with pytest.raises(OperationCancelledError) as exc_info:
            store.create(IdentityUser(email="a@x.com", user_name="a"), token)

        assert exc_info.value.needs_compensation is True
        assert exc_info.value.reserved_keys == ("emails/a@x.com",)
        assert compare_exchange.get("emails/a@x.com") is not None
        assert _stored_users(document_store) == []


@pytest.mark.unit
class TestUpdate:
    def _create(self, store: UserStore[IdentityUser], email: str, user_name: str) -> IdentityUser:
        user = IdentityUser(email=email, user_name=user_name)
        assert store.create(user).succeeded
        return user

    def test_email_change_repoints_reservation(
        self,
        user_store: UserStore[IdentityUser],
        compare_exchange: InMemoryCompareExchangeStore,
        document_store: InMemoryDocumentStore,
    ) -> None:
        user = self._create(user_store, "old@x.com", "jane")

        user.email = "new@x.com"
        result = user_store.update(user)

        assert result.succeeded
        assert compare_exchange.get("emails/old@x.com") is None
        entry = compare_exchange.get("emails/new@x.com")
        assert entry is not None and entry.value == user.id
        (stored,) = _stored_users(document_store)
        assert stored.email == "new@x.com"

    def test_user_name_follows_email(
        self,
        user_store: UserStore[IdentityUser],
        compare_exchange: InMemoryCompareExchangeStore,
    ) -> None:
        user = self._create(user_store, "old@x.com", "old@x.com")

        user.email = "new@x.com"
        assert user_store.update(user).succeeded

        assert user.user_name == "new@x.com"
        assert compare_exchange.get("usernames/old@x.com") is None
        entry = compare_exchange.get("usernames/new@x.com")
        assert entry is not None and entry.value == user.id

    def test_duplicate_email_reverts_and_persists_nothing(
        self,
        user_store: UserStore[IdentityUser],
        compare_exchange: InMemoryCompareExchangeStore,
        document_store: InMemoryDocumentStore,
    ) -> None:
        user = self._create(user_store, "a@x.com", "a")
        other = self._create(user_store, "b@x.com", "b")

        user.email = "b@x.com"
        result = user_store.update(user)

        assert result.error_codes == ["DuplicateEmail"]
        assert user.email == "a@x.com"
        entry = compare_exchange.get("emails/b@x.com")
        assert entry is not None and entry.value == other.id
        assert compare_exchange.get("emails/a@x.com") is not None
        stored = document_store.open_session().load(IdentityUser, user.id or "")
        assert stored is not None and stored.email == "a@x.com"

    def test_duplicate_user_name_releases_new_email(
        self,
        user_store: UserStore[IdentityUser],
        compare_exchange: InMemoryCompareExchangeStore,
    ) -> None:
        user = self._create(user_store, "a@x.com", "a")
        self._create(user_store, "b@x.com", "b")

        user.email = "c@x.com"
        user.user_name = "b"
        result = user_store.update(user)

        assert result.error_codes == ["DuplicateUserName"]
        assert compare_exchange.get("emails/c@x.com") is None
        assert (user.email, user.user_name) == ("a@x.com", "a")

    def test_case_only_change_needs_no_reservation_work(
        self,
        user_store: UserStore[IdentityUser],
        compare_exchange: InMemoryCompareExchangeStore,
    ) -> None:
        user = self._create(user_store, "a@x.com", "a")
        before = compare_exchange.get("emails/a@x.com")

        user.email = "A@X.COM"
        assert user_store.update(user).succeeded

        assert user.email == "a@x.com"
        assert compare_exchange.get("emails/a@x.com") == before

    def test_plain_field_change_is_saved(
        self,
        user_store: UserStore[IdentityUser],
        document_store: InMemoryDocumentStore,
    ) -> None:
        user = self._create(user_store, "a@x.com", "a")

        user.phone_number = "555-0100"
        assert user_store.update(user).succeeded

        (stored,) = _stored_users(document_store)
        assert stored.phone_number == "555-0100"

    def test_plain_field_change_not_saved_without_auto_save(
        self,
        document_store: InMemoryDocumentStore,
        compare_exchange: InMemoryCompareExchangeStore,
    ) -> None:
        store = _make_store(document_store, compare_exchange, auto_save_changes=False)
        user = self._create(store, "a@x.com", "a")

        user.phone_number = "555-0100"
        assert store.update(user).succeeded

        (stored,) = _stored_users(document_store)
        assert stored.phone_number is None

    def test_unique_change_saved_even_without_auto_save(
        self,
        document_store: InMemoryDocumentStore,
        compare_exchange: InMemoryCompareExchangeStore,
    ) -> None:
        store = _make_store(document_store, compare_exchange, auto_save_changes=False)
        user = self._create(store, "a@x.com", "a")

        user.email = "b@x.com"
        assert store.update(user).succeeded

        (stored,) = _stored_users(document_store)
        assert stored.email == "b@x.com"

    def test_save_failure_releases_new_reservation(
        self,
        user_store: UserStore[IdentityUser],
        compare_exchange: InMemoryCompareExchangeStore,
    ) -> None:
        user = self._create(user_store, "a@x.com", "a")
        user.email = "b@x.com"
        failure = MagicMock(side_effect=RuntimeError("down"))
        user_store.session.save_changes = failure  # type: ignore[method-assign]

        with pytest.raises(RuntimeError):
            user_store.update(user)

        assert compare_exchange.get("emails/b@x.com") is None
        entry = compare_exchange.get("emails/a@x.com")
        assert entry is not None and entry.value == user.id

    def test_concurrent_write_returns_concurrency_failure(
        self,
        user_store: UserStore[IdentityUser],
        compare_exchange: InMemoryCompareExchangeStore,
        document_store: InMemoryDocumentStore,
    ) -> None:
        user = self._create(user_store, "a@x.com", "a")
        other = document_store.open_session()
        copy = other.load(IdentityUser, user.id or "")
        assert copy is not None
        copy.phone_number = "555-0100"
        other.save_changes()

        user.email = "b@x.com"
        result = user_store.update(user)

        assert result.error_codes == ["ConcurrencyFailure"]
        assert compare_exchange.get("emails/b@x.com") is None
        entry = compare_exchange.get("emails/a@x.com")
        assert entry is not None and entry.value == user.id

    def test_update_of_missing_user(self, user_store: UserStore[IdentityUser]) -> None:
        with pytest.raises(NotFoundError):
            user_store.update(IdentityUser(id="Users/missing", email="a@x.com"))

    def test_update_requires_id(self, user_store: UserStore[IdentityUser]) -> None:
        with pytest.raises(ValidationError):
            user_store.update(IdentityUser(email="a@x.com"))

    def test_old_release_failure_is_non_fatal(
        self,
        document_store: InMemoryDocumentStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        compare_exchange = FailingUserNameRelease()
        store = _make_store(document_store, compare_exchange, require_unique_user_name=True)
        user = self._create(store, "a@x.com", "a")

        user.user_name = "b"
        with caplog.at_level(logging.WARNING, logger=USER_STORE_LOGGER):
            assert store.update(user).succeeded

        assert compare_exchange.get("usernames/a") is not None
        assert any(getattr(r, "key", None) == "usernames/a" for r in caplog.records)


@pytest.mark.unit
class TestDelete:
    def test_delete_removes_user_and_reservations(
        self,
        user_store: UserStore[IdentityUser],
        compare_exchange: InMemoryCompareExchangeStore,
        document_store: InMemoryDocumentStore,
    ) -> None:
        user = IdentityUser(email="a@x.com", user_name="a")
        user_store.create(user)

        assert user_store.delete(user).succeeded

        assert _stored_users(document_store) == []
        assert compare_exchange.keys() == []

    def test_user_name_release_failure_still_succeeds(
        self,
        document_store: InMemoryDocumentStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        compare_exchange = FailingUserNameRelease()
        store = _make_store(document_store, compare_exchange, require_unique_user_name=True)
        user = IdentityUser(email="a@x.com", user_name="a")
        store.create(user)

        with caplog.at_level(logging.WARNING, logger=USER_STORE_LOGGER):
            result = store.delete(user)

        assert result.succeeded
        assert _stored_users(document_store) == []
        assert compare_exchange.get("emails/a@x.com") is None
        warnings = [
            r
            for r in caplog.records
            if r.name == USER_STORE_LOGGER and r.levelno == logging.WARNING
        ]
        assert [getattr(r, "key", None) for r in warnings] == ["usernames/a"]

    def test_delete_releases_saved_values_not_unsaved_edits(
        self,
        user_store: UserStore[IdentityUser],
        compare_exchange: InMemoryCompareExchangeStore,
        document_store: InMemoryDocumentStore,
    ) -> None:
        user = IdentityUser(email="a@x.com", user_name="a")
        assert user_store.create(user).succeeded
        user.email = "changed@x.com"
        user.user_name = "changed"

        assert user_store.delete(user).succeeded

        assert _stored_users(document_store) == []
        assert compare_exchange.keys() == []

    def test_delete_requires_id(self, user_store: UserStore[IdentityUser]) -> None:
        with pytest.raises(ValidationError):
            user_store.delete(IdentityUser(email="a@x.com"))


@pytest.mark.unit
class TestQueries:
    def test_find_by_email_uses_reservation(self, user_store: UserStore[IdentityUser]) -> None:
        user = IdentityUser(email="a@x.com", user_name="a")
        user_store.create(user)

        found = user_store.find_by_email(" A@X.COM")

        assert found is not None and found.id == user.id
        assert user_store.find_by_email("missing@x.com") is None

    def test_find_by_user_name_with_reservations(self, user_store: UserStore[IdentityUser]) -> None:
        user = IdentityUser(email="a@x.com", user_name="Jane")
        user_store.create(user)
        found = user_store.find_by_user_name("JANE")
        assert found is not None and found.id == user.id

    def test_find_by_user_name_with_query(
        self,
        document_store: InMemoryDocumentStore,
        compare_exchange: InMemoryCompareExchangeStore,
    ) -> None:
        store = _make_store(document_store, compare_exchange)
        user = IdentityUser(email="a@x.com", user_name="jane")
        store.create(user)
        found = store.find_by_user_name("Jane")
        assert found is not None and found.id == user.id
        assert store.find_by_user_name("nobody") is None

    def test_find_by_id_and_users(self, user_store: UserStore[IdentityUser]) -> None:
        user = IdentityUser(email="a@x.com", user_name="a")
        user_store.create(user)
        assert user_store.find_by_id(user.id or "") is user
        assert user_store.users() == [user]

    def test_normalizing_setters(self, user_store: UserStore[IdentityUser]) -> None:
        user = IdentityUser()
        user_store.set_email(user, " A@X.com")
        user_store.set_user_name(user, "Jane ")
        assert (user.email, user.user_name) == ("a@x.com", "jane")
        with pytest.raises(ValidationError):
            user_store.set_email(user, None)


@pytest.mark.unit
class TestRoles:
    def test_add_to_role_creates_role_with_back_reference(
        self,
        user_store: UserStore[IdentityUser],
        document_store: InMemoryDocumentStore,
    ) -> None:
        user = IdentityUser(email="a@x.com", user_name="a")
        user_store.create(user)

        user_store.add_to_role(user, "Admin")
        user_store.add_to_role(user, "ADMIN")
        assert user_store.update(user).succeeded

        role = document_store.open_session().load(IdentityRole, "IdentityRoles/admin")
        assert role is not None
        assert role.name == "admin"
        assert role.users == [user.id]
        assert user_store.get_roles(user) == ["admin"]
        assert user_store.is_in_role(user, "Admin")
        assert user_store.get_users_in_role("admin") == [user]

    def test_remove_from_role(self, user_store: UserStore[IdentityUser]) -> None:
        user = IdentityUser(email="a@x.com", user_name="a")
        user_store.create(user)
        user_store.add_to_role(user, "admin")

        user_store.remove_from_role(user, "Admin")

        assert user.roles == []
        role = user_store.session.load(IdentityRole, "IdentityRoles/admin")
        assert role is not None and role.users == []

    def test_delete_removes_user_from_roles(
        self,
        user_store: UserStore[IdentityUser],
        document_store: InMemoryDocumentStore,
    ) -> None:
        user = IdentityUser(email="a@x.com", user_name="a")
        user_store.create(user)
        user_store.add_to_role(user, "admin")
        user_store.update(user)

        user_store.delete(user)

        role = document_store.open_session().load(IdentityRole, "IdentityRoles/admin")
        assert role is not None and role.users == []

    def test_is_in_role_requires_name(self, user_store: UserStore[IdentityUser]) -> None:
        with pytest.raises(ValidationError):
            user_store.is_in_role(IdentityUser(), "")
