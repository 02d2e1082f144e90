"""Unit tests for ReservationRegistry."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from tessera.domain.identity.conventions import ReservationKind
from tessera.domain.identity.infrastructure.reservation_registry import (
    PLACEHOLDER,
    ReservationOutcome,
    ReservationRegistry,
)
from tessera.foundation.domain.ports import CompareExchangeResult, CompareExchangeValue
from tessera.infra.persistence.compare_exchange.memory import InMemoryCompareExchangeStore

EMAIL = ReservationKind.EMAIL
USER_NAME = ReservationKind.USER_NAME


@pytest.mark.unit
class TestReserve:
    def test_reserve_creates_placeholder(
        self, registry: ReservationRegistry, compare_exchange: InMemoryCompareExchangeStore
    ) -> None:
        assert registry.reserve(EMAIL, "a@x.com") is ReservationOutcome.OK
        entry = compare_exchange.get("emails/a@x.com")
        assert entry is not None
        assert entry.value == PLACEHOLDER

    def test_reserve_twice_is_duplicate(self, registry: ReservationRegistry) -> None:
        registry.reserve(EMAIL, "a@x.com")
        assert registry.reserve(EMAIL, "a@x.com") is ReservationOutcome.DUPLICATE

    def test_kinds_do_not_collide(self, registry: ReservationRegistry) -> None:
        registry.reserve(EMAIL, "a")
        assert registry.reserve(USER_NAME, "a") is ReservationOutcome.OK


@pytest.mark.unit
class TestBind:
    def test_bind_repoints_and_bumps_version(
        self, registry: ReservationRegistry, compare_exchange: InMemoryCompareExchangeStore
    ) -> None:
        registry.reserve(EMAIL, "a@x.com")
        before = compare_exchange.get("emails/a@x.com")
        assert before is not None

        assert registry.bind(EMAIL, "a@x.com", "Users/1") is ReservationOutcome.OK

        after = compare_exchange.get("emails/a@x.com")
        assert after is not None
        assert after.value == "Users/1"
        assert after.version > before.version

    def test_bind_to_same_owner_is_unchanged(self, registry: ReservationRegistry) -> None:
        registry.reserve(EMAIL, "a@x.com", owner_id="Users/1")
        assert registry.bind(EMAIL, "a@x.com", "Users/1") is ReservationOutcome.UNCHANGED

    def test_bind_missing_is_not_found(self, registry: ReservationRegistry) -> None:
        assert registry.bind(EMAIL, "a@x.com", "Users/1") is ReservationOutcome.NOT_FOUND

    def test_bind_missing_can_create(self, registry: ReservationRegistry) -> None:
        outcome = registry.bind(EMAIL, "a@x.com", "Users/1", create_missing=True)
        assert outcome is ReservationOutcome.OK
        assert registry.lookup(EMAIL, "a@x.com") == "Users/1"

    def test_bind_retries_once_after_stale_read(self) -> None:
        store = MagicMock()
        store.get.side_effect = [
            CompareExchangeValue("emails/a@x.com", "", 1),
            CompareExchangeValue("emails/a@x.com", "", 2),
        ]
        store.put.side_effect = [
            CompareExchangeResult(successful=False, value="", version=2),
            CompareExchangeResult(successful=True, value="Users/1", version=3),
        ]

        outcome = ReservationRegistry(store).bind(EMAIL, "a@x.com", "Users/1")

        assert outcome is ReservationOutcome.OK
        assert store.put.call_args_list[1].args == ("emails/a@x.com", "Users/1", 2)

    def test_bind_reports_stale_after_second_loss(self) -> None:
        store = MagicMock()
        store.get.return_value = CompareExchangeValue("emails/a@x.com", "", 1)
        store.put.return_value = CompareExchangeResult(successful=False)

        outcome = ReservationRegistry(store).bind(EMAIL, "a@x.com", "Users/1")

        assert outcome is ReservationOutcome.STALE
        assert store.put.call_count == 2


@pytest.mark.unit
class TestRelease:
    def test_release_deletes(
        self, registry: ReservationRegistry, compare_exchange: InMemoryCompareExchangeStore
    ) -> None:
        registry.reserve(EMAIL, "a@x.com", owner_id="Users/1")
        assert registry.release(EMAIL, "a@x.com") is ReservationOutcome.OK
        assert compare_exchange.get("emails/a@x.com") is None

    def test_release_missing_is_not_found(self, registry: ReservationRegistry) -> None:
        assert registry.release(EMAIL, "a@x.com") is ReservationOutcome.NOT_FOUND

    def test_release_guarded_by_owner(self, registry: ReservationRegistry) -> None:
        registry.reserve(EMAIL, "a@x.com", owner_id="Users/2")
        outcome = registry.release(EMAIL, "a@x.com", owner_id="Users/1")
        assert outcome is ReservationOutcome.NOT_OWNED
        assert registry.lookup(EMAIL, "a@x.com") == "Users/2"

    def test_owner_guard_accepts_placeholder(self, registry: ReservationRegistry) -> None:
        registry.reserve(EMAIL, "a@x.com")
        assert registry.release(EMAIL, "a@x.com", owner_id="Users/1") is ReservationOutcome.OK

    def test_release_reports_stale_after_second_loss(self) -> None:
        store = MagicMock()
        store.get.return_value = CompareExchangeValue("emails/a@x.com", "Users/1", 1)
        store.delete.return_value = CompareExchangeResult(successful=False)

        outcome = ReservationRegistry(store).release(EMAIL, "a@x.com")

        assert outcome is ReservationOutcome.STALE
        assert store.delete.call_count == 2


@pytest.mark.unit
class TestLookup:
    def test_placeholder_is_not_an_owner(self, registry: ReservationRegistry) -> None:
        registry.reserve(EMAIL, "a@x.com")
        assert registry.lookup(EMAIL, "a@x.com") is None

    def test_reserved_keys_lists_kind(self, registry: ReservationRegistry) -> None:
        registry.reserve(EMAIL, "b@x.com")
        registry.reserve(EMAIL, "a@x.com")
        registry.reserve(USER_NAME, "a")
        assert registry.reserved_keys(EMAIL) == ["emails/a@x.com", "emails/b@x.com"]
