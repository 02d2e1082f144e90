"""Shared fixtures for the identity test suite."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
import structlog
from sqlalchemy import Engine

from tessera.domain.identity.infrastructure.reservation_registry import ReservationRegistry
from tessera.domain.identity.infrastructure.session_manager import DbSessionManager
from tessera.domain.identity.settings import IdentitySettings, get_identity_settings
from tessera.domain.identity.user import IdentityUser
from tessera.domain.identity.user_store import UserStore
from tessera.infra.observability.logging import get_logging_settings
from tessera.infra.persistence.compare_exchange.memory import InMemoryCompareExchangeStore
from tessera.infra.persistence.database import build_engine
from tessera.infra.persistence.documents.memory import InMemoryDocumentStore
from tessera.infra.persistence.settings import get_store_settings


@pytest.fixture(autouse=True)
def _clear_settings_caches() -> Iterator[None]:
    get_store_settings.cache_clear()
    get_identity_settings.cache_clear()
    yield
    get_store_settings.cache_clear()
    get_identity_settings.cache_clear()


@pytest.fixture()
def compare_exchange() -> InMemoryCompareExchangeStore:
    return InMemoryCompareExchangeStore()


@pytest.fixture()
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def registry(compare_exchange: InMemoryCompareExchangeStore) -> ReservationRegistry:
    return ReservationRegistry(compare_exchange)


@pytest.fixture()
def sessions(document_store: InMemoryDocumentStore) -> Iterator[DbSessionManager]:
    manager = DbSessionManager(document_store)
    yield manager
    manager.close()


@pytest.fixture()
def identity_settings() -> IdentitySettings:
    return IdentitySettings(require_unique_user_name=True)


@pytest.fixture()
def user_store(
    sessions: DbSessionManager,
    registry: ReservationRegistry,
    identity_settings: IdentitySettings,
) -> UserStore[IdentityUser]:
    return UserStore(sessions, registry, identity_settings)


@pytest.fixture()
def sqlite_engine() -> Iterator[Engine]:
    """In-memory SQLite engine; every connection sees the same database."""
    engine = build_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture()
def restore_root_logger() -> Iterator[None]:
    """Undo ``configure_logging`` so later tests keep pytest's log capture."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()
    get_logging_settings.cache_clear()
