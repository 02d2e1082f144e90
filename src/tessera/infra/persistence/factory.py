"""Builds the document store and the compare-exchange store from settings.

The URL scheme selects the adapter:

- ``memory://``: in-process stores
- ``sqlite://...`` / ``postgresql[+psycopg]://...``: SQL stores on one
  SQLAlchemy engine per distinct URL
- ``redis://`` / ``rediss://`` (compare-exchange only): Redis store

Example:
    >>> factory = StoreFactory(StoreSettings(urls=["sqlite://"]))
    >>> documents = factory.document_store()
    >>> reservations = factory.compare_exchange_store()
    >>> factory.close()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tessera.infra.persistence.compare_exchange import (
    InMemoryCompareExchangeStore,
    RedisCompareExchangeStore,
    SqlCompareExchangeStore,
)
from tessera.infra.persistence.database import DatabaseManager
from tessera.infra.persistence.documents import InMemoryDocumentStore, SqlDocumentStore
from tessera.infra.persistence.redis_client import RedisFactory
from tessera.infra.persistence.settings import (
    MEMORY_SCHEME,
    REDIS_SCHEMES,
    SQL_SCHEMES,
    url_scheme,
)

if TYPE_CHECKING:
    from tessera.foundation.domain.ports import CompareExchangeStore, DocumentStore
    from tessera.infra.persistence.settings import StoreSettings

logger = logging.getLogger(__name__)


class StoreFactory:
    """Creates and caches the stores configured by one ``StoreSettings``.

    SQL stores whose URLs are equal share one ``DatabaseManager``. An
    in-memory document store and an in-memory compare-exchange store are
    independent objects, as they would be in a real deployment.
    """

    def __init__(self, settings: StoreSettings) -> None:
        self._settings = settings
        self._databases: dict[str, DatabaseManager] = {}
        self._redis: RedisFactory | None = None
        self._document_store: DocumentStore | None = None
        self._compare_exchange_store: CompareExchangeStore | None = None

    @property
    def settings(self) -> StoreSettings:
        return self._settings

    def document_store(self) -> DocumentStore:
        if self._document_store is None:
            self._document_store = self._create_document_store()
        return self._document_store

    def compare_exchange_store(self) -> CompareExchangeStore:
        if self._compare_exchange_store is None:
            self._compare_exchange_store = self._create_compare_exchange_store()
        return self._compare_exchange_store

    def close(self) -> None:
        """Dispose engines and close the Redis client. Safe to call twice."""
        for manager in self._databases.values():
            manager.dispose()
        self._databases.clear()
        if self._redis is not None:
            self._redis.close()
            self._redis = None
        self._document_store = None
        self._compare_exchange_store = None

    def _create_document_store(self) -> DocumentStore:
        url = self._settings.document_url
        scheme = url_scheme(url)
        if scheme == MEMORY_SCHEME:
            store: DocumentStore = InMemoryDocumentStore()
        else:
            sql_store = SqlDocumentStore(self._database(url).get_engine())
            sql_store.ensure_tables_exist()
            store = sql_store
        logger.info(
            "document_store_created",
            extra={"scheme": scheme, "database_name": self._settings.database_name},
        )
        return store

    def _create_compare_exchange_store(self) -> CompareExchangeStore:
        url = self._settings.compare_exchange_url
        scheme = url_scheme(url)
        store: CompareExchangeStore
        if scheme == MEMORY_SCHEME:
            store = InMemoryCompareExchangeStore()
        elif scheme in REDIS_SCHEMES:
            self._redis = RedisFactory.from_url(
                url,
                cert_file_path=self._settings.cert_file_path,
                cert_password=self._settings.cert_password,
            )
            store = RedisCompareExchangeStore(
                self._redis.get_client(), namespace=self._settings.database_name
            )
        elif scheme in SQL_SCHEMES:
            sql_store = SqlCompareExchangeStore(self._database(url).get_engine())
            sql_store.ensure_tables_exist()
            store = sql_store
        else:
            msg = f"Unsupported compare-exchange store URL scheme: {scheme!r}"
            raise ValueError(msg)
        logger.info("compare_exchange_store_created", extra={"scheme": scheme})
        return store

    def _database(self, url: str) -> DatabaseManager:
        manager = self._databases.get(url)
        if manager is None:
            manager = DatabaseManager(self._settings, url=url)
            self._databases[url] = manager
        return manager


def create_document_store(settings: StoreSettings) -> DocumentStore:
    """Create a standalone document store for ``settings``."""
    return StoreFactory(settings).document_store()


def create_compare_exchange_store(settings: StoreSettings) -> CompareExchangeStore:
    """Create a standalone compare-exchange store for ``settings``."""
    return StoreFactory(settings).compare_exchange_store()
