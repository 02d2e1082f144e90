"""Tessera Infra Persistence: store settings, engines, and store adapters."""

from tessera.infra.persistence.compare_exchange import (
    InMemoryCompareExchangeStore,
    RedisCompareExchangeStore,
    SqlCompareExchangeStore,
)
from tessera.infra.persistence.database import DatabaseManager, build_engine
from tessera.infra.persistence.documents import InMemoryDocumentStore, SqlDocumentStore
from tessera.infra.persistence.factory import (
    StoreFactory,
    create_compare_exchange_store,
    create_document_store,
)
from tessera.infra.persistence.redis_client import RedisFactory
from tessera.infra.persistence.settings import StoreSettings, get_store_settings

__all__ = [
    "DatabaseManager",
    "InMemoryCompareExchangeStore",
    "InMemoryDocumentStore",
    "RedisCompareExchangeStore",
    "RedisFactory",
    "SqlCompareExchangeStore",
    "SqlDocumentStore",
    "StoreFactory",
    "StoreSettings",
    "build_engine",
    "create_compare_exchange_store",
    "create_document_store",
    "get_store_settings",
]
