"""Compare-exchange store adapters."""

from tessera.infra.persistence.compare_exchange.memory import InMemoryCompareExchangeStore
from tessera.infra.persistence.compare_exchange.redis_store import RedisCompareExchangeStore
from tessera.infra.persistence.compare_exchange.sql import SqlCompareExchangeStore

__all__ = [
    "InMemoryCompareExchangeStore",
    "RedisCompareExchangeStore",
    "SqlCompareExchangeStore",
]
