"""Compare-exchange store backed by Redis.

Each key is a hash with ``value`` and ``version`` fields. Versions are
drawn from one ``INCR`` counter per namespace. Conditional writes use
optimistic locking: ``WATCH`` the key, compare its version, then apply
the change inside ``MULTI``/``EXEC``. A concurrent change aborts the
transaction with ``WatchError``, which is reported as an unsuccessful
result rather than raised.
"""

from __future__ import annotations

import logging
from typing import Any

from redis.exceptions import WatchError

from tessera.foundation.domain.ports.compare_exchange import (
    CompareExchangeResult,
    CompareExchangeValue,
)

logger = logging.getLogger(__name__)


class RedisCompareExchangeStore:
    """``CompareExchangeStore`` over a ``redis.Redis`` client.

    The client must be created with ``decode_responses=True``.

    Attributes:
        _client: Redis client.
        _namespace: Prefix isolating this database's keys.
    """

    def __init__(self, client: Any, namespace: str = "identity") -> None:
        self._client = client
        self._namespace = f"cmpxchg:{namespace}:"
        self._counter_key = f"cmpxchg:{namespace}#version"

    def _redis_key(self, key: str) -> str:
        return self._namespace + key

    def get(self, key: str) -> CompareExchangeValue | None:
        fields = self._client.hgetall(self._redis_key(key))
        return _to_value(key, fields)

    def put(self, key: str, value: str, expected_version: int) -> CompareExchangeResult:
        redis_key = self._redis_key(key)
        with self._client.pipeline() as pipe:
            try:
                pipe.watch(redis_key)
                current = _to_value(key, pipe.hgetall(redis_key))
                current_version = current.version if current is not None else 0
                if current_version != expected_version:
                    return _failure(current)
                version = int(self._client.incr(self._counter_key))
                pipe.multi()
                pipe.hset(redis_key, mapping={"value": value, "version": version})
                pipe.execute()
            except WatchError:
                logger.debug("compare_exchange_put_raced", extra={"key": key})
                return _failure(self.get(key))
        return CompareExchangeResult(successful=True, value=value, version=version)

    def delete(self, key: str, expected_version: int) -> CompareExchangeResult:
        redis_key = self._redis_key(key)
        with self._client.pipeline() as pipe:
            try:
                pipe.watch(redis_key)
                current = _to_value(key, pipe.hgetall(redis_key))
                if current is None or current.version != expected_version:
                    return _failure(current)
                version = int(self._client.incr(self._counter_key))
                pipe.multi()
                pipe.delete(redis_key)
                pipe.execute()
            except WatchError:
                logger.debug("compare_exchange_delete_raced", extra={"key": key})
                return _failure(self.get(key))
        return CompareExchangeResult(successful=True, value=current.value, version=version)

    def keys(self, prefix: str = "") -> list[str]:
        offset = len(self._namespace)
        pattern = self._namespace + _escape_glob(prefix) + "*"
        return sorted(key[offset:] for key in self._client.scan_iter(match=pattern))


def _to_value(key: str, fields: dict[str, str] | None) -> CompareExchangeValue | None:
    if not fields:
        return None
    return CompareExchangeValue(
        key=key, value=fields.get("value", ""), version=int(fields["version"])
    )


def _failure(current: CompareExchangeValue | None) -> CompareExchangeResult:
    if current is None:
        return CompareExchangeResult(successful=False)
    return CompareExchangeResult(successful=False, value=current.value, version=current.version)


def _escape_glob(value: str) -> str:
    for char in "\\*?[]":
        value = value.replace(char, "\\" + char)
    return value
