"""In-process compare-exchange store.

Linearizable within one process (a single lock guards every operation).
Used by the test suite and by single-process deployments.
"""

from __future__ import annotations

import threading

from tessera.foundation.domain.ports.compare_exchange import (
    CompareExchangeResult,
    CompareExchangeValue,
)


class InMemoryCompareExchangeStore:
    """Dictionary-backed ``CompareExchangeStore``.

    Versions come from one counter shared by all keys, so every successful
    mutation returns a version larger than any issued before it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, CompareExchangeValue] = {}
        self._last_version = 0

    def get(self, key: str) -> CompareExchangeValue | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, value: str, expected_version: int) -> CompareExchangeResult:
        with self._lock:
            current = self._entries.get(key)
            current_version = current.version if current is not None else 0
            if current_version != expected_version:
                return _failure(current)
            self._last_version += 1
            entry = CompareExchangeValue(key=key, value=value, version=self._last_version)
            self._entries[key] = entry
            return CompareExchangeResult(successful=True, value=value, version=entry.version)

    def delete(self, key: str, expected_version: int) -> CompareExchangeResult:
        with self._lock:
            current = self._entries.get(key)
            if current is None or current.version != expected_version:
                return _failure(current)
            del self._entries[key]
            self._last_version += 1
            return CompareExchangeResult(
                successful=True, value=current.value, version=self._last_version
            )

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(key for key in self._entries if key.startswith(prefix))


def _failure(current: CompareExchangeValue | None) -> CompareExchangeResult:
    if current is None:
        return CompareExchangeResult(successful=False)
    return CompareExchangeResult(successful=False, value=current.value, version=current.version)
