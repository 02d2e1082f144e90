"""In-process document store.

Bodies are stored as JSON text so that no caller can mutate stored state
through a shared reference. One lock guards every read and commit.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass

from tessera.foundation.domain.exceptions import ConcurrencyError
from tessera.infra.persistence.documents.base import (
    BaseDocumentSession,
    BaseDocumentStore,
    PendingWrite,
    StoredRow,
)


@dataclass(slots=True)
class _Entry:
    collection: str
    body: str
    metadata: str
    version: int

    def to_row(self, doc_id: str) -> StoredRow:
        return StoredRow(
            id=doc_id,
            collection=self.collection,
            body=json.loads(self.body),
            metadata=json.loads(self.metadata),
            version=self.version,
        )


class InMemoryDocumentStore(BaseDocumentStore):
    """Dictionary-backed ``DocumentStore``."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: dict[str, _Entry] = {}
        self._identities: dict[str, int] = {}

    def open_session(self) -> InMemoryDocumentSession:
        return InMemoryDocumentSession(self)

    def next_identity(self, collection: str) -> int:
        with self._lock:
            value = self._identities.get(collection, 0) + 1
            self._identities[collection] = value
            return value

    def seed_identity(self, collection: str, value: int) -> None:
        with self._lock:
            if self._identities.get(collection, 0) < value:
                self._identities[collection] = value

    def count(self, collection: str) -> int:
        with self._lock:
            return sum(1 for entry in self._entries.values() if entry.collection == collection)

    def _get(self, doc_id: str) -> StoredRow | None:
        with self._lock:
            entry = self._entries.get(doc_id)
            return entry.to_row(doc_id) if entry is not None else None

    def _collection(self, collection: str) -> list[StoredRow]:
        with self._lock:
            return [
                entry.to_row(doc_id)
                for doc_id, entry in sorted(self._entries.items())
                if entry.collection == collection
            ]

    def _page(self, collection: str, prefix: str, after: str | None, limit: int) -> list[StoredRow]:
        with self._lock:
            ids = sorted(
                doc_id
                for doc_id, entry in self._entries.items()
                if entry.collection == collection
                and doc_id.startswith(prefix)
                and (after is None or doc_id > after)
            )
            return [self._entries[doc_id].to_row(doc_id) for doc_id in ids[:limit]]

    def _apply(self, writes: list[PendingWrite]) -> dict[str, int]:
        with self._lock:
            for write in writes:
                _check_expected(write, self._entries.get(write.id))
            versions: dict[str, int] = {}
            for write in writes:
                if write.is_delete:
                    self._entries.pop(write.id, None)
                    continue
                current = self._entries.get(write.id)
                version = current.version + 1 if current is not None else 1
                metadata = current.metadata if current is not None else json.dumps(write.metadata)
                self._entries[write.id] = _Entry(
                    collection=write.collection,
                    body=json.dumps(write.body),
                    metadata=metadata,
                    version=version,
                )
                versions[write.id] = version
            return versions

    def _insert_rows(self, rows: list[StoredRow]) -> None:
        with self._lock:
            for row in rows:
                if row.id in self._entries:
                    raise ConcurrencyError(
                        "Bulk insert target already exists", document_id=row.id
                    )
            for row in rows:
                self._entries[row.id] = _Entry(
                    collection=row.collection,
                    body=json.dumps(row.body),
                    metadata=json.dumps(row.metadata),
                    version=1,
                )


class InMemoryDocumentSession(BaseDocumentSession):
    """Session over an ``InMemoryDocumentStore``."""

    def __init__(self, store: InMemoryDocumentStore) -> None:
        super().__init__()
        self._store = store

    def _read(self, doc_id: str) -> StoredRow | None:
        return self._store._get(doc_id)

    def _read_collection(self, collection: str) -> list[StoredRow]:
        return self._store._collection(collection)

    def _commit(self, writes: list[PendingWrite]) -> dict[str, int]:
        return self._store._apply(writes)


def _check_expected(write: PendingWrite, current: _Entry | None) -> None:
    if write.expected_version is None:
        return
    actual = current.version if current is not None else 0
    if actual != write.expected_version:
        raise ConcurrencyError(
            "Document was modified concurrently",
            document_id=write.id,
            expected_version=write.expected_version,
            actual_version=actual,
        )
