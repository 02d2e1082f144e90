"""Shared unit-of-work machinery for the document store adapters.

A session keeps an identity map of the documents it loaded or stored,
together with the body and version last read from (or written to) the
backend. ``save_changes`` turns the tracked state into a batch of
``PendingWrite`` values and hands it to the backend, which applies the
batch atomically or not at all.

Versions are per document: an insert creates version 1 and every update
increments it. A write whose expected version no longer matches the stored
one raises ``ConcurrencyError``.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar, cast

from tessera.foundation.domain.documents import ID_SEPARATOR, Document
from tessera.foundation.domain.exceptions import ConflictError
from tessera.foundation.domain.ports.document_store import FieldChange, StreamResult

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

D = TypeVar("D", bound=Document)

STREAM_PAGE_SIZE = 256


@dataclass(frozen=True, slots=True)
class StoredRow:
    """A document as the backend holds it."""

    id: str
    collection: str
    body: dict[str, Any]
    metadata: dict[str, Any]
    version: int


@dataclass(frozen=True, slots=True)
class PendingWrite:
    """One write of a ``save_changes`` batch.

    ``body`` is ``None`` for a delete. ``expected_version`` is 0 when the
    document must not exist yet, and ``None`` for an unconditional delete of
    a document the session never loaded.
    """

    id: str
    collection: str
    body: dict[str, Any] | None
    expected_version: int | None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_delete(self) -> bool:
        return self.body is None


class BaseDocumentSession(ABC):
    """Change-tracking session over a backend-specific reader and committer."""

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}
        self._snapshots: dict[str, dict[str, Any]] = {}
        self._versions: dict[str, int] = {}
        self._deleted: dict[str, tuple[str, int | None]] = {}
        self._ignored: set[str] = set()
        self._closed = False

    # -- backend hooks ---------------------------------------------------

    @abstractmethod
    def _read(self, doc_id: str) -> StoredRow | None: ...

    @abstractmethod
    def _read_collection(self, collection: str) -> list[StoredRow]: ...

    @abstractmethod
    def _commit(self, writes: list[PendingWrite]) -> dict[str, int]:
        """Apply ``writes`` atomically and return the new version per stored id."""

    # -- session API -----------------------------------------------------

    def load(self, model: type[D], doc_id: str) -> D | None:
        self._ensure_open()
        if doc_id in self._deleted:
            return None
        tracked = self._documents.get(doc_id)
        if tracked is not None:
            return cast(D, tracked)
        row = self._read(doc_id)
        if row is None or row.collection != model.collection():
            return None
        return self._track(model, row)

    def store(self, document: Document, doc_id: str | None = None) -> None:
        self._ensure_open()
        target = doc_id or document.id or _generate_id(type(document))
        tracked = self._documents.get(target)
        if tracked is not None and tracked is not document:
            raise ConflictError(
                "A different document instance with this id is already tracked",
                document_id=target,
            )
        document.id = target
        self._documents[target] = document
        deleted = self._deleted.pop(target, None)
        if deleted is not None and deleted[1] is not None:
            # Re-storing a deleted document overwrites the stored one.
            self._versions[target] = deleted[1]
            self._snapshots[target] = {}

    def delete(self, document_or_id: Document | str) -> None:
        self._ensure_open()
        if isinstance(document_or_id, Document):
            if document_or_id.id is None:
                raise ConflictError("Cannot delete a document that has no id")
            doc_id = document_or_id.id
            collection = type(document_or_id).collection()
        else:
            doc_id = document_or_id
            tracked = self._documents.get(doc_id)
            if tracked is not None:
                collection = type(tracked).collection()
            else:
                collection = _collection_of(doc_id)
        if doc_id in self._documents and doc_id not in self._versions:
            # Never saved: forget it instead of deleting a stored document.
            del self._documents[doc_id]
            self._snapshots.pop(doc_id, None)
            self._ignored.discard(doc_id)
            return
        self._documents.pop(doc_id, None)
        self._snapshots.pop(doc_id, None)
        self._ignored.discard(doc_id)
        self._deleted[doc_id] = (collection, self._versions.pop(doc_id, None))

    def query(self, model: type[D], where: Callable[[D], bool] | None = None) -> list[D]:
        """Return the stored documents of ``model`` that satisfy ``where``.

        Documents already tracked by this session are returned as the tracked
        instances; unsaved stores are not included.
        """
        self._ensure_open()
        results: list[D] = []
        for row in self._read_collection(model.collection()):
            if row.id in self._deleted:
                continue
            tracked = self._documents.get(row.id)
            document = cast(D, tracked) if tracked is not None else self._track(model, row)
            if where is None or where(document):
                results.append(document)
        return results

    def what_changed(self) -> dict[str, list[FieldChange]]:
        changes: dict[str, list[FieldChange]] = {}
        for doc_id, document in self._documents.items():
            if doc_id in self._ignored:
                continue
            field_changes = _diff(self._snapshots.get(doc_id, {}), document.to_body())
            if field_changes:
                changes[doc_id] = field_changes
        return changes

    def ignore_changes_for(self, document: Document) -> None:
        if document.id is not None:
            self._ignored.add(document.id)

    @property
    def has_changes(self) -> bool:
        if self._deleted:
            return True
        return any(
            doc_id not in self._versions or self._snapshots.get(doc_id) != document.to_body()
            for doc_id, document in self._documents.items()
            if doc_id not in self._ignored
        )

    def save_changes(self) -> None:
        self._ensure_open()
        writes: list[PendingWrite] = []
        bodies: dict[str, dict[str, Any]] = {}
        for doc_id, document in self._documents.items():
            if doc_id in self._ignored:
                continue
            body = document.to_body()
            version = self._versions.get(doc_id)
            if version is not None and self._snapshots.get(doc_id) == body:
                continue
            bodies[doc_id] = body
            writes.append(
                PendingWrite(
                    id=doc_id,
                    collection=type(document).collection(),
                    body=body,
                    expected_version=version if version is not None else 0,
                )
            )
        for doc_id, (collection, version) in self._deleted.items():
            writes.append(
                PendingWrite(id=doc_id, collection=collection, body=None, expected_version=version)
            )
        if not writes:
            return

        new_versions = self._commit(writes)
        for doc_id, body in bodies.items():
            self._snapshots[doc_id] = body
            self._versions[doc_id] = new_versions[doc_id]
        self._deleted.clear()
        logger.debug("document_session_saved", extra={"writes": len(writes)})

    def close(self) -> None:
        self._documents.clear()
        self._snapshots.clear()
        self._versions.clear()
        self._deleted.clear()
        self._ignored.clear()
        self._closed = True

    def __enter__(self) -> BaseDocumentSession:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # -- helpers ---------------------------------------------------------

    def _track(self, model: type[D], row: StoredRow) -> D:
        document = cast(D, model.from_body(row.id, row.body))
        self._documents[row.id] = document
        self._snapshots[row.id] = document.to_body()
        self._versions[row.id] = row.version
        return document

    def _ensure_open(self) -> None:
        if self._closed:
            msg = "Session is closed"
            raise RuntimeError(msg)


class BulkInsert:
    """Buffered batch writer returned by ``DocumentStore.bulk_insert``.

    Documents are written when the ``with`` block exits without an
    exception; an exception discards the whole buffer.
    """

    def __init__(self, flush: Callable[[list[StoredRow]], None]) -> None:
        self._flush = flush
        self._rows: list[StoredRow] = []

    def store(
        self,
        document: Document,
        doc_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._rows.append(
            StoredRow(
                id=doc_id,
                collection=type(document).collection(),
                body=document.to_body(),
                metadata=dict(metadata or {}),
                version=1,
            )
        )

    def __enter__(self) -> BulkInsert:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            logger.warning(
                "bulk_insert_discarded",
                extra={"buffered": len(self._rows), "error": exc_type.__name__},
            )
            self._rows.clear()
            return
        if self._rows:
            self._flush(self._rows)
            logger.debug("bulk_insert_flushed", extra={"documents": len(self._rows)})
        self._rows = []


class BaseDocumentStore(ABC):
    """Streaming and bulk-insert behaviour shared by the adapters."""

    @abstractmethod
    def open_session(self) -> BaseDocumentSession: ...

    @abstractmethod
    def _insert_rows(self, rows: list[StoredRow]) -> None:
        """Insert ``rows`` atomically; raise ``ConcurrencyError`` if any id exists."""

    @abstractmethod
    def _page(self, collection: str, prefix: str, after: str | None, limit: int) -> list[StoredRow]:
        """Return up to ``limit`` rows with ids after ``after``, in id order."""

    @abstractmethod
    def next_identity(self, collection: str) -> int: ...

    @abstractmethod
    def seed_identity(self, collection: str, value: int) -> None: ...

    def bulk_insert(self) -> BulkInsert:
        return BulkInsert(self._insert_rows)

    def stream(self, model: type[D], start_with: str | None = None) -> Iterator[StreamResult[D]]:
        prefix = model.id_prefix() if start_with is None else start_with
        return self._stream(model, prefix)

    def _stream(self, model: type[D], prefix: str) -> Iterator[StreamResult[D]]:
        after: str | None = None
        while True:
            page = self._page(model.collection(), prefix, after, STREAM_PAGE_SIZE)
            for row in page:
                document = cast(D, model.from_body(row.id, row.body))
                yield StreamResult(id=row.id, document=document, metadata=dict(row.metadata))
            if len(page) < STREAM_PAGE_SIZE:
                return
            after = page[-1].id


def _generate_id(model: type[Document]) -> str:
    return f"{model.id_prefix()}{uuid.uuid4()}"


def _collection_of(doc_id: str) -> str:
    return doc_id.split(ID_SEPARATOR, 1)[0]


def _diff(old: dict[str, Any], new: dict[str, Any]) -> list[FieldChange]:
    return [
        FieldChange(field_name=name, old_value=old.get(name), new_value=value)
        for name, value in new.items()
        if old.get(name) != value
    ]
