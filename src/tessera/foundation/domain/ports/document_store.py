"""Port interfaces for the document store and its unit-of-work session.

Documents are versioned individually. A session buffers stores and
deletes until ``save_changes``; one save is atomic, but nothing spans
separate saves or links a save to the compare-exchange store.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar, runtime_checkable

from tessera.foundation.domain.documents import Document

if TYPE_CHECKING:
    from types import TracebackType

D = TypeVar("D", bound=Document)


@dataclass(frozen=True, slots=True)
class FieldChange:
    """One changed field of a tracked document."""

    field_name: str
    old_value: Any
    new_value: Any


@dataclass
class StreamResult(Generic[D]):
    """A streamed document with its id and store metadata."""

    id: str
    document: D
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class DocumentSession(Protocol):
    """Unit of work over the document store.

    Loaded documents are tracked: ``what_changed`` diffs their current state
    against the state last read from or written to the store.
    """

    def load(self, model: type[D], doc_id: str) -> D | None: ...

    def store(self, document: Document, doc_id: str | None = None) -> None: ...

    def delete(self, document_or_id: Document | str) -> None: ...

    def query(self, model: type[D], where: Callable[[D], bool] | None = None) -> list[D]: ...

    def save_changes(self) -> None: ...

    def what_changed(self) -> dict[str, list[FieldChange]]: ...

    def ignore_changes_for(self, document: Document) -> None: ...

    @property
    def has_changes(self) -> bool: ...

    def close(self) -> None: ...


@runtime_checkable
class BulkInsertOperation(Protocol):
    """Deferred batch writer, flushed when its ``with`` block exits cleanly."""

    def store(
        self,
        document: Document,
        doc_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    def __enter__(self) -> BulkInsertOperation: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...


@runtime_checkable
class DocumentStore(Protocol):
    """Port for the document database."""

    def open_session(self) -> DocumentSession: ...

    def bulk_insert(self) -> BulkInsertOperation: ...

    def stream(self, model: type[D], start_with: str | None = None) -> Iterator[StreamResult[D]]:
        """Lazily yield every document of ``model`` whose id starts with ``start_with``.

        Each call is a new, single pass over the collection.
        """
        ...

    def next_identity(self, collection: str) -> int:
        """Increment and return the store-wide counter for ``collection``."""
        ...

    def seed_identity(self, collection: str, value: int) -> None:
        """Raise the counter for ``collection`` to at least ``value``."""
        ...
