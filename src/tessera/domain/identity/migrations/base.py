"""Base class for offline document migrations."""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING, TypeVar

from tessera.foundation.domain.documents import Document

if TYPE_CHECKING:
    from tessera.foundation.domain.ports import DocumentStore, StreamResult

D = TypeVar("D", bound=Document)


class MigrationBase:
    """Gives migrations lazy, single-pass scans over a collection.

    Each call to ``stream`` or ``stream_with_metadata`` starts a new scan;
    a migration that needs a second pass calls it again.
    """

    def __init__(self, document_store: DocumentStore) -> None:
        self._document_store = document_store

    @property
    def document_store(self) -> DocumentStore:
        return self._document_store

    def stream(self, model: type[D]) -> Iterator[D]:
        for result in self.stream_with_metadata(model):
            yield result.document

    def stream_with_metadata(self, model: type[D]) -> Iterator[StreamResult[D]]:
        return self._document_store.stream(model, model.id_prefix())
