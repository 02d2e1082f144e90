"""Document store adapters."""

from tessera.infra.persistence.documents.base import (
    BaseDocumentSession,
    BaseDocumentStore,
    BulkInsert,
)
from tessera.infra.persistence.documents.memory import (
    InMemoryDocumentSession,
    InMemoryDocumentStore,
)
from tessera.infra.persistence.documents.sql import SqlDocumentSession, SqlDocumentStore

__all__ = [
    "BaseDocumentSession",
    "BaseDocumentStore",
    "BulkInsert",
    "InMemoryDocumentSession",
    "InMemoryDocumentStore",
    "SqlDocumentSession",
    "SqlDocumentStore",
]
