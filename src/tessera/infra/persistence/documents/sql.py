"""Document store backed by SQL tables.

Schema:
    documents(id PRIMARY KEY, collection, body JSON text, metadata JSON text, version)
    document_identities(collection PRIMARY KEY, last_value)

A ``save_changes`` batch runs in one transaction. Inserts use
``ON CONFLICT DO NOTHING`` and updates/deletes are guarded by the expected
version; a statement that touches no row rolls the whole batch back and
raises ``ConcurrencyError``. Streaming uses keyset pagination, each page on
its own short-lived connection.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from tessera.foundation.domain.exceptions import ConcurrencyError
from tessera.infra.persistence.documents.base import (
    BaseDocumentSession,
    BaseDocumentStore,
    PendingWrite,
    StoredRow,
)

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        id VARCHAR(512) PRIMARY KEY,
        collection VARCHAR(255) NOT NULL,
        body TEXT NOT NULL,
        metadata TEXT NOT NULL,
        version BIGINT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents (collection, id)",
    """
    CREATE TABLE IF NOT EXISTS document_identities (
        collection VARCHAR(255) PRIMARY KEY,
        last_value BIGINT NOT NULL
    )
    """,
)

_SELECT_COLUMNS = "SELECT id, collection, body, metadata, version FROM documents"

_GET_SQL = f"{_SELECT_COLUMNS} WHERE id = :id"

_COLLECTION_SQL = f"{_SELECT_COLUMNS} WHERE collection = :collection ORDER BY id"

_PAGE_SQL = rf"""
{_SELECT_COLUMNS}
WHERE collection = :collection AND id LIKE :pattern ESCAPE '\' AND id > :after
ORDER BY id
LIMIT :limit
"""

_INSERT_SQL = """
INSERT INTO documents (id, collection, body, metadata, version)
VALUES (:id, :collection, :body, :metadata, 1)
ON CONFLICT (id) DO NOTHING
"""

_UPDATE_SQL = """
UPDATE documents SET body = :body, version = version + 1
WHERE id = :id AND version = :expected
"""

_DELETE_SQL = "DELETE FROM documents WHERE id = :id AND version = :expected"

_DELETE_ANY_SQL = "DELETE FROM documents WHERE id = :id"

_VERSION_SQL = "SELECT version FROM documents WHERE id = :id"

_ENSURE_IDENTITY_SQL = """
INSERT INTO document_identities (collection, last_value) VALUES (:collection, 0)
ON CONFLICT (collection) DO NOTHING
"""

_NEXT_IDENTITY_SQL = (
    "UPDATE document_identities SET last_value = last_value + 1 WHERE collection = :collection"
)

_SEED_IDENTITY_SQL = """
UPDATE document_identities SET last_value = :value
WHERE collection = :collection AND last_value < :value
"""

_READ_IDENTITY_SQL = "SELECT last_value FROM document_identities WHERE collection = :collection"


class SqlDocumentStore(BaseDocumentStore):
    """``DocumentStore`` over a SQLAlchemy engine.

    Attributes:
        _engine: Engine, possibly shared with the SQL compare-exchange store.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def ensure_tables_exist(self) -> None:
        """Create the document tables if they do not exist. Idempotent."""
        with self._engine.begin() as conn:
            for statement in _CREATE_TABLE_SQL:
                conn.execute(text(statement))
        logger.info("document_tables_ensured")

    def open_session(self) -> SqlDocumentSession:
        return SqlDocumentSession(self)

    def next_identity(self, collection: str) -> int:
        with self._engine.begin() as conn:
            conn.execute(text(_ENSURE_IDENTITY_SQL), {"collection": collection})
            conn.execute(text(_NEXT_IDENTITY_SQL), {"collection": collection})
            value: int = conn.execute(
                text(_READ_IDENTITY_SQL), {"collection": collection}
            ).scalar_one()
        return value

    def seed_identity(self, collection: str, value: int) -> None:
        with self._engine.begin() as conn:
            conn.execute(text(_ENSURE_IDENTITY_SQL), {"collection": collection})
            conn.execute(text(_SEED_IDENTITY_SQL), {"collection": collection, "value": value})

    def _get(self, doc_id: str) -> StoredRow | None:
        with self._engine.connect() as conn:
            row = conn.execute(text(_GET_SQL), {"id": doc_id}).fetchone()
        return _to_row(row) if row is not None else None

    def _collection(self, collection: str) -> list[StoredRow]:
        with self._engine.connect() as conn:
            rows = conn.execute(text(_COLLECTION_SQL), {"collection": collection}).fetchall()
        return [_to_row(row) for row in rows]

    def _page(self, collection: str, prefix: str, after: str | None, limit: int) -> list[StoredRow]:
        pattern = prefix.replace("\\", "\\\\").replace("%", r"\%").replace("_", r"\_") + "%"
        params = {
            "collection": collection,
            "pattern": pattern,
            "after": after or "",
            "limit": limit,
        }
        with self._engine.connect() as conn:
            rows = conn.execute(text(_PAGE_SQL), params).fetchall()
        return [_to_row(row) for row in rows]

    def _apply(self, writes: list[PendingWrite]) -> dict[str, int]:
        versions: dict[str, int] = {}
        with self._engine.begin() as conn:
            for write in writes:
                _execute_write(conn, write)
                if not write.is_delete:
                    versions[write.id] = conn.execute(
                        text(_VERSION_SQL), {"id": write.id}
                    ).scalar_one()
        return versions

    def _insert_rows(self, rows: list[StoredRow]) -> None:
        with self._engine.begin() as conn:
            for row in rows:
                result = conn.execute(
                    text(_INSERT_SQL),
                    {
                        "id": row.id,
                        "collection": row.collection,
                        "body": json.dumps(row.body),
                        "metadata": json.dumps(row.metadata),
                    },
                )
                if result.rowcount != 1:
                    raise ConcurrencyError(
                        "Bulk insert target already exists", document_id=row.id
                    )


class SqlDocumentSession(BaseDocumentSession):
    """Session over a ``SqlDocumentStore``."""

    def __init__(self, store: SqlDocumentStore) -> None:
        super().__init__()
        self._store = store

    def _read(self, doc_id: str) -> StoredRow | None:
        return self._store._get(doc_id)

    def _read_collection(self, collection: str) -> list[StoredRow]:
        return self._store._collection(collection)

    def _commit(self, writes: list[PendingWrite]) -> dict[str, int]:
        return self._store._apply(writes)


def _execute_write(conn: Connection, write: PendingWrite) -> None:
    if write.is_delete:
        if write.expected_version is None:
            conn.execute(text(_DELETE_ANY_SQL), {"id": write.id})
            return
        result = conn.execute(
            text(_DELETE_SQL), {"id": write.id, "expected": write.expected_version}
        )
    elif write.expected_version == 0:
        result = conn.execute(
            text(_INSERT_SQL),
            {
                "id": write.id,
                "collection": write.collection,
                "body": json.dumps(write.body),
                "metadata": json.dumps(write.metadata),
            },
        )
    else:
        result = conn.execute(
            text(_UPDATE_SQL),
            {"id": write.id, "body": json.dumps(write.body), "expected": write.expected_version},
        )
    if result.rowcount != 1:
        # Raising inside ``engine.begin()`` rolls back the batch.
        raise ConcurrencyError(
            "Document was modified concurrently",
            document_id=write.id,
            expected_version=write.expected_version,
        )


def _to_row(row: Any) -> StoredRow:
    return StoredRow(
        id=row[0],
        collection=row[1],
        body=json.loads(row[2]),
        metadata=json.loads(row[3]),
        version=int(row[4]),
    )
