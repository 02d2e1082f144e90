"""Compare-exchange store backed by a SQL table.

Uses a dedicated table with a primary key on the compare-exchange key and
a single-row version counter. Every put/delete is one transaction that
first bumps the counter (serializing writers on that row), then applies
the conditional write:
- create (expected version 0): INSERT ... ON CONFLICT DO NOTHING
- update: UPDATE ... WHERE key = :key AND version = :expected
- delete: DELETE ... WHERE key = :key AND version = :expected
A write that matches no row is rolled back and reported as unsuccessful.

The statements are portable between PostgreSQL and SQLite (3.24+).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import text

from tessera.foundation.domain.ports.compare_exchange import (
    CompareExchangeResult,
    CompareExchangeValue,
)

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = (
    """
    CREATE TABLE IF NOT EXISTS compare_exchange (
        cx_key VARCHAR(512) PRIMARY KEY,
        cx_value TEXT NOT NULL,
        version BIGINT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS compare_exchange_version (
        id INTEGER PRIMARY KEY,
        last_version BIGINT NOT NULL
    )
    """,
    """
    INSERT INTO compare_exchange_version (id, last_version) VALUES (1, 0)
    ON CONFLICT (id) DO NOTHING
    """,
)

_NEXT_VERSION_SQL = (
    "UPDATE compare_exchange_version SET last_version = last_version + 1 WHERE id = 1"
)

_CURRENT_VERSION_SQL = "SELECT last_version FROM compare_exchange_version WHERE id = 1"

_GET_SQL = "SELECT cx_key, cx_value, version FROM compare_exchange WHERE cx_key = :key"

_CREATE_SQL = """
INSERT INTO compare_exchange (cx_key, cx_value, version)
VALUES (:key, :value, :version)
ON CONFLICT (cx_key) DO NOTHING
"""

_UPDATE_SQL = """
UPDATE compare_exchange
SET cx_value = :value, version = :version
WHERE cx_key = :key AND version = :expected
"""

_DELETE_SQL = "DELETE FROM compare_exchange WHERE cx_key = :key AND version = :expected"

_KEYS_SQL = r"""
SELECT cx_key FROM compare_exchange
WHERE cx_key LIKE :pattern ESCAPE '\'
ORDER BY cx_key
"""


class SqlCompareExchangeStore:
    """``CompareExchangeStore`` over a SQLAlchemy engine.

    Attributes:
        _engine: Engine shared with (or separate from) the document store.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def ensure_tables_exist(self) -> None:
        """Create the compare-exchange tables if they do not exist. Idempotent."""
        with self._engine.begin() as conn:
            for statement in _CREATE_TABLE_SQL:
                conn.execute(text(statement))
        logger.info("compare_exchange_tables_ensured")

    def get(self, key: str) -> CompareExchangeValue | None:
        with self._engine.connect() as conn:
            return _read(conn, key)

    def put(self, key: str, value: str, expected_version: int) -> CompareExchangeResult:
        with self._engine.connect() as conn:
            version = _next_version(conn)
            if expected_version == 0:
                result = conn.execute(
                    text(_CREATE_SQL), {"key": key, "value": value, "version": version}
                )
            else:
                result = conn.execute(
                    text(_UPDATE_SQL),
                    {"key": key, "value": value, "version": version, "expected": expected_version},
                )
            if result.rowcount != 1:
                conn.rollback()
                return _failure(_read(conn, key))
            conn.commit()
        return CompareExchangeResult(successful=True, value=value, version=version)

    def delete(self, key: str, expected_version: int) -> CompareExchangeResult:
        with self._engine.connect() as conn:
            current = _read(conn, key)
            version = _next_version(conn)
            result = conn.execute(text(_DELETE_SQL), {"key": key, "expected": expected_version})
            if result.rowcount != 1:
                conn.rollback()
                return _failure(_read(conn, key))
            conn.commit()
        value = current.value if current is not None else None
        return CompareExchangeResult(successful=True, value=value, version=version)

    def keys(self, prefix: str = "") -> list[str]:
        pattern = prefix.replace("\\", "\\\\").replace("%", r"\%").replace("_", r"\_") + "%"
        with self._engine.connect() as conn:
            rows = conn.execute(text(_KEYS_SQL), {"pattern": pattern})
            return [row[0] for row in rows]


def _next_version(conn: Connection) -> int:
    conn.execute(text(_NEXT_VERSION_SQL))
    version: int = conn.execute(text(_CURRENT_VERSION_SQL)).scalar_one()
    return version


def _read(conn: Connection, key: str) -> CompareExchangeValue | None:
    row = conn.execute(text(_GET_SQL), {"key": key}).fetchone()
    if row is None:
        return None
    return CompareExchangeValue(key=row[0], value=row[1], version=int(row[2]))


def _failure(current: CompareExchangeValue | None) -> CompareExchangeResult:
    if current is None:
        return CompareExchangeResult(successful=False)
    return CompareExchangeResult(successful=False, value=current.value, version=current.version)
