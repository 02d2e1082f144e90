"""SQLAlchemy engine management for the SQL-backed stores.

The SQL document store and the SQL compare-exchange store run their
statements on a synchronous engine. Both can share one ``DatabaseManager``.

Usage:
    manager = DatabaseManager(StoreSettings(urls=["sqlite:///identity.db"]))
    engine = manager.get_engine()
    manager.dispose()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from tessera.infra.persistence.settings import StoreSettings


def build_engine(
    url: str,
    *,
    echo: bool = False,
    cert_file_path: str | None = None,
    cert_password: str | None = None,
) -> Engine:
    """Create a synchronous engine for ``url``.

    In-memory SQLite gets a single shared connection so every session sees
    the same database. PostgreSQL gets the client certificate, when one is
    configured, through libpq's ``sslcert``/``sslpassword`` parameters.

    Args:
        url: SQLAlchemy URL.
        echo: Echo SQL statements.
        cert_file_path: Optional client certificate path.
        cert_password: Optional certificate key password.
    """
    parsed = make_url(url)
    kwargs: dict[str, Any] = {"echo": echo}
    connect_args: dict[str, Any] = {}

    if parsed.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        if parsed.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs.update(pool_pre_ping=True, pool_recycle=3600)
        if parsed.drivername == "postgresql":
            parsed = parsed.set(drivername="postgresql+psycopg")
        if cert_file_path:
            connect_args["sslmode"] = "require"
            connect_args["sslcert"] = cert_file_path
            if cert_password:
                connect_args["sslpassword"] = cert_password

    if connect_args:
        kwargs["connect_args"] = connect_args
    return create_engine(parsed, **kwargs)


class DatabaseManager:
    """Encapsulates engine creation and disposal for one store URL.

    Multiple instances can coexist with different configurations
    (e.g. for testing).
    """

    def __init__(self, settings: StoreSettings, url: str | None = None) -> None:
        self._settings = settings
        self._url = url or settings.document_url
        self._engine: Engine | None = None

    @property
    def settings(self) -> StoreSettings:
        return self._settings

    @property
    def url(self) -> str:
        return self._url

    def get_engine(self) -> Engine:
        """Get or create the engine configured from this manager's settings."""
        if self._engine is None:
            self._engine = build_engine(
                self._url,
                echo=self._settings.echo,
                cert_file_path=self._settings.cert_file_path,
                cert_password=self._settings.cert_password,
            )
        return self._engine

    def dispose(self) -> None:
        """Dispose of the engine and its connection pool.

        Safe to call multiple times.
        """
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
