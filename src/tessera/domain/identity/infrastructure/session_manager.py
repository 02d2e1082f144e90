"""One document session per unit of work."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tessera.foundation.domain.ports import DocumentSession, DocumentStore

logger = logging.getLogger(__name__)


class DbSessionManager:
    """Owns the document session of the current unit of work.

    The session is opened lazily on first use. A host creates one manager
    per request (or job) and calls ``save_changes`` or ``renew_session``
    at its boundaries.
    """

    def __init__(self, document_store: DocumentStore) -> None:
        self._document_store = document_store
        self._session: DocumentSession | None = None

    def get_document_store(self) -> DocumentStore:
        return self._document_store

    def get_session(self) -> DocumentSession:
        if self._session is None:
            self._session = self._document_store.open_session()
        return self._session

    def renew_session(self, save_changes: bool = False) -> DocumentSession:
        """Close the current session and open a new one.

        Args:
            save_changes: Save the current session first if it has changes.
        """
        if self._session is not None:
            if save_changes and self._session.has_changes:
                self.save_changes()
            self._session.close()
        self._session = self._document_store.open_session()
        logger.debug("document_session_renewed", extra={"saved": save_changes})
        return self._session

    def save_changes(self) -> None:
        """Save the current session.

        Raises:
            RuntimeError: If no session has been opened.
        """
        if self._session is None:
            msg = "No document session has been opened"
            raise RuntimeError(msg)
        self._session.save_changes()

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
