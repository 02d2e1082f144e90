"""Cooperative cancellation token for request-scoped operations.

The lifecycle operations check the token at entry and before every
externally visible mutation. Nothing is interrupted mid-call: a blocking
round trip to the document or compare-exchange store always completes.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable

from tessera.foundation.domain.exceptions import OperationCancelledError


class CancellationToken:
    """Thread-safe cancellation flag.

    Example:
        >>> token = CancellationToken()
        >>> token.cancel()
        >>> token.is_cancellation_requested
        True
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    @classmethod
    def none(cls) -> CancellationToken:
        """Return a fresh token that nobody holds a reference to cancel."""
        return cls()

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._event.set()

    @property
    def is_cancellation_requested(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, operation: str, reserved_keys: Iterable[str] = ()) -> None:
        """Raise ``OperationCancelledError`` if cancellation was requested.

        Args:
            operation: Name of the operation being checked (for the error).
            reserved_keys: Compare-exchange keys already reserved by the
                operation. Non-empty means the caller must compensate.

        Raises:
            OperationCancelledError: If the token was cancelled.
        """
        if self._event.is_set():
            raise OperationCancelledError(operation, tuple(reserved_keys))
