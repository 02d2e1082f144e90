"""Port interface for a cluster-wide compare-exchange (CAS) store.

This is the only linearizable primitive the identity core relies on. Every
key holds a ``(value, version)`` pair; every mutation names the version it
last observed and is rejected when the version moved on.

Example:
    >>> def claim(store: CompareExchangeStore, key: str) -> bool:
    ...     return store.put(key, "", 0).successful
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class CompareExchangeValue:
    """A key with its current value and version.

    Attributes:
        key: Compare-exchange key.
        value: Stored value ("" marks a reservation not yet bound).
        version: Store-issued version, strictly increasing across mutations.
    """

    key: str
    value: str
    version: int


@dataclass(frozen=True, slots=True)
class CompareExchangeResult:
    """Outcome of a conditional put or delete.

    On success ``value``/``version`` describe the new state (the deleted
    state for a delete). On failure they describe the state that won, or are
    ``None``/``0`` when the key does not exist.
    """

    successful: bool
    value: str | None = None
    version: int = 0


@runtime_checkable
class CompareExchangeStore(Protocol):
    """Port for single-key compare-and-swap operations.

    Implementations must be linearizable per key and must never raise for a
    version mismatch: losing the race is reported as ``successful=False``.
    Transport errors are raised as-is.
    """

    def get(self, key: str) -> CompareExchangeValue | None:
        """Return the current value and version, or None if the key is absent."""
        ...

    def put(self, key: str, value: str, expected_version: int) -> CompareExchangeResult:
        """Write ``value`` if the key is at ``expected_version``.

        Args:
            key: Compare-exchange key.
            value: New value.
            expected_version: Version last observed; 0 means the key must not exist.
        """
        ...

    def delete(self, key: str, expected_version: int) -> CompareExchangeResult:
        """Delete the key if it is at ``expected_version``."""
        ...

    def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with ``prefix`` (administrative inspection)."""
        ...
