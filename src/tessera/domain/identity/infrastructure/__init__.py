"""Identity infrastructure: reservations and session management."""

from tessera.domain.identity.infrastructure.reservation_registry import (
    PLACEHOLDER,
    ReservationOutcome,
    ReservationRegistry,
)
from tessera.domain.identity.infrastructure.session_manager import DbSessionManager

__all__ = [
    "PLACEHOLDER",
    "DbSessionManager",
    "ReservationOutcome",
    "ReservationRegistry",
]
