"""Tessera Domain Identity -- users, roles and uniqueness reservations."""

from tessera.domain.identity.conventions import (
    IdStrategy,
    ReservationKind,
    UserIdType,
    compare_exchange_key_for,
    role_id_for,
    strategy_for,
)
from tessera.domain.identity.infrastructure import (
    DbSessionManager,
    ReservationOutcome,
    ReservationRegistry,
)
from tessera.domain.identity.role import IdentityRole
from tessera.domain.identity.settings import IdentitySettings, get_identity_settings
from tessera.domain.identity.user import (
    IdentityUser,
    IdentityUserAuthToken,
    IdentityUserClaim,
    UserLoginInfo,
)
from tessera.domain.identity.user_store import UserStore

__all__ = [
    "DbSessionManager",
    "IdStrategy",
    "IdentityRole",
    "IdentitySettings",
    "IdentityUser",
    "IdentityUserAuthToken",
    "IdentityUserClaim",
    "ReservationKind",
    "ReservationOutcome",
    "ReservationRegistry",
    "UserIdType",
    "UserLoginInfo",
    "UserStore",
    "compare_exchange_key_for",
    "get_identity_settings",
    "role_id_for",
    "strategy_for",
]
