"""Offline identity migrations."""

from tessera.domain.identity.migrations.base import MigrationBase
from tessera.domain.identity.migrations.change_user_id_type import (
    MIGRATED_FROM,
    ChangeUserIdType,
    MigrationResult,
)

__all__ = [
    "MIGRATED_FROM",
    "ChangeUserIdType",
    "MigrationBase",
    "MigrationResult",
]
