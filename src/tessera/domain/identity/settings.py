"""Identity behaviour configuration using Pydantic settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from tessera.domain.identity.conventions import UserIdType


class IdentitySettings(BaseSettings):
    """Configuration for the user store.

    Environment Variables:
        TESSERA_IDENTITY_REQUIRE_UNIQUE_USER_NAME: Reserve user names as well
            as emails (default: false).
        TESSERA_IDENTITY_AUTO_SAVE_CHANGES: Flush updates that do not touch a
            unique attribute (default: true). Create, delete and updates that
            change the email or user name always flush.
        TESSERA_IDENTITY_USER_ID_TYPE: Id scheme for new users: ``random``,
            ``sequential``, ``email`` or ``username`` (default: random).

    Example:
        >>> IdentitySettings(require_unique_user_name=True).user_id_type
        <UserIdType.RANDOM: 'random'>
    """

    model_config = SettingsConfigDict(
        env_prefix="TESSERA_IDENTITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    require_unique_user_name: bool = Field(
        default=False,
        description="Enforce user name uniqueness in addition to email",
    )
    auto_save_changes: bool = Field(
        default=True,
        description="Persist updates that do not change a unique attribute",
    )
    user_id_type: UserIdType = Field(
        default=UserIdType.RANDOM,
        description="Id scheme assigned to new users",
    )


@lru_cache(maxsize=1)
def get_identity_settings() -> IdentitySettings:
    """Get cached IdentitySettings instance.

    Clear cache with ``get_identity_settings.cache_clear()`` for testing.
    """
    return IdentitySettings()
