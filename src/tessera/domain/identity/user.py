"""Identity user document.

The email and user name are stored in canonical (trimmed, lowercase) form.
Uniqueness of both is enforced through compare-exchange reservations, not
by the document store.
"""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, Field

from tessera.foundation.domain.documents import Document


class IdentityUserClaim(BaseModel):
    claim_type: str
    claim_value: str


class UserLoginInfo(BaseModel):
    login_provider: str
    provider_key: str
    provider_display_name: str | None = None


class IdentityUserAuthToken(BaseModel):
    login_provider: str
    name: str
    value: str


class IdentityUser(Document):
    """A user stored in the ``Users`` collection.

    Subclass to add application fields; subclasses keep the ``Users``
    collection unless they set their own ``collection_name``.

    Attributes:
        email: Canonical email address (unique).
        user_name: Canonical user name (unique when configured).
        roles: Names of the roles the user belongs to.
    """

    collection_name: ClassVar[str] = "Users"

    email: str = ""
    user_name: str = ""
    password_hash: str | None = None
    security_stamp: str | None = None
    email_confirmed: bool = False
    phone_number: str | None = None
    phone_number_confirmed: bool = False
    two_factor_enabled: bool = False
    two_factor_authenticator_key: str | None = None
    lockout_end: datetime | None = None
    lockout_enabled: bool = False
    access_failed_count: int = 0
    roles: list[str] = Field(default_factory=list)
    claims: list[IdentityUserClaim] = Field(default_factory=list)
    logins: list[UserLoginInfo] = Field(default_factory=list)
    tokens: list[IdentityUserAuthToken] = Field(default_factory=list)
    two_factor_recovery_codes: list[str] = Field(default_factory=list)
