"""Identity role document."""

from __future__ import annotations

from typing import ClassVar

from pydantic import Field

from tessera.foundation.domain.documents import Document


class IdentityRole(Document):
    """A role stored in the ``IdentityRoles`` collection.

    ``users`` holds back-references to member user ids; the user document
    holds the role names. Both sides are updated in the same session.
    """

    collection_name: ClassVar[str] = "IdentityRoles"

    name: str = ""
    users: list[str] = Field(default_factory=list)
