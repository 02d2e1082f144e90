"""Base class for documents persisted through a ``DocumentSession``.

A document is a pydantic model with an ``id``. Everything except the id is
the document body; the id is the storage key. Ids are collection-scoped
strings such as ``"Users/1"``.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict

ID_SEPARATOR = "/"


class Document(BaseModel):
    """Base document model.

    Subclasses set ``collection_name``; when they do not, the collection is
    the class name with an "s" appended.

    Attributes:
        id: Storage key, assigned on first store.
    """

    model_config = ConfigDict(extra="ignore")

    collection_name: ClassVar[str] = ""

    id: str | None = None

    @classmethod
    def collection(cls) -> str:
        return cls.collection_name or f"{cls.__name__}s"

    @classmethod
    def id_prefix(cls) -> str:
        """Prefix shared by every id in this collection (e.g. ``"Users/"``)."""
        return f"{cls.collection()}{ID_SEPARATOR}"

    def to_body(self) -> dict[str, Any]:
        """Serialize the document without its id."""
        return self.model_dump(mode="json", exclude={"id"})

    @classmethod
    def from_body(cls, doc_id: str, body: dict[str, Any]) -> Document:
        return cls.model_validate({**body, "id": doc_id})
