"""Tessera Foundation Domain -- pure Python domain primitives.

Exceptions, value objects, lifecycle results, cancellation and the port
interfaces the identity core is written against.
"""

from tessera.foundation.domain.cancellation import CancellationToken
from tessera.foundation.domain.documents import Document
from tessera.foundation.domain.exceptions import (
    ConcurrencyError,
    ConflictError,
    DomainError,
    NotFoundError,
    OperationCancelledError,
    StaleReservationError,
    ValidationError,
)
from tessera.foundation.domain.identity_result import (
    IdentityError,
    IdentityErrorDescriber,
    IdentityResult,
)
from tessera.foundation.domain.ports import (
    BulkInsertOperation,
    CompareExchangeResult,
    CompareExchangeStore,
    CompareExchangeValue,
    DocumentSession,
    DocumentStore,
    FieldChange,
    StreamResult,
)
from tessera.foundation.domain.user_value_objects import (
    NormalizedEmail,
    NormalizedUserName,
    normalize_email,
    normalize_user_name,
)

__all__ = [
    "BulkInsertOperation",
    "CancellationToken",
    "CompareExchangeResult",
    "CompareExchangeStore",
    "CompareExchangeValue",
    "ConcurrencyError",
    "ConflictError",
    "Document",
    "DocumentSession",
    "DocumentStore",
    "DomainError",
    "FieldChange",
    "IdentityError",
    "IdentityErrorDescriber",
    "IdentityResult",
    "NormalizedEmail",
    "NormalizedUserName",
    "NotFoundError",
    "OperationCancelledError",
    "StaleReservationError",
    "StreamResult",
    "ValidationError",
    "normalize_email",
    "normalize_user_name",
]
