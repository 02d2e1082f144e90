"""Domain port interfaces.

Ports define the contracts the identity core uses to reach the document
database and the compare-exchange store. Adapters live in
``tessera.infra.persistence``.
"""

from tessera.foundation.domain.ports.compare_exchange import (
    CompareExchangeResult,
    CompareExchangeStore,
    CompareExchangeValue,
)
from tessera.foundation.domain.ports.document_store import (
    BulkInsertOperation,
    DocumentSession,
    DocumentStore,
    FieldChange,
    StreamResult,
)

__all__ = [
    "BulkInsertOperation",
    "CompareExchangeResult",
    "CompareExchangeStore",
    "CompareExchangeValue",
    "DocumentSession",
    "DocumentStore",
    "FieldChange",
    "StreamResult",
]
