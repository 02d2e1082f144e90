"""Command line entry point for the user id migration.

Usage:
    tessera-migrate --id-type sequential [--unique-user-names]

Store locations come from the ``TESSERA_STORE_*`` environment variables.
Back up the database first and stop every other writer while it runs.
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from tessera.domain.identity.conventions import UserIdType
from tessera.domain.identity.infrastructure.reservation_registry import ReservationRegistry
from tessera.domain.identity.migrations.change_user_id_type import ChangeUserIdType
from tessera.foundation.domain.exceptions import DomainError
from tessera.infra.observability.logging import configure_logging, get_logger
from tessera.infra.persistence.factory import StoreFactory
from tessera.infra.persistence.settings import StoreSettings

_ID_TYPES = [id_type.value for id_type in UserIdType]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tessera-migrate",
        description="Re-key every user to a new id scheme and repoint its reservations.",
    )
    parser.add_argument("--id-type", required=True, choices=_ID_TYPES, help="Target id scheme")
    parser.add_argument(
        "--unique-user-names",
        action="store_true",
        help="Repoint user name reservations as well as email reservations",
    )
    return parser


def main(argv: Sequence[str] | None = None, settings: StoreSettings | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    log = get_logger("tessera.migrate")

    factory = StoreFactory(settings or StoreSettings())
    try:
        migration = ChangeUserIdType(
            factory.document_store(),
            ReservationRegistry(factory.compare_exchange_store()),
            UserIdType(args.id_type),
            require_unique_user_name=args.unique_user_names,
        )
        result = migration.migrate()
    except DomainError as err:
        log.error("user_id_migration_failed", error_code=err.error_code, error=str(err))
        return 1
    finally:
        factory.close()

    print(
        f"cloned={result.cloned} skipped={result.skipped} "
        f"reservations_repointed={result.reservations_repointed} deleted={result.deleted}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
