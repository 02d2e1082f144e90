"""Tests for the tessera-migrate command."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from tessera.domain.identity.infrastructure.reservation_registry import ReservationRegistry
from tessera.domain.identity.infrastructure.session_manager import DbSessionManager
from tessera.domain.identity.migrations.cli import build_parser, main
from tessera.domain.identity.user import IdentityUser
from tessera.domain.identity.user_store import UserStore
from tessera.foundation.domain.exceptions import StaleReservationError
from tessera.infra.persistence.factory import StoreFactory
from tessera.infra.persistence.settings import StoreSettings

pytestmark = pytest.mark.usefixtures("restore_root_logger")


@pytest.mark.unit
class TestParser:
    def test_id_type_is_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_rejects_unknown_id_type(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--id-type", "guid"])

    def test_parses_options(self) -> None:
        args = build_parser().parse_args(["--id-type", "email", "--unique-user-names"])
        assert args.id_type == "email"
        assert args.unique_user_names is True


@pytest.mark.unit
class TestMain:
    def test_empty_store(self, capsys: pytest.CaptureFixture[str]) -> None:
        exit_code = main(["--id-type", "sequential"], StoreSettings(urls=["memory://"]))

        assert exit_code == 0
        assert capsys.readouterr().out.strip() == (
            "cloned=0 skipped=0 reservations_repointed=0 deleted=0"
        )

    def test_failure_returns_non_zero(self) -> None:
        with patch("tessera.domain.identity.migrations.cli.ChangeUserIdType") as mock_migration:
            mock_migration.return_value.migrate.side_effect = StaleReservationError(
                "emails/a@x.com"
            )
            exit_code = main(["--id-type", "sequential"], StoreSettings(urls=["memory://"]))

        assert exit_code == 1


@pytest.mark.integration
class TestMainOnSqlite:
    def test_migrates_users_in_database_file(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        settings = StoreSettings(urls=[f"sqlite:///{tmp_path / 'identity.db'}"])
        factory = StoreFactory(settings)
        registry = ReservationRegistry(factory.compare_exchange_store())
        store = UserStore(DbSessionManager(factory.document_store()), registry)
        for email in ("a@x.com", "b@x.com"):
            assert store.create(IdentityUser(email=email)).succeeded
        factory.close()

        exit_code = main(["--id-type", "sequential"], settings)

        assert exit_code == 0
        assert capsys.readouterr().out.strip().endswith(
            "cloned=2 skipped=0 reservations_repointed=2 deleted=2"
        )
        factory = StoreFactory(settings)
        ids = [r.id for r in factory.document_store().stream(IdentityUser)]
        assert ids == ["Users/1", "Users/2"]
        factory.close()
