"""
Unit tests for the schema migrator with a mocked asyncpg connection.
"""
import hashlib
import importlib.util
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest


MIGRATOR_PATH = Path(__file__).resolve().parents[2] / "cmd" / "migrator" / "main.py"


def load_migrator():
    # cmd/ is not a package: ``cmd`` would shadow the standard library module
    spec = importlib.util.spec_from_file_location("mdm_migrator", MIGRATOR_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


migrator_module = load_migrator()


@pytest.fixture
def migrations(tmp_path):
    (tmp_path / "001_core.sql").write_text("CREATE TABLE a (id INT);")
    (tmp_path / "002_more.sql").write_text("CREATE TABLE b (id INT);")
    return tmp_path


@pytest.fixture
def conn():
    conn = MagicMock()
    conn.execute = AsyncMock(return_value="OK")
    conn.fetch = AsyncMock(return_value=[])
    conn.transaction.return_value.__aenter__ = AsyncMock(return_value=None)
    conn.transaction.return_value.__aexit__ = AsyncMock(return_value=False)
    return conn


def checksum(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


class TestMigrator:
    """Tests for Migrator."""

    @pytest.mark.asyncio
    async def test_up_applies_pending_in_name_order(self, conn, migrations):
        """Test that only unrecorded files run, each recorded with its checksum."""
        conn.fetch.return_value = [
            {"name": "001_core.sql", "checksum": checksum(migrations / "001_core.sql")}
        ]

        applied = await migrator_module.Migrator(conn, migrations).up()

        assert applied == ["002_more.sql"]
        statements = [call.args for call in conn.execute.await_args_list]
        assert ("CREATE TABLE b (id INT);",) in statements
        assert ("CREATE TABLE a (id INT);",) not in statements
        recorded = statements[-1]
        assert "INSERT INTO schema_migrations" in recorded[0]
        assert recorded[1:] == ("002_more.sql", checksum(migrations / "002_more.sql"))
        conn.transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_up_when_current_applies_nothing(self, conn, migrations):
        """Test a second run against an up-to-date schema."""
        conn.fetch.return_value = [
            {"name": path.name, "checksum": checksum(path)} for path in migrations.glob("*.sql")
        ]

        assert await migrator_module.Migrator(conn, migrations).up() == []
        conn.transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_status_reports_edited_and_missing_files(self, conn, migrations):
        """Test drift detection between disk and the tracking table."""
        conn.fetch.return_value = [
            {"name": "001_core.sql", "checksum": "0" * 64},
            {"name": "000_removed.sql", "checksum": "1" * 64},
        ]

        report = await migrator_module.Migrator(conn, migrations).status()

        assert report == {
            "applied": [],
            "pending": ["002_more.sql"],
            "changed": ["001_core.sql"],
            "missing": ["000_removed.sql"],
        }

    @pytest.mark.asyncio
    async def test_forget_reports_unknown_name(self, conn, migrations):
        """Test removing a tracking row."""
        conn.execute.return_value = "DELETE 0"

        assert await migrator_module.Migrator(conn, migrations).forget("009_x.sql") is False

    def test_discover_without_directory(self, tmp_path):
        """Test that a missing directory has no migrations."""
        assert migrator_module.discover(tmp_path / "absent") == []

    def test_shipped_migrations_are_ordered(self):
        """Test that the repository migrations are discovered in name order."""
        names = [m.name for m in migrator_module.discover()]

        assert names == sorted(names)
        assert "002_outbox_and_link_detail.sql" in names
