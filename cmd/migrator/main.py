"""
MDM schema migrator.

Applies ``migrations/*.sql`` in name order. Each applied file is recorded
in ``schema_migrations`` with a checksum of its content, so ``status``
can report files edited after they were applied.

Usage:
    python cmd/migrator/main.py [up]
    python cmd/migrator/main.py status
    python cmd/migrator/main.py forget <name>
"""
import argparse
import asyncio
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import asyncpg
from dotenv import load_dotenv

from config.settings import get_settings
from pkg.logger.logger import get_logger, setup_logging


logger = get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "migrations"

_TRACKING_TABLE = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        name        VARCHAR(255) PRIMARY KEY,
        checksum    CHAR(64)     NOT NULL,
        applied_at  TIMESTAMPTZ  NOT NULL DEFAULT now()
    )
"""


@dataclass(frozen=True)
class MigrationFile:
    """A SQL file under the migrations directory."""

    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    def read(self) -> str:
        return self.path.read_text()

    def checksum(self) -> str:
        return hashlib.sha256(self.path.read_bytes()).hexdigest()


def discover(migrations_dir: Path = MIGRATIONS_DIR) -> list[MigrationFile]:
    """Migration files in apply order."""
    if not migrations_dir.is_dir():
        return []
    return [MigrationFile(path) for path in sorted(migrations_dir.glob("*.sql"))]


class Migrator:
    """Applies and inspects schema migrations over one connection."""

    def __init__(self, conn: asyncpg.Connection, migrations_dir: Path = MIGRATIONS_DIR) -> None:
        self._conn = conn
        self._dir = migrations_dir

    async def applied(self) -> dict[str, str]:
        """Checksums of applied migrations keyed by file name."""
        await self._conn.execute(_TRACKING_TABLE)
        rows = await self._conn.fetch("SELECT name, checksum FROM schema_migrations")
        return {row["name"]: row["checksum"] for row in rows}

    async def up(self) -> list[str]:
        """
        Apply every pending migration, each in its own transaction.

        Returns:
            Names of the migrations applied by this call.
        """
        applied = await self.applied()
        pending = [m for m in discover(self._dir) if m.name not in applied]
        if not pending:
            logger.info("Schema is up to date", applied=len(applied))
            return []

        for migration in pending:
            async with self._conn.transaction():
                await self._conn.execute(migration.read())
                await self._conn.execute(
                    "INSERT INTO schema_migrations (name, checksum) VALUES ($1, $2)",
                    migration.name,
                    migration.checksum(),
                )
            logger.info("Migration applied", migration=migration.name)
        return [m.name for m in pending]

    async def status(self) -> dict[str, list[str]]:
        """
        Compare the migrations directory with the tracking table.

        Returns:
            Names grouped as applied, pending, changed (edited after being
            applied) and missing (recorded but no longer on disk).
        """
        applied = await self.applied()
        files = {m.name: m for m in discover(self._dir)}
        report: dict[str, list[str]] = {"applied": [], "pending": [], "changed": [], "missing": []}
        for name, migration in files.items():
            if name not in applied:
                report["pending"].append(name)
            elif applied[name] != migration.checksum():
                report["changed"].append(name)
            else:
                report["applied"].append(name)
        report["missing"] = sorted(set(applied) - set(files))
        return report

    async def forget(self, name: str) -> bool:
        """
        Drop the tracking row of a migration so ``up`` applies it again.

        Schema changes it made are not reverted.
        """
        await self._conn.execute(_TRACKING_TABLE)
        result = await self._conn.execute("DELETE FROM schema_migrations WHERE name = $1", name)
        return result == "DELETE 1"


async def run(command: str, name: Optional[str] = None) -> int:
    settings = get_settings()
    conn = await asyncpg.connect(settings.database_url)
    try:
        migrator = Migrator(conn)
        if command == "status":
            report = await migrator.status()
            logger.info("Migration status", **report)
            return 1 if report["changed"] or report["missing"] else 0
        if command == "forget":
            if not await migrator.forget(name):
                logger.warning("Migration was not recorded", migration=name)
                return 1
            logger.info("Migration forgotten", migration=name)
            return 0
        applied = await migrator.up()
        logger.info("Migrations finished", applied=len(applied))
        return 0
    finally:
        await conn.close()


def main() -> None:
    load_dotenv()
    settings = get_settings()
    setup_logging(
        level=settings.log_level,
        json_format=settings.log_format == "json",
        service=f"{settings.app_name}-migrator",
    )

    parser = argparse.ArgumentParser(description="Apply or inspect MDM schema migrations.")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("up", help="apply pending migrations (default)")
    sub.add_parser("status", help="report applied, pending and edited migrations")
    forget = sub.add_parser("forget", help="drop the tracking row of a migration")
    forget.add_argument("name")
    args = parser.parse_args()

    raise SystemExit(asyncio.run(run(args.command or "up", getattr(args, "name", None))))


if __name__ == "__main__":
    main()
