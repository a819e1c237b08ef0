"""
Migration runner for versioned schema changes.

Migration modules live next to this file and are named {version}_{name}.py,
e.g. 001_obligations.py. Each defines VERSION, NAME, upgrade(conn) and
optionally downgrade(conn).
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class Migration:
    """A single schema migration."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]
    downgrade: Callable[[sqlite3.Connection], None] | None


def get_all_migrations() -> list[Migration]:
    """Load every migration module in this package, sorted by version.

    Raises:
        ImportError: If a migration module is missing or malformed
    """
    migrations: list[Migration] = []
    for py_file in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module = importlib.import_module(f"{__package__}.{py_file.stem}")
        try:
            migrations.append(
                Migration(
                    version=module.VERSION,
                    name=module.NAME,
                    upgrade=module.upgrade,
                    downgrade=getattr(module, "downgrade", None),
                )
            )
        except AttributeError as e:
            raise ImportError(f"Malformed migration {py_file.name}: {e}") from e

    versions = [m.version for m in migrations]
    if len(versions) != len(set(versions)):
        raise ImportError(f"Duplicate migration versions: {versions}")

    return sorted(migrations, key=lambda m: m.version)


class MigrationRunner:
    """Applies pending migrations and records them in `migrations`."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def applied_versions(self) -> set[int]:
        """Versions already recorded as applied."""
        return {row[0] for row in self.conn.execute("SELECT version FROM migrations")}

    def pending(self) -> list[Migration]:
        """Migrations not yet applied, in version order."""
        applied = self.applied_versions()
        return [m for m in get_all_migrations() if m.version not in applied]

    def apply(self, migration: Migration) -> None:
        """Apply one migration and record it, atomically."""
        logger.info("Applying migration %03d_%s", migration.version, migration.name)
        try:
            migration.upgrade(self.conn)
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (
                    migration.version,
                    migration.name,
                    datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                ),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.error("Migration %03d_%s failed", migration.version, migration.name)
            raise

    def revert(self, migration: Migration) -> None:
        """Undo one migration and drop its record."""
        if migration.downgrade is None:
            raise NotImplementedError(
                f"Migration {migration.version} ({migration.name}) cannot be reverted"
            )
        logger.info("Reverting migration %03d_%s", migration.version, migration.name)
        try:
            migration.downgrade(self.conn)
            self.conn.execute("DELETE FROM migrations WHERE version = ?", (migration.version,))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def run_pending(self) -> list[int]:
        """Apply all pending migrations. Returns the applied versions."""
        applied: list[int] = []
        for migration in self.pending():
            self.apply(migration)
            applied.append(migration.version)

        if applied:
            logger.info("Applied %d migrations: %s", len(applied), applied)
        else:
            logger.debug("No pending migrations")
        return applied
