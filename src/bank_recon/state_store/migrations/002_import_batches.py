"""
Migration 002: Add import_batches table.

One row per completed statement import, for traceability of the batch_id
stamped on every Movement.
"""

import sqlite3

VERSION = 2
NAME = "import_batches"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create import_batches table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS import_batches (
            batch_id TEXT PRIMARY KEY,
            account_id INTEGER NOT NULL,
            actor TEXT NOT NULL,
            inserted INTEGER NOT NULL DEFAULT 0,
            duplicates INTEGER NOT NULL DEFAULT 0,
            errors INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            FOREIGN KEY (account_id) REFERENCES accounts(id)
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_import_batches_account ON import_batches(account_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove import_batches table."""
    conn.execute("DROP TABLE IF EXISTS import_batches")
