"""
Migration 001: Add obligation tables.

One table per Obligation kind (incomes, expenses, capex), all with the same
shape. linked_movement_id = -1 marks an Obligation settled without a bank
Movement.
"""

import sqlite3

VERSION = 1
NAME = "obligations"

TABLES = ("incomes", "expenses", "capex")


def upgrade(conn: sqlite3.Connection) -> None:
    """Create incomes, expenses and capex tables."""
    for table in TABLES:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                counterparty_text TEXT NOT NULL,
                expected_amount TEXT NOT NULL,   -- unsigned, 2 decimals
                expected_date TEXT NOT NULL,     -- YYYY-MM-DD
                state TEXT NOT NULL DEFAULT 'FORECAST',
                linked_movement_id INTEGER,
                payment_method TEXT,             -- CASH, CARD, OTHER
                settled_date TEXT,
                notes TEXT,
                version INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """
        )
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_state ON {table}(state)")


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove obligation tables."""
    for table in TABLES:
        conn.execute(f"DROP TABLE IF EXISTS {table}")
