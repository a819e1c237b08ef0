"""
SQLite-based state store implementation.

Tables:
- accounts: Destination bank accounts (soft-deletable)
- movements: Ledger entries created from statement rows
- incomes / expenses / capex: Obligations (migration 001)
- import_batches: One summary row per statement import (migration 002)

Movements and Obligations carry a `version` column. Link and settlement
writes are compare-and-set on that version inside a BEGIN IMMEDIATE
transaction, so concurrent writers cannot both link the same row.
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from ..errors import StaleWriteError
from ..schemas.dedupe import DedupeEntry, compute_movement_fingerprint
from ..schemas.ledger import (
    ObligationKind,
    ObligationRef,
    ObligationState,
    PaymentMethod,
    ReconciliationState,
    SETTLED_WITHOUT_MOVEMENT,
    to_cents,
)
from ..schemas.normalized_row import NormalizedRow


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class AccountRecord:
    """Record of a destination bank account."""

    id: int
    display_name: str
    iban: str | None
    created_at: str
    deleted_at: str | None

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AccountRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            display_name=row["display_name"],
            iban=row["iban"],
            created_at=row["created_at"],
            deleted_at=row["deleted_at"],
        )


@dataclass
class MovementRecord:
    """Record of a ledger Movement."""

    id: int
    account_id: int
    date: str  # YYYY-MM-DD
    amount: Decimal  # signed
    description: str
    counterparty_text: str | None
    category: str | None
    batch_id: str
    source_row_index: int
    reconciliation_state: ReconciliationState
    linked_obligation: ObligationRef | None
    version: int
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MovementRecord":
        """Create from database row."""
        linked = None
        if row["linked_obligation_kind"] and row["linked_obligation_id"] is not None:
            linked = ObligationRef(
                kind=ObligationKind(row["linked_obligation_kind"]),
                id=row["linked_obligation_id"],
            )
        return cls(
            id=row["id"],
            account_id=row["account_id"],
            date=row["date"],
            amount=Decimal(row["amount"]),
            description=row["description"],
            counterparty_text=row["counterparty_text"],
            category=row["category"],
            batch_id=row["batch_id"],
            source_row_index=row["source_row_index"],
            reconciliation_state=ReconciliationState(row["reconciliation_state"]),
            linked_obligation=linked,
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dedupe_entry(self) -> DedupeEntry:
        return DedupeEntry(
            account_id=self.account_id,
            value_date=self.date,
            amount=self.amount,
            description=self.description,
        )


@dataclass
class ObligationRecord:
    """Record of an income, expense or capex Obligation."""

    id: int
    kind: ObligationKind
    counterparty_text: str
    expected_amount: Decimal  # unsigned
    expected_date: str  # YYYY-MM-DD
    state: ObligationState
    linked_movement_id: int | None
    payment_method: PaymentMethod | None
    settled_date: str | None
    notes: str | None
    version: int
    created_at: str
    updated_at: str

    @property
    def is_open(self) -> bool:
        """True while the Obligation can still be linked or settled."""
        return self.state == ObligationState.FORECAST and self.linked_movement_id is None

    @property
    def settled_without_movement(self) -> bool:
        return self.linked_movement_id == SETTLED_WITHOUT_MOVEMENT

    @classmethod
    def from_row(cls, row: sqlite3.Row, kind: ObligationKind) -> "ObligationRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            kind=kind,
            counterparty_text=row["counterparty_text"],
            expected_amount=Decimal(row["expected_amount"]),
            expected_date=row["expected_date"],
            state=ObligationState(row["state"]),
            linked_movement_id=row["linked_movement_id"],
            payment_method=PaymentMethod(row["payment_method"]) if row["payment_method"] else None,
            settled_date=row["settled_date"],
            notes=row["notes"],
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class ImportBatchRecord:
    """Summary of one statement import."""

    batch_id: str
    account_id: int
    actor: str
    inserted: int
    duplicates: int
    errors: int
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ImportBatchRecord":
        """Create from database row."""
        return cls(
            batch_id=row["batch_id"],
            account_id=row["account_id"],
            actor=row["actor"],
            inserted=row["inserted"],
            duplicates=row["duplicates"],
            errors=row["errors"],
            created_at=row["created_at"],
        )


class StateStore:
    """
    SQLite-based state store for the engine.

    Provides persistent tracking of:
    - Destination accounts
    - Movements (never deleted)
    - Income, expense and capex Obligations
    - Import batch summaries

    Safe for concurrent writers: link writes are version-checked.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions.

        With immediate=True the write lock is taken up front, serializing
        writers across processes.
        """
        conn = self._get_connection()
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    display_name TEXT NOT NULL,
                    iban TEXT,
                    created_at TEXT NOT NULL,
                    deleted_at TEXT
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS movements (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id INTEGER NOT NULL,
                    date TEXT NOT NULL,              -- YYYY-MM-DD
                    amount TEXT NOT NULL,            -- signed, 2 decimals
                    description TEXT NOT NULL,
                    counterparty_text TEXT,
                    category TEXT,
                    batch_id TEXT NOT NULL,
                    source_row_index INTEGER NOT NULL,
                    fingerprint TEXT NOT NULL,
                    reconciliation_state TEXT NOT NULL DEFAULT 'UNRECONCILED',
                    linked_obligation_kind TEXT,
                    linked_obligation_id INTEGER,
                    version INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (account_id) REFERENCES accounts(id)
                )
            """
            )

            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_movements_fingerprint "
                "ON movements(fingerprint)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_movements_account_date "
                "ON movements(account_id, date)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_movements_state ON movements(reconciliation_state)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_movements_batch ON movements(batch_id)")

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Account methods

    def create_account(self, display_name: str, iban: str | None = None) -> int:
        """Create a destination account. Returns the account ID."""
        normalized_iban = iban.replace(" ", "").upper() if iban else None
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO accounts (display_name, iban, created_at) VALUES (?, ?, ?)",
                (display_name, normalized_iban, _now()),
            )
            return cursor.lastrowid or 0

    def get_account(self, account_id: int) -> AccountRecord | None:
        """Get an account by ID (including soft-deleted ones)."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
            return AccountRecord.from_row(row) if row else None

    def account_exists(self, account_id: int) -> bool:
        """Check if an account exists and is not soft-deleted."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM accounts WHERE id = ? AND deleted_at IS NULL", (account_id,)
            ).fetchone()
            return row is not None

    def list_accounts(self, include_deleted: bool = False) -> list[AccountRecord]:
        """List accounts ordered by ID."""
        query = "SELECT * FROM accounts"
        if not include_deleted:
            query += " WHERE deleted_at IS NULL"
        query += " ORDER BY id"
        with self._transaction() as conn:
            return [AccountRecord.from_row(row) for row in conn.execute(query).fetchall()]

    def soft_delete_account(self, account_id: int) -> bool:
        """Mark an account deleted. Returns False if not found or already deleted."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE accounts SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
                (_now(), account_id),
            )
            return cursor.rowcount > 0

    # Movement methods

    def insert_movement(self, account_id: int, row: NormalizedRow, batch_id: str) -> int:
        """
        Persist a Movement from a normalized row. Returns the Movement ID.

        Raises:
            sqlite3.IntegrityError: If the composite-key fingerprint exists
        """
        amount = to_cents(row.signed_amount)
        fingerprint = compute_movement_fingerprint(
            account_id, row.value_date, amount, row.description
        )
        now = _now()

        with self._transaction(immediate=True) as conn:
            cursor = conn.execute(
                """
                INSERT INTO movements
                (account_id, date, amount, description, counterparty_text, category,
                 batch_id, source_row_index, fingerprint, reconciliation_state,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    account_id,
                    row.value_date,
                    f"{amount:.2f}",
                    row.description,
                    row.counterparty_text,
                    row.category,
                    batch_id,
                    row.source_index,
                    fingerprint,
                    ReconciliationState.UNRECONCILED.value,
                    now,
                    now,
                ),
            )
            return cursor.lastrowid or 0

    def get_movement(self, movement_id: int) -> MovementRecord | None:
        """Get a Movement by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM movements WHERE id = ?", (movement_id,)).fetchone()
            return MovementRecord.from_row(row) if row else None

    def list_movements(
        self,
        account_id: int | None = None,
        state: ReconciliationState | None = None,
        batch_id: str | None = None,
    ) -> list[MovementRecord]:
        """List Movements ordered by ID, optionally filtered."""
        clauses: list[str] = []
        params: list = []
        if account_id is not None:
            clauses.append("account_id = ?")
            params.append(account_id)
        if state is not None:
            clauses.append("reconciliation_state = ?")
            params.append(state.value)
        if batch_id is not None:
            clauses.append("batch_id = ?")
            params.append(batch_id)

        query = "SELECT * FROM movements"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id"

        with self._transaction() as conn:
            return [MovementRecord.from_row(row) for row in conn.execute(query, params).fetchall()]

    def get_unreconciled_movements(self) -> list[MovementRecord]:
        """Movements still waiting for an Obligation."""
        return self.list_movements(state=ReconciliationState.UNRECONCILED)

    def get_dedupe_entries(self, account_id: int | None = None) -> list[DedupeEntry]:
        """Composite-key view of existing Movements for the duplicate guard."""
        query = "SELECT * FROM movements"
        params: tuple = ()
        if account_id is not None:
            query += " WHERE account_id = ?"
            params = (account_id,)
        with self._transaction() as conn:
            return [
                MovementRecord.from_row(row).to_dedupe_entry()
                for row in conn.execute(query, params).fetchall()
            ]

    # Obligation methods

    def create_obligation(
        self,
        kind: ObligationKind,
        counterparty_text: str,
        expected_amount: Decimal | str | float,
        expected_date: str,
        notes: str | None = None,
    ) -> int:
        """Create a FORECAST Obligation. Returns its ID within the kind's table."""
        amount = to_cents(abs(Decimal(str(expected_amount))))
        now = _now()
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                INSERT INTO {kind.table}
                (counterparty_text, expected_amount, expected_date, state, notes,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    counterparty_text,
                    f"{amount:.2f}",
                    expected_date,
                    ObligationState.FORECAST.value,
                    notes,
                    now,
                    now,
                ),
            )
            return cursor.lastrowid or 0

    def get_obligation(self, kind: ObligationKind, obligation_id: int) -> ObligationRecord | None:
        """Get an Obligation by kind and ID."""
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT * FROM {kind.table} WHERE id = ?", (obligation_id,)
            ).fetchone()
            return ObligationRecord.from_row(row, kind) if row else None

    def list_obligations(
        self,
        kind: ObligationKind,
        state: ObligationState | None = None,
    ) -> list[ObligationRecord]:
        """List Obligations of one kind ordered by ID."""
        query = f"SELECT * FROM {kind.table}"
        params: tuple = ()
        if state is not None:
            query += " WHERE state = ?"
            params = (state.value,)
        query += " ORDER BY id"
        with self._transaction() as conn:
            return [
                ObligationRecord.from_row(row, kind)
                for row in conn.execute(query, params).fetchall()
            ]

    def get_open_obligations(self, kind: ObligationKind) -> list[ObligationRecord]:
        """FORECAST Obligations that are not linked to anything."""
        return [o for o in self.list_obligations(kind, ObligationState.FORECAST) if o.is_open]

    # Link methods

    def link_movement_obligation(
        self,
        kind: ObligationKind,
        obligation_id: int,
        obligation_version: int,
        movement_id: int,
        movement_version: int | None,
    ) -> None:
        """
        Link an Obligation and a Movement in one transaction.

        Both rows move to RECONCILED and point at each other. Each update is
        conditional on the version the caller read; a mismatch aborts the
        whole transaction. With movement_version=None only the Obligation
        side is written (the Movement is known to be missing).

        Raises:
            StaleWriteError: If either row changed since it was read
        """
        now = _now()
        with self._transaction(immediate=True) as conn:
            cursor = conn.execute(
                f"""
                UPDATE {kind.table}
                SET state = ?, linked_movement_id = ?, version = version + 1, updated_at = ?
                WHERE id = ? AND version = ?
            """,
                (
                    ObligationState.RECONCILED.value,
                    movement_id,
                    now,
                    obligation_id,
                    obligation_version,
                ),
            )
            if cursor.rowcount == 0:
                raise StaleWriteError(kind.table, obligation_id, obligation_version)

            if movement_version is None:
                return

            cursor = conn.execute(
                """
                UPDATE movements
                SET reconciliation_state = ?, linked_obligation_kind = ?,
                    linked_obligation_id = ?, version = version + 1, updated_at = ?
                WHERE id = ? AND version = ?
            """,
                (
                    ReconciliationState.RECONCILED.value,
                    kind.value,
                    obligation_id,
                    now,
                    movement_id,
                    movement_version,
                ),
            )
            if cursor.rowcount == 0:
                raise StaleWriteError("movements", movement_id, movement_version)

    def settle_obligation(
        self,
        kind: ObligationKind,
        obligation_id: int,
        obligation_version: int,
        method: PaymentMethod,
        settled_date: str,
        notes: str | None = None,
    ) -> None:
        """
        Mark an Obligation SETTLED_OUT_OF_BAND with the sentinel link.

        Raises:
            StaleWriteError: If the row changed since it was read
        """
        with self._transaction(immediate=True) as conn:
            cursor = conn.execute(
                f"""
                UPDATE {kind.table}
                SET state = ?, linked_movement_id = ?, payment_method = ?,
                    settled_date = ?, notes = COALESCE(?, notes),
                    version = version + 1, updated_at = ?
                WHERE id = ? AND version = ?
            """,
                (
                    ObligationState.SETTLED_OUT_OF_BAND.value,
                    SETTLED_WITHOUT_MOVEMENT,
                    method.value,
                    settled_date,
                    notes,
                    _now(),
                    obligation_id,
                    obligation_version,
                ),
            )
            if cursor.rowcount == 0:
                raise StaleWriteError(kind.table, obligation_id, obligation_version)

    # Import batch methods

    def record_import_batch(
        self,
        batch_id: str,
        account_id: int,
        actor: str,
        inserted: int,
        duplicates: int,
        errors: int,
    ) -> None:
        """Store the summary of a completed import."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO import_batches
                (batch_id, account_id, actor, inserted, duplicates, errors, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (batch_id, account_id, actor, inserted, duplicates, errors, _now()),
            )

    def get_import_batch(self, batch_id: str) -> ImportBatchRecord | None:
        """Get an import batch summary."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM import_batches WHERE batch_id = ?", (batch_id,)
            ).fetchone()
            return ImportBatchRecord.from_row(row) if row else None

    def list_import_batches(self, limit: int = 20) -> list[ImportBatchRecord]:
        """Most recent import batches first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM import_batches ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
            return [ImportBatchRecord.from_row(row) for row in rows]

    # Statistics

    def get_stats(self) -> dict:
        """Get counts per Movement state and per Obligation kind/state."""
        stats: dict = {"movements": {}, "obligations": {}}
        with self._transaction() as conn:
            for row in conn.execute(
                "SELECT reconciliation_state, COUNT(*) AS n FROM movements "
                "GROUP BY reconciliation_state"
            ).fetchall():
                stats["movements"][row["reconciliation_state"]] = row["n"]

            for kind in ObligationKind:
                per_state = {}
                for row in conn.execute(
                    f"SELECT state, COUNT(*) AS n FROM {kind.table} GROUP BY state"
                ).fetchall():
                    per_state[row["state"]] = row["n"]
                stats["obligations"][kind.value] = per_state

            stats["import_batches"] = conn.execute(
                "SELECT COUNT(*) FROM import_batches"
            ).fetchone()[0]
        return stats
