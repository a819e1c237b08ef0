"""Bank statement ingestion service.

Single entry point for statement imports:
1. Gate on a destination account (explicit, or resolved from the IBAN)
2. Parse file -> normalized rows (whole file fails on parser failure)
3. Ingest rows one by one: duplicate -> account -> synthetic -> persist
4. Record the batch summary

Row-level problems never abort the batch; they are counted. There is no
batch-level atomicity: rows persisted before a failure stay persisted.
"""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from bank_recon.errors import (
    AccountNotFound,
    MissingDestinationAccount,
    ParseFailure,
    PersistenceFailure,
    RowRejected,
    SyntheticDataRejected,
)
from bank_recon.schemas.dedupe import DedupeEntry, DuplicateIndex
from bank_recon.schemas.normalized_row import NormalizedRow, build_normalized_rows
from bank_recon.schemas.synthetic import should_reject
from bank_recon.services.account_resolution import (
    AccountCandidate,
    AccountResolver,
    resolve_destination_account,
)

if TYPE_CHECKING:
    from bank_recon.config import Config
    from bank_recon.parsers import StatementParser
    from bank_recon.state_store import StateStore

logger = logging.getLogger(__name__)

LOG_PREFIX = "[statement-import]"


@dataclass
class IngestResult:
    """Aggregate outcome of ingesting one batch of rows."""

    inserted: int = 0
    duplicates: int = 0
    errors: int = 0
    created_ids: list[int] = field(default_factory=list)


@dataclass
class ImportResult:
    """Outcome of a statement import as seen by the caller."""

    success: bool
    inserted: int = 0
    duplicates: int = 0
    errors: int = 0
    created_ids: list[int] = field(default_factory=list)
    batch_id: str = ""
    # Account selection workflow
    requires_account_selection: bool = False
    detected_iban: str | None = None
    candidate_accounts: list[AccountCandidate] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "inserted": self.inserted,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "created_ids": self.created_ids,
            "batch_id": self.batch_id,
            "requires_account_selection": self.requires_account_selection,
            "detected_iban": self.detected_iban,
            "candidate_accounts": [
                {
                    "account_id": c.account_id,
                    "display_name": c.display_name,
                    "confidence": c.confidence,
                }
                for c in self.candidate_accounts
            ],
        }


def new_batch_id(actor: str) -> str:
    """Batch identifier shared by every Movement of one import."""
    return f"import_{int(time.time() * 1000)}_{actor}_{uuid.uuid4().hex[:8]}"


class LedgerIngestor:
    """Persists normalized rows as Movements.

    Checks per row, in order:
    1. Duplicate of an existing (or earlier in-batch) Movement -> duplicate
    2. Account missing or soft-deleted -> error
    3. Synthetic description outside demo mode -> error
    4. Persist; a failing write -> error
    """

    def __init__(self, state_store: StateStore, config: Config) -> None:
        self.store = state_store
        self.config = config

    def ingest(
        self,
        rows: list[NormalizedRow],
        account_id: int | None,
        batch_id: str,
        demo_mode: bool | None = None,
    ) -> IngestResult:
        """Ingest rows into the ledger.

        Args:
            rows: Normalized rows in statement order.
            account_id: Destination account.
            batch_id: Identifier stamped on every created Movement.
            demo_mode: Accept synthetic rows. Defaults to config.ingestion.demo_mode.

        Returns:
            Aggregate counts and the created Movement ids.

        Raises:
            MissingDestinationAccount: If account_id is None (nothing is written).
        """
        if account_id is None:
            raise MissingDestinationAccount("A destination account is required to ingest rows")
        if demo_mode is None:
            demo_mode = self.config.ingestion.demo_mode

        result = IngestResult()
        index = DuplicateIndex(self.store.get_dedupe_entries(account_id))

        for row in rows:
            signed = row.signed_amount
            if index.is_duplicate(account_id, row.value_date, signed, row.description):
                logger.debug(
                    "%s %s row %d is a duplicate", LOG_PREFIX, batch_id, row.source_index
                )
                result.duplicates += 1
                continue

            try:
                self._check_account(account_id, row)
                self._check_synthetic(row, demo_mode)
                movement_id = self._persist(account_id, row, batch_id)
            except _DuplicateOnWrite:
                result.duplicates += 1
                continue
            except RowRejected as e:
                logger.warning("%s %s row %d rejected: %s", LOG_PREFIX, batch_id, row.source_index, e)
                result.errors += 1
                continue

            index.add(DedupeEntry(account_id, row.value_date, signed, row.description))
            result.inserted += 1
            result.created_ids.append(movement_id)

        return result

    def _check_account(self, account_id: int, row: NormalizedRow) -> None:
        # Accounts may be deleted between resolution and ingestion
        if not self.store.account_exists(account_id):
            raise AccountNotFound(f"Account {account_id} not found", row.source_index)

    def _check_synthetic(self, row: NormalizedRow, demo_mode: bool) -> None:
        if should_reject(row.description, demo_mode, self.config.ingestion.synthetic_patterns):
            raise SyntheticDataRejected(
                f"Synthetic movement rejected: {row.description!r}", row.source_index
            )

    def _persist(self, account_id: int, row: NormalizedRow, batch_id: str) -> int:
        try:
            return self.store.insert_movement(account_id, row, batch_id)
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                # Written by a concurrent import since the index snapshot
                raise _DuplicateOnWrite() from e
            logger.exception("%s %s row %d: integrity error", LOG_PREFIX, batch_id, row.source_index)
            raise PersistenceFailure(str(e), row.source_index) from e
        except Exception as e:
            logger.exception("%s %s row %d: write failed", LOG_PREFIX, batch_id, row.source_index)
            raise PersistenceFailure(str(e), row.source_index) from e


class _DuplicateOnWrite(Exception):
    """Insert hit the composite-key UNIQUE index."""


class BankStatementImportService:
    """Imports bank statements into the ledger.

    Usage:
        service = BankStatementImportService(store, config, CsvStatementParser())
        result = service.import_bank_statement(Path("statement.csv"), destination_account_id=1)
    """

    def __init__(
        self,
        state_store: StateStore,
        config: Config,
        parser: StatementParser,
        resolver: AccountResolver | None = None,
    ) -> None:
        """Initialize the import service.

        Args:
            state_store: State store for persistence.
            config: Application configuration.
            parser: External statement parser.
            resolver: Optional account resolver, consulted only when no
                destination account is given.
        """
        self.store = state_store
        self.config = config
        self.parser = parser
        self.resolver = resolver
        self.ingestor = LedgerIngestor(state_store, config)

    def import_bank_statement(
        self,
        file: Path,
        destination_account_id: int | None = None,
        actor: str | None = None,
        demo_mode: bool | None = None,
    ) -> ImportResult:
        """Import one statement file.

        Returns a requires_account_selection result, with nothing persisted,
        when the destination account is missing and cannot be resolved.

        Raises:
            ParseFailure: If the file cannot be parsed or has no movements.
        """
        actor = actor or self.config.ingestion.default_actor
        file = Path(file)
        logger.info(
            "%s Start import, file: %s, destination account: %s",
            LOG_PREFIX,
            file.name,
            destination_account_id,
        )

        resolution = resolve_destination_account(self.resolver, file, destination_account_id)
        if not resolution.resolved:
            logger.error(
                "%s No destination account for %s (detected IBAN: %s, %d candidates)",
                LOG_PREFIX,
                file.name,
                resolution.detected_iban,
                len(resolution.candidates),
            )
            return ImportResult(
                success=False,
                requires_account_selection=True,
                detected_iban=resolution.detected_iban,
                candidate_accounts=resolution.candidates,
            )
        account_id = resolution.account_id

        rows = self._parse(file)
        logger.info("%s %d rows extracted from %s", LOG_PREFIX, len(rows), file.name)

        batch_id = new_batch_id(actor)
        try:
            ingested = self.ingestor.ingest(rows, account_id, batch_id, demo_mode=demo_mode)
        except MissingDestinationAccount:
            return ImportResult(success=False, requires_account_selection=True)

        self._record_batch(batch_id, account_id, actor, ingested)
        logger.info(
            "%s %s persisted: %d inserted, %d duplicates, %d errors",
            LOG_PREFIX,
            batch_id,
            ingested.inserted,
            ingested.duplicates,
            ingested.errors,
        )

        return ImportResult(
            success=True,
            inserted=ingested.inserted,
            duplicates=ingested.duplicates,
            errors=ingested.errors,
            created_ids=ingested.created_ids,
            batch_id=batch_id,
        )

    def _parse(self, file: Path) -> list[NormalizedRow]:
        try:
            parse_result = self.parser.parse(file)
            return build_normalized_rows(parse_result)
        except ParseFailure as e:
            logger.error("%s Parse failure for %s: %s", LOG_PREFIX, file.name, e)
            raise
        except Exception as e:
            logger.exception("%s Parser %s crashed on %s", LOG_PREFIX, self.parser.name, file.name)
            raise ParseFailure(f"Parser {self.parser.name} failed: {e}") from e

    def _record_batch(
        self,
        batch_id: str,
        account_id: int,
        actor: str,
        ingested: IngestResult,
    ) -> None:
        try:
            self.store.record_import_batch(
                batch_id=batch_id,
                account_id=account_id,
                actor=actor,
                inserted=ingested.inserted,
                duplicates=ingested.duplicates,
                errors=ingested.errors,
            )
        except sqlite3.Error as e:
            # Movements are already persisted; the summary is bookkeeping only
            logger.error("%s %s could not record batch summary: %s", LOG_PREFIX, batch_id, e)
