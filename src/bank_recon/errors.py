"""
Error taxonomy for ingestion and reconciliation.

File-level and account-level failures are raised to the caller.
Row-level failures (RowRejected subclasses) are caught by the ingestor
and only ever surface as aggregate counts.
"""


class BankReconError(Exception):
    """Base exception for the engine."""

    pass


class MissingDestinationAccount(BankReconError):
    """No destination account was supplied or resolved for an import."""

    pass


class ParseFailure(BankReconError):
    """The statement parser failed or produced no movements."""

    pass


class RowRejected(BankReconError):
    """A single statement row was rejected during ingestion."""

    def __init__(self, message: str, row_index: int | None = None):
        super().__init__(message)
        self.row_index = row_index


class AccountNotFound(RowRejected):
    """Destination account does not exist or was soft-deleted."""

    pass


class SyntheticDataRejected(RowRejected):
    """Row description matches the demo/test lexicon."""

    pass


class PersistenceFailure(RowRejected):
    """Writing the Movement to the store failed."""

    pass


class ReconciliationError(BankReconError):
    """Base exception for link and settlement failures."""

    pass


class ObligationNotFound(ReconciliationError):
    """Referenced Obligation does not exist."""

    pass


class MovementNotFound(ReconciliationError):
    """Referenced Movement does not exist."""

    pass


class InvalidStateTransition(ReconciliationError):
    """Movement or Obligation is not in a state that allows the operation."""

    pass


class StaleWriteError(ReconciliationError):
    """Row version changed between read and write (concurrent modification)."""

    def __init__(self, table: str, row_id: int, expected_version: int):
        super().__init__(
            f"{table} row {row_id} was modified concurrently (expected version {expected_version})"
        )
        self.table = table
        self.row_id = row_id
        self.expected_version = expected_version
