"""Ingestion, account resolution and reconciliation services."""

from bank_recon.services.account_resolution import (
    AccountCandidate,
    AccountResolution,
    AccountResolver,
    StoreIbanResolver,
    resolve_destination_account,
)
from bank_recon.services.ingestion import (
    BankStatementImportService,
    ImportResult,
    IngestResult,
    LedgerIngestor,
)
from bank_recon.services.reconciliation import (
    AutoLinkDetail,
    AutoReconciliationResult,
    LinkOutcome,
    ReconciliationService,
)

__all__ = [
    "AccountCandidate",
    "AccountResolution",
    "AccountResolver",
    "StoreIbanResolver",
    "resolve_destination_account",
    "BankStatementImportService",
    "ImportResult",
    "IngestResult",
    "LedgerIngestor",
    "AutoLinkDetail",
    "AutoReconciliationResult",
    "LinkOutcome",
    "ReconciliationService",
]
