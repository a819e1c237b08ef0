"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Destination accounts
- Movements created from bank statements
- Income, expense and capex Obligations
- Import batches

Enforces uniqueness of the Movement composite key.
"""

from .sqlite_store import (
    AccountRecord,
    ImportBatchRecord,
    MovementRecord,
    ObligationRecord,
    StateStore,
)

__all__ = [
    "StateStore",
    "AccountRecord",
    "ImportBatchRecord",
    "MovementRecord",
    "ObligationRecord",
]
