"""
CLI runner module.

Provides commands:
- init-config: Write a default config
- add-account / add-obligation: Data entry
- import: Ingest a bank statement
- candidates: Rank reconciliation candidates
- auto-reconcile: Link unambiguous matches
- reconcile / settle: Manual decisions
- status: Ledger statistics
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
