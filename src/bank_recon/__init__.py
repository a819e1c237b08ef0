"""
Bank statement ingestion → canonical ledger → obligation reconciliation.

Turns parsed bank statement rows into Movements with strict deduplication
and demo-data guards, then scores Movements against forecast income,
expense and capex Obligations and auto-links the unambiguous matches.
"""

__version__ = "0.1.0"
