"""
Statement parsers.

The bank-file grammar is owned by external parsers; this package only
defines their interface plus a plain CSV adapter for the command line.
"""

from .base import StatementParser
from .csv_parser import CsvStatementParser

__all__ = [
    "StatementParser",
    "CsvStatementParser",
]
