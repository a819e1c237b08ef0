"""
Statement parser interface.
"""

from abc import ABC, abstractmethod
from pathlib import Path

from ..schemas.normalized_row import ParseResult


class StatementParser(ABC):
    """
    Base class for statement parsers.

    A parser turns a statement file into raw rows
    {date, description, amount}. It reports failure through
    ParseResult.success rather than raising.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Parser name for logging."""
        pass

    @abstractmethod
    def parse(self, file: Path) -> ParseResult:
        """
        Parse a statement file.

        Args:
            file: Path to the statement

        Returns:
            ParseResult with raw movements in file order
        """
        pass
