"""
CSV statement adapter.

Expects a header row with date, description and amount columns (English
or Spanish names). Preamble lines before the header (account holder,
IBAN) are skipped.
"""

import csv
import logging
from pathlib import Path

from ..schemas.normalized_row import ParseResult
from .base import StatementParser

logger = logging.getLogger(__name__)

COLUMN_ALIASES = {
    "date": ("date", "fecha", "fecha valor", "value date"),
    "description": ("description", "concepto", "descripcion", "descripción"),
    "amount": ("amount", "importe", "cantidad"),
    "counterparty": ("counterparty", "contraparte", "beneficiario"),
}

# Lines scanned for the header row
MAX_PREAMBLE_LINES = 10


class CsvStatementParser(StatementParser):
    """Reads comma or semicolon separated statements."""

    @property
    def name(self) -> str:
        return "csv"

    def parse(self, file: Path) -> ParseResult:
        try:
            with open(file, encoding="utf-8-sig", newline="") as f:
                lines = f.read().splitlines()
        except (OSError, UnicodeDecodeError) as e:
            return ParseResult(success=False, error=f"Cannot read {file}: {e}")

        header_index, columns, delimiter = self._find_header(lines)
        if header_index is None:
            return ParseResult(
                success=False,
                error="No header row with date, description and amount columns",
            )

        movements = []
        for record in csv.reader(lines[header_index + 1 :], delimiter=delimiter):
            if not any(cell.strip() for cell in record):
                continue
            movement = {}
            for field_name, position in columns.items():
                movement[field_name] = record[position].strip() if position < len(record) else ""
            movements.append(movement)

        logger.debug("Parsed %d rows from %s", len(movements), file.name)
        return ParseResult(success=True, movements=movements)

    def _find_header(self, lines: list[str]) -> tuple[int | None, dict[str, int], str]:
        for index, line in enumerate(lines[:MAX_PREAMBLE_LINES]):
            delimiter = ";" if line.count(";") > line.count(",") else ","
            cells = [c.strip().lower() for c in next(csv.reader([line], delimiter=delimiter))]
            columns: dict[str, int] = {}
            for field_name, aliases in COLUMN_ALIASES.items():
                for position, cell in enumerate(cells):
                    if cell in aliases:
                        columns[field_name] = position
                        break
            if {"date", "description", "amount"} <= columns.keys():
                return index, columns, delimiter
        return None, {}, ","
