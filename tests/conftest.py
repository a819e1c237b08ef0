"""Test fixtures and utilities."""

from decimal import Decimal
from pathlib import Path

import pytest

from bank_recon.config import Config
from bank_recon.schemas.ledger import Direction
from bank_recon.schemas.normalized_row import NormalizedRow, ParseResult
from bank_recon.state_store import StateStore

SAMPLE_STATEMENT_CSV = """Titular: Finca Rural SL
IBAN: ES91 2100 0418 4502 0005 1332
Fecha;Concepto;Importe
05/03/2024;PAGO IBERDROLA ENERGIA;-80,00
10/03/2024;Rent payment John Doe;1.200,00
12/03/2024;COMISION MANTENIMIENTO;-4,50
"""


def _make_row(
    value_date: str = "2024-03-05",
    description: str = "PAGO IBERDROLA ENERGIA",
    amount: str = "80.00",
    direction: Direction = Direction.OUT,
    source_index: int = 0,
) -> NormalizedRow:
    """Build a NormalizedRow with sensible defaults."""
    return NormalizedRow(
        value_date=value_date,
        description=description,
        amount=Decimal(amount),
        direction=direction,
        source_index=source_index,
    )


@pytest.fixture
def make_row():
    """Factory for NormalizedRow objects."""
    return _make_row


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store with all migrations applied."""
    return StateStore(temp_db)


@pytest.fixture
def config(temp_db) -> Config:
    """Default configuration pointing at the temporary database."""
    return Config(state_db_path=temp_db)


@pytest.fixture
def account_id(store) -> int:
    """A live destination account."""
    return store.create_account("Cuenta principal", "ES91 2100 0418 4502 0005 1332")


@pytest.fixture
def sample_statement(tmp_path) -> Path:
    """Semicolon CSV statement with an IBAN preamble."""
    path = tmp_path / "statement.csv"
    path.write_text(SAMPLE_STATEMENT_CSV, encoding="utf-8")
    return path


@pytest.fixture
def sample_parse_result() -> ParseResult:
    """Parser output for three rows."""
    return ParseResult(
        success=True,
        movements=[
            {"date": "05/03/2024", "description": "PAGO IBERDROLA ENERGIA", "amount": "-80,00"},
            {"date": "2024-03-10", "description": "Rent payment John Doe", "amount": 1200},
            {"date": "2024-03-12T09:30:00", "description": "COMISION", "amount": "-4.50"},
        ],
    )
