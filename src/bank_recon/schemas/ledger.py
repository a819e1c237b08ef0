"""
Canonical ledger vocabulary (SSOT).

Enums and value types shared by the store, the matching engine and the
reconciliation policy. Movement and Obligation rows themselves are
defined next to the store that reads them.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

# Cent precision for all persisted amounts
CENT = Decimal("0.01")

# linked_movement_id for Obligations paid outside the bank (cash, card)
SETTLED_WITHOUT_MOVEMENT = -1


class Direction(str, Enum):
    """Money flow of a statement row relative to the account."""

    IN = "IN"
    OUT = "OUT"


class ReconciliationState(str, Enum):
    """Reconciliation state of a Movement."""

    UNRECONCILED = "UNRECONCILED"
    RECONCILED = "RECONCILED"
    SETTLED_OUT_OF_BAND = "SETTLED_OUT_OF_BAND"


class ObligationState(str, Enum):
    """
    Lifecycle of an Obligation.

    FORECAST -> RECONCILED (linked to a Movement)
    FORECAST -> SETTLED_OUT_OF_BAND (paid without a bank Movement)

    Both targets are terminal.
    """

    FORECAST = "FORECAST"
    RECONCILED = "RECONCILED"
    SETTLED_OUT_OF_BAND = "SETTLED_OUT_OF_BAND"


class ObligationKind(str, Enum):
    """Obligation variant; each kind lives in its own table."""

    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    CAPEX = "CAPEX"

    @property
    def table(self) -> str:
        return _OBLIGATION_TABLES[self]

    @classmethod
    def parse(cls, value: "str | ObligationKind") -> "ObligationKind":
        """Accept enum members and case-insensitive names."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unknown obligation kind: {value!r}") from None


_OBLIGATION_TABLES = {
    ObligationKind.INCOME: "incomes",
    ObligationKind.EXPENSE: "expenses",
    ObligationKind.CAPEX: "capex",
}


class PaymentMethod(str, Enum):
    """How an out-of-band Obligation was settled."""

    CASH = "CASH"
    CARD = "CARD"
    OTHER = "OTHER"


@dataclass(frozen=True)
class ObligationRef:
    """Typed reference from a Movement to the Obligation it settles."""

    kind: ObligationKind
    id: int


def to_cents(value: Decimal) -> Decimal:
    """Quantize an amount to cents (half-up)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
