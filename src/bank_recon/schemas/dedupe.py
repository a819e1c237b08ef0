"""
Duplicate guard (CRITICAL).

A statement row is a duplicate of an existing Movement when all of the
composite key matches:
- account_id: equal
- value_date: equal (YYYY-MM-DD)
- amount: signed values differ by strictly less than 0.01
- description: exact, case-sensitive equality

Existing Movements are indexed by (account_id, value_date) so a lookup only
scans Movements of the same account and day.

The fingerprint is the persisted form of the same key. Amounts are stored
at cent precision, so equal fingerprints are exactly the < 0.01 tolerance
case; the store puts a UNIQUE index on it.
"""

import hashlib
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from .ledger import to_cents

# Amounts closer than this are the same amount
AMOUNT_TOLERANCE = Decimal("0.01")

# Length of the fingerprint hex digest to keep
FINGERPRINT_LENGTH = 32


@dataclass(frozen=True)
class DedupeEntry:
    """Minimal view of a Movement needed for duplicate detection."""

    account_id: int
    value_date: str
    amount: Decimal  # signed
    description: str


def compute_movement_fingerprint(
    account_id: int,
    value_date: str,
    amount: Decimal,
    description: str,
) -> str:
    """
    Compute the deterministic composite-key fingerprint of a Movement.

    Hash components (in order): account_id, value_date, signed amount at
    2 decimals, description verbatim.
    """
    parts = [str(account_id), value_date, f"{to_cents(amount):.2f}", description]
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def amounts_match(left: Decimal, right: Decimal) -> bool:
    """True if two signed amounts are within the duplicate tolerance."""
    return abs(left - right) < AMOUNT_TOLERANCE


class DuplicateIndex:
    """Index of existing Movements keyed by (account_id, value_date)."""

    def __init__(self, entries: Iterable[DedupeEntry] = ()):
        self._buckets: dict[tuple[int, str], list[DedupeEntry]] = defaultdict(list)
        for entry in entries:
            self.add(entry)

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._buckets.values())

    def add(self, entry: DedupeEntry) -> None:
        """Register a Movement (e.g. one just persisted in this batch)."""
        self._buckets[(entry.account_id, entry.value_date)].append(entry)

    def is_duplicate(
        self,
        account_id: int,
        value_date: str,
        amount: Decimal,
        description: str,
    ) -> bool:
        """Return True if an indexed Movement matches the composite key."""
        bucket = self._buckets.get((account_id, value_date))
        if not bucket:
            return False
        return any(
            entry.description == description and amounts_match(entry.amount, amount)
            for entry in bucket
        )
