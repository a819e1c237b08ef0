"""
SSOT (Single Source of Truth) schemas for the engine.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .dedupe import (
    AMOUNT_TOLERANCE,
    DedupeEntry,
    DuplicateIndex,
    amounts_match,
    compute_movement_fingerprint,
)
from .ledger import (
    SETTLED_WITHOUT_MOVEMENT,
    Direction,
    ObligationKind,
    ObligationRef,
    ObligationState,
    PaymentMethod,
    ReconciliationState,
    to_cents,
)
from .normalized_row import (
    NormalizedRow,
    ParseResult,
    build_normalized_rows,
    infer_category,
    normalize_value_date,
)
from .synthetic import DEFAULT_SYNTHETIC_PATTERNS, is_synthetic_description, should_reject

__all__ = [
    # Dedupe
    "AMOUNT_TOLERANCE",
    "DedupeEntry",
    "DuplicateIndex",
    "amounts_match",
    "compute_movement_fingerprint",
    # Ledger
    "SETTLED_WITHOUT_MOVEMENT",
    "Direction",
    "ObligationKind",
    "ObligationRef",
    "ObligationState",
    "PaymentMethod",
    "ReconciliationState",
    "to_cents",
    # Normalized rows
    "NormalizedRow",
    "ParseResult",
    "build_normalized_rows",
    "infer_category",
    "normalize_value_date",
    # Synthetic data
    "DEFAULT_SYNTHETIC_PATTERNS",
    "is_synthetic_description",
    "should_reject",
]
