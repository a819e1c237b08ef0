"""
Synthetic-data filter.

Demo and test fixtures must never reach the ledger outside demo mode.
A row is synthetic when its description contains, case-insensitively,
any entry of the lexicon (English plus Spanish locale variants).
"""

from collections.abc import Iterable

DEFAULT_SYNTHETIC_PATTERNS: tuple[str, ...] = (
    "demo",
    "test",
    "sample",
    "ejemplo",
    "ficticio",
)


def is_synthetic_description(
    description: str | None,
    patterns: Iterable[str] = DEFAULT_SYNTHETIC_PATTERNS,
) -> bool:
    """Return True if the description matches any synthetic pattern."""
    if not description:
        return False
    text = description.lower()
    return any(pattern.lower() in text for pattern in patterns if pattern)


def should_reject(
    description: str | None,
    demo_mode: bool,
    patterns: Iterable[str] = DEFAULT_SYNTHETIC_PATTERNS,
) -> bool:
    """Return True if a row must be rejected given the current demo mode."""
    if demo_mode:
        return False
    return is_synthetic_description(description, patterns)
