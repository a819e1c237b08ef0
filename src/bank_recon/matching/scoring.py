"""
Pure confidence scoring for Movement ↔ Obligation pairs.

Three signals add up to a confidence in [0, 1]:
- amount: |movement| - expected
- date: movement date - expected date (days, signed)
- text: movement description vs obligation counterparty

Each signal is a tier table: the first tier whose predicate holds wins and
contributes its weight. Tiers marked auto_eligible keep the pair eligible
for automatic linking; any other tier (or no tier) clears eligibility.
An eligible pair whose total reaches BONUS_FLOOR gets BONUS added.

Weights are Decimals so tier sums compare exactly (0.45 + 0.25 + 0.20 is
exactly 0.90).
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

# Strings longer than this skip the edit-distance comparison
LEVENSHTEIN_MAX_LENGTH = 10

# Words of this length or shorter are ignored by word overlap
MIN_WORD_LENGTH = 3

# Edit-distance similarity is discounted by this factor
LEVENSHTEIN_FACTOR = 0.7


@dataclass(frozen=True)
class Tier:
    """One row of a scoring table."""

    name: str
    weight: Decimal
    auto_eligible: bool
    applies: Callable[[float], bool]


@dataclass(frozen=True)
class ScoringWeights:
    """Tier tables for the three signals plus the eligibility bonus.

    Amount predicates receive |Δ| in currency units, except the relative
    tier which receives |Δ| / expected (see score_amount). Date predicates
    receive the signed day difference. Text predicates receive the
    similarity in [0, 1].
    """

    amount_tiers: tuple[Tier, ...]
    date_tiers: tuple[Tier, ...]
    text_tiers: tuple[Tier, ...]
    relative_amount_tier: Tier
    bonus: Decimal = Decimal("0.10")
    bonus_floor: Decimal = Decimal("0.80")


DEFAULT_WEIGHTS = ScoringWeights(
    amount_tiers=(
        Tier("exact", Decimal("0.50"), True, lambda d: d == 0),
        Tier("within_0.50", Decimal("0.45"), True, lambda d: d <= 0.50),
        Tier("within_2.00", Decimal("0.30"), False, lambda d: d <= 2.00),
    ),
    relative_amount_tier=Tier("within_5pct", Decimal("0.20"), False, lambda r: r < 0.05),
    date_tiers=(
        Tier("same_day", Decimal("0.30"), True, lambda d: d == 0),
        Tier("window", Decimal("0.25"), True, lambda d: -10 <= d <= 45),
        Tier("within_7d", Decimal("0.20"), False, lambda d: abs(d) <= 7),
        Tier("within_30d", Decimal("0.10"), False, lambda d: abs(d) <= 30),
    ),
    text_tiers=(
        Tier("strong", Decimal("0.20"), True, lambda s: s >= 0.8),
        Tier("similar", Decimal("0.15"), False, lambda s: s >= 0.6),
        Tier("partial", Decimal("0.05"), False, lambda s: s >= 0.3),
    ),
)


@dataclass
class SignalScore:
    """Contribution of one signal to the confidence."""

    signal: str
    tier: str | None  # None when no tier matched
    contribution: Decimal
    auto_eligible: bool
    value: float  # the measured difference or similarity


@dataclass
class PairScore:
    """Full score breakdown for one Movement/Obligation pair."""

    confidence: float
    auto_eligible: bool
    bonus_applied: bool
    signals: list[SignalScore] = field(default_factory=list)

    def signal(self, name: str) -> SignalScore | None:
        for s in self.signals:
            if s.signal == name:
                return s
        return None


def _first_tier(tiers: tuple[Tier, ...], value: float) -> Tier | None:
    for tier in tiers:
        if tier.applies(value):
            return tier
    return None


def _signal(name: str, tier: Tier | None, value: float) -> SignalScore:
    if tier is None:
        return SignalScore(name, None, Decimal("0"), False, value)
    return SignalScore(name, tier.name, tier.weight, tier.auto_eligible, value)


def score_amount(
    movement_amount: Decimal,
    expected_amount: Decimal,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> SignalScore:
    """Score |movement| against the expected (unsigned) amount."""
    diff = abs(abs(movement_amount) - expected_amount)
    tier = _first_tier(weights.amount_tiers, float(diff))
    if tier is None and expected_amount > 0:
        if weights.relative_amount_tier.applies(float(diff / expected_amount)):
            tier = weights.relative_amount_tier
    return _signal("amount", tier, float(diff))


def score_date(
    movement_date: date,
    expected_date: date,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> SignalScore:
    """Score the signed day difference (positive: paid after expected)."""
    days = (movement_date - expected_date).days
    return _signal("date", _first_tier(weights.date_tiers, days), days)


def score_text(
    description: str | None,
    counterparty: str | None,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> SignalScore:
    """Score description vs counterparty similarity."""
    similarity = text_similarity(description, counterparty)
    return _signal("text", _first_tier(weights.text_tiers, similarity), similarity)


def levenshtein_distance(left: str, right: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if len(left) < len(right):
        left, right = right, left
    previous = list(range(len(right) + 1))
    for i, lch in enumerate(left, start=1):
        current = [i]
        for j, rch in enumerate(right, start=1):
            cost = 0 if lch == rch else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def levenshtein_similarity(left: str, right: str) -> float:
    """1 - distance / longest length; 1.0 for two empty strings."""
    longest = max(len(left), len(right))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(left, right) / longest


def word_overlap_ratio(left: str, right: str) -> float:
    """
    Share of significant words found in both strings.

    A word of `left` counts when it contains, or is contained in, some word
    of `right`. Only words longer than two characters are considered; the
    count is divided by the larger word list.
    """
    left_words = [w for w in left.split() if len(w) >= MIN_WORD_LENGTH]
    right_words = [w for w in right.split() if len(w) >= MIN_WORD_LENGTH]
    if not left_words or not right_words:
        return 0.0
    matching = sum(
        1 for word in left_words if any(word in other or other in word for other in right_words)
    )
    return matching / max(len(left_words), len(right_words))


def text_similarity(description: str | None, counterparty: str | None) -> float:
    """
    Similarity between a Movement description and an Obligation counterparty.

    Both sides are lowercased. Exact -> 1.0, containment -> 0.8, otherwise
    the best of word overlap and discounted edit-distance similarity (the
    latter only when both strings are short).
    """
    if not description or not counterparty:
        return 0.0
    left = description.lower().strip()
    right = counterparty.lower().strip()
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    if left in right or right in left:
        return 0.8

    similarity = word_overlap_ratio(left, right)
    if len(left) <= LEVENSHTEIN_MAX_LENGTH and len(right) <= LEVENSHTEIN_MAX_LENGTH:
        similarity = max(similarity, levenshtein_similarity(left, right) * LEVENSHTEIN_FACTOR)
    return similarity


def score_pair(
    movement_amount: Decimal,
    movement_date: date,
    description: str | None,
    expected_amount: Decimal,
    expected_date: date,
    counterparty: str | None,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> PairScore:
    """Combine the three signals and the bonus into a clamped confidence."""
    signals = [
        score_amount(movement_amount, expected_amount, weights),
        score_date(movement_date, expected_date, weights),
        score_text(description, counterparty, weights),
    ]
    total = sum((s.contribution for s in signals), Decimal("0"))
    auto_eligible = all(s.auto_eligible for s in signals)

    bonus_applied = auto_eligible and total >= weights.bonus_floor
    if bonus_applied:
        total += weights.bonus

    total = min(max(total, Decimal("0")), Decimal("1"))
    return PairScore(
        confidence=float(total),
        auto_eligible=auto_eligible,
        bonus_applied=bonus_applied,
        signals=signals,
    )
