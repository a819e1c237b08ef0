"""Matching engine for correlating Movements with outstanding Obligations.

For every UNRECONCILED Movement, scores every open (FORECAST, unlinked)
Obligation of the matching sign:
- positive Movement amount -> INCOME
- negative Movement amount -> EXPENSE and CAPEX

Candidates are ranked by confidence descending, then obligation id
ascending, then kind name, so the same snapshot always yields the same
order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from bank_recon.matching.scoring import DEFAULT_WEIGHTS, PairScore, ScoringWeights, score_pair
from bank_recon.schemas.ledger import ObligationKind

if TYPE_CHECKING:
    from bank_recon.config import Config
    from bank_recon.state_store import MovementRecord, ObligationRecord, StateStore

logger = logging.getLogger(__name__)

INCOMING_KINDS = (ObligationKind.INCOME,)
OUTGOING_KINDS = (ObligationKind.EXPENSE, ObligationKind.CAPEX)


@dataclass
class Candidate:
    """A scored Obligation proposed for one Movement."""

    obligation_kind: ObligationKind
    obligation_id: int
    confidence: float
    reason: str
    obligation_version: int = 1
    score: PairScore | None = None

    @property
    def sort_key(self) -> tuple[float, int, str]:
        return (-self.confidence, self.obligation_id, self.obligation_kind.value)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {
            "obligation_kind": self.obligation_kind.value,
            "obligation_id": self.obligation_id,
            "confidence": self.confidence,
            "reason": self.reason,
        }
        if self.score is not None:
            data["auto_eligible"] = self.score.auto_eligible
            data["signals"] = [
                {
                    "signal": s.signal,
                    "tier": s.tier,
                    "contribution": float(s.contribution),
                    "value": s.value,
                }
                for s in self.score.signals
            ]
        return data


@dataclass
class MovementCandidates:
    """Ranked candidates for one Movement."""

    movement_id: int
    candidates: list[Candidate] = field(default_factory=list)
    movement_version: int = 1

    def high_confidence(self, threshold: float) -> list[Candidate]:
        """Candidates at or above the threshold, in rank order."""
        return [c for c in self.candidates if c.confidence >= threshold]

    def to_dict(self) -> dict:
        return {
            "movement_id": self.movement_id,
            "candidates": [c.to_dict() for c in self.candidates],
        }


def build_reason(score: PairScore) -> str:
    """Human-readable audit text for the signals that fired."""
    reasons: list[str] = []

    amount = score.signal("amount")
    if amount and amount.tier == "exact":
        reasons.append("Exact amount")
    elif amount and amount.tier == "within_0.50":
        reasons.append(f"Amount ±{amount.value:.2f} (auto window)")
    elif amount and amount.tier is not None:
        reasons.append(f"Amount ±{amount.value:.2f}")

    day = score.signal("date")
    if day and day.tier == "same_day":
        reasons.append("Exact date")
    elif day and day.tier is not None:
        days = int(day.value)
        suffix = " (auto window)" if day.auto_eligible else ""
        reasons.append(f"{days:+d}d{suffix}")

    text = score.signal("text")
    if text and text.tier == "strong":
        reasons.append("Counterparty matches")
    elif text and text.tier == "similar":
        reasons.append("Counterparty similar")
    elif text and text.tier == "partial":
        reasons.append("Counterparty partial")

    return " · ".join(reasons) or "Match detected"


class MatchingEngine:
    """Engine for ranking reconciliation candidates.

    Reads a snapshot of unreconciled Movements and open Obligations at the
    start of each call; never writes.
    """

    def __init__(
        self,
        state_store: StateStore,
        config: Config,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
    ) -> None:
        """Initialize the matching engine.

        Args:
            state_store: State store to read Movements and Obligations from.
            config: Application configuration.
            weights: Scoring tier tables.
        """
        self.store = state_store
        self.config = config
        self.weights = weights
        self.candidate_threshold = config.reconciliation.candidate_threshold

    def find_candidates(self) -> list[MovementCandidates]:
        """Rank candidates for every UNRECONCILED Movement.

        Returns:
            One entry per Movement that has at least one candidate, in
            Movement id order.
        """
        movements = self.store.get_unreconciled_movements()
        obligations = {kind: self.store.get_open_obligations(kind) for kind in ObligationKind}

        results: list[MovementCandidates] = []
        for movement in movements:
            candidates = self.candidates_for_movement(movement, obligations)
            if candidates:
                results.append(
                    MovementCandidates(
                        movement_id=movement.id,
                        candidates=candidates,
                        movement_version=movement.version,
                    )
                )

        logger.info(
            "[reconciliation] Scored %d unreconciled movements, %d with candidates",
            len(movements),
            len(results),
        )
        return results

    def candidates_for_movement(
        self,
        movement: MovementRecord,
        obligations: dict[ObligationKind, list[ObligationRecord]],
    ) -> list[Candidate]:
        """Score one Movement against the Obligations of its sign."""
        if movement.amount > 0:
            kinds = INCOMING_KINDS
        elif movement.amount < 0:
            kinds = OUTGOING_KINDS
        else:
            return []

        candidates: list[Candidate] = []
        for kind in kinds:
            for obligation in obligations.get(kind, []):
                candidate = self.score(movement, obligation)
                if candidate.confidence > self.candidate_threshold:
                    candidates.append(candidate)

        candidates.sort(key=lambda c: c.sort_key)
        return candidates

    def score(self, movement: MovementRecord, obligation: ObligationRecord) -> Candidate:
        """Score a single Movement/Obligation pair."""
        pair = score_pair(
            movement_amount=movement.amount,
            movement_date=date.fromisoformat(movement.date),
            description=movement.description,
            expected_amount=obligation.expected_amount,
            expected_date=date.fromisoformat(obligation.expected_date),
            counterparty=obligation.counterparty_text,
            weights=self.weights,
        )
        return Candidate(
            obligation_kind=obligation.kind,
            obligation_id=obligation.id,
            confidence=pair.confidence,
            reason=build_reason(pair),
            obligation_version=obligation.version,
            score=pair,
        )
