"""Matching engine for correlating bank Movements with accounting Obligations."""

from bank_recon.matching.engine import Candidate, MatchingEngine, MovementCandidates
from bank_recon.matching.scoring import DEFAULT_WEIGHTS, PairScore, ScoringWeights, score_pair

__all__ = [
    "Candidate",
    "MatchingEngine",
    "MovementCandidates",
    "DEFAULT_WEIGHTS",
    "PairScore",
    "ScoringWeights",
    "score_pair",
]
