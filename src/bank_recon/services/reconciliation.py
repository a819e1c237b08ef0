"""Reconciliation policy service.

Turns matching candidates into links:
- Auto-reconciliation links a Movement only when exactly one candidate
  reaches the auto-match threshold
- Manual reconciliation links a chosen pair without any confidence check
- Settlement closes an Obligation paid outside the bank (cash, card, ...)

Every write is version-checked against the snapshot it was decided on.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from bank_recon.errors import (
    InvalidStateTransition,
    MovementNotFound,
    ObligationNotFound,
    ReconciliationError,
)
from bank_recon.matching.engine import MatchingEngine, MovementCandidates
from bank_recon.schemas.ledger import (
    ObligationKind,
    ObligationState,
    PaymentMethod,
    ReconciliationState,
)

if TYPE_CHECKING:
    from bank_recon.config import Config
    from bank_recon.state_store import ObligationRecord, StateStore

logger = logging.getLogger(__name__)

LOG_PREFIX = "[reconciliation]"


@dataclass
class AutoLinkDetail:
    """One link made (or, in a dry run, proposed) by auto-reconciliation."""

    movement_id: int
    obligation_kind: ObligationKind
    obligation_id: int
    confidence: float
    reason: str

    def to_dict(self) -> dict:
        return {
            "movement_id": self.movement_id,
            "obligation_kind": self.obligation_kind.value,
            "obligation_id": self.obligation_id,
            "confidence": self.confidence,
            "reason": self.reason,
        }


@dataclass
class AutoReconciliationResult:
    """Result of an auto-reconciliation run."""

    reconciled_count: int = 0
    details: list[AutoLinkDetail] = field(default_factory=list)
    # Movement ids with more than one candidate above the threshold
    ambiguous: list[int] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    duration_ms: int = 0


@dataclass
class LinkOutcome:
    """Result of a manual link."""

    obligation_kind: ObligationKind
    obligation_id: int
    movement_id: int
    movement_linked: bool


class ReconciliationService:
    """Applies the reconciliation policy on top of the matching engine.

    Safe to run repeatedly: reconciled Movements and Obligations drop out
    of the candidate set, so a second run links nothing new.

    Usage:
        service = ReconciliationService(state_store, config)
        result = service.run_auto_reconciliation()
    """

    def __init__(
        self,
        state_store: StateStore,
        config: Config,
        matching_engine: MatchingEngine | None = None,
    ) -> None:
        """Initialize the reconciliation service.

        Args:
            state_store: State store for persistence.
            config: Application configuration.
            matching_engine: Engine to rank candidates. Built from the store
                and config when omitted.
        """
        self.store = state_store
        self.config = config
        self.matching_engine = matching_engine or MatchingEngine(state_store, config)

        self.auto_match_threshold = config.reconciliation.auto_match_threshold
        self.strict_manual_links = config.reconciliation.strict_manual_links

    def find_reconciliation_candidates(self) -> list[MovementCandidates]:
        """Ranked candidates for every unreconciled Movement (read-only)."""
        return self.matching_engine.find_candidates()

    def run_auto_reconciliation(self, dry_run: bool = False) -> AutoReconciliationResult:
        """Link every Movement with exactly one high-confidence candidate.

        Movements with zero or several candidates at or above the threshold
        are left alone. A failing link is logged and skipped; the run goes on.

        Args:
            dry_run: Report what would be linked without writing.
        """
        start_time = time.time()
        result = AutoReconciliationResult()

        for entry in self.matching_engine.find_candidates():
            high_confidence = entry.high_confidence(self.auto_match_threshold)

            if not high_confidence:
                continue

            if len(high_confidence) > 1:
                logger.info(
                    "%s Skipping movement %d: %d ambiguous high-confidence candidates",
                    LOG_PREFIX,
                    entry.movement_id,
                    len(high_confidence),
                )
                result.ambiguous.append(entry.movement_id)
                continue

            candidate = high_confidence[0]
            detail = AutoLinkDetail(
                movement_id=entry.movement_id,
                obligation_kind=candidate.obligation_kind,
                obligation_id=candidate.obligation_id,
                confidence=candidate.confidence,
                reason=candidate.reason,
            )

            if dry_run:
                result.details.append(detail)
                continue

            try:
                self.store.link_movement_obligation(
                    kind=candidate.obligation_kind,
                    obligation_id=candidate.obligation_id,
                    obligation_version=candidate.obligation_version,
                    movement_id=entry.movement_id,
                    movement_version=entry.movement_version,
                )
            except (ReconciliationError, sqlite3.Error) as e:
                logger.error(
                    "%s Auto-link of movement %d to %s %d failed: %s",
                    LOG_PREFIX,
                    entry.movement_id,
                    candidate.obligation_kind.value,
                    candidate.obligation_id,
                    e,
                )
                result.failed.append(f"movement {entry.movement_id}: {e}")
                continue

            logger.info(
                "%s Auto-linked movement %d to %s %d (confidence %.2f: %s)",
                LOG_PREFIX,
                entry.movement_id,
                candidate.obligation_kind.value,
                candidate.obligation_id,
                candidate.confidence,
                candidate.reason,
            )
            result.reconciled_count += 1
            result.details.append(detail)

        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "%s Auto-reconciliation finished: %d linked, %d ambiguous, %d failed in %d ms",
            LOG_PREFIX,
            result.reconciled_count,
            len(result.ambiguous),
            len(result.failed),
            result.duration_ms,
        )
        return result

    def reconcile(
        self,
        kind: ObligationKind,
        obligation_id: int,
        movement_id: int,
    ) -> LinkOutcome:
        """Manually link an Obligation to a Movement (user override).

        No confidence check is made. When the Movement does not exist the
        Obligation is still marked RECONCILED, unless strict manual links
        are configured.

        Raises:
            ObligationNotFound: If the Obligation does not exist.
            MovementNotFound: If the Movement does not exist (strict mode only).
            InvalidStateTransition: If either side is already closed.
            StaleWriteError: If either side changed concurrently.
        """
        obligation = self._get_open_obligation(kind, obligation_id)

        movement = self.store.get_movement(movement_id)
        if movement is None:
            if self.strict_manual_links:
                raise MovementNotFound(f"Movement {movement_id} not found")
            logger.warning(
                "%s Movement %d not found; marking %s %d reconciled anyway",
                LOG_PREFIX,
                movement_id,
                kind.value,
                obligation_id,
            )
        elif movement.reconciliation_state != ReconciliationState.UNRECONCILED:
            raise InvalidStateTransition(
                f"Movement {movement_id} is {movement.reconciliation_state.value}"
            )

        self.store.link_movement_obligation(
            kind=kind,
            obligation_id=obligation_id,
            obligation_version=obligation.version,
            movement_id=movement_id,
            movement_version=movement.version if movement else None,
        )
        logger.info(
            "%s Manually linked %s %d to movement %d", LOG_PREFIX, kind.value, obligation_id, movement_id
        )
        return LinkOutcome(
            obligation_kind=kind,
            obligation_id=obligation_id,
            movement_id=movement_id,
            movement_linked=movement is not None,
        )

    def settle_without_movement(
        self,
        kind: ObligationKind,
        obligation_id: int,
        method: PaymentMethod,
        settled_date: date | str,
        notes: str | None = None,
    ) -> None:
        """Close an Obligation paid outside the bank.

        Raises:
            ObligationNotFound: If the Obligation does not exist.
            InvalidStateTransition: If it is not FORECAST.
            StaleWriteError: If it changed concurrently.
        """
        obligation = self._get_open_obligation(kind, obligation_id)
        if isinstance(settled_date, date):
            settled_date = settled_date.isoformat()

        self.store.settle_obligation(
            kind=kind,
            obligation_id=obligation_id,
            obligation_version=obligation.version,
            method=method,
            settled_date=settled_date,
            notes=notes,
        )
        logger.info(
            "%s Settled %s %d out of band (%s, %s)",
            LOG_PREFIX,
            kind.value,
            obligation_id,
            method.value,
            settled_date,
        )

    def _get_open_obligation(self, kind: ObligationKind, obligation_id: int) -> ObligationRecord:
        obligation = self.store.get_obligation(kind, obligation_id)
        if obligation is None:
            raise ObligationNotFound(f"{kind.value} {obligation_id} not found")
        if obligation.state != ObligationState.FORECAST or obligation.linked_movement_id is not None:
            raise InvalidStateTransition(
                f"{kind.value} {obligation_id} is {obligation.state.value}, expected FORECAST"
            )
        return obligation
