"""Tests for the ReconciliationService.

These tests verify:
- Auto-linking only for a single candidate at or above the threshold
- Idempotent re-runs
- Lost races between Movements competing for one Obligation
- Manual link and out-of-band settlement workflows
"""

from __future__ import annotations

import sqlite3
from datetime import date
from unittest.mock import MagicMock

import pytest

from bank_recon.config import Config, ReconciliationConfig
from bank_recon.errors import (
    InvalidStateTransition,
    MovementNotFound,
    ObligationNotFound,
    StaleWriteError,
)
from bank_recon.matching.engine import Candidate, MovementCandidates
from bank_recon.schemas.ledger import (
    SETTLED_WITHOUT_MOVEMENT,
    Direction,
    ObligationKind,
    ObligationState,
    PaymentMethod,
    ReconciliationState,
)
from bank_recon.services.reconciliation import ReconciliationService


@pytest.fixture
def service(store, config) -> ReconciliationService:
    return ReconciliationService(store, config)


@pytest.fixture
def rent_movement(store, account_id, make_row) -> int:
    """Incoming rent payment on the expected day."""
    return store.insert_movement(
        account_id,
        make_row(
            value_date="2024-03-10",
            description="Rent payment John Doe",
            amount="1200.00",
            direction=Direction.IN,
        ),
        "batch-1",
    )


@pytest.fixture
def rent_income(store) -> int:
    return store.create_obligation(ObligationKind.INCOME, "John Doe", "1200.00", "2024-03-10")


class TestAutoReconciliation:
    """Tests for run_auto_reconciliation()."""

    def test_single_high_confidence_candidate_linked(
        self, service, store, rent_movement, rent_income
    ):
        result = service.run_auto_reconciliation()

        assert result.reconciled_count == 1
        detail = result.details[0]
        assert (detail.movement_id, detail.obligation_kind, detail.obligation_id) == (
            rent_movement,
            ObligationKind.INCOME,
            rent_income,
        )
        assert detail.confidence == 1.0

        movement = store.get_movement(rent_movement)
        obligation = store.get_obligation(ObligationKind.INCOME, rent_income)
        assert movement.reconciliation_state == ReconciliationState.RECONCILED
        assert movement.linked_obligation.id == rent_income
        assert obligation.state == ObligationState.RECONCILED
        assert obligation.linked_movement_id == rent_movement

    def test_two_candidates_at_threshold_not_linked(self, service, store, account_id, make_row):
        """Two Obligations scoring 0.90 make the Movement ambiguous."""
        movement_id = store.insert_movement(account_id, make_row(), "batch-1")
        first = store.create_obligation(
            ObligationKind.EXPENSE, "energia iberdrola", "80.00", "2024-03-10"
        )
        second = store.create_obligation(
            ObligationKind.EXPENSE, "energia iberdrola", "80.00", "2024-03-10"
        )

        candidates = service.find_reconciliation_candidates()
        assert [c.confidence for c in candidates[0].candidates] == pytest.approx([0.90, 0.90])

        result = service.run_auto_reconciliation()

        assert result.reconciled_count == 0
        assert result.ambiguous == [movement_id]
        for obligation_id in (first, second):
            assert store.get_obligation(ObligationKind.EXPENSE, obligation_id).is_open
        assert store.get_movement(movement_id).reconciliation_state == (
            ReconciliationState.UNRECONCILED
        )

    def test_below_threshold_not_linked(self, service, store, account_id, make_row):
        store.insert_movement(account_id, make_row(description="Iberdrola"), "batch-1")
        store.create_obligation(ObligationKind.EXPENSE, "Iberdrola", "81.50", "2024-03-05")

        result = service.run_auto_reconciliation()

        assert result.reconciled_count == 0
        assert result.ambiguous == []

    def test_rerun_is_idempotent(self, service, rent_movement, rent_income):
        service.run_auto_reconciliation()

        result = service.run_auto_reconciliation()

        assert result.reconciled_count == 0
        assert result.details == []

    def test_competing_movements_link_once(
        self, service, store, account_id, make_row, rent_movement, rent_income
    ):
        """Both Movements see the same Obligation; the second write is stale."""
        late = store.insert_movement(
            account_id,
            make_row(
                value_date="2024-03-11",
                description="Rent John Doe",
                amount="1200.00",
                direction=Direction.IN,
            ),
            "batch-1",
        )

        result = service.run_auto_reconciliation()

        assert result.reconciled_count == 1
        assert len(result.failed) == 1
        assert store.get_obligation(ObligationKind.INCOME, rent_income).linked_movement_id == (
            rent_movement
        )
        assert store.get_movement(late).reconciliation_state == ReconciliationState.UNRECONCILED

    def test_dry_run_writes_nothing(self, service, store, rent_movement, rent_income):
        result = service.run_auto_reconciliation(dry_run=True)

        assert result.reconciled_count == 0
        assert len(result.details) == 1
        assert store.get_obligation(ObligationKind.INCOME, rent_income).is_open

    def test_store_failure_skipped(self, config):
        store = MagicMock()
        store.link_movement_obligation.side_effect = [sqlite3.OperationalError("locked"), None]
        engine = MagicMock()
        engine.find_candidates.return_value = [
            MovementCandidates(1, [Candidate(ObligationKind.EXPENSE, 10, 0.95, "r")]),
            MovementCandidates(2, [Candidate(ObligationKind.EXPENSE, 11, 0.95, "r")]),
        ]
        service = ReconciliationService(store, config, matching_engine=engine)

        result = service.run_auto_reconciliation()

        assert result.reconciled_count == 1
        assert result.details[0].movement_id == 2
        assert len(result.failed) == 1

    def test_custom_threshold(self, store, temp_db, rent_movement, rent_income):
        config = Config(
            state_db_path=temp_db,
            reconciliation=ReconciliationConfig(auto_match_threshold=1.0),
        )
        result = ReconciliationService(store, config).run_auto_reconciliation()
        assert result.reconciled_count == 1


class TestManualReconcile:
    """Tests for reconcile()."""

    def test_links_without_confidence_check(self, service, store, account_id, make_row):
        movement_id = store.insert_movement(account_id, make_row(description="COMISION"), "b")
        obligation_id = store.create_obligation(
            ObligationKind.CAPEX, "Tractor", "5000", "2023-01-01"
        )

        outcome = service.reconcile(ObligationKind.CAPEX, obligation_id, movement_id)

        assert outcome.movement_linked
        assert store.get_obligation(ObligationKind.CAPEX, obligation_id).linked_movement_id == (
            movement_id
        )
        assert store.get_movement(movement_id).reconciliation_state == (
            ReconciliationState.RECONCILED
        )

    def test_missing_obligation(self, service, rent_movement):
        with pytest.raises(ObligationNotFound):
            service.reconcile(ObligationKind.INCOME, 99, rent_movement)

    def test_missing_movement_is_permissive(self, service, store, rent_income):
        outcome = service.reconcile(ObligationKind.INCOME, rent_income, 999)

        assert not outcome.movement_linked
        obligation = store.get_obligation(ObligationKind.INCOME, rent_income)
        assert obligation.state == ObligationState.RECONCILED
        assert obligation.linked_movement_id == 999

    def test_missing_movement_strict(self, store, temp_db, rent_income):
        config = Config(
            state_db_path=temp_db,
            reconciliation=ReconciliationConfig(strict_manual_links=True),
        )
        service = ReconciliationService(store, config)

        with pytest.raises(MovementNotFound):
            service.reconcile(ObligationKind.INCOME, rent_income, 999)
        assert store.get_obligation(ObligationKind.INCOME, rent_income).is_open

    def test_reconciled_obligation_rejected(self, service, store, rent_movement, rent_income):
        service.reconcile(ObligationKind.INCOME, rent_income, rent_movement)

        with pytest.raises(InvalidStateTransition):
            service.reconcile(ObligationKind.INCOME, rent_income, rent_movement)

    def test_reconciled_movement_rejected(self, service, store, rent_movement, rent_income):
        service.reconcile(ObligationKind.INCOME, rent_income, rent_movement)
        other = store.create_obligation(ObligationKind.INCOME, "John Doe", "1200", "2024-04-10")

        with pytest.raises(InvalidStateTransition):
            service.reconcile(ObligationKind.INCOME, other, rent_movement)

    def test_stale_snapshot_raises(self, service, store, rent_movement, rent_income, monkeypatch):
        snapshot = store.get_obligation(ObligationKind.INCOME, rent_income)
        store.settle_obligation(
            ObligationKind.INCOME, rent_income, 1, PaymentMethod.CARD, "2024-03-10"
        )
        monkeypatch.setattr(store, "get_obligation", lambda kind, obligation_id: snapshot)

        with pytest.raises(StaleWriteError):
            service.reconcile(ObligationKind.INCOME, rent_income, rent_movement)


class TestSettleWithoutMovement:
    """Tests for settle_without_movement()."""

    def test_settle(self, service, store, rent_movement, rent_income):
        service.settle_without_movement(
            ObligationKind.INCOME, rent_income, PaymentMethod.CASH, date(2024, 3, 9), "in person"
        )

        obligation = store.get_obligation(ObligationKind.INCOME, rent_income)
        assert obligation.state == ObligationState.SETTLED_OUT_OF_BAND
        assert obligation.linked_movement_id == SETTLED_WITHOUT_MOVEMENT
        assert obligation.payment_method == PaymentMethod.CASH
        assert obligation.settled_date == "2024-03-09"
        assert obligation.notes == "in person"
        # No Movement is touched
        assert store.get_movement(rent_movement).reconciliation_state == (
            ReconciliationState.UNRECONCILED
        )

    def test_settled_obligation_not_a_candidate(self, service, rent_movement, rent_income):
        service.settle_without_movement(
            ObligationKind.INCOME, rent_income, PaymentMethod.OTHER, "2024-03-09"
        )
        assert service.find_reconciliation_candidates() == []

    def test_settle_twice_rejected(self, service, rent_income):
        service.settle_without_movement(
            ObligationKind.INCOME, rent_income, PaymentMethod.CARD, "2024-03-09"
        )
        with pytest.raises(InvalidStateTransition):
            service.settle_without_movement(
                ObligationKind.INCOME, rent_income, PaymentMethod.CARD, "2024-03-09"
            )

    def test_settle_missing(self, service):
        with pytest.raises(ObligationNotFound):
            service.settle_without_movement(
                ObligationKind.EXPENSE, 1, PaymentMethod.CASH, "2024-03-09"
            )

    def test_reconcile_after_settle_rejected(self, service, rent_movement, rent_income):
        service.settle_without_movement(
            ObligationKind.INCOME, rent_income, PaymentMethod.CASH, "2024-03-09"
        )
        with pytest.raises(InvalidStateTransition):
            service.reconcile(ObligationKind.INCOME, rent_income, rent_movement)
