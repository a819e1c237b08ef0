"""Tests for the matching engine."""

from unittest.mock import MagicMock

import pytest

from bank_recon.config import Config, ReconciliationConfig
from bank_recon.matching.engine import Candidate, MatchingEngine, build_reason
from bank_recon.schemas.ledger import Direction, ObligationKind, PaymentMethod
from bank_recon.state_store import StateStore


class TestMatchingEngine:
    """Tests for candidate ranking against a real store."""

    @pytest.fixture
    def engine(self, store: StateStore, config: Config) -> MatchingEngine:
        return MatchingEngine(store, config)

    def test_income_routing(self, engine, store, account_id, make_row):
        """Positive Movements only see INCOME Obligations."""
        store.insert_movement(
            account_id,
            make_row(
                value_date="2024-03-10",
                description="Rent payment John Doe",
                amount="1200.00",
                direction=Direction.IN,
            ),
            "b",
        )
        income_id = store.create_obligation(ObligationKind.INCOME, "John Doe", "1200", "2024-03-10")
        store.create_obligation(ObligationKind.EXPENSE, "John Doe", "1200", "2024-03-10")

        results = engine.find_candidates()

        assert len(results) == 1
        candidates = results[0].candidates
        assert [(c.obligation_kind, c.obligation_id) for c in candidates] == [
            (ObligationKind.INCOME, income_id)
        ]
        assert candidates[0].confidence == 1.0

    def test_expense_and_capex_routing(self, engine, store, account_id, make_row):
        """Negative Movements see EXPENSE and CAPEX, never INCOME."""
        store.insert_movement(account_id, make_row(description="Iberdrola"), "b")
        store.create_obligation(ObligationKind.INCOME, "Iberdrola", "80", "2024-03-05")
        store.create_obligation(ObligationKind.EXPENSE, "Iberdrola", "80", "2024-03-05")
        store.create_obligation(ObligationKind.CAPEX, "Iberdrola", "80", "2024-03-05")

        kinds = {c.obligation_kind for c in engine.find_candidates()[0].candidates}

        assert kinds == {ObligationKind.EXPENSE, ObligationKind.CAPEX}

    def test_tie_broken_by_id_then_kind(self, engine, store, account_id, make_row):
        store.insert_movement(account_id, make_row(description="Iberdrola"), "b")
        store.create_obligation(ObligationKind.EXPENSE, "Iberdrola", "80", "2024-03-05")
        store.create_obligation(ObligationKind.CAPEX, "Iberdrola", "80", "2024-03-05")
        store.create_obligation(ObligationKind.EXPENSE, "Iberdrola", "80", "2024-03-05")

        candidates = engine.find_candidates()[0].candidates

        assert [(c.obligation_id, c.obligation_kind) for c in candidates] == [
            (1, ObligationKind.CAPEX),
            (1, ObligationKind.EXPENSE),
            (2, ObligationKind.EXPENSE),
        ]

    def test_ranked_by_confidence(self, engine, store, account_id, make_row):
        store.insert_movement(account_id, make_row(description="Iberdrola"), "b")
        weak = store.create_obligation(ObligationKind.EXPENSE, "Iberdrola", "81.50", "2024-03-05")
        strong = store.create_obligation(ObligationKind.EXPENSE, "Iberdrola", "80", "2024-03-05")

        candidates = engine.find_candidates()[0].candidates

        assert [c.obligation_id for c in candidates] == [strong, weak]
        assert candidates[0].confidence > candidates[1].confidence

    def test_candidates_below_floor_omitted(self, engine, store, account_id, make_row):
        """A Movement whose best score is not above 0.5 does not appear."""
        store.insert_movement(account_id, make_row(description="COMISION"), "b")
        store.create_obligation(ObligationKind.EXPENSE, "Endesa", "500", "2024-06-01")

        assert engine.find_candidates() == []

    def test_closed_obligations_ignored(self, engine, store, account_id, make_row):
        store.insert_movement(account_id, make_row(description="Iberdrola"), "b")
        obligation_id = store.create_obligation(
            ObligationKind.EXPENSE, "Iberdrola", "80", "2024-03-05"
        )
        store.settle_obligation(
            ObligationKind.EXPENSE, obligation_id, 1, PaymentMethod.CASH, "2024-03-05"
        )

        assert engine.find_candidates() == []

    def test_reconciled_movements_ignored(self, engine, store, account_id, make_row):
        movement_id = store.insert_movement(account_id, make_row(description="Iberdrola"), "b")
        first = store.create_obligation(ObligationKind.EXPENSE, "Iberdrola", "80", "2024-03-05")
        store.create_obligation(ObligationKind.EXPENSE, "Iberdrola", "80", "2024-03-05")
        store.link_movement_obligation(ObligationKind.EXPENSE, first, 1, movement_id, 1)

        assert engine.find_candidates() == []

    def test_zero_amount_has_no_candidates(self, engine, store, account_id, make_row):
        store.insert_movement(
            account_id, make_row(description="Iberdrola", amount="0.00", direction=Direction.IN), "b"
        )
        store.create_obligation(ObligationKind.INCOME, "Iberdrola", "0", "2024-03-05")

        assert engine.find_candidates() == []

    def test_candidate_threshold_from_config(self, store, account_id, make_row, temp_db):
        config = Config(
            state_db_path=temp_db,
            reconciliation=ReconciliationConfig(candidate_threshold=0.95),
        )
        engine = MatchingEngine(store, config)
        store.insert_movement(account_id, make_row(description="PAGO IBERDROLA ENERGIA"), "b")
        store.create_obligation(ObligationKind.EXPENSE, "energia iberdrola", "80", "2024-03-10")

        assert engine.find_candidates() == []

    def test_snapshot_versions_carried(self, engine, store, account_id, make_row):
        store.insert_movement(account_id, make_row(description="Iberdrola"), "b")
        store.create_obligation(ObligationKind.EXPENSE, "Iberdrola", "80", "2024-03-05")

        entry = engine.find_candidates()[0]

        assert entry.movement_version == 1
        assert entry.candidates[0].obligation_version == 1


class TestCandidateSerialization:
    """Tests for candidate output."""

    def test_reason_lists_signals(self, store, config, account_id, make_row):
        engine = MatchingEngine(store, config)
        store.insert_movement(account_id, make_row(description="Iberdrola"), "b")
        store.create_obligation(ObligationKind.EXPENSE, "Iberdrola", "80", "2024-03-05")

        candidate = engine.find_candidates()[0].candidates[0]

        assert candidate.reason == "Exact amount · Exact date · Counterparty matches"

    def test_to_dict(self, store, config, account_id, make_row):
        engine = MatchingEngine(store, config)
        store.insert_movement(account_id, make_row(description="Iberdrola"), "b")
        store.create_obligation(ObligationKind.EXPENSE, "Iberdrola", "80", "2024-03-05")

        data = engine.find_candidates()[0].to_dict()

        assert data["movement_id"] == 1
        candidate = data["candidates"][0]
        assert candidate["obligation_kind"] == "EXPENSE"
        assert candidate["auto_eligible"] is True
        assert [s["signal"] for s in candidate["signals"]] == ["amount", "date", "text"]

    def test_reason_fallback(self):
        score = MagicMock()
        score.signal.return_value = None
        assert build_reason(score) == "Match detected"

    def test_sort_key(self):
        a = Candidate(ObligationKind.EXPENSE, 2, 0.9, "")
        b = Candidate(ObligationKind.CAPEX, 2, 0.9, "")
        c = Candidate(ObligationKind.INCOME, 1, 0.7, "")
        assert sorted([c, a, b], key=lambda x: x.sort_key) == [b, a, c]
