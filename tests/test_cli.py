"""Tests for CLI commands.

These tests verify that all CLI commands are properly registered and that
the main flows run end to end against a temporary database.
"""

import json

import pytest
import yaml

from bank_recon.runner.main import create_cli, main
from bank_recon.schemas.ledger import ObligationKind, ObligationState, PaymentMethod
from bank_recon.state_store import StateStore


@pytest.fixture
def config_file(tmp_path, temp_db, monkeypatch):
    """Config file pointing at the temporary database."""
    monkeypatch.delenv("BANK_RECON_STATE_DB", raising=False)
    monkeypatch.delenv("BANK_RECON_DEMO_MODE", raising=False)
    monkeypatch.delenv("BANK_RECON_AUTO_MATCH_THRESHOLD", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"state_db_path": str(temp_db)}))
    return path


class TestCLICommandRegistry:
    """Tests for CLI command registration."""

    def test_all_commands_registered(self):
        """Verify all expected commands are registered."""
        parser = create_cli()

        subparsers_action = None
        for action in parser._actions:
            if action.dest == "command":
                subparsers_action = action
                break

        assert subparsers_action is not None
        assert set(subparsers_action.choices) == {
            "init-config",
            "add-account",
            "add-obligation",
            "import",
            "candidates",
            "auto-reconcile",
            "reconcile",
            "settle",
            "status",
        }

    def test_reconcile_arguments(self):
        args = create_cli().parse_args(["reconcile", "income", "3", "7"])
        assert args.kind == ObligationKind.INCOME
        assert (args.obligation_id, args.movement_id) == (3, 7)

    def test_settle_arguments(self):
        args = create_cli().parse_args(
            ["settle", "EXPENSE", "2", "--method", "cash", "--date", "2024-03-09"]
        )
        assert args.method == PaymentMethod.CASH
        assert args.date == "2024-03-09"
        assert args.notes is None

    def test_invalid_kind_rejected(self):
        with pytest.raises(SystemExit):
            create_cli().parse_args(["reconcile", "loan", "1", "1"])

    def test_invalid_date_rejected(self):
        with pytest.raises(SystemExit):
            create_cli().parse_args(
                ["settle", "EXPENSE", "2", "--method", "CASH", "--date", "09/03/2024"]
            )

    def test_no_command_prints_help(self):
        assert main([]) == 1


class TestCLIFlows:
    """End-to-end command runs."""

    @staticmethod
    def run(config_file, *args: str) -> int:
        return main(["-c", str(config_file), *args])

    def test_init_config(self, tmp_path):
        path = tmp_path / "cfg" / "config.yaml"

        assert main(["-c", str(path), "init-config"]) == 0
        assert path.exists()
        assert main(["-c", str(path), "init-config"]) == 1

    def test_import_and_auto_reconcile(self, config_file, temp_db, sample_statement, capsys):
        iban = "ES91 2100 0418 4502 0005 1332"
        assert self.run(config_file, "add-account", "Main", "--iban", iban) == 0
        assert (
            self.run(
                config_file,
                "add-obligation",
                "INCOME",
                "--counterparty",
                "John Doe",
                "--amount",
                "1200",
                "--date",
                "2024-03-10",
            )
            == 0
        )

        assert self.run(config_file, "import", str(sample_statement)) == 0
        # Re-import only finds duplicates
        assert self.run(config_file, "import", str(sample_statement)) == 0
        store = StateStore(temp_db)
        assert len(store.list_movements()) == 3

        capsys.readouterr()
        assert self.run(config_file, "candidates", "--json") == 0
        candidates = json.loads(capsys.readouterr().out)
        assert candidates[0]["candidates"][0]["obligation_kind"] == "INCOME"

        assert self.run(config_file, "auto-reconcile") == 0
        income = store.get_obligation(ObligationKind.INCOME, 1)
        assert income.state == ObligationState.RECONCILED

        assert self.run(config_file, "status") == 0

    def test_import_without_account_needs_selection(self, config_file, sample_statement):
        assert self.run(config_file, "import", str(sample_statement)) == 1

    def test_import_missing_file(self, config_file, tmp_path):
        assert self.run(config_file, "import", str(tmp_path / "nope.csv")) == 1

    def test_settle_and_errors(self, config_file, temp_db):
        store = StateStore(temp_db)
        obligation_id = store.create_obligation(
            ObligationKind.EXPENSE, "Gestoria", "60", "2024-03-01"
        )
        args = ("settle", "EXPENSE", str(obligation_id), "--method", "CASH", "--date", "2024-03-02")

        assert self.run(config_file, *args) == 0
        obligation = store.get_obligation(ObligationKind.EXPENSE, obligation_id)
        assert obligation.settled_date == "2024-03-02"
        # Already settled
        assert self.run(config_file, *args) == 1
        # Unknown obligation
        assert self.run(config_file, "reconcile", "EXPENSE", "99", "1") == 1

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("reconciliation:\n  auto_match_threshold: 2\n")
        assert main(["-c", str(path), "status"]) == 1
