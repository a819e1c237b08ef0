"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..errors import BankReconError, ParseFailure
from ..parsers import CsvStatementParser
from ..schemas.ledger import ObligationKind, PaymentMethod
from ..services.account_resolution import StoreIbanResolver
from ..services.ingestion import BankStatementImportService
from ..services.reconciliation import ReconciliationService
from ..state_store import StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _kind(value: str) -> ObligationKind:
    try:
        return ObligationKind.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _method(value: str) -> PaymentMethod:
    try:
        return PaymentMethod(value.upper())
    except ValueError:
        raise argparse.ArgumentTypeError(f"Unknown payment method: {value!r}")


def _amount(value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise argparse.ArgumentTypeError(f"Invalid amount: {value!r}")
    return amount


def _iso_date(value: str) -> str:
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got {value!r}")


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="bank-recon",
        description="Import bank statements and reconcile them against expected obligations",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    # add-account command
    account_parser = subparsers.add_parser("add-account", help="Register a destination account")
    account_parser.add_argument("name", help="Display name")
    account_parser.add_argument("--iban", type=str, help="Account IBAN")

    # add-obligation command
    obligation_parser = subparsers.add_parser(
        "add-obligation", help="Register an expected income, expense or capex"
    )
    obligation_parser.add_argument("kind", type=_kind, help="INCOME, EXPENSE or CAPEX")
    obligation_parser.add_argument("--counterparty", required=True, help="Expected counterparty")
    obligation_parser.add_argument(
        "--amount", required=True, type=_amount, help="Expected amount (unsigned)"
    )
    obligation_parser.add_argument("--date", required=True, type=_iso_date, help="YYYY-MM-DD")
    obligation_parser.add_argument("--notes", type=str, help="Free-form notes")

    # import command
    import_parser = subparsers.add_parser("import", help="Import a bank statement")
    import_parser.add_argument("file", type=Path, help="Statement file (CSV)")
    import_parser.add_argument(
        "--account",
        type=int,
        help="Destination account ID (detected from the IBAN when omitted)",
    )
    import_parser.add_argument("--actor", type=str, help="Who runs the import")

    # candidates command
    candidates_parser = subparsers.add_parser(
        "candidates", help="List reconciliation candidates for unreconciled movements"
    )
    candidates_parser.add_argument("--json", action="store_true", help="Print JSON")

    # auto-reconcile command
    auto_parser = subparsers.add_parser(
        "auto-reconcile", help="Link unambiguous high-confidence candidates"
    )
    auto_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be linked without writing",
    )

    # reconcile command
    reconcile_parser = subparsers.add_parser(
        "reconcile", help="Manually link an obligation to a movement"
    )
    reconcile_parser.add_argument("kind", type=_kind, help="INCOME, EXPENSE or CAPEX")
    reconcile_parser.add_argument("obligation_id", type=int)
    reconcile_parser.add_argument("movement_id", type=int)

    # settle command
    settle_parser = subparsers.add_parser(
        "settle", help="Mark an obligation paid without a bank movement"
    )
    settle_parser.add_argument("kind", type=_kind, help="INCOME, EXPENSE or CAPEX")
    settle_parser.add_argument("obligation_id", type=int)
    settle_parser.add_argument("--method", required=True, type=_method, help="CASH, CARD or OTHER")
    settle_parser.add_argument("--date", required=True, type=_iso_date, help="YYYY-MM-DD")
    settle_parser.add_argument("--notes", type=str, help="Free-form notes")

    # status command
    subparsers.add_parser("status", help="Show ledger status and statistics")

    return parser


def cmd_init_config(config_path: Path) -> int:
    """Write the default config unless one exists."""
    if config_path.exists():
        print(f"❌ Config already exists: {config_path}")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_add_account(config: Config, name: str, iban: str | None) -> int:
    """Create a destination account."""
    store = StateStore(config.state_db_path)
    account_id = store.create_account(name, iban)
    print(f"✓ Account {account_id} created: {name}")
    return 0


def cmd_add_obligation(
    config: Config,
    kind: ObligationKind,
    counterparty: str,
    amount: Decimal,
    expected_date: str,
    notes: str | None,
) -> int:
    """Create a FORECAST obligation."""
    store = StateStore(config.state_db_path)
    obligation_id = store.create_obligation(kind, counterparty, amount, expected_date, notes)
    print(f"✓ {kind.value} {obligation_id} created: {counterparty} {amount} on {expected_date}")
    return 0


def cmd_import(config: Config, file: Path, account_id: int | None, actor: str | None) -> int:
    """Import one statement file."""
    if not file.exists():
        print(f"❌ File not found: {file}")
        return 1

    store = StateStore(config.state_db_path)
    service = BankStatementImportService(
        state_store=store,
        config=config,
        parser=CsvStatementParser(),
        resolver=StoreIbanResolver(store),
    )

    print(f"📥 Importing {file.name}...")
    try:
        result = service.import_bank_statement(file, destination_account_id=account_id, actor=actor)
    except ParseFailure as e:
        print(f"❌ Could not parse statement: {e}")
        return 1

    if result.requires_account_selection:
        print("⚠️  Destination account could not be determined")
        if result.detected_iban:
            print(f"   Detected IBAN: {result.detected_iban}")
        for candidate in result.candidate_accounts:
            print(
                f"   - [{candidate.account_id}] {candidate.display_name} "
                f"({candidate.confidence:.0%})"
            )
        print("   Re-run with --account ID")
        return 1

    print()
    print("📊 Import Results")
    print("=" * 40)
    print(f"  Batch:       {result.batch_id}")
    print(f"  Inserted:    {result.inserted}")
    print(f"  Duplicates:  {result.duplicates}")
    print(f"  Errors:      {result.errors}")
    print()
    return 0


def cmd_candidates(config: Config, as_json: bool) -> int:
    """Print ranked candidates for every unreconciled movement."""
    store = StateStore(config.state_db_path)
    service = ReconciliationService(store, config)
    results = service.find_reconciliation_candidates()

    if as_json:
        print(json.dumps([r.to_dict() for r in results], indent=2))
        return 0

    if not results:
        print("No reconciliation candidates")
        return 0

    for entry in results:
        print(f"Movement {entry.movement_id}:")
        for candidate in entry.candidates:
            print(
                f"  {candidate.confidence:.0%}  {candidate.obligation_kind.value:<8} "
                f"{candidate.obligation_id:<6} {candidate.reason}"
            )
    return 0


def cmd_auto_reconcile(config: Config, dry_run: bool) -> int:
    """Run auto-reconciliation."""
    store = StateStore(config.state_db_path)
    service = ReconciliationService(store, config)

    print("🔄 Starting auto-reconciliation...")
    if dry_run:
        print("  ℹ️  DRY RUN mode - no changes will be made")
    print(f"  Auto-link threshold: {config.reconciliation.auto_match_threshold:.0%}")

    result = service.run_auto_reconciliation(dry_run=dry_run)

    print()
    print("📊 Reconciliation Results")
    print("=" * 40)
    print(f"  Linked:      {result.reconciled_count}")
    print(f"  Ambiguous:   {len(result.ambiguous)}")
    print(f"  Failed:      {len(result.failed)}")
    print(f"  Duration:    {result.duration_ms}ms")
    for detail in result.details:
        print(
            f"  - movement {detail.movement_id} -> {detail.obligation_kind.value} "
            f"{detail.obligation_id} ({detail.confidence:.0%}, {detail.reason})"
        )
    print()

    if result.failed:
        print("⚠️  Errors encountered:")
        for error in result.failed:
            print(f"   - {error}")
    return 0


def cmd_reconcile(config: Config, kind: ObligationKind, obligation_id: int, movement_id: int) -> int:
    """Manually link an obligation to a movement."""
    store = StateStore(config.state_db_path)
    outcome = ReconciliationService(store, config).reconcile(kind, obligation_id, movement_id)
    print(f"✓ {kind.value} {obligation_id} reconciled with movement {movement_id}")
    if not outcome.movement_linked:
        print(f"⚠️  Movement {movement_id} does not exist; only the obligation was updated")
    return 0


def cmd_settle(
    config: Config,
    kind: ObligationKind,
    obligation_id: int,
    method: PaymentMethod,
    settled_date: str,
    notes: str | None,
) -> int:
    """Settle an obligation out of band."""
    store = StateStore(config.state_db_path)
    ReconciliationService(store, config).settle_without_movement(
        kind, obligation_id, method, settled_date, notes
    )
    print(f"✓ {kind.value} {obligation_id} settled ({method.value}, {settled_date})")
    return 0


def cmd_status(config: Config) -> int:
    """Show ledger status."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Ledger Status")
    print("=" * 40)
    print("  Movements:")
    for state, count in sorted(stats["movements"].items()):
        print(f"    {state:<22} {count}")
    print("  Obligations:")
    for kind, per_state in stats["obligations"].items():
        summary = ", ".join(f"{state}={count}" for state, count in sorted(per_state.items()))
        print(f"    {kind:<22} {summary or '-'}")
    print(f"  Import batches:         {stats['import_batches']}")
    print()

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except ConfigValidationError as e:
        print(f"❌ Invalid config: {e}")
        return 1

    # Route to command
    try:
        if parsed.command == "add-account":
            return cmd_add_account(config, parsed.name, parsed.iban)
        elif parsed.command == "add-obligation":
            return cmd_add_obligation(
                config, parsed.kind, parsed.counterparty, parsed.amount, parsed.date, parsed.notes
            )
        elif parsed.command == "import":
            return cmd_import(config, parsed.file, parsed.account, parsed.actor)
        elif parsed.command == "candidates":
            return cmd_candidates(config, parsed.json)
        elif parsed.command == "auto-reconcile":
            return cmd_auto_reconcile(config, parsed.dry_run)
        elif parsed.command == "reconcile":
            return cmd_reconcile(config, parsed.kind, parsed.obligation_id, parsed.movement_id)
        elif parsed.command == "settle":
            return cmd_settle(
                config, parsed.kind, parsed.obligation_id, parsed.method, parsed.date, parsed.notes
            )
        elif parsed.command == "status":
            return cmd_status(config)
    except BankReconError as e:
        print(f"❌ {e}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
