"""
ledger-kernel command line.

Usage:
    ledger-kernel [--config FILE] init-db
    ledger-kernel [--config FILE] seed-chart --business-id UUID --actor-id UUID
    ledger-kernel [--config FILE] trial-balance --business-id UUID [--as-of YYYY-MM-DD]
    ledger-kernel [--config FILE] reconcile-inventory --business-id UUID
                                  [--apply --actor-id UUID]

The database URL comes from the config file or LEDGER_DATABASE_URL.
"""

from __future__ import annotations

import argparse
import sys
from datetime import date
from uuid import UUID

import yaml

from ledger_kernel.config import load_config
from ledger_kernel.db.engine import create_tables, init_engine_from_config, session_scope
from ledger_kernel.exceptions import LedgerKernelError
from ledger_kernel.logging_config import configure_logging, get_logger
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.account_directory import AccountDirectory
from ledger_kernel.services.inventory_ledger import InventoryLedger

logger = get_logger("cli")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ledger-kernel",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="YAML file layered over the packaged defaults")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables")

    seed = sub.add_parser("seed-chart", help="Create the default chart of accounts")
    seed.add_argument("--business-id", type=UUID, required=True)
    seed.add_argument("--actor-id", type=UUID, required=True)

    tb = sub.add_parser("trial-balance", help="Print the trial balance")
    tb.add_argument("--business-id", type=UUID, required=True)
    tb.add_argument("--as-of", type=date.fromisoformat, default=None)

    rec = sub.add_parser("reconcile-inventory", help="Compare stock counters with the movement log")
    rec.add_argument("--business-id", type=UUID, required=True)
    rec.add_argument("--apply", action="store_true", help="Rewrite drifting counters")
    rec.add_argument("--actor-id", type=UUID, default=None)

    args = parser.parse_args(argv)
    if args.command == "reconcile-inventory" and args.apply and args.actor_id is None:
        parser.error("--apply requires --actor-id")
    return args


def _seed_chart(args, config) -> int:
    with session_scope() as session:
        created = AccountDirectory(session, config=config).seed_default_chart(
            args.business_id, args.actor_id
        )
        print(f"Created {len(created)} accounts.")
    return 0


def _trial_balance(args, config) -> int:
    with session_scope() as session:
        selector = LedgerSelector(session, config.money_decimal_places)
        rows = selector.trial_balance(args.business_id, args.as_of)
        total_debits = sum((r.debit_total for r in rows), 0)
        total_credits = sum((r.credit_total for r in rows), 0)
        print(f"{'Code':<8} {'Account':<32} {'Debit':>16} {'Credit':>16}")
        for row in rows:
            print(
                f"{row.account_code:<8} {row.account_name[:32]:<32} "
                f"{row.debit_total:>16,.2f} {row.credit_total:>16,.2f}"
            )
        print(f"{'':<8} {'TOTAL':<32} {total_debits:>16,.2f} {total_credits:>16,.2f}")
    return 0 if total_debits == total_credits else 1


def _reconcile_inventory(args, config) -> int:
    with session_scope() as session:
        report = InventoryLedger(session, config=config).reconcile(
            args.business_id, args.actor_id, apply=args.apply
        )
        drifting = [r for r in report if not r.is_consistent]
        for row in drifting:
            print(
                f"product={row.product_id} location={row.location_id} "
                f"snapshot={row.snapshot_on_hand} log={row.log_on_hand} drift={row.drift}"
            )
        print(f"{len(report)} rows checked, {len(drifting)} drifting"
              + (" (repaired)" if args.apply and drifting else ""))
    return 0 if not drifting or args.apply else 1


_COMMANDS = {
    "seed-chart": _seed_chart,
    "trial-balance": _trial_balance,
    "reconcile-inventory": _reconcile_inventory,
}


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        config = load_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 2
    configure_logging(level=config.log_level)
    init_engine_from_config(config)

    try:
        if args.command == "init-db":
            create_tables()
            print("Tables created.")
            return 0
        return _COMMANDS[args.command](args, config)
    except LedgerKernelError as e:
        logger.error("cli_command_failed", extra={"command": args.command, "code": e.code})
        print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
