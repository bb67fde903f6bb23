from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import date
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from . import billing
from .config import load_config
from .logging_config import configure_logging
from .snapshot import SnapshotCache, load_snapshot
from .statistics import StatisticsAggregator
from .util.dates import parse_date


logger = logging.getLogger("subscription_spend")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="subscription-spend")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )
    p.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml, optional)")

    sub = p.add_subparsers(dest="cmd", required=True)

    stats = sub.add_parser("stats", help="Monthly/quarterly/yearly spend for a snapshot of subscriptions + payments")
    stats.add_argument("--snapshot", required=True, help="JSON/YAML file with subscriptions, payments and rates")
    stats.add_argument("--currency", default="", help="Target currency (default: reporting.target_currency)")
    stats.add_argument("--as-of", default="", help="Treat this date (YYYY-MM-DD) as today")

    nxt = sub.add_parser("next-billing", help="Next billing date after --as-of for a subscription anchored at --start")
    nxt.add_argument("--start", required=True, help="Subscription start date (YYYY-MM-DD)")
    nxt.add_argument("--cycle", required=True, help="Billing cycle (monthly, quarterly, yearly, semiAnnually, weekly, daily)")
    nxt.add_argument("--as-of", default="", help="Reference date (default: today)")

    check = sub.add_parser("check-period", help="Check a payment's billing period length against a billing cycle")
    check.add_argument("--start", required=True, help="Billing period start (YYYY-MM-DD)")
    check.add_argument("--end", required=True, help="Billing period end, inclusive (YYYY-MM-DD)")
    check.add_argument("--cycle", required=True, help="Billing cycle")

    renewals = sub.add_parser("renewals", help="List auto-renew subscriptions due for renewal in a snapshot")
    renewals.add_argument("--snapshot", required=True, help="JSON/YAML file with subscriptions")
    renewals.add_argument("--as-of", default="", help="Treat this date (YYYY-MM-DD) as today")
    return p


def _as_of(raw: str) -> date:
    return parse_date(raw) if raw else date.today()


def _emit(payload: object) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))
    cfg = load_config(args.config)
    configure_logging(level=cfg.logging.level, file_path=cfg.logging.file_path or None)
    snapshots = SnapshotCache.from_config(load_snapshot, cfg.cache)

    if args.cmd == "stats":
        snap = snapshots.get(args.snapshot)
        as_of = parse_date(args.as_of) if args.as_of else snap.as_of
        aggregator = StatisticsAggregator(reporting=cfg.reporting, grouping=cfg.grouping)
        result = aggregator.compute(
            list(snap.subscriptions),
            list(snap.payments),
            snap.rates,
            args.currency or None,
            today=as_of,
        )
        if result.audit.unconverted:
            logger.warning(
                "%d subscription(s) summed unconverted (missing rates: %s)",
                result.audit.unconverted,
                ", ".join(result.audit.missing_pairs),
            )
        if result.audit.skipped_subscriptions:
            logger.warning("%d subscription record(s) skipped as malformed", len(result.audit.skipped_subscriptions))
        _emit(result.model_dump(mode="json", by_alias=True))
        return 0

    if args.cmd == "next-billing":
        as_of = _as_of(args.as_of)
        nxt = billing.next_billing_from_start(args.start, as_of, args.cycle)
        _emit({"start": args.start, "cycle": billing.coerce_cycle(args.cycle).value, "asOf": as_of, "nextBillingDate": nxt})
        return 0

    if args.cmd == "check-period":
        ok = billing.validate_period_length(args.start, args.end, args.cycle)
        expected = billing.expected_period_days(args.cycle)
        _emit(
            {
                "start": args.start,
                "end": args.end,
                "days": billing.period_length_days(args.start, args.end),
                "expected": {"min": expected.min, "max": expected.max},
                "valid": ok,
            }
        )
        return 0 if ok else 1

    if args.cmd == "renewals":
        snap = snapshots.get(args.snapshot)
        as_of = parse_date(args.as_of) if args.as_of else (snap.as_of or date.today())
        due = billing.renewals_due(snap.typed_subscriptions(), as_of)
        _emit(
            [
                {"id": sub.id, "name": sub.name, **update.model_dump(mode="json", by_alias=True)}
                for sub, update in due
            ]
        )
        return 0

    raise SystemExit(f"Unknown command: {args.cmd}")


if __name__ == "__main__":
    raise SystemExit(main())
