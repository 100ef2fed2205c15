#!/usr/bin/env python3
"""Delete ended and cancelled lottery records past their retention window.

Live lotteries (pending, active, expired) are never touched. By default the
script only lists what it would delete; pass ``--execute`` to apply.

    python scripts/purge_lotteries.py --table SoulDrawLotteries --days 30
    python scripts/purge_lotteries.py --table SoulDrawLotteries --execute
"""

from __future__ import annotations

import argparse
import logging
import os
import pathlib
import sys
from collections.abc import Sequence

import boto3

ROOT_DIR = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:  # pragma: no cover - simple environment setup
    sys.path.insert(0, str(ROOT_DIR))

from lottery_bot.errors import PersistenceError
from lottery_bot.models import now_ms
from lottery_bot.storage import LotteryStore

log = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--table",
        default=os.getenv("LOTTERY_TABLE_NAME"),
        help="DynamoDB table name (default: $LOTTERY_TABLE_NAME)",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=30,
        help="Keep terminal lotteries that ended within this many days (default: 30)",
    )
    parser.add_argument("--region", default=os.getenv("AWS_REGION", "us-east-1"))
    parser.add_argument(
        "--profile",
        default=None,
        help="Optional AWS profile name for boto3",
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Apply changes. Without this flag the script performs a dry run.",
    )
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)
    if not args.table:
        parser.error("--table is required when LOTTERY_TABLE_NAME is unset")
    if args.days < 0:
        parser.error("--days must not be negative")
    return args


def purge(store: LotteryStore, *, days: int, dry_run: bool, now: int | None = None) -> list[str]:
    cutoff = (now if now is not None else now_ms()) - days * DAY_MS
    if dry_run:
        candidates = store.list_terminal_before(cutoff)
        for lottery in candidates:
            log.info(
                "Would delete lottery %s (%s, %s)",
                lottery.lottery_id,
                lottery.status,
                lottery.prize,
            )
        log.info(
            "Dry run complete: %s lottery record(s) eligible. Re-run with --execute to apply.",
            len(candidates),
        )
        return [lottery.lottery_id for lottery in candidates]

    deleted = store.delete_terminal_before(cutoff)
    for lottery_id in deleted:
        log.info("Deleted lottery %s", lottery_id)
    log.info("Purge complete: %s lottery record(s) deleted.", len(deleted))
    return deleted


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(message)s")

    session_kwargs = {"profile_name": args.profile} if args.profile else {}
    session = boto3.Session(**session_kwargs)
    table = session.resource("dynamodb", region_name=args.region).Table(args.table)

    try:
        purge(LotteryStore(table), days=args.days, dry_run=not args.execute)
    except PersistenceError as exc:
        log.error("Purge failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
