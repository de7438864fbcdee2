from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from .config import load_settings
from .logging_config import configure_logging
from .schemas import PendingPayoutResponse
from .services.draws import DrawService
from .services.ledger import build_ledger
from .services.operations import LedgerOperations
from .services.payouts import HttpPayoutService, PayoutReconciler, RetryStatus
from .types import LedgerUnavailableError


def _print(payload: dict) -> None:
    print(json.dumps(payload, indent=2))


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.env_file)
    configure_logging(args.verbose)
    logger = logging.getLogger("luckyhaus.admin")

    ledger = await build_ledger(settings, logger=logger)
    if ledger.uses_fallback:
        logger.warning("No durable ledger store is reachable; nothing to administer.")
        return 2

    payout_service = HttpPayoutService(settings.payout)

    if args.command == "pending":
        reconciler = PayoutReconciler(ledger, payout_service, settings.lottery.write_attempts)
        pending = await reconciler.list_pending()
        _print(
            {
                "pendingWinners": [PendingPayoutResponse.from_winner(w).to_payload() for w in pending],
                "count": len(pending),
            }
        )
        return 0

    if args.command == "retry":
        reconciler = PayoutReconciler(ledger, payout_service, settings.lottery.write_attempts)
        result = await reconciler.retry(args.round_id, args.wallet)
        _print(result.to_payload())
        return 0 if result.status is RetryStatus.SETTLED else 1

    if args.command == "end-round":
        operations = LedgerOperations(ledger, settings.lottery)
        outcome = await DrawService(operations, payout_service).end_round(args.round_id)
        _print(outcome.to_payload())
        return 0 if outcome.persisted else 1

    raise ValueError(f"Unknown command: {args.command}")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="LuckyHaus ledger administration")
    parser.add_argument("--env-file", type=str, default=None, help="Path to .env file with credentials")
    parser.add_argument(
        "--verbose", action="store_true", help="Enable debug logging (default INFO)."
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("pending", help="List winners whose payout is not confirmed.")

    retry = commands.add_parser("retry", help="Retry the payout for one round and wallet.")
    retry.add_argument("round_id")
    retry.add_argument("wallet")

    end_round = commands.add_parser("end-round", help="Draw a winner and open the next round.")
    end_round.add_argument("round_id")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    try:
        sys.exit(asyncio.run(run(args)))
    except (LookupError, LedgerUnavailableError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("Stopped by user.")


if __name__ == "__main__":
    main()
