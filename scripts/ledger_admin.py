"""Operator tooling for the credit ledger.

Usage:
    python scripts/ledger_admin.py grant <user_id> <amount> [--reason TEXT] [--purchase]
    python scripts/ledger_admin.py refund <user_id> <transaction_id> [--reason TEXT]
    python scripts/ledger_admin.py audit <user_id>

Every command goes through LedgerService, so the log stays consistent with
the cached balance.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from coverview.core.database import close_db, get_session_factory
from coverview.core.exceptions import CoverViewError
from coverview.models.transaction import TransactionType
from coverview.services.ledger import LedgerService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger("ledger_admin")


async def grant(ledger: LedgerService, args: argparse.Namespace) -> int:
    transaction_type = TransactionType.PURCHASE if args.purchase else TransactionType.GRANT
    result = await ledger.credit(
        args.user_id,
        args.amount,
        args.reason,
        transaction_type=transaction_type,
        metadata={"source": "ledger_admin"},
    )
    print(f"Granted {args.amount} credits to {args.user_id} (transaction {result.transaction_id})")
    print(f"Balance: {result.balance_after}")
    return 0


async def refund(ledger: LedgerService, args: argparse.Namespace) -> int:
    result = await ledger.refund(args.user_id, args.transaction_id, reason=args.reason)
    if result.replayed:
        print(f"Debit {args.transaction_id} was already refunded (transaction {result.transaction_id})")
    else:
        print(f"Refunded debit {args.transaction_id} (transaction {result.transaction_id})")
    print(f"Balance: {result.balance_after}")
    return 0


async def audit(ledger: LedgerService, args: argparse.Namespace) -> int:
    report = await ledger.audit_account(args.user_id)
    print(f"User:          {report.user_id}")
    print(f"Transactions:  {report.transaction_count}")
    print(f"Cached credits: {report.credits}")
    print(f"Replayed sum:  {report.replayed_balance}")
    if report.consistent:
        print("OK: ledger is consistent")
        return 0

    if report.mismatched_transaction_ids:
        print(f"Mismatched balance_after on: {report.mismatched_transaction_ids}")
    print("FAILED: ledger is inconsistent")
    return 1


COMMANDS = {
    "grant": grant,
    "refund": refund,
    "audit": audit,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Credit ledger administration")
    subparsers = parser.add_subparsers(dest="command", required=True)

    grant_parser = subparsers.add_parser("grant", help="Add credits to an account")
    grant_parser.add_argument("user_id")
    grant_parser.add_argument("amount", type=int)
    grant_parser.add_argument("--reason", default="Operator grant")
    grant_parser.add_argument(
        "--purchase", action="store_true", help="Record as a paid top-up instead of a grant"
    )

    refund_parser = subparsers.add_parser("refund", help="Refund a debit transaction")
    refund_parser.add_argument("user_id")
    refund_parser.add_argument("transaction_id", type=int)
    refund_parser.add_argument("--reason", default="operator refund")

    audit_parser = subparsers.add_parser("audit", help="Replay an account's transaction log")
    audit_parser.add_argument("user_id")

    return parser


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    session_factory = get_session_factory()

    try:
        async with session_factory() as session:
            ledger = LedgerService(session)
            return await COMMANDS[args.command](ledger, args)
    except ValueError as e:
        logger.error(str(e))
        return 2
    except CoverViewError as e:
        logger.error(f"{e.error_code}: {e}")
        return 1
    finally:
        await close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
