"""
Reconciliation queue

Lists deposits, payouts and refunds that reached the payment processor but
were never booked. `--apply` books a record on the ledger (rejected when its
external reference is already booked); `--resolve` only marks it resolved,
for records an operator has settled by other means.

Usage:
    python -m scripts.reconcile --mode production
    python -m scripts.reconcile --mode production --all
    python -m scripts.reconcile --mode production --apply 12
    python -m scripts.reconcile --mode production --resolve 12
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# add the project root to the Python path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from adapters.db.sqlite_adapter import SQLiteAdapter, get_db_path
from core.balance import BalanceError, DuplicateReferenceError, book_reconciliation
from core.logging import setup_logging
from core.storage import BalanceStore
from core.types import RunMode
from core.utils.money import format_amount

logger = logging.getLogger(__name__)


async def list_records(store: BalanceStore, include_resolved: bool = False) -> int:
    records = await store.list_reconciliation(resolved=None if include_resolved else False)
    if not records:
        logger.info("Reconciliation queue is empty")
        return 0

    for record in records:
        state = "resolved" if record.resolved else "OPEN"
        logger.info(
            f"  #{record.id:<5} {state:8} {record.operation.value:10} {record.user_id:16} "
            f"{format_amount(record.amount):>12} {record.currency.value} "
            f"ref={record.reference} tx={record.transaction_id or '-'} ({record.error})"
        )
    logger.info(f"{len(records)} record(s)")
    return 0


async def apply_record(store: BalanceStore, record_id: int) -> int:
    try:
        result = await book_reconciliation(store, record_id)
    except DuplicateReferenceError as e:
        logger.error(
            f"Record #{record_id} is already booked as {e.transaction_id}; "
            f"mark it with --resolve {record_id}"
        )
        return 1
    except BalanceError as e:
        logger.error(f"Record #{record_id} not applied: {e}")
        return 1

    logger.info(
        f"Record #{record_id} booked as {result.transaction.id}, "
        f"{result.balance.currency.value} balance {format_amount(result.balance.amount)}"
    )
    return 0


async def main(
    mode: str,
    resolve_id: int | None = None,
    include_resolved: bool = False,
    db_path: Path | None = None,
    apply_id: int | None = None,
) -> int:
    path = db_path or get_db_path(RunMode(mode))

    async with SQLiteAdapter(path) as db:
        store = BalanceStore(db)

        if apply_id is not None:
            return await apply_record(store, apply_id)

        if resolve_id is None:
            return await list_records(store, include_resolved)

        if await store.resolve_reconciliation(resolve_id):
            logger.info(f"Record #{resolve_id} marked resolved")
            return 0

        logger.error(f"Record #{resolve_id} not found or already resolved")
        return 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Reconciliation queue")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in RunMode],
        default=RunMode.SANDBOX.value,
    )
    action = parser.add_mutually_exclusive_group()
    action.add_argument("--apply", type=int, default=None, help="record id to book on the ledger")
    action.add_argument("--resolve", type=int, default=None, help="record id to mark resolved")
    parser.add_argument("--all", action="store_true", help="include resolved records")
    parser.add_argument("--db", type=Path, default=None, help="explicit DB path")
    args = parser.parse_args()

    setup_logging("scripts")
    sys.exit(asyncio.run(main(args.mode, args.resolve, args.all, args.db, args.apply)))
