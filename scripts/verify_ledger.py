"""
Ledger verification

Replays every user's completed transactions and compares the result with
the stored balances. Exits non-zero on any mismatch.

Usage:
    python -m scripts.verify_ledger --mode sandbox
    python -m scripts.verify_ledger --mode production --user user-1 --user user-2
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# add the project root to the Python path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from adapters.db.sqlite_adapter import SQLiteAdapter, get_db_path
from core.balance import check_ledger
from core.logging import setup_logging
from core.storage import BalanceStore
from core.types import RunMode

logger = logging.getLogger(__name__)


async def main(mode: str, user_ids: list[str] | None = None, db_path: Path | None = None) -> int:
    """Verify the ledger of the given users (all users when None)

    Returns:
        0 when every ledger replays to its balances, 1 otherwise
    """
    path = db_path or get_db_path(RunMode(mode))

    async with SQLiteAdapter(path, readonly=True) as db:
        store = BalanceStore(db)
        users = user_ids or await store.list_user_ids()
        logger.info(f"Verifying {len(users)} user ledger(s) in {path}")

        inconsistent = 0
        for user_id in users:
            check = await check_ledger(store, user_id)
            if check.is_consistent:
                logger.info(f"  OK       {user_id}")
                continue

            inconsistent += 1
            for currency, (expected, actual) in sorted(
                check.mismatches.items(), key=lambda item: item[0].value
            ):
                logger.error(
                    f"  MISMATCH {user_id} {currency.value}: ledger={expected} balance={actual}"
                )

    if inconsistent:
        logger.error(f"{inconsistent} of {len(users)} ledger(s) inconsistent")
        return 1

    logger.info("All ledgers consistent")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Ledger verification")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in RunMode],
        default=RunMode.SANDBOX.value,
    )
    parser.add_argument("--user", action="append", dest="users", help="user id (repeatable)")
    parser.add_argument("--db", type=Path, default=None, help="explicit DB path")
    args = parser.parse_args()

    setup_logging("scripts")
    sys.exit(asyncio.run(main(args.mode, args.users, args.db)))
