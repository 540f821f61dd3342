"""
Balance DB initialization

Creates the balances / transactions / historical_balances / exchange_rates /
reconciliation_queue tables for a run mode (idempotent).

Usage:
    python -m scripts.init_db --mode sandbox
    python -m scripts.init_db --mode production
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# add the project root to the Python path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from adapters.db.sqlite_adapter import SQLiteAdapter, get_db_path, init_schema
from core.logging import setup_logging
from core.types import RunMode

logger = logging.getLogger(__name__)

TABLES = (
    "balances",
    "transactions",
    "historical_balances",
    "exchange_rates",
    "reconciliation_queue",
)


async def main(mode: str, db_path: Path | None = None) -> int:
    """Initialize the schema and report the tables

    Returns:
        process exit code
    """
    path = db_path or get_db_path(RunMode(mode))
    logger.info(f"Initializing balance DB: {path}")

    async with SQLiteAdapter(path) as db:
        await init_schema(db)

        missing = [name for name in TABLES if not await db.table_exists(name)]
        if not await db.index_exists("ux_transactions_deposit_intent"):
            missing.append("ux_transactions_deposit_intent")
        if missing:
            logger.error(f"Schema objects missing after init: {missing}")
            return 1

        for name in TABLES:
            row = await db.fetchone(f"SELECT COUNT(*) FROM {name}")
            logger.info(f"  {name:22} {row[0]:>8} rows")

    logger.info("Balance DB ready")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Balance DB initialization")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in RunMode],
        default=RunMode.SANDBOX.value,
        help="run mode (selects the DB file)",
    )
    parser.add_argument("--db", type=Path, default=None, help="explicit DB path")
    args = parser.parse_args()

    setup_logging("scripts")
    sys.exit(asyncio.run(main(args.mode, args.db)))
