"""
SQLite adapter

Manages the SQLite connection in WAL mode so the web process and the
operator scripts can use the database at the same time.

Note: do not use SQLite reserved words (time, count, date) as aliases.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

from core.constants import Paths
from core.types import RunMode

logger = logging.getLogger(__name__)


def get_db_path(mode: RunMode | str) -> Path:
    """DB path for a run mode

    Args:
        mode: run mode (PRODUCTION/SANDBOX)

    Returns:
        DB file path
    """
    if isinstance(mode, str):
        mode = RunMode(mode.lower())

    if mode == RunMode.PRODUCTION:
        return Paths.PROD_DB
    return Paths.SANDBOX_DB


async def create_connection(
    db_path: Path | str,
    readonly: bool = False,
) -> aiosqlite.Connection:
    """Open a SQLite connection (WAL mode)

    Args:
        db_path: DB file path
        readonly: open read-only

    Returns:
        aiosqlite connection
    """
    db_path_str = str(db_path)

    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    if readonly:
        conn = await aiosqlite.connect(f"file:{db_path_str}?mode=ro", uri=True)
    else:
        conn = await aiosqlite.connect(db_path_str)

    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA busy_timeout=30000")  # 30s
    await conn.execute("PRAGMA foreign_keys=ON")

    logger.info(
        "SQLite connection opened",
        extra={"db_path": db_path_str, "readonly": readonly},
    )

    return conn


class SQLiteAdapter:
    """SQLite adapter

    One connection in WAL mode plus a transaction context manager.
    Transactions on the connection are serialized with an asyncio.Lock, so
    two coroutines can never interleave statements of different units of
    work.

    Args:
        db_path: DB file path
        readonly: read-only connection (reporting scripts)

    Usage:
    ```python
    adapter = SQLiteAdapter(db_path)
    await adapter.connect()

    async with adapter.transaction() as conn:
        await conn.execute("INSERT INTO ...")

    await adapter.close()
    ```
    """

    def __init__(self, db_path: Path | str, readonly: bool = False):
        self.db_path = Path(db_path)
        self.readonly = readonly
        self._conn: aiosqlite.Connection | None = None
        self._tx_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def in_transaction(self) -> bool:
        """A unit of work currently holds the connection"""
        return self._tx_lock.locked()

    async def connect(self) -> None:
        if self._conn is not None:
            return

        self._conn = await create_connection(self.db_path, self.readonly)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("SQLite connection closed")

    async def execute(
        self,
        sql: str,
        parameters: tuple[Any, ...] | None = None,
    ) -> aiosqlite.Cursor:
        if self._conn is None:
            raise RuntimeError("Not connected to database")

        if parameters:
            return await self._conn.execute(sql, parameters)
        return await self._conn.execute(sql)

    async def fetchone(
        self,
        sql: str,
        parameters: tuple[Any, ...] | None = None,
    ) -> tuple[Any, ...] | None:
        cursor = await self.execute(sql, parameters)
        return await cursor.fetchone()

    async def fetchall(
        self,
        sql: str,
        parameters: tuple[Any, ...] | None = None,
    ) -> list[tuple[Any, ...]]:
        cursor = await self.execute(sql, parameters)
        return list(await cursor.fetchall())

    async def commit(self) -> None:
        if self._conn is not None:
            await self._conn.commit()

    async def rollback(self) -> None:
        if self._conn is not None:
            await self._conn.rollback()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Transaction context manager

        Commits on success, rolls back on any exception (cancellation
        included). Not reentrant.

        Usage:
        ```python
        async with adapter.transaction() as conn:
            await conn.execute("INSERT INTO ...")
        ```
        """
        if self._conn is None:
            raise RuntimeError("Not connected to database")

        async with self._tx_lock:
            try:
                yield self._conn
                await self._conn.commit()
            except BaseException:
                await self._conn.rollback()
                raise

    async def table_exists(self, table_name: str) -> bool:
        result = await self.fetchone(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
            (table_name,),
        )
        return result is not None

    async def index_exists(self, index_name: str) -> bool:
        result = await self.fetchone(
            "SELECT name FROM sqlite_master WHERE type='index' AND name=?",
            (index_name,),
        )
        return result is not None

    # -------------------------------------------------------------------------
    # Context manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> "SQLiteAdapter":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


async def init_schema(adapter: SQLiteAdapter) -> None:
    """Create tables and indexes (idempotent)

    Amounts are stored as TEXT ("100.00") and compared as text by the
    balance compare-and-swap, so always write them via format_amount.

    Args:
        adapter: connected SQLiteAdapter
    """
    # balances: one row per (user, currency)
    await adapter.execute("""
        CREATE TABLE IF NOT EXISTS balances (
            user_id       TEXT NOT NULL,
            currency      TEXT NOT NULL,
            amount        TEXT NOT NULL DEFAULT '0.00',
            last_updated  TEXT NOT NULL,

            PRIMARY KEY (user_id, currency)
        )
    """)

    # transactions: append-only ledger
    await adapter.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            seq                     INTEGER PRIMARY KEY AUTOINCREMENT,
            transaction_id          TEXT NOT NULL UNIQUE,
            user_id                 TEXT NOT NULL,
            type                    TEXT NOT NULL,
            status                  TEXT NOT NULL,

            amount                  TEXT NOT NULL,
            currency                TEXT NOT NULL,
            target_currency         TEXT,
            converted_amount        TEXT,

            tx_date                 TEXT NOT NULL,
            description             TEXT,

            payment_intent_id       TEXT,
            payout_id               TEXT,
            refund_id               TEXT,
            related_transaction_id  TEXT,

            metadata_json           TEXT,
            created_at              TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    # historical_balances: one snapshot per (user, day)
    await adapter.execute("""
        CREATE TABLE IF NOT EXISTS historical_balances (
            user_id       TEXT NOT NULL,
            point_date    TEXT NOT NULL,
            amounts_json  TEXT NOT NULL,
            updated_at    TEXT NOT NULL DEFAULT (datetime('now')),

            PRIMARY KEY (user_id, point_date)
        )
    """)

    # exchange_rates: raw snapshot per base currency
    await adapter.execute("""
        CREATE TABLE IF NOT EXISTS exchange_rates (
            base          TEXT PRIMARY KEY,
            rates_json    TEXT NOT NULL,
            updated_at    TEXT NOT NULL
        )
    """)

    # reconciliation_queue: external effects without local bookkeeping
    await adapter.execute("""
        CREATE TABLE IF NOT EXISTS reconciliation_queue (
            id            INTEGER PRIMARY KEY AUTOINCREMENT,
            operation     TEXT NOT NULL,
            user_id       TEXT NOT NULL,
            currency      TEXT NOT NULL,
            amount        TEXT NOT NULL,
            reference     TEXT NOT NULL,
            transaction_id TEXT,
            error         TEXT NOT NULL,
            created_at    TEXT NOT NULL,
            resolved      INTEGER NOT NULL DEFAULT 0,
            resolved_at   TEXT
        )
    """)

    await adapter.execute("""
        CREATE INDEX IF NOT EXISTS ix_transactions_user
        ON transactions(user_id, tx_date DESC)
    """)

    await adapter.execute("""
        CREATE INDEX IF NOT EXISTS ix_transactions_related
        ON transactions(related_transaction_id)
    """)

    # a payment token is consumed by at most one deposit
    await adapter.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS ux_transactions_deposit_intent
        ON transactions(payment_intent_id)
        WHERE type = 'deposit' AND payment_intent_id IS NOT NULL
    """)

    await adapter.execute("""
        CREATE INDEX IF NOT EXISTS ix_reconciliation_resolved
        ON reconciliation_queue(resolved, created_at)
    """)

    await adapter.commit()

    logger.info("Schema initialized")
