"""
SQLite adapter tests

SQLiteAdapter, connection helpers and the balance schema.
"""

import asyncio
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio

from adapters.db.sqlite_adapter import (
    SQLiteAdapter,
    create_connection,
    get_db_path,
    init_schema,
)
from core.constants import Paths
from core.types import RunMode


class TestGetDbPath:
    """get_db_path"""

    def test_production_mode(self) -> None:
        path = get_db_path(RunMode.PRODUCTION)

        assert path == Paths.PROD_DB
        assert isinstance(path, Path)

    def test_sandbox_mode(self) -> None:
        assert get_db_path(RunMode.SANDBOX) == Paths.SANDBOX_DB

    def test_string_mode(self) -> None:
        assert get_db_path("PRODUCTION") == Paths.PROD_DB
        assert get_db_path("sandbox") == Paths.SANDBOX_DB


class TestCreateConnection:
    """create_connection"""

    @pytest.mark.asyncio
    async def test_wal_mode(self, tmp_path: Path) -> None:
        conn = await create_connection(tmp_path / "test.db")

        cursor = await conn.execute("PRAGMA journal_mode")
        row = await cursor.fetchone()
        assert row[0].upper() == "WAL"

        await conn.close()

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path: Path) -> None:
        db_path = tmp_path / "subdir" / "test.db"

        conn = await create_connection(db_path)

        assert db_path.parent.exists()
        await conn.close()


class TestSQLiteAdapter:
    """SQLiteAdapter"""

    @pytest_asyncio.fixture
    async def adapter(self, tmp_path: Path) -> SQLiteAdapter:
        adapter = SQLiteAdapter(tmp_path / "test.db")
        await adapter.connect()
        yield adapter
        await adapter.close()

    @pytest.mark.asyncio
    async def test_connect_and_close(self, tmp_path: Path) -> None:
        adapter = SQLiteAdapter(tmp_path / "test.db")

        assert adapter.is_connected is False
        await adapter.connect()
        assert adapter.is_connected is True
        await adapter.close()
        assert adapter.is_connected is False

    @pytest.mark.asyncio
    async def test_not_connected(self, tmp_path: Path) -> None:
        adapter = SQLiteAdapter(tmp_path / "test.db")

        with pytest.raises(RuntimeError, match="Not connected"):
            await adapter.execute("SELECT 1")

    @pytest.mark.asyncio
    async def test_execute_and_fetch(self, adapter: SQLiteAdapter) -> None:
        await adapter.execute("CREATE TABLE items (value TEXT)")
        for value in ("A", "B", "C"):
            await adapter.execute("INSERT INTO items (value) VALUES (?)", (value,))
        await adapter.commit()

        rows = await adapter.fetchall("SELECT value FROM items ORDER BY value")
        one = await adapter.fetchone("SELECT value FROM items WHERE value = ?", ("B",))

        assert [r[0] for r in rows] == ["A", "B", "C"]
        assert one[0] == "B"

    @pytest.mark.asyncio
    async def test_transaction_commit(self, adapter: SQLiteAdapter) -> None:
        await adapter.execute("CREATE TABLE tx_test (id INTEGER)")
        await adapter.commit()

        async with adapter.transaction() as conn:
            await conn.execute("INSERT INTO tx_test (id) VALUES (1)")
            await conn.execute("INSERT INTO tx_test (id) VALUES (2)")

        rows = await adapter.fetchall("SELECT id FROM tx_test")
        assert len(rows) == 2

    @pytest.mark.asyncio
    async def test_transaction_rollback(self, adapter: SQLiteAdapter) -> None:
        await adapter.execute("CREATE TABLE tx_test2 (id INTEGER)")
        await adapter.commit()

        with pytest.raises(ValueError):
            async with adapter.transaction():
                await adapter.execute("INSERT INTO tx_test2 (id) VALUES (1)")
                raise ValueError("intentional")

        rows = await adapter.fetchall("SELECT id FROM tx_test2")
        assert rows == []
        assert adapter.in_transaction is False

    @pytest.mark.asyncio
    async def test_transactions_serialized(self, adapter: SQLiteAdapter) -> None:
        await adapter.execute("CREATE TABLE counter (n INTEGER)")
        await adapter.execute("INSERT INTO counter (n) VALUES (0)")
        await adapter.commit()

        async def increment() -> None:
            async with adapter.transaction():
                row = await adapter.fetchone("SELECT n FROM counter")
                await asyncio.sleep(0)
                await adapter.execute("UPDATE counter SET n = ?", (row[0] + 1,))

        await asyncio.gather(*(increment() for _ in range(10)))

        row = await adapter.fetchone("SELECT n FROM counter")
        assert row[0] == 10

    @pytest.mark.asyncio
    async def test_table_and_index_exists(self, adapter: SQLiteAdapter) -> None:
        assert await adapter.table_exists("existing") is False

        await adapter.execute("CREATE TABLE existing (id INTEGER)")
        await adapter.execute("CREATE INDEX ix_existing ON existing(id)")
        await adapter.commit()

        assert await adapter.table_exists("existing") is True
        assert await adapter.index_exists("ix_existing") is True

    @pytest.mark.asyncio
    async def test_context_manager(self, tmp_path: Path) -> None:
        async with SQLiteAdapter(tmp_path / "ctx.db") as adapter:
            assert adapter.is_connected is True

        assert adapter.is_connected is False


class TestInitSchema:
    """init_schema"""

    @pytest.mark.asyncio
    async def test_creates_tables(self, tmp_path: Path) -> None:
        async with SQLiteAdapter(tmp_path / "schema.db") as adapter:
            await init_schema(adapter)

            for table in (
                "balances",
                "transactions",
                "historical_balances",
                "exchange_rates",
                "reconciliation_queue",
            ):
                assert await adapter.table_exists(table) is True, table

            assert await adapter.index_exists("ux_transactions_deposit_intent") is True

    @pytest.mark.asyncio
    async def test_idempotent(self, tmp_path: Path) -> None:
        async with SQLiteAdapter(tmp_path / "idempotent.db") as adapter:
            await init_schema(adapter)
            await init_schema(adapter)

            assert await adapter.table_exists("balances") is True

    @pytest.mark.asyncio
    async def test_transactions_columns(self, tmp_path: Path) -> None:
        async with SQLiteAdapter(tmp_path / "columns.db") as adapter:
            await init_schema(adapter)

            columns = {c["name"] for c in await adapter.get_table_info("transactions")}

            assert {
                "transaction_id",
                "type",
                "status",
                "amount",
                "target_currency",
                "converted_amount",
                "payment_intent_id",
                "payout_id",
                "refund_id",
                "related_transaction_id",
            } <= columns

    @pytest.mark.asyncio
    async def test_deposit_intent_unique(self, tmp_path: Path) -> None:
        insert = """
            INSERT INTO transactions (
                transaction_id, user_id, type, status, amount, currency, tx_date, payment_intent_id
            ) VALUES (?, 'user-1', ?, 'completed', '10.00', 'USD', '2026-10-19T00:00:00+00:00', 'pi_1')
        """

        async with SQLiteAdapter(tmp_path / "unique.db") as adapter:
            await init_schema(adapter)
            await adapter.execute(insert, ("tx-1", "deposit"))
            # refunds may carry the same intent
            await adapter.execute(insert, ("tx-2", "refund"))
            await adapter.commit()

            with pytest.raises(aiosqlite.IntegrityError):
                await adapter.execute(insert, ("tx-3", "deposit"))
