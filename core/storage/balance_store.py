"""
BalanceStore - SQLite persistence of the balance engine

Tables: balances, transactions, historical_balances, exchange_rates,
reconciliation_queue (see adapters.db.sqlite_adapter.init_schema).

Balance, ledger and history writes do not commit on their own; the engine
groups them with `unit_of_work()`. Rate cache and reconciliation writes
commit immediately.

The ledger is append-only except for pending entries, which are finalized
exactly once (completed or failed).
"""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, AsyncIterator

import aiosqlite

from adapters.db.sqlite_adapter import SQLiteAdapter
from core.balance.errors import ConcurrencyConflict, DuplicateReferenceError
from core.balance.models import (
    Balance,
    HistoricalBalancePoint,
    RateSnapshot,
    ReconciliationRecord,
    Transaction,
    TransactionFilter,
)
from core.types import (
    Currency,
    RateSnapshotSource,
    ReconciliationOperation,
    TransactionStatus,
    TransactionType,
)
from core.utils.money import format_amount
from core.utils.timezone import now_utc, parse_iso, to_iso

logger = logging.getLogger(__name__)


# Columns that hold external references (lookup whitelist)
REFERENCE_FIELDS = ("payment_intent_id", "payout_id", "refund_id")

TRANSACTION_COLUMNS = """
    transaction_id, user_id, type, status,
    amount, currency, target_currency, converted_amount,
    tx_date, description,
    payment_intent_id, payout_id, refund_id, related_transaction_id,
    metadata_json
"""

RECONCILIATION_COLUMNS = """
    id, operation, user_id, currency, amount, reference, error, created_at,
    resolved, transaction_id
"""


def new_transaction_id() -> str:
    """tx-<32 hex>"""
    return f"tx-{uuid.uuid4().hex}"


def _row_to_transaction(row: tuple[Any, ...]) -> Transaction:
    return Transaction(
        id=row[0],
        user_id=row[1],
        type=TransactionType(row[2]),
        status=TransactionStatus(row[3]),
        amount=Decimal(row[4]),
        currency=Currency(row[5]),
        target_currency=Currency(row[6]) if row[6] else None,
        converted_amount=Decimal(row[7]) if row[7] is not None else None,
        date=parse_iso(row[8]),
        description=row[9],
        payment_intent_id=row[10],
        payout_id=row[11],
        refund_id=row[12],
        related_transaction_id=row[13],
        metadata=json.loads(row[14]) if row[14] else {},
    )


def _row_to_point(row: tuple[Any, ...]) -> HistoricalBalancePoint:
    amounts = json.loads(row[1])
    return HistoricalBalancePoint(
        date=date.fromisoformat(row[0]),
        amounts={Currency(code): Decimal(value) for code, value in amounts.items()},
    )


def _row_to_reconciliation(row: tuple[Any, ...]) -> ReconciliationRecord:
    return ReconciliationRecord(
        id=row[0],
        operation=ReconciliationOperation(row[1]),
        user_id=row[2],
        currency=Currency(row[3]),
        amount=Decimal(row[4]),
        reference=row[5],
        error=row[6],
        created_at=parse_iso(row[7]),
        resolved=bool(row[8]),
        transaction_id=row[9],
    )


class BalanceStore:
    """SQLite implementation of IBalanceStore

    Args:
        db: connected SQLiteAdapter (schema initialized)

    Usage:
    ```python
    async with SQLiteAdapter(db_path) as db:
        await init_schema(db)
        store = BalanceStore(db)

        async with store.unit_of_work():
            await store.update_balance(
                "user-1", Currency.USD, Decimal("100.00"),
                expected=Decimal("0.00"), updated_at=now_utc(),
            )
            await store.append_transaction(tx)
    ```
    """

    def __init__(self, db: SQLiteAdapter):
        self.db = db

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[None]:
        """Commit everything written inside, or nothing"""
        async with self.db.transaction():
            yield

    # -------------------------------------------------------------------------
    # Balances
    # -------------------------------------------------------------------------

    async def get_balance(self, user_id: str, currency: Currency) -> Balance | None:
        row = await self.db.fetchone(
            """
            SELECT amount, last_updated FROM balances
            WHERE user_id = ? AND currency = ?
            """,
            (user_id, currency.value),
        )
        if row is None:
            return None
        return Balance(
            user_id=user_id,
            currency=currency,
            amount=Decimal(row[0]),
            last_updated=parse_iso(row[1]),
        )

    async def list_balances(self, user_id: str) -> list[Balance]:
        rows = await self.db.fetchall(
            """
            SELECT currency, amount, last_updated FROM balances
            WHERE user_id = ?
            ORDER BY currency
            """,
            (user_id,),
        )
        return [
            Balance(
                user_id=user_id,
                currency=Currency(row[0]),
                amount=Decimal(row[1]),
                last_updated=parse_iso(row[2]),
            )
            for row in rows
        ]

    async def list_user_ids(self) -> list[str]:
        """Users with at least one balance row (operator scripts)"""
        rows = await self.db.fetchall("SELECT DISTINCT user_id FROM balances ORDER BY user_id")
        return [row[0] for row in rows]

    async def update_balance(
        self,
        user_id: str,
        currency: Currency,
        new_amount: Decimal,
        expected: Decimal,
        updated_at: datetime,
    ) -> Balance:
        """Compare-and-swap on the stored amount

        A missing row matches expected == 0 and is inserted.

        Raises:
            ValueError: negative amount
            ConcurrencyConflict: stored amount differs from `expected`
        """
        if new_amount < 0:
            raise ValueError(f"Balance cannot be negative: {new_amount}")

        cursor = await self.db.execute(
            """
            UPDATE balances SET amount = ?, last_updated = ?
            WHERE user_id = ? AND currency = ? AND amount = ?
            """,
            (
                format_amount(new_amount),
                to_iso(updated_at),
                user_id,
                currency.value,
                format_amount(expected),
            ),
        )

        if cursor.rowcount == 0:
            existing = await self.get_balance(user_id, currency)
            if existing is not None or expected != 0:
                logger.warning(
                    f"Balance CAS failed: {user_id}/{currency.value}",
                    extra={
                        "expected": format_amount(expected),
                        "actual": format_amount(existing.amount) if existing else None,
                    },
                )
                raise ConcurrencyConflict(user_id, currency.value)

            await self.db.execute(
                """
                INSERT INTO balances (user_id, currency, amount, last_updated)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, currency.value, format_amount(new_amount), to_iso(updated_at)),
            )

        return Balance(
            user_id=user_id,
            currency=currency,
            amount=Decimal(format_amount(new_amount)),
            last_updated=updated_at,
        )

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------

    async def append_transaction(self, transaction: Transaction) -> Transaction:
        """Insert a ledger entry; assigns tx-<hex> when id is None

        Raises:
            DuplicateReferenceError: the deposit's payment_intent_id is
                already recorded (ux_transactions_deposit_intent), possibly
                by a request on another connection
        """
        tx_id = transaction.id or new_transaction_id()

        try:
            await self.db.execute(
                f"""
                INSERT INTO transactions ({TRANSACTION_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    tx_id,
                    transaction.user_id,
                    transaction.type.value,
                    transaction.status.value,
                    format_amount(transaction.amount),
                    transaction.currency.value,
                    transaction.target_currency.value if transaction.target_currency else None,
                    (
                        format_amount(transaction.converted_amount)
                        if transaction.converted_amount is not None
                        else None
                    ),
                    to_iso(transaction.date),
                    transaction.description,
                    transaction.payment_intent_id,
                    transaction.payout_id,
                    transaction.refund_id,
                    transaction.related_transaction_id,
                    json.dumps(transaction.metadata) if transaction.metadata else None,
                ),
            )
        except aiosqlite.IntegrityError as e:
            if "transactions.payment_intent_id" not in str(e) or transaction.payment_intent_id is None:
                raise
            existing = await self.find_transaction_by_reference(
                "payment_intent_id", transaction.payment_intent_id, type=TransactionType.DEPOSIT
            )
            raise DuplicateReferenceError(
                "payment_intent_id",
                transaction.payment_intent_id,
                existing.id if existing and existing.id else "",
            ) from e

        logger.debug(f"Appended transaction: {tx_id}")
        return replace(transaction, id=tx_id, metadata=dict(transaction.metadata))

    async def finalize_transaction(self, transaction: Transaction) -> Transaction:
        """Move a pending ledger entry to its final status

        Writes status, date, payout/refund ids and metadata of the entry
        with the same id. Only pending rows are touched.

        Raises:
            ValueError: the status is not final, or no pending entry has this id
        """
        if transaction.id is None or not transaction.status.is_final:
            raise ValueError(f"Cannot finalize {transaction.id} as {transaction.status.value}")

        cursor = await self.db.execute(
            """
            UPDATE transactions
            SET status = ?, tx_date = ?, payout_id = ?, refund_id = ?, metadata_json = ?
            WHERE transaction_id = ? AND user_id = ? AND status = ?
            """,
            (
                transaction.status.value,
                to_iso(transaction.date),
                transaction.payout_id,
                transaction.refund_id,
                json.dumps(transaction.metadata) if transaction.metadata else None,
                transaction.id,
                transaction.user_id,
                TransactionStatus.PENDING.value,
            ),
        )
        if cursor.rowcount == 0:
            raise ValueError(f"No pending transaction {transaction.id} for {transaction.user_id}")

        logger.debug(f"Finalized transaction: {transaction.id} -> {transaction.status.value}")
        return replace(transaction, metadata=dict(transaction.metadata))

    async def get_transaction(self, user_id: str, transaction_id: str) -> Transaction | None:
        row = await self.db.fetchone(
            f"""
            SELECT {TRANSACTION_COLUMNS} FROM transactions
            WHERE user_id = ? AND transaction_id = ?
            """,
            (user_id, transaction_id),
        )
        return _row_to_transaction(row) if row else None

    async def find_transaction_by_reference(
        self,
        field: str,
        reference: str,
        type: TransactionType | None = None,
    ) -> Transaction | None:
        """Oldest transaction carrying an external reference

        Raises:
            ValueError: `field` is not a reference column
        """
        if field not in REFERENCE_FIELDS:
            raise ValueError(f"Unknown reference field: {field}. Valid: {REFERENCE_FIELDS}")

        sql = f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE {field} = ?"
        params: list[Any] = [reference]
        if type is not None:
            sql += " AND type = ?"
            params.append(type.value)
        sql += " ORDER BY seq LIMIT 1"

        row = await self.db.fetchone(sql, tuple(params))
        return _row_to_transaction(row) if row else None

    async def list_transactions(
        self,
        user_id: str,
        filters: TransactionFilter | None = None,
    ) -> list[Transaction]:
        """Ledger entries, newest first"""
        filters = filters or TransactionFilter()

        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]

        if filters.type is not None:
            conditions.append("type = ?")
            params.append(filters.type.value)
        if filters.status is not None:
            conditions.append("status = ?")
            params.append(filters.status.value)
        if filters.currency is not None:
            conditions.append("(currency = ? OR target_currency = ?)")
            params.extend([filters.currency.value, filters.currency.value])
        if filters.since is not None:
            conditions.append("tx_date >= ?")
            params.append(to_iso(filters.since))
        if filters.until is not None:
            conditions.append("tx_date < ?")
            params.append(to_iso(filters.until))
        if filters.related_transaction_id is not None:
            conditions.append("related_transaction_id = ?")
            params.append(filters.related_transaction_id)

        sql = f"""
            SELECT {TRANSACTION_COLUMNS} FROM transactions
            WHERE {" AND ".join(conditions)}
            ORDER BY tx_date DESC, seq DESC
        """
        if filters.limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([filters.limit, filters.offset])
        elif filters.offset:
            sql += " LIMIT -1 OFFSET ?"
            params.append(filters.offset)

        rows = await self.db.fetchall(sql, tuple(params))
        return [_row_to_transaction(row) for row in rows]

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    async def get_historical_points(
        self,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[HistoricalBalancePoint]:
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]
        if start is not None:
            conditions.append("point_date >= ?")
            params.append(start.isoformat())
        if end is not None:
            conditions.append("point_date <= ?")
            params.append(end.isoformat())

        rows = await self.db.fetchall(
            f"""
            SELECT point_date, amounts_json FROM historical_balances
            WHERE {" AND ".join(conditions)}
            ORDER BY point_date
            """,
            tuple(params),
        )
        return [_row_to_point(row) for row in rows]

    async def get_latest_historical_point(
        self,
        user_id: str,
        on_or_before: date | None = None,
    ) -> HistoricalBalancePoint | None:
        if on_or_before is None:
            row = await self.db.fetchone(
                """
                SELECT point_date, amounts_json FROM historical_balances
                WHERE user_id = ?
                ORDER BY point_date DESC LIMIT 1
                """,
                (user_id,),
            )
        else:
            row = await self.db.fetchone(
                """
                SELECT point_date, amounts_json FROM historical_balances
                WHERE user_id = ? AND point_date <= ?
                ORDER BY point_date DESC LIMIT 1
                """,
                (user_id, on_or_before.isoformat()),
            )
        return _row_to_point(row) if row else None

    async def upsert_historical_point(self, user_id: str, point: HistoricalBalancePoint) -> None:
        amounts = {c.value: format_amount(a) for c, a in point.amounts.items()}
        await self.db.execute(
            """
            INSERT INTO historical_balances (user_id, point_date, amounts_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, point_date) DO UPDATE SET
                amounts_json = excluded.amounts_json,
                updated_at = excluded.updated_at
            """,
            (user_id, point.date.isoformat(), json.dumps(amounts), to_iso(now_utc())),
        )

    # -------------------------------------------------------------------------
    # Rate cache
    # -------------------------------------------------------------------------

    async def get_cached_rates(self, base: str) -> RateSnapshot | None:
        row = await self.db.fetchone(
            "SELECT rates_json, updated_at FROM exchange_rates WHERE base = ?",
            (base,),
        )
        if row is None:
            return None
        rates = json.loads(row[0])
        return RateSnapshot(
            base=base,
            rates={code: Decimal(value) for code, value in rates.items()},
            updated_at=parse_iso(row[1]),
            source=RateSnapshotSource.CACHE,
        )

    async def upsert_cached_rates(self, snapshot: RateSnapshot) -> None:
        rates = {code: str(rate) for code, rate in snapshot.rates.items()}
        async with self.db.transaction():
            await self.db.execute(
                """
                INSERT INTO exchange_rates (base, rates_json, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(base) DO UPDATE SET
                    rates_json = excluded.rates_json,
                    updated_at = excluded.updated_at
                """,
                (snapshot.base, json.dumps(rates), to_iso(snapshot.updated_at)),
            )

    # -------------------------------------------------------------------------
    # Reconciliation queue
    # -------------------------------------------------------------------------

    async def queue_reconciliation(self, record: ReconciliationRecord) -> ReconciliationRecord:
        async with self.db.transaction():
            cursor = await self.db.execute(
                """
                INSERT INTO reconciliation_queue (
                    operation, user_id, currency, amount, reference, transaction_id,
                    error, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.operation.value,
                    record.user_id,
                    record.currency.value,
                    format_amount(record.amount),
                    record.reference,
                    record.transaction_id,
                    record.error,
                    to_iso(record.created_at),
                ),
            )
            record_id = cursor.lastrowid

        logger.info(
            f"Queued for reconciliation: {record.operation.value} {record.reference}",
            extra={"reconciliation_id": record_id, "user_id": record.user_id},
        )
        return replace(record, id=record_id, resolved=False)

    async def list_reconciliation(
        self,
        resolved: bool | None = False,
        user_id: str | None = None,
    ) -> list[ReconciliationRecord]:
        """Queued records, oldest first (resolved=None lists all)"""
        conditions = []
        params: list[Any] = []
        if resolved is not None:
            conditions.append("resolved = ?")
            params.append(1 if resolved else 0)
        if user_id is not None:
            conditions.append("user_id = ?")
            params.append(user_id)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = await self.db.fetchall(
            f"""
            SELECT {RECONCILIATION_COLUMNS}
            FROM reconciliation_queue
            {where}
            ORDER BY created_at, id
            """,
            tuple(params),
        )
        return [_row_to_reconciliation(row) for row in rows]

    async def get_reconciliation(self, record_id: int) -> ReconciliationRecord | None:
        row = await self.db.fetchone(
            f"SELECT {RECONCILIATION_COLUMNS} FROM reconciliation_queue WHERE id = ?",
            (record_id,),
        )
        return _row_to_reconciliation(row) if row else None

    async def resolve_reconciliation(self, record_id: int) -> bool:
        """Mark a record resolved; False if unknown or already resolved"""
        async with self.db.transaction():
            cursor = await self.db.execute(
                """
                UPDATE reconciliation_queue SET resolved = 1, resolved_at = ?
                WHERE id = ? AND resolved = 0
                """,
                (to_iso(now_utc()), record_id),
            )
            updated = cursor.rowcount > 0

        if updated:
            logger.info(f"Reconciliation resolved: {record_id}")
        return updated
