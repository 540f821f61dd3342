"""
BalanceStore tests against a real SQLite file
"""

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from core.balance.errors import ConcurrencyConflict, DuplicateReferenceError
from core.balance.models import (
    HistoricalBalancePoint,
    RateSnapshot,
    ReconciliationRecord,
    Transaction,
    TransactionFilter,
)
from core.storage import BalanceStore
from core.types import (
    Currency,
    ReconciliationOperation,
    TransactionStatus,
    TransactionType,
)

T0 = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


def make_tx(
    tx_type: TransactionType = TransactionType.DEPOSIT,
    amount: str = "10.00",
    currency: Currency = Currency.USD,
    when: datetime = T0,
    user_id: str = "user-1",
    status: TransactionStatus = TransactionStatus.COMPLETED,
    **kwargs,
) -> Transaction:
    return Transaction(
        user_id=user_id,
        type=tx_type,
        amount=Decimal(amount),
        currency=currency,
        status=status,
        date=when,
        **kwargs,
    )


# =============================================================================
# Balances
# =============================================================================


class TestBalances:
    """Compare-and-swap balance rows"""

    @pytest.mark.asyncio
    async def test_missing_row_inserted_from_zero(self, store: BalanceStore) -> None:
        async with store.unit_of_work():
            balance = await store.update_balance(
                "user-1", Currency.JPY, Decimal("1500"), expected=Decimal("0"), updated_at=T0
            )

        assert balance.amount == Decimal("1500.00")
        stored = await store.get_balance("user-1", Currency.JPY)
        assert stored.amount == Decimal("1500.00")
        assert stored.last_updated == T0

    @pytest.mark.asyncio
    async def test_missing_row_with_nonzero_expected(self, store: BalanceStore) -> None:
        with pytest.raises(ConcurrencyConflict):
            async with store.unit_of_work():
                await store.update_balance(
                    "user-1", Currency.USD, Decimal("5.00"), expected=Decimal("1.00"), updated_at=T0
                )

        assert await store.get_balance("user-1", Currency.USD) is None

    @pytest.mark.asyncio
    async def test_negative_rejected(self, store: BalanceStore) -> None:
        with pytest.raises(ValueError):
            await store.update_balance(
                "user-1", Currency.USD, Decimal("-0.01"), expected=Decimal("0"), updated_at=T0
            )

    @pytest.mark.asyncio
    async def test_list_balances_and_users(self, store: BalanceStore) -> None:
        async with store.unit_of_work():
            await store.update_balance("user-b", Currency.USD, Decimal("1"), expected=Decimal("0"), updated_at=T0)
            await store.update_balance("user-a", Currency.EUR, Decimal("2"), expected=Decimal("0"), updated_at=T0)
            await store.update_balance("user-a", Currency.CNY, Decimal("3"), expected=Decimal("0"), updated_at=T0)

        balances = await store.list_balances("user-a")

        assert [b.currency for b in balances] == [Currency.CNY, Currency.EUR]
        assert await store.list_user_ids() == ["user-a", "user-b"]

    @pytest.mark.asyncio
    async def test_unit_of_work_rolls_back(self, store: BalanceStore) -> None:
        with pytest.raises(RuntimeError):
            async with store.unit_of_work():
                await store.update_balance(
                    "user-1", Currency.USD, Decimal("10"), expected=Decimal("0"), updated_at=T0
                )
                await store.append_transaction(make_tx())
                raise RuntimeError("abort")

        assert await store.get_balance("user-1", Currency.USD) is None
        assert await store.list_transactions("user-1") == []


# =============================================================================
# Ledger
# =============================================================================


class TestTransactions:
    """Append-only ledger"""

    @pytest.mark.asyncio
    async def test_append_assigns_id(self, store: BalanceStore) -> None:
        async with store.unit_of_work():
            recorded = await store.append_transaction(
                make_tx(payment_intent_id="tok_1", metadata={"payment_currency": "USD"})
            )

        assert recorded.id.startswith("tx-")
        fetched = await store.get_transaction("user-1", recorded.id)
        assert fetched == recorded

    @pytest.mark.asyncio
    async def test_get_scoped_to_user(self, store: BalanceStore) -> None:
        async with store.unit_of_work():
            recorded = await store.append_transaction(make_tx())

        assert await store.get_transaction("user-2", recorded.id) is None

    @pytest.mark.asyncio
    async def test_transfer_fields_round_trip(self, store: BalanceStore) -> None:
        async with store.unit_of_work():
            recorded = await store.append_transaction(
                make_tx(
                    TransactionType.TRANSFER,
                    "100.00",
                    target_currency=Currency.CNY,
                    converted_amount=Decimal("1.30"),
                )
            )

        fetched = await store.get_transaction("user-1", recorded.id)
        assert fetched.target_currency == Currency.CNY
        assert fetched.converted_amount == Decimal("1.30")
        assert fetched.metadata == {}

    @pytest.mark.asyncio
    async def test_list_newest_first_with_paging(self, store: BalanceStore) -> None:
        async with store.unit_of_work():
            for i in range(5):
                await store.append_transaction(make_tx(amount=f"{i + 1}.00", when=T0 + timedelta(hours=i)))

        page = await store.list_transactions("user-1", TransactionFilter(limit=2, offset=1))
        rest = await store.list_transactions("user-1", TransactionFilter(offset=3))

        assert [tx.amount for tx in page] == [Decimal("4.00"), Decimal("3.00")]
        assert [tx.amount for tx in rest] == [Decimal("2.00"), Decimal("1.00")]

    @pytest.mark.asyncio
    async def test_list_filters(self, store: BalanceStore) -> None:
        async with store.unit_of_work():
            await store.append_transaction(make_tx(when=T0))
            await store.append_transaction(
                make_tx(TransactionType.WITHDRAWAL, status=TransactionStatus.FAILED, when=T0 + timedelta(days=1))
            )
            await store.append_transaction(make_tx(currency=Currency.EUR, when=T0 + timedelta(days=2)))
            await store.append_transaction(make_tx(user_id="user-2"))

        failed = await store.list_transactions("user-1", TransactionFilter(status=TransactionStatus.FAILED))
        eur = await store.list_transactions("user-1", TransactionFilter(currency=Currency.EUR))
        window = await store.list_transactions(
            "user-1", TransactionFilter(since=T0 + timedelta(hours=1), until=T0 + timedelta(days=2))
        )

        assert [tx.type for tx in failed] == [TransactionType.WITHDRAWAL]
        assert [tx.currency for tx in eur] == [Currency.EUR]
        assert [tx.type for tx in window] == [TransactionType.WITHDRAWAL]

    @pytest.mark.asyncio
    async def test_find_by_reference(self, store: BalanceStore) -> None:
        async with store.unit_of_work():
            deposit = await store.append_transaction(make_tx(payment_intent_id="tok_1"))
            await store.append_transaction(make_tx(TransactionType.REFUND, payment_intent_id="tok_1"))
            await store.append_transaction(make_tx(TransactionType.WITHDRAWAL, payout_id="po_1"))

        found = await store.find_transaction_by_reference(
            "payment_intent_id", "tok_1", type=TransactionType.DEPOSIT
        )
        payout = await store.find_transaction_by_reference("payout_id", "po_1")

        assert found.id == deposit.id
        assert payout.type == TransactionType.WITHDRAWAL
        assert await store.find_transaction_by_reference("refund_id", "re_none") is None

    @pytest.mark.asyncio
    async def test_find_by_reference_rejects_unknown_field(self, store: BalanceStore) -> None:
        with pytest.raises(ValueError, match="Unknown reference field"):
            await store.find_transaction_by_reference("user_id", "user-1")

    @pytest.mark.asyncio
    async def test_deposit_token_unique(self, store: BalanceStore) -> None:
        async with store.unit_of_work():
            first = await store.append_transaction(make_tx(payment_intent_id="tok_1"))

        with pytest.raises(DuplicateReferenceError) as exc:
            async with store.unit_of_work():
                await store.append_transaction(make_tx(payment_intent_id="tok_1", user_id="user-2"))

        assert exc.value.field == "payment_intent_id"
        assert exc.value.transaction_id == first.id
        assert len(await store.list_transactions("user-2")) == 0

    @pytest.mark.asyncio
    async def test_refund_may_repeat_deposit_token(self, store: BalanceStore) -> None:
        async with store.unit_of_work():
            await store.append_transaction(make_tx(payment_intent_id="tok_1"))
            await store.append_transaction(make_tx(TransactionType.REFUND, payment_intent_id="tok_1"))
            await store.append_transaction(make_tx(TransactionType.REFUND, payment_intent_id="tok_1"))

        assert len(await store.list_transactions("user-1")) == 3

    @pytest.mark.asyncio
    async def test_finalize_pending(self, store: BalanceStore) -> None:
        async with store.unit_of_work():
            pending = await store.append_transaction(
                make_tx(TransactionType.WITHDRAWAL, status=TransactionStatus.PENDING)
            )

        done = replace(
            pending,
            status=TransactionStatus.COMPLETED,
            date=T0 + timedelta(minutes=1),
            payout_id="po_1",
            metadata={"note": "paid"},
        )
        async with store.unit_of_work():
            await store.finalize_transaction(done)

        loaded = await store.get_transaction("user-1", pending.id)
        assert loaded.status == TransactionStatus.COMPLETED
        assert loaded.date == T0 + timedelta(minutes=1)
        assert loaded.payout_id == "po_1"
        assert loaded.metadata == {"note": "paid"}

        # completed and failed rows are immutable
        with pytest.raises(ValueError):
            await store.finalize_transaction(replace(done, status=TransactionStatus.FAILED))
        assert (await store.get_transaction("user-1", pending.id)).status == TransactionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_finalize_rejects_pending_status_and_other_user(self, store: BalanceStore) -> None:
        async with store.unit_of_work():
            pending = await store.append_transaction(
                make_tx(TransactionType.REFUND, status=TransactionStatus.PENDING)
            )

        with pytest.raises(ValueError):
            await store.finalize_transaction(pending)
        with pytest.raises(ValueError):
            await store.finalize_transaction(
                replace(pending, user_id="user-2", status=TransactionStatus.COMPLETED)
            )
        with pytest.raises(ValueError):
            await store.finalize_transaction(make_tx(status=TransactionStatus.COMPLETED))

        assert (await store.get_transaction("user-1", pending.id)).status == TransactionStatus.PENDING


# =============================================================================
# History
# =============================================================================


class TestHistoricalPoints:
    """historical_balances upsert and range queries"""

    @pytest.mark.asyncio
    async def test_upsert_replaces_same_day(self, store: BalanceStore) -> None:
        day = date(2026, 10, 19)
        async with store.unit_of_work():
            await store.upsert_historical_point(
                "user-1", HistoricalBalancePoint(date=day, amounts={Currency.USD: Decimal("1.00")})
            )
            await store.upsert_historical_point(
                "user-1", HistoricalBalancePoint(date=day, amounts={Currency.USD: Decimal("2.00")})
            )

        points = await store.get_historical_points("user-1")

        assert len(points) == 1
        assert points[0].amount(Currency.USD) == Decimal("2.00")

    @pytest.mark.asyncio
    async def test_range_and_latest(self, store: BalanceStore) -> None:
        async with store.unit_of_work():
            for offset in (0, 3, 6):
                day = date(2026, 10, 1) + timedelta(days=offset)
                await store.upsert_historical_point(
                    "user-1",
                    HistoricalBalancePoint(date=day, amounts={Currency.EUR: Decimal(offset)}),
                )

        ranged = await store.get_historical_points("user-1", date(2026, 10, 2), date(2026, 10, 7))
        latest = await store.get_latest_historical_point("user-1")
        before = await store.get_latest_historical_point("user-1", date(2026, 10, 5))

        assert [p.date for p in ranged] == [date(2026, 10, 4), date(2026, 10, 7)]
        assert latest.date == date(2026, 10, 7)
        assert before.date == date(2026, 10, 4)
        assert await store.get_latest_historical_point("user-1", date(2026, 9, 30)) is None


# =============================================================================
# Rate cache
# =============================================================================


class TestRateCache:
    """exchange_rates table"""

    @pytest.mark.asyncio
    async def test_round_trip_keeps_precision(self, store: BalanceStore) -> None:
        snapshot = RateSnapshot(
            base="USD",
            rates={"USD": Decimal("1"), "JPY": Decimal("149.8731")},
            updated_at=T0,
        )

        await store.upsert_cached_rates(snapshot)
        cached = await store.get_cached_rates("USD")

        assert cached.rates["JPY"] == Decimal("149.8731")
        assert cached.updated_at == T0
        assert await store.get_cached_rates("EUR") is None

    @pytest.mark.asyncio
    async def test_upsert_overwrites(self, store: BalanceStore) -> None:
        await store.upsert_cached_rates(RateSnapshot("USD", {"EUR": Decimal("0.92")}, T0))
        await store.upsert_cached_rates(RateSnapshot("USD", {"EUR": Decimal("0.90")}, T0 + timedelta(hours=1)))

        cached = await store.get_cached_rates("USD")

        assert cached.rates == {"EUR": Decimal("0.90")}
        assert cached.updated_at == T0 + timedelta(hours=1)


# =============================================================================
# Reconciliation
# =============================================================================


class TestReconciliationQueue:
    """reconciliation_queue table"""

    def _record(self, reference: str, user_id: str = "user-1") -> ReconciliationRecord:
        return ReconciliationRecord(
            operation=ReconciliationOperation.WITHDRAWAL,
            user_id=user_id,
            currency=Currency.USD,
            amount=Decimal("20.00"),
            reference=reference,
            error="RuntimeError: disk full",
            created_at=T0,
        )

    @pytest.mark.asyncio
    async def test_queue_list_resolve(self, store: BalanceStore) -> None:
        first = await store.queue_reconciliation(self._record("po_1"))
        await store.queue_reconciliation(self._record("po_2", user_id="user-2"))

        assert first.id is not None
        assert [r.reference for r in await store.list_reconciliation()] == ["po_1", "po_2"]
        assert [r.reference for r in await store.list_reconciliation(user_id="user-2")] == ["po_2"]

        assert await store.resolve_reconciliation(first.id) is True
        assert await store.resolve_reconciliation(first.id) is False

        open_records = await store.list_reconciliation()
        resolved = await store.list_reconciliation(resolved=True)
        everything = await store.list_reconciliation(resolved=None)

        assert [r.reference for r in open_records] == ["po_2"]
        assert resolved[0].resolved is True
        assert len(everything) == 2

    @pytest.mark.asyncio
    async def test_resolve_unknown(self, store: BalanceStore) -> None:
        assert await store.resolve_reconciliation(9999) is False

    @pytest.mark.asyncio
    async def test_get_keeps_ledger_entry(self, store: BalanceStore) -> None:
        queued = await store.queue_reconciliation(replace(self._record("po_1"), transaction_id="tx_pending"))

        loaded = await store.get_reconciliation(queued.id)

        assert loaded is not None
        assert loaded.reference == "po_1"
        assert loaded.transaction_id == "tx_pending"
        assert loaded.resolved is False
        assert await store.get_reconciliation(9999) is None
