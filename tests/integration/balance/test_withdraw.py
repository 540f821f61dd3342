"""
Withdrawal integration tests
"""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from adapters.mock.payment_gateway import MockPaymentGateway
from core.balance import BalanceEngine, TransactionFilter
from core.balance.errors import InsufficientBalanceError, PartialFailure, PaymentError
from core.storage import BalanceStore
from core.types import Currency, ReconciliationOperation, TransactionStatus, TransactionType


class TestWithdraw:
    """BalanceEngine.withdraw"""

    @pytest.mark.asyncio
    async def test_withdraw_debits(self, engine: BalanceEngine, gateway: MockPaymentGateway) -> None:
        await engine.deposit("user-1", "EUR", "75.00", "EUR", "tok_eur")

        result = await engine.withdraw("user-1", "EUR", "50.00")

        assert result.balance.amount == Decimal("25.00")
        assert result.transaction.type == TransactionType.WITHDRAWAL
        assert result.transaction.payout_id in gateway.state.payouts

    @pytest.mark.asyncio
    async def test_withdraw_everything(self, engine: BalanceEngine) -> None:
        await engine.deposit("user-1", "JPY", "3000.00", "JPY", "tok_jpy")

        result = await engine.withdraw("user-1", "JPY", "3000.00")

        assert result.balance.amount == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_insufficient(self, engine: BalanceEngine, gateway: MockPaymentGateway) -> None:
        await engine.deposit("user-1", "EUR", "50.00", "EUR", "tok_eur")

        with pytest.raises(InsufficientBalanceError) as exc:
            await engine.withdraw("user-1", "EUR", "75.00")

        assert exc.value.available == Decimal("50.00")
        assert exc.value.requested == Decimal("75.00")
        # no payout requested
        assert gateway.call_count("request_payout") == 0

    @pytest.mark.asyncio
    async def test_no_balance_row(self, engine: BalanceEngine) -> None:
        with pytest.raises(InsufficientBalanceError):
            await engine.withdraw("user-1", "USD", "0.01")

    @pytest.mark.asyncio
    async def test_payout_rejected_records_failed_transaction(
        self, engine: BalanceEngine, gateway: MockPaymentGateway, store: BalanceStore
    ) -> None:
        await engine.deposit("user-1", "USD", "100.00", "USD", "tok_usd")
        gateway.fail_next_payout("insufficient_funds", "Platform balance too low")

        with pytest.raises(PaymentError) as exc:
            await engine.withdraw("user-1", "USD", "40.00")

        assert exc.value.code == "insufficient_funds"

        balance = await store.get_balance("user-1", Currency.USD)
        assert balance.amount == Decimal("100.00")

        failed = await store.list_transactions(
            "user-1", TransactionFilter(status=TransactionStatus.FAILED)
        )
        assert len(failed) == 1
        assert failed[0].type == TransactionType.WITHDRAWAL
        assert failed[0].payout_id is None
        assert failed[0].metadata["error_code"] == "insufficient_funds"

        check = await engine.verify_ledger("user-1")
        assert check.is_consistent

    @pytest.mark.asyncio
    async def test_bookkeeping_failure_after_payout(
        self, engine: BalanceEngine, gateway: MockPaymentGateway, store: BalanceStore
    ) -> None:
        await engine.deposit("user-1", "USD", "100.00", "USD", "tok_usd")

        with patch.object(store, "finalize_transaction", new=AsyncMock(side_effect=RuntimeError("disk full"))):
            with pytest.raises(PartialFailure) as exc:
                await engine.withdraw("user-1", "USD", "30.00")

        payout_id = exc.value.reference
        assert payout_id in gateway.state.payouts
        assert exc.value.operation == "withdrawal"

        # balance CAS rolled back with the failed unit of work
        balance = await store.get_balance("user-1", Currency.USD)
        assert balance.amount == Decimal("100.00")

        # the pending entry keeps holding the paid-out amount
        pending = await store.list_transactions(
            "user-1", TransactionFilter(status=TransactionStatus.PENDING)
        )
        assert len(pending) == 1
        with pytest.raises(InsufficientBalanceError) as held:
            await engine.withdraw("user-1", "USD", "80.00")
        assert held.value.available == Decimal("70.00")

        queued = await store.list_reconciliation(user_id="user-1")
        assert len(queued) == 1
        assert queued[0].id == exc.value.reconciliation_id
        assert queued[0].operation == ReconciliationOperation.WITHDRAWAL
        assert queued[0].reference == payout_id
        assert queued[0].amount == Decimal("30.00")
        assert queued[0].transaction_id == pending[0].id
        assert "disk full" in queued[0].error

    @pytest.mark.asyncio
    async def test_rejected_payout_releases_hold(
        self, engine: BalanceEngine, gateway: MockPaymentGateway
    ) -> None:
        await engine.deposit("user-1", "EUR", "60.00", "EUR", "tok_eur")
        gateway.fail_next_payout()

        with pytest.raises(PaymentError):
            await engine.withdraw("user-1", "EUR", "60.00")

        result = await engine.withdraw("user-1", "EUR", "60.00")

        assert result.balance.amount == Decimal("0.00")
        assert len(gateway.state.payouts) == 1

    @pytest.mark.asyncio
    async def test_payout_keyed_by_ledger_entry(
        self, engine: BalanceEngine, gateway: MockPaymentGateway
    ) -> None:
        await engine.deposit("user-1", "USD", "50.00", "USD", "tok_usd")

        first = await engine.withdraw("user-1", "USD", "10.00")
        second = await engine.withdraw("user-1", "USD", "10.00")

        assert gateway.state.idempotency[f"iw-payout-{first.transaction.id}"] == first.transaction.payout_id
        assert gateway.state.idempotency[f"iw-payout-{second.transaction.id}"] == second.transaction.payout_id
        assert first.transaction.payout_id != second.transaction.payout_id

    @pytest.mark.asyncio
    async def test_completed_entry_replaces_pending(
        self, engine: BalanceEngine, store: BalanceStore
    ) -> None:
        await engine.deposit("user-1", "CNY", "100.00", "CNY", "tok_cny")

        result = await engine.withdraw("user-1", "CNY", "25.00")

        withdrawals = await store.list_transactions(
            "user-1", TransactionFilter(type=TransactionType.WITHDRAWAL)
        )
        assert len(withdrawals) == 1
        assert withdrawals[0].id == result.transaction.id
        assert withdrawals[0].status == TransactionStatus.COMPLETED
        assert withdrawals[0].payout_id == result.transaction.payout_id
