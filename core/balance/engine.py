"""
Balance engine

Sole writer of balances, ledger entries and historical points.

Every mutation follows the same shape:
1. validate input (no side effects)
2. payouts and refunds only: under the (user, currency) lock, check the
   limit and record a pending ledger entry that holds the amount
3. external call (payment confirmation / payout / refund) or rate fetch,
   outside any lock; payouts and refunds are keyed by the pending entry id
4. under the lock, one store unit of work: CAS the balance, append or
   finalize the ledger entry, upsert today's history point

A failure in step 4 after an external effect is a PartialFailure and is
queued for reconciliation; `book_reconciliation` books it later.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Callable

from core.balance.aggregate import total_balance_usd
from core.balance.errors import (
    DuplicateReferenceError,
    InsufficientBalanceError,
    MissingReferenceError,
    PartialFailure,
    PaymentError,
    RateFetchError,
    RefundLimitExceededError,
    ValidationError,
)
from core.balance.history import fill_daily_series, next_point, replay_ledger
from core.balance.locks import KeyedLockRegistry
from core.balance.models import (
    Balance,
    BalanceResult,
    BalanceState,
    LedgerCheck,
    ReconciliationRecord,
    Transaction,
    TransactionFilter,
    TransferResult,
)
from core.balance.rates import ExchangeRateProvider, convert
from core.constants import Defaults
from core.types import (
    Currency,
    PaymentCurrency,
    ReconciliationOperation,
    TRACKED_CURRENCIES,
    TransactionStatus,
    TransactionType,
)
from core.utils.idempotency import make_idempotency_key, normalize_reference
from core.utils.money import format_amount, quantize_amount, to_decimal
from core.utils.timezone import now_utc, utc_day

if TYPE_CHECKING:
    from adapters.interfaces import IBalanceStore, IPaymentGateway

logger = logging.getLogger(__name__)


# Transaction types a refund may reference (must carry a payment intent)
REFUNDABLE_TYPES = (TransactionType.DEPOSIT,)

# Ledger column holding the external reference of a reconciled operation
RECONCILIATION_REFERENCE_FIELDS = {
    ReconciliationOperation.DEPOSIT: "payment_intent_id",
    ReconciliationOperation.WITHDRAWAL: "payout_id",
    ReconciliationOperation.REFUND: "refund_id",
}


# =============================================================================
# Input parsing
# =============================================================================


def parse_amount(value: str | int | float | Decimal, field: str = "amount") -> Decimal:
    """Positive amount with at most two fraction digits

    Raises:
        ValidationError: not a number, not positive, or too precise
    """
    try:
        amount = to_decimal(value)
    except ValueError as e:
        raise ValidationError(str(e), field=field) from e

    if amount <= 0:
        raise ValidationError(f"{field} must be positive, got {amount}", field=field)
    if amount != quantize_amount(amount):
        raise ValidationError(f"{field} has more than 2 decimal places: {amount}", field=field)
    return quantize_amount(amount)


def parse_currency(value: str | Currency, field: str = "currency") -> Currency:
    try:
        return Currency.parse(value)
    except ValueError as e:
        raise ValidationError(str(e), field=field) from e


def parse_payment_currency(value: str | PaymentCurrency, field: str = "payment_currency") -> PaymentCurrency:
    try:
        return PaymentCurrency.parse(value)
    except ValueError as e:
        raise ValidationError(str(e), field=field) from e


def _require_user(user_id: str) -> str:
    if not user_id or not user_id.strip():
        raise ValidationError("user_id is required", field="user_id")
    return user_id.strip()


async def check_ledger(store: "IBalanceStore", user_id: str) -> LedgerCheck:
    """Replay a user's completed transactions against the stored balances

    Needs only the store, so operator scripts can run it without a payment
    processor or rate source.
    """
    transactions = await store.list_transactions(
        user_id, TransactionFilter(status=TransactionStatus.COMPLETED)
    )
    expected = replay_ledger(transactions)
    actual = {b.currency: b.amount for b in await store.list_balances(user_id)}
    check = LedgerCheck(user_id=user_id, expected=expected, actual=actual)

    if not check.is_consistent:
        logger.error(
            f"Ledger mismatch for {user_id}: "
            + ", ".join(
                f"{c.value} expected={e} actual={a}" for c, (e, a) in check.mismatches.items()
            ),
            extra={"user_id": user_id},
        )
    return check


# =============================================================================
# Booking
# =============================================================================


async def _stored_amount(store: "IBalanceStore", user_id: str, currency: Currency) -> Decimal:
    balance = await store.get_balance(user_id, currency)
    return balance.amount if balance is not None else Decimal("0.00")


async def reserved_amount(
    store: "IBalanceStore",
    user_id: str,
    currency: Currency,
    exclude: str | None = None,
) -> Decimal:
    """Funds held by pending withdrawals (payout requested, not yet booked)"""
    pending = await store.list_transactions(
        user_id,
        TransactionFilter(
            type=TransactionType.WITHDRAWAL,
            status=TransactionStatus.PENDING,
            currency=currency,
        ),
    )
    return sum((tx.amount for tx in pending if tx.id != exclude), Decimal("0.00"))


async def book_transaction(
    store: "IBalanceStore",
    user_id: str,
    tx: Transaction,
    now: datetime,
) -> tuple[dict[Currency, Balance], Transaction]:
    """Balance CAS + ledger write + history upsert

    Must run under the currency locks inside a unit of work. A transaction
    that already has an id is a pending entry being completed; any other is
    appended. Balance deltas come from the transaction itself so the ledger
    always replays to the stored balances. A debit may not dip into funds
    held by other pending withdrawals.
    """
    balances: dict[Currency, Balance] = {}
    deltas = tx.balance_deltas()

    for currency in sorted(deltas, key=lambda c: c.value):
        prior = await _stored_amount(store, user_id, currency)
        new_amount = quantize_amount(prior + deltas[currency])
        if deltas[currency] < 0:
            held = await reserved_amount(store, user_id, currency, exclude=tx.id)
            if new_amount < held:
                raise InsufficientBalanceError(
                    currency.value, quantize_amount(prior - held), -deltas[currency]
                )
        balances[currency] = await store.update_balance(
            user_id, currency, new_amount, expected=prior, updated_at=now
        )

    if tx.id is None:
        recorded = await store.append_transaction(tx)
    else:
        recorded = await store.finalize_transaction(tx)

    day = utc_day(now)
    previous = await store.get_latest_historical_point(user_id, day)
    point = next_point(previous, day, {c: b.amount for c, b in balances.items()})
    await store.upsert_historical_point(user_id, point)

    return balances, recorded


async def book_reconciliation(
    store: "IBalanceStore",
    record_id: int,
    locks: KeyedLockRegistry | None = None,
    now: Callable[[], datetime] = now_utc,
) -> BalanceResult:
    """Book a queued external effect and mark the record resolved

    Idempotent on the external reference: a record whose payment token,
    payout id or refund id is already on the ledger is rejected, so the same
    record can never be booked twice. Payouts and refunds complete their
    pending entry; deposits are appended.

    Needs only the store, so operator scripts can run it without a payment
    processor or rate source.

    Raises:
        ValidationError: unknown or resolved record, or no pending entry left
        DuplicateReferenceError: reference already booked (resolve the record)
    """
    record = await store.get_reconciliation(record_id)
    if record is None or record.resolved:
        raise ValidationError(
            f"Reconciliation record {record_id} not found or already resolved",
            field="record_id",
        )

    field = RECONCILIATION_REFERENCE_FIELDS[record.operation]
    booked = await store.find_transaction_by_reference(
        field, record.reference, type=TransactionType(record.operation.value)
    )
    if booked is not None and booked.is_completed:
        raise DuplicateReferenceError(field, record.reference, booked.id or "")

    booked_at = now()
    if record.operation == ReconciliationOperation.DEPOSIT:
        tx = Transaction(
            user_id=record.user_id,
            type=TransactionType.DEPOSIT,
            amount=record.amount,
            currency=record.currency,
            status=TransactionStatus.COMPLETED,
            date=booked_at,
            description=f"Deposit {format_amount(record.amount)} {record.currency.value} (reconciled)",
            payment_intent_id=record.reference,
            metadata={"reconciliation_id": record_id},
        )
    else:
        pending = None
        if record.transaction_id is not None:
            pending = await store.get_transaction(record.user_id, record.transaction_id)
        if pending is None or pending.status != TransactionStatus.PENDING:
            raise ValidationError(
                f"Reconciliation record {record_id} has no pending ledger entry",
                field="record_id",
            )
        tx = replace(
            pending,
            status=TransactionStatus.COMPLETED,
            date=booked_at,
            metadata={**pending.metadata, "reconciliation_id": record_id},
            **{field: record.reference},
        )

    locks = locks if locks is not None else KeyedLockRegistry()
    async with locks.acquire(record.user_id, record.currency):
        async with store.unit_of_work():
            balances, recorded = await book_transaction(store, record.user_id, tx, booked_at)

    await store.resolve_reconciliation(record_id)

    logger.info(
        f"Reconciled {record.operation.value} {record.reference}: "
        f"{format_amount(record.amount)} {record.currency.value}",
        extra={"user_id": record.user_id, "reconciliation_id": record_id, "transaction_id": recorded.id},
    )
    return BalanceResult(balance=balances[record.currency], transaction=recorded)


# =============================================================================
# Engine
# =============================================================================


class BalanceEngine:
    """Multi-currency balance engine

    Holds no balance state of its own; everything lives in the store.

    Args:
        store: persistence (IBalanceStore)
        gateway: payment processor (IPaymentGateway)
        rate_provider: exchange rates
        locks: per (user, currency) locks shared across engine instances
        now: clock (injectable for tests)

    Usage:
    ```python
    engine = BalanceEngine(store, gateway, rate_provider, locks)

    result = await engine.deposit("user-1", "USD", "100.00", "USD", "tok_abc")
    result.balance.amount  # Decimal("100.00")

    moved = await engine.transfer("user-1", "USD", "CNY", "100.00")
    moved.to_balance.amount  # Decimal("1.30")
    ```
    """

    def __init__(
        self,
        store: "IBalanceStore",
        gateway: "IPaymentGateway",
        rate_provider: ExchangeRateProvider,
        locks: KeyedLockRegistry | None = None,
        now: Callable[[], datetime] = now_utc,
    ):
        self.store = store
        self.gateway = gateway
        self.rate_provider = rate_provider
        self.locks = locks if locks is not None else KeyedLockRegistry()
        self._now = now

    # -------------------------------------------------------------------------
    # Deposit
    # -------------------------------------------------------------------------

    async def deposit(
        self,
        user_id: str,
        currency: str | Currency,
        amount: str | int | float | Decimal,
        payment_currency: str | PaymentCurrency,
        payment_token: str | None,
        description: str | None = None,
    ) -> BalanceResult:
        """Credit a balance after a confirmed card payment

        The credited amount is always `amount` in `currency`. When the
        customer pays in another currency, the charged amount is recorded in
        the transaction metadata only.

        Args:
            user_id: authenticated user
            currency: balance currency to credit
            amount: amount to credit
            payment_currency: currency the customer was charged in
            payment_token: confirmed payment reference (consumed once)

        Raises:
            ValidationError: bad input, missing or already consumed token
            PaymentError: payment not confirmed
            PartialFailure: payment confirmed but bookkeeping failed
        """
        user_id = _require_user(user_id)
        currency = parse_currency(currency)
        payment_currency = parse_payment_currency(payment_currency)
        amount = parse_amount(amount)
        token = normalize_reference(payment_token)
        if token is None:
            raise MissingReferenceError("payment_token")

        await self._ensure_token_unused(token)

        confirmed = await self.gateway.confirm_payment(token)
        if not confirmed:
            raise PaymentError(
                f"Payment {token} was not confirmed",
                reference=token,
                code="not_confirmed",
            )

        metadata = {
            "payment_currency": payment_currency.value,
            "charge_amount": await self._charge_amount(amount, currency, payment_currency),
        }

        now = self._now()
        tx = Transaction(
            user_id=user_id,
            type=TransactionType.DEPOSIT,
            amount=amount,
            currency=currency,
            status=TransactionStatus.COMPLETED,
            date=now,
            description=description or f"Deposit {format_amount(amount)} {currency.value}",
            payment_intent_id=token,
            metadata=metadata,
        )

        try:
            async with self.locks.acquire(user_id, currency):
                async with self.store.unit_of_work():
                    # a concurrent request may have consumed the token meanwhile
                    await self._ensure_token_unused(token)
                    balances, recorded = await book_transaction(self.store, user_id, tx, now)
        except DuplicateReferenceError as e:
            if e.field == "payment_token":
                raise
            # booked meanwhile through another connection (unique index)
            logger.warning(
                f"Payment token {token} consumed by a concurrent deposit",
                extra={"user_id": user_id, "transaction_id": e.transaction_id},
            )
            raise DuplicateReferenceError("payment_token", token, e.transaction_id) from e
        except Exception as e:
            raise await self._partial_failure(
                ReconciliationOperation.DEPOSIT, user_id, currency, amount, token, e
            ) from e

        logger.info(
            f"Deposit completed: {user_id} +{format_amount(amount)} {currency.value}",
            extra={"user_id": user_id, "transaction_id": recorded.id, "payment_intent_id": token},
        )
        return BalanceResult(balance=balances[currency], transaction=recorded)

    async def _charge_amount(
        self,
        amount: Decimal,
        currency: Currency,
        payment_currency: PaymentCurrency,
    ) -> str | None:
        """Amount charged in the payment currency (display/audit only)"""
        if payment_currency.value == currency.value:
            return format_amount(amount)
        try:
            snapshot = await self.rate_provider.get_rates()
            return format_amount(convert(amount, currency, payment_currency, snapshot))
        except RateFetchError as e:
            logger.warning(
                f"Charge amount unknown, rates unavailable: {e}",
                extra={"currency": currency.value, "payment_currency": payment_currency.value},
            )
            return None

    # -------------------------------------------------------------------------
    # Withdrawal
    # -------------------------------------------------------------------------

    async def withdraw(
        self,
        user_id: str,
        currency: str | Currency,
        amount: str | int | float | Decimal,
        description: str | None = None,
    ) -> BalanceResult:
        """Pay out part of a balance

        The amount is held by a pending withdrawal before the payout is
        requested, so concurrent withdrawals cannot both spend it. The
        balance is debited only once a payout reference exists. A rejected
        payout fails the pending entry and releases the hold.

        Raises:
            ValidationError: bad input
            InsufficientBalanceError: amount exceeds the available balance
            PaymentError: payout rejected
            PartialFailure: payout issued but bookkeeping failed
        """
        user_id = _require_user(user_id)
        currency = parse_currency(currency)
        amount = parse_amount(amount)

        async with self.locks.acquire(user_id, currency):
            available = await self._available(user_id, currency)
            if amount > available:
                raise InsufficientBalanceError(currency.value, available, amount)

            async with self.store.unit_of_work():
                pending = await self.store.append_transaction(
                    Transaction(
                        user_id=user_id,
                        type=TransactionType.WITHDRAWAL,
                        amount=amount,
                        currency=currency,
                        status=TransactionStatus.PENDING,
                        date=self._now(),
                        description=description or f"Withdrawal {format_amount(amount)} {currency.value}",
                    )
                )

        try:
            payout_id = await self.gateway.request_payout(
                amount,
                currency,
                idempotency_key=make_idempotency_key("payout", pending.id or ""),
            )
        except PaymentError as e:
            await self._release(pending, e)
            raise

        now = self._now()
        completed = replace(pending, status=TransactionStatus.COMPLETED, date=now, payout_id=payout_id)

        try:
            async with self.locks.acquire(user_id, currency):
                async with self.store.unit_of_work():
                    balances, recorded = await book_transaction(self.store, user_id, completed, now)
        except Exception as e:
            raise await self._partial_failure(
                ReconciliationOperation.WITHDRAWAL, user_id, currency, amount, payout_id, e,
                transaction_id=pending.id,
            ) from e

        logger.info(
            f"Withdrawal completed: {user_id} -{format_amount(amount)} {currency.value}",
            extra={"user_id": user_id, "transaction_id": recorded.id, "payout_id": payout_id},
        )
        return BalanceResult(balance=balances[currency], transaction=recorded)

    async def _release(self, pending: Transaction, error: PaymentError) -> None:
        """Fail a pending entry the processor rejected, freeing its hold"""
        failed = replace(
            pending,
            status=TransactionStatus.FAILED,
            date=self._now(),
            metadata={**pending.metadata, "error": error.message, "error_code": error.code},
        )
        try:
            async with self.store.unit_of_work():
                await self.store.finalize_transaction(failed)
        except Exception:
            # the PaymentError is what the caller needs; keep it
            logger.exception(
                f"Failed to release pending {pending.type.value} {pending.id}",
                extra={"user_id": pending.user_id, "currency": pending.currency.value},
            )
        logger.warning(
            f"{pending.type.value.capitalize()} rejected: {pending.user_id} "
            f"{format_amount(pending.amount)} {pending.currency.value}: {error.message}",
            extra={"user_id": pending.user_id, "transaction_id": pending.id, "code": error.code},
        )

    # -------------------------------------------------------------------------
    # Refund
    # -------------------------------------------------------------------------

    async def refund(
        self,
        user_id: str,
        transaction_id: str | None,
        amount: str | int | float | Decimal,
        currency: str | Currency,
        payment_reference: str | None,
        description: str | None = None,
    ) -> BalanceResult:
        """Refund against an earlier transaction, crediting the balance

        Policy: the original must be a completed deposit of the user in the
        same currency, `payment_reference` must be its payment intent, and
        the refunds against it (pending ones included) may not add up to
        more than its amount. The refund is held by a pending entry while
        the processor is called.

        Raises:
            MissingReferenceError: no payment reference / transaction id
            RefundLimitExceededError: over-refund
            ValidationError: bad input or ineligible original
            PaymentError: processor rejected the refund
            PartialFailure: refund issued but bookkeeping failed
        """
        reference = normalize_reference(payment_reference)
        if reference is None:
            raise MissingReferenceError("payment_reference")
        original_id = normalize_reference(transaction_id)
        if original_id is None:
            raise MissingReferenceError("transaction_id")

        user_id = _require_user(user_id)
        currency = parse_currency(currency)
        amount = parse_amount(amount)

        original = await self.store.get_transaction(user_id, original_id)
        if original is None:
            raise ValidationError(f"Transaction {original_id} not found", field="transaction_id")
        if original.type not in REFUNDABLE_TYPES:
            raise ValidationError(
                f"{original.type.value} transactions cannot be refunded",
                field="transaction_id",
            )
        if not original.is_completed:
            raise ValidationError(
                f"Transaction {original_id} is {original.status.value}, not completed",
                field="transaction_id",
            )
        if original.currency != currency:
            raise ValidationError(
                f"Refund currency {currency.value} does not match {original.currency.value}",
                field="currency",
            )
        if original.payment_intent_id is None or original.payment_intent_id != reference:
            raise ValidationError(
                f"Payment reference does not match transaction {original_id}",
                field="payment_reference",
            )

        async with self.locks.acquire(user_id, currency):
            async with self.store.unit_of_work():
                await self._check_refund_limit(user_id, original, amount)
                pending = await self.store.append_transaction(
                    Transaction(
                        user_id=user_id,
                        type=TransactionType.REFUND,
                        amount=amount,
                        currency=currency,
                        status=TransactionStatus.PENDING,
                        date=self._now(),
                        description=description or f"Refund of {original_id}",
                        payment_intent_id=reference,
                        related_transaction_id=original_id,
                    )
                )

        try:
            refund_id = await self.gateway.request_refund(
                reference,
                amount,
                currency,
                idempotency_key=make_idempotency_key("refund", pending.id or ""),
            )
        except PaymentError as e:
            await self._release(pending, e)
            raise

        now = self._now()
        completed = replace(pending, status=TransactionStatus.COMPLETED, date=now, refund_id=refund_id)

        try:
            async with self.locks.acquire(user_id, currency):
                async with self.store.unit_of_work():
                    balances, recorded = await book_transaction(self.store, user_id, completed, now)
        except Exception as e:
            raise await self._partial_failure(
                ReconciliationOperation.REFUND, user_id, currency, amount, refund_id, e,
                transaction_id=pending.id,
            ) from e

        logger.info(
            f"Refund completed: {user_id} +{format_amount(amount)} {currency.value}",
            extra={"user_id": user_id, "transaction_id": recorded.id, "refund_id": refund_id},
        )
        return BalanceResult(balance=balances[currency], transaction=recorded)

    async def _check_refund_limit(self, user_id: str, original: Transaction, amount: Decimal) -> None:
        refunds = await self.store.list_transactions(
            user_id,
            TransactionFilter(type=TransactionType.REFUND, related_transaction_id=original.id),
        )
        # pending refunds count: the processor may already be paying them
        refunded = sum(
            (tx.amount for tx in refunds if tx.status != TransactionStatus.FAILED),
            Decimal("0.00"),
        )
        refundable = quantize_amount(original.amount - refunded)
        if amount > refundable:
            raise RefundLimitExceededError(original.id or "", amount, refundable)

    # -------------------------------------------------------------------------
    # Transfer
    # -------------------------------------------------------------------------

    async def transfer(
        self,
        user_id: str,
        from_currency: str | Currency,
        to_currency: str | Currency,
        amount: str | int | float | Decimal,
        description: str | None = None,
    ) -> TransferResult:
        """Convert part of one balance into another currency

        converted = amount * rate[to] / rate[from], rounded half-up to 2
        places. No fee. Both legs and the ledger entry commit together.

        Raises:
            ValidationError: bad input, same currency, or amount converts to 0
            InsufficientBalanceError: amount exceeds the source balance
            RateFetchError: no usable rates
            ConcurrencyConflict: balance changed underneath; retry
        """
        user_id = _require_user(user_id)
        source = parse_currency(from_currency, field="from_currency")
        target = parse_currency(to_currency, field="to_currency")
        if source == target:
            raise ValidationError("Cannot transfer to the same currency", field="to_currency")
        amount = parse_amount(amount)

        available = await self._available(user_id, source)
        if amount > available:
            raise InsufficientBalanceError(source.value, available, amount)

        # rates before any lock
        snapshot = await self.rate_provider.get_rates()
        rate = snapshot.rate(target) / snapshot.rate(source)
        converted = convert(amount, source, target, snapshot)
        if converted <= 0:
            raise ValidationError(
                f"{format_amount(amount)} {source.value} converts to 0 {target.value}",
                field="amount",
            )

        now = self._now()
        tx = Transaction(
            user_id=user_id,
            type=TransactionType.TRANSFER,
            amount=amount,
            currency=source,
            status=TransactionStatus.COMPLETED,
            date=now,
            description=description or f"Convert {source.value} to {target.value}",
            target_currency=target,
            converted_amount=converted,
            metadata={"rate": str(rate), "rate_source": snapshot.source.value},
        )

        async with self.locks.acquire(user_id, source, target):
            async with self.store.unit_of_work():
                balances, recorded = await book_transaction(self.store, user_id, tx, now)

        logger.info(
            f"Transfer completed: {user_id} {format_amount(amount)} {source.value} "
            f"-> {format_amount(converted)} {target.value}",
            extra={"user_id": user_id, "transaction_id": recorded.id, "rate": str(rate)},
        )
        return TransferResult(
            from_balance=balances[source],
            to_balance=balances[target],
            transaction=recorded,
            rate=rate,
        )

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    async def get_state(
        self,
        user_id: str,
        days: int = Defaults.HISTORY_DAYS,
        limit: int = Defaults.TRANSACTION_LIMIT,
    ) -> BalanceState:
        """Balances, rates, recent transactions, history and USD total

        Rates are optional here: when unavailable the state is returned
        without rates and without the USD total.
        """
        user_id = _require_user(user_id)
        if days < 1:
            raise ValidationError("days must be at least 1", field="days")

        balances = await self._balances(user_id)

        try:
            snapshot = await self.rate_provider.get_rates()
        except RateFetchError as e:
            logger.warning(f"Balance state without rates: {e}", extra={"user_id": user_id})
            snapshot = None

        total_usd = None
        if snapshot is not None:
            try:
                total_usd = total_balance_usd(balances.values(), snapshot)
            except RateFetchError as e:
                logger.warning(f"USD total unavailable: {e}", extra={"user_id": user_id})

        transactions = await self.store.list_transactions(user_id, TransactionFilter(limit=limit))

        end = utc_day(self._now())
        start = end - timedelta(days=days - 1)
        points = await self.store.get_historical_points(user_id, start, end)
        seed = await self.store.get_latest_historical_point(user_id, start - timedelta(days=1))
        history = fill_daily_series(points, start, end, seed=seed)

        return BalanceState(
            user_id=user_id,
            balances=balances,
            transactions=transactions,
            history=history,
            rates=snapshot,
            total_usd=total_usd,
        )

    async def list_transactions(
        self,
        user_id: str,
        filters: TransactionFilter | None = None,
    ) -> list[Transaction]:
        """Ledger entries of a user, newest first"""
        user_id = _require_user(user_id)
        return await self.store.list_transactions(user_id, filters)

    # -------------------------------------------------------------------------
    # Account maintenance
    # -------------------------------------------------------------------------

    async def provision_account(self, user_id: str) -> dict[Currency, Balance]:
        """Create zero balances for every tracked currency (idempotent)"""
        user_id = _require_user(user_id)
        now = self._now()

        async with self.locks.acquire(user_id, *TRACKED_CURRENCIES):
            async with self.store.unit_of_work():
                for currency in TRACKED_CURRENCIES:
                    if await self.store.get_balance(user_id, currency) is None:
                        await self.store.update_balance(
                            user_id, currency, Decimal("0.00"), expected=Decimal("0.00"), updated_at=now
                        )

        logger.info(f"Account provisioned: {user_id}", extra={"user_id": user_id})
        return await self._balances(user_id)

    async def verify_ledger(self, user_id: str) -> LedgerCheck:
        """Replay completed transactions and compare with stored balances"""
        return await check_ledger(self.store, _require_user(user_id))

    async def apply_reconciliation(self, record_id: int) -> BalanceResult:
        """Book a queued partial failure (see book_reconciliation)"""
        return await book_reconciliation(self.store, record_id, self.locks, self._now)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _available(self, user_id: str, currency: Currency) -> Decimal:
        """Stored balance minus the holds of pending withdrawals"""
        stored = await _stored_amount(self.store, user_id, currency)
        return quantize_amount(stored - await reserved_amount(self.store, user_id, currency))

    async def _balances(self, user_id: str) -> dict[Currency, Balance]:
        stored = {b.currency: b for b in await self.store.list_balances(user_id)}
        return {c: stored.get(c) or Balance.zero(user_id, c) for c in TRACKED_CURRENCIES}

    async def _ensure_token_unused(self, token: str) -> None:
        existing = await self.store.find_transaction_by_reference(
            "payment_intent_id", token, type=TransactionType.DEPOSIT
        )
        if existing is not None:
            raise DuplicateReferenceError("payment_token", token, existing.id or "")

    async def _partial_failure(
        self,
        operation: ReconciliationOperation,
        user_id: str,
        currency: Currency,
        amount: Decimal,
        reference: str,
        error: Exception,
        transaction_id: str | None = None,
    ) -> PartialFailure:
        """Log and queue an external effect that has no local bookkeeping"""
        logger.error(
            f"{operation.value} {reference} succeeded externally but was not recorded: {error}",
            exc_info=error,
            extra={"user_id": user_id, "reference": reference, "operation": operation.value},
        )

        record = ReconciliationRecord(
            operation=operation,
            user_id=user_id,
            currency=currency,
            amount=amount,
            reference=reference,
            error=f"{type(error).__name__}: {error}",
            created_at=self._now(),
            transaction_id=transaction_id,
        )
        reconciliation_id = None
        try:
            queued = await self.store.queue_reconciliation(record)
            reconciliation_id = queued.id
        except Exception:
            logger.exception(
                f"Could not queue reconciliation for {operation.value} {reference}",
                extra={"reference": reference},
            )

        return PartialFailure(
            operation=operation.value,
            reference=reference,
            message=str(error),
            reconciliation_id=reconciliation_id,
        )
