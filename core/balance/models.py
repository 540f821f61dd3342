"""
Balance domain models

Immutable value objects passed between the engine, the store and the
web layer. Amounts are Decimal, timestamps are UTC-aware datetimes.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from core.balance.errors import RateFetchError
from core.types import (
    Currency,
    RateSnapshotSource,
    ReconciliationOperation,
    TRACKED_CURRENCIES,
    TransactionStatus,
    TransactionType,
)
from core.utils.money import format_amount
from core.utils.timezone import ensure_utc


@dataclass(frozen=True)
class Balance:
    """Running balance of one currency for one user"""

    user_id: str
    currency: Currency
    amount: Decimal
    last_updated: datetime | None = None

    @classmethod
    def zero(cls, user_id: str, currency: Currency) -> "Balance":
        return cls(user_id=user_id, currency=currency, amount=Decimal("0.00"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "currency": self.currency.value,
            "amount": format_amount(self.amount),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass(frozen=True)
class Transaction:
    """Ledger record of one balance-affecting event

    A transfer is a single record: `amount` leaves `currency`,
    `converted_amount` arrives in `target_currency`.
    """

    user_id: str
    type: TransactionType
    amount: Decimal
    currency: Currency
    status: TransactionStatus
    date: datetime
    id: str | None = None
    description: str | None = None
    target_currency: Currency | None = None
    converted_amount: Decimal | None = None
    payment_intent_id: str | None = None
    payout_id: str | None = None
    refund_id: str | None = None
    related_transaction_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.status == TransactionStatus.COMPLETED

    def balance_deltas(self) -> dict[Currency, Decimal]:
        """Per-currency effect on balances (empty unless completed)"""
        if not self.is_completed:
            return {}

        if self.type in (TransactionType.DEPOSIT, TransactionType.REFUND):
            return {self.currency: self.amount}

        if self.type == TransactionType.WITHDRAWAL:
            return {self.currency: -self.amount}

        # transfer
        deltas = {self.currency: -self.amount}
        if self.target_currency is not None and self.converted_amount is not None:
            deltas[self.target_currency] = deltas.get(self.target_currency, Decimal("0")) + self.converted_amount
        return deltas

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "amount": format_amount(self.amount),
            "currency": self.currency.value,
            "target_currency": self.target_currency.value if self.target_currency else None,
            "converted_amount": (
                format_amount(self.converted_amount) if self.converted_amount is not None else None
            ),
            "date": ensure_utc(self.date).isoformat(),
            "status": self.status.value,
            "description": self.description,
            "payment_intent_id": self.payment_intent_id,
            "payout_id": self.payout_id,
            "refund_id": self.refund_id,
            "related_transaction_id": self.related_transaction_id,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class TransactionFilter:
    """Filters for ledger queries (all optional)"""

    type: TransactionType | None = None
    status: TransactionStatus | None = None
    currency: Currency | None = None
    since: datetime | None = None
    until: datetime | None = None
    related_transaction_id: str | None = None
    limit: int | None = None
    offset: int = 0


@dataclass(frozen=True)
class HistoricalBalancePoint:
    """One day's snapshot of every tracked currency"""

    date: date
    amounts: dict[Currency, Decimal]

    def amount(self, currency: Currency) -> Decimal:
        return self.amounts.get(currency, Decimal("0.00"))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"date": self.date.isoformat()}
        for currency in TRACKED_CURRENCIES:
            result[currency.value] = format_amount(self.amount(currency))
        return result


@dataclass(frozen=True)
class RateSnapshot:
    """Exchange rates relative to `base`

    rates[X] = units of X per one unit of base (USD -> 1).
    """

    base: str
    rates: dict[str, Decimal]
    updated_at: datetime
    source: RateSnapshotSource = RateSnapshotSource.FRESH

    def rate(self, currency: Enum | str) -> Decimal:
        code = currency.value if isinstance(currency, Enum) else str(currency)
        if code == self.base:
            return Decimal("1")
        value = self.rates.get(code)
        if value is None or value <= 0:
            raise RateFetchError(f"No exchange rate available for {code}", base_currency=self.base)
        return value

    def age_seconds(self, now: datetime) -> float:
        return (ensure_utc(now) - ensure_utc(self.updated_at)).total_seconds()

    def to_dict(self, currencies: list[str] | None = None) -> dict[str, Any]:
        codes = currencies if currencies is not None else sorted(self.rates)
        return {
            "base": self.base,
            "rates": {code: str(self.rates[code]) for code in codes if code in self.rates},
            "updated_at": ensure_utc(self.updated_at).isoformat(),
            "source": self.source.value,
        }


@dataclass(frozen=True)
class BalanceResult:
    """Outcome of deposit / withdraw / refund"""

    balance: Balance
    transaction: Transaction

    def to_dict(self) -> dict[str, Any]:
        return {
            "balance": self.balance.to_dict(),
            "transaction": self.transaction.to_dict(),
        }


@dataclass(frozen=True)
class TransferResult:
    """Outcome of a currency transfer (both legs)"""

    from_balance: Balance
    to_balance: Balance
    transaction: Transaction
    rate: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_balance": self.from_balance.to_dict(),
            "to_balance": self.to_balance.to_dict(),
            "transaction": self.transaction.to_dict(),
            "rate": str(self.rate),
        }


@dataclass(frozen=True)
class BalanceState:
    """Everything the dashboard balance page renders"""

    user_id: str
    balances: dict[Currency, Balance]
    transactions: list[Transaction]
    history: list[HistoricalBalancePoint]
    rates: RateSnapshot | None
    total_usd: Decimal | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "balances": {c.value: b.to_dict() for c, b in self.balances.items()},
            "transactions": [tx.to_dict() for tx in self.transactions],
            "history": [p.to_dict() for p in self.history],
            "exchange_rates": (
                self.rates.to_dict([c.value for c in TRACKED_CURRENCIES]) if self.rates else None
            ),
            "total_usd": format_amount(self.total_usd) if self.total_usd is not None else None,
        }


@dataclass(frozen=True)
class PaymentIntent:
    """Payment authorization created with the processor

    The client confirms it with a card; the confirmed id is the token a
    deposit consumes.
    """

    id: str
    client_secret: str | None
    amount: Decimal
    currency: str
    status: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "client_secret": self.client_secret,
            "amount": format_amount(self.amount),
            "currency": self.currency,
            "status": self.status,
        }


@dataclass(frozen=True)
class ReconciliationRecord:
    """External effect that still needs local bookkeeping

    `transaction_id` points at the pending ledger entry of a payout or
    refund; deposits have none.
    """

    operation: ReconciliationOperation
    user_id: str
    currency: Currency
    amount: Decimal
    reference: str
    error: str
    created_at: datetime
    transaction_id: str | None = None
    id: int | None = None
    resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "operation": self.operation.value,
            "user_id": self.user_id,
            "currency": self.currency.value,
            "amount": format_amount(self.amount),
            "reference": self.reference,
            "transaction_id": self.transaction_id,
            "error": self.error,
            "created_at": ensure_utc(self.created_at).isoformat(),
            "resolved": self.resolved,
        }


@dataclass(frozen=True)
class LedgerCheck:
    """Result of replaying the ledger against stored balances"""

    user_id: str
    expected: dict[Currency, Decimal]
    actual: dict[Currency, Decimal]

    @property
    def mismatches(self) -> dict[Currency, tuple[Decimal, Decimal]]:
        currencies = set(self.expected) | set(self.actual)
        result = {}
        for currency in currencies:
            expected = self.expected.get(currency, Decimal("0"))
            actual = self.actual.get(currency, Decimal("0"))
            if expected != actual:
                result[currency] = (expected, actual)
        return result

    @property
    def is_consistent(self) -> bool:
        return not self.mismatches
