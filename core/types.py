"""
Type definitions

Core Enums shared by the engine, the store and the web layer.
Every Enum inherits from str so values serialize as plain strings.
"""

from enum import Enum


class RunMode(str, Enum):
    """Run mode (live payments / processor sandbox)"""

    PRODUCTION = "production"
    SANDBOX = "sandbox"


class Currency(str, Enum):
    """Balance currency

    Currencies a user can hold a balance in.
    """

    USD = "USD"
    EUR = "EUR"
    CNY = "CNY"
    JPY = "JPY"

    @classmethod
    def parse(cls, value: "str | Currency") -> "Currency":
        """Parse a currency code (case-insensitive)

        Raises:
            ValueError: unknown currency code
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError as e:
            valid = [c.value for c in cls]
            raise ValueError(f"Unsupported currency: '{value}'. Valid: {valid}") from e


class PaymentCurrency(str, Enum):
    """Currency a customer may pay a deposit with

    Superset of Currency: BRL can be charged but not held.
    """

    USD = "USD"
    EUR = "EUR"
    CNY = "CNY"
    JPY = "JPY"
    BRL = "BRL"

    @classmethod
    def parse(cls, value: "str | PaymentCurrency | Currency") -> "PaymentCurrency":
        """Parse a payment currency code (case-insensitive)"""
        if isinstance(value, cls):
            return value
        raw = value.value if isinstance(value, Enum) else str(value)
        try:
            return cls(raw.strip().upper())
        except ValueError as e:
            valid = [c.value for c in cls]
            raise ValueError(f"Unsupported payment currency: '{value}'. Valid: {valid}") from e


# Currencies tracked in every historical balance point
TRACKED_CURRENCIES: tuple[Currency, ...] = (
    Currency.USD,
    Currency.EUR,
    Currency.CNY,
    Currency.JPY,
)


class TransactionType(str, Enum):
    """Ledger transaction type"""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"
    REFUND = "refund"


class TransactionStatus(str, Enum):
    """Ledger transaction status

    COMPLETED and FAILED are final.
    """

    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"

    @property
    def is_final(self) -> bool:
        return self in (TransactionStatus.COMPLETED, TransactionStatus.FAILED)


class RateSnapshotSource(str, Enum):
    """Where a rate snapshot came from"""

    CACHE = "cache"
    FRESH = "fresh"
    STALE = "stale"  # cached snapshot served because the source failed


class ReconciliationOperation(str, Enum):
    """Operation that left an external effect without local bookkeeping"""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    REFUND = "refund"
