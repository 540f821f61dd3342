"""
Multi-currency balance engine

Deposits, withdrawals, refunds and currency transfers over USD/EUR/CNY/JPY
balances, with an append-only ledger and a daily balance history.

Usage:
```python
from core.balance import BalanceEngine, ExchangeRateProvider, KeyedLockRegistry

provider = ExchangeRateProvider(rate_source, store)
engine = BalanceEngine(store, gateway, provider, KeyedLockRegistry())

await engine.deposit("user-1", "USD", "100.00", "USD", "tok_abc")
state = await engine.get_state("user-1")
state.total_usd  # Decimal("100.00")
```
"""

from core.balance.aggregate import total_balance_usd
from core.balance.engine import BalanceEngine, book_reconciliation, check_ledger
from core.balance.errors import (
    BalanceError,
    ConcurrencyConflict,
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
    HistoricalBalancePoint,
    LedgerCheck,
    PaymentIntent,
    RateSnapshot,
    ReconciliationRecord,
    Transaction,
    TransactionFilter,
    TransferResult,
)
from core.balance.rates import ExchangeRateProvider, apply_fixed_rates, convert

__all__ = [
    # Engine
    "BalanceEngine",
    "ExchangeRateProvider",
    "KeyedLockRegistry",
    # Models
    "Balance",
    "BalanceResult",
    "BalanceState",
    "HistoricalBalancePoint",
    "LedgerCheck",
    "PaymentIntent",
    "RateSnapshot",
    "ReconciliationRecord",
    "Transaction",
    "TransactionFilter",
    "TransferResult",
    # Functions
    "apply_fixed_rates",
    "book_reconciliation",
    "check_ledger",
    "convert",
    "fill_daily_series",
    "next_point",
    "replay_ledger",
    "total_balance_usd",
    # Errors
    "BalanceError",
    "ConcurrencyConflict",
    "DuplicateReferenceError",
    "InsufficientBalanceError",
    "MissingReferenceError",
    "PartialFailure",
    "PaymentError",
    "RateFetchError",
    "RefundLimitExceededError",
    "ValidationError",
]
