"""
Adapter interfaces

Protocols so the engine can be wired to real adapters or mocks.
Every implementation must satisfy these Protocols.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, AsyncContextManager, Protocol, runtime_checkable

from core.types import Currency, TransactionType

if TYPE_CHECKING:
    from core.balance.models import (
        Balance,
        HistoricalBalancePoint,
        PaymentIntent,
        RateSnapshot,
        ReconciliationRecord,
        Transaction,
        TransactionFilter,
    )


@runtime_checkable
class IBalanceStore(Protocol):
    """Persistence contract of the balance engine

    Balance, ledger and history writes are only made inside
    `unit_of_work()`; they commit or roll back together.
    Amounts are Decimal.
    """

    # -------------------------------------------------------------------------
    # Balances
    # -------------------------------------------------------------------------

    async def get_balance(self, user_id: str, currency: Currency) -> "Balance | None":
        """Balance row or None if never created"""
        ...

    async def list_balances(self, user_id: str) -> list["Balance"]:
        """All balance rows of a user"""
        ...

    async def list_user_ids(self) -> list[str]:
        """Users with at least one balance row"""
        ...

    async def update_balance(
        self,
        user_id: str,
        currency: Currency,
        new_amount: Decimal,
        expected: Decimal,
        updated_at: datetime,
    ) -> "Balance":
        """Compare-and-swap a balance

        Args:
            expected: amount read before the update (a missing row counts
                as zero and is created)

        Raises:
            ConcurrencyConflict: stored amount differs from `expected`
        """
        ...

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------

    async def append_transaction(self, transaction: "Transaction") -> "Transaction":
        """Append to the ledger, assigning an id if absent

        Raises:
            DuplicateReferenceError: deposit payment token already recorded
        """
        ...

    async def finalize_transaction(self, transaction: "Transaction") -> "Transaction":
        """Complete or fail a pending entry (pending rows only)"""
        ...

    async def get_transaction(self, user_id: str, transaction_id: str) -> "Transaction | None":
        ...

    async def find_transaction_by_reference(
        self,
        field: str,
        reference: str,
        type: TransactionType | None = None,
    ) -> "Transaction | None":
        """Transaction carrying an external reference

        Args:
            field: payment_intent_id, payout_id or refund_id
            type: restrict to one transaction type
        """
        ...

    async def list_transactions(
        self,
        user_id: str,
        filters: "TransactionFilter | None" = None,
    ) -> list["Transaction"]:
        """Ledger entries, newest first"""
        ...

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    async def get_historical_points(
        self,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list["HistoricalBalancePoint"]:
        """Stored points in date order"""
        ...

    async def get_latest_historical_point(
        self,
        user_id: str,
        on_or_before: date | None = None,
    ) -> "HistoricalBalancePoint | None":
        ...

    async def upsert_historical_point(self, user_id: str, point: "HistoricalBalancePoint") -> None:
        """Insert, or replace the point of the same day"""
        ...

    # -------------------------------------------------------------------------
    # Rate cache
    # -------------------------------------------------------------------------

    async def get_cached_rates(self, base: str) -> "RateSnapshot | None":
        ...

    async def upsert_cached_rates(self, snapshot: "RateSnapshot") -> None:
        ...

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    async def queue_reconciliation(self, record: "ReconciliationRecord") -> "ReconciliationRecord":
        """Persist a partial failure, returning it with its id"""
        ...

    async def list_reconciliation(
        self,
        resolved: bool | None = False,
        user_id: str | None = None,
    ) -> list["ReconciliationRecord"]:
        ...

    async def get_reconciliation(self, record_id: int) -> "ReconciliationRecord | None":
        ...

    async def resolve_reconciliation(self, record_id: int) -> bool:
        """Mark a record resolved; False if unknown or already resolved"""
        ...

    def unit_of_work(self) -> AsyncContextManager[None]:
        """Atomic scope: commit on success, roll back on exception"""
        ...


@runtime_checkable
class IPaymentGateway(Protocol):
    """Payment processor

    Raises PaymentError on rejection, timeout or transport failure.
    """

    async def authorize_payment(
        self,
        amount: Decimal,
        currency: Enum | str,
        idempotency_key: str | None = None,
    ) -> "PaymentIntent":
        """Create a payment authorization the client confirms"""
        ...

    async def confirm_payment(
        self,
        reference: str,
        payment_method: str | None = None,
    ) -> bool:
        """True if the payment behind `reference` succeeded"""
        ...

    async def request_payout(
        self,
        amount: Decimal,
        currency: Enum | str,
        idempotency_key: str | None = None,
    ) -> str:
        """Issue a payout, returning the payout reference"""
        ...

    async def request_refund(
        self,
        reference: str,
        amount: Decimal,
        currency: Enum | str,
        idempotency_key: str | None = None,
    ) -> str:
        """Refund against a payment reference, returning the refund reference"""
        ...


@runtime_checkable
class IRateSource(Protocol):
    """Exchange rate source

    Raises RateFetchError on HTTP errors, timeouts or invalid payloads.
    """

    async def fetch_rates(self, base: str) -> tuple[dict[str, Decimal], datetime]:
        """Rates relative to `base` (units per 1 base) and their timestamp"""
        ...
