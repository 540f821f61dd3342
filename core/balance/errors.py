"""
Balance engine errors

Two families:
- raised before any external call or mutation (ValidationError,
  InsufficientBalanceError, RateFetchError, PaymentError, ConcurrencyConflict):
  nothing happened, safe to retry.
- PartialFailure: an external effect happened but local bookkeeping did not.
  Carries the external reference for reconciliation.
"""

from decimal import Decimal


class BalanceError(Exception):
    """Base class for balance engine errors"""

    pass


class ValidationError(BalanceError):
    """Malformed input (non-positive amount, same-currency transfer, ...)"""

    def __init__(self, message: str, field: str | None = None):
        self.message = message
        self.field = field
        super().__init__(message)


class MissingReferenceError(ValidationError):
    """A required external reference was not supplied"""

    def __init__(self, field: str):
        super().__init__(f"Missing required reference: {field}", field=field)


class DuplicateReferenceError(ValidationError):
    """External reference already consumed by a recorded transaction

    Retrying a deposit with the same payment token lands here.
    """

    def __init__(self, field: str, reference: str, transaction_id: str):
        self.reference = reference
        self.transaction_id = transaction_id
        super().__init__(
            f"{field} '{reference}' already recorded as {transaction_id}",
            field=field,
        )


class RefundLimitExceededError(ValidationError):
    """Cumulative refunds would exceed the original transaction amount"""

    def __init__(self, transaction_id: str, requested: Decimal, refundable: Decimal):
        self.transaction_id = transaction_id
        self.requested = requested
        self.refundable = refundable
        super().__init__(
            f"Refund of {requested} exceeds refundable {refundable} for {transaction_id}",
            field="amount",
        )


class InsufficientBalanceError(BalanceError):
    """Withdrawal/transfer exceeds the available balance"""

    def __init__(self, currency: str, available: Decimal, requested: Decimal):
        self.currency = currency
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient {currency} balance: available {available}, requested {requested}"
        )


class RateFetchError(BalanceError):
    """Exchange rate source unreachable or returned an invalid response"""

    def __init__(self, message: str, base_currency: str | None = None):
        self.message = message
        self.base_currency = base_currency
        super().__init__(message)


class PaymentError(BalanceError):
    """Payment processor rejected or failed an authorization/payout/refund"""

    def __init__(
        self,
        message: str,
        reference: str | None = None,
        code: str | None = None,
    ):
        self.message = message
        self.reference = reference
        self.code = code
        super().__init__(message)


class PartialFailure(BalanceError):
    """External call succeeded but the local balance/ledger update failed

    Never retried automatically. The reference doubles as the idempotency
    key for a safe manual retry.
    """

    def __init__(
        self,
        operation: str,
        reference: str,
        message: str,
        reconciliation_id: int | None = None,
    ):
        self.operation = operation
        self.reference = reference
        self.message = message
        self.reconciliation_id = reconciliation_id
        super().__init__(f"{operation} {reference}: {message}")


class ConcurrencyConflict(BalanceError):
    """Balance changed between read and write; retry from a fresh read"""

    def __init__(self, user_id: str, currency: str):
        self.user_id = user_id
        self.currency = currency
        super().__init__(f"Concurrent update on {user_id}/{currency}")
