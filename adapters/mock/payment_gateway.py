"""
Mock payment gateway

In-memory payment processor for tests and local runs.
IPaymentGateway Protocol.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from core.balance.errors import PaymentError
from core.balance.models import PaymentIntent


def _code(currency: Enum | str) -> str:
    return (currency.value if isinstance(currency, Enum) else str(currency)).upper()


@dataclass
class MockPaymentState:
    """Mock state (in memory)"""

    # created intents (id -> PaymentIntent)
    intents: dict[str, PaymentIntent] = field(default_factory=dict)

    # tokens that confirm as failed; every other token succeeds
    declined_tokens: set[str] = field(default_factory=set)

    # issued payouts / refunds (id -> details)
    payouts: dict[str, dict[str, Any]] = field(default_factory=dict)
    refunds: dict[str, dict[str, Any]] = field(default_factory=dict)

    # idempotency key -> result id
    idempotency: dict[str, str] = field(default_factory=dict)

    # failure simulation
    should_fail_next_payout: bool = False
    should_fail_next_refund: bool = False
    should_fail_confirm: bool = False
    next_error_code: str = "mock_error"
    next_error_message: str = "Mock payment error"

    # call log: (method, args)
    calls: list[tuple[str, tuple[Any, ...]]] = field(default_factory=list)

    counter: int = 0


class MockPaymentGateway:
    """Mock payment processor

    Usage:
    ```python
    gateway = MockPaymentGateway()

    gateway.decline("tok_bad")
    await gateway.confirm_payment("tok_bad")  # False

    gateway.fail_next_payout("insufficient_funds")
    await gateway.request_payout(Decimal("10"), "USD")  # PaymentError
    ```
    """

    def __init__(self, state: MockPaymentState | None = None):
        self.state = state or MockPaymentState()

    # -------------------------------------------------------------------------
    # State manipulation (tests)
    # -------------------------------------------------------------------------

    def decline(self, token: str) -> None:
        self.state.declined_tokens.add(token)

    def fail_next_payout(self, code: str = "mock_error", message: str = "Mock payout failure") -> None:
        self.state.should_fail_next_payout = True
        self.state.next_error_code = code
        self.state.next_error_message = message

    def fail_next_refund(self, code: str = "mock_error", message: str = "Mock refund failure") -> None:
        self.state.should_fail_next_refund = True
        self.state.next_error_code = code
        self.state.next_error_message = message

    def call_count(self, method: str) -> int:
        return sum(1 for name, _ in self.state.calls if name == method)

    def _next_id(self, prefix: str) -> str:
        self.state.counter += 1
        return f"{prefix}_mock_{self.state.counter:06d}"

    def _raise_next(self, reference: str | None = None) -> None:
        raise PaymentError(
            self.state.next_error_message,
            reference=reference,
            code=self.state.next_error_code,
        )

    # -------------------------------------------------------------------------
    # IPaymentGateway
    # -------------------------------------------------------------------------

    async def authorize_payment(
        self,
        amount: Decimal,
        currency: Enum | str,
        idempotency_key: str | None = None,
    ) -> PaymentIntent:
        self.state.calls.append(("authorize_payment", (amount, _code(currency))))

        if idempotency_key and idempotency_key in self.state.idempotency:
            return self.state.intents[self.state.idempotency[idempotency_key]]

        intent_id = self._next_id("pi")
        intent = PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret",
            amount=amount,
            currency=_code(currency),
            status="requires_payment_method",
        )
        self.state.intents[intent_id] = intent
        if idempotency_key:
            self.state.idempotency[idempotency_key] = intent_id
        return intent

    async def confirm_payment(
        self,
        reference: str,
        payment_method: str | None = None,
    ) -> bool:
        self.state.calls.append(("confirm_payment", (reference, payment_method)))

        if self.state.should_fail_confirm:
            self._raise_next(reference)
        return reference not in self.state.declined_tokens

    async def request_payout(
        self,
        amount: Decimal,
        currency: Enum | str,
        idempotency_key: str | None = None,
    ) -> str:
        self.state.calls.append(("request_payout", (amount, _code(currency))))

        if self.state.should_fail_next_payout:
            self.state.should_fail_next_payout = False
            self._raise_next()

        if idempotency_key and idempotency_key in self.state.idempotency:
            return self.state.idempotency[idempotency_key]

        payout_id = self._next_id("po")
        self.state.payouts[payout_id] = {"amount": amount, "currency": _code(currency)}
        if idempotency_key:
            self.state.idempotency[idempotency_key] = payout_id
        return payout_id

    async def request_refund(
        self,
        reference: str,
        amount: Decimal,
        currency: Enum | str,
        idempotency_key: str | None = None,
    ) -> str:
        self.state.calls.append(("request_refund", (reference, amount, _code(currency))))

        if self.state.should_fail_next_refund:
            self.state.should_fail_next_refund = False
            self._raise_next(reference)

        if idempotency_key and idempotency_key in self.state.idempotency:
            return self.state.idempotency[idempotency_key]

        refund_id = self._next_id("re")
        self.state.refunds[refund_id] = {
            "reference": reference,
            "amount": amount,
            "currency": _code(currency),
        }
        if idempotency_key:
            self.state.idempotency[idempotency_key] = refund_id
        return refund_id
