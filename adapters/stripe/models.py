"""
Stripe API responses -> domain models

Stripe amounts are integers in the currency's smallest unit; JPY has no
minor unit.
"""

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from core.balance.errors import PaymentError
from core.balance.models import PaymentIntent
from core.constants import PaymentDefaults


def currency_code(currency: Enum | str) -> str:
    """Upper-case ISO code of a currency Enum or string"""
    code = currency.value if isinstance(currency, Enum) else str(currency)
    return code.strip().upper()


def is_zero_decimal(currency: Enum | str) -> bool:
    return currency_code(currency) in PaymentDefaults.ZERO_DECIMAL_CURRENCIES


def to_minor_units(amount: Decimal, currency: Enum | str) -> int:
    """Decimal amount -> Stripe integer amount

    Example:
        >>> to_minor_units(Decimal("12.34"), "USD")
        1234
        >>> to_minor_units(Decimal("500"), "JPY")
        500

    Raises:
        PaymentError: fractional amount in a zero-decimal currency
    """
    if is_zero_decimal(currency):
        whole = amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        if whole != amount:
            raise PaymentError(
                f"{currency_code(currency)} amounts must be whole numbers, got {amount}",
                code="invalid_amount",
            )
        return int(whole)
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: int, currency: Enum | str) -> Decimal:
    """Stripe integer amount -> Decimal with two places"""
    if is_zero_decimal(currency):
        return Decimal(value).quantize(Decimal("0.01"))
    return (Decimal(value) / 100).quantize(Decimal("0.01"))


def parse_payment_intent(data: dict[str, Any]) -> PaymentIntent:
    """Stripe PaymentIntent -> PaymentIntent

    Stripe POST /v1/payment_intents response (abridged):
    {
        "id": "pi_3Nabc",
        "object": "payment_intent",
        "amount": 10000,
        "currency": "usd",
        "client_secret": "pi_3Nabc_secret_xyz",
        "status": "requires_payment_method"
    }
    """
    currency = data["currency"].upper()
    return PaymentIntent(
        id=data["id"],
        client_secret=data.get("client_secret"),
        amount=from_minor_units(int(data["amount"]), currency),
        currency=currency,
        status=data.get("status", "unknown"),
    )


def parse_error(data: Any, fallback: str) -> tuple[str, str | None]:
    """(message, code) from a Stripe error body

    {"error": {"type": "card_error", "code": "card_declined", "message": "..."}}
    """
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        error = data["error"]
        message = error.get("message") or fallback
        code = error.get("code") or error.get("decline_code") or error.get("type")
        return message, code
    return fallback, None
