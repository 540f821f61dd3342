"""
USD aggregate

Derived on read, never stored.
"""

from decimal import Decimal
from typing import Iterable

from core.balance.models import Balance, RateSnapshot
from core.utils.money import quantize_amount


def total_balance_usd(balances: Iterable[Balance], snapshot: RateSnapshot) -> Decimal:
    """Sum of all balances expressed in USD

    amount / rate[currency] per balance (rate = units per USD), rounded
    half-up to 2 places after summing.

    Example:
        >>> total_balance_usd([usd_100, cny_1_30], snapshot)  # CNY at 0.013
        Decimal('200.00')

    Raises:
        RateFetchError: a held currency has no rate in the snapshot
    """
    total = Decimal("0")
    for balance in balances:
        if balance.amount == 0:
            continue
        total += balance.amount / snapshot.rate(balance.currency)
    return quantize_amount(total)
