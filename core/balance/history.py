"""
Historical balance series

Write side: one point per (user, UTC day), carried forward from the latest
known point with the mutated currencies replaced.
Read side: a gapless daily series for charts.
Audit: replaying completed ledger entries from zero.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Mapping

from core.balance.models import HistoricalBalancePoint, Transaction
from core.types import Currency, TRACKED_CURRENCIES
from core.utils.money import quantize_amount


def _zero_amounts() -> dict[Currency, Decimal]:
    return {currency: Decimal("0.00") for currency in TRACKED_CURRENCIES}


def next_point(
    previous: HistoricalBalancePoint | None,
    day: date,
    updates: Mapping[Currency, Decimal],
) -> HistoricalBalancePoint:
    """Point for `day` after a mutation

    Args:
        previous: latest point on or before `day` (None for a new user)
        day: UTC day of the mutation
        updates: post-mutation balances of the mutated currencies

    Returns:
        New point; currencies not in `updates` keep their previous values
    """
    amounts = _zero_amounts()
    if previous is not None:
        amounts.update(previous.amounts)
    for currency, amount in updates.items():
        amounts[currency] = quantize_amount(amount)
    return HistoricalBalancePoint(date=day, amounts=amounts)


def fill_daily_series(
    points: Iterable[HistoricalBalancePoint],
    start: date,
    end: date,
    seed: HistoricalBalancePoint | None = None,
) -> list[HistoricalBalancePoint]:
    """Gapless daily series from `start` to `end` (inclusive)

    Days without a point repeat the last known values; days before any
    known point are zero.

    Args:
        points: stored points (any order, may include days outside the range)
        start: first day
        end: last day
        seed: latest point before `start`, if any
    """
    if end < start:
        return []

    by_day = {point.date: point for point in points}
    current = dict(seed.amounts) if seed is not None else _zero_amounts()

    series = []
    day = start
    while day <= end:
        point = by_day.get(day)
        if point is not None:
            current = _zero_amounts()
            current.update(point.amounts)
        series.append(HistoricalBalancePoint(date=day, amounts=dict(current)))
        day += timedelta(days=1)
    return series


def replay_ledger(transactions: Iterable[Transaction]) -> dict[Currency, Decimal]:
    """Balances implied by the ledger

    Applies every completed transaction to a zero balance; pending and
    failed entries contribute nothing.
    """
    totals: dict[Currency, Decimal] = {}
    for tx in transactions:
        for currency, delta in tx.balance_deltas().items():
            totals[currency] = totals.get(currency, Decimal("0")) + delta
    return {currency: quantize_amount(amount) for currency, amount in totals.items()}
