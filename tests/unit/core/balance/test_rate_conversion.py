"""
core/balance/rates.py and aggregate.py tests

Conversion orientation, the CNY peg and the USD total
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from core.balance.aggregate import total_balance_usd
from core.balance.errors import RateFetchError
from core.balance.models import Balance, RateSnapshot
from core.balance.rates import FIXED_RATES, apply_fixed_rates, convert
from core.types import Currency, RateSnapshotSource

NOW = datetime(2026, 10, 19, tzinfo=timezone.utc)


@pytest.fixture
def snapshot() -> RateSnapshot:
    """Market rates with the CNY peg applied"""
    raw = RateSnapshot(
        base="USD",
        rates={
            "USD": Decimal("1"),
            "EUR": Decimal("0.92"),
            "CNY": Decimal("7.24"),
            "JPY": Decimal("150"),
        },
        updated_at=NOW,
    )
    return apply_fixed_rates(raw)


class TestApplyFixedRates:
    def test_cny_pegged(self, snapshot: RateSnapshot) -> None:
        assert snapshot.rate(Currency.CNY) == Decimal("0.013")

    def test_other_rates_untouched(self, snapshot: RateSnapshot) -> None:
        assert snapshot.rate(Currency.EUR) == Decimal("0.92")

    def test_added_when_missing(self) -> None:
        raw = RateSnapshot(base="USD", rates={}, updated_at=NOW, source=RateSnapshotSource.CACHE)

        pegged = apply_fixed_rates(raw)

        assert pegged.rates == FIXED_RATES
        assert pegged.source == RateSnapshotSource.CACHE
        assert raw.rates == {}


class TestConvert:
    """convert = amount * rate[to] / rate[from]"""

    def test_usd_to_cny(self, snapshot: RateSnapshot) -> None:
        assert convert(Decimal("100.00"), Currency.USD, Currency.CNY, snapshot) == Decimal("1.30")

    def test_cny_to_usd(self, snapshot: RateSnapshot) -> None:
        assert convert(Decimal("1.30"), Currency.CNY, Currency.USD, snapshot) == Decimal("100.00")

    def test_usd_to_eur(self, snapshot: RateSnapshot) -> None:
        assert convert(Decimal("50.00"), Currency.USD, Currency.EUR, snapshot) == Decimal("46.00")

    def test_eur_to_jpy_cross(self, snapshot: RateSnapshot) -> None:
        # 92 EUR = 100 USD = 15000 JPY
        assert convert(Decimal("92.00"), Currency.EUR, Currency.JPY, snapshot) == Decimal("15000.00")

    def test_rounds_half_up(self, snapshot: RateSnapshot) -> None:
        # 0.50 * 0.013 = 0.0065 -> 0.01
        assert convert(Decimal("0.50"), Currency.USD, Currency.CNY, snapshot) == Decimal("0.01")

    def test_string_codes(self, snapshot: RateSnapshot) -> None:
        assert convert(Decimal("100.00"), "USD", "BRL", _with_brl(snapshot)) == Decimal("500.00")

    def test_missing_rate(self, snapshot: RateSnapshot) -> None:
        with pytest.raises(RateFetchError):
            convert(Decimal("1.00"), "USD", "GBP", snapshot)


def _with_brl(snapshot: RateSnapshot) -> RateSnapshot:
    rates = dict(snapshot.rates)
    rates["BRL"] = Decimal("5")
    return RateSnapshot(base=snapshot.base, rates=rates, updated_at=snapshot.updated_at)


class TestTotalBalanceUsd:
    """total_balance_usd"""

    def test_sum(self, snapshot: RateSnapshot) -> None:
        balances = [
            Balance("user-1", Currency.USD, Decimal("100.00")),
            Balance("user-1", Currency.CNY, Decimal("1.30")),
            Balance("user-1", Currency.EUR, Decimal("46.00")),
        ]

        assert total_balance_usd(balances, snapshot) == Decimal("250.00")

    def test_empty(self, snapshot: RateSnapshot) -> None:
        assert total_balance_usd([], snapshot) == Decimal("0.00")

    def test_zero_balance_needs_no_rate(self) -> None:
        snapshot = RateSnapshot(base="USD", rates={}, updated_at=NOW)
        balances = [Balance("user-1", Currency.JPY, Decimal("0.00"))]

        assert total_balance_usd(balances, snapshot) == Decimal("0.00")

    def test_missing_rate_for_held_currency(self) -> None:
        snapshot = RateSnapshot(base="USD", rates={}, updated_at=NOW)
        balances = [Balance("user-1", Currency.JPY, Decimal("10.00"))]

        with pytest.raises(RateFetchError):
            total_balance_usd(balances, snapshot)
