"""
core/types.py tests

Every Enum serializes as a plain string; currency parsing is lenient on
case and whitespace.
"""

import pytest

from core.types import (
    Currency,
    PaymentCurrency,
    RateSnapshotSource,
    ReconciliationOperation,
    RunMode,
    TRACKED_CURRENCIES,
    TransactionStatus,
    TransactionType,
)


class TestRunMode:
    def test_values(self) -> None:
        assert RunMode.PRODUCTION.value == "production"
        assert RunMode.SANDBOX.value == "sandbox"

    def test_from_string(self) -> None:
        assert RunMode("sandbox") == RunMode.SANDBOX


class TestCurrency:
    """Currency"""

    def test_string_comparison(self) -> None:
        # str mixin
        assert Currency.USD == "USD"
        assert f"{Currency.CNY.value}" == "CNY"

    @pytest.mark.parametrize("raw", ["usd", " USD ", "Usd"])
    def test_parse_lenient(self, raw: str) -> None:
        assert Currency.parse(raw) == Currency.USD

    def test_parse_member(self) -> None:
        assert Currency.parse(Currency.JPY) is Currency.JPY

    def test_parse_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unsupported currency"):
            Currency.parse("GBP")

    def test_brl_not_holdable(self) -> None:
        with pytest.raises(ValueError):
            Currency.parse("BRL")


class TestPaymentCurrency:
    """PaymentCurrency"""

    def test_superset_of_currency(self) -> None:
        values = {c.value for c in PaymentCurrency}

        assert {c.value for c in Currency} <= values
        assert "BRL" in values

    def test_parse_brl(self) -> None:
        assert PaymentCurrency.parse("brl") == PaymentCurrency.BRL

    def test_parse_from_currency(self) -> None:
        assert PaymentCurrency.parse(Currency.EUR) == PaymentCurrency.EUR

    def test_parse_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unsupported payment currency"):
            PaymentCurrency.parse("XYZ")


class TestTrackedCurrencies:
    def test_order(self) -> None:
        assert [c.value for c in TRACKED_CURRENCIES] == ["USD", "EUR", "CNY", "JPY"]


class TestTransactionEnums:
    def test_types(self) -> None:
        assert {t.value for t in TransactionType} == {"deposit", "withdrawal", "transfer", "refund"}

    def test_final_status(self) -> None:
        assert TransactionStatus.COMPLETED.is_final
        assert TransactionStatus.FAILED.is_final
        assert not TransactionStatus.PENDING.is_final


class TestOtherEnums:
    def test_rate_snapshot_source(self) -> None:
        assert RateSnapshotSource("stale") == RateSnapshotSource.STALE

    def test_reconciliation_operation(self) -> None:
        assert ReconciliationOperation.WITHDRAWAL.value == "withdrawal"
