"""
Mock rate source

Fixed, adjustable rates for tests and local runs.
IRateSource Protocol.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from core.balance.errors import RateFetchError
from core.utils.timezone import now_utc


def default_rates() -> dict[str, Decimal]:
    """Units per 1 USD"""
    return {
        "USD": Decimal("1"),
        "EUR": Decimal("0.92"),
        "CNY": Decimal("7.24"),
        "JPY": Decimal("150"),
        "BRL": Decimal("5.00"),
    }


@dataclass
class MockRateState:
    rates: dict[str, Decimal] = field(default_factory=default_rates)
    timestamp: datetime | None = None
    should_fail: bool = False
    fetch_count: int = 0


class MockRateSource:
    """Mock exchange rate source

    Usage:
    ```python
    source = MockRateSource()
    source.set_rate("EUR", Decimal("0.90"))
    source.fail()  # next fetches raise RateFetchError
    ```
    """

    def __init__(self, state: MockRateState | None = None):
        self.state = state or MockRateState()

    def set_rate(self, currency: str, rate: Decimal) -> None:
        self.state.rates[currency] = rate

    def fail(self, should_fail: bool = True) -> None:
        self.state.should_fail = should_fail

    async def fetch_rates(self, base: str) -> tuple[dict[str, Decimal], datetime]:
        self.state.fetch_count += 1
        if self.state.should_fail:
            raise RateFetchError("Mock rate source failure", base_currency=base)

        if base not in self.state.rates:
            raise RateFetchError(f"Mock has no rates for base {base}", base_currency=base)

        # rebase so rates[base] == 1
        base_rate = self.state.rates[base]
        rates = {code: rate / base_rate for code, rate in self.state.rates.items()}
        return rates, self.state.timestamp or now_utc()
