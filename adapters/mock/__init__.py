"""
Mock adapters

In-memory implementations for tests.
Protocol compliant, interchangeable with the real clients.
"""

from adapters.mock.payment_gateway import MockPaymentGateway, MockPaymentState
from adapters.mock.rate_source import MockRateSource, MockRateState

__all__ = [
    "MockPaymentGateway",
    "MockPaymentState",
    "MockRateSource",
    "MockRateState",
]
