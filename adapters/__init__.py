"""
Adapter layer

Integrations with external services (payment processor, rate source, DB).
Protocol-based interfaces so mocks can be swapped in.
"""

from adapters.interfaces import (
    IBalanceStore,
    IPaymentGateway,
    IRateSource,
)

__all__ = [
    "IBalanceStore",
    "IPaymentGateway",
    "IRateSource",
]
