"""
Stripe adapter

Payment intents, payouts and refunds over the Stripe REST API.
"""

from adapters.stripe.rest_client import StripeRestClient
from adapters.stripe.models import (
    from_minor_units,
    parse_payment_intent,
    to_minor_units,
)

__all__ = [
    "StripeRestClient",
    "from_minor_units",
    "parse_payment_intent",
    "to_minor_units",
]
