"""
Exchange rate source adapter

exchangerate-api.com v6 client.
"""

from adapters.exchangerate.rest_client import ExchangeRateApiClient, parse_latest_rates

__all__ = [
    "ExchangeRateApiClient",
    "parse_latest_rates",
]
