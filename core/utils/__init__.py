"""
Utilities package

Idempotency keys, money rounding, timezone handling
"""

from core.utils.timezone import (
    now_utc,
    ensure_utc,
    utc_day,
    to_iso,
    parse_iso,
    utc_from_timestamp,
)
from core.utils.money import to_decimal, quantize_amount, format_amount

__all__ = [
    "now_utc",
    "ensure_utc",
    "utc_day",
    "to_iso",
    "parse_iso",
    "utc_from_timestamp",
    "to_decimal",
    "quantize_amount",
    "format_amount",
]
