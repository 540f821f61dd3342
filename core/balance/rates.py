"""
Exchange rate provider

Serves rates relative to USD from the store-backed cache, refreshing from
the rate source when the cached snapshot is older than the TTL.

Orientation: rate[X] = units of X per 1 USD. Used the same way for deposit
charge amounts, transfers and the USD aggregate.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Callable

from core.balance.errors import RateFetchError
from core.balance.models import RateSnapshot
from core.constants import Defaults, RateDefaults
from core.types import Currency, RateSnapshotSource
from core.utils.money import quantize_amount
from core.utils.timezone import now_utc

if TYPE_CHECKING:
    from adapters.interfaces import IBalanceStore, IRateSource

logger = logging.getLogger(__name__)


# Business-fixed rates, applied on every snapshot handed out
FIXED_RATES: dict[str, Decimal] = {
    Currency.CNY.value: RateDefaults.CNY_FIXED_RATE,
}


def apply_fixed_rates(snapshot: RateSnapshot) -> RateSnapshot:
    """Override pegged currencies (CNY = 0.013 per USD)

    Cached and fetched rates are stored as the source returned them; the
    peg is applied here, where rates leave the provider.
    """
    rates = dict(snapshot.rates)
    rates.update(FIXED_RATES)
    return replace(snapshot, rates=rates)


def convert(
    amount: Decimal,
    from_currency: Enum | str,
    to_currency: Enum | str,
    snapshot: RateSnapshot,
) -> Decimal:
    """Convert an amount between currencies

    amount * rate[to] / rate[from], rounded half-up to 2 places.

    Example:
        >>> convert(Decimal("100.00"), Currency.USD, Currency.CNY, snapshot)
        Decimal('1.30')

    Raises:
        RateFetchError: a rate is missing from the snapshot
    """
    rate_from = snapshot.rate(from_currency)
    rate_to = snapshot.rate(to_currency)
    return quantize_amount(amount * rate_to / rate_from)


class ExchangeRateProvider:
    """Cached exchange rates

    Args:
        source: rate source (exchangerate-api client or mock)
        store: balance store (holds the rate cache)
        cache_ttl_sec: cached snapshots younger than this are served as is
        max_stale_sec: oldest cached snapshot accepted when the source fails
        now: clock (injectable for tests)
        refresh_lock: lock serializing source refreshes; pass one shared
            lock when providers are built per request

    Usage:
    ```python
    provider = ExchangeRateProvider(source, store)
    snapshot = await provider.get_rates()
    snapshot.rate(Currency.CNY)  # Decimal("0.013")
    ```
    """

    def __init__(
        self,
        source: "IRateSource",
        store: "IBalanceStore",
        cache_ttl_sec: int = RateDefaults.CACHE_TTL_SEC,
        max_stale_sec: int = RateDefaults.MAX_STALE_SEC,
        now: Callable[[], datetime] = now_utc,
        refresh_lock: asyncio.Lock | None = None,
    ):
        self.source = source
        self.store = store
        self.cache_ttl_sec = cache_ttl_sec
        self.max_stale_sec = max_stale_sec
        self._now = now

        # one refresh at a time among providers sharing the lock; waiters
        # re-read the cache
        self._refresh_lock = refresh_lock if refresh_lock is not None else asyncio.Lock()

    def _is_fresh(self, snapshot: RateSnapshot | None, now: datetime) -> bool:
        return snapshot is not None and snapshot.age_seconds(now) < self.cache_ttl_sec

    async def get_rates(self, base: str = Defaults.BASE_CURRENCY) -> RateSnapshot:
        """Current rates relative to `base`

        Returns:
            RateSnapshot with the CNY peg applied; source is cache, fresh
            or stale

        Raises:
            RateFetchError: source failed and no usable cached snapshot
        """
        now = self._now()
        cached = await self.store.get_cached_rates(base)
        if self._is_fresh(cached, now):
            return apply_fixed_rates(replace(cached, source=RateSnapshotSource.CACHE))

        async with self._refresh_lock:
            # another caller may have refreshed while we waited
            cached = await self.store.get_cached_rates(base)
            if self._is_fresh(cached, now):
                return apply_fixed_rates(replace(cached, source=RateSnapshotSource.CACHE))

            try:
                rates, source_ts = await self.source.fetch_rates(base)
            except RateFetchError as e:
                if cached is not None and cached.age_seconds(now) < self.max_stale_sec:
                    logger.warning(
                        f"Rate source failed, serving cached {base} rates: {e}",
                        extra={"base": base, "age_sec": cached.age_seconds(now)},
                    )
                    return apply_fixed_rates(replace(cached, source=RateSnapshotSource.STALE))
                logger.error(
                    f"Rate source failed and no usable cache for {base}: {e}",
                    extra={"base": base},
                )
                raise

            snapshot = RateSnapshot(
                base=base,
                rates={code: rate for code, rate in rates.items() if rate > 0},
                updated_at=now,
                source=RateSnapshotSource.FRESH,
            )
            await self.store.upsert_cached_rates(snapshot)

        logger.info(
            f"Exchange rates refreshed: base={base}, {len(snapshot.rates)} currencies",
            extra={"base": base, "source_ts": source_ts.isoformat()},
        )
        return apply_fixed_rates(snapshot)
