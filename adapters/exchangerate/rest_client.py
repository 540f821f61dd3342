"""
exchangerate-api.com client

GET {base_url}/{api_key}/latest/{base}
IRateSource Protocol.
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from core.balance.errors import RateFetchError
from core.constants import RateDefaults
from core.utils.timezone import now_utc, utc_from_timestamp

logger = logging.getLogger(__name__)


def parse_latest_rates(data: Any, base: str) -> tuple[dict[str, Decimal], datetime]:
    """exchangerate-api v6 "latest" response -> (rates, timestamp)

    Response example:
    {
        "result": "success",
        "base_code": "USD",
        "time_last_update_unix": 1760832001,
        "conversion_rates": {"USD": 1, "EUR": 0.8571, "CNY": 7.1234, "JPY": 150.52}
    }

    Error example:
    {"result": "error", "error-type": "invalid-key"}

    Raises:
        RateFetchError: error result or malformed payload
    """
    if not isinstance(data, dict):
        raise RateFetchError("Rate source returned a non-object payload", base_currency=base)

    if data.get("result") != "success":
        error_type = data.get("error-type", "unknown")
        raise RateFetchError(f"Rate source error: {error_type}", base_currency=base)

    raw = data.get("conversion_rates")
    if not isinstance(raw, dict) or not raw:
        raise RateFetchError("Rate source response has no conversion_rates", base_currency=base)

    rates: dict[str, Decimal] = {}
    for code, value in raw.items():
        try:
            rate = Decimal(str(value))
        except InvalidOperation:
            logger.warning(f"Skipping unparseable rate {code}={value!r}")
            continue
        if rate.is_finite() and rate > 0:
            rates[code.upper()] = rate

    rates[base] = Decimal("1")

    ts = data.get("time_last_update_unix")
    timestamp = utc_from_timestamp(ts) if isinstance(ts, (int, float)) else now_utc()
    return rates, timestamp


class ExchangeRateApiClient:
    """exchangerate-api.com v6 client

    Args:
        base_url: API base URL (https://v6.exchangerate-api.com/v6)
        api_key: API key
        timeout: request timeout (seconds)
        max_retries: retries after the first attempt (timeouts and
            transport errors only)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = RateDefaults.REQUEST_TIMEOUT_SEC,
        max_retries: int = 1,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries

        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """HTTP client (lazy initialization)"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch_rates(self, base: str) -> tuple[dict[str, Decimal], datetime]:
        """Latest rates relative to `base`

        Returns:
            (rates, source timestamp); rates[X] = units of X per 1 base

        Raises:
            RateFetchError: HTTP error, timeout or error payload
        """
        base = base.upper()
        url = f"{self.base_url}/{self.api_key}/latest/{base}"
        client = await self._get_client()
        attempts = 1 + self.max_retries

        for attempt in range(attempts):
            is_last = attempt == attempts - 1
            try:
                response = await client.get(url)
            except httpx.TimeoutException as e:
                logger.warning(
                    "Rate source timeout",
                    extra={"base": base, "attempt": attempt + 1},
                )
                if not is_last:
                    await asyncio.sleep(1 * (attempt + 1))
                    continue
                raise RateFetchError(f"Rate source timeout for {base}", base_currency=base) from e
            except httpx.RequestError as e:
                logger.error(
                    "Rate source request error",
                    extra={"base": base, "error": str(e), "attempt": attempt + 1},
                )
                if not is_last:
                    await asyncio.sleep(1 * (attempt + 1))
                    continue
                raise RateFetchError(f"Rate source unreachable: {e}", base_currency=base) from e

            if response.status_code >= 400:
                # error bodies still carry "error-type"
                try:
                    body = response.json()
                except ValueError:
                    body = None
                error_type = body.get("error-type") if isinstance(body, dict) else None
                raise RateFetchError(
                    f"Rate source HTTP {response.status_code}: {error_type or response.text}",
                    base_currency=base,
                )

            try:
                body = response.json()
            except ValueError as e:
                raise RateFetchError("Rate source returned invalid JSON", base_currency=base) from e

            return parse_latest_rates(body, base)

        raise RateFetchError("All retries failed", base_currency=base)
