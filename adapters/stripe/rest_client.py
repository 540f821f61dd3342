"""
Stripe REST API client

Payment collaborator of the balance engine: payment intents, payouts and
refunds. Form-encoded requests, bearer auth, Decimal amounts.
IPaymentGateway Protocol.
"""

import asyncio
import logging
from decimal import Decimal
from enum import Enum
from typing import Any

import httpx

from adapters.stripe.models import (
    currency_code,
    parse_error,
    parse_payment_intent,
    to_minor_units,
)
from core.balance.errors import PaymentError
from core.balance.models import PaymentIntent
from core.constants import PaymentDefaults

logger = logging.getLogger(__name__)


# HTTP statuses worth retrying (with an idempotency key)
RETRYABLE_STATUS = {409, 429, 500, 502, 503, 504}


class StripeRestClient:
    """Stripe REST API client

    IPaymentGateway Protocol implementation.
    POST requests are retried only when they carry an Idempotency-Key, so a
    retry can never create a second charge, payout or refund.

    Args:
        base_url: API base URL (https://api.stripe.com)
        secret_key: secret API key (sk_live_... / sk_test_...)
        connected_account: Stripe-Account header for Connect platforms
        timeout: request timeout (seconds)
        max_retries: retries after the first attempt
    """

    def __init__(
        self,
        base_url: str,
        secret_key: str,
        connected_account: str | None = None,
        timeout: float = PaymentDefaults.REQUEST_TIMEOUT_SEC,
        max_retries: int = PaymentDefaults.MAX_RETRIES,
    ):
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.connected_account = connected_account
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

    def _headers(self, idempotency_key: str | None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        if self.connected_account:
            headers["Stripe-Account"] = self.connected_account
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        data: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        reference: str | None = None,
    ) -> dict[str, Any]:
        """Execute an API request

        Args:
            method: GET or POST
            path: API path (e.g. /v1/payouts)
            data: form fields
            idempotency_key: Idempotency-Key header (enables POST retries)
            reference: reference id carried into PaymentError

        Returns:
            JSON response

        Raises:
            PaymentError: error response, timeout or transport failure
        """
        url = f"{self.base_url}{path}"
        headers = self._headers(idempotency_key)
        retryable = method == "GET" or idempotency_key is not None
        attempts = 1 + (self.max_retries if retryable else 0)
        client = await self._get_client()

        for attempt in range(attempts):
            is_last = attempt == attempts - 1
            try:
                response = await client.request(method, url, data=data, headers=headers)
            except httpx.TimeoutException as e:
                logger.warning(
                    "Stripe request timeout",
                    extra={"path": path, "attempt": attempt + 1},
                )
                if not is_last:
                    await asyncio.sleep(1 * (attempt + 1))
                    continue
                raise PaymentError(
                    f"Payment processor timeout: {path}",
                    reference=reference,
                    code="timeout",
                ) from e
            except httpx.RequestError as e:
                logger.error(
                    "Stripe request error",
                    extra={"path": path, "error": str(e), "attempt": attempt + 1},
                )
                if not is_last:
                    await asyncio.sleep(1 * (attempt + 1))
                    continue
                raise PaymentError(
                    f"Payment processor unreachable: {e}",
                    reference=reference,
                    code="network_error",
                ) from e

            if response.status_code in RETRYABLE_STATUS and not is_last:
                logger.warning(
                    f"Stripe returned {response.status_code}, retrying",
                    extra={"path": path, "attempt": attempt + 1},
                )
                await asyncio.sleep(1 * (attempt + 1))
                continue

            if response.status_code >= 400:
                try:
                    body = response.json()
                except ValueError:
                    body = None
                message, code = parse_error(body, response.text or f"HTTP {response.status_code}")
                logger.warning(
                    f"Stripe error {response.status_code}: {message}",
                    extra={"path": path, "code": code},
                )
                raise PaymentError(message, reference=reference, code=code or str(response.status_code))

            return response.json()

        # unreachable: the last attempt returns or raises
        raise PaymentError("All retries failed", reference=reference)

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    async def authorize_payment(
        self,
        amount: Decimal,
        currency: Enum | str,
        idempotency_key: str | None = None,
    ) -> PaymentIntent:
        """Create a PaymentIntent the client confirms with a card

        Returns:
            PaymentIntent carrying the client_secret for the browser
        """
        code = currency_code(currency)
        data = await self._request(
            "POST",
            "/v1/payment_intents",
            data={
                "amount": to_minor_units(amount, code),
                "currency": code.lower(),
                "automatic_payment_methods[enabled]": "true",
            },
            idempotency_key=idempotency_key,
        )
        intent = parse_payment_intent(data)
        logger.info(
            f"PaymentIntent created: {intent.id} {intent.amount} {intent.currency}",
            extra={"payment_intent_id": intent.id},
        )
        return intent

    async def confirm_payment(
        self,
        reference: str,
        payment_method: str | None = None,
    ) -> bool:
        """Check (and if needed confirm) a PaymentIntent

        Returns:
            True when the intent has succeeded
        """
        data = await self._request("GET", f"/v1/payment_intents/{reference}", reference=reference)
        status = data.get("status")

        if status == "requires_confirmation" and payment_method:
            data = await self._request(
                "POST",
                f"/v1/payment_intents/{reference}/confirm",
                data={"payment_method": payment_method},
                reference=reference,
            )
            status = data.get("status")

        logger.info(
            f"PaymentIntent {reference} status: {status}",
            extra={"payment_intent_id": reference},
        )
        return status == "succeeded"

    async def request_payout(
        self,
        amount: Decimal,
        currency: Enum | str,
        idempotency_key: str | None = None,
    ) -> str:
        """Create a payout to the account's bank

        Returns:
            Payout id (po_...)
        """
        code = currency_code(currency)
        data = await self._request(
            "POST",
            "/v1/payouts",
            data={
                "amount": to_minor_units(amount, code),
                "currency": code.lower(),
            },
            idempotency_key=idempotency_key,
        )
        payout_id = data["id"]
        logger.info(f"Payout created: {payout_id} {amount} {code}", extra={"payout_id": payout_id})
        return payout_id

    async def request_refund(
        self,
        reference: str,
        amount: Decimal,
        currency: Enum | str,
        idempotency_key: str | None = None,
    ) -> str:
        """Refund part of a PaymentIntent

        Returns:
            Refund id (re_...)
        """
        data = await self._request(
            "POST",
            "/v1/refunds",
            data={
                "payment_intent": reference,
                "amount": to_minor_units(amount, currency),
            },
            idempotency_key=idempotency_key,
            reference=reference,
        )
        refund_id = data["id"]
        logger.info(
            f"Refund created: {refund_id} for {reference}",
            extra={"refund_id": refund_id, "payment_intent_id": reference},
        )
        return refund_id
