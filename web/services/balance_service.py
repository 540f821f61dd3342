"""
Balance service

Thin layer between the HTTP routes and the BalanceEngine: parses query
values and turns engine results into response dicts.
"""

import logging
from typing import Any

from core.balance import BalanceEngine, TransactionFilter
from core.balance.engine import parse_amount, parse_payment_currency
from core.balance.errors import ValidationError
from core.constants import CURRENCY_INFO, Defaults
from core.types import Currency, TRACKED_CURRENCIES, TransactionStatus, TransactionType

logger = logging.getLogger(__name__)


def _parse_enum(enum_cls: Any, value: str | None, field: str) -> Any:
    """Query value -> Enum member (currency codes upper, others lower)"""
    if value is None:
        return None
    normalized = value.strip().upper() if enum_cls is Currency else value.strip().lower()
    try:
        return enum_cls(normalized)
    except ValueError as e:
        valid = [m.value for m in enum_cls]
        raise ValidationError(f"Invalid {field}: '{value}'. Valid: {valid}", field=field) from e


class BalanceService:
    """Balance API service

    Args:
        engine: BalanceEngine bound to the request's DB session
    """

    def __init__(self, engine: BalanceEngine):
        self.engine = engine

    async def get_state(
        self,
        user_id: str,
        days: int = Defaults.HISTORY_DAYS,
        limit: int = Defaults.TRANSACTION_LIMIT,
    ) -> dict[str, Any]:
        state = await self.engine.get_state(user_id, days=days, limit=limit)
        return state.to_dict()

    async def deposit(
        self,
        user_id: str,
        currency: str,
        amount: str,
        payment_currency: str,
        payment_token: str | None,
        description: str | None = None,
    ) -> dict[str, Any]:
        result = await self.engine.deposit(
            user_id,
            currency,
            amount,
            payment_currency,
            payment_token,
            description=description,
        )
        return result.to_dict()

    async def withdraw(
        self,
        user_id: str,
        currency: str,
        amount: str,
        description: str | None = None,
    ) -> dict[str, Any]:
        result = await self.engine.withdraw(user_id, currency, amount, description=description)
        return result.to_dict()

    async def refund(
        self,
        user_id: str,
        transaction_id: str | None,
        amount: str,
        currency: str,
        payment_reference: str | None,
        description: str | None = None,
    ) -> dict[str, Any]:
        result = await self.engine.refund(
            user_id,
            transaction_id,
            amount,
            currency,
            payment_reference,
            description=description,
        )
        return result.to_dict()

    async def transfer(
        self,
        user_id: str,
        from_currency: str,
        to_currency: str,
        amount: str,
        description: str | None = None,
    ) -> dict[str, Any]:
        result = await self.engine.transfer(
            user_id, from_currency, to_currency, amount, description=description
        )
        return result.to_dict()

    async def list_transactions(
        self,
        user_id: str,
        transaction_type: str | None = None,
        status: str | None = None,
        currency: str | None = None,
        limit: int = Defaults.TRANSACTION_LIMIT,
        offset: int = 0,
    ) -> dict[str, Any]:
        filters = TransactionFilter(
            type=_parse_enum(TransactionType, transaction_type, "type"),
            status=_parse_enum(TransactionStatus, status, "status"),
            currency=_parse_enum(Currency, currency, "currency"),
            limit=limit,
            offset=offset,
        )
        transactions = await self.engine.list_transactions(user_id, filters)
        return {
            "transactions": [tx.to_dict() for tx in transactions],
            "total": len(transactions),
            "limit": limit,
            "offset": offset,
        }

    async def get_rates(self) -> dict[str, Any]:
        """Current rates of the balance currencies"""
        snapshot = await self.engine.rate_provider.get_rates()
        return snapshot.to_dict([c.value for c in TRACKED_CURRENCIES])

    async def list_reconciliation(self, user_id: str, resolved: bool | None = False) -> dict[str, Any]:
        records = await self.engine.store.list_reconciliation(resolved=resolved, user_id=user_id)
        return {
            "records": [r.to_dict() for r in records],
            "count": len(records),
        }

    async def create_payment_intent(self, user_id: str, amount: str, currency: str) -> dict[str, Any]:
        """Payment authorization the card form confirms before a deposit"""
        parsed_amount = parse_amount(amount)
        payment_currency = parse_payment_currency(currency, field="currency")

        intent = await self.engine.gateway.authorize_payment(parsed_amount, payment_currency)
        logger.info(
            f"Payment intent for {user_id}: {intent.id} "
            f"{CURRENCY_INFO[payment_currency.value]['symbol']}{intent.amount}",
            extra={"user_id": user_id, "payment_intent_id": intent.id},
        )
        return intent.to_dict()
