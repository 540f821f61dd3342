"""
Payments API router

POST /api/payments/intents - payment authorization for the deposit form
"""

from typing import Any

from fastapi import APIRouter, Depends

from core.balance import BalanceEngine
from core.balance.errors import BalanceError
from web.dependencies import get_balance_engine, get_current_user_id
from web.models.requests import PaymentIntentRequest
from web.models.responses import PaymentIntentResponse
from web.routes.balance import to_http_exception
from web.services.balance_service import BalanceService

router = APIRouter(prefix="/api/payments", tags=["Payments"])


@router.post("/intents", response_model=PaymentIntentResponse)
async def create_payment_intent(
    request: PaymentIntentRequest,
    user_id: str = Depends(get_current_user_id),
    engine: BalanceEngine = Depends(get_balance_engine),
) -> dict[str, Any]:
    """Create a payment intent

    The browser confirms it with the card; its id is then sent as the
    deposit's payment_token.
    """
    try:
        return await BalanceService(engine).create_payment_intent(
            user_id, amount=request.amount, currency=request.currency
        )
    except BalanceError as e:
        raise to_http_exception(e) from e
