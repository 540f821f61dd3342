"""
Balance API router

One endpoint per engine operation: read state, deposit, withdraw, refund,
transfer, plus transaction history, rates and the reconciliation queue.
The acting user comes from the X-User-Id header.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from core.balance import BalanceEngine
from core.balance.errors import (
    BalanceError,
    ConcurrencyConflict,
    InsufficientBalanceError,
    PartialFailure,
    PaymentError,
    RateFetchError,
    ValidationError,
)
from core.constants import Defaults
from web.dependencies import get_balance_engine, get_current_user_id
from web.models.requests import DepositRequest, RefundRequest, TransferRequest, WithdrawRequest
from web.models.responses import (
    BalanceMutationResponse,
    BalanceStateResponse,
    RatesResponse,
    ReconciliationListResponse,
    TransactionListResponse,
    TransferMutationResponse,
)
from web.services.balance_service import BalanceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/balance", tags=["Balance"])


# =========================================================================
# Error mapping
# =========================================================================


def to_http_exception(error: BalanceError) -> HTTPException:
    """Engine error -> HTTPException with a JSON detail

    Validation 400, payment 402, insufficient balance / concurrency 409,
    partial failure 502, rates unavailable 503.
    """
    detail: dict[str, Any] = {"error": type(error).__name__, "message": str(error)}

    if isinstance(error, ValidationError):
        detail["field"] = error.field
        return HTTPException(status_code=400, detail=detail)

    if isinstance(error, InsufficientBalanceError):
        detail.update(
            currency=error.currency,
            available=str(error.available),
            requested=str(error.requested),
        )
        return HTTPException(status_code=409, detail=detail)

    if isinstance(error, ConcurrencyConflict):
        detail["currency"] = error.currency
        return HTTPException(status_code=409, detail=detail)

    if isinstance(error, PaymentError):
        detail.update(reference=error.reference, code=error.code)
        return HTTPException(status_code=402, detail=detail)

    if isinstance(error, RateFetchError):
        return HTTPException(status_code=503, detail=detail)

    if isinstance(error, PartialFailure):
        detail.update(
            operation=error.operation,
            reference=error.reference,
            reconciliation_id=error.reconciliation_id,
        )
        return HTTPException(status_code=502, detail=detail)

    return HTTPException(status_code=500, detail=detail)


# =========================================================================
# Read state
# =========================================================================


@router.get("", response_model=BalanceStateResponse)
async def get_balance_state(
    days: int = Query(Defaults.HISTORY_DAYS, ge=1, le=366, description="History window (days)"),
    limit: int = Query(Defaults.TRANSACTION_LIMIT, ge=1, le=500, description="Recent transactions"),
    user_id: str = Depends(get_current_user_id),
    engine: BalanceEngine = Depends(get_balance_engine),
) -> dict[str, Any]:
    """Balances, rates, recent transactions, daily history and USD total"""
    try:
        return await BalanceService(engine).get_state(user_id, days=days, limit=limit)
    except BalanceError as e:
        raise to_http_exception(e) from e


# =========================================================================
# Mutations
# =========================================================================


@router.post("/deposit", response_model=BalanceMutationResponse)
async def deposit(
    request: DepositRequest,
    user_id: str = Depends(get_current_user_id),
    engine: BalanceEngine = Depends(get_balance_engine),
) -> dict[str, Any]:
    """Credit a balance with a confirmed payment

    The payment token is consumed once; a replay answers 400.
    """
    try:
        return await BalanceService(engine).deposit(
            user_id,
            currency=request.currency,
            amount=request.amount,
            payment_currency=request.payment_currency,
            payment_token=request.payment_token,
            description=request.description,
        )
    except BalanceError as e:
        raise to_http_exception(e) from e


@router.post("/withdraw", response_model=BalanceMutationResponse)
async def withdraw(
    request: WithdrawRequest,
    user_id: str = Depends(get_current_user_id),
    engine: BalanceEngine = Depends(get_balance_engine),
) -> dict[str, Any]:
    """Pay out from a balance"""
    try:
        return await BalanceService(engine).withdraw(
            user_id,
            currency=request.currency,
            amount=request.amount,
            description=request.description,
        )
    except BalanceError as e:
        raise to_http_exception(e) from e


@router.post("/refund", response_model=BalanceMutationResponse)
async def refund(
    request: RefundRequest,
    user_id: str = Depends(get_current_user_id),
    engine: BalanceEngine = Depends(get_balance_engine),
) -> dict[str, Any]:
    """Refund against an earlier transaction"""
    try:
        return await BalanceService(engine).refund(
            user_id,
            transaction_id=request.transaction_id,
            amount=request.amount,
            currency=request.currency,
            payment_reference=request.payment_reference,
            description=request.description,
        )
    except BalanceError as e:
        raise to_http_exception(e) from e


@router.post("/transfer", response_model=TransferMutationResponse)
async def transfer(
    request: TransferRequest,
    user_id: str = Depends(get_current_user_id),
    engine: BalanceEngine = Depends(get_balance_engine),
) -> dict[str, Any]:
    """Convert between two balances at the current rate"""
    try:
        return await BalanceService(engine).transfer(
            user_id,
            from_currency=request.from_currency,
            to_currency=request.to_currency,
            amount=request.amount,
            description=request.description,
        )
    except BalanceError as e:
        raise to_http_exception(e) from e


# =========================================================================
# Queries
# =========================================================================


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    transaction_type: str | None = Query(None, alias="type", description="deposit/withdrawal/transfer/refund"),
    status: str | None = Query(None, description="completed/pending/failed"),
    currency: str | None = Query(None, description="Currency (either leg of a transfer)"),
    limit: int = Query(Defaults.TRANSACTION_LIMIT, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    engine: BalanceEngine = Depends(get_balance_engine),
) -> dict[str, Any]:
    """Transaction history, newest first"""
    try:
        return await BalanceService(engine).list_transactions(
            user_id,
            transaction_type=transaction_type,
            status=status,
            currency=currency,
            limit=limit,
            offset=offset,
        )
    except BalanceError as e:
        raise to_http_exception(e) from e


@router.get("/rates", response_model=RatesResponse)
async def get_rates(
    engine: BalanceEngine = Depends(get_balance_engine),
) -> dict[str, Any]:
    """Exchange rates of the balance currencies (units per 1 USD)"""
    try:
        return await BalanceService(engine).get_rates()
    except BalanceError as e:
        raise to_http_exception(e) from e


@router.get("/reconciliation", response_model=ReconciliationListResponse)
async def list_reconciliation(
    resolved: bool | None = Query(False, description="Filter by resolution (omit for unresolved)"),
    user_id: str = Depends(get_current_user_id),
    engine: BalanceEngine = Depends(get_balance_engine),
) -> dict[str, Any]:
    """Operations that reached the processor but were not booked"""
    return await BalanceService(engine).list_reconciliation(user_id, resolved=resolved)
