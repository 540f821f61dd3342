"""
Web models package

Pydantic schemas
"""

from web.models.requests import (
    DepositRequest,
    PaymentIntentRequest,
    RefundRequest,
    TransferRequest,
    WithdrawRequest,
)
from web.models.responses import (
    BalanceMutationResponse,
    BalanceResponse,
    BalanceStateResponse,
    HealthResponse,
    HistoryPointResponse,
    PaymentIntentResponse,
    RatesResponse,
    ReconciliationListResponse,
    ReconciliationResponse,
    TransactionListResponse,
    TransactionResponse,
    TransferMutationResponse,
)

__all__ = [
    # Requests
    "DepositRequest",
    "PaymentIntentRequest",
    "RefundRequest",
    "TransferRequest",
    "WithdrawRequest",
    # Responses
    "BalanceMutationResponse",
    "BalanceResponse",
    "BalanceStateResponse",
    "HealthResponse",
    "HistoryPointResponse",
    "PaymentIntentResponse",
    "RatesResponse",
    "ReconciliationListResponse",
    "ReconciliationResponse",
    "TransactionListResponse",
    "TransactionResponse",
    "TransferMutationResponse",
]
