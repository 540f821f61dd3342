"""
Response schemas (Pydantic)

Web API response serialization. Amounts are fixed two-digit strings.
"""

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response"""

    status: str = Field(default="ok", description="Service status")
    mode: str = Field(..., description="Run mode (production/sandbox)")
    version: str = Field(..., description="API version")


class BalanceResponse(BaseModel):
    """Balance of one currency"""

    currency: str = Field(..., description="Currency code")
    amount: str = Field(..., description="Balance amount")
    last_updated: str | None = Field(default=None, description="Last mutation time (UTC)")


class TransactionResponse(BaseModel):
    """Ledger entry"""

    id: str = Field(..., description="Transaction id (tx-...)")
    type: str = Field(..., description="deposit/withdrawal/transfer/refund")
    amount: str = Field(..., description="Amount in `currency`")
    currency: str = Field(..., description="Currency")
    target_currency: str | None = Field(default=None, description="Transfer target currency")
    converted_amount: str | None = Field(default=None, description="Amount credited in target currency")
    date: str = Field(..., description="Transaction time (UTC)")
    status: str = Field(..., description="completed/pending/failed")
    description: str | None = Field(default=None, description="Description")
    payment_intent_id: str | None = Field(default=None, description="Payment reference")
    payout_id: str | None = Field(default=None, description="Payout reference")
    refund_id: str | None = Field(default=None, description="Refund reference")
    related_transaction_id: str | None = Field(default=None, description="Refunded transaction")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Audit details")


class HistoryPointResponse(BaseModel):
    """One day of the balance chart"""

    date: str = Field(..., description="UTC day (YYYY-MM-DD)")
    USD: str
    EUR: str
    CNY: str
    JPY: str


class RatesResponse(BaseModel):
    """Exchange rates (units per 1 base)"""

    base: str = Field(..., description="Base currency")
    rates: dict[str, str] = Field(..., description="Currency -> rate")
    updated_at: str = Field(..., description="Snapshot time (UTC)")
    source: str = Field(..., description="cache/fresh/stale")


class BalanceStateResponse(BaseModel):
    """Balance page state"""

    user_id: str
    balances: dict[str, BalanceResponse] = Field(..., description="Currency -> balance")
    transactions: list[TransactionResponse] = Field(default_factory=list, description="Newest first")
    history: list[HistoryPointResponse] = Field(default_factory=list, description="Daily series")
    exchange_rates: RatesResponse | None = Field(default=None, description="None if unavailable")
    total_usd: str | None = Field(default=None, description="USD equivalent of all balances")


class BalanceMutationResponse(BaseModel):
    """Deposit/withdraw/refund result"""

    balance: BalanceResponse
    transaction: TransactionResponse


class TransferMutationResponse(BaseModel):
    """Transfer result"""

    from_balance: BalanceResponse
    to_balance: BalanceResponse
    transaction: TransactionResponse
    rate: str = Field(..., description="Units of target per 1 unit of source")


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]
    total: int
    limit: int
    offset: int


class ReconciliationResponse(BaseModel):
    """External effect awaiting bookkeeping"""

    id: int | None
    operation: str
    user_id: str
    currency: str
    amount: str
    reference: str = Field(..., description="Payment/payout/refund reference")
    error: str
    created_at: str
    resolved: bool
    transaction_id: str | None = Field(None, description="Pending ledger entry the record completes")


class ReconciliationListResponse(BaseModel):
    records: list[ReconciliationResponse]
    count: int


class PaymentIntentResponse(BaseModel):
    """Payment authorization for the card form"""

    id: str
    client_secret: str | None
    amount: str
    currency: str
    status: str
