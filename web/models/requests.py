"""
Request schemas (Pydantic)

Amounts travel as strings ("100.00") and are parsed to Decimal by the
engine, which rejects non-positive or over-precise values.
"""

from pydantic import BaseModel, Field


class DepositRequest(BaseModel):
    """Deposit after a confirmed card payment"""

    currency: str = Field(..., description="Balance currency to credit (USD/EUR/CNY/JPY)")
    amount: str = Field(..., description="Amount to credit")
    payment_currency: str = Field(..., description="Currency the card was charged in (incl. BRL)")
    payment_token: str | None = Field(default=None, description="Confirmed PaymentIntent id")
    description: str | None = Field(default=None, description="Ledger description")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "currency": "USD",
                    "amount": "100.00",
                    "payment_currency": "USD",
                    "payment_token": "pi_3Nabc",
                }
            ]
        }
    }


class WithdrawRequest(BaseModel):
    """Payout from a balance"""

    currency: str = Field(..., description="Balance currency")
    amount: str = Field(..., description="Amount to pay out")
    description: str | None = Field(default=None, description="Ledger description")


class RefundRequest(BaseModel):
    """Refund against an earlier transaction"""

    transaction_id: str | None = Field(default=None, description="Original transaction id")
    amount: str = Field(..., description="Amount to refund")
    currency: str = Field(..., description="Currency of the original transaction")
    payment_reference: str | None = Field(
        default=None,
        description="Payment reference of the original charge",
    )
    description: str | None = Field(default=None, description="Ledger description")


class TransferRequest(BaseModel):
    """Currency conversion between two balances"""

    from_currency: str = Field(..., description="Source currency")
    to_currency: str = Field(..., description="Target currency")
    amount: str = Field(..., description="Amount taken from the source balance")
    description: str | None = Field(default=None, description="Ledger description")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"from_currency": "USD", "to_currency": "CNY", "amount": "100.00"}
            ]
        }
    }


class PaymentIntentRequest(BaseModel):
    """Create a payment authorization for a deposit"""

    amount: str = Field(..., description="Amount to charge")
    currency: str = Field(..., description="Payment currency (USD/EUR/CNY/JPY/BRL)")
