"""API request/response schemas for deposit and wallet endpoints."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class DepositCreateRequest(BaseModel):
    """Deposit payload; range checks happen in the service with domain errors."""

    amount: Decimal
    currency: str = ""


class DepositResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ok: bool = True
    transaction_id: str
    order_id: str
    status: str
    base_amount: Decimal
    fee_amount: Decimal
    total_amount: Decimal
    price_currency: str
    pay_currency: str
    pay_address: str | None = None
    pay_amount: Decimal | None = None
    confirmations_required: int | None = None
    external_payment_id: str | None = None
    expires_at: str | None = None


class FeeQuote(BaseModel):
    ok: bool = True
    currency: str
    base_amount: Decimal
    fee_amount: Decimal
    total_amount: Decimal
    description: str


class WalletEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_id: str
    kind: str
    amount: Decimal
    balance_after: Decimal
    reference_id: str | None = None
    description: str = ""


class WalletView(BaseModel):
    ok: bool = True
    owner_id: str
    currency: str
    balance: Decimal
    entries: list[WalletEntry]
