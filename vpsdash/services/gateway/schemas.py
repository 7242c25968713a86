"""Typed views of crypto payment gateway objects."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, field_validator


class CreatePaymentRequest(BaseModel):
    price_amount: Decimal
    price_currency: str
    pay_currency: str
    ipn_callback_url: str
    order_id: str
    order_description: str | None = None


class GatewayPayment(BaseModel):
    """Payment object as returned by create / status endpoints."""

    model_config = ConfigDict(extra="ignore")

    payment_id: str
    payment_status: str
    pay_address: str | None = None
    pay_amount: Decimal | None = None
    pay_currency: str | None = None
    price_amount: Decimal | None = None
    price_currency: str | None = None
    order_id: str | None = None
    network: str | None = None
    expiration_estimate_date: str | None = None
    confirmations_required: int | None = None
    actually_paid: Decimal | None = None
    outcome_amount: Decimal | None = None
    outcome_currency: str | None = None

    @field_validator("payment_id", "order_id", mode="before")
    @classmethod
    def _ids_as_str(cls, value):
        # The gateway sends numeric ids.
        return None if value is None else str(value)


class GatewayCurrency(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str
    name: str = ""
    network: str | None = None
    enable: bool = True
    available_for_payment: bool = True
    is_popular: bool = False
    is_stable: bool = False
    priority: int = 0
    logo_url: str | None = None
