"""Payment and wallet persistence models.

Payment transactions and wallet journal rows are append-only financial
records; balances move only together with a journal row.
"""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from vpsdash.common.db import Base, JSONType


MONEY = Numeric(18, 8)


class Wallet(Base):
    """One balance per user per currency."""

    __tablename__ = "wallets"
    __table_args__ = (UniqueConstraint("owner_id", "currency", name="uq_wallet_owner_currency"),)

    wallet_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    owner_id: Mapped[str] = mapped_column(String, index=True)
    currency: Mapped[str] = mapped_column(String(16))
    balance: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class WalletTransaction(Base):
    """Journal row for one balance change (deposit, charge, refund)."""

    __tablename__ = "wallet_transactions"

    entry_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    wallet_id: Mapped[str] = mapped_column(ForeignKey("wallets.wallet_id"), index=True)
    owner_id: Mapped[str] = mapped_column(String, index=True)
    kind: Mapped[str] = mapped_column(String)
    amount: Mapped[Decimal] = mapped_column(MONEY)
    balance_after: Mapped[Decimal] = mapped_column(MONEY)
    reference_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    description: Mapped[str] = mapped_column(String, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class PaymentTransaction(Base):
    """One crypto deposit attempt correlated with the gateway by `order_id`."""

    __tablename__ = "payment_transactions"

    transaction_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    order_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    owner_id: Mapped[str] = mapped_column(String, index=True)
    wallet_id: Mapped[str] = mapped_column(ForeignKey("wallets.wallet_id"), index=True)
    base_amount: Mapped[Decimal] = mapped_column(MONEY)
    fee_amount: Mapped[Decimal] = mapped_column(MONEY)
    total_amount: Mapped[Decimal] = mapped_column(MONEY)
    price_currency: Mapped[str] = mapped_column(String(16))
    pay_currency: Mapped[str] = mapped_column(String(32))
    pay_address: Mapped[str | None] = mapped_column(String, nullable=True)
    pay_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    status: Mapped[str] = mapped_column(String, index=True)
    confirmations_required: Mapped[int | None] = mapped_column(Integer, nullable=True)
    external_payment_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    credited_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    state_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_callback: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    expires_at: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
