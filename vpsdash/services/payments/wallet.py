"""Wallet journal posting.

Every balance change goes through `post_entry` so a wallet balance always
equals the sum of its signed journal amounts. Callers own the DB transaction.
"""

from decimal import Decimal

from sqlalchemy import func, select

from vpsdash.common.config import settings
from vpsdash.common.errors import InsufficientFunds, ValidationError
from vpsdash.common.logging import logger
from vpsdash.services.payments.models import Wallet, WalletTransaction


JOURNAL_KINDS = {"deposit", "charge", "refund"}
SCALE = Decimal("0.00000001")


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(SCALE)


def get_or_create_wallet(db, owner_id: str, currency: str | None = None, *, for_update: bool = False) -> Wallet:
    currency = (currency or settings.wallet_currency).lower()
    stmt = select(Wallet).where(Wallet.owner_id == owner_id, Wallet.currency == currency)
    if for_update:
        stmt = stmt.with_for_update()
    wallet = db.execute(stmt).scalar_one_or_none()
    if wallet is None:
        wallet = Wallet(owner_id=owner_id, currency=currency, balance=Decimal("0"))
        db.add(wallet)
        db.flush()
    return wallet


def post_entry(
    db,
    wallet: Wallet,
    kind: str,
    amount: Decimal,
    reference_id: str | None,
    description: str = "",
) -> WalletTransaction:
    """Apply a signed amount to `wallet` and append the matching journal row."""

    if kind not in JOURNAL_KINDS:
        raise ValueError(f"unknown wallet journal kind {kind}")
    wallet.balance = (wallet.balance or Decimal("0")) + amount
    entry = WalletTransaction(
        wallet_id=wallet.wallet_id,
        owner_id=wallet.owner_id,
        kind=kind,
        amount=amount,
        balance_after=wallet.balance,
        reference_id=reference_id,
        description=description,
    )
    db.add(entry)
    logger.info(
        "wallet_entry wallet_id=%s kind=%s amount=%s balance_after=%s reference_id=%s",
        wallet.wallet_id,
        kind,
        amount,
        wallet.balance,
        reference_id,
    )
    return entry


def credit(db, wallet: Wallet, amount: Decimal, reference_id: str | None, description: str = "") -> WalletTransaction:
    if amount <= 0:
        raise ValidationError("Credit amount must be positive")
    return post_entry(db, wallet, "deposit", amount, reference_id, description)


def charge(db, wallet: Wallet, amount: Decimal, reference_id: str | None, description: str = "") -> WalletTransaction:
    """Debit `amount`; never lets the balance go negative."""

    if amount <= 0:
        raise ValidationError("Charge amount must be positive")
    if (wallet.balance or Decimal("0")) < amount:
        raise InsufficientFunds(
            f"Insufficient balance: {amount} {wallet.currency.upper()} required",
            details={"balance": str(wallet.balance), "required": str(amount)},
        )
    return post_entry(db, wallet, "charge", -amount, reference_id, description)


def refund(db, wallet: Wallet, amount: Decimal, reference_id: str | None, description: str = "") -> WalletTransaction:
    if amount <= 0:
        raise ValidationError("Refund amount must be positive")
    return post_entry(db, wallet, "refund", amount, reference_id, description)


def wallet_balance(db, owner_id: str, currency: str | None = None) -> Decimal:
    currency = (currency or settings.wallet_currency).lower()
    balance = db.execute(
        select(Wallet.balance).where(Wallet.owner_id == owner_id, Wallet.currency == currency)
    ).scalar_one_or_none()
    return balance if balance is not None else Decimal("0")


def reconcile_wallets(db, limit: int = 1000) -> dict:
    """Compare each wallet balance with the sum of its journal."""

    journal_sums = (
        select(WalletTransaction.wallet_id, func.sum(WalletTransaction.amount).label("journal_total"))
        .group_by(WalletTransaction.wallet_id)
        .subquery()
    )
    rows = db.execute(
        select(Wallet.wallet_id, Wallet.owner_id, Wallet.currency, Wallet.balance, journal_sums.c.journal_total)
        .outerjoin(journal_sums, journal_sums.c.wallet_id == Wallet.wallet_id)
        .order_by(Wallet.wallet_id)
        .limit(limit)
    ).all()
    mismatched = []
    for row in rows:
        balance = _money(row.balance)
        journal_total = _money(row.journal_total)
        if balance != journal_total:
            mismatched.append(
                {
                    "wallet_id": row.wallet_id,
                    "owner_id": row.owner_id,
                    "currency": row.currency,
                    "balance": str(balance),
                    "journal_total": str(journal_total),
                }
            )
    return {
        "wallets_checked": len(rows),
        "mismatched_count": len(mismatched),
        "mismatched_wallets": mismatched,
    }
