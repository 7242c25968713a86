"""Deposit creation and wallet queries.

Deposits are validated before the gateway is contacted and persisted only
after the gateway accepted the payment, so a rejected request leaves no row.
"""

import re
from decimal import Decimal, InvalidOperation
from uuid import uuid4

from sqlalchemy import select

from vpsdash.common.config import settings
from vpsdash.common.errors import NotFoundError, PersistenceFailed, ValidationError
from vpsdash.common.logging import logger, resource_id_ctx
from vpsdash.common.metrics import deposits_created_total
from vpsdash.common.state_machine import normalize_payment_status
from vpsdash.services.gateway.client import PaymentGatewayClient
from vpsdash.services.gateway.schemas import CreatePaymentRequest
from vpsdash.services.payments.fees import CENT, compute_fee, describe_fee
from vpsdash.services.payments.models import PaymentTransaction, WalletTransaction
from vpsdash.services.payments.wallet import get_or_create_wallet, reconcile_wallets, wallet_balance


CURRENCY_CODE_RE = re.compile(r"^[a-z0-9_]{2,32}$")


class DepositService:
    """Owns PaymentTransaction creation and read-side wallet views."""

    def __init__(self, session_factory, gateway: PaymentGatewayClient, service_name: str = "payments") -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.service_name = service_name

    def _validate(self, owner_id: str, amount, currency: str | None) -> tuple[Decimal, str]:
        if not owner_id:
            raise ValidationError("User id is required")
        if amount is None or amount == "":
            raise ValidationError("Amount is required")
        try:
            base_amount = Decimal(str(amount))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError("Amount must be a number") from exc
        if not base_amount.is_finite() or base_amount <= 0:
            raise ValidationError("Amount must be a positive number")
        if base_amount < settings.min_deposit_amount:
            raise ValidationError(f"Minimum deposit amount is ${settings.min_deposit_amount}")
        if base_amount > settings.max_deposit_amount:
            raise ValidationError(f"Maximum deposit amount is ${settings.max_deposit_amount}")
        code = (currency or "").strip().lower()
        if not code:
            raise ValidationError("Currency is required")
        if not CURRENCY_CODE_RE.match(code):
            raise ValidationError(f"Unsupported currency code {currency}")
        return base_amount.quantize(CENT), code

    def quote(self, owner_id: str, amount, currency: str | None) -> dict:
        base_amount, code = self._validate(owner_id, amount, currency)
        fee = compute_fee(code, base_amount)
        return {
            "currency": code,
            "base_amount": base_amount,
            "fee_amount": fee,
            "total_amount": base_amount + fee,
            "description": describe_fee(code),
        }

    async def create_deposit(self, owner_id: str, amount, currency: str | None) -> PaymentTransaction:
        """Create a gateway payment for `amount` plus fee and record it."""

        base_amount, code = self._validate(owner_id, amount, currency)
        fee = compute_fee(code, base_amount)
        total = base_amount + fee

        with self.session_factory() as db:
            wallet_id = get_or_create_wallet(db, owner_id).wallet_id
            db.commit()

        order_id = f"dep_{uuid4().hex}"
        resource_id_ctx.set(order_id)
        payment = await self.gateway.create_payment(
            CreatePaymentRequest(
                price_amount=total,
                price_currency=settings.wallet_currency,
                pay_currency=code,
                ipn_callback_url=settings.gateway_callback_url,
                order_id=order_id,
                order_description=f"Wallet deposit of {base_amount} {settings.wallet_currency.upper()}",
            )
        )

        transaction = PaymentTransaction(
            order_id=order_id,
            owner_id=owner_id,
            wallet_id=wallet_id,
            base_amount=base_amount,
            fee_amount=fee,
            total_amount=total,
            price_currency=settings.wallet_currency,
            pay_currency=(payment.pay_currency or code).lower(),
            pay_address=payment.pay_address,
            pay_amount=payment.pay_amount,
            status=normalize_payment_status(payment.payment_status or "waiting"),
            confirmations_required=payment.confirmations_required,
            external_payment_id=payment.payment_id,
            credited_amount=Decimal("0"),
            state_version=0,
            expires_at=payment.expiration_estimate_date,
        )
        try:
            with self.session_factory() as db:
                db.add(transaction)
                db.commit()
        except Exception as exc:
            logger.exception(
                "deposit persist failed order_id=%s external_payment_id=%s", order_id, payment.payment_id
            )
            raise PersistenceFailed(
                f"Payment {payment.payment_id} was created but could not be saved",
                details={"order_id": order_id, "external_payment_id": payment.payment_id},
            ) from exc

        deposits_created_total.labels(service=self.service_name, currency=code).inc()
        logger.info(
            "deposit created order_id=%s owner_id=%s base=%s fee=%s total=%s currency=%s",
            order_id,
            owner_id,
            base_amount,
            fee,
            total,
            code,
        )
        return transaction

    def get_transaction(self, owner_id: str, order_id: str) -> PaymentTransaction:
        with self.session_factory() as db:
            transaction = db.execute(
                select(PaymentTransaction).where(
                    PaymentTransaction.order_id == order_id,
                    PaymentTransaction.owner_id == owner_id,
                )
            ).scalar_one_or_none()
        if transaction is None:
            raise NotFoundError("Deposit not found")
        return transaction

    async def payment_status(self, owner_id: str, order_id: str) -> dict:
        """Local state plus the gateway's live view; never mutates the row."""

        transaction = self.get_transaction(owner_id, order_id)
        result = {
            "order_id": transaction.order_id,
            "status": transaction.status,
            "credited_amount": transaction.credited_amount,
            "gateway_status": None,
        }
        if transaction.external_payment_id:
            remote = await self.gateway.get_payment_status(transaction.external_payment_id)
            result["gateway_status"] = normalize_payment_status(remote.payment_status)
            result["actually_paid"] = remote.actually_paid
        return result

    async def list_currencies(self) -> list[dict]:
        currencies = await self.gateway.list_currencies()
        return [
            {
                "code": c.code,
                "name": c.name,
                "network": c.network,
                "is_popular": c.is_popular,
                "is_stable": c.is_stable,
                "logo_url": c.logo_url,
                "fee": describe_fee(c.code),
            }
            for c in currencies
        ]

    def wallet_view(self, owner_id: str, limit: int = 50) -> dict:
        if not owner_id:
            raise ValidationError("User id is required")
        with self.session_factory() as db:
            balance = wallet_balance(db, owner_id)
            entries = db.execute(
                select(WalletTransaction)
                .where(WalletTransaction.owner_id == owner_id)
                .order_by(WalletTransaction.created_at.desc())
                .limit(limit)
            ).scalars().all()
        return {
            "owner_id": owner_id,
            "currency": settings.wallet_currency,
            "balance": balance,
            "entries": entries,
        }

    def reconciliation_report(self, limit: int = 1000) -> dict:
        with self.session_factory() as db:
            return reconcile_wallets(db, limit=limit)
