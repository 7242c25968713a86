"""Payment gateway webhook processing.

Authenticity is checked over the exact raw body before anything is parsed.
The status advance and the wallet credit commit in one DB transaction: the
payment row is locked, written under a `state_version` guard, and credits are
applied as the delta over what the row already records, so duplicate or
reordered deliveries never credit twice.

Once a callback is verified and parsed the gateway always gets a 200; internal
failures are logged and raised as `deposit.error` alerts instead.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select, update

from vpsdash.common.errors import NotFoundError, SignatureVerificationError, ValidationError
from vpsdash.common.logging import logger, resource_id_ctx
from vpsdash.common.metrics import wallet_credits_total, webhook_callbacks_total
from vpsdash.common.state_machine import (
    CREDIT_BEARING_STATUSES,
    PAYMENT_STATUS_RANK,
    is_advancing_payment_status,
    normalize_payment_status,
)
from vpsdash.services.gateway.client import PaymentGatewayClient
from vpsdash.services.payments.models import PaymentTransaction, Wallet
from vpsdash.services.payments.wallet import credit


@dataclass
class WebhookResult:
    status_code: int
    body: dict


@dataclass
class CallbackOutcome:
    transaction_id: str
    owner_id: str
    previous_status: str
    status: str
    status_updated: bool = False
    amount_credited: Decimal = Decimal("0")
    new_balance: Decimal | None = None

    def as_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "status_updated": self.status_updated,
            "amount_credited": str(self.amount_credited),
            "new_balance": None if self.new_balance is None else str(self.new_balance),
        }


def _amount(value) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return amount if amount.is_finite() else None


def paid_amount(payload: dict, status: str, base_amount: Decimal) -> Decimal:
    """Amount a callback entitles the wallet to, capped at the deposit's base amount.

    `finished` without any reported amount credits the full base amount.
    """

    reported = _amount(payload.get("outcome_amount"))
    if reported is None:
        reported = _amount(payload.get("actually_paid"))
    if reported is None:
        return base_amount if status == "finished" else Decimal("0")
    return max(Decimal("0"), min(reported, base_amount))


class CallbackProcessor:
    """Verifies gateway callbacks and applies them to deposits and wallets."""

    def __init__(self, session_factory, gateway: PaymentGatewayClient, notifier, service_name: str = "payments") -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.notifier = notifier
        self.service_name = service_name

    def _reject(self, outcome: str, error) -> WebhookResult:
        webhook_callbacks_total.labels(service=self.service_name, outcome=outcome).inc()
        logger.warning("webhook rejected outcome=%s error=%s", outcome, error.message)
        return WebhookResult(status_code=error.status_code, body=error.to_dict())

    async def handle_webhook(self, raw_body: bytes, signature: str | None) -> WebhookResult:
        if not signature:
            return self._reject("missing_signature", SignatureVerificationError("Missing signature"))
        if not self.gateway.verify_signature(raw_body, signature):
            return self._reject("invalid_signature", SignatureVerificationError("Invalid signature"))

        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            return self._reject("malformed", ValidationError("Invalid JSON payload"))
        if not isinstance(payload, dict):
            return self._reject("malformed", ValidationError("Invalid webhook data"))
        payment_id = payload.get("payment_id")
        raw_status = payload.get("payment_status")
        if payment_id in (None, "") or not isinstance(raw_status, str) or not raw_status.strip():
            return self._reject("malformed", ValidationError("Missing payment_id or payment_status"))

        payment_id = str(payment_id)
        status = normalize_payment_status(raw_status)
        order_id = str(payload["order_id"]) if payload.get("order_id") not in (None, "") else None
        resource_id_ctx.set(order_id or payment_id)
        processed: dict = {"payment_id": payment_id, "order_id": order_id, "payment_status": status}

        try:
            outcome = self.apply_callback(payload, payment_id, order_id, status)
        except Exception as exc:
            logger.exception("webhook processing failed payment_id=%s order_id=%s", payment_id, order_id)
            webhook_callbacks_total.labels(service=self.service_name, outcome="error").inc()
            processed["error"] = str(exc)
            await self.notifier.notify(
                "deposit.error",
                order_id or payment_id,
                {"payment_id": payment_id, "order_id": order_id, "payment_status": status, "error": str(exc)},
            )
            return WebhookResult(status_code=200, body={"status": "ok", "processed": processed})

        processed.update(outcome.as_dict())
        webhook_callbacks_total.labels(
            service=self.service_name, outcome="applied" if outcome.status_updated else "ignored"
        ).inc()
        if outcome.amount_credited > 0:
            event_type = "deposit.partial" if status == "partially_paid" else "deposit.credited"
            await self.notifier.notify(
                event_type,
                order_id or payment_id,
                {
                    "owner_id": outcome.owner_id,
                    "transaction_id": outcome.transaction_id,
                    "payment_id": payment_id,
                    "order_id": order_id,
                    "payment_status": status,
                    "amount_credited": str(outcome.amount_credited),
                    "new_balance": str(outcome.new_balance),
                    "pay_currency": payload.get("pay_currency"),
                    "actually_paid": payload.get("actually_paid"),
                },
            )
        return WebhookResult(status_code=200, body={"status": "ok", "processed": processed})

    def _locate(self, db, payment_id: str, order_id: str | None) -> PaymentTransaction | None:
        if order_id:
            transaction = db.execute(
                select(PaymentTransaction).where(PaymentTransaction.order_id == order_id).with_for_update()
            ).scalar_one_or_none()
            if transaction is not None:
                return transaction
        return db.execute(
            select(PaymentTransaction).where(PaymentTransaction.external_payment_id == payment_id).with_for_update()
        ).scalar_one_or_none()

    def apply_callback(self, payload: dict, payment_id: str, order_id: str | None, status: str) -> CallbackOutcome:
        """Advance status and credit the wallet in one DB transaction."""

        if status not in PAYMENT_STATUS_RANK:
            logger.warning("unknown payment status ignored payment_id=%s status=%s", payment_id, status)

        with self.session_factory() as db:
            transaction = self._locate(db, payment_id, order_id)
            if transaction is None:
                raise NotFoundError(f"No deposit for order_id={order_id} payment_id={payment_id}")

            current = transaction.status
            outcome = CallbackOutcome(
                transaction_id=transaction.transaction_id,
                owner_id=transaction.owner_id,
                previous_status=current,
                status=current,
            )
            advancing = is_advancing_payment_status(current, status)
            # A repeated partial payment may report a larger paid amount.
            topping_up = status == current == "partially_paid"
            if not advancing and not topping_up:
                logger.info(
                    "stale or duplicate callback ignored transaction_id=%s current=%s reported=%s",
                    transaction.transaction_id,
                    current,
                    status,
                )
                return outcome

            base_amount = Decimal(str(transaction.base_amount))
            already_credited = Decimal(str(transaction.credited_amount or 0))
            delta = Decimal("0")
            if status in CREDIT_BEARING_STATUSES:
                delta = paid_amount(payload, status, base_amount) - already_credited
            if not advancing and delta <= 0:
                return outcome

            current_version = transaction.state_version
            values = {
                "status": status,
                "state_version": current_version + 1,
                "last_callback": payload,
                "updated_at": datetime.now(timezone.utc),
            }
            if delta > 0:
                values["credited_amount"] = already_credited + delta
            if not transaction.external_payment_id:
                values["external_payment_id"] = payment_id
            result = db.execute(
                update(PaymentTransaction)
                .where(
                    PaymentTransaction.transaction_id == transaction.transaction_id,
                    PaymentTransaction.status == current,
                    PaymentTransaction.state_version == current_version,
                )
                .values(**values)
            )
            if result.rowcount != 1:
                raise RuntimeError(
                    f"optimistic concurrency conflict for deposit {transaction.transaction_id} "
                    f"(expected version {current_version})"
                )

            if delta > 0:
                wallet = db.execute(
                    select(Wallet).where(Wallet.wallet_id == transaction.wallet_id).with_for_update()
                ).scalar_one()
                credit(
                    db,
                    wallet,
                    delta,
                    reference_id=transaction.transaction_id,
                    description=f"Crypto deposit {transaction.order_id} ({status})",
                )
                outcome.amount_credited = delta
                outcome.new_balance = wallet.balance
                wallet_credits_total.labels(
                    service=self.service_name, kind="partial" if status == "partially_paid" else "full"
                ).inc()
            db.commit()

            outcome.status = status
            outcome.status_updated = True
            logger.info(
                "deposit callback applied transaction_id=%s %s->%s credited=%s",
                transaction.transaction_id,
                current,
                status,
                outcome.amount_credited,
            )
            return outcome
