"""Deposits, wallet and payment gateway webhook API.

The webhook route reads the raw body itself: the signature covers the exact
bytes the gateway sent, so the payload must not be re-serialized first.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from vpsdash.common.config import settings
from vpsdash.common.db import SessionLocal
from vpsdash.common.errors import register_error_handlers
from vpsdash.common.identity import Caller, get_caller, require_admin
from vpsdash.common.logging import configure_logging
from vpsdash.common.metrics import install_http_metrics, metrics_response
from vpsdash.common.startup import log_startup_config
from vpsdash.common.tracing import instrument_app, setup_tracing
from vpsdash.services.gateway.client import PaymentGatewayClient
from vpsdash.services.payments.callbacks import CallbackProcessor
from vpsdash.services.payments.notifier import DepositNotifier
from vpsdash.services.payments.schemas import (
    DepositCreateRequest,
    DepositResponse,
    FeeQuote,
    WalletEntry,
    WalletView,
)
from vpsdash.services.payments.service import DepositService

SIGNATURE_HEADER = "x-nowpayments-sig"

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "POSTGRES_DSN",
        "KAFKA_BOOTSTRAP_SERVERS",
        "GATEWAY_BASE_URL",
        "GATEWAY_API_KEY",
        "GATEWAY_IPN_SECRET",
        "GATEWAY_CALLBACK_URL",
        "MIN_DEPOSIT_AMOUNT",
        "MAX_DEPOSIT_AMOUNT",
    ],
)
gateway = PaymentGatewayClient()
notifier = DepositNotifier()
deposits = DepositService(SessionLocal, gateway)
callbacks = CallbackProcessor(SessionLocal, gateway, notifier)


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await notifier.close()


app = FastAPI(title="vpsdash Payments", lifespan=lifespan)
instrument_app(app)
install_http_metrics(app, settings.service_name)
register_error_handlers(app)


@app.post("/deposits", response_model=DepositResponse)
async def create_deposit(req: DepositCreateRequest, caller: Caller = Depends(get_caller)):
    """Create a crypto payment for `amount` (USD) plus the currency's fee."""

    transaction = await deposits.create_deposit(caller.user_id, req.amount, req.currency)
    return DepositResponse.model_validate(transaction)


@app.get("/deposits/quote", response_model=FeeQuote)
def quote(amount: str, currency: str, caller: Caller = Depends(get_caller)):
    return FeeQuote(**deposits.quote(caller.user_id, amount, currency))


@app.get("/deposits/currencies")
async def currencies(caller: Caller = Depends(get_caller)):
    del caller
    return {"ok": True, "currencies": await deposits.list_currencies()}


@app.get("/deposits/{order_id}")
async def deposit_status(order_id: str, caller: Caller = Depends(get_caller)):
    """Local deposit state with the gateway's current view (read-only)."""

    return {"ok": True, **(await deposits.payment_status(caller.user_id, order_id))}


@app.post("/deposits/callback")
async def payment_callback(request: Request):
    """Gateway IPN endpoint."""

    raw_body = await request.body()
    result = await callbacks.handle_webhook(raw_body, request.headers.get(SIGNATURE_HEADER))
    return JSONResponse(status_code=result.status_code, content=result.body)


@app.get("/wallet", response_model=WalletView)
def wallet(limit: int = 50, caller: Caller = Depends(get_caller)):
    view = deposits.wallet_view(caller.user_id, limit=limit)
    return WalletView(
        owner_id=view["owner_id"],
        currency=view["currency"],
        balance=view["balance"],
        entries=[WalletEntry.model_validate(e) for e in view["entries"]],
    )


@app.get("/admin/wallets/reconciliation")
def wallet_reconciliation(limit: int = 1000, caller: Caller = Depends(get_caller)):
    """Wallets whose balance differs from the sum of their journal."""

    require_admin(caller)
    return {"ok": True, **deposits.reconciliation_report(limit=limit)}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health check endpoint."""

    return {"ok": True}
