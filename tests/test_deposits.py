"""Deposit creation, status reads and wallet views."""

import asyncio
from decimal import Decimal

import pytest

from vpsdash.common.errors import GatewayError, NotFoundError, ValidationError
from vpsdash.services.payments.models import PaymentTransaction, Wallet
from vpsdash.services.payments.service import DepositService


@pytest.fixture
def deposits(session_factory, gateway):
    return DepositService(session_factory, gateway)


@pytest.mark.parametrize(
    "amount, currency",
    [
        ("19.99", "usdttrc20"),
        ("10000.01", "usdttrc20"),
        ("-5", "usdttrc20"),
        ("abc", "usdttrc20"),
        ("NaN", "usdttrc20"),
        ("50", ""),
        ("50", None),
        ("50", "btc; drop"),
    ],
)
def test_create_deposit_rejects_invalid_input_before_gateway(deposits, gateway, session_factory, amount, currency):
    with pytest.raises(ValidationError):
        asyncio.run(deposits.create_deposit("user-a", amount, currency))
    assert gateway.calls == []
    with session_factory() as db:
        assert db.query(PaymentTransaction).count() == 0


def test_create_deposit_persists_fee_and_gateway_details(deposits, gateway, session_factory):
    transaction = asyncio.run(deposits.create_deposit("user-a", Decimal("100"), "USDTTRC20"))

    request = gateway.calls[0][1]
    assert request.price_amount == Decimal("109.00")
    assert request.pay_currency == "usdttrc20"
    assert request.order_id == transaction.order_id
    assert transaction.order_id.startswith("dep_")

    with session_factory() as db:
        stored = db.query(PaymentTransaction).one()
        assert stored.fee_amount == Decimal("9.00")
        assert stored.total_amount == Decimal("109.00")
        assert stored.base_amount == Decimal("100.00")
        assert stored.status == "waiting"
        assert stored.external_payment_id == "5077125051"
        assert stored.pay_address == "TXYZaddress"
        assert stored.credited_amount == Decimal("0")
        assert db.query(Wallet).filter_by(owner_id="user-a").count() == 1


def test_create_deposit_gateway_failure_leaves_no_row(deposits, gateway, session_factory):
    gateway.failure = GatewayError("Payment gateway error: 400 bad currency", upstream_status=400)
    with pytest.raises(GatewayError):
        asyncio.run(deposits.create_deposit("user-a", "50", "btc"))
    with session_factory() as db:
        assert db.query(PaymentTransaction).count() == 0


def test_payment_status_reads_gateway_without_mutating(deposits, gateway, session_factory, make_deposit):
    make_deposit()
    gateway.remote_status = "partially_paid"
    result = asyncio.run(deposits.payment_status("user-a", "dep_1"))
    assert result["status"] == "waiting"
    assert result["gateway_status"] == "partially_paid"
    assert result["actually_paid"] == Decimal("50")
    with session_factory() as db:
        stored = db.query(PaymentTransaction).filter_by(order_id="dep_1").one()
        assert stored.status == "waiting"
        assert stored.credited_amount == Decimal("0")


def test_deposit_lookup_is_owner_scoped(deposits, make_deposit):
    make_deposit()
    with pytest.raises(NotFoundError):
        deposits.get_transaction("user-b", "dep_1")


def test_quote_matches_stored_fee(deposits):
    quote = deposits.quote("user-a", "250", "btc")
    assert quote["fee_amount"] == Decimal("15.00")
    assert quote["total_amount"] == Decimal("265.00")
    assert quote["description"] == "2.0% + $10 fee"


def test_list_currencies_adds_fee_descriptions(deposits):
    currencies = asyncio.run(deposits.list_currencies())
    assert [c["code"] for c in currencies] == ["usdttrc20", "btc"]
    assert currencies[0]["fee"] == "2.0% + $7 fee"


def test_wallet_view_lists_journal(deposits, fund):
    fund("user-a", "30.00")
    view = deposits.wallet_view("user-a")
    assert view["balance"] == Decimal("30.00")
    assert [e.kind for e in view["entries"]] == ["deposit"]
    assert deposits.wallet_view("user-b")["balance"] == Decimal("0")


def test_reconciliation_flags_balance_drift(deposits, fund, session_factory):
    fund("user-a", "30.00")
    fund("user-b", "5.00")
    assert deposits.reconciliation_report()["mismatched_count"] == 0

    with session_factory() as db:
        wallet = db.query(Wallet).filter_by(owner_id="user-b").one()
        wallet.balance = Decimal("500")
        db.commit()

    report = deposits.reconciliation_report()
    assert report["wallets_checked"] == 2
    assert report["mismatched_count"] == 1
    assert report["mismatched_wallets"][0]["owner_id"] == "user-b"
