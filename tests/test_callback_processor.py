"""Webhook verification, idempotent crediting and status monotonicity."""

import asyncio
import json
from decimal import Decimal

import pytest

from vpsdash.services.gateway.client import compute_signature
from vpsdash.services.payments.callbacks import CallbackProcessor, paid_amount
from vpsdash.services.payments.models import PaymentTransaction, WalletTransaction
from vpsdash.services.payments.wallet import wallet_balance

SECRET = "test-ipn-secret"


def _event(status: str, **fields) -> dict:
    return {"payment_id": "pay-1", "payment_status": status, "order_id": "dep_1", **fields}


def _signed(payload: dict, secret: str = SECRET) -> tuple[bytes, str]:
    body = json.dumps(payload).encode("utf-8")
    return body, compute_signature(body, secret)


@pytest.fixture
def processor(session_factory, gateway, notifier):
    return CallbackProcessor(session_factory, gateway, notifier)


def _deliver(processor, payload: dict, secret: str = SECRET):
    body, signature = _signed(payload, secret)
    return asyncio.run(processor.handle_webhook(body, signature))


def _transaction(session_factory, order_id: str = "dep_1") -> PaymentTransaction:
    with session_factory() as db:
        return db.query(PaymentTransaction).filter_by(order_id=order_id).one()


def _balance(session_factory, owner_id: str = "user-a") -> Decimal:
    with session_factory() as db:
        return wallet_balance(db, owner_id)


def test_missing_signature_is_rejected_without_mutation(processor, session_factory, make_deposit):
    make_deposit()
    body = json.dumps({"payment_id": "pay-1", "payment_status": "finished", "order_id": "dep_1"}).encode()
    result = asyncio.run(processor.handle_webhook(body, None))
    assert result.status_code == 401
    assert result.body["kind"] == "invalid_signature"
    assert _transaction(session_factory).status == "waiting"


def test_wrong_secret_is_rejected_without_mutation(processor, session_factory, make_deposit):
    make_deposit()
    result = _deliver(
        processor, {"payment_id": "pay-1", "payment_status": "finished", "order_id": "dep_1"}, secret="wrong"
    )
    assert result.status_code == 401
    assert _transaction(session_factory).status == "waiting"
    assert _balance(session_factory) == Decimal("0")


def test_non_ascii_signature_is_rejected_without_mutation(processor, session_factory, make_deposit):
    make_deposit()
    body, _ = _signed(_event("finished"))
    result = asyncio.run(processor.handle_webhook(body, "\u00e9abc"))
    assert result.status_code == 401
    assert _transaction(session_factory).status == "waiting"


def test_signature_covers_exact_bytes(processor, make_deposit):
    make_deposit()
    body, signature = _signed({"payment_id": "pay-1", "payment_status": "finished", "order_id": "dep_1"})
    result = asyncio.run(processor.handle_webhook(body + b" ", signature))
    assert result.status_code == 401


def test_invalid_json_is_bad_request(processor):
    body = b"{not json"
    result = asyncio.run(processor.handle_webhook(body, compute_signature(body, SECRET)))
    assert result.status_code == 400


@pytest.mark.parametrize("payload", [{"payment_status": "finished"}, {"payment_id": "pay-1"}, ["pay-1"]])
def test_missing_required_fields_is_bad_request(processor, payload):
    result = _deliver(processor, payload)
    assert result.status_code == 400


def test_duplicate_finished_callback_credits_once(processor, session_factory, notifier, make_deposit):
    make_deposit()
    payload = {"payment_id": "pay-1", "payment_status": "finished", "order_id": "dep_1", "actually_paid": "100"}

    first = _deliver(processor, payload)
    second = _deliver(processor, payload)

    assert first.status_code == second.status_code == 200
    assert Decimal(first.body["processed"]["amount_credited"]) == Decimal("100")
    assert second.body["processed"]["status_updated"] is False
    assert _balance(session_factory) == Decimal("100")
    assert _transaction(session_factory).status == "finished"
    assert notifier.types() == ["deposit.credited"]


def test_partial_then_finished_credits_base_amount_in_total(processor, session_factory, notifier, make_deposit):
    make_deposit()
    _deliver(processor, _event("partially_paid", actually_paid="40"))
    assert _balance(session_factory) == Decimal("40")

    _deliver(processor, _event("finished", outcome_amount="100"))
    _deliver(processor, _event("finished", outcome_amount="100"))

    assert _balance(session_factory) == Decimal("100")
    transaction = _transaction(session_factory)
    assert transaction.credited_amount == Decimal("100")
    assert notifier.types() == ["deposit.partial", "deposit.credited"]
    with session_factory() as db:
        amounts = sorted(e.amount for e in db.query(WalletTransaction).filter_by(kind="deposit"))
    assert amounts == [Decimal("40"), Decimal("60")]


def test_terminal_status_is_never_overwritten(processor, session_factory, make_deposit):
    make_deposit()
    _deliver(processor, {"payment_id": "pay-1", "payment_status": "finished", "order_id": "dep_1"})
    result = _deliver(processor, {"payment_id": "pay-1", "payment_status": "confirming", "order_id": "dep_1"})
    assert result.status_code == 200
    assert _transaction(session_factory).status == "finished"


def test_out_of_order_partial_after_finished_does_not_credit(processor, session_factory, make_deposit):
    make_deposit()
    _deliver(processor, _event("finished", actually_paid="100"))
    _deliver(processor, _event("partially_paid", actually_paid="30"))
    assert _balance(session_factory) == Decimal("100")


def test_status_advances_without_credit(processor, session_factory, notifier, make_deposit):
    make_deposit()
    _deliver(processor, {"payment_id": "pay-1", "payment_status": "confirming", "order_id": "dep_1"})
    transaction = _transaction(session_factory)
    assert transaction.status == "confirming"
    assert transaction.state_version == 1
    assert _balance(session_factory) == Decimal("0")
    assert notifier.events == []


def test_repeated_partial_payment_tops_up(processor, session_factory, make_deposit):
    make_deposit()
    _deliver(processor, _event("partially_paid", actually_paid="25"))
    _deliver(processor, _event("partially_paid", actually_paid="60"))
    _deliver(processor, _event("partially_paid", actually_paid="60"))
    assert _balance(session_factory) == Decimal("60")


def test_credit_is_capped_at_base_amount(processor, session_factory, make_deposit):
    make_deposit()
    _deliver(processor, _event("finished", actually_paid="150"))
    assert _balance(session_factory) == Decimal("100")


def test_lookup_falls_back_to_external_payment_id(processor, session_factory, make_deposit):
    make_deposit()
    _deliver(processor, {"payment_id": "pay-1", "payment_status": "finished"})
    assert _transaction(session_factory).status == "finished"


def test_processing_failure_still_acknowledged(processor, notifier):
    result = _deliver(processor, {"payment_id": "nope", "payment_status": "finished", "order_id": "missing"})
    assert result.status_code == 200
    assert result.body["status"] == "ok"
    assert "No deposit" in result.body["processed"]["error"]
    assert notifier.types() == ["deposit.error"]


def test_unknown_status_is_ignored(processor, session_factory, make_deposit):
    make_deposit()
    result = _deliver(processor, {"payment_id": "pay-1", "payment_status": "teleported", "order_id": "dep_1"})
    assert result.status_code == 200
    assert _transaction(session_factory).status == "waiting"


def test_paid_amount_rules():
    base = Decimal("100")
    assert paid_amount({"outcome_amount": "70", "actually_paid": "90"}, "finished", base) == Decimal("70")
    assert paid_amount({"actually_paid": "90"}, "finished", base) == Decimal("90")
    assert paid_amount({}, "finished", base) == base
    assert paid_amount({}, "partially_paid", base) == Decimal("0")
    assert paid_amount({"actually_paid": "abc"}, "partially_paid", base) == Decimal("0")


def test_competing_delivery_between_read_and_write_credits_once(
    processor, session_factory, notifier, make_deposit, monkeypatch
):
    make_deposit()
    payload = _event("finished", actually_paid="100")
    original_locate = processor._locate
    raced = []

    def locate_then_lose_race(db, payment_id, order_id):
        row = original_locate(db, payment_id, order_id)
        if not raced:
            raced.append(True)
            # Another delivery of the same callback commits while this one holds a stale row.
            processor.apply_callback(payload, "pay-1", "dep_1", "finished")
        return row

    monkeypatch.setattr(processor, "_locate", locate_then_lose_race)
    result = _deliver(processor, payload)

    assert result.status_code == 200
    assert "concurrency conflict" in result.body["processed"]["error"]
    assert notifier.types() == ["deposit.error"]
    assert _balance(session_factory) == Decimal("100")
    transaction = _transaction(session_factory)
    assert transaction.state_version == 1
    assert transaction.credited_amount == Decimal("100")
    with session_factory() as db:
        assert db.query(WalletTransaction).filter_by(kind="deposit").count() == 1
