import pytest

from splitpay.models import User
from splitpay.services.charge_events import (
    ChargeEventKind,
    apply_charge_event,
    from_paypal_event,
    from_stripe_event,
)
from splitpay.services.order_charge_service import OrderChargeService


@pytest.fixture
def captured_order(db, make_order, charge_context, fake_gateway, ebook):
    order, _ = make_order([("a", "ebook", 500)])
    OrderChargeService(db, order, charge_context, gateway_resolver=lambda _: fake_gateway).perform()
    return order


def _stripe_dispute(event_type, status=None, charge_id="ch_1", event_id="evt_1"):
    dispute = {"id": "dp_1", "charge": charge_id, "amount": 500, "currency": "usd", "reason": "fraudulent"}
    if status:
        dispute["status"] = status
    return {"id": event_id, "type": event_type, "created": 1760000000, "data": {"object": dispute}}


def _balance(db, seller):
    db.expire_all()
    return db.get(User, seller.id).balance_cents


def test_stripe_dispute_created():
    event = from_stripe_event(_stripe_dispute("charge.dispute.created"))

    assert event.kind == ChargeEventKind.DISPUTE_FORMALIZED
    assert event.processor_transaction_id == "ch_1"
    assert event.amount_cents == 500
    assert event.created_at.year == 2025


@pytest.mark.parametrize(
    "status, kind",
    [
        ("won", ChargeEventKind.DISPUTE_WON),
        ("warning_closed", ChargeEventKind.DISPUTE_WON),
        ("lost", ChargeEventKind.DISPUTE_LOST),
        ("under_review", ChargeEventKind.INFORMATIONAL),
    ],
)
def test_stripe_dispute_closed(status, kind):
    assert from_stripe_event(_stripe_dispute("charge.dispute.closed", status)).kind == kind


def test_stripe_dispute_closed_by_refund_is_ignored():
    assert from_stripe_event(_stripe_dispute("charge.dispute.closed", "charge_refunded")) is None


def test_other_stripe_events_are_informational():
    event = from_stripe_event({"id": "evt_2", "type": "charge.succeeded", "data": {"object": {"id": "ch_1"}}})

    assert event.kind == ChargeEventKind.INFORMATIONAL
    assert event.processor_transaction_id == "ch_1"


def test_paypal_dispute_events():
    created = from_paypal_event(
        {
            "id": "WH-1",
            "event_type": "CUSTOMER.DISPUTE.CREATED",
            "resource": {
                "disputed_transactions": [{"seller_transaction_id": "CAPTURE1"}],
                "dispute_amount": {"currency_code": "USD", "value": "12.50"},
                "reason": "MERCHANDISE_OR_SERVICE_NOT_RECEIVED",
            },
        }
    )
    resolved = from_paypal_event(
        {
            "id": "WH-2",
            "event_type": "CUSTOMER.DISPUTE.RESOLVED",
            "resource": {
                "disputed_transactions": [{"seller_transaction_id": "CAPTURE1"}],
                "dispute_outcome": {"outcome_code": "RESOLVED_SELLER_FAVOUR"},
            },
        }
    )

    assert created.kind == ChargeEventKind.DISPUTE_FORMALIZED
    assert created.processor_transaction_id == "CAPTURE1"
    assert (created.amount_cents, created.currency) == (1250, "usd")
    assert resolved.kind == ChargeEventKind.DISPUTE_WON


def test_dispute_debits_seller_once(db, captured_order, seller):
    event = from_stripe_event(_stripe_dispute("charge.dispute.created"))

    charge = apply_charge_event(db, event)
    db.commit()
    apply_charge_event(db, event)
    db.commit()

    assert charge.disputed_at is not None
    assert captured_order.purchases[0].chargeback_date is not None
    assert _balance(db, seller) == 0


def test_won_dispute_credits_seller_back(db, captured_order, seller):
    apply_charge_event(db, from_stripe_event(_stripe_dispute("charge.dispute.created")))
    won = from_stripe_event(_stripe_dispute("charge.dispute.closed", "won", event_id="evt_2"))

    charge = apply_charge_event(db, won)
    apply_charge_event(db, won)
    db.commit()

    assert charge.dispute_reversed_at is not None
    assert captured_order.purchases[0].chargeback_reversed is True
    assert _balance(db, seller) == 400


def test_lost_dispute_keeps_debit(db, captured_order, seller):
    apply_charge_event(db, from_stripe_event(_stripe_dispute("charge.dispute.created")))
    apply_charge_event(db, from_stripe_event(_stripe_dispute("charge.dispute.closed", "lost", event_id="evt_2")))
    db.commit()

    assert _balance(db, seller) == 0


def test_won_without_open_dispute_is_skipped(db, captured_order, seller):
    charge = apply_charge_event(db, from_stripe_event(_stripe_dispute("charge.dispute.closed", "won")))
    db.commit()

    assert charge.dispute_reversed_at is None
    assert _balance(db, seller) == 400


def test_event_for_unknown_charge(db, captured_order):
    event = from_stripe_event(_stripe_dispute("charge.dispute.created", charge_id="ch_unknown"))

    assert apply_charge_event(db, event) is None
