from datetime import timedelta

import pytest

from splitpay.models import GatewayAttempt, OfferCode, User
from splitpay.models.database import utcnow
from splitpay.models.order import FAILED, IN_PROGRESS, SUCCESSFUL
from splitpay.services.error_codes import AUTHENTICATION_FAILED_MESSAGE
from splitpay.services.order_charge_service import OrderChargeService
from splitpay.services.order_confirm_service import ConfirmationNotFound, OrderConfirmService
from splitpay.services.payment_gateways import Captured, Declined, RequiresAction

CLIENT_SECRET = "pi_7_secret_x"


@pytest.fixture
def awaiting_action(db, make_order, charge_context, fake_gateway, ebook, course):
    """An order whose only charge stopped on a card action."""
    order, _ = make_order([("a", "ebook", 500), ("b", "course", 1500)])
    fake_gateway.results = [RequiresAction(client_secret=CLIENT_SECRET, payment_intent_id="pi_7")]
    OrderChargeService(db, order, charge_context, gateway_resolver=lambda _: fake_gateway).perform()
    return order


def _confirm(db, order, gateway, client_secret=CLIENT_SECRET, error=None):
    return OrderConfirmService(db, order, client_secret, error=error, gateway_resolver=lambda _: gateway).perform()


def _states(order):
    return {p.line_item_uid: p.purchase_state for p in order.purchases}


def test_confirmed_payment_settles_charge(db, awaiting_action, fake_gateway, seller):
    fake_gateway.confirm_results = [Captured(transaction_id="ch_7", payment_intent_id="pi_7", fee_cents=88)]

    responses, offer_codes = _confirm(db, awaiting_action, fake_gateway)

    assert fake_gateway.confirm_calls == [CLIENT_SECRET]
    assert responses["a"]["success"] is True
    assert responses["b"]["success"] is True
    assert offer_codes == []
    charge = awaiting_action.purchases[0].charge
    assert (charge.amount_cents, charge.gumroad_amount_cents) == (2000, 300)
    assert charge.processor_transaction_id == "ch_7"
    assert charge.payment_method_id == "pm_card_visa"
    assert db.get(User, seller.id).balance_cents == 1700


def test_client_authentication_failure(db, awaiting_action, fake_gateway):
    responses, _ = _confirm(
        db, awaiting_action, fake_gateway, error={"code": "payment_intent_authentication_failure", "message": "x"}
    )

    assert fake_gateway.confirm_calls == []
    assert responses["a"]["error_message"] == AUTHENTICATION_FAILED_MESSAGE
    assert responses["a"]["error_code"] == "payment_intent_authentication_failure"
    assert _states(awaiting_action) == {"a": FAILED, "b": FAILED}


def test_client_error_message_is_kept(db, awaiting_action, fake_gateway):
    responses, _ = _confirm(
        db, awaiting_action, fake_gateway, error={"code": "card_declined", "message": "Your card was declined."}
    )

    assert responses["b"]["error_message"] == "Your card was declined."
    assert responses["b"]["error_code"] == "card_declined"


def test_action_still_required_counts_as_authentication_failure(db, awaiting_action, fake_gateway):
    fake_gateway.confirm_results = [RequiresAction(client_secret=CLIENT_SECRET, payment_intent_id="pi_7")]

    responses, _ = _confirm(db, awaiting_action, fake_gateway)

    assert responses["a"]["error_code"] == "payment_intent_authentication_failure"


def test_declined_confirmation(db, awaiting_action, fake_gateway):
    fake_gateway.confirm_results = [Declined(reason="Your card has insufficient funds.")]

    responses, _ = _confirm(db, awaiting_action, fake_gateway)

    assert responses["a"]["error_message"] == "Your card has insufficient funds."
    assert responses["a"]["error_code"] == "card_declined"


def test_expired_confirmation(db, awaiting_action, fake_gateway):
    attempt = db.query(GatewayAttempt).filter(GatewayAttempt.order_id == awaiting_action.id).one()
    attempt.created_at = utcnow() - timedelta(minutes=16)
    db.commit()

    responses, _ = _confirm(db, awaiting_action, fake_gateway)

    assert fake_gateway.confirm_calls == []
    assert responses["a"]["error_code"] == "sca_expired"


def test_unknown_client_secret(db, awaiting_action, fake_gateway):
    with pytest.raises(ConfirmationNotFound):
        _confirm(db, awaiting_action, fake_gateway, client_secret="pi_other_secret_y")


def test_second_confirmation_is_a_no_op(db, awaiting_action, fake_gateway):
    fake_gateway.confirm_results = [Captured(transaction_id="ch_7", payment_intent_id="pi_7")]
    _confirm(db, awaiting_action, fake_gateway)

    responses, _ = _confirm(db, awaiting_action, fake_gateway)

    assert len(fake_gateway.confirm_calls) == 1
    assert responses["a"]["success"] is True
    assert _states(awaiting_action) == {"a": SUCCESSFUL, "b": SUCCESSFUL}


def test_failed_purchases_report_their_offer_codes(db, make_order, charge_context, fake_gateway, seller, course):
    db.add(OfferCode(seller_id=seller.id, code="HALF", amount_percentage=50, universal=True))
    db.commit()
    order, _ = make_order(
        [{"uid": "a", "permalink": "course", "perceived_price_cents": 750, "discount_code": "HALF"}]
    )
    fake_gateway.results = [RequiresAction(client_secret=CLIENT_SECRET, payment_intent_id="pi_7")]
    OrderChargeService(db, order, charge_context, gateway_resolver=lambda _: fake_gateway).perform()
    assert _states(order) == {"a": IN_PROGRESS}

    _, offer_codes = _confirm(db, order, fake_gateway, error={"code": "card_declined"})

    assert offer_codes == [
        {
            "code": "HALF",
            "products": {
                "course": {"permalink": "course", "quantity": 1, "discount": {"type": "percent", "percents": 50.0}}
            },
        }
    ]
