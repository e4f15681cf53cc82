import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from splitpay.dependencies import get_current_buyer
from splitpay.models import Order, User, get_db
from splitpay.schemas.orders import (
    ChargeResponse,
    OrderChargeResponse,
    OrderConfirmRequest,
    OrderConfirmResponse,
    OrderCreateRequest,
    OrderDetailResponse,
)
from splitpay.services.currency import CurrencyRateUnavailable
from splitpay.services.order_charge_service import ChargeContext, OrderChargeService
from splitpay.services.order_confirm_service import ConfirmationNotFound, OrderConfirmService
from splitpay.services.order_create_service import OrderCreateService
from splitpay.services.payment_gateways import PaymentMethod, is_processor_enabled

router = APIRouter()
logger = logging.getLogger(__name__)


def _get_order(db: Session, order_id: str) -> Order:
    order = db.query(Order).filter(Order.external_id == order_id).first()
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


@router.post(
    "",
    response_model=OrderChargeResponse,
    summary="Create an order and charge every seller",
)
def create_order(
    body: OrderCreateRequest,
    buyer: Annotated[User | None, Depends(get_current_buyer)],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Validates the line items, creates one purchase per valid line item and charges
    each seller once. Line items come back keyed by uid in submission order.
    """
    processor = body.payment_method.processor.value
    if not is_processor_enabled(processor):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{processor} payments are not configured",
        )

    try:
        order, errors = OrderCreateService(db, body, buyer=buyer).perform()
    except CurrencyRateUnavailable as e:
        db.rollback()
        logger.error("Order creation failed: %s", e)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    payment_method = PaymentMethod(
        processor_id=processor,
        payment_method_id=body.payment_method.payment_method_id,
        customer_id=body.payment_method.customer_id,
        setup_intent_id=body.payment_method.setup_intent_id,
        billing_agreement_id=body.payment_method.billing_agreement_id,
        paypal_order_id=body.payment_method.paypal_order_id,
        save_for_future=body.payment_method.save_for_future,
        metadata={"order_id": order.external_id},
    )
    context = ChargeContext(
        payment_method=payment_method,
        browser_guid=body.browser_guid,
        buyer_id=buyer.id if buyer else None,
    )
    responses = OrderChargeService(db, order, context).perform()

    return OrderChargeResponse(
        order_id=order.external_id,
        line_items={item.uid: errors.get(item.uid) or responses[item.uid] for item in body.line_items},
    )


@router.post(
    "/{order_id}/confirm",
    response_model=OrderConfirmResponse,
    summary="Resolve a card action (3-D Secure) for an order",
)
def confirm_order(
    order_id: str,
    body: OrderConfirmRequest,
    db: Annotated[Session, Depends(get_db)],
):
    order = _get_order(db, order_id)
    try:
        responses, offer_codes = OrderConfirmService(
            db,
            order,
            body.client_secret,
            error=body.error.model_dump() if body.error else None,
        ).perform()
    except ConfirmationNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Confirmation not found")

    return OrderConfirmResponse(order_id=order.external_id, line_items=responses, offer_codes=offer_codes)


@router.get(
    "/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get order with purchases and charges",
)
def get_order(
    order_id: str,
    db: Annotated[Session, Depends(get_db)],
):
    order = _get_order(db, order_id)
    return OrderDetailResponse(
        id=order.external_id,
        email=order.email,
        line_items={p.line_item_uid: p.purchase_response() for p in order.purchases},
        charges=[
            ChargeResponse(
                id=c.external_id,
                seller_id=c.seller_id,
                amount_cents=c.amount_cents,
                gumroad_amount_cents=c.gumroad_amount_cents,
                processor_transaction_id=c.processor_transaction_id,
                processor_fee_cents=c.processor_fee_cents,
                processor_fee_currency=c.processor_fee_currency,
            )
            for c in order.charges
        ],
    )
