import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from splitpay.config import settings
from splitpay.models import get_db
from splitpay.services.charge_events import apply_charge_event, from_paypal_event
from splitpay.services.payment_gateways import get_gateway

router = APIRouter()
logger = logging.getLogger(__name__)


async def raw_body(request: Request) -> bytes:
    return await request.body()


@router.post(
    "/paypal",
    summary="PayPal webhook",
)
def paypal_webhook(
    request: Request,
    body: bytes = Depends(raw_body),
    db: Session = Depends(get_db),
):
    """PayPal dispute notifications. The signature is checked against PayPal's verification API.

    Declared sync so the blocking verification call runs in the threadpool.
    """
    try:
        event = json.loads(body)
    except ValueError:
        logger.warning("Invalid PayPal webhook payload")
        raise HTTPException(status_code=400, detail="Invalid payload")

    if not settings.PAYPAL_WEBHOOK_ID:
        logger.warning("PAYPAL_WEBHOOK_ID is not set, skipping webhook verification")
        return {"received": True}

    if not get_gateway("paypal").verify_webhook_signature(request.headers, event):
        logger.warning("PayPal webhook signature verification failed for event %s", event.get("id"))
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        apply_charge_event(db, from_paypal_event(event))
        db.commit()
    except Exception as e:
        logger.error("Error processing PayPal event %s: %s", event.get("id"), e, exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal server error")

    return {"received": True}
