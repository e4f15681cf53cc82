import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from splitpay.config import settings
from splitpay.models import get_db
from splitpay.services.charge_events import apply_charge_event, from_stripe_event

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/stripe",
    summary="Stripe webhook",
)
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Stripe sends charge and dispute events here. Disputes move the seller's
    balance; everything else is logged. Repeated deliveries are no-ops.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.warning("STRIPE_WEBHOOK_SECRET is not set, skipping webhook verification")
        return {"received": True}

    try:
        event = stripe.Webhook.construct_event(
            payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
        )
    except ValueError as e:
        logger.error(f"Invalid payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError as e:
        logger.error(f"Invalid signature: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature")

    charge_event = from_stripe_event(event)
    if charge_event is None:
        logger.info(f"Ignoring Stripe event {event['id']} ({event['type']})")
        return {"received": True}

    try:
        apply_charge_event(db, charge_event)
        db.commit()
    except Exception as e:
        logger.error(f"Error processing Stripe event {event['id']}: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal server error")

    return {"received": True}
