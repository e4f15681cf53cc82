import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy.orm import Session

from splitpay.models import Charge, User
from splitpay.models.database import utcnow
from splitpay.models.order import SUCCESSFUL

logger = logging.getLogger(__name__)


class ChargeEventKind(str, Enum):
    DISPUTE_FORMALIZED = "dispute_formalized"
    DISPUTE_WON = "dispute_won"
    DISPUTE_LOST = "dispute_lost"
    INFORMATIONAL = "informational"


@dataclass(frozen=True)
class ChargeEvent:
    kind: ChargeEventKind
    charge_processor_id: str
    event_id: str
    processor_transaction_id: str | None = None
    amount_cents: int | None = None
    currency: str | None = None
    reason: str | None = None
    created_at: datetime | None = None


STRIPE_CLOSED_DISPUTE_KINDS = {
    "won": ChargeEventKind.DISPUTE_WON,
    "warning_closed": ChargeEventKind.DISPUTE_WON,
    "lost": ChargeEventKind.DISPUTE_LOST,
}
PAYPAL_OUTCOME_KINDS = {
    "RESOLVED_SELLER_FAVOUR": ChargeEventKind.DISPUTE_WON,
    "CANCELED_BY_BUYER": ChargeEventKind.DISPUTE_WON,
    "RESOLVED_BUYER_FAVOUR": ChargeEventKind.DISPUTE_LOST,
}


def from_stripe_event(event) -> ChargeEvent | None:
    """Returns None for events that must be ignored (disputes closed by a refund)."""
    event_type = event["type"]
    obj = event["data"]["object"]
    created = event.get("created")
    kind = ChargeEventKind.INFORMATIONAL

    if event_type == "charge.dispute.created":
        kind = ChargeEventKind.DISPUTE_FORMALIZED
    elif event_type == "charge.dispute.closed":
        dispute_status = obj.get("status")
        if dispute_status == "charge_refunded":
            return None
        kind = STRIPE_CLOSED_DISPUTE_KINDS.get(dispute_status, ChargeEventKind.INFORMATIONAL)

    is_dispute = event_type.startswith("charge.dispute.")
    return ChargeEvent(
        kind=kind,
        charge_processor_id="stripe",
        event_id=event["id"],
        processor_transaction_id=obj.get("charge") if is_dispute else obj.get("id"),
        amount_cents=obj.get("amount"),
        currency=obj.get("currency"),
        reason=obj.get("reason"),
        created_at=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
    )


def from_paypal_event(event: dict) -> ChargeEvent:
    event_type = event.get("event_type", "")
    resource = event.get("resource") or {}
    kind = ChargeEventKind.INFORMATIONAL
    if event_type == "CUSTOMER.DISPUTE.CREATED":
        kind = ChargeEventKind.DISPUTE_FORMALIZED
    elif event_type == "CUSTOMER.DISPUTE.RESOLVED":
        outcome = (resource.get("dispute_outcome") or {}).get("outcome_code")
        kind = PAYPAL_OUTCOME_KINDS.get(outcome, ChargeEventKind.INFORMATIONAL)

    transactions = resource.get("disputed_transactions") or []
    transaction_id = transactions[0].get("seller_transaction_id") if transactions else resource.get("id")
    amount = resource.get("dispute_amount") or {}
    amount_cents = int(Decimal(amount["value"]) * 100) if amount.get("value") else None
    return ChargeEvent(
        kind=kind,
        charge_processor_id="paypal",
        event_id=event.get("id", ""),
        processor_transaction_id=transaction_id,
        amount_cents=amount_cents,
        currency=(amount.get("currency_code") or "").lower() or None,
        reason=resource.get("reason"),
    )


def _adjust_seller_balance(db: Session, charge: Charge, sign: int) -> None:
    net = sum(p.seller_net_cents for p in charge.purchases if p.purchase_state == SUCCESSFUL)
    if not net:
        return
    seller = db.query(User).filter(User.id == charge.seller_id).with_for_update().first()
    seller.balance_cents = (seller.balance_cents or 0) + sign * net


def apply_charge_event(db: Session, event: ChargeEvent) -> Charge | None:
    if event.kind == ChargeEventKind.INFORMATIONAL or not event.processor_transaction_id:
        logger.info("Informational %s event %s", event.charge_processor_id, event.event_id)
        return None

    charge = (
        db.query(Charge)
        .filter(Charge.processor_transaction_id == event.processor_transaction_id)
        .with_for_update()
        .first()
    )
    if charge is None:
        logger.warning(
            "No charge for %s transaction %s (event %s)",
            event.charge_processor_id,
            event.processor_transaction_id,
            event.event_id,
        )
        return None

    if event.kind == ChargeEventKind.DISPUTE_FORMALIZED:
        if charge.disputed_at is not None:
            logger.info("Charge %s already disputed, skipping", charge.external_id)
            return charge
        charge.disputed_at = event.created_at or utcnow()
        for purchase in charge.purchases:
            if purchase.purchase_state == SUCCESSFUL:
                purchase.chargeback_date = charge.disputed_at
        _adjust_seller_balance(db, charge, -1)
        logger.info("Charge %s disputed (%s)", charge.external_id, event.reason)
    elif event.kind == ChargeEventKind.DISPUTE_WON:
        if charge.disputed_at is None or charge.dispute_reversed_at is not None:
            logger.info("Charge %s has no open dispute to reverse, skipping", charge.external_id)
            return charge
        charge.dispute_reversed_at = event.created_at or utcnow()
        for purchase in charge.purchases:
            if purchase.chargeback_date is not None:
                purchase.chargeback_reversed = True
        _adjust_seller_balance(db, charge, 1)
        logger.info("Dispute on charge %s won", charge.external_id)
    else:
        logger.info("Dispute on charge %s lost", charge.external_id)

    db.flush()
    return charge
