import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable

from sqlalchemy.orm import Session

from splitpay.models import Purchase, User
from splitpay.models.order import SUCCESSFUL
from splitpay.services.currency import saved_rates
from splitpay.services.payment_gateways import GatewayAdapter, GatewayErrorKind, RefundResult, get_gateway

logger = logging.getLogger(__name__)


class RefundNotAllowed(Exception):
    pass


def refund_purchase(
    db: Session,
    purchase: Purchase,
    amount_cents: int | None = None,
    gateway_resolver: Callable[[str], GatewayAdapter] = get_gateway,
) -> RefundResult:
    """Refund all or part of a charged purchase and debit the seller's share."""
    purchase = (
        db.query(Purchase)
        .filter(Purchase.id == purchase.id)
        .populate_existing()
        .with_for_update()
        .one()
    )
    if purchase.purchase_state != SUCCESSFUL or purchase.charge is None or not purchase.processor_transaction_id:
        raise RefundNotAllowed(f"Purchase {purchase.external_id} was not charged")

    refundable = purchase.total_transaction_cents - (purchase.refunded_cents or 0)
    amount = refundable if amount_cents is None else amount_cents
    if amount <= 0 or amount > refundable:
        raise RefundNotAllowed(f"Cannot refund {amount} cents of purchase {purchase.external_id}")

    merchant_account = purchase.charge.merchant_account
    adapter = gateway_resolver(merchant_account.charge_processor_id)
    result = adapter.refund(
        purchase.processor_transaction_id,
        merchant_account,
        amount_cents=amount,
        idempotency_key=f"refund-{purchase.external_id}-{purchase.refunded_cents or 0}-{amount}",
        exchange_rates=saved_rates([purchase]),
    )
    if not result.success:
        if result.error_kind == GatewayErrorKind.ALREADY_REFUNDED:
            logger.warning("Purchase %s was already refunded at the processor", purchase.external_id)
        else:
            logger.error("Refund of purchase %s failed: %s", purchase.external_id, result.message)
        db.rollback()
        return result

    seller_share = (Decimal(purchase.seller_net_cents) * amount / purchase.total_transaction_cents).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    seller = db.query(User).filter(User.id == purchase.seller_id).populate_existing().with_for_update().one()
    seller.balance_cents = (seller.balance_cents or 0) - int(seller_share)
    purchase.refunded_cents = (purchase.refunded_cents or 0) + amount
    db.commit()
    logger.info("Refunded %s cents of purchase %s", amount, purchase.external_id)
    return result
