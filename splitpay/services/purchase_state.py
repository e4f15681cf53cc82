import logging

from splitpay.models import Purchase, User
from splitpay.models.database import utcnow
from splitpay.models.order import FAILED, IN_PROGRESS, NOT_CHARGED, SUCCESSFUL

logger = logging.getLogger(__name__)


class InvalidPurchaseTransition(Exception):
    pass


def _transition(purchase: Purchase, new_state: str) -> None:
    if purchase.purchase_state != IN_PROGRESS:
        raise InvalidPurchaseTransition(
            f"Purchase {purchase.external_id} cannot move from {purchase.purchase_state} to {new_state}"
        )
    purchase.purchase_state = new_state


def mark_successful(db, purchase: Purchase, credit_seller: bool = True) -> None:
    _transition(purchase, SUCCESSFUL)
    purchase.succeeded_at = utcnow()
    purchase.error_code = None
    purchase.error_message = None
    if credit_seller and purchase.seller_net_cents:
        seller = db.query(User).filter(User.id == purchase.seller_id).with_for_update().first()
        seller.balance_cents = (seller.balance_cents or 0) + purchase.seller_net_cents
    logger.info("Purchase %s successful", purchase.external_id)


def mark_not_charged(purchase: Purchase) -> None:
    _transition(purchase, NOT_CHARGED)
    logger.info("Purchase %s not charged (deferred)", purchase.external_id)


def mark_failed(purchase: Purchase, error_message: str, error_code: str | None = None) -> None:
    _transition(purchase, FAILED)
    purchase.error_message = error_message
    purchase.error_code = error_code
    logger.info("Purchase %s failed: %s", purchase.external_id, error_code or error_message)
