import logging
from typing import Callable

from sqlalchemy.orm import Session

from splitpay.models import Charge, GatewayAttempt, Order
from splitpay.models.order import FAILED, IN_PROGRESS
from splitpay.services.error_codes import (
    AUTHENTICATION_FAILED_MESSAGE,
    GENERIC_ERROR_MESSAGE,
    PurchaseErrorCode,
)
from splitpay.services.order_charge_service import (
    SCA_EXPIRED_MESSAGE,
    failure_details,
    lock_purchases,
    record_capture,
    sca_expired,
)
from splitpay.services.payment_gateways import (
    Captured,
    GatewayAdapter,
    RequiresAction,
    get_gateway,
    result_to_dict,
)
from splitpay.services.purchase_state import mark_failed

logger = logging.getLogger(__name__)


class ConfirmationNotFound(LookupError):
    pass


def translate_client_error(error: dict) -> tuple[str, str]:
    code = error.get("code")
    if code == PurchaseErrorCode.AUTHENTICATION_FAILED:
        return AUTHENTICATION_FAILED_MESSAGE, PurchaseErrorCode.AUTHENTICATION_FAILED
    return error.get("message") or GENERIC_ERROR_MESSAGE, code or PurchaseErrorCode.CARD_DECLINED


def offer_code_summaries(purchases) -> list[dict]:
    summaries: dict[str, dict] = {}
    for purchase in purchases:
        if purchase.purchase_state != FAILED or purchase.offer_code is None:
            continue
        offer_code = purchase.offer_code
        summary = summaries.setdefault(offer_code.code, {"code": offer_code.code, "products": {}})
        summary["products"][purchase.product.permalink] = {
            "permalink": purchase.product.permalink,
            "quantity": purchase.quantity,
            "discount": offer_code.discount_summary(),
        }
    return list(summaries.values())


class OrderConfirmService:
    """Resolves a step-up authentication for the charge that issued `client_secret`."""

    def __init__(
        self,
        db: Session,
        order: Order,
        client_secret: str,
        error: dict | None = None,
        gateway_resolver: Callable[[str], GatewayAdapter] = get_gateway,
    ):
        self.db = db
        self.order = order
        self.client_secret = client_secret
        self.error = error
        self.gateway_resolver = gateway_resolver

    def perform(self) -> tuple[dict[str, dict], list[dict]]:
        attempt = (
            self.db.query(GatewayAttempt)
            .filter(
                GatewayAttempt.order_id == self.order.id,
                GatewayAttempt.client_secret == self.client_secret,
            )
            .with_for_update()
            .first()
        )
        if attempt is None:
            raise ConfirmationNotFound(f"No pending confirmation for order {self.order.external_id}")

        charge = self.db.get(Charge, attempt.charge_id)
        purchase_ids = [purchase.id for purchase in charge.purchases]
        purchases = [p for p in lock_purchases(self.db, purchase_ids) if p.purchase_state == IN_PROGRESS]
        if purchases:
            self._resolve(attempt, charge, purchases)
            self.db.commit()
        else:
            logger.info("Charge %s already resolved, nothing to confirm", charge.external_id)

        self.db.refresh(charge)
        charge_purchases = charge.purchases
        responses = {purchase.line_item_uid: purchase.purchase_response() for purchase in charge_purchases}
        return responses, offer_code_summaries(charge_purchases)

    def _resolve(self, attempt: GatewayAttempt, charge: Charge, purchases) -> None:
        if self.error:
            message, error_code = translate_client_error(self.error)
            self._fail(purchases, message, error_code)
            logger.info("Customer action for charge %s failed on the client: %s", charge.external_id, error_code)
            return

        if sca_expired(attempt):
            self._fail(purchases, SCA_EXPIRED_MESSAGE, PurchaseErrorCode.SCA_EXPIRED)
            logger.info("Customer action for charge %s expired", charge.external_id)
            return

        merchant_account = charge.merchant_account
        adapter = self.gateway_resolver(merchant_account.charge_processor_id)
        result = adapter.confirm(self.client_secret, merchant_account)
        attempt.result = result_to_dict(result)

        if isinstance(result, Captured):
            paid = [p for p in purchases if not p.is_deferred]
            deferred = [p for p in purchases if p.is_deferred]
            record_capture(self.db, charge, result, paid, deferred, payment_method_id=charge.payment_method_id)
            logger.info("Charge %s confirmed", charge.external_id)
            return

        if isinstance(result, RequiresAction):
            message, error_code = AUTHENTICATION_FAILED_MESSAGE, PurchaseErrorCode.AUTHENTICATION_FAILED
        else:
            message, error_code = failure_details(result, merchant_account.charge_processor_id)
        self._fail(purchases, message, error_code)
        logger.warning("Confirmation of charge %s failed: %s", charge.external_id, error_code)

    @staticmethod
    def _fail(purchases, message: str, error_code: str) -> None:
        for purchase in purchases:
            mark_failed(purchase, message, error_code)
