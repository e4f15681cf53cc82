"""Charges an order's in-progress purchases, one processor charge per seller."""

import hashlib
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from splitpay.config import settings
from splitpay.models import Charge, GatewayAttempt, MerchantAccount, Order, Purchase
from splitpay.models.database import as_utc, utcnow
from splitpay.models.order import IN_PROGRESS
from splitpay.services.currency import saved_rates
from splitpay.services.error_codes import (
    ALREADY_PROCESSING_MESSAGE,
    GENERIC_ERROR_MESSAGE,
    PurchaseErrorCode,
)
from splitpay.services.grouping import ChargeGroup, group_by_seller
from splitpay.services.mandates import mandate_options
from splitpay.services.merchant_accounts import resolve_merchant_account
from splitpay.services.payment_gateways import (
    Captured,
    GatewayAdapter,
    GatewayErrorKind,
    GatewayResult,
    PaymentMethod,
    RequiresAction,
    Unavailable,
    get_gateway,
    result_from_dict,
    result_to_dict,
)
from splitpay.services.purchase_state import mark_failed, mark_not_charged, mark_successful

logger = logging.getLogger(__name__)

SCA_EXPIRED_MESSAGE = "Your payment authentication expired. Please try again."


class ChargeGroupError(Exception):
    pass


@dataclass(frozen=True)
class ChargeContext:
    payment_method: PaymentMethod
    browser_guid: str | None = None
    buyer_id: int | None = None


def lock_purchases(db: Session, purchase_ids) -> list[Purchase]:
    if not purchase_ids:
        return []
    return (
        db.query(Purchase)
        .filter(Purchase.id.in_(list(purchase_ids)))
        .order_by(Purchase.position)
        .with_for_update()
        .all()
    )


def sca_expired(attempt: GatewayAttempt) -> bool:
    created_at = as_utc(attempt.created_at)
    if created_at is None:
        return False
    return utcnow() - created_at > timedelta(minutes=settings.SCA_COMPLETION_MINUTES)


def attempt_stale(attempt: GatewayAttempt) -> bool:
    """A pending attempt whose worker has been silent longer than any gateway call can take."""
    last_seen = as_utc(attempt.updated_at or attempt.created_at)
    if last_seen is None:
        return False
    return utcnow() - last_seen > timedelta(seconds=settings.GATEWAY_ATTEMPT_STALE_SECONDS)


def requires_action_response(order: Order, merchant_account: MerchantAccount | None, result: RequiresAction) -> dict:
    connect_account_id = None
    if merchant_account is not None and merchant_account.is_stripe_connect and not merchant_account.is_platform_account:
        connect_account_id = merchant_account.charge_processor_merchant_id
    return {
        "success": True,
        "requires_card_action": True,
        "client_secret": result.client_secret,
        "order": {"id": order.external_id, "stripe_connect_account_id": connect_account_id},
    }


def failure_details(result: GatewayResult, processor_id: str | None) -> tuple[str, str]:
    if isinstance(result, Unavailable):
        return GENERIC_ERROR_MESSAGE, PurchaseErrorCode.unavailable_for(processor_id)
    if result.error_code:
        return result.reason, result.error_code
    if result.kind == GatewayErrorKind.INVALID_REQUEST:
        return result.reason, PurchaseErrorCode.STRIPE_INVALID_REQUEST
    return result.reason, PurchaseErrorCode.CARD_DECLINED


def record_capture(db: Session, charge: Charge, result: Captured, paid, deferred, payment_method_id=None) -> None:
    """Settles a captured charge: purchases move to their final states and the charge gets its totals."""
    for purchase in paid:
        purchase.processor_transaction_id = result.transaction_id
        purchase.processor_payment_intent_id = result.payment_intent_id
        purchase.payment_method_fingerprint = result.fingerprint
        mark_successful(db, purchase)
    for purchase in deferred:
        purchase.payment_method_fingerprint = result.fingerprint
        mark_not_charged(purchase)

    charge.amount_cents, charge.gumroad_amount_cents = charge.expected_amounts()
    charge.processor_transaction_id = result.transaction_id
    charge.processor_payment_intent_id = result.payment_intent_id
    charge.processor_fee_cents = result.fee_cents
    charge.processor_fee_currency = result.fee_currency
    charge.payment_method_fingerprint = result.fingerprint
    if payment_method_id:
        charge.payment_method_id = payment_method_id
    db.flush()
    if not charge.reconciles():
        logger.error(
            "Charge %s does not reconcile: amount=%s gumroad_amount=%s expected=%s",
            charge.external_id,
            charge.amount_cents,
            charge.gumroad_amount_cents,
            charge.expected_amounts(),
        )


class OrderChargeService:
    def __init__(
        self,
        db: Session,
        order: Order,
        context: ChargeContext,
        gateway_resolver: Callable[[str], GatewayAdapter] = get_gateway,
    ):
        self.db = db
        self.order = order
        self.context = context
        self.gateway_resolver = gateway_resolver

    def perform(self) -> dict[str, dict]:
        """Charge every seller group and return one response per line item, in submission order."""
        responses: dict[str, dict] = {}
        for group in group_by_seller(self.order.purchases):
            purchase_ids = [purchase.id for purchase in group.purchases]
            try:
                responses.update(self._charge_group(group))
                self.db.commit()
            except Exception:
                logger.exception(
                    "Charging seller %s for order %s failed", group.seller_id, self.order.external_id
                )
                self.db.rollback()
                self._fail_in_progress(purchase_ids)

        self.db.refresh(self.order)
        return {
            purchase.line_item_uid: responses.get(purchase.line_item_uid) or purchase.purchase_response()
            for purchase in self.order.purchases
        }

    def _fail_in_progress(self, purchase_ids) -> None:
        for purchase in lock_purchases(self.db, purchase_ids):
            if purchase.purchase_state == IN_PROGRESS:
                mark_failed(purchase, GENERIC_ERROR_MESSAGE, PurchaseErrorCode.CHARGE_PROCESSING_ERROR)
        self.db.commit()

    def _idempotency_key(self, group: ChargeGroup) -> str:
        seed = f"{self.context.browser_guid or ''}:{','.join(sorted(group.line_item_uids))}"
        digest = hashlib.sha256(seed.encode()).hexdigest()[:16]
        return f"order-{self.order.external_id}-seller-{group.seller_id}-{digest}"

    def _find_or_create_charge(self, seller_id: int) -> Charge:
        charge = (
            self.db.query(Charge)
            .filter(Charge.order_id == self.order.id, Charge.seller_id == seller_id)
            .with_for_update()
            .first()
        )
        if charge is None:
            charge = Charge(order_id=self.order.id, seller_id=seller_id)
            self.db.add(charge)
            self.db.flush()
        return charge

    def _charge_group(self, group: ChargeGroup) -> dict[str, dict]:
        purchases = [
            purchase
            for purchase in lock_purchases(self.db, [p.id for p in group.purchases])
            if purchase.purchase_state == IN_PROGRESS
        ]
        if not purchases:
            return {}

        charge = self._find_or_create_charge(group.seller_id)
        for purchase in purchases:
            purchase.charge = charge

        deferred = [p for p in purchases if p.is_deferred]
        free = [p for p in purchases if p.is_free and not p.is_deferred]
        paid = [p for p in purchases if not p.is_free and not p.is_deferred]

        for purchase in free:
            mark_successful(self.db, purchase)
        if deferred and self.context.payment_method.setup_intent_id:
            charge.stripe_setup_intent_id = self.context.payment_method.setup_intent_id
            for purchase in deferred:
                purchase.processor_setup_intent_id = self.context.payment_method.setup_intent_id

        if not paid:
            for purchase in deferred:
                mark_not_charged(purchase)
            logger.info("Charge %s for order %s needs no payment", charge.external_id, self.order.external_id)
            return {}

        return self._charge_paid(group, charge, paid, deferred)

    def _charge_paid(self, group: ChargeGroup, charge: Charge, paid, deferred) -> dict[str, dict]:
        merchant_account_ids = {purchase.merchant_account_id for purchase in paid}
        if len(merchant_account_ids) > 1:
            raise ChargeGroupError(
                f"Purchases of seller {group.seller_id} in order {self.order.external_id} "
                "have different merchant accounts"
            )
        merchant_account = paid[0].merchant_account or resolve_merchant_account(
            self.db, group.seller_id, self.context.payment_method.processor_id
        )
        charge.merchant_account = merchant_account
        processor_id = merchant_account.charge_processor_id
        charged = paid + deferred
        uids = [purchase.line_item_uid for purchase in charged]

        idempotency_key = self._idempotency_key(group)
        attempt = (
            self.db.query(GatewayAttempt)
            .filter(GatewayAttempt.idempotency_key == idempotency_key)
            .with_for_update()
            .first()
        )
        if attempt is None:
            attempt = GatewayAttempt(
                idempotency_key=idempotency_key,
                order_id=self.order.id,
                charge_id=charge.id,
                seller_id=group.seller_id,
                charge_processor_id=processor_id,
                status="pending",
            )
            self.db.add(attempt)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                logger.warning("Concurrent charge attempt %s detected", idempotency_key)
                return self._already_processing(uids)
        elif attempt.status == "pending" and attempt_stale(attempt):
            # Reuses the idempotency key; the processor de-duplicates the call.
            logger.warning("Re-issuing stale charge attempt %s", idempotency_key)
            attempt.updated_at = utcnow()
            self.db.commit()
        elif attempt.status == "pending" or attempt.result is None:
            logger.warning("Charge attempt %s is still in flight", idempotency_key)
            return self._already_processing(uids)
        else:
            logger.info("Replaying stored result of charge attempt %s", idempotency_key)
            result = result_from_dict(attempt.result)
            if isinstance(result, RequiresAction) and sca_expired(attempt):
                for purchase in charged:
                    mark_failed(purchase, SCA_EXPIRED_MESSAGE, PurchaseErrorCode.SCA_EXPIRED)
                return {}
            return self._apply_result(charge, merchant_account, result, paid, deferred)

        result = self._call_gateway(merchant_account, paid, charged, idempotency_key)
        attempt.status = "completed"
        attempt.result = result_to_dict(result)
        if isinstance(result, RequiresAction):
            attempt.client_secret = result.client_secret
        return self._apply_result(charge, merchant_account, result, paid, deferred)

    def _call_gateway(self, merchant_account: MerchantAccount, paid, charged, idempotency_key: str) -> GatewayResult:
        amount_cents = sum(purchase.total_transaction_cents for purchase in paid)
        if merchant_account.has_zero_platform_fee:
            gumroad_amount_cents = 0
        else:
            gumroad_amount_cents = sum(purchase.total_transaction_amount_for_gumroad_cents for purchase in paid)
        mandate = mandate_options(charged) if any(purchase.is_recurring for purchase in charged) else None
        seller = paid[0].seller
        adapter = self.gateway_resolver(merchant_account.charge_processor_id)

        logger.info(
            "Charging %s cents (platform %s) for seller %s of order %s via %s",
            amount_cents,
            gumroad_amount_cents,
            seller.id,
            self.order.external_id,
            merchant_account.charge_processor_id,
        )
        return adapter.authorize_or_capture(
            amount_cents=amount_cents,
            currency="usd",
            payment_method=self.context.payment_method,
            idempotency_key=idempotency_key,
            merchant_account=merchant_account,
            gumroad_amount_cents=gumroad_amount_cents,
            mandate_options=mandate,
            description=seller.display_name,
            exchange_rates=saved_rates(charged),
        )

    def _apply_result(self, charge: Charge, merchant_account, result: GatewayResult, paid, deferred) -> dict[str, dict]:
        charged = paid + deferred
        if isinstance(result, Captured):
            record_capture(
                self.db, charge, result, paid, deferred,
                payment_method_id=self.context.payment_method.payment_method_id,
            )
            return {}

        if isinstance(result, RequiresAction):
            charge.processor_payment_intent_id = result.payment_intent_id
            charge.payment_method_id = self.context.payment_method.payment_method_id
            response = requires_action_response(self.order, merchant_account, result)
            for purchase in charged:
                purchase.processor_payment_intent_id = result.payment_intent_id
            logger.info("Charge %s requires customer action", charge.external_id)
            return {purchase.line_item_uid: dict(response) for purchase in charged}

        message, error_code = failure_details(result, merchant_account.charge_processor_id)
        for purchase in charged:
            mark_failed(purchase, message, error_code)
        logger.warning("Charge %s failed: %s", charge.external_id, error_code)
        return {}

    def _already_processing(self, uids: list[str]) -> dict[str, dict]:
        return {
            uid: {"success": False, "in_progress": True, "error_message": ALREADY_PROCESSING_MESSAGE}
            for uid in uids
        }
