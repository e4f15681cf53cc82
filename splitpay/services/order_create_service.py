import logging
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable

from sqlalchemy import func
from sqlalchemy.orm import Session

from splitpay.config import settings
from splitpay.models import MerchantAccount, OfferCode, Order, Product, Purchase, User
from splitpay.models.database import as_utc, utcnow
from splitpay.models.order import IN_PROGRESS, NOT_CHARGED, SUCCESSFUL
from splitpay.schemas.orders import LineItemRequest, OrderCreateRequest
from splitpay.services import currency as currency_converter
from splitpay.services.error_codes import PurchaseErrorCode
from splitpay.services.merchant_accounts import MerchantAccountNotFound, resolve_merchant_account

logger = logging.getLogger(__name__)

TaxCalculator = Callable[[Product, int, Order], int]


class PurchaseInvalid(Exception):
    def __init__(self, message: str, error_code: str):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


def no_tax(product: Product, price_cents: int, order: Order) -> int:
    return 0


def platform_fee_cents(price_cents: int, merchant_account: MerchantAccount | None = None) -> int:
    if price_cents <= 0:
        return 0
    if merchant_account is not None and merchant_account.has_zero_platform_fee:
        return 0
    variable = (Decimal(price_cents) * settings.PLATFORM_FEE_PER_THOUSAND / 1000).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return min(price_cents, int(variable) + settings.PLATFORM_FIXED_FEE_CENTS)


class OrderCreateService:
    """Validates line items and turns the valid ones into in-progress purchases of a new order."""

    def __init__(
        self,
        db: Session,
        params: OrderCreateRequest,
        buyer: User | None = None,
        tax_calculator: TaxCalculator = no_tax,
    ):
        self.db = db
        self.params = params
        self.buyer = buyer
        self.tax_calculator = tax_calculator
        self.order: Order | None = None

    def perform(self) -> tuple[Order, dict[str, dict]]:
        self.order = Order(
            purchaser_id=self.buyer.id if self.buyer else None,
            email=self.params.email,
            browser_guid=self.params.browser_guid,
            ip_address=self.params.ip_address,
            session_id=self.params.session_id,
        )
        self.db.add(self.order)
        self.db.flush()

        errors: dict[str, dict] = {}
        for position, item in enumerate(self.params.line_items):
            try:
                purchase = self._build_purchase(item, position)
            except PurchaseInvalid as exc:
                logger.warning(
                    "Line item %s of order %s rejected: %s", item.uid, self.order.external_id, exc.error_code
                )
                errors[item.uid] = {
                    "success": False,
                    "permalink": item.permalink,
                    "error_message": exc.message,
                    "error_code": exc.error_code,
                }
                continue
            self.db.add(purchase)
            self.db.flush()

        self.db.commit()
        self.db.refresh(self.order)
        logger.info(
            "Order %s created with %s purchase(s), %s rejected line item(s)",
            self.order.external_id,
            len(self.order.purchases),
            len(errors),
        )
        return self.order, errors

    def _build_purchase(self, item: LineItemRequest, position: int) -> Purchase:
        product = self.db.query(Product).filter(Product.permalink == item.permalink).first()
        if not product:
            raise PurchaseInvalid("This product could not be found.", PurchaseErrorCode.PRODUCT_NOT_FOUND)
        if not product.is_active:
            raise PurchaseInvalid("This product is not for sale.", PurchaseErrorCode.NOT_FOR_SALE)

        self._validate_quantity(product, item)
        self._validate_free_trial(product, item)
        offer_code = self._find_offer_code(product, item)

        unit_price = product.price_cents
        if offer_code is not None:
            unit_price = offer_code.discounted_price_cents(unit_price)
        displayed_price_cents = unit_price * item.quantity
        if abs(item.perceived_price_cents - displayed_price_cents) > settings.PRICE_TOLERANCE_CENTS:
            raise PurchaseInvalid(
                "The price just changed! Refresh the page for the updated price.",
                PurchaseErrorCode.PERCEIVED_PRICE_CENTS_NOT_MATCHING,
            )

        self._ensure_not_double_charged(product, item)

        processor_id = self.params.payment_method.processor.value
        try:
            merchant_account = resolve_merchant_account(self.db, product.seller_id, processor_id)
        except MerchantAccountNotFound:
            raise PurchaseInvalid(
                "This seller cannot accept payments with this payment method.",
                PurchaseErrorCode.MERCHANT_ACCOUNT_MISSING,
            )

        rate = currency_converter.get_rate(product.price_currency)
        price_cents = currency_converter.to_usd_cents(product.price_currency, displayed_price_cents, rate=rate)
        if merchant_account.has_zero_platform_fee or price_cents == 0:
            tax_cents = 0
        else:
            tax_cents = int(self.tax_calculator(product, price_cents, self.order))
        fee_cents = platform_fee_cents(price_cents, merchant_account)

        return Purchase(
            order_id=self.order.id,
            product_id=product.id,
            seller_id=product.seller_id,
            purchaser_id=self.order.purchaser_id,
            merchant_account_id=merchant_account.id,
            offer_code_id=offer_code.id if offer_code else None,
            line_item_uid=item.uid,
            position=position,
            email=self.order.email,
            browser_guid=self.order.browser_guid,
            ip_address=self.order.ip_address,
            quantity=item.quantity,
            referrer=item.referrer,
            purchase_state=IN_PROGRESS,
            price_cents=price_cents,
            tax_cents=tax_cents,
            fee_cents=fee_cents,
            total_transaction_cents=price_cents + tax_cents,
            displayed_price_cents=displayed_price_cents,
            displayed_price_currency=product.price_currency,
            rate_converted_to_usd=rate,
            perceived_price_cents=item.perceived_price_cents,
            is_free_trial_purchase=item.is_free_trial_purchase,
            is_original_subscription_purchase=bool(product.is_recurring_billing) and not item.is_upgrade_purchase,
            is_upgrade_purchase=item.is_upgrade_purchase,
            subscription_duration=product.subscription_duration if product.is_recurring_billing else None,
            charge_processor_id=processor_id,
        )

    def _validate_quantity(self, product: Product, item: LineItemRequest) -> None:
        if item.quantity < 1 or (product.is_recurring_billing and item.quantity != 1):
            raise PurchaseInvalid("Please choose a valid quantity.", PurchaseErrorCode.INVALID_QUANTITY)
        if product.max_purchase_count is None:
            return

        sold = (
            self.db.query(func.coalesce(func.sum(Purchase.quantity), 0))
            .filter(
                Purchase.product_id == product.id,
                Purchase.purchase_state.in_([SUCCESSFUL, IN_PROGRESS, NOT_CHARGED]),
            )
            .scalar()
        )
        remaining = product.max_purchase_count - int(sold)
        if remaining <= 0:
            raise PurchaseInvalid("Sold out, please go back and pick another option.", PurchaseErrorCode.PRODUCT_SOLD_OUT)
        if item.quantity > remaining:
            raise PurchaseInvalid(
                "You have chosen a quantity that exceeds what is available.",
                PurchaseErrorCode.EXCEEDING_PRODUCT_QUANTITY,
            )

    def _validate_free_trial(self, product: Product, item: LineItemRequest) -> None:
        if not item.is_free_trial_purchase:
            return
        duration = item.perceived_free_trial_duration
        if (
            not product.free_trial_enabled
            or duration is None
            or duration.unit != product.free_trial_duration_unit
            or duration.amount != product.free_trial_duration_amount
        ):
            raise PurchaseInvalid(
                "The product's free trial has changed, please refresh the page!",
                PurchaseErrorCode.INVALID_FREE_TRIAL,
            )

    def _find_offer_code(self, product: Product, item: LineItemRequest) -> OfferCode | None:
        if not item.discount_code:
            return None
        offer_code = (
            self.db.query(OfferCode)
            .filter(
                OfferCode.seller_id == product.seller_id,
                func.lower(OfferCode.code) == item.discount_code.lower(),
                OfferCode.is_active.is_(True),
            )
            .first()
        )
        if offer_code is None or not offer_code.applies_to(product):
            raise PurchaseInvalid(
                "Sorry, the discount code you wish to use is invalid.", PurchaseErrorCode.OFFER_CODE_INVALID
            )
        return offer_code

    def _ensure_not_double_charged(self, product: Product, item: LineItemRequest) -> None:
        if product.allow_double_charges:
            return
        if not (self.order.browser_guid or self.order.ip_address):
            return

        window = (
            settings.UPGRADE_DOUBLE_CHARGE_WINDOW_SECONDS
            if item.is_upgrade_purchase
            else settings.DOUBLE_CHARGE_WINDOW_SECONDS
        )
        cutoff = utcnow() - timedelta(seconds=window)
        recent = (
            self.db.query(Purchase)
            .filter(
                Purchase.product_id == product.id,
                Purchase.email == self.order.email,
                Purchase.order_id != self.order.id,
                Purchase.purchase_state.in_([SUCCESSFUL, IN_PROGRESS]),
            )
            .all()
        )
        for purchase in recent:
            same_buyer = (
                self.order.browser_guid and purchase.browser_guid == self.order.browser_guid
            ) or (self.order.ip_address and purchase.ip_address == self.order.ip_address)
            created_at = as_utc(purchase.created_at)
            if not same_buyer or created_at is None or created_at < cutoff:
                continue
            if purchase.purchase_state == SUCCESSFUL:
                raise PurchaseInvalid(
                    "You have already paid for this product. It has been emailed to you.",
                    PurchaseErrorCode.DOUBLE_PURCHASE,
                )
            raise PurchaseInvalid(
                "You have already attempted to purchase this product. "
                "We will email you shortly if the purchase is successful.",
                PurchaseErrorCode.DOUBLE_PURCHASE,
            )
