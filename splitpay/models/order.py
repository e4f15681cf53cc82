import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from splitpay.models.database import Base, utcnow

IN_PROGRESS = "in_progress"
SUCCESSFUL = "successful"
FAILED = "failed"
NOT_CHARGED = "not_charged"
TERMINAL_STATES = frozenset({SUCCESSFUL, FAILED, NOT_CHARGED})


def generate_external_id() -> str:
    return uuid.uuid4().hex


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(32), unique=True, index=True, nullable=False, default=generate_external_id)
    purchaser_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    email = Column(String(255), nullable=False)
    browser_guid = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    session_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), default=utcnow)

    purchases = relationship("Purchase", back_populates="order", order_by="Purchase.position")
    charges = relationship("Charge", back_populates="order", order_by="Charge.id")


class Purchase(Base):
    __tablename__ = "purchases"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(32), unique=True, index=True, nullable=False, default=generate_external_id)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    purchaser_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    merchant_account_id = Column(Integer, ForeignKey("merchant_accounts.id"), nullable=True)
    charge_id = Column(Integer, ForeignKey("charges.id"), nullable=True, index=True)
    offer_code_id = Column(Integer, ForeignKey("offer_codes.id"), nullable=True)

    line_item_uid = Column(String(100), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    email = Column(String(255), nullable=False, index=True)
    browser_guid = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    referrer = Column(String(255), nullable=True)

    purchase_state = Column(String(20), nullable=False, default=IN_PROGRESS)  # in_progress | successful | failed | not_charged

    # USD cents
    price_cents = Column(Integer, nullable=False, default=0)
    tax_cents = Column(Integer, nullable=False, default=0)
    fee_cents = Column(Integer, nullable=False, default=0)
    total_transaction_cents = Column(Integer, nullable=False, default=0)
    refunded_cents = Column(Integer, nullable=False, default=0)

    displayed_price_cents = Column(Integer, nullable=False, default=0)
    displayed_price_currency = Column(String(3), nullable=False, default="usd")
    rate_converted_to_usd = Column(Numeric(18, 6), nullable=True)
    perceived_price_cents = Column(Integer, nullable=True)

    is_free_trial_purchase = Column(Boolean, nullable=False, default=False)
    is_original_subscription_purchase = Column(Boolean, nullable=False, default=False)
    is_upgrade_purchase = Column(Boolean, nullable=False, default=False)
    subscription_duration = Column(String(20), nullable=True)

    charge_processor_id = Column(String(20), nullable=True)  # stripe | paypal
    processor_transaction_id = Column(String(255), nullable=True, index=True)
    processor_payment_intent_id = Column(String(255), nullable=True)
    processor_setup_intent_id = Column(String(255), nullable=True)
    payment_method_fingerprint = Column(String(255), nullable=True)

    error_code = Column(String(100), nullable=True)
    error_message = Column(String(500), nullable=True)
    chargeback_date = Column(DateTime(timezone=True), nullable=True)
    chargeback_reversed = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), default=utcnow)
    succeeded_at = Column(DateTime(timezone=True), nullable=True)

    order = relationship("Order", back_populates="purchases")
    charge = relationship("Charge", back_populates="purchases")
    product = relationship("Product")
    seller = relationship("User", foreign_keys=[seller_id])
    merchant_account = relationship("MerchantAccount")
    offer_code = relationship("OfferCode")

    @property
    def total_transaction_amount_for_gumroad_cents(self) -> int:
        """Platform's portion of the total: fee plus the tax the platform remits."""
        return (self.fee_cents or 0) + (self.tax_cents or 0)

    @property
    def seller_net_cents(self) -> int:
        return (self.total_transaction_cents or 0) - self.total_transaction_amount_for_gumroad_cents

    @property
    def is_terminal(self) -> bool:
        return self.purchase_state in TERMINAL_STATES

    @property
    def is_free(self) -> bool:
        return (self.total_transaction_cents or 0) == 0

    @property
    def is_deferred(self) -> bool:
        return bool(self.is_free_trial_purchase)

    @property
    def is_recurring(self) -> bool:
        return bool(self.is_original_subscription_purchase or self.is_upgrade_purchase)

    def purchase_response(self) -> dict:
        product = self.product
        response = {
            "success": self.purchase_state in {SUCCESSFUL, NOT_CHARGED},
            "id": self.external_id,
            "permalink": product.permalink if product else None,
            "name": product.name if product else None,
            "price_cents": self.price_cents,
            "total_transaction_cents": self.total_transaction_cents,
            "displayed_price_cents": self.displayed_price_cents,
            "displayed_price_currency": self.displayed_price_currency,
            "quantity": self.quantity,
            "purchase_state": self.purchase_state,
        }
        if self.purchase_state == NOT_CHARGED:
            response["not_charged"] = True
        if self.purchase_state == FAILED:
            response["error_message"] = self.error_message
            response["error_code"] = self.error_code
        return response


class Charge(Base):
    __tablename__ = "charges"
    __table_args__ = (UniqueConstraint("order_id", "seller_id", name="uq_charges_order_seller"),)

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(32), unique=True, index=True, nullable=False, default=generate_external_id)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    merchant_account_id = Column(Integer, ForeignKey("merchant_accounts.id"), nullable=True)

    # USD cents; null until the processor captured money
    amount_cents = Column(Integer, nullable=True)
    gumroad_amount_cents = Column(Integer, nullable=True)
    processor_transaction_id = Column(String(255), nullable=True, index=True)
    processor_payment_intent_id = Column(String(255), nullable=True)
    processor_fee_cents = Column(Integer, nullable=True)
    processor_fee_currency = Column(String(3), nullable=True)
    payment_method_fingerprint = Column(String(255), nullable=True)
    payment_method_id = Column(String(255), nullable=True)
    stripe_setup_intent_id = Column(String(255), nullable=True)
    paypal_order_id = Column(String(255), nullable=True)
    disputed_at = Column(DateTime(timezone=True), nullable=True)
    dispute_reversed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), default=utcnow)

    order = relationship("Order", back_populates="charges")
    purchases = relationship("Purchase", back_populates="charge", order_by="Purchase.position")
    merchant_account = relationship("MerchantAccount")
    seller = relationship("User")

    def successful_purchases(self) -> list[Purchase]:
        return [p for p in self.purchases if p.purchase_state == SUCCESSFUL]

    def expected_amounts(self) -> tuple[int, int]:
        purchases = self.successful_purchases()
        amount = sum(p.total_transaction_cents or 0 for p in purchases)
        if self.merchant_account is not None and self.merchant_account.has_zero_platform_fee:
            return amount, 0
        return amount, sum(p.total_transaction_amount_for_gumroad_cents for p in purchases)

    def reconciles(self) -> bool:
        if self.amount_cents is None:
            return True
        return (self.amount_cents, self.gumroad_amount_cents or 0) == self.expected_amounts()
