from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Table
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from splitpay.models.database import Base

offer_code_products = Table(
    "offer_code_products",
    Base.metadata,
    Column("offer_code_id", Integer, ForeignKey("offer_codes.id"), primary_key=True),
    Column("product_id", Integer, ForeignKey("products.id"), primary_key=True),
)


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    permalink = Column(String(100), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    price_cents = Column(Integer, nullable=False, default=0)  # in price_currency minor units
    price_currency = Column(String(3), nullable=False, default="usd")
    max_purchase_count = Column(Integer, nullable=True)  # null = unlimited
    is_recurring_billing = Column(Boolean, nullable=False, default=False)
    # monthly | quarterly | biannually | yearly | every_two_years
    subscription_duration = Column(String(20), nullable=True)
    free_trial_enabled = Column(Boolean, nullable=False, default=False)
    free_trial_duration_amount = Column(Integer, nullable=True)
    free_trial_duration_unit = Column(String(10), nullable=True)  # week | month
    allow_double_charges = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    seller = relationship("User")


class OfferCode(Base):
    __tablename__ = "offer_codes"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    code = Column(String(100), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=True)
    amount_percentage = Column(Numeric(5, 2), nullable=True)
    universal = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    products = relationship("Product", secondary=offer_code_products)

    def applies_to(self, product: Product) -> bool:
        if not self.is_active:
            return False
        if self.universal:
            return product.seller_id == self.seller_id
        return any(p.id == product.id for p in self.products)

    def discounted_price_cents(self, price_cents: int) -> int:
        if self.amount_cents is not None:
            return max(0, price_cents - self.amount_cents)
        if self.amount_percentage is not None:
            discount = (Decimal(price_cents) * Decimal(str(self.amount_percentage)) / 100).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
            return max(0, price_cents - int(discount))
        return price_cents

    def discount_summary(self) -> dict:
        if self.amount_cents is not None:
            return {"type": "fixed", "cents": self.amount_cents}
        return {"type": "percent", "percents": float(self.amount_percentage or 0)}
