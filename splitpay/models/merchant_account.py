from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from splitpay.models.database import Base

ZERO_PLATFORM_FEE_COUNTRIES = {"BR"}


class MerchantAccount(Base):
    __tablename__ = "merchant_accounts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)  # null = platform account
    charge_processor_id = Column(String(20), nullable=False)  # stripe | paypal
    charge_processor_merchant_id = Column(String(255), nullable=True)
    currency = Column(String(3), nullable=False, default="usd")
    country = Column(String(2), nullable=True)
    is_stripe_connect = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def is_platform_account(self) -> bool:
        return self.user_id is None

    @property
    def is_alive(self) -> bool:
        return self.deleted_at is None

    @property
    def has_zero_platform_fee(self) -> bool:
        """Stripe Connect accounts in some countries cannot carry an application fee."""
        return (
            self.charge_processor_id == "stripe"
            and bool(self.is_stripe_connect)
            and (self.country or "").upper() in ZERO_PLATFORM_FEE_COUNTRIES
        )
