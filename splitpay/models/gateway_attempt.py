from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from splitpay.models.database import Base, utcnow


class GatewayAttempt(Base):
    """One processor call per idempotency key; the stored result is replayed on retry."""

    __tablename__ = "gateway_attempts"

    id = Column(Integer, primary_key=True, index=True)
    idempotency_key = Column(String(255), unique=True, index=True, nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    charge_id = Column(Integer, ForeignKey("charges.id"), nullable=False)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    charge_processor_id = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # pending | completed
    result = Column(JSON, nullable=True)
    client_secret = Column(String(255), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)
