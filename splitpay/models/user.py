from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from splitpay.models.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    username = Column(String(100), unique=True, nullable=True)
    balance_cents = Column(Integer, nullable=False, default=0)  # seller's accrued net, USD cents
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def display_name(self) -> str:
        return self.name or self.username or self.email
