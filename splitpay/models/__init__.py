from splitpay.models.database import Base, get_db
from splitpay.models.user import User
from splitpay.models.merchant_account import MerchantAccount
from splitpay.models.product import OfferCode, Product
from splitpay.models.order import Charge, Order, Purchase
from splitpay.models.gateway_attempt import GatewayAttempt

__all__ = [
    "Base",
    "get_db",
    "User",
    "MerchantAccount",
    "Product",
    "OfferCode",
    "Order",
    "Purchase",
    "Charge",
    "GatewayAttempt",
]
