from splitpay.schemas.orders import (
    OrderChargeResponse,
    OrderConfirmRequest,
    OrderConfirmResponse,
    OrderCreateRequest,
    OrderDetailResponse,
    PaymentMethodsResponse,
)

__all__ = [
    "OrderCreateRequest",
    "OrderChargeResponse",
    "OrderConfirmRequest",
    "OrderConfirmResponse",
    "OrderDetailResponse",
    "PaymentMethodsResponse",
]
