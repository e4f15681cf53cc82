from fastapi import APIRouter

from splitpay.schemas.orders import PaymentMethodsResponse
from splitpay.services.payment_gateways import get_enabled_processors, get_payment_gateways

router = APIRouter()


@router.get("", response_model=PaymentMethodsResponse, summary="List charge processors")
def payment_methods():
    return PaymentMethodsResponse(
        available_methods=list(get_payment_gateways()),
        enabled_methods=get_enabled_processors(),
    )
