from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Union

from splitpay.config import settings


class GatewayErrorKind(str, Enum):
    DECLINED = "declined"
    INVALID_REQUEST = "invalid_request"
    ALREADY_REFUNDED = "already_refunded"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    PAYEE_ACCOUNT_RESTRICTED = "payee_account_restricted"
    PAYER_CANCELLED_MANDATE = "payer_cancelled_mandate"
    PAYER_ACCOUNT_DECLINED = "payer_account_declined"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Captured:
    transaction_id: str
    payment_intent_id: str | None = None
    fee_cents: int | None = None
    fee_currency: str | None = None
    fingerprint: str | None = None


@dataclass(frozen=True)
class RequiresAction:
    client_secret: str
    payment_intent_id: str | None = None


@dataclass(frozen=True)
class Declined:
    reason: str
    kind: GatewayErrorKind = GatewayErrorKind.DECLINED
    error_code: str | None = None


@dataclass(frozen=True)
class Unavailable:
    cause: str


GatewayResult = Union[Captured, RequiresAction, Declined, Unavailable]


@dataclass(frozen=True)
class RefundResult:
    success: bool
    refund_id: str | None = None
    amount_cents: int | None = None
    error_kind: GatewayErrorKind | None = None
    message: str | None = None


@dataclass(frozen=True)
class PaymentMethod:
    """Tokenized payment instrument for one processor.

    Stripe: `payment_method_id` (+ optional `customer_id`).
    PayPal: `billing_agreement_id` or an already approved `paypal_order_id`.
    """

    processor_id: str
    payment_method_id: str | None = None
    customer_id: str | None = None
    setup_intent_id: str | None = None
    billing_agreement_id: str | None = None
    paypal_order_id: str | None = None
    off_session: bool = False
    save_for_future: bool = False
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class MandateOptions:
    interval: str
    interval_count: int | None
    amount: int
    amount_type: str = "maximum"


class GatewayAdapter(ABC):
    """Amounts are USD cents. `exchange_rates` maps a currency to the units-per-USD
    rate saved on the purchases at order creation; adapters settling in another
    currency price with it instead of the current rate.
    """

    processor_id: str

    @abstractmethod
    def authorize_or_capture(
        self,
        amount_cents: int,
        currency: str,
        payment_method: PaymentMethod,
        idempotency_key: str,
        merchant_account,
        gumroad_amount_cents: int,
        mandate_options: MandateOptions | None = None,
        description: str | None = None,
        exchange_rates: dict | None = None,
    ) -> GatewayResult:
        ...

    @abstractmethod
    def confirm(self, client_secret: str, merchant_account) -> GatewayResult:
        ...

    @abstractmethod
    def refund(
        self,
        transaction_id: str,
        merchant_account,
        amount_cents: int | None = None,
        idempotency_key: str | None = None,
        exchange_rates: dict | None = None,
    ) -> RefundResult:
        ...


class UnknownChargeProcessor(ValueError):
    pass


def result_to_dict(result: GatewayResult) -> dict:
    payload = asdict(result)
    if isinstance(result, Declined):
        payload["kind"] = result.kind.value
    payload["type"] = type(result).__name__
    return payload


def result_from_dict(payload: dict) -> GatewayResult:
    data = dict(payload)
    result_type = data.pop("type")
    if result_type == "Captured":
        return Captured(**data)
    if result_type == "RequiresAction":
        return RequiresAction(**data)
    if result_type == "Declined":
        data["kind"] = GatewayErrorKind(data.get("kind", GatewayErrorKind.DECLINED.value))
        return Declined(**data)
    if result_type == "Unavailable":
        return Unavailable(**data)
    raise ValueError(f"Unknown gateway result type: {result_type}")


def get_payment_gateways() -> dict[str, GatewayAdapter]:
    from splitpay.services.paypal_service import PaypalAdapter
    from splitpay.services.stripe_service import StripeAdapter

    return {
        "stripe": StripeAdapter(),
        "paypal": PaypalAdapter(),
    }


def is_processor_enabled(processor_id: str) -> bool:
    if processor_id == "stripe":
        return bool(settings.STRIPE_SECRET_KEY)
    if processor_id == "paypal":
        return bool(settings.PAYPAL_CLIENT_ID and settings.PAYPAL_CLIENT_SECRET)
    return False


def get_gateway(processor_id: str) -> GatewayAdapter:
    gateways = get_payment_gateways()
    if processor_id not in gateways:
        raise UnknownChargeProcessor(f"Unsupported charge processor: {processor_id}")
    return gateways[processor_id]


def get_enabled_processors() -> list[str]:
    return [processor_id for processor_id in get_payment_gateways() if is_processor_enabled(processor_id)]
