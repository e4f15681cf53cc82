from enum import Enum
from typing import Any

from pydantic import BaseModel, EmailStr, Field, field_validator


class ChargeProcessor(str, Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"


class FreeTrialDuration(BaseModel):
    unit: str
    amount: int


class LineItemRequest(BaseModel):
    uid: str = Field(min_length=1, max_length=100)
    permalink: str
    perceived_price_cents: int = Field(ge=0)
    quantity: int = 1
    referrer: str | None = None
    is_free_trial_purchase: bool = False
    perceived_free_trial_duration: FreeTrialDuration | None = None
    is_upgrade_purchase: bool = False
    discount_code: str | None = None


class PaymentMethodRequest(BaseModel):
    processor: ChargeProcessor = ChargeProcessor.STRIPE
    payment_method_id: str | None = None
    customer_id: str | None = None
    setup_intent_id: str | None = None
    billing_agreement_id: str | None = None
    paypal_order_id: str | None = None
    save_for_future: bool = False


class OrderCreateRequest(BaseModel):
    email: EmailStr
    line_items: list[LineItemRequest] = Field(min_length=1)
    payment_method: PaymentMethodRequest = Field(default_factory=PaymentMethodRequest)
    browser_guid: str | None = None
    ip_address: str | None = None
    session_id: str | None = None

    @field_validator("line_items")
    @classmethod
    def uids_must_be_unique(cls, value: list[LineItemRequest]) -> list[LineItemRequest]:
        uids = [item.uid for item in value]
        if len(uids) != len(set(uids)):
            raise ValueError("line item uids must be unique")
        return value

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "email": "buyer@example.com",
                    "line_items": [
                        {"uid": "item-1", "permalink": "ebook", "perceived_price_cents": 500, "quantity": 1},
                        {"uid": "item-2", "permalink": "course", "perceived_price_cents": 1500, "quantity": 1},
                    ],
                    "payment_method": {"processor": "stripe", "payment_method_id": "pm_card_visa"},
                    "browser_guid": "3f1c2a",
                }
            ]
        }
    }


class ConfirmError(BaseModel):
    code: str | None = None
    message: str | None = None


class OrderConfirmRequest(BaseModel):
    client_secret: str
    error: ConfirmError | None = None


class OrderChargeResponse(BaseModel):
    order_id: str
    line_items: dict[str, dict[str, Any]]


class OrderConfirmResponse(BaseModel):
    order_id: str
    line_items: dict[str, dict[str, Any]]
    offer_codes: list[dict[str, Any]] = []


class ChargeResponse(BaseModel):
    id: str
    seller_id: int
    amount_cents: int | None
    gumroad_amount_cents: int | None
    processor_transaction_id: str | None
    processor_fee_cents: int | None
    processor_fee_currency: str | None

    model_config = {"from_attributes": True}


class OrderDetailResponse(BaseModel):
    id: str
    email: str
    line_items: dict[str, dict[str, Any]]
    charges: list[ChargeResponse]


class PaymentMethodsResponse(BaseModel):
    available_methods: list[ChargeProcessor]
    enabled_methods: list[ChargeProcessor]
