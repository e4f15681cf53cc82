class PurchaseErrorCode:
    PRODUCT_NOT_FOUND = "product_not_found"
    NOT_FOR_SALE = "not_for_sale"
    INVALID_QUANTITY = "invalid_quantity"
    EXCEEDING_PRODUCT_QUANTITY = "exceeding_product_quantity"
    PRODUCT_SOLD_OUT = "product_sold_out"
    PERCEIVED_PRICE_CENTS_NOT_MATCHING = "perceived_price_cents_not_matching"
    INVALID_FREE_TRIAL = "invalid_free_trial"
    OFFER_CODE_INVALID = "offer_code_invalid"
    DOUBLE_PURCHASE = "double_purchase"
    PAYMENT_PROCESSOR_NOT_SUPPORTED = "payment_processor_not_supported"
    MERCHANT_ACCOUNT_MISSING = "merchant_account_missing"

    STRIPE_UNAVAILABLE = "stripe_unavailable"
    PAYPAL_UNAVAILABLE = "paypal_unavailable"
    PAYPAL_CAPTURE_FAILURE = "paypal_capture_failure"
    PAYPAL_MERCHANT_ACCOUNT_RESTRICTED = "paypal_merchant_account_restricted"
    PAYPAL_PAYER_CANCELLED_BILLING_AGREEMENT = "paypal_payer_cancelled_billing_agreement"
    PAYPAL_PAYER_ACCOUNT_DECLINED_PAYMENT = "paypal_payer_account_declined_payment"
    CARD_DECLINED = "card_declined"
    STRIPE_INVALID_REQUEST = "stripe_invalid_request"
    AUTHENTICATION_FAILED = "payment_intent_authentication_failure"
    SCA_EXPIRED = "sca_expired"
    CHARGE_PROCESSING_ERROR = "charge_processing_error"

    @classmethod
    def unavailable_for(cls, processor_id: str | None) -> str:
        return cls.PAYPAL_UNAVAILABLE if processor_id == "paypal" else cls.STRIPE_UNAVAILABLE


GENERIC_ERROR_MESSAGE = "Sorry, something went wrong. Please try again."
AUTHENTICATION_FAILED_MESSAGE = (
    "We are unable to authenticate your payment method. "
    "Please choose a different payment method and try again."
)
ALREADY_PROCESSING_MESSAGE = "Your payment is already being processed."
