import logging
import re
import secrets
import time

import stripe

from splitpay.services.payment_gateways import (
    Captured,
    Declined,
    GatewayAdapter,
    GatewayErrorKind,
    GatewayResult,
    MandateOptions,
    PaymentMethod,
    RefundResult,
    RequiresAction,
    Unavailable,
)

logger = logging.getLogger(__name__)

MANDATE_PREFIX = "Mandate-"
STATEMENT_DESCRIPTOR_SUFFIX_MAX_LENGTH = 22
PAYMENT_INTENT_EXPAND = ["latest_charge.balance_transaction"]


def _configure() -> None:
    from splitpay.config import settings

    if not settings.STRIPE_SECRET_KEY:
        raise ValueError("STRIPE_SECRET_KEY is not set")
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.max_network_retries = 0
    stripe.default_http_client = stripe.RequestsClient(timeout=settings.GATEWAY_TIMEOUT_SECONDS)


def statement_descriptor_suffix(name: str | None) -> str | None:
    if not name:
        return None
    cleaned = re.sub(r"[^A-Z0-9./\s]", "", name.upper()).strip()
    return cleaned[:STATEMENT_DESCRIPTOR_SUFFIX_MAX_LENGTH].strip() or None


def mandate_payload(mandate_options: MandateOptions, currency: str | None = None) -> dict:
    payload = {
        "reference": f"{MANDATE_PREFIX}{secrets.token_hex(8)}",
        "amount": mandate_options.amount,
        "amount_type": mandate_options.amount_type,
        "start_date": int(time.time()),
        "interval": mandate_options.interval,
        "supported_types": ["india"],
    }
    if mandate_options.interval_count is not None:
        payload["interval_count"] = mandate_options.interval_count
    if currency:
        payload["currency"] = currency
    return payload


def intent_id_from_client_secret(client_secret: str) -> str:
    return client_secret.split("_secret_")[0]


def _is_connect_account(merchant_account) -> bool:
    return (
        merchant_account is not None
        and not merchant_account.is_platform_account
        and bool(merchant_account.is_stripe_connect)
    )


def _request_options(merchant_account) -> dict:
    if _is_connect_account(merchant_account):
        return {"stripe_account": merchant_account.charge_processor_merchant_id}
    return {}


def _latest_charge(intent) -> dict:
    latest_charge = intent.get("latest_charge")
    if isinstance(latest_charge, str):
        return {"id": latest_charge}
    return latest_charge or {}


def _captured_from_intent(intent) -> Captured:
    charge = _latest_charge(intent)
    balance_transaction = charge.get("balance_transaction")
    fee_cents = None
    fee_currency = None
    if balance_transaction and not isinstance(balance_transaction, str):
        fee_cents = balance_transaction.get("fee")
        fee_currency = balance_transaction.get("currency")
    card = (charge.get("payment_method_details") or {}).get("card") or {}
    return Captured(
        transaction_id=charge.get("id") or intent.get("id"),
        payment_intent_id=intent.get("id"),
        fee_cents=fee_cents,
        fee_currency=fee_currency,
        fingerprint=card.get("fingerprint"),
    )


def _result_from_intent(intent) -> GatewayResult:
    intent_status = intent.get("status")
    if intent_status == "succeeded":
        return _captured_from_intent(intent)
    if intent_status == "requires_action":
        return RequiresAction(client_secret=intent.get("client_secret"), payment_intent_id=intent.get("id"))

    last_error = intent.get("last_payment_error") or {}
    reason = last_error.get("message") or "Your card was declined."
    logger.info("Stripe payment intent %s ended in status %s", intent.get("id"), intent_status)
    return Declined(reason=reason, error_code=last_error.get("decline_code") or last_error.get("code"))


def _result_from_error(exc: stripe.StripeError) -> GatewayResult:
    if isinstance(exc, stripe.CardError):
        error = (exc.json_body or {}).get("error") or {}
        return Declined(
            reason=exc.user_message or "Your card was declined.",
            error_code=error.get("decline_code") or exc.code,
        )
    if isinstance(exc, stripe.InvalidRequestError):
        logger.error("Stripe rejected request: %s", exc)
        return Declined(
            reason=exc.user_message or "Your payment could not be processed.",
            kind=GatewayErrorKind.INVALID_REQUEST,
            error_code=exc.code,
        )
    if isinstance(exc, (stripe.APIConnectionError, stripe.APIError, stripe.RateLimitError)):
        logger.warning("Stripe unavailable: %s", exc)
        return Unavailable(cause=str(exc))
    logger.error("Unexpected Stripe error: %s", exc, exc_info=True)
    return Unavailable(cause=str(exc))


class StripeAdapter(GatewayAdapter):
    processor_id = "stripe"

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
        _configure()
        params = {
            "amount": amount_cents,
            "currency": currency,
            "payment_method": payment_method.payment_method_id,
            "payment_method_types": ["card"],
            "confirm": True,
            "metadata": dict(payment_method.metadata),
            "expand": PAYMENT_INTENT_EXPAND,
        }
        if payment_method.customer_id:
            params["customer"] = payment_method.customer_id
        if payment_method.off_session:
            params["off_session"] = True
        elif payment_method.save_for_future or mandate_options is not None:
            params["setup_future_usage"] = "off_session"

        suffix = statement_descriptor_suffix(description)
        if suffix:
            params["statement_descriptor_suffix"] = suffix
        if mandate_options is not None:
            params["payment_method_options"] = {
                "card": {"mandate_options": mandate_payload(mandate_options, currency=currency)}
            }

        if _is_connect_account(merchant_account):
            if gumroad_amount_cents > 0:
                params["application_fee_amount"] = gumroad_amount_cents
        elif merchant_account is not None and not merchant_account.is_platform_account:
            params["transfer_group"] = idempotency_key
            params["transfer_data"] = {
                "destination": merchant_account.charge_processor_merchant_id,
                "amount": amount_cents - gumroad_amount_cents,
            }

        try:
            intent = stripe.PaymentIntent.create(
                idempotency_key=idempotency_key,
                **_request_options(merchant_account),
                **params,
            )
        except stripe.StripeError as exc:
            return _result_from_error(exc)

        logger.info("Stripe payment intent %s created with status %s", intent.get("id"), intent.get("status"))
        return _result_from_intent(intent)

    def confirm(self, client_secret: str, merchant_account) -> GatewayResult:
        _configure()
        intent_id = intent_id_from_client_secret(client_secret)
        request_options = _request_options(merchant_account)
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, expand=PAYMENT_INTENT_EXPAND, **request_options)
            if intent.get("status") == "requires_confirmation":
                intent = stripe.PaymentIntent.confirm(intent_id, expand=PAYMENT_INTENT_EXPAND, **request_options)
        except stripe.StripeError as exc:
            return _result_from_error(exc)
        return _result_from_intent(intent)

    def refund(
        self,
        transaction_id: str,
        merchant_account,
        amount_cents: int | None = None,
        idempotency_key: str | None = None,
        exchange_rates: dict | None = None,
    ) -> RefundResult:
        _configure()
        params = {"charge": transaction_id}
        if amount_cents is not None:
            params["amount"] = amount_cents
        if merchant_account is not None and not merchant_account.is_platform_account:
            if _is_connect_account(merchant_account):
                params["refund_application_fee"] = True
            else:
                params["reverse_transfer"] = True
                params["refund_application_fee"] = True
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        try:
            refund = stripe.Refund.create(**_request_options(merchant_account), **params)
        except stripe.InvalidRequestError as exc:
            if "already been refunded" in str(exc):
                return RefundResult(success=False, error_kind=GatewayErrorKind.ALREADY_REFUNDED, message=str(exc))
            return RefundResult(success=False, error_kind=GatewayErrorKind.INVALID_REQUEST, message=str(exc))
        except (stripe.APIConnectionError, stripe.APIError, stripe.RateLimitError) as exc:
            logger.warning("Stripe unavailable during refund of %s: %s", transaction_id, exc)
            return RefundResult(success=False, error_kind=GatewayErrorKind.UNAVAILABLE, message=str(exc))

        logger.info("Stripe refund %s created for charge %s", refund.get("id"), transaction_id)
        return RefundResult(success=True, refund_id=refund.get("id"), amount_cents=refund.get("amount"))
