import logging
import time
from decimal import Decimal

import httpx

from splitpay.services import currency as currency_converter
from splitpay.services.error_codes import PurchaseErrorCode
from splitpay.services.payment_gateways import (
    Captured,
    Declined,
    GatewayAdapter,
    GatewayErrorKind,
    GatewayResult,
    MandateOptions,
    PaymentMethod,
    RefundResult,
    Unavailable,
)

logger = logging.getLogger(__name__)

CAPTURE_ISSUES = {
    "AGREEMENT_ALREADY_CANCELLED": (
        GatewayErrorKind.PAYER_CANCELLED_MANDATE,
        PurchaseErrorCode.PAYPAL_PAYER_CANCELLED_BILLING_AGREEMENT,
        "Your PayPal billing agreement was cancelled. Please log in to PayPal and try again.",
    ),
    "TRANSACTION_REFUSED": (
        GatewayErrorKind.PAYER_ACCOUNT_DECLINED,
        PurchaseErrorCode.PAYPAL_PAYER_ACCOUNT_DECLINED_PAYMENT,
        "Your PayPal account declined this payment. Please try another payment method.",
    ),
    "PAYER_CANNOT_PAY": (
        GatewayErrorKind.PAYER_ACCOUNT_DECLINED,
        PurchaseErrorCode.PAYPAL_PAYER_ACCOUNT_DECLINED_PAYMENT,
        "Your PayPal account declined this payment. Please try another payment method.",
    ),
    "PAYEE_ACCOUNT_RESTRICTED": (
        GatewayErrorKind.PAYEE_ACCOUNT_RESTRICTED,
        PurchaseErrorCode.PAYPAL_MERCHANT_ACCOUNT_RESTRICTED,
        "The seller cannot accept PayPal payments right now.",
    ),
}
REFUND_ISSUES = {
    "CAPTURE_FULLY_REFUNDED": GatewayErrorKind.ALREADY_REFUNDED,
    "REFUND_FAILED_INSUFFICIENT_FUNDS": GatewayErrorKind.INSUFFICIENT_FUNDS,
}


class PaypalApiError(Exception):
    def __init__(self, status_code: int, name: str | None, issues: list[str], message: str | None = None):
        self.status_code = status_code
        self.name = name
        self.issues = issues
        super().__init__(message or name or f"PayPal API error {status_code}")

    @property
    def is_internal_error(self) -> bool:
        return self.status_code >= 500 or self.name == "INTERNAL_ERROR" or "INTERNAL_ERROR" in self.issues


class PaypalClient:
    """Minimal PayPal REST client with a cached client-credentials token."""

    def __init__(
        self,
        base_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        from splitpay.config import settings

        self.client_id = client_id if client_id is not None else settings.PAYPAL_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.PAYPAL_CLIENT_SECRET
        if not self.client_id or not self.client_secret:
            raise ValueError("PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET must be set")
        self._http = httpx.Client(
            base_url=base_url or settings.PAYPAL_API_BASE,
            timeout=timeout or settings.GATEWAY_TIMEOUT_SECONDS,
            transport=transport,
        )
        self._token: str | None = None
        self._token_expires_at = 0.0

    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        response = self._http.post(
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
        )
        self._raise_for_error(response)
        payload = response.json()
        self._token = payload["access_token"]
        self._token_expires_at = time.monotonic() + int(payload.get("expires_in", 0)) - 60
        return self._token

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        try:
            body = response.json()
        except ValueError:
            body = {}
        issues = [detail.get("issue") for detail in body.get("details") or [] if detail.get("issue")]
        raise PaypalApiError(response.status_code, body.get("name"), issues, body.get("message"))

    def request(self, method: str, path: str, json: dict | None = None, request_id: str | None = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        response = self._http.request(method, path, json=json, headers=headers)
        self._raise_for_error(response)
        return response.json() if response.content else {}


def _settlement_currency(merchant_account, currency: str) -> str:
    if merchant_account is not None and merchant_account.currency:
        return merchant_account.currency.lower()
    return currency.lower()


def _amount(currency: str, usd_cents: int, exchange_rates: dict | None = None) -> dict:
    rate = (exchange_rates or {}).get(currency.lower())
    minor_units = currency_converter.from_usd_cents(currency, usd_cents, rate=rate, processor_id="paypal")
    return {
        "currency_code": currency.upper(),
        "value": currency_converter.format_amount(currency, minor_units, processor_id="paypal"),
    }


def _fee_from_capture(capture: dict) -> tuple[int | None, str | None]:
    paypal_fee = (capture.get("seller_receivable_breakdown") or {}).get("paypal_fee")
    if not paypal_fee:
        return None, None
    fee_currency = paypal_fee["currency_code"].lower()
    value = Decimal(paypal_fee["value"])
    if fee_currency not in currency_converter.ZERO_DECIMAL_CURRENCIES:
        value *= 100
    return int(value), fee_currency


def _first_capture(order: dict) -> dict:
    for unit in order.get("purchase_units") or []:
        captures = (unit.get("payments") or {}).get("captures") or []
        if captures:
            return captures[0]
    return {}


def _result_from_capture(order: dict) -> GatewayResult:
    capture = _first_capture(order)
    capture_status = capture.get("status")
    reason = (capture.get("status_details") or {}).get("reason")
    if capture_status == "COMPLETED" or (capture_status == "PENDING" and reason == "PENDING_REVIEW"):
        fee_cents, fee_currency = _fee_from_capture(capture)
        return Captured(
            transaction_id=capture["id"],
            payment_intent_id=order.get("id"),
            fee_cents=fee_cents,
            fee_currency=fee_currency,
        )
    logger.warning("PayPal capture for order %s ended in %s (%s)", order.get("id"), capture_status, reason)
    return Declined(
        reason="Your PayPal payment could not be completed.",
        error_code=PurchaseErrorCode.PAYPAL_CAPTURE_FAILURE,
    )


def _result_from_error(exc: PaypalApiError, capturing: bool) -> GatewayResult:
    if exc.is_internal_error:
        logger.warning("PayPal unavailable: %s", exc)
        return Unavailable(cause=str(exc))
    for issue in exc.issues:
        if issue == "PAYEE_ACCOUNT_RESTRICTED" or (capturing and issue in CAPTURE_ISSUES):
            kind, error_code, message = CAPTURE_ISSUES[issue]
            return Declined(reason=message, kind=kind, error_code=error_code)
    logger.error("PayPal rejected request: %s %s", exc.name, exc.issues)
    return Declined(
        reason="Your PayPal payment could not be processed.",
        kind=GatewayErrorKind.INVALID_REQUEST,
        error_code=exc.issues[0].lower() if exc.issues else None,
    )


class PaypalAdapter(GatewayAdapter):
    processor_id = "paypal"

    def __init__(self, client: PaypalClient | None = None):
        self._client = client

    @property
    def client(self) -> PaypalClient:
        if self._client is None:
            self._client = PaypalClient()
        return self._client

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
        paypal_order_id = payment_method.paypal_order_id
        capturing = False
        try:
            if not paypal_order_id:
                order = self.client.request(
                    "POST",
                    "/v2/checkout/orders",
                    json=self._order_payload(
                        amount_cents, currency, payment_method, idempotency_key,
                        merchant_account, gumroad_amount_cents, description, exchange_rates,
                    ),
                    request_id=idempotency_key,
                )
                paypal_order_id = order["id"]
            capturing = True
            captured = self.client.request(
                "POST",
                f"/v2/checkout/orders/{paypal_order_id}/capture",
                json={},
                request_id=f"{idempotency_key}-capture",
            )
        except PaypalApiError as exc:
            return _result_from_error(exc, capturing=capturing)
        except httpx.HTTPError as exc:
            logger.warning("PayPal request failed: %s", exc)
            return Unavailable(cause=str(exc))
        except currency_converter.CurrencyRateUnavailable as exc:
            logger.error("Cannot price PayPal order: %s", exc)
            return Unavailable(cause=str(exc))

        logger.info("PayPal order %s captured with status %s", paypal_order_id, captured.get("status"))
        return _result_from_capture(captured)

    def _order_payload(
        self,
        amount_cents: int,
        currency: str,
        payment_method: PaymentMethod,
        idempotency_key: str,
        merchant_account,
        gumroad_amount_cents: int,
        description: str | None,
        exchange_rates: dict | None = None,
    ) -> dict:
        settlement_currency = _settlement_currency(merchant_account, currency)
        unit = {
            "reference_id": idempotency_key[:256],
            "amount": _amount(settlement_currency, amount_cents, exchange_rates),
        }
        if description:
            unit["soft_descriptor"] = description[:22]
        if merchant_account is not None and not merchant_account.is_platform_account:
            unit["payee"] = {"merchant_id": merchant_account.charge_processor_merchant_id}
            if gumroad_amount_cents > 0:
                unit["payment_instruction"] = {
                    "disbursement_mode": "INSTANT",
                    "platform_fees": [{"amount": _amount(settlement_currency, gumroad_amount_cents, exchange_rates)}],
                }
        payload = {"intent": "CAPTURE", "purchase_units": [unit]}
        if payment_method.billing_agreement_id:
            payload["payment_source"] = {
                "token": {"id": payment_method.billing_agreement_id, "type": "BILLING_AGREEMENT"}
            }
        return payload

    def confirm(self, client_secret: str, merchant_account) -> GatewayResult:
        return Declined(
            reason="PayPal payments cannot be confirmed.",
            kind=GatewayErrorKind.INVALID_REQUEST,
        )

    def refund(
        self,
        transaction_id: str,
        merchant_account,
        amount_cents: int | None = None,
        idempotency_key: str | None = None,
        exchange_rates: dict | None = None,
    ) -> RefundResult:
        body = {}
        try:
            if amount_cents is not None:
                body["amount"] = _amount(_settlement_currency(merchant_account, "usd"), amount_cents, exchange_rates)
            refund = self.client.request(
                "POST",
                f"/v2/payments/captures/{transaction_id}/refund",
                json=body,
                request_id=idempotency_key,
            )
        except PaypalApiError as exc:
            if exc.is_internal_error:
                return RefundResult(success=False, error_kind=GatewayErrorKind.UNAVAILABLE, message=str(exc))
            for issue in exc.issues:
                if issue in REFUND_ISSUES:
                    return RefundResult(success=False, error_kind=REFUND_ISSUES[issue], message=str(exc))
            return RefundResult(success=False, error_kind=GatewayErrorKind.INVALID_REQUEST, message=str(exc))
        except httpx.HTTPError as exc:
            logger.warning("PayPal refund request failed: %s", exc)
            return RefundResult(success=False, error_kind=GatewayErrorKind.UNAVAILABLE, message=str(exc))
        except currency_converter.CurrencyRateUnavailable as exc:
            logger.error("Cannot price PayPal refund: %s", exc)
            return RefundResult(success=False, error_kind=GatewayErrorKind.UNAVAILABLE, message=str(exc))

        logger.info("PayPal refund %s created for capture %s", refund.get("id"), transaction_id)
        return RefundResult(success=True, refund_id=refund.get("id"), amount_cents=amount_cents)

    def verify_webhook_signature(self, headers, event: dict) -> bool:
        from splitpay.config import settings

        if not settings.PAYPAL_WEBHOOK_ID:
            raise ValueError("PAYPAL_WEBHOOK_ID is not set")
        try:
            response = self.client.request(
                "POST",
                "/v1/notifications/verify-webhook-signature",
                json={
                    "auth_algo": headers.get("paypal-auth-algo"),
                    "cert_url": headers.get("paypal-cert-url"),
                    "transmission_id": headers.get("paypal-transmission-id"),
                    "transmission_sig": headers.get("paypal-transmission-sig"),
                    "transmission_time": headers.get("paypal-transmission-time"),
                    "webhook_id": settings.PAYPAL_WEBHOOK_ID,
                    "webhook_event": event,
                },
            )
        except (PaypalApiError, httpx.HTTPError) as exc:
            logger.error("PayPal webhook verification failed: %s", exc)
            return False
        return response.get("verification_status") == "SUCCESS"
