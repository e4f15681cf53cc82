"""Currency conversion between USD cents and a currency's minor units.

Rates are expressed as units of the currency per one USD. Division rounds half-up;
conversions into zero-decimal currencies, and into whole-unit-only currencies for
processors that require them, truncate.
"""

import logging
import threading
import time
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

import httpx

from splitpay.config import settings

logger = logging.getLogger(__name__)

ZERO_DECIMAL_CURRENCIES = {
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
}
# PayPal rejects fractional amounts for these even though they have minor units.
PAYPAL_WHOLE_UNIT_CURRENCIES = {"twd", "huf", "jpy"}

_rate_cache: dict[str, tuple[Decimal, float]] = {}
_rate_lock = threading.Lock()


class CurrencyRateUnavailable(Exception):
    pass


def is_zero_decimal(currency: str, processor_id: str | None = None) -> bool:
    currency = currency.lower()
    if processor_id == "paypal" and currency in PAYPAL_WHOLE_UNIT_CURRENCIES:
        return True
    return currency in ZERO_DECIMAL_CURRENCIES


def _minor_per_unit(currency: str) -> Decimal:
    return Decimal(1) if currency.lower() in ZERO_DECIMAL_CURRENCIES else Decimal(100)


def set_rate(currency: str, rate) -> None:
    with _rate_lock:
        _rate_cache[currency.lower()] = (Decimal(str(rate)), time.monotonic())


def clear_rate_cache() -> None:
    with _rate_lock:
        _rate_cache.clear()


def _fetch_rates() -> dict[str, Decimal]:
    if not settings.EXCHANGE_RATE_URL:
        raise CurrencyRateUnavailable("EXCHANGE_RATE_URL is not set")
    try:
        response = httpx.get(settings.EXCHANGE_RATE_URL, timeout=settings.GATEWAY_TIMEOUT_SECONDS)
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise CurrencyRateUnavailable(f"Could not fetch exchange rates: {exc}") from exc

    rates = payload.get("rates") or {}
    return {code.lower(): Decimal(str(value)) for code, value in rates.items()}


def get_rate(currency: str) -> Decimal:
    """Units of `currency` per one USD, refreshed over HTTP once the cached value expires."""
    currency = currency.lower()
    if currency == "usd":
        return Decimal(1)

    with _rate_lock:
        cached = _rate_cache.get(currency)
    if cached and time.monotonic() - cached[1] < settings.EXCHANGE_RATE_TTL_SECONDS:
        return cached[0]

    try:
        fetched = _fetch_rates()
    except CurrencyRateUnavailable:
        if cached:
            logger.warning("Using stale %s rate after refresh failure", currency.upper())
            return cached[0]
        raise

    now = time.monotonic()
    with _rate_lock:
        for code, value in fetched.items():
            _rate_cache[code] = (value, now)
    if currency not in fetched:
        raise CurrencyRateUnavailable(f"No exchange rate for {currency.upper()}")
    logger.info("Refreshed exchange rates (%s currencies)", len(fetched))
    return fetched[currency]


def to_usd_cents(currency: str, minor_units: int, rate=None) -> int:
    currency = currency.lower()
    if currency == "usd":
        return int(minor_units)
    rate = Decimal(str(rate)) if rate is not None else get_rate(currency)
    units = Decimal(int(minor_units)) / _minor_per_unit(currency)
    usd_cents = units / rate * 100
    return int(usd_cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_usd_cents(currency: str, usd_cents: int, rate=None, processor_id: str | None = None) -> int:
    """Minor units of `currency` for `usd_cents`.

    Currencies the processor only accepts in whole units are truncated to a whole
    unit in one step from the exact value.
    """
    currency = currency.lower()
    if currency == "usd":
        return int(usd_cents)
    rate = Decimal(str(rate)) if rate is not None else get_rate(currency)
    units = Decimal(int(usd_cents)) / 100 * rate
    if is_zero_decimal(currency, processor_id):
        whole_units = units.quantize(Decimal("1"), rounding=ROUND_DOWN)
        return int(whole_units * _minor_per_unit(currency))
    return int((units * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def saved_rates(purchases) -> dict[str, Decimal]:
    """Rates recorded on purchases at order creation, keyed by displayed currency."""
    rates = {}
    for purchase in purchases:
        if purchase.rate_converted_to_usd is None:
            continue
        rates.setdefault(purchase.displayed_price_currency.lower(), Decimal(str(purchase.rate_converted_to_usd)))
    return rates


def format_amount(currency: str, minor_units: int, processor_id: str | None = None) -> str:
    """Decimal string for processor APIs that take amounts in major units."""
    currency = currency.lower()
    if currency in ZERO_DECIMAL_CURRENCIES:
        return str(int(minor_units))
    units = Decimal(int(minor_units)) / 100
    if is_zero_decimal(currency, processor_id):
        return str(int(units.quantize(Decimal("1"), rounding=ROUND_DOWN)))
    return str(units.quantize(Decimal("0.01")))
