from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest

from splitpay.services import currency


@pytest.fixture(autouse=True)
def clear_rates():
    currency.clear_rate_cache()
    yield
    currency.clear_rate_cache()


def test_usd_is_identity():
    assert currency.to_usd_cents("usd", 1234) == 1234
    assert currency.from_usd_cents("USD", 1234) == 1234
    assert currency.get_rate("usd") == Decimal(1)


def test_to_usd_cents_zero_decimal_currency():
    assert currency.to_usd_cents("jpy", 1500, rate=150) == 1000


def test_to_usd_cents_rounds_half_up():
    # 0.01 EUR at 2 EUR/USD is half a cent
    assert currency.to_usd_cents("eur", 1, rate=2) == 1
    assert currency.to_usd_cents("eur", 1000, rate=Decimal("0.9")) == 1111


def test_from_usd_cents_truncates_zero_decimal_currency():
    # 10.01 USD * 150 = 1501.5 JPY
    assert currency.from_usd_cents("jpy", 1001, rate=150) == 1501


def test_from_usd_cents_two_decimal_currency():
    assert currency.from_usd_cents("eur", 1000, rate=Decimal("0.9")) == 900


def test_from_usd_cents_truncates_whole_unit_currency_once():
    # 20.03 USD * 32.5 = 650.975 TWD; PayPal takes whole TWD
    assert currency.from_usd_cents("twd", 2003, rate="32.5", processor_id="paypal") == 65000
    assert currency.from_usd_cents("twd", 2003, rate="32.5") == 65098


def test_saved_rates_keyed_by_displayed_currency():
    purchases = [
        SimpleNamespace(displayed_price_currency="EUR", rate_converted_to_usd=Decimal("0.900000")),
        SimpleNamespace(displayed_price_currency="usd", rate_converted_to_usd=None),
    ]

    assert currency.saved_rates(purchases) == {"eur": Decimal("0.9")}


def test_is_zero_decimal_depends_on_processor():
    assert currency.is_zero_decimal("JPY")
    assert not currency.is_zero_decimal("twd")
    assert currency.is_zero_decimal("twd", processor_id="paypal")
    assert currency.is_zero_decimal("huf", processor_id="paypal")


def test_format_amount():
    assert currency.format_amount("usd", 1234) == "12.34"
    assert currency.format_amount("jpy", 1500) == "1500"
    assert currency.format_amount("twd", 32550, processor_id="paypal") == "325"
    assert currency.format_amount("twd", 32550) == "325.50"


def test_get_rate_uses_cache():
    currency.set_rate("eur", "0.9")
    with patch("splitpay.services.currency.httpx.get") as mock_get:
        assert currency.get_rate("EUR") == Decimal("0.9")
        mock_get.assert_not_called()


def test_get_rate_fetches_on_miss(monkeypatch):
    monkeypatch.setenv("EXCHANGE_RATE_URL", "https://rates.test/latest")
    response = MagicMock()
    response.json.return_value = {"base": "USD", "rates": {"JPY": 149.5, "EUR": 0.92}}
    with patch("splitpay.services.currency.httpx.get", return_value=response) as mock_get:
        assert currency.get_rate("jpy") == Decimal("149.5")
        assert currency.get_rate("eur") == Decimal("0.92")
        mock_get.assert_called_once()


def test_get_rate_without_source_raises(monkeypatch):
    monkeypatch.delenv("EXCHANGE_RATE_URL", raising=False)
    with pytest.raises(currency.CurrencyRateUnavailable):
        currency.get_rate("gbp")


def test_get_rate_http_failure_raises(monkeypatch):
    monkeypatch.setenv("EXCHANGE_RATE_URL", "https://rates.test/latest")
    with patch("splitpay.services.currency.httpx.get", side_effect=httpx.ConnectError("boom")):
        with pytest.raises(currency.CurrencyRateUnavailable):
            currency.get_rate("gbp")


def test_get_rate_unknown_currency(monkeypatch):
    monkeypatch.setenv("EXCHANGE_RATE_URL", "https://rates.test/latest")
    response = MagicMock()
    response.json.return_value = {"rates": {"EUR": 0.92}}
    with patch("splitpay.services.currency.httpx.get", return_value=response):
        with pytest.raises(currency.CurrencyRateUnavailable, match="XYZ"):
            currency.get_rate("xyz")
