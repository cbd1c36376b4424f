from datetime import datetime

import httpx
import pydantic
import pytest

from currencies import (
    convert_currency, create_currency, delete_currency, format_price, get_base_currency, list_currencies,
    set_base_currency, update_currency, update_exchange_rates,
)
from errors import BaseCurrencyDeletionError, ExchangeRateProviderError, ValidationError
from schemas import Currency, CurrencyUpdate


@pytest.fixture
def birr_and_dollar(db):
    create_currency(db, Currency(code="ETB", name="Ethiopian Birr", symbol="Br", exchange_rate=1))
    create_currency(db, Currency(code="USD", name="US Dollar", symbol="$", exchange_rate=0.02))


def base_codes(db):
    return [c["code"] for c in db.currency.find({"is_base_currency": True})]


class TestFormatPrice:

    def test_symbol_before_with_space(self):
        birr = {"symbol": "Br", "decimal_places": 2, "formatting": {"space_between": True}}
        assert format_price(1234.5, birr) == "Br 1,234.50"

    def test_european_style(self):
        euro = {"symbol": "€", "decimal_places": 2, "formatting": {
            "symbol_position": "after", "thousand_separator": ".", "decimal_separator": ",",
            "space_between": True}}
        assert format_price(1234567.891, euro) == "1.234.567,89 €"

    def test_negative_and_no_decimals(self):
        assert format_price(-5, {"symbol": "$", "decimal_places": 2}) == "-$5.00"
        assert format_price(1500.4, {"symbol": "¥", "decimal_places": 0}) == "¥1,500"


class TestBaseCurrency:

    def test_first_currency_becomes_base(self, db, birr_and_dollar):
        assert base_codes(db) == ["ETB"]
        assert db.currency.find_one({"code": "ETB"})["exchange_rate"] == 1

    def test_switching_base_keeps_single_base(self, db, birr_and_dollar):
        set_base_currency(db, "USD")
        assert base_codes(db) == ["USD"]
        assert db.currency.find_one({"code": "USD"})["exchange_rate"] == 1

        create_currency(db, Currency(code="EUR", name="Euro", symbol="€", exchange_rate=0.9, is_base_currency=True))
        assert base_codes(db) == ["EUR"]

    def test_update_to_base(self, db, birr_and_dollar):
        update_currency(db, "usd", CurrencyUpdate(is_base_currency=True))
        assert base_codes(db) == ["USD"]

    def test_base_flag_cannot_be_cleared(self, db, birr_and_dollar):
        with pytest.raises(ValidationError):
            update_currency(db, "ETB", CurrencyUpdate(is_base_currency=False))
        with pytest.raises(ValidationError):
            update_currency(db, "ETB", CurrencyUpdate(exchange_rate=2))

    def test_base_cannot_be_deleted(self, db, birr_and_dollar):
        with pytest.raises(BaseCurrencyDeletionError):
            delete_currency(db, "ETB")
        delete_currency(db, "USD")
        assert [c["code"] for c in list_currencies(db)] == ["ETB"]

    def test_duplicate_code(self, db, birr_and_dollar):
        with pytest.raises(ValidationError):
            create_currency(db, Currency(code="usd", name="Dollar", symbol="$", exchange_rate=0.02))


class TestConvert:

    def test_convert_through_base(self, db, birr_and_dollar):
        result = convert_currency(db, "USD", "ETB", 100)
        assert result["converted_amount"] == 5000
        assert result["from"] == "USD"
        assert result["to"] == "ETB"

    def test_round_trip(self, db, birr_and_dollar):
        dollars = convert_currency(db, "ETB", "USD", 1234.5)["converted_amount"]
        birr = convert_currency(db, "USD", "ETB", dollars)["converted_amount"]
        assert birr == pytest.approx(1234.5, abs=0.5)

    def test_same_currency(self, db, birr_and_dollar):
        assert convert_currency(db, "ETB", "ETB", 42)["converted_amount"] == 42

    def test_missing_or_unknown(self, db, birr_and_dollar):
        with pytest.raises(ValidationError):
            convert_currency(db, "USD", None, 10)
        with pytest.raises(ValidationError):
            convert_currency(db, "USD", "GBP", 10)

    def test_inactive_currency(self, db, birr_and_dollar):
        update_currency(db, "USD", CurrencyUpdate(is_active=False))
        with pytest.raises(ValidationError):
            convert_currency(db, "USD", "ETB", 10)


class TestExchangeRates:

    def test_refresh_from_provider(self, db, birr_and_dollar):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"base": "ETB", "rates": {"ETB": 1, "USD": 0.0175}})

        result = update_exchange_rates(db, httpx.Client(transport=httpx.MockTransport(handler)))
        assert result["updated"] == 1
        assert requests[0].url.path.endswith("/ETB")
        assert db.currency.find_one({"code": "USD"})["exchange_rate"] == 0.0175
        assert db.currency.find_one({"code": "ETB"})["exchange_rate"] == 1

    def test_provider_failure(self, db, birr_and_dollar):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        with pytest.raises(ExchangeRateProviderError):
            update_exchange_rates(db, client)
        assert db.currency.find_one({"code": "USD"})["exchange_rate"] == 0.02


class TestCurrencySchema:

    def test_exchange_rate_must_be_positive(self):
        with pytest.raises(pydantic.ValidationError):
            Currency(code="USD", name="US Dollar", symbol="$", exchange_rate=0)
        with pytest.raises(pydantic.ValidationError):
            CurrencyUpdate(exchange_rate=0)

    def test_nulls_rejected_on_update(self, db, birr_and_dollar):
        with pytest.raises(pydantic.ValidationError):
            CurrencyUpdate.model_validate({"exchange_rate": None})
        with pytest.raises(pydantic.ValidationError):
            CurrencyUpdate.model_validate({"decimal_places": None})
        update_currency(db, "USD", CurrencyUpdate.model_validate({"symbol": "US$"}))
        assert convert_currency(db, "USD", "ETB", 10)["converted_amount"] == 500


def test_newest_base_wins_while_switching(db, birr_and_dollar):
    # state between the two writes of a base switch
    db.currency.update_one({"code": "USD"}, {"$set": {"is_base_currency": True, "exchange_rate": 1,
                                                      "last_updated": datetime(2100, 1, 1)}})
    assert sorted(base_codes(db)) == ["ETB", "USD"]
    assert get_base_currency(db)["code"] == "USD"
