"""
Test suite for currency module

Tests Money, currency lookup, country metadata and the exchange-rate table.
All monetary calculations must use Decimal precision.
"""

import pytest
from decimal import Decimal

from globalpay.currency import (
    Money, Currency, ExchangeRateTable, get_country, supported_currencies,
    to_decimal, DEFAULT_RATES
)
from globalpay.errors import InvalidAmount, InvalidCurrency, InvalidRequest


class TestMoney:
    """Test Money class operations"""

    def test_money_creation(self):
        """Test Money object creation and rounding"""
        money = Money(Decimal('100.50'), Currency.USD)
        assert money.amount == Decimal('100.50')
        assert money.currency == Currency.USD

        # Rounded half-up to currency precision
        assert Money(Decimal('100.555'), Currency.USD).amount == Decimal('100.56')
        assert Money(Decimal('100.5'), Currency.JPY).amount == Decimal('101')
        assert Money(Decimal('1.2345'), Currency.KWD).amount == Decimal('1.235')

    def test_money_arithmetic(self):
        money1 = Money(Decimal('100.50'), Currency.USD)
        money2 = Money(Decimal('50.25'), Currency.USD)

        assert (money1 + money2).amount == Decimal('150.75')
        assert (money1 - money2).amount == Decimal('50.25')
        assert (money1 * Decimal('2')).amount == Decimal('201.00')

    def test_currency_mismatch(self):
        with pytest.raises(ValueError, match="Cannot add USD and EUR"):
            Money(Decimal('1'), Currency.USD) + Money(Decimal('1'), Currency.EUR)
        with pytest.raises(ValueError, match="Cannot compare"):
            Money(Decimal('1'), Currency.USD) < Money(Decimal('1'), Currency.GBP)

    def test_money_comparison(self):
        money1 = Money(Decimal('100.00'), Currency.USD)
        money2 = Money(Decimal('50.00'), Currency.USD)

        assert money1 == Money(Decimal('100'), Currency.USD)
        assert money1 > money2
        assert money2 <= money1
        assert Money.zero(Currency.USD).is_zero()
        assert money2.is_positive()

    def test_to_string(self):
        assert Money(Decimal('1234.5'), Currency.USD).to_string() == "USD 1,234.50"
        assert Money(Decimal('1500'), Currency.JPY).to_string() == "JPY 1,500"


class TestCurrencyLookup:

    def test_from_code_is_case_insensitive(self):
        assert Currency.from_code("usd") == Currency.USD
        assert Currency.from_code(" kes ") == Currency.KES

    @pytest.mark.parametrize("code", ["US", "USDT", "12A", ""])
    def test_malformed_codes(self, code):
        with pytest.raises(InvalidCurrency, match="Invalid currency code"):
            Currency.from_code(code)

    def test_unsupported_code(self):
        with pytest.raises(InvalidCurrency, match="Unsupported currency 'XYZ'"):
            Currency.from_code("XYZ")

    def test_precision(self):
        assert Currency.USD.precision == 2
        assert Currency.JPY.precision == 0
        assert Currency.UGX.precision == 0
        assert Currency.KWD.precision == 3


class TestToDecimal:

    def test_valid_values(self):
        assert to_decimal("100.25") == Decimal("100.25")
        assert to_decimal(5) == Decimal("5")
        # Floats go through str() so they keep their shortest repr
        assert to_decimal(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("value", ["abc", "", "NaN", "Infinity", None, True])
    def test_invalid_values(self, value):
        with pytest.raises(InvalidAmount):
            to_decimal(value)


class TestCountries:

    def test_get_country(self):
        kenya = get_country("ke")
        assert kenya.name == "Kenya"
        assert kenya.currency == Currency.KES
        assert kenya.dial_code == "+254"
        assert kenya.to_dict()["currency"] == "KES"

    def test_unsupported_country(self):
        with pytest.raises(InvalidRequest, match="Unsupported country"):
            get_country("ZZ")

    def test_supported_currencies_are_unique(self):
        currencies = supported_currencies()
        assert len(currencies) == len(set(currencies))
        assert currencies[0] == "KES"
        assert "EUR" in currencies


class TestExchangeRateTable:

    def setup_method(self):
        self.table = ExchangeRateTable()

    def test_identity_rate_is_exactly_one(self):
        for currency in (Currency.USD, Currency.JPY, "kes"):
            assert self.table.rate(currency, currency) == Decimal("1")

    def test_table_rates(self):
        assert self.table.rate("USD", "EUR") == Decimal("0.92")
        assert self.table.rate("GBP", "KES") == Decimal("190")
        assert self.table.rate("KES", "USD") == Decimal("0.0067")

    def test_pairs_are_directional(self):
        # EUR -> NGN is not in the table even though USD -> NGN is
        quote = self.table.quote("EUR", "NGN")
        assert quote.is_fallback
        assert quote.rate == Decimal("1")

    def test_fallback_is_fixed_per_table(self):
        table = ExchangeRateTable(fallback_rate=Decimal("1.5"))
        assert table.rate("USD", "JPY") == Decimal("1.5")
        assert table.rate("CHF", "SEK") == Decimal("1.5")
        assert not table.quote("USD", "EUR").is_fallback

    def test_rates_are_positive(self):
        for (src, dst) in DEFAULT_RATES:
            assert self.table.rate(src, dst) > 0
        with pytest.raises(ValueError, match="must be positive"):
            ExchangeRateTable(rates={("USD", "EUR"): Decimal("0")})
        with pytest.raises(ValueError, match="must be positive"):
            ExchangeRateTable(fallback_rate=Decimal("-1"))

    def test_convert(self):
        converted = self.table.convert(Money(Decimal("100"), Currency.USD), "EUR")
        assert converted == Money(Decimal("92.00"), Currency.EUR)

        # Result is rounded to the target precision
        converted = self.table.convert(Money(Decimal("10.01"), Currency.USD), "KES")
        assert converted.amount == Decimal("1501.50")

    def test_convert_requires_table_entry(self):
        with pytest.raises(InvalidCurrency, match="No exchange rate available for USD -> JPY"):
            self.table.convert(Money(Decimal("1"), Currency.USD), "JPY")

    def test_quote_to_dict(self):
        data = self.table.quote("USD", "KES").to_dict()
        assert data["from"] == "USD"
        assert data["to"] == "KES"
        assert data["rate"] == "150"
        assert data["is_fallback"] is False
