"""
Test suite for currency module

Tests Money arithmetic and the validation of caller-supplied amounts.
All monetary calculations must use Decimal precision.
"""

import pytest
from decimal import Decimal

from svbank.currency import Money, Currency, to_decimal, parse_amount
from svbank.errors import InvalidAmount


class TestMoney:
    """Test Money class operations"""

    def test_money_creation(self):
        """Test Money object creation and rounding"""
        money = Money(Decimal('100.50'), Currency.INR)
        assert money.amount == Decimal('100.50')
        assert money.currency == Currency.INR

        # Rounded half up to two fraction digits
        assert Money(Decimal('100.555')).amount == Decimal('100.56')
        assert Money(Decimal('100.554')).amount == Decimal('100.55')

    def test_default_currency_is_inr(self):
        assert Money(Decimal('1')).currency == Currency.INR
        assert Money.zero().is_zero()

    def test_money_arithmetic(self):
        """Test Money arithmetic operations"""
        money1 = Money(Decimal('100.50'))
        money2 = Money(Decimal('50.25'))

        assert (money1 + money2).amount == Decimal('150.75')
        assert (money1 - money2).amount == Decimal('50.25')
        assert (-money1).amount == Decimal('-100.50')
        assert money2 < money1
        assert money1 >= money2

    def test_currency_mismatch(self):
        """Adding different currencies is a programming error"""
        with pytest.raises(ValueError, match="Currency mismatch"):
            Money(Decimal('1'), Currency.INR) + Money(Decimal('1'), Currency.USD)

    def test_sign_checks(self):
        assert Money(Decimal('0.01')).is_positive()
        assert Money(Decimal('-0.01')).is_negative()
        assert not Money(Decimal('0')).is_positive()

    def test_to_string(self):
        assert Money(Decimal('1234567.5')).to_string() == "INR 1,234,567.50"


class TestToDecimal:
    """Test conversion of raw request values"""

    def test_float_uses_shortest_string_form(self):
        assert to_decimal(0.1) == Decimal('0.1')
        assert to_decimal(250.5) == Decimal('250.5')

    def test_int_and_string(self):
        assert to_decimal(250) == Decimal('250')
        assert to_decimal(" 19.99 ") == Decimal('19.99')

    @pytest.mark.parametrize("value", [None, True, "abc", "", [], {"amount": 1}])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(InvalidAmount):
            to_decimal(value)

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity", float("inf"), float("nan")])
    def test_rejects_non_finite(self, value):
        with pytest.raises(InvalidAmount):
            to_decimal(value)


class TestParseAmount:
    """Test validation of money movement amounts"""

    def test_valid_amounts(self):
        assert parse_amount("250.00") == Money(Decimal('250.00'))
        assert parse_amount(250.5).amount == Decimal('250.50')
        assert parse_amount(Decimal('0.01')).amount == Decimal('0.01')

    @pytest.mark.parametrize("value", ["0", 0, "-5", -0.01, "0.00"])
    def test_rejects_zero_and_negative(self, value):
        with pytest.raises(InvalidAmount, match="greater than zero"):
            parse_amount(value)

    def test_rejects_extra_fraction_digits(self):
        with pytest.raises(InvalidAmount, match="decimal places"):
            parse_amount("10.001")

        # 0.1 + 0.2 carries binary noise into its string form
        with pytest.raises(InvalidAmount):
            parse_amount(0.1 + 0.2)

    def test_trailing_zeros_are_not_extra_digits(self):
        assert parse_amount("10.5000").amount == Decimal('10.50')

    def test_maximum(self):
        assert parse_amount("1000.00", maximum=Decimal('1000.00')).amount == Decimal('1000.00')
        with pytest.raises(InvalidAmount, match="limit"):
            parse_amount("1000.01", maximum=Decimal('1000.00'))

    def test_too_large_to_represent(self):
        with pytest.raises(InvalidAmount, match="too large"):
            parse_amount("1e40")

    def test_keeps_requested_currency(self):
        assert parse_amount("5", Currency.USD).currency == Currency.USD
