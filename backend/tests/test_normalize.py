"""
Unit Tests for cell normalization

Tests amount parsing, amount keys, debit/credit reading, date parsing and
text normalization.

Run with: pytest tests/test_normalize.py -v
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from reconciliation.enums import AmountMode
from reconciliation.normalize import (
    extract_amount,
    normalize_concept,
    normalize_description,
    normalize_text,
    parse_amount,
    parse_date,
    to_amount_key,
)


class TestParseAmount:
    """Test parse_amount."""

    def test_numbers_are_accepted_directly(self):
        assert parse_amount(1234.5) == Decimal("1234.5")
        assert parse_amount(100) == Decimal("100")
        assert parse_amount(Decimal("-7.25")) == Decimal("-7.25")

    def test_float_keeps_short_representation(self):
        assert parse_amount(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("text,expected", [
        ("1.234,56", Decimal("1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("12,5", Decimal("12.5")),
        ("$ 1.000,00", Decimal("1000.00")),
        ("  250  ", Decimal("250")),
    ])
    def test_localized_text(self, text, expected):
        assert parse_amount(text) == expected

    def test_parentheses_negate(self):
        assert parse_amount("(100,00)") == Decimal("-100.00")

    def test_minus_sign_parity(self):
        assert parse_amount("-50") == Decimal("-50")
        assert parse_amount("$ -50") == Decimal("-50")
        assert parse_amount("--50") == Decimal("50")

    @pytest.mark.parametrize("value", [None, "", "   ", "abc", True, False, float("nan"), float("inf"), "1.2.3", [1]])
    def test_unparseable_returns_none(self, value):
        assert parse_amount(value) is None


class TestAmountKey:
    """Test to_amount_key."""

    def test_scales_to_cents(self):
        assert to_amount_key(Decimal("100.00")) == 10000
        assert to_amount_key(Decimal("1234.5")) == 123450

    def test_rounds_half_away_from_zero(self):
        assert to_amount_key(Decimal("100.005")) == 10001
        assert to_amount_key(Decimal("-100.005")) == -10001
        assert to_amount_key(Decimal("100.004")) == 10000

    def test_float_input_has_no_binary_drift(self):
        assert to_amount_key(0.1 + 0.2) == 30
        assert to_amount_key(19.99) == 1999

    def test_custom_decimals(self):
        assert to_amount_key(Decimal("1.2345"), decimals=3) == 1235


class TestExtractAmount:
    """Test single and debe-haber amount modes."""

    def test_single_mode(self):
        row = {"Importe": "1.500,25"}
        assert extract_amount(row, AmountMode.SINGLE, amount_col="Importe") == Decimal("1500.25")

    def test_single_mode_without_column(self):
        assert extract_amount({"Importe": "10"}, "single") is None

    def test_debit_is_positive(self):
        row = {"Debe": "-100", "Haber": ""}
        assert extract_amount(row, AmountMode.DEBE_HABER, debe_col="Debe", haber_col="Haber") == Decimal("100")

    def test_credit_is_negative(self):
        row = {"Debe": "0", "Haber": "50"}
        assert extract_amount(row, "debe-haber", debe_col="Debe", haber_col="Haber") == Decimal("-50")

    def test_both_zero_is_zero(self):
        row = {"Debe": 0, "Haber": "0,00"}
        assert extract_amount(row, "debe-haber", debe_col="Debe", haber_col="Haber") == Decimal("0")

    def test_neither_parses_is_none(self):
        row = {"Debe": "", "Haber": None}
        assert extract_amount(row, "debe-haber", debe_col="Debe", haber_col="Haber") is None

    def test_unknown_mode_raises(self):
        with pytest.raises(ValueError):
            extract_amount({"a": 1}, "triple", amount_col="a")


class TestParseDate:
    """Test parse_date."""

    def test_native_values(self):
        assert parse_date(date(2024, 1, 15)) == date(2024, 1, 15)
        assert parse_date(datetime(2024, 1, 15, 13, 45)) == date(2024, 1, 15)

    def test_day_first_text(self):
        assert parse_date("15/01/2024") == date(2024, 1, 15)
        assert parse_date("5-1-24") == date(2024, 1, 5)

    def test_invalid_day_first_text(self):
        assert parse_date("31/02/2024") is None

    def test_spreadsheet_serial(self):
        assert parse_date(45306) == date(2024, 1, 15)
        assert parse_date(45306.75) == date(2024, 1, 15)

    def test_general_parser(self):
        assert parse_date("2024-01-15") == date(2024, 1, 15)

    @pytest.mark.parametrize("value", [None, "", "not a date", True, float("nan")])
    def test_unparseable_returns_none(self, value):
        assert parse_date(value) is None


class TestTextNormalization:
    """Test text, concept and description normalization."""

    def test_normalize_text(self):
        assert normalize_text("  hola ") == "hola"
        assert normalize_text("   ") is None
        assert normalize_text(None) is None
        assert normalize_text(42) == "42"

    def test_normalize_concept_collapses_whitespace(self):
        assert normalize_concept("  Comisión   Mantenimiento ") == "comisión mantenimiento"

    def test_normalize_description(self):
        assert normalize_description("  ALQUILER Enero ") == "alquiler enero"
        assert normalize_description("") is None
