"""Tests for GSTIN validation."""

import pytest

from voucher_engines.gstin import check_digit, validate_gstin

VALID = "27AAPFU0939F1ZV"


class TestValidGstin:

    def test_components(self):
        result = validate_gstin(VALID)

        assert result.is_valid is True
        assert result.error is None
        assert result.state_code == "27"
        assert result.pan == "AAPFU0939F"
        assert result.entity_number == "1"
        assert result.check_digit == "V"

    def test_normalizes_case_and_whitespace(self):
        result = validate_gstin("  27aapfu0939f1zv ")

        assert result.is_valid is True
        assert result.gstin == VALID

    def test_state_name_from_table(self):
        result = validate_gstin(VALID, {"27": "Maharashtra"})

        assert result.state_name == "Maharashtra"

    def test_check_digit(self):
        assert check_digit(VALID[:14]) == "V"


class TestInvalidGstin:

    @pytest.mark.parametrize("value", [None, ""])
    def test_required(self, value):
        result = validate_gstin(value)

        assert result.is_valid is False
        assert result.error == "GSTIN is required"

    def test_length(self):
        assert validate_gstin(VALID[:-1]).error == "GSTIN must be exactly 15 characters long"

    def test_format(self):
        # Entity position must be followed by the literal Z
        result = validate_gstin("27AAPFU0939F1YV")

        assert result.error == "GSTIN format is invalid"

    def test_unknown_state_code(self):
        result = validate_gstin("99" + VALID[2:])

        assert result.error == "Invalid state code: 99"
        assert result.state_code == "99"

    def test_state_code_outside_table(self):
        result = validate_gstin(VALID, {"29": "Karnataka"})

        assert result.error == "Invalid state code: 27"

    def test_wrong_check_digit(self):
        result = validate_gstin(VALID[:14] + "A")

        assert result.is_valid is False
        assert result.error == "GSTIN check digit is invalid"
        assert result.pan is None
