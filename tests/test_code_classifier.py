"""Tests for HSN / SAC code classification and pattern matching."""

import pytest

from gst_engine.domain.services.code_classifier import (
    CodeType,
    get_code_type,
    is_partial_match,
    match_code_pattern,
    normalize_code,
    validate_hsn_code,
    validate_sac_code,
)


class TestValidators:

    @pytest.mark.parametrize("code", ["8471", "847130", "84713010", " 8471 "])
    def test_valid_hsn(self, code):
        assert validate_hsn_code(code) is True

    @pytest.mark.parametrize("code", ["847", "84713", "8471301", "847130101", "84A1", "", None])
    def test_invalid_hsn(self, code):
        assert validate_hsn_code(code) is False

    def test_hsn_validator_does_not_normalize(self):
        assert validate_hsn_code("8471-30") is False
        assert validate_hsn_code("8471.30") is False

    @pytest.mark.parametrize("code", ["9982", "998211"])
    def test_valid_sac(self, code):
        assert validate_sac_code(code) is True

    @pytest.mark.parametrize("code", ["99821101", "998", "99-82", "SAC9"])
    def test_invalid_sac(self, code):
        assert validate_sac_code(code) is False


class TestNormalizeCode:

    def test_strips_separators(self):
        assert normalize_code(" 99 82-11.01 ") == "99821101"

    def test_uppercases(self):
        assert normalize_code("ab-12") == "AB12"

    def test_empty(self):
        assert normalize_code(None) == ""


class TestGetCodeType:

    def test_four_digit_service_prefix_is_sac(self):
        assert get_code_type("9982") == CodeType.SAC

    def test_six_digit_service_prefix_is_sac(self):
        assert get_code_type("998314") == CodeType.SAC

    def test_four_digit_goods_is_hsn(self):
        assert get_code_type("0801") == CodeType.HSN

    def test_eight_digit_always_hsn(self):
        assert get_code_type("99901100") == CodeType.HSN

    @pytest.mark.parametrize("code", ["123", "123456789", "99AB", "", None])
    def test_invalid(self, code):
        assert get_code_type(code) == CodeType.INVALID


class TestMatchCodePattern:

    def test_exact_match_wins(self):
        assert match_code_pattern("996712", ["9967", "996712"]) == "996712"

    def test_code_longer_than_pattern_returns_pattern(self):
        assert match_code_pattern("998211", ["9982"]) == "9982"

    def test_pattern_longer_than_code_returns_code(self):
        assert match_code_pattern("0801", ["08011000"]) == "0801"

    def test_normalizes_before_comparing(self):
        assert match_code_pattern("99 82-11", ["998211"]) == "998211"

    def test_no_match(self):
        assert match_code_pattern("8471", ["9982", "0801"]) is None

    def test_empty_code(self):
        assert match_code_pattern("", ["9982"]) is None


class TestIsPartialMatch:

    def test_prefix(self):
        assert is_partial_match("998211", "9982") is True

    def test_not_prefix(self):
        assert is_partial_match("9982", "998211") is False
