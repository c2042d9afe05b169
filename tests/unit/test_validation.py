"""
Unit tests for input validation and value coercion helpers.
"""

import pytest
from hypothesis import given, strategies as st

from incentive.utils.validation import (
    InputValidationError,
    camel_to_snake,
    normalize_entity_id,
    snake_case_keys,
    to_number,
    validate_file_path,
    validate_identifier,
)


class TestValidateIdentifier:
    """Tests for validate_identifier"""

    def test_valid_identifier_is_stripped(self):
        """Test surrounding whitespace is removed"""
        assert validate_identifier("  tenant-123 ") == "tenant-123"

    def test_colons_and_dots_allowed(self):
        """Test batch-style identifiers pass"""
        assert validate_identifier("calc:acme.2024") == "calc:acme.2024"

    @pytest.mark.parametrize("value", ["", "   ", None, 42])
    def test_empty_or_non_string_rejected(self, value):
        """Test empty and non-string identifiers raise"""
        with pytest.raises(InputValidationError):
            validate_identifier(value, "tenantId")

    def test_invalid_characters_rejected(self):
        """Test spaces and punctuation are rejected with the field name"""
        with pytest.raises(InputValidationError, match="tenantId contains invalid characters"):
            validate_identifier("bad id!", "tenantId")

    def test_too_long_rejected(self):
        """Test identifiers over 255 characters raise"""
        with pytest.raises(InputValidationError, match="maximum length"):
            validate_identifier("a" * 256)


class TestValidateFilePath:
    """Tests for validate_file_path"""

    def test_existing_file(self, tmp_path):
        """Test an existing file is returned as a Path"""
        request = tmp_path / "request.json"
        request.write_text("{}")

        assert validate_file_path(str(request)) == request

    def test_traversal_rejected(self):
        """Test '..' segments are rejected"""
        with pytest.raises(InputValidationError, match="path traversal"):
            validate_file_path("../etc/passwd")

    def test_missing_file_rejected(self, tmp_path):
        """Test a missing file is rejected"""
        with pytest.raises(InputValidationError, match="does not exist"):
            validate_file_path(str(tmp_path / "missing.json"))


class TestToNumber:
    """Tests for to_number"""

    @pytest.mark.parametrize("raw,expected", [
        (12, 12.0),
        (3.5, 3.5),
        ("1,250.50", 1250.5),
        ("$ 99", 99.0),
        ("12%", 0.12),
    ])
    def test_parses_spreadsheet_values(self, raw, expected):
        """Test ints, floats, separators, currency and percent strings"""
        assert to_number(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", [None, True, "", "n/a", float("nan"), float("inf"), [1]])
    def test_unparseable_values_are_none(self, raw):
        """Test blanks, booleans and garbage return None"""
        assert to_number(raw) is None

    @given(st.floats(allow_nan=False, allow_infinity=False))
    def test_finite_floats_round_trip(self, value):
        """Test finite floats come back unchanged"""
        assert to_number(value) == value


class TestNormalizeEntityId:
    """Tests for normalize_entity_id"""

    @pytest.mark.parametrize("raw,expected", [
        ("  000123 ", "123"),
        (1001.0, "1001"),
        ("1001.0", "1001"),
        (1001, "1001"),
        ("EMP-7", "emp-7"),
        (None, ""),
    ])
    def test_normalization(self, raw, expected):
        """Test leading zeros, float artefacts and case are normalized"""
        assert normalize_entity_id(raw) == expected

    @given(st.integers(min_value=0, max_value=10**9))
    def test_int_and_padded_string_match(self, value):
        """Test an integer id matches its zero-padded string form"""
        assert normalize_entity_id(value) == normalize_entity_id(f"{value:012d}")


class TestKeyConversion:
    """Tests for camel_to_snake and snake_case_keys"""

    def test_camel_to_snake(self):
        """Test camelCase keys are converted and snake_case passes through"""
        assert camel_to_snake("appliedTo") == "applied_to"
        assert camel_to_snake("tierConfig") == "tier_config"
        assert camel_to_snake("applied_to") == "applied_to"

    def test_nested_keys_converted(self):
        """Test keys inside nested dicts and lists are converted"""
        payload = {"tierConfig": {"metric": "x", "tiers": [{"minValue": 1}]}}

        assert snake_case_keys(payload) == {
            "tier_config": {"metric": "x", "tiers": [{"min_value": 1}]}
        }
