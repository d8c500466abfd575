"""
Tests for input validators.
"""
from datetime import date

import pytest

from budget_insights.models.analytics import PatternAnalysisOptions
from budget_insights.utils.exceptions import ValidationError
from budget_insights.utils.validators import (
    ensure_valid,
    parse_options,
    validate_confidence,
    validate_currency_code,
    validate_date_range,
    validate_household_id,
    validate_min_frequency,
    validate_view_name,
)


@pytest.mark.unit
class TestValidators:
    """Test plain validators."""

    def test_household_id(self):
        assert validate_household_id("  hh_1 ") == "hh_1"

        for invalid in ["", "   ", None, 42]:
            with pytest.raises(ValueError):
                validate_household_id(invalid)

    @pytest.mark.parametrize("value", [0, -1, 2.5, True, "3"])
    def test_invalid_min_frequency(self, value):
        with pytest.raises(ValueError):
            validate_min_frequency(value)

    def test_valid_min_frequency(self):
        assert validate_min_frequency(1) == 1

    def test_confidence(self):
        assert validate_confidence(1) == 1.0
        assert validate_confidence(0.25) == 0.25

        for invalid in [-0.1, 1.01, "0.5", False]:
            with pytest.raises(ValueError):
                validate_confidence(invalid)

    def test_currency_code(self):
        assert validate_currency_code(" eur ") == "EUR"

        for invalid in ["EU", "EURO", "E1R"]:
            with pytest.raises(ValueError):
                validate_currency_code(invalid)

    def test_date_range(self):
        validate_date_range(date(2024, 1, 1), date(2024, 1, 2))

        with pytest.raises(ValueError):
            validate_date_range(date(2024, 1, 2), date(2024, 1, 2))

    def test_view_name(self):
        assert validate_view_name("cashflow_analysis") == "cashflow_analysis"

        with pytest.raises(ValueError):
            validate_view_name("cashflow_analysis", known_views=("daily_spending_summary",))


@pytest.mark.unit
class TestEnsureValid:
    """Test conversion of validator failures."""

    def test_returns_validated_value(self):
        assert ensure_valid(validate_household_id, " hh_1") == "hh_1"

    def test_raises_engine_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            ensure_valid(validate_min_frequency, 0)

        assert exc_info.value.details == ["min_frequency must be at least 1"]


@pytest.mark.unit
class TestParseOptions:
    """Test options model parsing."""

    def test_none_gives_defaults(self):
        assert parse_options(PatternAnalysisOptions) == PatternAnalysisOptions()

    def test_instance_is_returned_unchanged(self):
        options = PatternAnalysisOptions()

        assert parse_options(PatternAnalysisOptions, options) is options

    def test_invalid_dict_raises(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_options(PatternAnalysisOptions, {"min_frequency": "many"})

        assert exc_info.value.message == "Invalid PatternAnalysisOptions"
        assert any(detail.startswith("min_frequency") for detail in exc_info.value.details)
