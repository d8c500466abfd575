"""
Unit tests for the statistical toolkit.
"""
import math

import pytest

from budget_insights.services.statistics import (
    clamp,
    coefficient_of_variation,
    confidence_interval,
    confidence_score,
    linear_regression,
    mean,
    std_dev,
    variance,
)


@pytest.mark.unit
class TestDescriptiveStatistics:
    """Test mean, variance and standard deviation."""

    def test_empty_sequences_are_zero(self):
        assert mean([]) == 0.0
        assert variance([]) == 0.0
        assert std_dev([]) == 0.0

    def test_population_standard_deviation(self):
        """Dispersion uses the population formula (divide by n)."""
        values = [1000, 1000, 1000, 1000, 100000]

        assert mean(values) == pytest.approx(20800)
        assert std_dev(values) == pytest.approx(39600)
        assert variance(values) == pytest.approx(39600 ** 2)

    def test_coefficient_of_variation(self):
        assert coefficient_of_variation([10, 10, 10]) == 0.0
        assert coefficient_of_variation([0, 0]) == 1.0
        assert coefficient_of_variation([-5, -5]) == 1.0

    def test_clamp(self):
        assert clamp(1.5, 0.0, 1.0) == 1.0
        assert clamp(-0.5, 0.0, 1.0) == 0.0
        assert clamp(0.3, 0.0, 1.0) == 0.3


@pytest.mark.unit
class TestConfidenceScore:
    """Test pattern confidence."""

    def test_single_sample_has_no_confidence(self):
        assert confidence_score([5000]) == 0.0

    def test_identical_amounts_are_fully_confident(self):
        assert confidence_score([5000, 5000, 5000]) == 1.0

    def test_spread_amounts_lower_confidence(self):
        score = confidence_score([1000, 5000, 9000])

        assert 0.0 < score < 1.0
        assert score == pytest.approx(1 - std_dev([1000, 5000, 9000]) / 5000)

    def test_wide_spread_clamps_to_zero(self):
        assert confidence_score([1, 1, 1, 10000]) == 0.0


@pytest.mark.unit
class TestLinearRegression:
    """Test least squares fit and prediction intervals."""

    def test_perfect_line(self):
        result = linear_regression([10, 20, 30, 40])

        assert result.slope == pytest.approx(10)
        assert result.intercept == pytest.approx(10)
        assert result.r_squared == pytest.approx(1.0)
        assert result.standard_error == pytest.approx(0.0, abs=1e-9)
        assert result.predict(4) == pytest.approx(50)

    def test_flat_series_has_zero_r_squared(self):
        result = linear_regression([7, 7, 7])

        assert result.slope == pytest.approx(0.0, abs=1e-9)
        assert result.r_squared == 0.0

    def test_empty_series_raises(self):
        with pytest.raises(ValueError):
            linear_regression([])

    def test_confidence_interval_widens_away_from_data(self):
        result = linear_regression([10, 14, 9, 20, 16, 25])

        near = confidence_interval(result, 6)
        far = confidence_interval(result, 12)

        assert near > 0
        assert far > near

    def test_confidence_interval_formula(self):
        result = linear_regression([10, 14, 9, 20])
        x = 5
        leverage = (x - result.x_mean) ** 2 / result.sxx
        expected = 1.96 * result.standard_error * math.sqrt(1 + 1 / result.n + leverage)

        assert confidence_interval(result, x) == pytest.approx(expected)
