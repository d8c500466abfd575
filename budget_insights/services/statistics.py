"""
Statistical toolkit shared by the analytics services.

Pure functions over sequences of numbers. Dispersion uses the population
standard deviation throughout.
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from sklearn.linear_model import LinearRegression

from ..utils.constants import CONFIDENCE_Z_SCORE, MIN_CONFIDENCE_SAMPLES


@dataclass(frozen=True)
class RegressionResult:
    """Ordinary least squares fit of values against their index."""
    slope: float
    intercept: float
    r_squared: float
    standard_error: float
    n: int
    x_mean: float
    sxx: float

    def predict(self, x: float) -> float:
        return self.slope * x + self.intercept


def mean(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(values))


def variance(values: Sequence[float]) -> float:
    """Population variance."""
    if len(values) == 0:
        return 0.0
    return float(np.var(values))


def std_dev(values: Sequence[float]) -> float:
    """Population standard deviation."""
    if len(values) == 0:
        return 0.0
    return float(np.std(values))


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Standard deviation relative to the mean; 1 when the mean is not positive."""
    avg = mean(values)
    if avg <= 0:
        return 1.0
    return std_dev(values) / avg


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def confidence_score(amounts: Sequence[float]) -> float:
    """
    Confidence in a recurring amount, from its relative dispersion.

    Returns 0 for fewer than two samples, otherwise 1 - CV clamped to [0, 1]:
    identical amounts give 1, widely spread amounts approach 0.
    """
    if len(amounts) < MIN_CONFIDENCE_SAMPLES:
        return 0.0
    return clamp(1.0 - coefficient_of_variation(amounts), 0.0, 1.0)


def linear_regression(values: Sequence[float]) -> RegressionResult:
    """Fit values against x = 0..n-1."""
    n = len(values)
    if n == 0:
        raise ValueError("Linear regression needs at least one value")

    y = np.asarray(values, dtype=float)
    x = np.arange(n, dtype=float)

    model = LinearRegression()
    model.fit(x.reshape(-1, 1), y)
    predictions = model.predict(x.reshape(-1, 1))

    ss_res = float(np.sum((y - predictions) ** 2))
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    r_squared = 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0
    standard_error = float(np.sqrt(ss_res / (n - 2))) if n > 2 else 0.0

    x_mean = float(x.mean())
    sxx = float(np.sum((x - x_mean) ** 2))

    return RegressionResult(
        slope=float(model.coef_[0]),
        intercept=float(model.intercept_),
        r_squared=r_squared,
        standard_error=standard_error,
        n=n,
        x_mean=x_mean,
        sxx=sxx,
    )


def confidence_interval(
    regression: RegressionResult,
    future_index: float,
    z: float = CONFIDENCE_Z_SCORE
) -> float:
    """Half-width of the prediction interval at future_index."""
    leverage = (future_index - regression.x_mean) ** 2 / regression.sxx if regression.sxx > 0 else 0.0
    return z * regression.standard_error * float(np.sqrt(1 + 1 / regression.n + leverage))
