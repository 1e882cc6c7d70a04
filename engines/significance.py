"""Two-sample significance testing for score-gain comparisons.

The p-value uses a normal approximation of the Student t distribution rather
than an exact t CDF. ``|t|`` with ``df`` degrees of freedom is first mapped to
an equivalent standard normal deviate with Wallace's correction

    z = (8 df + 1) / (8 df + 3) * sqrt(df * ln(1 + t^2 / df))

then the normal CDF is evaluated with the Abramowitz & Stegun 7.1.26 rational
approximation of ``erf``. For df >= 4 the two-tailed p-value is within about
0.001 of the exact one around the 0.05 threshold; with df of 1 or 2 it errs on
the conservative side.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

# Abramowitz & Stegun 7.1.26
_AS_P = 0.3275911
_AS_A1 = 0.254829592
_AS_A2 = -0.284496736
_AS_A3 = 1.421413741
_AS_A4 = -1.453152027
_AS_A5 = 1.061405429

MIN_SAMPLE_SIZE = 2


@dataclass(frozen=True)
class TTestResult:
    t_statistic: float
    degrees_of_freedom: int
    mean_difference: float


def _sample_variance(values: Sequence[float], sample_mean: float) -> float:
    return sum((value - sample_mean) ** 2 for value in values) / (len(values) - 1)


def two_sample_t_test(sample_a: Sequence[float], sample_b: Sequence[float]) -> Optional[TTestResult]:
    """Pooled-variance Student t statistic comparing the means of two samples.

    Returns ``None`` when the statistic is undefined: either sample has fewer
    than two values, or both samples have zero variance.
    """

    n1 = len(sample_a)
    n2 = len(sample_b)
    if n1 < MIN_SAMPLE_SIZE or n2 < MIN_SAMPLE_SIZE:
        return None

    mean_a = sum(sample_a) / n1
    mean_b = sum(sample_b) / n2
    df = n1 + n2 - 2
    pooled_variance = (
        (n1 - 1) * _sample_variance(sample_a, mean_a) + (n2 - 1) * _sample_variance(sample_b, mean_b)
    ) / df
    if pooled_variance <= 0:
        return None

    standard_error = math.sqrt(pooled_variance * (1.0 / n1 + 1.0 / n2))
    difference = mean_a - mean_b
    return TTestResult(
        t_statistic=difference / standard_error,
        degrees_of_freedom=df,
        mean_difference=difference,
    )


def normal_cdf(z: float) -> float:
    """Standard normal CDF via the A&S 7.1.26 approximation of erf."""

    x = abs(z) / math.sqrt(2.0)
    t = 1.0 / (1.0 + _AS_P * x)
    poly = ((((_AS_A5 * t + _AS_A4) * t + _AS_A3) * t + _AS_A2) * t + _AS_A1) * t
    erf = 1.0 - poly * math.exp(-x * x)
    if z < 0:
        erf = -erf
    return 0.5 * (1.0 + erf)


def t_to_z(t_abs: float, df: int) -> float:
    if df <= 0:
        return t_abs
    return (8.0 * df + 1.0) / (8.0 * df + 3.0) * math.sqrt(df * math.log1p(t_abs * t_abs / df))


def approximate_p_value(t_abs: float, df: int) -> float:
    """Two-tailed p-value for ``|t|`` with ``df`` degrees of freedom, clamped to [0, 1]."""

    z = t_to_z(abs(t_abs), df)
    p_value = 2.0 * (1.0 - normal_cdf(z))
    return min(1.0, max(0.0, p_value))


def two_tailed_p_value(sample_a: Sequence[float], sample_b: Sequence[float]) -> Optional[float]:
    result = two_sample_t_test(sample_a, sample_b)
    if result is None:
        return None
    p_value = approximate_p_value(abs(result.t_statistic), result.degrees_of_freedom)
    logger.debug(
        "Mean gain difference %.2f, t=%.3f, df=%d, p=%.4f",
        result.mean_difference,
        result.t_statistic,
        result.degrees_of_freedom,
        p_value,
    )
    return p_value
