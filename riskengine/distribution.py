"""
Distribution Deriver - percentile views to parametric shape.

Users describe each position by five return percentiles (p5, p25, p50,
p75, p95). The simulator needs location, scale, skew and tail heaviness;
this module converts between the two descriptions.

Functions:
    derive_distribution    - five percentiles -> DistributionParams
    derive_for_position    - same, reading a Position
    percentiles_from_params - DistributionParams -> five percentiles
"""

import logging
import math
from dataclasses import dataclass

logger = logging.getLogger(__name__)

EPS = 1e-9
IQR_TO_SIGMA = 1.35
Z95 = 1.645
Z75 = 0.675
SIGMA_FLOOR = 0.01
TAIL_FLOOR = 0.01
SKEW_GAIN = 1.5
MIN_TAIL_DF = 3
MAX_TAIL_DF = 30


@dataclass(frozen=True)
class DistributionParams:
    """Shape parameters for one position's annual return."""
    mu: float
    sigma: float
    skew: float
    tail_df: int

    def as_tuple(self):
        return (self.mu, self.sigma, self.skew, self.tail_df)


FALLBACK_PARAMS = DistributionParams(mu=0.10, sigma=0.20, skew=0.0, tail_df=30)


def _clamp(x, lo, hi):
    return max(lo, min(hi, x))


def derive_distribution(p5, p25, p50, p75, p95):
    """
    Derive (mu, sigma, skew, tail_df) from five return percentiles.

    mu is the median, sigma the interquartile range scaled by the normal
    IQR/sigma ratio, skew the normalized asymmetry of the outer tails and
    tail_df shrinks as the 5-95 spread outgrows what sigma implies.

    Returns
    -------
    DistributionParams
        FALLBACK_PARAMS when any input (or derived value) is not finite.
    """
    try:
        values = tuple(float(v) for v in (p5, p25, p50, p75, p95))
    except (TypeError, ValueError):
        logger.warning(f"Unreadable percentiles {(p5, p25, p50, p75, p95)}, using fallback")
        return FALLBACK_PARAMS
    if not all(math.isfinite(v) for v in values):
        logger.warning(f"Non-finite percentiles {values}, using fallback distribution")
        return FALLBACK_PARAMS
    p5, p25, p50, p75, p95 = values

    mu = float(p50)
    sigma = max(SIGMA_FLOOR, abs(p75 - p25) / IQR_TO_SIGMA)

    upper_tail = max(TAIL_FLOOR, p95 - p50)
    lower_tail = max(TAIL_FLOOR, p50 - p5)
    skew_raw = (upper_tail - lower_tail) / (upper_tail + lower_tail + EPS)
    skew = _clamp(skew_raw * SKEW_GAIN, -1.0, 1.0)

    tail_ratio = abs(p95 - p5) / (2 * Z95 * sigma + EPS)
    tail_df = int(_clamp(round(MAX_TAIL_DF / max(0.8, tail_ratio)), MIN_TAIL_DF, MAX_TAIL_DF))

    if not all(math.isfinite(v) for v in (mu, sigma, skew)):
        logger.warning(f"Derived non-finite parameters from {values}, using fallback")
        return FALLBACK_PARAMS

    return DistributionParams(mu=mu, sigma=sigma, skew=skew, tail_df=tail_df)


def derive_for_position(position):
    return derive_distribution(*position.percentiles())


def percentiles_from_params(params):
    """
    Map shape parameters back to the five percentiles.

    The quartiles sit at mu -/+ 0.675 sigma. The outer tails span
    2 * 1.645 * sigma * (30 / tail_df) and are split by the raw skew so
    that derive_distribution recovers mu, sigma, skew and tail_df.

    Parameters
    ----------
    params : DistributionParams

    Returns
    -------
    dict with keys p5, p25, p50, p75, p95
    """
    mu, sigma, skew, tail_df = params.as_tuple()
    df = _clamp(tail_df, MIN_TAIL_DF, MAX_TAIL_DF)
    spread = 2 * Z95 * sigma * (MAX_TAIL_DF / df)
    skew_raw = _clamp(skew, -1.0, 1.0) / SKEW_GAIN
    upper = 0.5 * spread * (1 + skew_raw)
    lower = 0.5 * spread * (1 - skew_raw)
    return {
        "p5": mu - lower,
        "p25": mu - Z75 * sigma,
        "p50": mu,
        "p75": mu + Z75 * sigma,
        "p95": mu + upper,
    }
