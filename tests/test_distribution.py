"""Tests for the distribution deriver and its inverse mapping."""

import math

import pytest

from riskengine.distribution import (
    FALLBACK_PARAMS,
    DistributionParams,
    derive_distribution,
    derive_for_position,
    percentiles_from_params,
)
from riskengine.portfolio import Position


def _normal_view(mu=0.10, sigma=0.20):
    """Percentiles of an exact normal distribution."""
    return (mu - 1.645 * sigma, mu - 0.675 * sigma, mu, mu + 0.675 * sigma, mu + 1.645 * sigma)


class TestDeriveDistribution:
    def test_default_view(self):
        p = derive_distribution(-0.20, 0.0, 0.08, 0.16, 0.35)
        assert p.mu == 0.08
        assert abs(p.sigma - 0.16 / 1.35) < 1e-12
        assert abs(p.skew - (-0.01 / 0.55) * 1.5) < 1e-6
        assert p.tail_df == 21

    def test_end_to_end_view(self):
        p = derive_distribution(-0.20, 0.02, 0.10, 0.18, 0.35)
        assert p.mu == pytest.approx(0.10)
        assert p.sigma == pytest.approx(0.119, abs=1e-3)

    def test_normal_view_is_symmetric_and_thin(self):
        p = derive_distribution(*_normal_view())
        assert p.mu == pytest.approx(0.10)
        assert p.sigma == pytest.approx(0.20)
        assert abs(p.skew) < 1e-6
        assert p.tail_df == 30

    def test_wide_tails_lower_df(self):
        mu, sigma = 0.10, 0.20
        p = derive_distribution(mu - 0.6, mu - 0.135, mu, mu + 0.135, mu + 0.6)
        assert p.tail_df == 16

    def test_df_clamped(self):
        narrow = derive_distribution(-0.10, -0.09, 0.0, 0.09, 0.10)
        wide = derive_distribution(-0.99, -0.01, 0.0, 0.01, 5.0)
        assert narrow.tail_df == 30
        assert wide.tail_df == 3

    def test_sigma_floor(self):
        p = derive_distribution(-0.01, 0.0, 0.002, 0.005, 0.02)
        assert p.sigma == 0.01

    def test_skew_sign_and_clamp(self):
        right = derive_distribution(-0.10, 0.0, 0.05, 0.10, 0.60)
        left = derive_distribution(-0.60, 0.0, 0.05, 0.10, 0.20)
        extreme = derive_distribution(0.049, 0.0495, 0.05, 0.10, 3.0)
        assert right.skew > 0
        assert left.skew < 0
        assert -1.0 <= extreme.skew <= 1.0
        assert extreme.skew == pytest.approx(1.0)

    def test_non_finite_falls_back(self):
        assert derive_distribution(float("nan"), 0.0, 0.1, 0.2, 0.3) == FALLBACK_PARAMS
        assert derive_distribution(-0.2, 0.0, float("inf"), 0.2, 0.3) == FALLBACK_PARAMS

    def test_unreadable_falls_back(self):
        assert derive_distribution("abc", 0.0, 0.1, 0.2, 0.3) == FALLBACK_PARAMS
        assert derive_distribution(None, 0.0, 0.1, 0.2, 0.3) == FALLBACK_PARAMS

    def test_fallback_values(self):
        assert FALLBACK_PARAMS.as_tuple() == (0.10, 0.20, 0.0, 30)

    def test_for_position(self):
        pos = Position("X", 1, 1.0)
        assert derive_for_position(pos) == derive_distribution(*pos.percentiles())

    def test_params_frozen(self):
        p = derive_distribution(*_normal_view())
        with pytest.raises(Exception):
            p.mu = 1.0


class TestInverseMapping:
    def test_normal_round_trip(self):
        view = _normal_view(0.07, 0.15)
        back = percentiles_from_params(derive_distribution(*view))
        for key, original in zip(("p5", "p25", "p50", "p75", "p95"), view):
            assert abs(back[key] - original) < 1e-6

    def test_params_round_trip(self):
        params = DistributionParams(mu=0.05, sigma=0.15, skew=0.3, tail_df=10)
        again = derive_distribution(**percentiles_from_params(params))
        assert again.mu == pytest.approx(0.05)
        assert again.sigma == pytest.approx(0.15)
        assert again.skew == pytest.approx(0.3, abs=1e-6)
        assert again.tail_df == 10

    def test_implied_percentiles_ordered(self):
        params = DistributionParams(mu=0.08, sigma=0.12, skew=-0.2, tail_df=8)
        pct = percentiles_from_params(params)
        values = [pct[k] for k in ("p5", "p25", "p50", "p75", "p95")]
        assert values == sorted(values)
        assert all(math.isfinite(v) for v in values)
