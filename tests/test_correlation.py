"""Tests for correlation repair, estimators and the covariance builder."""

import numpy as np
import pytest

from riskengine.correlation import (
    cholesky,
    correlation_to_covariance,
    covariance_to_correlation,
    ewma_correlation,
    half_life_to_lambda,
    is_positive_definite,
    lambda_to_half_life,
    ledoit_wolf_shrinkage,
    nearest_psd_correlation,
    repair_correlation,
    sample_correlation,
)
from riskengine.covariance import (
    build_covariance,
    portfolio_return,
    portfolio_volatility,
    sharpe_ratio,
)
from riskengine.portfolio import ContractViolation


# ── Helpers ──────────────────────────────────────────────────────────────

def _make_indefinite():
    return np.array([
        [1.0, 0.9, -0.9],
        [0.9, 1.0, 0.9],
        [-0.9, 0.9, 1.0],
    ])


def _assert_valid_correlation(m):
    assert np.allclose(m, m.T)
    assert np.allclose(np.diag(m), 1.0)
    assert np.all(np.abs(m) <= 1.0)
    assert is_positive_definite(m)


# ── Cholesky ─────────────────────────────────────────────────────────────

class TestCholesky:
    def test_identity(self):
        assert np.allclose(cholesky(np.eye(3)), np.eye(3))

    def test_reconstructs(self):
        m = np.array([[1.0, 0.5, 0.2], [0.5, 1.0, 0.3], [0.2, 0.3, 1.0]])
        L = cholesky(m)
        assert np.allclose(L @ L.T, m)
        assert np.allclose(L, np.tril(L))

    def test_matches_numpy(self):
        m = np.array([[1.0, 0.4], [0.4, 1.0]])
        assert np.allclose(cholesky(m), np.linalg.cholesky(m))

    def test_singular_regularized(self):
        # Perfect correlation: retried with diagonal jitter
        m = np.ones((2, 2))
        L = cholesky(m)
        assert np.all(np.diag(L) > 0)
        assert np.allclose(L @ L.T, m, atol=1e-5)

    def test_indefinite_raises(self):
        with pytest.raises(ContractViolation):
            cholesky(_make_indefinite())

    def test_ragged_raises(self):
        with pytest.raises(ContractViolation):
            cholesky([[1.0, 0.2], [0.2]])

    def test_positive_definite_check(self):
        assert is_positive_definite(np.eye(4))
        assert not is_positive_definite(np.array([[1.0, 2.0], [2.0, 1.0]]))
        assert not is_positive_definite(_make_indefinite())
        assert not is_positive_definite(np.array([[1.0, np.nan], [np.nan, 1.0]]))


# ── Repair ───────────────────────────────────────────────────────────────

class TestRepairCorrelation:
    def test_valid_matrix_unchanged(self):
        m = np.array([[1.0, 0.5], [0.5, 1.0]])
        assert np.allclose(repair_correlation(m), m)

    def test_symmetrizes(self):
        out = repair_correlation(np.array([[1.0, 0.8], [0.4, 1.0]]))
        assert abs(out[0, 1] - 0.6) < 1e-12
        assert abs(out[1, 0] - 0.6) < 1e-12

    def test_clamps_out_of_range(self):
        out = repair_correlation(np.array([[1.0, 1.5], [1.5, 1.0]]))
        assert abs(out[0, 1] - 0.999) < 1e-12
        _assert_valid_correlation(out)

    def test_forces_unit_diagonal(self):
        out = repair_correlation(np.array([[2.0, 0.3], [0.3, 0.5]]))
        assert np.allclose(np.diag(out), 1.0)

    def test_indefinite_repaired(self):
        out = repair_correlation(_make_indefinite())
        _assert_valid_correlation(out)
        # Shrinkage keeps signs and ordering of the off-diagonals
        assert out[0, 1] > 0 and out[0, 2] < 0
        assert abs(out[0, 1]) < 0.9

    def test_input_not_modified(self):
        m = _make_indefinite()
        before = m.copy()
        repair_correlation(m)
        assert np.array_equal(m, before)

    def test_non_finite_treated_as_zero(self):
        m = np.array([[1.0, np.nan], [np.nan, 1.0]])
        assert np.allclose(repair_correlation(m), np.eye(2))

    def test_non_square_raises(self):
        with pytest.raises(ContractViolation):
            repair_correlation(np.ones((2, 3)))

    @pytest.mark.parametrize("raw", [
        [[1.0, 0.2], [0.2]],
        [[1.0, "high"], ["high", 1.0]],
    ])
    def test_ragged_or_non_numeric_raises(self, raw):
        with pytest.raises(ContractViolation, match="numeric grid"):
            repair_correlation(raw)

    def test_empty(self):
        assert repair_correlation(np.zeros((0, 0))).shape == (0, 0)

    def test_random_matrices_always_valid(self):
        rng = np.random.default_rng(7)
        for _ in range(20):
            raw = rng.uniform(-1.2, 1.2, (5, 5))
            out = repair_correlation(raw)
            assert np.allclose(out, out.T)
            assert np.allclose(np.diag(out), 1.0)
            assert is_positive_definite(out)


class TestNearestPSD:
    def test_projection_valid(self):
        out = nearest_psd_correlation(_make_indefinite())
        assert np.allclose(out, out.T)
        assert np.allclose(np.diag(out), 1.0)
        assert np.linalg.eigvalsh(out).min() > -1e-10

    def test_valid_input_close_to_itself(self):
        m = np.array([[1.0, 0.3], [0.3, 1.0]])
        assert np.allclose(nearest_psd_correlation(m), m, atol=1e-5)


# ── Estimators ───────────────────────────────────────────────────────────

class TestEstimators:
    def test_sample_correlation_perfect(self):
        x = np.array([0.01, -0.02, 0.03, 0.00, 0.015])
        corr = sample_correlation([x, 2 * x + 0.01, -x])
        assert corr.shape == (3, 3)
        assert corr[0, 1] == pytest.approx(0.999)
        assert corr[0, 2] == pytest.approx(-0.999)

    def test_sample_correlation_constant_series(self):
        corr = sample_correlation([np.ones(5), np.arange(5.0)])
        assert corr[0, 1] == 0.0

    def test_sample_correlation_matches_numpy(self):
        rng = np.random.default_rng(1)
        a, b = rng.standard_normal(200), rng.standard_normal(200)
        corr = sample_correlation([a, b])
        assert abs(corr[0, 1] - np.corrcoef(a, b)[0, 1]) < 1e-12

    def test_ewma_lambda_one_matches_sample(self):
        rng = np.random.default_rng(2)
        a, b = rng.standard_normal(50), rng.standard_normal(50)
        assert np.allclose(ewma_correlation([a, b], lam=1.0), sample_correlation([a, b]))

    def test_half_life_round_trip(self):
        assert lambda_to_half_life(half_life_to_lambda(10.0)) == pytest.approx(10.0)
        assert half_life_to_lambda(1.0) == pytest.approx(0.5)

    @pytest.mark.parametrize("n, expected", [(2, 0.5), (10, 0.2), (30, 0.1)])
    def test_ledoit_wolf_intensity(self, n, expected):
        _, intensity = ledoit_wolf_shrinkage(np.eye(n))
        assert intensity == pytest.approx(expected)

    def test_ledoit_wolf_pulls_toward_target(self):
        shrunk, intensity = ledoit_wolf_shrinkage(np.eye(10), target_corr=0.3)
        assert shrunk[0, 1] == pytest.approx(intensity * 0.3)
        _assert_valid_correlation(shrunk)

    def test_covariance_round_trip(self):
        corr = np.array([[1.0, 0.2], [0.2, 1.0]])
        cov = correlation_to_covariance(corr, [0.1, 0.3])
        back, vols = covariance_to_correlation(cov)
        assert np.allclose(back, corr)
        assert np.allclose(vols, [0.1, 0.3])


# ── Covariance builder ───────────────────────────────────────────────────

class TestCovariance:
    def test_build(self):
        cov = build_covariance(np.array([[1.0, 0.5], [0.5, 1.0]]), [0.2, 0.1])
        assert np.allclose(cov, [[0.04, 0.01], [0.01, 0.01]])

    def test_mismatch_raises(self):
        with pytest.raises(ContractViolation):
            build_covariance(np.eye(3), [0.2, 0.1])
        with pytest.raises(ContractViolation):
            build_covariance(np.ones((2, 3)), [0.2, 0.1])

    def test_uncorrelated_two_asset_vol(self):
        cov = build_covariance(np.eye(2), [0.20, 0.20])
        vol = portfolio_volatility([0.5, 0.5], cov)
        assert abs(vol - 0.20 * np.sqrt(0.5)) < 1e-12
        assert abs(vol - 0.1414) < 1e-4

    def test_fully_correlated_vol_is_weighted_average(self):
        cov = build_covariance(np.ones((2, 2)), [0.20, 0.10])
        vol = portfolio_volatility([0.6, 0.4], cov)
        assert abs(vol - (0.6 * 0.20 + 0.4 * 0.10)) < 1e-12

    def test_portfolio_return_with_cash(self):
        assert portfolio_return([0.5, 0.3], [0.10, 0.20], cash_return=0.01) == pytest.approx(0.12)

    def test_sharpe(self):
        assert sharpe_ratio(0.15, 0.20, 0.05) == pytest.approx(0.5)
        assert sharpe_ratio(0.15, 0.0, 0.05) == 0.0
