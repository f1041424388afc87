"""
Correlation Repairer - turn an edited or estimated matrix into a usable one.

Users edit correlations cell by cell, and estimates from short or
misaligned return histories are noisy, so the input is routinely
asymmetric, out of range or indefinite. repair_correlation() is a bounded
shrink toward the identity: symmetrize, clamp, unit diagonal, then scale
the off-diagonals by 0.95 until the Cholesky test passes (at most 50
rounds). The result is best-effort: adversarial input can still fail the
test after the last round, which is why the engine re-checks at the run
boundary and falls back to nearest_psd_correlation().

Also here: the estimators the correlation editor is seeded from (sample,
EWMA, Ledoit-Wolf constant-correlation shrinkage).
"""

import logging
import math

import numpy as np

from .portfolio import ContractViolation

logger = logging.getLogger(__name__)

MAX_ABS_CORRELATION = 0.999
SHRINK_FACTOR = 0.95
MAX_SHRINK_ITERATIONS = 50
CHOLESKY_JITTER = 1e-6


def _as_square(matrix):
    try:
        m = np.array(matrix, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ContractViolation(f"Correlation matrix is not a numeric grid: {e}") from e
    if m.ndim != 2 or m.shape[0] != m.shape[1]:
        raise ContractViolation(f"Correlation matrix must be square, got shape {m.shape}")
    return m


# ── Cholesky / PSD test ─────────────────────────────────────────────────

def cholesky(matrix, jitter=CHOLESKY_JITTER):
    """
    Lower-triangular L with L @ L.T = matrix.

    A singular matrix (perfectly correlated assets) is retried with
    jitter added to the diagonal. An indefinite one raises
    ContractViolation: repair it first.
    """
    a = _as_square(matrix)
    try:
        return np.linalg.cholesky(a)
    except np.linalg.LinAlgError:
        pass
    try:
        return np.linalg.cholesky(a + jitter * np.eye(a.shape[0]))
    except np.linalg.LinAlgError as e:
        raise ContractViolation("Correlation matrix is not positive definite") from e


def is_positive_definite(matrix):
    """True when the Cholesky factorization succeeds with a finite, positive diagonal."""
    a = np.asarray(matrix, dtype=np.float64)
    if not np.all(np.isfinite(a)):
        return False
    try:
        d = np.diag(np.linalg.cholesky(a))
    except np.linalg.LinAlgError:
        return False
    return bool(np.all(np.isfinite(d)) and np.all(d > 0))


# ── Repair ──────────────────────────────────────────────────────────────

def _normalize(m):
    m = np.where(np.isfinite(m), m, 0.0)
    m = 0.5 * (m + m.T)
    m = np.clip(m, -MAX_ABS_CORRELATION, MAX_ABS_CORRELATION)
    np.fill_diagonal(m, 1.0)
    return m


def repair_correlation(matrix, shrink=SHRINK_FACTOR, max_iter=MAX_SHRINK_ITERATIONS):
    """
    Produce a symmetric, unit-diagonal, (best effort) PSD correlation matrix.

    Parameters
    ----------
    matrix   : array-like [n, n] - raw correlation, possibly invalid
    shrink   : float - off-diagonal multiplier per failed round
    max_iter : int - shrink rounds before giving up

    Returns
    -------
    np.ndarray [n, n]
        A new matrix; the input is not modified.
    """
    m = _normalize(_as_square(matrix))
    if m.shape[0] == 0:
        return m

    off = ~np.eye(m.shape[0], dtype=bool)
    for it in range(max_iter):
        if is_positive_definite(m):
            if it:
                logger.debug(f"Correlation repaired after {it} shrink rounds")
            return m
        m[off] *= shrink

    if not is_positive_definite(m):
        logger.warning(f"Correlation still not PSD after {max_iter} shrink rounds")
    return m


def nearest_psd_correlation(matrix, min_eigenvalue=1e-6):
    """Project onto the PSD cone via eigenvalue clipping, then rescale to unit diagonal."""
    m = _normalize(_as_square(matrix))
    if m.shape[0] == 0:
        return m
    eigenvalues, eigenvectors = np.linalg.eigh(m)
    eigenvalues = np.maximum(eigenvalues, min_eigenvalue)
    result = eigenvectors @ np.diag(eigenvalues) @ eigenvectors.T
    d = np.sqrt(np.diag(result))
    result = result / np.maximum(np.outer(d, d), 1e-15)
    result = 0.5 * (result + result.T)
    np.fill_diagonal(result, 1.0)
    return result


# ── Estimators ──────────────────────────────────────────────────────────

def _pairwise(returns, corr_fn):
    series = [np.asarray(r, dtype=np.float64) for r in returns]
    n = len(series)
    corr = np.eye(n)
    for i in range(n):
        for j in range(i + 1, n):
            length = min(len(series[i]), len(series[j]))
            c = corr_fn(series[i][:length], series[j][:length]) if length >= 2 else 0.0
            c = max(-MAX_ABS_CORRELATION, min(MAX_ABS_CORRELATION, c))
            corr[i, j] = corr[j, i] = c
    return corr


def _pearson(x, y):
    dx = x - x.mean()
    dy = y - y.mean()
    vx, vy = dx @ dx, dy @ dy
    if vx == 0 or vy == 0:
        return 0.0
    return float(dx @ dy / math.sqrt(vx * vy))


def sample_correlation(returns):
    """Pairwise Pearson correlation of a list of return series."""
    return _pairwise(returns, _pearson)


def ewma_correlation(returns, lam=0.94):
    """
    Exponentially weighted correlation, most recent observation weighted 1.

    Parameters
    ----------
    returns : list of array-like - one return series per asset, oldest first
    lam     : float - decay factor (0.94 is the usual daily choice)
    """
    def _ewma(x, y):
        n = len(x)
        w = lam ** np.arange(n - 1, -1, -1, dtype=np.float64)
        dx = x - x.mean()
        dy = y - y.mean()
        vx, vy = w @ (dx * dx), w @ (dy * dy)
        if vx == 0 or vy == 0:
            return 0.0
        return float(w @ (dx * dy) / math.sqrt(vx * vy))

    return _pairwise(returns, _ewma)


def half_life_to_lambda(half_life):
    return 0.5 ** (1.0 / half_life)


def lambda_to_half_life(lam):
    return math.log(0.5) / math.log(lam)


def ledoit_wolf_shrinkage(sample_corr, target_corr=0.3):
    """
    Shrink toward a constant-correlation target.

    Intensity is the size heuristic min(0.5, max(0.1, 2/n)).

    Returns
    -------
    (np.ndarray, float) : repaired shrunk correlation, intensity used
    """
    corr = _as_square(sample_corr)
    n = corr.shape[0]
    target = np.full((n, n), float(target_corr))
    np.fill_diagonal(target, 1.0)
    intensity = min(0.5, max(0.1, 2.0 / n)) if n else 0.0
    shrunk = (1 - intensity) * corr + intensity * target
    return repair_correlation(shrunk), intensity


def correlation_to_covariance(corr, vols):
    vols = np.asarray(vols, dtype=np.float64)
    return np.asarray(corr, dtype=np.float64) * np.outer(vols, vols)


def covariance_to_correlation(cov):
    """Returns (correlation, vols); zero-variance rows get identity rows."""
    cov = np.asarray(cov, dtype=np.float64)
    vols = np.sqrt(np.maximum(np.diag(cov), 0.0))
    denom = np.outer(vols, vols)
    with np.errstate(divide="ignore", invalid="ignore"):
        corr = np.where(denom > 0, cov / denom, 0.0)
    np.fill_diagonal(corr, 1.0)
    return corr, vols
