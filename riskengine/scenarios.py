"""
Correlated Scenario Generator - one-year return scenarios for a portfolio.

Per path: correlated normals z = L u, optional multivariate Student-t
mixing through one shared chi-squared variate, a skew-normal style
transform, then r_i = mu_i + z_i * sigma_i and the weighted portfolio
return plus the constant cash leg. Everything is vectorized over a block
of paths; the generator is written once against RandomSource, so pseudo-
and quasi-random runs share this code.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import FatTailMethod
from .correlation import cholesky
from .portfolio import ContractViolation

logger = logging.getLogger(__name__)

Z_BOUND = 8.0
RETURN_FLOOR = -1.0
RETURN_CAP = 10.0
MIN_SKEW = 0.01
NORMAL_DF = 30
SQRT_2_OVER_PI = math.sqrt(2.0 / math.pi)


# ── ScenarioSet ─────────────────────────────────────────────────────────

@dataclass
class ScenarioSet:
    """Per-path portfolio returns from one run (or one chunk of a run)."""
    returns: np.ndarray
    asset_returns: Optional[np.ndarray] = None
    n_anomalies: int = 0
    offset: int = 0

    def __len__(self):
        return len(self.returns)

    @classmethod
    def concatenate(cls, parts):
        parts = list(parts)
        if not parts:
            return cls(returns=np.zeros(0))
        returns = np.concatenate([p.returns for p in parts])
        assets = None
        if all(p.asset_returns is not None for p in parts):
            assets = np.concatenate([p.asset_returns for p in parts])
        return cls(
            returns=returns,
            asset_returns=assets,
            n_anomalies=sum(p.n_anomalies for p in parts),
            offset=parts[0].offset,
        )


# ── ScenarioModel ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class ScenarioModel:
    """Immutable inputs shared read-only by every worker of a run."""
    mu: np.ndarray
    sigma: np.ndarray
    skew: np.ndarray
    tail_df: np.ndarray
    weights: np.ndarray
    cash_return: float
    L: np.ndarray

    @property
    def n(self):
        return len(self.mu)

    @property
    def shared_df(self):
        """Minimum finite tail df across assets; one mixing variable per path."""
        finite = self.tail_df[np.isfinite(self.tail_df) & (self.tail_df > 0)]
        return int(finite.min()) if finite.size else NORMAL_DF

    @classmethod
    def build(cls, params, correlation, weights, cash_return=0.0):
        """
        Parameters
        ----------
        params      : list[DistributionParams] - one per asset
        correlation : np.ndarray [n, n] - validated correlation
        weights     : array-like [n] - leverage-adjusted weights
        cash_return : float - cash weight * cash rate

        Raises ContractViolation when the correlation cannot be factored.
        """
        n = len(params)
        corr = np.asarray(correlation, dtype=np.float64)
        w = np.asarray(weights, dtype=np.float64).ravel()
        if corr.shape != (n, n) or w.shape != (n,):
            raise ContractViolation(
                f"{n} assets but correlation {corr.shape} and weights {w.shape}")
        return cls(
            mu=np.array([p.mu for p in params], dtype=np.float64),
            sigma=np.array([p.sigma for p in params], dtype=np.float64),
            skew=np.array([p.skew for p in params], dtype=np.float64),
            tail_df=np.array([p.tail_df for p in params], dtype=np.float64),
            weights=w,
            cash_return=float(cash_return),
            L=cholesky(corr),
        )

    def with_weights(self, weights):
        """Same model, different portfolio weights (swap validation)."""
        return ScenarioModel(
            mu=self.mu, sigma=self.sigma, skew=self.skew, tail_df=self.tail_df,
            weights=np.asarray(weights, dtype=np.float64), cash_return=self.cash_return,
            L=self.L,
        )


def skew_transform(z, skew):
    """
    z' = z sqrt(1 - d^2) + d |z| - d sqrt(2/pi), d = skew / sqrt(1 + skew^2).

    Columns whose |skew| <= 0.01 pass through untouched.
    """
    skew = np.asarray(skew, dtype=np.float64)
    delta = skew / np.sqrt(1.0 + skew * skew)
    active = np.abs(skew) > MIN_SKEW
    if not np.any(active):
        return z
    out = np.array(z, dtype=np.float64, copy=True)
    d = delta[active]
    za = out[..., active]
    out[..., active] = za * np.sqrt(1.0 - d * d) + d * np.abs(za) - d * SQRT_2_OVER_PI
    return out


# ── CorrelatedScenarioGenerator ─────────────────────────────────────────

class CorrelatedScenarioGenerator:
    """
    Draw portfolio return scenarios from a ScenarioModel.

    fat_tail=MULTIVARIATE_T scales every asset of a path by the same
    sqrt(df / chi2) * sqrt((df - 2) / df) when the shared df is below 30;
    COPULA skips the mixing and relies on the skew transform alone.
    """

    def __init__(self, model, fat_tail=FatTailMethod.MULTIVARIATE_T):
        self.model = model
        self.fat_tail = FatTailMethod.parse(fat_tail)

    @property
    def mixing_df(self):
        if self.fat_tail is not FatTailMethod.MULTIVARIATE_T:
            return None
        df = self.model.shared_df
        return df if df < NORMAL_DF else None

    def generate(self, source, n_paths, keep_asset_returns=False, offset=0):
        """
        Parameters
        ----------
        source             : RandomSource - pseudo or quasi draws
        n_paths            : int
        keep_asset_returns : bool - also return the [n_paths, n] asset returns

        Returns
        -------
        ScenarioSet
        """
        m = self.model
        df = self.mixing_df

        u, chi2 = source.variates(n_paths, m.n, df)
        z = u @ m.L.T

        if df is not None:
            scale = np.sqrt(df / chi2)
            if df > 2:
                scale = scale * math.sqrt((df - 2) / df)
            z = z * scale[:, None]

        z = skew_transform(z, m.skew)
        z = np.clip(z, -Z_BOUND, Z_BOUND)

        asset_returns = np.clip(m.mu + z * m.sigma, RETURN_FLOOR, RETURN_CAP)
        returns = np.clip(asset_returns @ m.weights + m.cash_return, RETURN_FLOOR, RETURN_CAP)

        bad = ~np.isfinite(returns)
        n_bad = int(bad.sum())
        if n_bad:
            returns[bad] = 0.0
            logger.debug(f"{n_bad} non-finite path results coerced to 0")

        return ScenarioSet(
            returns=returns,
            asset_returns=asset_returns if keep_asset_returns else None,
            n_anomalies=n_bad,
            offset=offset,
        )
