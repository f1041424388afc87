"""
Attribution Engine - split each portfolio return percentile into
per-position contributions.

Conditioning on sampled paths near a percentile (binning) is biased by
correlation: a hedge can look helpful in good outcomes purely through
co-movement with the rest of the book. The contributions here are
conditional expectations under a linear projection instead:

    beta_i = Cov(r_i, r_p) / Var(r_p)
    E[r_i | r_p = P] = mu_i + beta_i (P - E[r_p])
    contribution_i = w_i E[r_i | r_p = P]

With E[r_p] = w . mu + cash and sum(w_i beta_i) = 1 the contributions plus
the cash leg add up to P exactly.
"""

import logging
from dataclasses import dataclass, field

import numpy as np

from .portfolio import ContractViolation

logger = logging.getLogger(__name__)

VARIANCE_FLOOR = 1e-18


@dataclass
class Attribution:
    """Per-position contributions at one portfolio percentile."""
    label: str
    portfolio_return: float
    contributions: dict = field(default_factory=dict)
    cash_contribution: float = 0.0

    def total(self):
        return sum(self.contributions.values()) + self.cash_contribution


def _labels(tickers, n):
    if tickers is None:
        return [f"ASSET{i}" for i in range(n)]
    if len(tickers) != n:
        raise ContractViolation(f"{len(tickers)} tickers for {n} positions")
    return list(tickers)


def _attribute(percentiles, mu, cov_with_portfolio, port_var, weights, cash_return, tickers):
    w = np.asarray(weights, dtype=np.float64)
    mu = np.asarray(mu, dtype=np.float64)
    names = _labels(tickers, len(w))

    if port_var > VARIANCE_FLOOR:
        beta = cov_with_portfolio / port_var
    else:
        logger.debug("Degenerate portfolio variance, attribution betas set to 0")
        beta = np.zeros(len(w))
    expected = float(w @ mu) + cash_return

    out = {}
    for label, value in percentiles.items():
        conditional = mu + beta * (value - expected)
        contrib = w * conditional
        out[label] = Attribution(
            label=label,
            portfolio_return=float(value),
            contributions={t: float(c) for t, c in zip(names, contrib)},
            cash_contribution=float(cash_return),
        )
    return out


def attribute(percentiles, mu, cov, weights, cash_return=0.0, tickers=None):
    """
    Analytic attribution from model moments.

    Parameters
    ----------
    percentiles : dict[str, float] - label -> portfolio return (e.g. result.terminal)
    mu          : array-like [n] - expected asset returns
    cov         : np.ndarray [n, n] - asset covariance
    weights     : array-like [n] - leverage-adjusted weights
    cash_return : float - constant cash leg
    tickers     : list[str] or None

    Returns
    -------
    dict[str, Attribution]
    """
    w = np.asarray(weights, dtype=np.float64)
    cov = np.asarray(cov, dtype=np.float64)
    sw = cov @ w
    return _attribute(percentiles, mu, sw, float(w @ sw), w, cash_return, tickers)


def attribute_from_scenarios(percentiles, asset_returns, weights, cash_return=0.0,
                             tickers=None):
    """
    Attribution from sample moments of retained per-asset scenario returns.

    asset_returns is the [n_paths, n] matrix a run keeps when
    SimulationConfig.keep_asset_returns is set.
    """
    R = np.asarray(asset_returns, dtype=np.float64)
    R = R[np.all(np.isfinite(R), axis=1)]
    w = np.asarray(weights, dtype=np.float64)
    if R.shape[0] < 2:
        return attribute(percentiles, R.mean(axis=0) if len(R) else np.zeros(len(w)),
                         np.zeros((len(w), len(w))), w, cash_return, tickers)
    cov = np.cov(R, rowvar=False).reshape(len(w), len(w))
    return attribute(percentiles, R.mean(axis=0), cov, w, cash_return, tickers)
