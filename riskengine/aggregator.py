"""
Scenario Aggregator - summary statistics from a merged ScenarioSet.

Percentiles are read from the sorted array at index floor(n * p); VaR and
CVaR are reported as positive losses.
Only the summary (and a 50-bin histogram) outlives aggregation; the raw
path array is dropped with the ScenarioSet.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .sequences import inverse_normal_cdf

logger = logging.getLogger(__name__)

RETURN_LEVELS = (0.05, 0.10, 0.25, 0.50, 0.75, 0.90, 0.95)
DRAWDOWN_LEVELS = (0.50, 0.75, 0.90, 0.95, 0.99)
TAIL_LEVELS = (0.01, 0.05)
DRAWDOWN_SCALE = 0.8
HISTOGRAM_BINS = 50


def level_key(p):
    return f"p{int(round(p * 100))}"


def percentile(sorted_values, p):
    """Element at floor(len * p), capped at the last index."""
    n = len(sorted_values)
    idx = min(int(math.floor(n * p)), n - 1)
    return float(sorted_values[idx])


def var_cvar(sorted_values, alpha):
    """
    Value-at-Risk and Conditional VaR at tail probability alpha.

    Returns
    -------
    (VaR, CVaR) : tuple[float, float]
        Positive numbers are losses. CVaR averages every value at or below
        the VaR quantile.
    """
    n = len(sorted_values)
    idx = min(int(math.floor(n * alpha)), n - 1)
    var = -float(sorted_values[idx])
    cvar = -float(np.mean(sorted_values[:idx + 1]))
    return var, cvar


def drawdown_percentiles(annual_vol, levels=DRAWDOWN_LEVELS):
    """
    Quantiles of the drawdown proxy annual_vol * 0.8 * |Z|, clamped to [0, 1].

    |Z| is half-normal, so its p-quantile is Phi^-1((1 + p) / 2); no
    sampling is needed for a single-horizon draw.
    """
    vol = annual_vol if math.isfinite(annual_vol) else 0.0
    out = {}
    for p in levels:
        z = inverse_normal_cdf((1.0 + p) / 2.0)
        out[level_key(p)] = min(1.0, max(0.0, vol * DRAWDOWN_SCALE * z))
    return out


# ── SimulationResult ────────────────────────────────────────────────────

@dataclass(frozen=True)
class SimulationResult:
    """Summary of one simulation run. Immutable; raw paths are not kept."""
    terminal: dict
    terminal_dollars: dict
    drawdown: dict
    prob_loss: dict
    var: dict
    cvar: dict
    n_paths: int
    n_valid: int
    n_anomalies: int
    portfolio_value: float
    annual_vol: float
    method: str = ""
    elapsed_seconds: float = 0.0
    histogram: Optional[tuple] = None
    attribution: dict = field(default_factory=dict)
    distribution_params: dict = field(default_factory=dict)
    warnings: tuple = ()

    @property
    def is_empty(self):
        return self.n_valid == 0

    @property
    def anomaly_rate(self):
        return self.n_anomalies / self.n_paths if self.n_paths else 0.0

    @classmethod
    def empty(cls, portfolio_value=0.0, n_paths=0, n_anomalies=0, annual_vol=0.0,
              method="", warnings=()):
        """The no-result sentinel: every statistic zero, n_valid == 0."""
        zeros = {level_key(p): 0.0 for p in RETURN_LEVELS}
        return cls(
            terminal={**zeros, "mean": 0.0},
            terminal_dollars={**{k: portfolio_value for k in zeros},
                              "mean": portfolio_value, "starting_value": portfolio_value},
            drawdown={level_key(p): 0.0 for p in DRAWDOWN_LEVELS},
            prob_loss={"breakeven": 0.0, "loss_10": 0.0, "loss_20": 0.0,
                       "beyond_threshold": 0.0, "threshold": 0.0},
            var={a: 0.0 for a in TAIL_LEVELS},
            cvar={a: 0.0 for a in TAIL_LEVELS},
            n_paths=n_paths,
            n_valid=0,
            n_anomalies=n_anomalies,
            portfolio_value=portfolio_value,
            annual_vol=annual_vol,
            method=method,
            warnings=tuple(warnings) + ("no valid scenarios",),
        )


def aggregate(scenarios, portfolio_value, annual_vol, drawdown_threshold=0.10,
              max_anomaly_rate=0.10, method="", elapsed_seconds=0.0):
    """
    Summarize a ScenarioSet.

    Parameters
    ----------
    scenarios          : ScenarioSet - merged per-path portfolio returns
    portfolio_value    : float - starting dollar value
    annual_vol         : float - analytic portfolio volatility (drawdown proxy)
    drawdown_threshold : float - loss level for the beyond-threshold probability
    max_anomaly_rate   : float - anomaly fraction above which a warning is attached

    Returns
    -------
    SimulationResult (the empty sentinel when no finite returns remain)
    """
    raw = np.asarray(scenarios.returns, dtype=np.float64)
    n_paths = len(raw)
    valid = raw[np.isfinite(raw)]
    n_anomalies = int(scenarios.n_anomalies) + (n_paths - len(valid))

    warnings = []
    if n_paths and n_anomalies / n_paths > max_anomaly_rate:
        msg = (f"{n_anomalies} of {n_paths} paths were non-finite "
               f"({n_anomalies / n_paths:.1%} > {max_anomaly_rate:.0%})")
        logger.warning(msg)
        warnings.append(msg)

    if len(valid) == 0:
        logger.warning("No valid scenarios to aggregate")
        return SimulationResult.empty(portfolio_value, n_paths, n_anomalies,
                                      annual_vol, method, warnings)

    ordered = np.sort(valid)
    mean = float(ordered.mean())

    terminal = {level_key(p): percentile(ordered, p) for p in RETURN_LEVELS}
    terminal["mean"] = mean

    dollars = {k: portfolio_value * (1.0 + v) for k, v in terminal.items()}
    dollars["starting_value"] = portfolio_value

    n = len(ordered)
    threshold = abs(drawdown_threshold)
    prob_loss = {
        "breakeven": float(np.count_nonzero(ordered < 0)) / n,
        "loss_10": float(np.count_nonzero(ordered < -0.10)) / n,
        "loss_20": float(np.count_nonzero(ordered < -0.20)) / n,
        "beyond_threshold": float(np.count_nonzero(ordered < -threshold)) / n,
        "threshold": threshold,
    }

    var, cvar = {}, {}
    for alpha in TAIL_LEVELS:
        var[alpha], cvar[alpha] = var_cvar(ordered, alpha)

    counts, edges = np.histogram(ordered, bins=HISTOGRAM_BINS)

    return SimulationResult(
        terminal=terminal,
        terminal_dollars=dollars,
        drawdown=drawdown_percentiles(annual_vol),
        prob_loss=prob_loss,
        var=var,
        cvar=cvar,
        n_paths=n_paths,
        n_valid=n,
        n_anomalies=n_anomalies,
        portfolio_value=portfolio_value,
        annual_vol=annual_vol,
        method=method,
        elapsed_seconds=elapsed_seconds,
        histogram=(counts, edges),
        warnings=tuple(warnings),
    )
