"""
Risk Decomposer / Optimizer - where the risk sits and which trades help.

Analytic layer on the covariance matrix (marginal and percentage risk
contributions, incremental Sharpe, optimality ratios, risk-parity target,
swap-delta matrix) plus a Monte Carlo check of the best swaps through the
same coordinator the main run uses.

Classes:
    RiskRow            - per-position risk decomposition
    Swap               - one (sell, buy) pair with analytic deltas
    SwapMatrix         - delta Sharpe / vol / return for every ordered pair
    MiniSimStats       - mean, median, std dev, Sharpe, P(loss) of a small run
    SwapValidation     - Swap + simulated stats + deltas vs. baseline
    RiskParityTarget   - equal-risk-contribution weights and their metrics
    OptimizationResult - everything above for one request
    SwapValidator      - runs the baseline and candidate mini-simulations
    PortfolioOptimizer - orchestrates one optimization request
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime

import numpy as np

from .config import OptimizationConfig
from .coordinator import SimulationCoordinator
from .covariance import build_covariance, portfolio_return, portfolio_volatility, sharpe_ratio

logger = logging.getLogger(__name__)

MCTR_FLOOR = 1e-4


# ── Risk decomposition ──────────────────────────────────────────────────

def compute_mctr(weights, cov, port_vol):
    """MCTR_i = (Sigma w)_i / sigma_p; zeros when sigma_p <= 0."""
    w = np.asarray(weights, dtype=np.float64)
    if port_vol <= 0:
        return np.zeros_like(w)
    return (np.asarray(cov) @ w) / port_vol


def compute_risk_contribution(weights, mctr, port_vol):
    """RC_i = w_i MCTR_i / sigma_p; sums to 1 for any weights with sigma_p > 0."""
    w = np.asarray(weights, dtype=np.float64)
    if port_vol <= 0:
        return np.zeros_like(w)
    return w * np.asarray(mctr) / port_vol


def compute_incremental_sharpe(weights, mu, sigma, cov, risk_free_rate, cash_return=0.0):
    """
    iSharpe_i = S_i - rho(i, p) * S_p.

    Positive values mean adding weight to asset i raises the portfolio
    Sharpe ratio.
    """
    w = np.asarray(weights, dtype=np.float64)
    mu = np.asarray(mu, dtype=np.float64)
    sigma = np.asarray(sigma, dtype=np.float64)
    cov = np.asarray(cov, dtype=np.float64)

    port_vol = portfolio_volatility(w, cov)
    port_sharpe = sharpe_ratio(portfolio_return(w, mu, cash_return), port_vol, risk_free_rate)

    safe_sigma = np.where(sigma > 0, sigma, 1.0)
    asset_sharpe = np.where(sigma > 0, (mu - risk_free_rate) / safe_sigma, 0.0)
    if port_vol > 0:
        rho = np.where(sigma > 0, (cov @ w) / (safe_sigma * port_vol), 0.0)
    else:
        rho = np.zeros_like(w)
    return asset_sharpe - rho * port_sharpe


def compute_optimality_ratio(mu, mctr, risk_free_rate):
    """(mu_i - rf) / MCTR_i; equal across assets at the optimum, 0 where MCTR ~ 0."""
    mu = np.asarray(mu, dtype=np.float64)
    mctr = np.asarray(mctr, dtype=np.float64)
    ok = np.abs(mctr) >= MCTR_FLOOR
    return np.where(ok, (mu - risk_free_rate) / np.where(ok, mctr, 1.0), 0.0)


def compute_risk_parity_weights(sigma, cov, max_iter=100, tol=1e-4):
    """
    Equal risk contribution weights (long-only, sum to 1).

    Starts from inverse-volatility weights and iterates
    w_i <- (sigma_p / n) / MCTR_i, renormalizing each round, until the
    largest weight change falls below tol or max_iter rounds have run.
    """
    sigma = np.asarray(sigma, dtype=np.float64)
    cov = np.asarray(cov, dtype=np.float64)
    n = len(sigma)
    if n == 0:
        return np.zeros(0)

    w = np.where(sigma > 0, 1.0 / np.where(sigma > 0, sigma, 1.0), 1.0)
    w = w / w.sum()

    for it in range(max_iter):
        port_vol = portfolio_volatility(w, cov)
        if port_vol <= 0:
            break
        mctr = compute_mctr(w, cov, port_vol)
        target = port_vol / n
        w_new = np.where(mctr > 0, target / np.where(mctr > 0, mctr, 1.0), w)
        total = w_new.sum()
        if total <= 0:
            break
        w_new = np.maximum(w_new / total, 0.0)
        diff = float(np.max(np.abs(w_new - w)))
        w = w_new
        if diff < tol:
            logger.debug(f"Risk parity converged in {it + 1} iterations")
            break
    return w


@dataclass
class RiskRow:
    """Risk decomposition for one position."""
    ticker: str
    weight: float
    adjusted_weight: float
    mu: float
    sigma: float
    mctr: float
    risk_contribution: float
    incremental_sharpe: float
    optimality_ratio: float
    asset_sharpe: float


def risk_decomposition(weights, mu, sigma, correlation, risk_free_rate, cash_return=0.0):
    """
    Full analytic decomposition in one call.

    Returns
    -------
    dict with keys cov, portfolio_vol, portfolio_return, sharpe, mctr,
    risk_contribution, incremental_sharpe, optimality_ratio
    """
    cov = build_covariance(correlation, sigma)
    vol = portfolio_volatility(weights, cov)
    ret = portfolio_return(weights, mu, cash_return)
    mctr = compute_mctr(weights, cov, vol)
    return {
        "cov": cov,
        "portfolio_vol": vol,
        "portfolio_return": ret,
        "sharpe": sharpe_ratio(ret, vol, risk_free_rate),
        "mctr": mctr,
        "risk_contribution": compute_risk_contribution(weights, mctr, vol),
        "incremental_sharpe": compute_incremental_sharpe(
            weights, mu, sigma, cov, risk_free_rate, cash_return),
        "optimality_ratio": compute_optimality_ratio(mu, mctr, risk_free_rate),
    }


# ── Swap analysis ───────────────────────────────────────────────────────

@dataclass
class Swap:
    sell_idx: int
    buy_idx: int
    sell: str
    buy: str
    delta_sharpe: float
    delta_vol: float
    delta_return: float


@dataclass
class SwapMatrix:
    """Analytic deltas for moving one swap unit from row (sell) to column (buy)."""
    tickers: list
    delta_sharpe: np.ndarray
    delta_vol: np.ndarray
    delta_return: np.ndarray
    current_sharpe: float
    current_vol: float
    current_return: float
    trade_size: float


def swap_weights(weights, sell, buy, trade_size):
    w = np.array(weights, dtype=np.float64, copy=True)
    w[sell] -= trade_size
    w[buy] += trade_size
    return w


def compute_swap_matrix(weights, mu, cov, risk_free_rate, leverage_ratio=1.0,
                        cash_return=0.0, swap_amount=0.01, tickers=None):
    """
    Sharpe / vol / return deltas for every ordered (sell, buy) pair.

    Each swap moves swap_amount * leverage_ratio of adjusted weight from
    sell to buy with everything else held fixed. Diagonals are zero.
    """
    w = np.asarray(weights, dtype=np.float64)
    n = len(w)
    trade = swap_amount * leverage_ratio

    cur_vol = portfolio_volatility(w, cov)
    cur_ret = portfolio_return(w, mu, cash_return)
    cur_sharpe = sharpe_ratio(cur_ret, cur_vol, risk_free_rate)

    d_sharpe = np.zeros((n, n))
    d_vol = np.zeros((n, n))
    d_ret = np.zeros((n, n))
    for sell in range(n):
        for buy in range(n):
            if sell == buy:
                continue
            nw = swap_weights(w, sell, buy, trade)
            vol = portfolio_volatility(nw, cov)
            ret = portfolio_return(nw, mu, cash_return)
            d_sharpe[sell, buy] = sharpe_ratio(ret, vol, risk_free_rate) - cur_sharpe
            d_vol[sell, buy] = vol - cur_vol
            d_ret[sell, buy] = ret - cur_ret

    return SwapMatrix(
        tickers=list(tickers) if tickers is not None else [f"ASSET{i}" for i in range(n)],
        delta_sharpe=d_sharpe,
        delta_vol=d_vol,
        delta_return=d_ret,
        current_sharpe=cur_sharpe,
        current_vol=cur_vol,
        current_return=cur_ret,
        trade_size=trade,
    )


def find_top_swaps(matrix, top_n=15):
    """Off-diagonal pairs ranked by delta Sharpe, best first."""
    n = len(matrix.tickers)
    swaps = [
        Swap(
            sell_idx=s, buy_idx=b,
            sell=matrix.tickers[s], buy=matrix.tickers[b],
            delta_sharpe=float(matrix.delta_sharpe[s, b]),
            delta_vol=float(matrix.delta_vol[s, b]),
            delta_return=float(matrix.delta_return[s, b]),
        )
        for s in range(n) for b in range(n) if s != b
    ]
    swaps.sort(key=lambda x: x.delta_sharpe, reverse=True)
    return swaps[:top_n]


# ── Monte Carlo validation ──────────────────────────────────────────────

@dataclass
class MiniSimStats:
    label: str
    mean: float
    median: float
    std_dev: float
    sharpe: float
    p_loss: float
    n_paths: int = 0


def mini_sim_stats(returns, risk_free_rate, label=""):
    r = np.asarray(returns, dtype=np.float64)
    r = r[np.isfinite(r)]
    if len(r) == 0:
        return MiniSimStats(label, 0.0, 0.0, 0.0, 0.0, 0.0, 0)
    ordered = np.sort(r)
    mean = float(r.mean())
    std = float(r.std())
    return MiniSimStats(
        label=label,
        mean=mean,
        median=float(ordered[len(ordered) // 2]),
        std_dev=std,
        sharpe=(mean - risk_free_rate) / std if std > 0 else 0.0,
        p_loss=float(np.count_nonzero(r < 0)) / len(r),
        n_paths=len(r),
    )


@dataclass
class SwapValidation:
    swap: Swap
    stats: MiniSimStats
    delta_mean: float
    delta_median: float
    delta_p_loss: float
    delta_mc_sharpe: float


class SwapValidator:
    """
    Mini-simulations of the baseline portfolio and each candidate swap.

    All runs reuse one ScenarioModel (only the weights change) and take
    contiguous, non-overlapping offsets: the baseline starts at 0 and
    candidate k at k * n_paths.
    """

    def __init__(self, model, sim_config, n_paths, risk_free_rate=0.05):
        self.model = model
        self.config = replace(sim_config, n_paths=int(n_paths), keep_asset_returns=False)
        self.n_paths = int(n_paths)
        self.rf = risk_free_rate

    def _run(self, weights, offset, label):
        coord = SimulationCoordinator(self.model.with_weights(weights), self.config)
        scenarios = coord.run(self.n_paths, base_offset=offset)
        return mini_sim_stats(scenarios.returns, self.rf, label)

    def baseline(self):
        return self._run(self.model.weights, 0, "Baseline")

    def validate(self, swaps, trade_size, baseline=None):
        """
        Returns
        -------
        (MiniSimStats, list[SwapValidation]) - baseline and validated swaps
        sorted by delta simulated Sharpe, best first
        """
        base = baseline or self.baseline()
        results = []
        for k, swap in enumerate(swaps, start=1):
            w = swap_weights(self.model.weights, swap.sell_idx, swap.buy_idx, trade_size)
            stats = self._run(w, k * self.n_paths, f"{swap.sell}->{swap.buy}")
            results.append(SwapValidation(
                swap=swap,
                stats=stats,
                delta_mean=stats.mean - base.mean,
                delta_median=stats.median - base.median,
                delta_p_loss=stats.p_loss - base.p_loss,
                delta_mc_sharpe=stats.sharpe - base.sharpe,
            ))
        results.sort(key=lambda v: v.delta_mc_sharpe, reverse=True)
        return base, results


# ── Result ──────────────────────────────────────────────────────────────

@dataclass
class RiskParityTarget:
    weights: np.ndarray
    adjusted_weights: np.ndarray
    portfolio_return: float
    portfolio_vol: float
    sharpe: float
    delta_sharpe: float


@dataclass(frozen=True)
class OptimizationResult:
    """Risk decomposition, swap search and validation for one request."""
    portfolio_return: float
    portfolio_vol: float
    sharpe: float
    positions: list
    swap_matrix: SwapMatrix
    top_swaps: list
    baseline: MiniSimStats
    risk_parity: RiskParityTarget
    leverage_ratio: float
    cash_weight: float
    risk_free_rate: float
    validation_paths: int
    elapsed_seconds: float = 0.0
    timestamp: str = ""
    warnings: tuple = field(default_factory=tuple)


class PortfolioOptimizer:
    """
    Usage:
        opt = PortfolioOptimizer(model, portfolio, params, correlation, config)
        result = opt.optimize()
    """

    def __init__(self, model, portfolio, params, correlation, config=None):
        self.model = model
        self.portfolio = portfolio
        self.params = params
        self.correlation = np.asarray(correlation, dtype=np.float64)
        self.config = config or OptimizationConfig()

    def optimize(self):
        t0 = time.time()
        cfg = self.config
        rf = cfg.risk_free_rate
        tickers = self.portfolio.tickers
        mu = np.array([p.mu for p in self.params])
        sigma = np.array([p.sigma for p in self.params])
        w = self.portfolio.adjusted_weights
        leverage = self.portfolio.leverage_ratio
        cash_return = self.portfolio.cash_return

        dec = risk_decomposition(w, mu, sigma, self.correlation, rf, cash_return)
        cov = dec["cov"]
        logger.info(f"Optimization: {len(tickers)} positions, return "
                    f"{dec['portfolio_return']:.2%}, vol {dec['portfolio_vol']:.2%}, "
                    f"Sharpe {dec['sharpe']:.3f}")

        rows = []
        gross_weights = self.portfolio.weights
        for i, t in enumerate(tickers):
            rows.append(RiskRow(
                ticker=t,
                weight=float(gross_weights[i]),
                adjusted_weight=float(w[i]),
                mu=float(mu[i]),
                sigma=float(sigma[i]),
                mctr=float(dec["mctr"][i]),
                risk_contribution=float(dec["risk_contribution"][i]),
                incremental_sharpe=float(dec["incremental_sharpe"][i]),
                optimality_ratio=float(dec["optimality_ratio"][i]),
                asset_sharpe=(mu[i] - rf) / sigma[i] if sigma[i] > 0 else 0.0,
            ))

        rp = compute_risk_parity_weights(sigma, cov, cfg.risk_parity_max_iter, cfg.risk_parity_tol)
        rp_adj = rp * leverage
        rp_vol = portfolio_volatility(rp_adj, cov)
        rp_ret = portfolio_return(rp_adj, mu, cash_return)
        rp_sharpe = sharpe_ratio(rp_ret, rp_vol, rf)

        matrix = compute_swap_matrix(w, mu, cov, rf, leverage, cash_return,
                                     cfg.swap_amount, tickers)
        candidates = find_top_swaps(matrix, cfg.top_n)

        validator = SwapValidator(self.model, cfg.simulation, cfg.validation_paths, rf)
        baseline, validated = validator.validate(candidates, matrix.trade_size)

        elapsed = time.time() - t0
        logger.info(f"Optimization complete in {elapsed:.1f}s "
                    f"({len(validated)} swaps validated at {cfg.validation_paths} paths)")

        return OptimizationResult(
            portfolio_return=dec["portfolio_return"],
            portfolio_vol=dec["portfolio_vol"],
            sharpe=dec["sharpe"],
            positions=rows,
            swap_matrix=matrix,
            top_swaps=validated,
            baseline=baseline,
            risk_parity=RiskParityTarget(
                weights=rp,
                adjusted_weights=rp_adj,
                portfolio_return=rp_ret,
                portfolio_vol=rp_vol,
                sharpe=rp_sharpe,
                delta_sharpe=rp_sharpe - dec["sharpe"],
            ),
            leverage_ratio=leverage,
            cash_weight=self.portfolio.cash_weight,
            risk_free_rate=rf,
            validation_paths=cfg.validation_paths,
            elapsed_seconds=elapsed,
            timestamp=datetime.now().isoformat(),
        )
