"""
Engine facade - the API the UI, export and persistence layers call.

Architecture:
    Position percentiles -> derive_distribution -> (mu, sigma, skew, tail_df)
    raw correlation      -> repair_correlation  -> PSD check at the boundary
        -> ScenarioModel (Cholesky factor, leverage-adjusted weights, cash leg)
        -> SimulationCoordinator (thread pool, disjoint offsets)
        -> aggregate() -> SimulationResult (+ attribution)
        -> PortfolioOptimizer -> OptimizationResult (+ swap validation runs)

Usage:
    result = run_simulation(portfolio, correlation, SimulationConfig(n_paths=50_000))
    opt = run_optimization(portfolio, correlation)
"""

import logging
import time
from dataclasses import replace

import numpy as np

from .aggregator import aggregate
from .attribution import attribute, attribute_from_scenarios
from .config import OptimizationConfig, SimulationConfig
from .coordinator import SimulationCoordinator
from .correlation import is_positive_definite, nearest_psd_correlation, repair_correlation
from .covariance import build_covariance, portfolio_volatility
from .distribution import derive_for_position
from .optimizer import PortfolioOptimizer
from .portfolio import ContractViolation
from .scenarios import ScenarioModel

logger = logging.getLogger(__name__)


def prepare_correlation(correlation, n):
    """
    Repair a raw correlation for n assets and enforce PSD at the boundary.

    None means uncorrelated. A matrix that is still not PSD after the
    bounded shrink is projected with nearest_psd_correlation().
    """
    if correlation is None:
        return np.eye(n)
    try:
        corr = np.asarray(correlation, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ContractViolation(f"Correlation is not a numeric {n}x{n} grid: {e}") from e
    if corr.shape != (n, n):
        raise ContractViolation(f"Correlation shape {corr.shape} does not match {n} positions")
    repaired = repair_correlation(corr)
    if not is_positive_definite(repaired):
        logger.warning("Repaired correlation failed the PSD check, projecting to nearest PSD")
        repaired = nearest_psd_correlation(repaired)
    return repaired


class RiskEngine:
    """
    One portfolio + correlation, ready to simulate or optimize.

    Derivation, repair and the Cholesky factor are computed once in the
    constructor; simulate() and optimize() are independent requests with
    no state carried between them.
    """

    def __init__(self, portfolio, correlation=None, sim_config=None, opt_config=None):
        self.portfolio = portfolio.check()
        self.sim_config = (sim_config or SimulationConfig()).validate()
        self.opt_config = (opt_config or OptimizationConfig()).validate()

        self.params = [derive_for_position(p) for p in portfolio.positions]
        self.correlation = prepare_correlation(correlation, portfolio.n)
        self.sigma = np.array([p.sigma for p in self.params])
        self.mu = np.array([p.mu for p in self.params])
        self.cov = build_covariance(self.correlation, self.sigma)
        self.model = ScenarioModel.build(
            self.params, self.correlation,
            portfolio.adjusted_weights, portfolio.cash_return,
        )
        self.annual_vol = portfolio_volatility(portfolio.adjusted_weights, self.cov)

    @property
    def method_label(self):
        cfg = self.sim_config
        seq = f"-{cfg.sequence}" if cfg.is_quasi else ""
        return f"{cfg.sampling.value}{seq}/{cfg.fat_tail.value}"

    def simulate(self):
        """
        Run the full Monte Carlo and summarize it.

        Returns
        -------
        SimulationResult
        """
        t0 = time.time()
        cfg = self.sim_config
        logger.info(f"Simulation: {self.portfolio.n} positions, {cfg.n_paths:,} paths, "
                    f"{self.method_label}, {cfg.workers} workers")

        scenarios = SimulationCoordinator(self.model, cfg).run()
        result = aggregate(
            scenarios,
            portfolio_value=self.portfolio.portfolio_value,
            annual_vol=self.annual_vol,
            drawdown_threshold=cfg.drawdown_threshold,
            max_anomaly_rate=cfg.max_anomaly_rate,
            method=self.method_label,
        )

        attribution = {}
        if cfg.attribution and not result.is_empty:
            pct = {k: v for k, v in result.terminal.items() if k != "mean"}
            w = self.portfolio.adjusted_weights
            cash = self.portfolio.cash_return
            if scenarios.asset_returns is not None:
                attribution = attribute_from_scenarios(
                    pct, scenarios.asset_returns, w, cash, self.portfolio.tickers)
            else:
                attribution = attribute(pct, self.mu, self.cov, w, cash, self.portfolio.tickers)
        del scenarios

        elapsed = time.time() - t0
        logger.info(f"Simulation complete in {elapsed:.2f}s "
                    f"({result.n_paths / max(elapsed, 1e-9):,.0f} paths/sec)")
        return replace(
            result,
            attribution=attribution,
            distribution_params=dict(zip(self.portfolio.tickers, self.params)),
            elapsed_seconds=elapsed,
        )

    def optimize(self):
        """Risk decomposition, risk parity, swap matrix and swap validation."""
        optimizer = PortfolioOptimizer(
            self.model, self.portfolio, self.params, self.correlation, self.opt_config,
        )
        return optimizer.optimize()


def run_simulation(portfolio, correlation=None, config=None):
    """Derive, repair, simulate and summarize in one call."""
    return RiskEngine(portfolio, correlation, sim_config=config).simulate()


def run_optimization(portfolio, correlation=None, config=None):
    """Derive, repair and run the full optimization request in one call."""
    config = config or OptimizationConfig()
    return RiskEngine(portfolio, correlation, sim_config=config.simulation,
                      opt_config=config).optimize()
