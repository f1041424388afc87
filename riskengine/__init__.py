"""
riskengine - Portfolio risk simulation from subjective percentile views.

Components:
- Distribution Deriver: five return percentiles -> mu, sigma, skew, tail df
- Correlation Repairer: symmetric, unit-diagonal, PSD correlation from raw edits
- Covariance Builder: correlation + volatilities -> covariance, portfolio moments
- Sequences: pseudo-random and Sobol/Halton sources, inverse-CDF transforms
- Scenarios: correlated, skewed, fat-tailed one-year return scenarios
- Coordinator: thread-pool fan-out with disjoint sequence offsets
- Aggregator: percentiles, loss probabilities, drawdown proxy, VaR/CVaR
- Attribution: per-position contributions at each percentile
- Optimizer: MCTR, risk contributions, iSharpe, risk parity, swap search
"""

from .portfolio import ContractViolation, Position, Portfolio, load_portfolio, validate_percentiles
from .config import (
    DEFAULT_CONFIG,
    FatTailMethod,
    OptimizationConfig,
    SamplingMethod,
    SimulationConfig,
)
from .distribution import (
    FALLBACK_PARAMS,
    DistributionParams,
    derive_distribution,
    percentiles_from_params,
)
from .correlation import (
    cholesky,
    ewma_correlation,
    is_positive_definite,
    ledoit_wolf_shrinkage,
    nearest_psd_correlation,
    repair_correlation,
    sample_correlation,
)
from .covariance import build_covariance, portfolio_return, portfolio_volatility, sharpe_ratio
from .sequences import (
    HaltonSequence,
    PseudoRandomSource,
    QuasiRandomSource,
    SobolSequence,
    inverse_chi_squared_cdf,
    inverse_normal_cdf,
)
from .scenarios import CorrelatedScenarioGenerator, ScenarioModel, ScenarioSet
from .coordinator import SimulationCoordinator, plan_chunks
from .aggregator import SimulationResult, aggregate
from .attribution import Attribution, attribute, attribute_from_scenarios
from .optimizer import (
    OptimizationResult,
    PortfolioOptimizer,
    compute_mctr,
    compute_risk_contribution,
    compute_risk_parity_weights,
    compute_swap_matrix,
    find_top_swaps,
)
from .engine import RiskEngine, run_optimization, run_simulation

__all__ = [
    "ContractViolation", "Position", "Portfolio", "load_portfolio", "validate_percentiles",
    "DEFAULT_CONFIG", "FatTailMethod", "OptimizationConfig", "SamplingMethod",
    "SimulationConfig",
    "FALLBACK_PARAMS", "DistributionParams", "derive_distribution",
    "percentiles_from_params",
    "cholesky", "ewma_correlation", "is_positive_definite", "ledoit_wolf_shrinkage",
    "nearest_psd_correlation", "repair_correlation", "sample_correlation",
    "build_covariance", "portfolio_return", "portfolio_volatility", "sharpe_ratio",
    "HaltonSequence", "PseudoRandomSource", "QuasiRandomSource", "SobolSequence",
    "inverse_chi_squared_cdf", "inverse_normal_cdf",
    "CorrelatedScenarioGenerator", "ScenarioModel", "ScenarioSet",
    "SimulationCoordinator", "plan_chunks",
    "SimulationResult", "aggregate",
    "Attribution", "attribute", "attribute_from_scenarios",
    "OptimizationResult", "PortfolioOptimizer", "compute_mctr",
    "compute_risk_contribution", "compute_risk_parity_weights",
    "compute_swap_matrix", "find_top_swaps",
    "RiskEngine", "run_optimization", "run_simulation",
]
