"""
Configuration for simulation and optimization runs.

Classes:
    SamplingMethod     - pseudo-random vs quasi-random (low-discrepancy) draws
    FatTailMethod      - multivariate Student-t mixing vs Gaussian copula
    SimulationConfig   - per-run Monte Carlo settings
    OptimizationConfig - risk decomposition / swap search settings
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .portfolio import ContractViolation

DEFAULT_CONFIG = {
    "n_paths": 10_000,
    "drawdown_threshold": 0.10,
    "qmc_skip": 1023,
    "max_workers": 8,
    "max_anomaly_rate": 0.10,
    "risk_free_rate": 0.05,
    "swap_amount": 0.01,
    "top_n": 15,
    "validation_paths": 2_000,
    "risk_parity_max_iter": 100,
    "risk_parity_tol": 1e-4,
}

SEQUENCES = ("sobol", "halton")


class SamplingMethod(Enum):
    PSEUDO_RANDOM = "pseudo"
    QUASI_RANDOM = "quasi"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        aliases = {"mc": "pseudo", "monte-carlo": "pseudo", "standard": "pseudo",
                   "qmc": "quasi", "sobol": "quasi"}
        key = str(value).lower()
        try:
            return cls(aliases.get(key, key))
        except ValueError:
            raise ContractViolation(f"Unknown sampling method: {value!r}") from None


class FatTailMethod(Enum):
    MULTIVARIATE_T = "mvt"
    COPULA = "copula"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        aliases = {"t": "mvt", "student-t": "mvt", "multivariate-t": "mvt",
                   "gaussian": "copula", "gaussian-copula": "copula"}
        key = str(value).lower()
        try:
            return cls(aliases.get(key, key))
        except ValueError:
            raise ContractViolation(f"Unknown fat-tail method: {value!r}") from None


def default_worker_count():
    """Worker threads for one run: hardware concurrency capped at 8."""
    return min(DEFAULT_CONFIG["max_workers"], os.cpu_count() or 4)


# ── SimulationConfig ────────────────────────────────────────────────────

@dataclass
class SimulationConfig:
    """Configuration for one Monte Carlo run."""
    n_paths: int = DEFAULT_CONFIG["n_paths"]
    sampling: SamplingMethod = SamplingMethod.QUASI_RANDOM
    fat_tail: FatTailMethod = FatTailMethod.MULTIVARIATE_T
    sequence: str = "sobol"
    drawdown_threshold: float = DEFAULT_CONFIG["drawdown_threshold"]
    qmc_skip: int = DEFAULT_CONFIG["qmc_skip"]
    n_workers: Optional[int] = None
    random_seed: Optional[int] = None
    keep_asset_returns: bool = False
    attribution: bool = True
    max_anomaly_rate: float = DEFAULT_CONFIG["max_anomaly_rate"]

    def __post_init__(self):
        self.sampling = SamplingMethod.parse(self.sampling)
        self.fat_tail = FatTailMethod.parse(self.fat_tail)
        if self.drawdown_threshold is None:
            self.drawdown_threshold = DEFAULT_CONFIG["drawdown_threshold"]

    @property
    def is_quasi(self):
        return self.sampling is SamplingMethod.QUASI_RANDOM

    @property
    def workers(self):
        """Requested worker threads, never more than default_worker_count()."""
        if not self.n_workers:
            return default_worker_count()
        return max(1, min(int(self.n_workers), default_worker_count()))

    def validate(self):
        if int(self.n_paths) < 1:
            raise ContractViolation(f"n_paths must be >= 1, got {self.n_paths}")
        if self.sequence not in SEQUENCES:
            raise ContractViolation(
                f"Unknown sequence {self.sequence!r}. Available: {list(SEQUENCES)}")
        if self.n_workers is not None and int(self.n_workers) < 1:
            raise ContractViolation(f"n_workers must be >= 1, got {self.n_workers}")
        if int(self.qmc_skip) < 0:
            raise ContractViolation(f"qmc_skip must be >= 0, got {self.qmc_skip}")
        if (not isinstance(self.drawdown_threshold, (int, float))
                or not 0.0 <= self.drawdown_threshold <= 1.0):
            raise ContractViolation(
                f"drawdown_threshold must lie in [0, 1], got {self.drawdown_threshold}")
        return self


# ── OptimizationConfig ──────────────────────────────────────────────────

@dataclass
class OptimizationConfig:
    """Configuration for risk decomposition and the swap search."""
    risk_free_rate: float = DEFAULT_CONFIG["risk_free_rate"]
    swap_amount: float = DEFAULT_CONFIG["swap_amount"]
    top_n: int = DEFAULT_CONFIG["top_n"]
    validation_paths: int = DEFAULT_CONFIG["validation_paths"]
    risk_parity_max_iter: int = DEFAULT_CONFIG["risk_parity_max_iter"]
    risk_parity_tol: float = DEFAULT_CONFIG["risk_parity_tol"]
    simulation: SimulationConfig = field(default_factory=SimulationConfig)

    def validate(self):
        if self.swap_amount <= 0:
            raise ContractViolation(f"swap_amount must be > 0, got {self.swap_amount}")
        if int(self.top_n) < 0:
            raise ContractViolation(f"top_n must be >= 0, got {self.top_n}")
        if int(self.validation_paths) < 1:
            raise ContractViolation(
                f"validation_paths must be >= 1, got {self.validation_paths}")
        self.simulation.validate()
        return self
