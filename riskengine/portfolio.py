"""
Portfolio data model: positions with subjective return percentiles, cash,
and the exposure arithmetic (weights, leverage, cash weight) every run uses.
"""

import json
import logging
import math
from dataclasses import dataclass, field

import numpy as np

logger = logging.getLogger(__name__)

PERCENTILE_KEYS = ("p5", "p25", "p50", "p75", "p95")
MIN_PERCENTILE_GAP = 0.001
RETURN_FLOOR = -1.0


class ContractViolation(ValueError):
    """Raised when a caller hands the engine input it cannot salvage."""


def validate_percentiles(values):
    """
    Problems with a five-point percentile view (p5, p25, p50, p75, p95).

    Each value must be finite and at least -1.0, and each percentile must
    exceed the one before it by MIN_PERCENTILE_GAP. Returns an empty list
    for a usable view.
    """
    issues = []
    values = tuple(values)
    for key, v in zip(PERCENTILE_KEYS, values):
        if not math.isfinite(v):
            issues.append(f"{key} is not finite")
        elif v < RETURN_FLOOR:
            issues.append(f"{key}={v:.4f} is below the -100% floor")
    for (k_lo, lo), (k_hi, hi) in zip(zip(PERCENTILE_KEYS, values),
                                      zip(PERCENTILE_KEYS[1:], values[1:])):
        if math.isfinite(lo) and math.isfinite(hi) and hi - lo < MIN_PERCENTILE_GAP:
            issues.append(f"{k_hi} must exceed {k_lo} by at least {MIN_PERCENTILE_GAP}")
    return issues


def _number(value, field_name):
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ContractViolation(f"{field_name}={value!r} is not a number") from None


# ── Position ────────────────────────────────────────────────────────────

@dataclass
class Position:
    """A holding plus the user's five-point view of its one-year return."""
    ticker: str
    quantity: float
    price: float
    p5: float = -0.20
    p25: float = 0.0
    p50: float = 0.08
    p75: float = 0.16
    p95: float = 0.35

    @property
    def value(self):
        return self.quantity * self.price

    def percentiles(self):
        return (self.p5, self.p25, self.p50, self.p75, self.p95)

    def problems(self):
        """List of human-readable issues with the percentile inputs."""
        return validate_percentiles(self.percentiles())

    def validate(self):
        issues = self.problems()
        if issues:
            raise ContractViolation(f"{self.ticker}: " + "; ".join(issues))
        return self

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict) or "ticker" not in data:
            raise ContractViolation(f"Position entry needs a ticker: {data!r}")
        ticker = str(data["ticker"])
        pct = data.get("percentiles", data)
        if not isinstance(pct, dict):
            raise ContractViolation(f"{ticker}: percentiles must be a mapping")
        raw = {
            "quantity": data.get("quantity", data.get("shares", 0.0)),
            "price": data.get("price", 0.0),
        }
        raw.update((k, pct[k]) for k in PERCENTILE_KEYS if k in pct)
        return cls(ticker=ticker, **{k: _number(v, f"{ticker}.{k}") for k, v in raw.items()})


# ── Portfolio ───────────────────────────────────────────────────────────

@dataclass
class Portfolio:
    """
    Positions plus a cash balance earning a constant rate.

    Weights are signed gross weights (value / gross exposure); the
    leverage-adjusted weights used for simulation are value / portfolio
    value, so adjusted weights plus the cash weight sum to one.
    """
    positions: list = field(default_factory=list)
    cash: float = 0.0
    cash_rate: float = 0.0

    @property
    def tickers(self):
        return [p.ticker for p in self.positions]

    @property
    def n(self):
        return len(self.positions)

    @property
    def values(self):
        return np.array([p.value for p in self.positions], dtype=np.float64)

    @property
    def portfolio_value(self):
        return float(self.values.sum() + self.cash)

    @property
    def gross_value(self):
        return float(np.abs(self.values).sum())

    @property
    def weights(self):
        gross = self.gross_value
        if gross <= 0:
            return np.zeros(self.n)
        return self.values / gross

    @property
    def leverage_ratio(self):
        gross, pv = self.gross_value, self.portfolio_value
        return gross / pv if gross > 0 and pv != 0 else 1.0

    @property
    def adjusted_weights(self):
        w = self.weights * self.leverage_ratio
        return np.where(np.isfinite(w), w, 0.0)

    @property
    def cash_weight(self):
        pv = self.portfolio_value
        return self.cash / pv if pv != 0 and math.isfinite(pv) else 0.0

    @property
    def cash_return(self):
        return self.cash_weight * (self.cash_rate or 0.0)

    def check(self):
        """Raise ContractViolation unless the portfolio can be simulated."""
        if not self.positions:
            raise ContractViolation("Portfolio has no positions")
        value = self.portfolio_value
        if not math.isfinite(value) or value <= 0:
            raise ContractViolation(f"Portfolio value must be positive, got {value}")
        return self

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ContractViolation("Portfolio must be a JSON object")
        positions = [Position.from_dict(p) for p in data.get("positions", [])]
        return cls(
            positions=positions,
            cash=_number(data.get("cash", 0.0), "cash"),
            cash_rate=_number(data.get("cash_rate", 0.0), "cash_rate"),
        )


def load_portfolio(path):
    """
    Load a portfolio and its correlation matrix from a JSON file.

    Returns
    -------
    (Portfolio, np.ndarray or None)
        The correlation is None when the file does not carry one.
    """
    with open(path) as fh:
        data = json.load(fh)
    portfolio = Portfolio.from_dict(data)
    corr = data.get("correlation")
    if corr is not None:
        try:
            corr = np.array(corr, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise ContractViolation(f"Correlation is not a numeric grid ({path}): {e}") from e
    logger.info(f"Loaded {portfolio.n} positions from {path}")
    return portfolio, corr
