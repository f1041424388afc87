"""
Covariance Builder - correlation plus per-asset scale, and the portfolio
moments derived from it.
"""

import math

import numpy as np

from .portfolio import ContractViolation


def build_covariance(correlation, sigmas):
    """
    Sigma[i, j] = rho[i, j] * sigma[i] * sigma[j].

    Raises
    ------
    ContractViolation
        When the correlation is not square or its size differs from sigmas.
    """
    corr = np.asarray(correlation, dtype=np.float64)
    sig = np.asarray(sigmas, dtype=np.float64).ravel()
    if corr.ndim != 2 or corr.shape[0] != corr.shape[1]:
        raise ContractViolation(f"Correlation matrix must be square, got shape {corr.shape}")
    if corr.shape[0] != sig.shape[0]:
        raise ContractViolation(
            f"Correlation is {corr.shape[0]}x{corr.shape[1]} but {sig.shape[0]} volatilities given")
    return corr * np.outer(sig, sig)


def portfolio_volatility(weights, cov):
    w = np.asarray(weights, dtype=np.float64)
    var = float(w @ np.asarray(cov) @ w)
    return math.sqrt(max(0.0, var))


def portfolio_return(weights, mu, cash_return=0.0):
    return float(np.asarray(weights, dtype=np.float64) @ np.asarray(mu, dtype=np.float64)) + cash_return


def sharpe_ratio(expected_return, volatility, risk_free_rate):
    if volatility <= 0 or not math.isfinite(volatility):
        return 0.0
    return (expected_return - risk_free_rate) / volatility
