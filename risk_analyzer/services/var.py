"""
Value-at-Risk estimators.

  - Historical        : empirical quantile of sqrt(h)-scaled returns
  - Parametric normal : mu*h + z * sigma*sqrt(h)
  - Monte Carlo       : Cholesky-correlated normal draws of asset returns

All estimators are pure functions of the return data and report VaR in
return units as a loss (positive number = potential loss).
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

import numpy as np

from risk_analyzer.domain import RiskMethod, validate_confidence, validate_horizon
from risk_analyzer.errors import InsufficientData, InvalidParameter
from risk_analyzer.services.statistics import (
    as_array,
    cholesky,
    covariance_matrix,
    mean,
    normal_ppf,
    quantile,
    std_dev,
)

ProgressCallback = Callable[[float], None]

_MC_CHUNK = 2_000


@dataclass
class VaRResult:
    var: float
    method: str
    confidence: float
    horizon_days: int
    distribution: np.ndarray = field(default_factory=lambda: np.array([], dtype=float), repr=False)


def check_inputs(returns, confidence: float, horizon_days: int) -> np.ndarray:
    arr = as_array(returns)
    if arr.size == 0:
        raise InsufficientData("No returns data")
    validate_confidence(confidence)
    validate_horizon(horizon_days)
    return arr


def scale_to_horizon(returns, horizon_days: int) -> np.ndarray:
    """Square-root-of-time scaling."""
    return as_array(returns) * np.sqrt(horizon_days)


def historical_var(returns, confidence: float, horizon_days: int = 1) -> VaRResult:
    arr = check_inputs(returns, confidence, horizon_days)
    scaled = scale_to_horizon(arr, horizon_days)
    # A quantile above zero means no loss at this confidence.
    var = max(-quantile(scaled, 1.0 - confidence), 0.0)
    return VaRResult(
        var=var,
        method=RiskMethod.HISTORICAL.value,
        confidence=confidence,
        horizon_days=horizon_days,
        distribution=scaled,
    )


def parametric_var(returns, confidence: float, horizon_days: int = 1) -> VaRResult:
    arr = check_inputs(returns, confidence, horizon_days)
    mu_scaled = mean(arr) * horizon_days
    sigma_scaled = std_dev(arr) * np.sqrt(horizon_days)
    z = normal_ppf(1.0 - confidence)
    return VaRResult(
        var=float(-(mu_scaled + z * sigma_scaled)),
        method=RiskMethod.PARAMETRIC_NORMAL.value,
        confidence=confidence,
        horizon_days=horizon_days,
    )


def monte_carlo_var(
    asset_returns: list,
    weights,
    confidence: float,
    horizon_days: int = 1,
    simulations: int = 10_000,
    seed: int | None = None,
    progress: ProgressCallback | None = None,
) -> VaRResult:
    """
    Simulate correlated asset returns and take the empirical loss quantile.

    Draws are generated in chunks; *progress* (if given) receives the
    completed fraction after each chunk.
    """
    w = as_array(weights)
    if len(asset_returns) == 0 or w.size == 0:
        raise InsufficientData("Monte Carlo VaR needs at least one asset")
    if len(asset_returns) != w.size:
        raise InvalidParameter(f"Got {len(asset_returns)} asset return series but {w.size} weights")
    validate_confidence(confidence)
    validate_horizon(horizon_days)
    if simulations < 1:
        raise InvalidParameter(f"simulations must be >= 1, got {simulations}")

    cov = covariance_matrix(asset_returns)
    means = np.array([mean(r) for r in asset_returns])
    lower = cholesky(cov)

    rng = np.random.default_rng(seed)
    scale = np.sqrt(horizon_days)
    simulated = np.empty(simulations, dtype=float)
    done = 0
    while done < simulations:
        size = min(_MC_CHUNK, simulations - done)
        z = rng.standard_normal((size, w.size))
        sampled = means + z @ lower.T
        simulated[done:done + size] = (sampled @ w) * scale
        done += size
        if progress is not None:
            progress(done / simulations)

    simulated.sort()
    return VaRResult(
        var=-quantile(simulated, 1.0 - confidence),
        method=RiskMethod.MONTE_CARLO.value,
        confidence=confidence,
        horizon_days=horizon_days,
        distribution=simulated,
    )
