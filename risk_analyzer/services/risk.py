"""
Portfolio risk decomposition:
  - Marginal risk contribution (% of total variance per position)
  - Parametric component / marginal VaR per position
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from risk_analyzer.domain import validate_confidence
from risk_analyzer.errors import InvalidParameter
from risk_analyzer.services.statistics import normal_ppf, portfolio_std_dev


@dataclass
class AssetContribution:
    symbol: str
    component_var: float
    marginal_var: float
    percentage: float


def marginal_risk_contribution(weights, cov) -> np.ndarray:
    """
    Fraction of total portfolio variance attributable to each asset.

    mrc_i = w_i * (Σ w)_i  /  (w' Σ w)

    Values sum to 1.0. A zero-variance portfolio splits risk equally.
    """
    w = np.asarray(weights, dtype=float)
    sigma_w = np.asarray(cov, dtype=float) @ w
    port_var = float(w @ sigma_w)
    if port_var <= 1e-12:
        return np.repeat(1.0 / len(w), len(w))
    return w * sigma_w / port_var


def component_var(
    symbols: list[str],
    weights,
    cov,
    confidence: float,
    portfolio_value: float = 1.0,
) -> list[AssetContribution]:
    """
    Parametric (normal, zero-mean) VaR decomposition.

    marginal_i  = z * (Σ w)_i / σ_p
    component_i = w_i * marginal_i          (sums to total VaR)

    Amounts are scaled by *portfolio_value*.
    """
    validate_confidence(confidence)
    w = np.asarray(weights, dtype=float)
    cov = np.asarray(cov, dtype=float)
    if len(symbols) != w.size or cov.shape != (w.size, w.size):
        raise InvalidParameter(
            f"{len(symbols)} symbols, {w.size} weights and a {cov.shape} covariance do not line up"
        )

    z = -normal_ppf(1.0 - confidence)
    sigma_w = cov @ w
    port_sigma = portfolio_std_dev(w, cov)
    if port_sigma <= 1e-12:
        return [AssetContribution(s, 0.0, 0.0, 0.0) for s in symbols]

    marginal = z * sigma_w / port_sigma
    component = w * marginal
    total = float(component.sum())
    pct = marginal_risk_contribution(w, cov) if total == 0 else component / total
    return [
        AssetContribution(
            symbol=s,
            component_var=float(component[i] * portfolio_value),
            marginal_var=float(marginal[i]),
            percentage=float(pct[i]),
        )
        for i, s in enumerate(symbols)
    ]
