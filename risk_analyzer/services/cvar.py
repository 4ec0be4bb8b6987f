"""
Conditional VaR / Expected Shortfall.

Historical ES averages the worst alpha-fraction of the horizon-scaled
returns used for historical VaR, then runs the plausibility consistency
rules so the reported CVaR is never below VaR.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from risk_analyzer.domain import RiskMethod
from risk_analyzer.services.plausibility import DEFAULT_CLAMP, PlausibilityClamp
from risk_analyzer.services.statistics import mean, normal_pdf, normal_ppf, std_dev
from risk_analyzer.services.var import VaRResult, check_inputs, historical_var, parametric_var


@dataclass
class CVaRResult:
    cvar: float
    var: float
    method: str
    confidence: float
    horizon_days: int


def tail_size(n_obs: int, alpha: float) -> int:
    return min(n_obs, max(1, int(math.floor(n_obs * alpha + 0.5))))


def expected_shortfall(
    var_result: VaRResult,
    clamp: PlausibilityClamp = DEFAULT_CLAMP,
) -> CVaRResult:
    """Mean loss over the worst tail of a VaR result's (scaled or simulated) distribution."""
    ordered = np.sort(var_result.distribution)
    tail = ordered[: tail_size(len(ordered), 1.0 - var_result.confidence)]

    if tail.size:
        cvar = -float(tail.mean())
    else:
        cvar = clamp.empty_tail_cvar(var_result.var)
    cvar = clamp.reconcile_cvar(cvar, var_result.var)

    return CVaRResult(
        cvar=cvar,
        var=var_result.var,
        method=var_result.method,
        confidence=var_result.confidence,
        horizon_days=var_result.horizon_days,
    )


def historical_cvar(
    returns,
    confidence: float,
    horizon_days: int = 1,
    clamp: PlausibilityClamp = DEFAULT_CLAMP,
) -> CVaRResult:
    return expected_shortfall(historical_var(returns, confidence, horizon_days), clamp)


def parametric_cvar(returns, confidence: float, horizon_days: int = 1) -> CVaRResult:
    """Closed-form normal expected shortfall: sigma_h * phi(z_alpha) / alpha - mu_h."""
    arr = check_inputs(returns, confidence, horizon_days)
    alpha = 1.0 - confidence
    mu_scaled = mean(arr) * horizon_days
    sigma_scaled = std_dev(arr) * math.sqrt(horizon_days)
    z_alpha = normal_ppf(alpha)

    cvar = sigma_scaled * normal_pdf(z_alpha) / alpha - mu_scaled
    return CVaRResult(
        cvar=float(cvar),
        var=parametric_var(arr, confidence, horizon_days).var,
        method=RiskMethod.PARAMETRIC_NORMAL.value,
        confidence=confidence,
        horizon_days=horizon_days,
    )
