"""
VaR backtesting.

Counts days where the realised loss exceeded the VaR estimate and runs:

  Kupiec POF            : unconditional coverage, LR_uc ~ chi2(1)
  Christoffersen (ind.) : independence of exceedances, LR_ind ~ chi2(1)

p-values default to the legacy approximation exp(-x/2) (0 above x = 30),
not the exact chi-square survival function; pass exact=True or set
EXACT_CHI_SQUARE for scipy's chi2.sf.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from scipy import stats

from risk_analyzer.config import settings
from risk_analyzer.domain import RiskMethod, validate_confidence
from risk_analyzer.errors import InsufficientData, InvalidParameter
from risk_analyzer.services.var import historical_var, parametric_var


@dataclass
class BacktestResult:
    periods: int
    exceedances: int
    expected_exceedances: float
    kupiec_lr: float
    kupiec_p_value: float
    christoffersen_lr: float
    christoffersen_p_value: float


def chi_square_pvalue(x: float, df: int = 1, exact: bool | None = None) -> float:
    if exact is None:
        exact = settings.exact_chi_square
    if exact:
        return float(stats.chi2.sf(max(x, 0.0), df))
    if x <= 0:
        return 1.0
    if x > 30:
        return 0.0
    return math.exp(-x / 2)


def violations(portfolio_returns, var_estimates) -> np.ndarray:
    returns = np.asarray(portfolio_returns, dtype=float)
    estimates = np.asarray(var_estimates, dtype=float)
    if returns.shape != estimates.shape:
        raise InvalidParameter(
            f"Returns and VaR estimates length mismatch ({returns.size} vs {estimates.size})"
        )
    return -returns > estimates


def kupiec_lr(exceedances: int, periods: int, confidence: float) -> float:
    x, n = float(exceedances), float(periods)
    if not 0 < x < n:
        return 0.0
    p = 1.0 - confidence
    p_hat = x / n
    return -2.0 * (
        x * math.log(p) + (n - x) * math.log(1 - p)
        - x * math.log(p_hat) - (n - x) * math.log(1 - p_hat)
    )


def transition_counts(flags) -> tuple[int, int, int, int]:
    n00 = n01 = n10 = n11 = 0
    for prev, curr in zip(flags[:-1], flags[1:]):
        if not prev and not curr:
            n00 += 1
        elif not prev and curr:
            n01 += 1
        elif prev and not curr:
            n10 += 1
        else:
            n11 += 1
    return n00, n01, n10, n11


def christoffersen_lr(flags) -> float:
    n00, n01, n10, n11 = transition_counts(flags)
    if not (n00 and n01 and n10 and n11):
        return 0.0
    p01 = n01 / (n00 + n01)
    p11 = n11 / (n10 + n11)
    p2 = (n01 + n11) / (n00 + n01 + n10 + n11)
    return -2.0 * (
        (n00 + n10) * math.log(1 - p2) + (n01 + n11) * math.log(p2)
        - n00 * math.log(1 - p01) - n01 * math.log(p01)
        - n10 * math.log(1 - p11) - n11 * math.log(p11)
    )


def backtest_var(
    portfolio_returns,
    var_estimates,
    confidence: float,
    exact_p_values: bool | None = None,
) -> BacktestResult:
    validate_confidence(confidence)
    flags = violations(portfolio_returns, var_estimates)
    periods = int(flags.size)
    exceedances = int(flags.sum())

    k_lr = kupiec_lr(exceedances, periods, confidence)
    c_lr = christoffersen_lr(flags.tolist())
    return BacktestResult(
        periods=periods,
        exceedances=exceedances,
        expected_exceedances=periods * (1.0 - confidence),
        kupiec_lr=k_lr,
        kupiec_p_value=chi_square_pvalue(k_lr, 1, exact_p_values),
        christoffersen_lr=c_lr,
        christoffersen_p_value=chi_square_pvalue(c_lr, 1, exact_p_values),
    )


def rolling_var_estimates(
    returns,
    window: int,
    confidence: float,
    method: RiskMethod | str = RiskMethod.HISTORICAL,
) -> tuple[np.ndarray, np.ndarray]:
    """
    One-step-ahead VaR estimates from a trailing *window* of returns.

    Returns (realised_returns, var_estimates), aligned and of equal length:
    the estimate for day t only uses returns strictly before t.
    """
    arr = np.asarray(returns, dtype=float)
    method = RiskMethod(method)
    if method is RiskMethod.MONTE_CARLO:
        raise InvalidParameter("Backtesting supports historical and parametric_normal methods")
    if window < 2:
        raise InvalidParameter(f"Backtest window must be >= 2, got {window}")
    if arr.size <= window:
        raise InsufficientData(
            f"Need more than {window} returns to backtest, got {arr.size}"
        )

    estimator = historical_var if method is RiskMethod.HISTORICAL else parametric_var
    estimates = np.array([
        estimator(arr[t - window:t], confidence, 1).var for t in range(window, arr.size)
    ])
    return arr[window:], estimates
