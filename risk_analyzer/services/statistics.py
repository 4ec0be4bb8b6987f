"""
Statistics primitives used by every risk engine.

Sample moments use the n-1 denominator; quantiles interpolate linearly
between order statistics of the sorted empirical distribution.
"""
from __future__ import annotations

import numpy as np
from scipy import stats

from risk_analyzer.errors import InsufficientData, InvalidParameter, NumericalFailure


def as_array(data) -> np.ndarray:
    return np.asarray(data, dtype=float)


def mean(data) -> float:
    arr = as_array(data)
    if arr.size == 0:
        return 0.0
    return float(arr.mean())


def std_dev(data) -> float:
    arr = as_array(data)
    if arr.size < 2:
        return 0.0
    return float(arr.std(ddof=1))


def quantile(data, q: float) -> float:
    arr = as_array(data)
    if arr.size == 0:
        raise InsufficientData("Cannot take a quantile of an empty series")
    if not 0.0 <= q <= 1.0:
        raise InvalidParameter(f"Quantile level must be in [0, 1], got {q}")
    return float(np.quantile(np.sort(arr), q, method="linear"))


def returns_matrix(asset_returns) -> np.ndarray:
    """
    Stack per-asset return series into a (periods x assets) matrix.

    Every series must have the same number of periods.
    """
    series = [as_array(r) for r in asset_returns]
    if not series:
        raise InsufficientData("No asset return series supplied")
    lengths = {len(s) for s in series}
    if len(lengths) != 1:
        raise InvalidParameter(f"Asset return series have mismatched lengths: {sorted(lengths)}")
    n_periods = lengths.pop()
    if n_periods < 2:
        raise InsufficientData("At least two return periods are required")
    return np.column_stack(series)


def covariance_matrix(asset_returns) -> np.ndarray:
    data = returns_matrix(asset_returns)
    return np.atleast_2d(np.cov(data, rowvar=False, ddof=1))


def correlation_matrix(asset_returns) -> np.ndarray:
    """
    Pearson correlation matrix with an exact unit diagonal.

    Pairs involving a constant series have no defined correlation; they are
    reported as 0.0 rather than NaN.
    """
    data = returns_matrix(asset_returns)
    n_assets = data.shape[1]
    corr = np.eye(n_assets)
    for i in range(n_assets):
        for j in range(i + 1, n_assets):
            x, y = data[:, i], data[:, j]
            if np.std(x) == 0 or np.std(y) == 0:
                value = 0.0
            else:
                value = float(np.corrcoef(x, y)[0, 1])
            value = float(np.clip(value, -1.0, 1.0))
            corr[i, j] = value
            corr[j, i] = value
    return corr


def cholesky(cov: np.ndarray) -> np.ndarray:
    """Lower-triangular L with L @ L.T == cov."""
    try:
        return np.linalg.cholesky(np.asarray(cov, dtype=float))
    except np.linalg.LinAlgError as exc:
        raise NumericalFailure("Cholesky factorization failed: covariance is not positive definite") from exc


def eigen_symmetric(cov: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Eigenvalues (ascending) and column eigenvectors of a symmetric matrix."""
    try:
        values, vectors = np.linalg.eigh(np.asarray(cov, dtype=float))
    except np.linalg.LinAlgError as exc:
        raise NumericalFailure("Eigenvalue decomposition did not converge") from exc
    if not np.all(np.isfinite(values)):
        raise NumericalFailure("Eigenvalue decomposition produced non-finite values")
    return values, vectors


def normal_ppf(p: float) -> float:
    return float(stats.norm.ppf(p))


def normal_pdf(x: float) -> float:
    return float(stats.norm.pdf(x))


def portfolio_variance(weights, cov) -> float:
    w = as_array(weights)
    return float(w @ np.asarray(cov, dtype=float) @ w)


def portfolio_std_dev(weights, cov) -> float:
    return float(np.sqrt(max(portfolio_variance(weights, cov), 0.0)))
