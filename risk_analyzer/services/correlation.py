"""
Correlation matrix and principal component analysis of asset returns.

PCA decomposes the sample covariance matrix; components are returned
row-wise (one row per component, one column per asset) in descending
eigenvalue order.
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from risk_analyzer.errors import InvalidParameter, NumericalFailure
from risk_analyzer.services.statistics import correlation_matrix, covariance_matrix, eigen_symmetric


@dataclass
class CorrelationResult:
    symbols: list[str]
    matrix: np.ndarray


@dataclass
class PCAResult:
    explained_variance: list[float]
    cumulative_variance: list[float]
    components: np.ndarray
    eigenvalues: list[float]
    num_components: int


def compute_correlation(asset_returns: list, symbols: list[str]) -> CorrelationResult:
    if len(asset_returns) != len(symbols):
        raise InvalidParameter(f"Got {len(asset_returns)} return series for {len(symbols)} symbols")
    return CorrelationResult(symbols=list(symbols), matrix=correlation_matrix(asset_returns))


def compute_pca(asset_returns: list, num_components: int) -> PCAResult:
    if num_components < 1:
        raise InvalidParameter(f"num_components must be >= 1, got {num_components}")

    cov = covariance_matrix(asset_returns)
    n_assets = cov.shape[0]
    k = min(num_components, n_assets)

    values, vectors = eigen_symmetric(cov)
    # Stable sort on -value keeps original index order for ties.
    order = np.argsort(-values, kind="stable")

    total = float(values.sum())
    if total <= 0:
        raise NumericalFailure("Covariance matrix has no positive variance to decompose")

    top = order[:k]
    explained = [float(values[i] / total) for i in top]
    cumulative = np.cumsum(explained).tolist()

    return PCAResult(
        explained_variance=explained,
        cumulative_variance=[float(c) for c in cumulative],
        components=vectors[:, top].T.copy(),
        eigenvalues=[float(values[i]) for i in top],
        num_components=k,
    )
