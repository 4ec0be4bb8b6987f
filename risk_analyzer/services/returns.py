"""
Price-to-return conversion and portfolio aggregation.

Portfolio weights are cost-basis weights (quantity * avg_price), so risk
contributions are read against what was paid, not the current mark.
"""
from __future__ import annotations

import numpy as np

from risk_analyzer.domain import PositionSet, PricePoint
from risk_analyzer.errors import InsufficientData, InvalidParameter
from risk_analyzer.services.statistics import std_dev


def _frozen(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


def compute_returns(prices: list[PricePoint], use_log: bool = True) -> np.ndarray:
    """Log or simple returns; fewer than two prices gives an empty series."""
    if len(prices) < 2:
        return _frozen(np.array([], dtype=float))
    closes = np.array([p.close for p in prices], dtype=float)
    if use_log:
        returns = np.log(closes[1:] / closes[:-1])
    else:
        returns = (closes[1:] - closes[:-1]) / closes[:-1]
    return _frozen(returns)


def cost_basis_weights(positions: PositionSet) -> np.ndarray:
    return np.array(positions.weights(), dtype=float)


def portfolio_returns(asset_returns: list[np.ndarray], weights) -> np.ndarray:
    w = np.asarray(weights, dtype=float)
    if len(asset_returns) == 0 or w.size == 0:
        return _frozen(np.array([], dtype=float))
    if len(asset_returns) != w.size:
        raise InvalidParameter(
            f"Got {len(asset_returns)} asset return series but {w.size} weights"
        )
    lengths = {len(r) for r in asset_returns}
    if len(lengths) != 1:
        raise InvalidParameter(f"Asset return series have mismatched lengths: {sorted(lengths)}")
    matrix = np.column_stack([np.asarray(r, dtype=float) for r in asset_returns])
    return _frozen(matrix @ w)


def align_returns(asset_returns: list[np.ndarray]) -> list[np.ndarray]:
    """Truncate every series to the common trailing window."""
    if not asset_returns:
        return []
    common = min(len(r) for r in asset_returns)
    if common == 0:
        raise InsufficientData("At least one asset has no return history")
    return [_frozen(np.array(r[len(r) - common:], dtype=float)) for r in asset_returns]


def annualized_volatility(daily_returns, trading_days: int = 252) -> float:
    if len(daily_returns) == 0:
        return 0.0
    return std_dev(daily_returns) * float(np.sqrt(trading_days))
