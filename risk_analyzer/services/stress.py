"""
Scenario stress testing.

Two scenario kinds are supported:

  historical : replay the price move of every position between two dates
  custom     : apply a return shock per asset class to each position's value

Impacts are currency amounts on the position's market value (cost basis).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from risk_analyzer.domain import PricePoint

# ---------------------------------------------------------------------------
# Preset shocks by asset class (approximate peak-to-trough moves)
# ---------------------------------------------------------------------------
PRESET_SCENARIOS: dict[str, dict[str, float]] = {
    "2008 Global Financial Crisis": {
        "Equity": -0.37,
        "Bond": 0.07,
        "FX": -0.05,
        "Commodities": -0.35,
        "Crypto": -0.60,
    },
    "2020 COVID Crash (Q1)": {
        "Equity": -0.34,
        "Bond": 0.03,
        "FX": -0.03,
        "Commodities": -0.40,
        "Crypto": -0.50,
    },
    "2022 Rate Shock (Full Year)": {
        "Equity": -0.18,
        "Bond": -0.13,
        "FX": 0.08,
        "Commodities": 0.16,
        "Crypto": -0.64,
    },
    "Crypto Winter (hypothetical)": {
        "Equity": -0.05,
        "Bond": 0.01,
        "FX": 0.0,
        "Commodities": 0.0,
        "Crypto": -0.70,
    },
    "Rising Rates +200bp (hypothetical)": {
        "Equity": -0.10,
        "Bond": -0.16,
        "FX": 0.04,
        "Commodities": -0.05,
        "Crypto": -0.25,
    },
}


@dataclass(frozen=True)
class ScenarioSpec:
    name: str
    type: str                                  # historical / custom / preset
    start_date: date | None = None
    end_date: date | None = None
    shocks: dict[str, float] = field(default_factory=dict)


@dataclass
class ScenarioResult:
    name: str
    delta_nav: float
    delta_var: float = 0.0
    asset_impact: dict[str, float] = field(default_factory=dict)


def _price_at_or_after(history: list[PricePoint], day: date) -> float | None:
    for point in history:
        if point.date >= day:
            return point.close
    return None


def _price_at_or_before(history: list[PricePoint], day: date) -> float | None:
    found = None
    for point in history:
        if point.date > day:
            break
        found = point.close
    return found


def apply_historical_stress(
    market_values: dict[str, float],
    prices: dict[str, list[PricePoint]],
    start_date: date,
    end_date: date,
    name: str = "Historical",
) -> ScenarioResult:
    """
    Replay each asset's return between *start_date* and *end_date*.

    Assets with no price history, or no usable price inside the window,
    are skipped.
    """
    impacts: dict[str, float] = {}
    for symbol, market_value in market_values.items():
        history = prices.get(symbol)
        if not history:
            continue
        start_price = _price_at_or_after(history, start_date)
        end_price = _price_at_or_before(history, end_date)
        if not start_price or not end_price or start_price <= 0 or end_price <= 0:
            continue
        impacts[symbol] = market_value * (end_price - start_price) / start_price

    return ScenarioResult(name=name, delta_nav=sum(impacts.values()), asset_impact=impacts)


def apply_custom_stress(
    market_values: dict[str, float],
    asset_classes: dict[str, str],
    shocks: dict[str, float],
    name: str = "Custom",
) -> ScenarioResult:
    impacts: dict[str, float] = {}
    for symbol, market_value in market_values.items():
        asset_class = asset_classes.get(symbol)
        if asset_class is None:
            continue
        impacts[symbol] = market_value * shocks.get(asset_class, 0.0)

    return ScenarioResult(name=name, delta_nav=sum(impacts.values()), asset_impact=impacts)
