"""
Unit tests for stress.py
"""
from datetime import date

import pytest

from risk_analyzer.domain import PricePoint
from risk_analyzer.services.stress import PRESET_SCENARIOS, apply_custom_stress, apply_historical_stress


def _history(*points):
    return [PricePoint(date.fromisoformat(d), c) for d, c in points]


@pytest.fixture
def prices():
    return {
        "AAPL": _history(("2020-02-18", 100.0), ("2020-02-20", 95.0), ("2020-03-23", 70.0), ("2020-03-30", 80.0)),
        "TLT": _history(("2020-02-19", 140.0), ("2020-03-23", 154.0)),
        "ZERO": _history(("2020-02-19", 0.0), ("2020-03-23", 10.0)),
    }


class TestHistoricalStress:

    def test_replays_window_move(self, prices):
        result = apply_historical_stress(
            {"AAPL": 10_000.0, "TLT": 5_000.0},
            prices,
            date(2020, 2, 19),
            date(2020, 3, 23),
            name="COVID",
        )

        # AAPL: first close on/after 02-19 is 95, last on/before 03-23 is 70
        assert result.asset_impact["AAPL"] == pytest.approx(10_000.0 * (70 - 95) / 95)
        assert result.asset_impact["TLT"] == pytest.approx(500.0)
        assert result.delta_nav == pytest.approx(sum(result.asset_impact.values()))
        assert result.name == "COVID"
        assert result.delta_var == 0.0

    def test_skips_assets_without_usable_prices(self, prices):
        result = apply_historical_stress(
            {"AAPL": 10_000.0, "MISSING": 1_000.0, "ZERO": 1_000.0},
            prices,
            date(2020, 2, 19),
            date(2020, 3, 23),
        )

        assert set(result.asset_impact) == {"AAPL"}

    def test_window_outside_history_has_no_impact(self, prices):
        result = apply_historical_stress({"AAPL": 10_000.0}, prices, date(2021, 1, 1), date(2021, 6, 1))

        assert result.asset_impact == {}
        assert result.delta_nav == 0.0


class TestCustomStress:

    def test_shocks_by_asset_class(self):
        result = apply_custom_stress(
            {"AAPL": 10_000.0, "TLT": 5_000.0, "BTC": 2_000.0},
            {"AAPL": "Equity", "TLT": "Bond", "BTC": "Crypto"},
            {"Equity": -0.2, "Bond": 0.05},
        )

        assert result.asset_impact == pytest.approx({"AAPL": -2000.0, "TLT": 250.0, "BTC": 0.0})
        assert result.delta_nav == pytest.approx(-1750.0)
        assert result.name == "Custom"

    def test_unmapped_symbol_skipped(self):
        result = apply_custom_stress({"AAPL": 10_000.0, "XYZ": 1_000.0}, {"AAPL": "Equity"}, {"Equity": -0.1})

        assert set(result.asset_impact) == {"AAPL"}

    def test_presets_cover_every_asset_class(self):
        for shocks in PRESET_SCENARIOS.values():
            assert set(shocks) == {"Equity", "Bond", "FX", "Commodities", "Crypto"}
