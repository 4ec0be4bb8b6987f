"""
Unit tests for market_data.py and positions.py

yfinance is never called: the source chain is monkeypatched and the local
price table lives in an in-memory SQLite database.
"""
import threading
from datetime import date, timedelta

import pandas as pd
import pytest

from risk_analyzer.domain import PricePoint
from risk_analyzer.errors import NotFound, UpstreamUnavailable
from risk_analyzer.models import Asset, Portfolio, Position, Price
from risk_analyzer.services import market_data, positions


@pytest.fixture(autouse=True)
def empty_cache():
    market_data.clear_cache()
    yield
    market_data.clear_cache()


def _points(n, start=date(2024, 1, 1)):
    return [PricePoint(start + timedelta(days=i), 100.0 + i) for i in range(n)]


@pytest.fixture
def seeded_db(session_factory, monkeypatch):
    """Two assets with prices and one portfolio holding both."""
    db = session_factory()
    aapl = Asset(symbol="AAPL", name="Apple", asset_class="Equity")
    tlt = Asset(symbol="TLT", name="Treasuries", asset_class="Bond")
    db.add_all([aapl, tlt])
    db.flush()
    for i in range(30):
        db.add(Price(asset_id=aapl.id, date=date(2024, 1, 1) + timedelta(days=i), close=100.0 + i))
    portfolio = Portfolio(name="Core")
    portfolio.positions = [
        Position(asset_id=aapl.id, quantity=10, avg_price=150.0),
        Position(asset_id=tlt.id, quantity=20, avg_price=90.0),
    ]
    db.add(portfolio)
    db.commit()
    portfolio_id = portfolio.id
    db.close()

    monkeypatch.setattr(market_data, "SessionLocal", session_factory)
    monkeypatch.setattr(positions, "SessionLocal", session_factory)
    return portfolio_id


class TestSymbols:

    @pytest.mark.parametrize("symbol, expected", [
        ("BTC", "BTC-USD"),
        ("eth", "ETH-USD"),
        ("AAPL", "AAPL"),
    ])
    def test_yahoo_symbol(self, symbol, expected):
        assert market_data._yahoo_symbol(symbol) == expected


class TestToPoints:

    def test_drops_nans_and_sorts(self):
        index = pd.to_datetime(["2024-01-03", "2024-01-01", "2024-01-02"])
        closes = pd.Series([103.0, 101.0, float("nan")], index=index)

        points = market_data._to_points(closes)

        assert points == [PricePoint(date(2024, 1, 1), 101.0), PricePoint(date(2024, 1, 3), 103.0)]


class TestDatabaseSource:

    def test_most_recent_closes_oldest_first(self, seeded_db):
        points = market_data._from_database("aapl", 5)

        assert [p.close for p in points] == [125.0, 126.0, 127.0, 128.0, 129.0]
        assert points[0].date < points[-1].date

    def test_unknown_symbol_is_empty(self, seeded_db):
        assert market_data._from_database("MSFT", 5) == []


class TestHistoricalPrices:

    def test_falls_through_to_next_source(self, monkeypatch):
        def broken(symbol, days):
            raise ConnectionError("offline")

        monkeypatch.setattr(market_data, "_SOURCES", (
            ("database", lambda symbol, days: []),
            ("broken", broken),
            ("fallback", lambda symbol, days: _points(days)),
        ))

        assert len(market_data.get_historical_prices("AAPL", 10)) == 10

    def test_all_sources_exhausted(self, monkeypatch):
        monkeypatch.setattr(market_data, "_SOURCES", (("database", lambda symbol, days: []),))

        with pytest.raises(UpstreamUnavailable, match="AAPL"):
            market_data.get_historical_prices("AAPL", 10)

    def test_results_are_cached(self, monkeypatch):
        calls = []

        def source(symbol, days):
            calls.append(symbol)
            return _points(days)

        monkeypatch.setattr(market_data, "_SOURCES", (("fake", source),))

        market_data.get_historical_prices("AAPL", 10)
        market_data.get_historical_prices("aapl", 10)
        market_data.get_historical_prices("AAPL", 20)

        assert calls == ["AAPL", "AAPL"]


class TestFetchPriceHistory:

    @staticmethod
    def source(symbol, days):
        if symbol == "BAD":
            raise UpstreamUnavailable(f"Failed to fetch prices for {symbol}")
        return _points(days)

    def test_keeps_requested_order(self):
        history = market_data.fetch_price_history(["MSFT", "AAPL", "TLT"], 5, source=self.source)

        assert list(history) == ["MSFT", "AAPL", "TLT"]
        assert all(len(v) == 5 for v in history.values())

    def test_missing_symbol_propagates(self):
        with pytest.raises(UpstreamUnavailable):
            market_data.fetch_price_history(["AAPL", "BAD"], 5, source=self.source)

    def test_missing_symbol_skipped(self):
        history = market_data.fetch_price_history(["AAPL", "BAD"], 5, skip_missing=True, source=self.source)

        assert list(history) == ["AAPL"]

    @pytest.fixture
    def slow_source(self, monkeypatch):
        monkeypatch.setattr(market_data.settings, "per_symbol_timeout_seconds", 0.05)
        release = threading.Event()

        def source(symbol, days):
            if symbol == "SLOW":
                release.wait(2)
            return _points(days)

        yield source
        release.set()

    def test_slow_symbol_counts_as_unavailable(self, slow_source):
        with pytest.raises(UpstreamUnavailable, match="SLOW"):
            market_data.fetch_price_history(["AAPL", "SLOW"], 5, source=slow_source)

    def test_slow_symbol_skipped(self, slow_source):
        history = market_data.fetch_price_history(["AAPL", "SLOW"], 5, skip_missing=True, source=slow_source)

        assert list(history) == ["AAPL"]

    def test_no_symbols(self):
        with pytest.raises(ValueError):
            market_data.fetch_price_history([], 5, source=self.source)


class TestPortfolioLookup:

    def test_loads_positions(self, seeded_db):
        result = positions.get_portfolio_with_positions(seeded_db)

        by_symbol = {p.symbol: p for p in result.positions}
        assert set(by_symbol) == {"AAPL", "TLT"}
        assert result.total_value == pytest.approx(1500.0 + 1800.0)
        assert by_symbol["TLT"].asset_class == "Bond"
        assert result.portfolio_id == seeded_db

    def test_unknown_portfolio(self, seeded_db):
        with pytest.raises(NotFound):
            positions.get_portfolio_with_positions(12345)
