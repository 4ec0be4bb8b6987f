"""
Shared fixtures for the risk analyzer test suite.

Provides:
- Sample return series and correlated return matrices
- Synthetic price histories and fake price / portfolio collaborators
- An in-memory SQLite session factory
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import date, timedelta

import numpy as np
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import risk_analyzer.models  # noqa: F401  (registers tables on Base)
from risk_analyzer.db import Base
from risk_analyzer.domain import Position, PositionSet, PricePoint
from risk_analyzer.errors import NotFound, UpstreamUnavailable

SAMPLE_RETURNS = [
    -0.02, 0.01, 0.015, -0.01, 0.005,
    0.02, -0.015, 0.01, -0.025, 0.03,
    -0.01, 0.008, 0.012, -0.018, 0.022,
]


@pytest.fixture
def sample_returns():
    """The 15-day daily return series used for the historical VaR scenario."""
    return list(SAMPLE_RETURNS)


@pytest.fixture
def normal_returns():
    rng = np.random.default_rng(42)
    return rng.normal(0.0005, 0.01, 1000)


@pytest.fixture
def asset_returns():
    """Five correlated daily return series (252 periods each)."""
    rng = np.random.default_rng(42)
    data = rng.normal(0, 0.02, (252, 5))
    data[:, 1] = 0.7 * data[:, 0] + 0.3 * data[:, 1]
    data[:, 2] = 0.5 * data[:, 0] + 0.5 * data[:, 2]
    return [data[:, i].copy() for i in range(5)]


def make_price_history(seed: int, n: int = 600, start_price: float = 100.0, vol: float = 0.01):
    rng = np.random.default_rng(seed)
    closes = start_price * np.exp(np.cumsum(rng.normal(0.0003, vol, n)))
    start = date(2022, 1, 3)
    return [PricePoint(date=start + timedelta(days=i), close=float(c)) for i, c in enumerate(closes)]


@pytest.fixture
def price_history():
    return {
        "AAPL": make_price_history(1, start_price=150.0),
        "MSFT": make_price_history(2, start_price=300.0),
        "TLT": make_price_history(3, start_price=95.0, vol=0.006),
        "BTC": make_price_history(4, start_price=30000.0, vol=0.03),
    }


class FakePriceSource:
    def __init__(self, history: dict[str, list[PricePoint]]):
        self.history = history
        self.calls: list[tuple[str, int]] = []

    def __call__(self, symbol: str, days: int) -> list[PricePoint]:
        self.calls.append((symbol, days))
        if symbol not in self.history:
            raise UpstreamUnavailable(f"Failed to fetch prices for {symbol}")
        return self.history[symbol][-days:]


class FakePortfolioSource:
    def __init__(self, portfolios: dict[int, list[Position]]):
        self.portfolios = portfolios

    def __call__(self, portfolio_id: int) -> PositionSet:
        if portfolio_id not in self.portfolios:
            raise NotFound(f"Portfolio {portfolio_id} not found")
        return PositionSet(portfolio_id, tuple(self.portfolios[portfolio_id]))


@pytest.fixture
def price_source(price_history):
    return FakePriceSource(price_history)


@pytest.fixture
def portfolio_source():
    return FakePortfolioSource({
        1: [
            Position("AAPL", 100, 140.0, "Equity"),
            Position("MSFT", 50, 280.0, "Equity"),
            Position("TLT", 200, 100.0, "Bond"),
        ],
        2: [
            Position("AAPL", 100, 140.0, "Equity"),
            Position("XXX", 10, 50.0, "Equity"),
        ],
        3: [Position("AAPL", 0, 140.0, "Equity")],
        4: [Position("BTC", 1, 10000.0, "Crypto")],
        5: [],
    })


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    yield factory
    engine.dispose()
