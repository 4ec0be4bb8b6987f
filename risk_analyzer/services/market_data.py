import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError, as_completed
from datetime import datetime, timedelta
from time import monotonic

import pandas as pd
import yfinance as yf

from risk_analyzer.config import settings
from risk_analyzer.db import SessionLocal
from risk_analyzer.domain import PricePoint
from risk_analyzer.errors import UpstreamUnavailable
from risk_analyzer.models import Asset, Price

logger = logging.getLogger(__name__)

# In-process TTL cache for back-to-back calls
_CACHE: dict[tuple, tuple] = {}   # key -> (timestamp, list[PricePoint])

CRYPTO_SYMBOLS = {"BTC", "ETH", "BNB", "XRP", "ADA", "SOL", "DOGE", "DOT"}


def _yahoo_symbol(symbol: str) -> str:
    symbol = symbol.upper()
    return f"{symbol}-USD" if symbol in CRYPTO_SYMBOLS else symbol


def _to_points(closes: pd.Series) -> list[PricePoint]:
    """Strictly increasing, de-duplicated (date, close) points."""
    closes = closes.dropna()
    points: dict = {}
    for ts, close in closes.items():
        day = ts.date() if hasattr(ts, "date") else ts
        points[day] = float(close)
    return [PricePoint(date=d, close=c) for d, c in sorted(points.items())]


def _from_database(symbol: str, days: int) -> list[PricePoint]:
    """Most recent *days* closes stored locally, oldest first."""
    db = SessionLocal()
    try:
        rows = (
            db.query(Price)
            .join(Asset, Asset.id == Price.asset_id)
            .filter(Asset.symbol == symbol.upper())
            .order_by(Price.date.desc())
            .limit(days)
            .all()
        )
        points = [PricePoint(date=row.date, close=float(row.close)) for row in rows]
    finally:
        db.close()
    return sorted(points, key=lambda p: p.date)


def _from_yfinance(symbol: str, days: int) -> list[PricePoint]:
    end = datetime.utcnow().date() + timedelta(days=1)
    # Trading days -> calendar days, with a buffer for weekends and holidays
    start = end - timedelta(days=int(days * 1.5) + 10)
    data = yf.Ticker(_yahoo_symbol(symbol)).history(
        start=start.isoformat(), end=end.isoformat(), auto_adjust=True
    )
    if data.empty or "Close" not in data.columns:
        return []
    return _to_points(data["Close"])[-days:]


_SOURCES = (("database", _from_database), ("yfinance", _from_yfinance))


def get_historical_prices(symbol: str, days: int) -> list[PricePoint]:
    """
    Daily closes for *symbol*, local table first, then yfinance.

    Raises UpstreamUnavailable when every source comes back empty or errors.
    """
    cache_key = (symbol.upper(), days)
    cached = _CACHE.get(cache_key)
    if cached and (monotonic() - cached[0]) < settings.price_cache_ttl_seconds:
        return list(cached[1])

    for name, source in _SOURCES:
        try:
            prices = source(symbol, days)
        except Exception as exc:
            logger.warning("%s price lookup failed for %s: %s", name, symbol, exc)
            continue
        if prices:
            _CACHE[cache_key] = (monotonic(), list(prices))
            return prices
        logger.info("No %s prices for %s", name, symbol)

    raise UpstreamUnavailable(f"Failed to fetch prices for {symbol}: all sources exhausted")


def _missing(symbol: str, error: UpstreamUnavailable, skip_missing: bool) -> None:
    if not skip_missing:
        raise error
    logger.warning("No price data for %s, excluding it: %s", symbol, error)


def fetch_price_history(
    symbols: list[str],
    days: int,
    skip_missing: bool = False,
    source=get_historical_prices,
) -> dict[str, list[PricePoint]]:
    """
    Fetch several symbols in parallel threads.

    A symbol whose sources are exhausted, or that has not answered before
    the deadline, counts as UpstreamUnavailable. With *skip_missing* it is
    logged and left out; otherwise the error propagates.
    """
    if not symbols:
        raise ValueError("At least one symbol is required")

    history: dict[str, list[PricePoint]] = {}
    collected: set[str] = set()

    def collect(future, symbol):
        collected.add(symbol)
        try:
            history[symbol] = future.result()
        except UpstreamUnavailable as exc:
            _missing(symbol, exc, skip_missing)

    pool = ThreadPoolExecutor(max_workers=min(len(symbols), 12))
    futures = {pool.submit(source, s, days): s for s in symbols}
    try:
        for future in as_completed(futures, timeout=settings.per_symbol_timeout_seconds * 2):
            collect(future, futures[future])
    except TimeoutError:
        # Collect whatever completed before the deadline
        for future, symbol in futures.items():
            if symbol in collected:
                continue
            if future.done():
                collect(future, symbol)
            else:
                _missing(symbol, UpstreamUnavailable(f"Timed out fetching prices for {symbol}"), skip_missing)
        logger.warning("Timed out waiting for some symbols; proceeding with %d/%d", len(history), len(symbols))
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
    return {s: history[s] for s in symbols if s in history}


def clear_cache() -> None:
    _CACHE.clear()
