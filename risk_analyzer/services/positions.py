"""Portfolio lookup: loads a portfolio's positions into a PositionSet."""
from __future__ import annotations

from sqlalchemy.orm import joinedload

from risk_analyzer.db import SessionLocal
from risk_analyzer.domain import Position, PositionSet
from risk_analyzer.errors import NotFound
from risk_analyzer.models import Portfolio, Position as PositionRow


def get_portfolio_with_positions(portfolio_id: int) -> PositionSet:
    """
    Uses a fresh DB session (safe to call from a job worker thread).
    """
    db = SessionLocal()
    try:
        portfolio = (
            db.query(Portfolio)
            .options(joinedload(Portfolio.positions).joinedload(PositionRow.asset))
            .filter(Portfolio.id == portfolio_id)
            .first()
        )
        if portfolio is None:
            raise NotFound(f"Portfolio {portfolio_id} not found")
        positions = tuple(
            Position(
                symbol=row.asset.symbol,
                quantity=row.quantity,
                avg_price=row.avg_price,
                asset_class=row.asset.asset_class,
            )
            for row in portfolio.positions
        )
    finally:
        db.close()
    return PositionSet(portfolio_id=portfolio_id, positions=positions)
