"""Plain value types passed between the collaborators, the engines and the service layer."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum

from risk_analyzer.errors import InvalidParameter, ZeroValuePortfolio


class RiskMethod(str, Enum):
    HISTORICAL = "historical"
    PARAMETRIC_NORMAL = "parametric_normal"
    MONTE_CARLO = "monte_carlo"


@dataclass(frozen=True)
class PricePoint:
    date: date
    close: float


@dataclass(frozen=True)
class Position:
    symbol: str
    quantity: float
    avg_price: float
    asset_class: str | None = None

    @property
    def market_value(self) -> float:
        # Cost basis, not mark-to-market.
        return self.quantity * self.avg_price


@dataclass(frozen=True)
class PositionSet:
    portfolio_id: int | str
    positions: tuple[Position, ...] = field(default_factory=tuple)

    @property
    def symbols(self) -> list[str]:
        return [p.symbol for p in self.positions]

    @property
    def total_value(self) -> float:
        return sum(p.market_value for p in self.positions)

    def weights(self) -> list[float]:
        total = self.total_value
        if total == 0:
            raise ZeroValuePortfolio(f"Portfolio {self.portfolio_id} has zero total value")
        return [p.market_value / total for p in self.positions]

    def subset(self, symbols: list[str]) -> PositionSet:
        keep = set(symbols)
        return PositionSet(self.portfolio_id, tuple(p for p in self.positions if p.symbol in keep))


@dataclass(frozen=True)
class RiskRequest:
    method: RiskMethod = RiskMethod.HISTORICAL
    confidence: float = 0.99
    horizon_days: int = 1
    window_days: int = 250
    simulations: int = 10_000
    use_log_returns: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", RiskMethod(self.method))
        validate_confidence(self.confidence)
        validate_horizon(self.horizon_days)
        if self.window_days < 2:
            raise InvalidParameter(f"window_days must be >= 2, got {self.window_days}")
        if self.simulations < 1:
            raise InvalidParameter(f"simulations must be >= 1, got {self.simulations}")


def validate_confidence(confidence: float) -> None:
    if not 0.0 < confidence < 1.0:
        raise InvalidParameter(f"Confidence must be in (0, 1), got {confidence}")


def validate_horizon(horizon_days: int) -> None:
    if horizon_days < 1:
        raise InvalidParameter(f"Horizon must be >= 1 day, got {horizon_days}")
