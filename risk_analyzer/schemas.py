from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from risk_analyzer.config import settings
from risk_analyzer.domain import RiskMethod, RiskRequest
from risk_analyzer.services.stress import ScenarioSpec


class VaRRequest(BaseModel):
    portfolio_id: int
    confidence: float = Field(default=settings.default_confidence, gt=0, lt=1)
    horizon_days: int = Field(default=settings.default_horizon_days, ge=1)
    method: RiskMethod = RiskMethod.HISTORICAL
    window_days: int = Field(default=settings.default_window_days, ge=10)
    simulations: int = Field(default=settings.default_simulations, ge=1, le=settings.max_simulations)
    use_log_returns: bool = True

    def to_risk_request(self) -> RiskRequest:
        return RiskRequest(
            method=self.method,
            confidence=self.confidence,
            horizon_days=self.horizon_days,
            window_days=self.window_days,
            simulations=self.simulations,
            use_log_returns=self.use_log_returns,
        )


class CVaRRequest(VaRRequest):
    pass


class CorrelationRequest(BaseModel):
    symbols: list[str] = Field(min_length=1)
    window_days: int = Field(default=settings.default_window_days, ge=10)


class PCARequest(BaseModel):
    symbols: list[str] = Field(min_length=1)
    components: int = Field(default=3, ge=1)
    window_days: int = Field(default=settings.default_window_days, ge=10)


class TimeWindow(BaseModel):
    start: date = Field(alias="from")
    end: date = Field(alias="to")

    model_config = {"populate_by_name": True}


class StressScenario(BaseModel):
    name: str
    type: Literal["historical", "custom", "preset"]
    window: TimeWindow | None = None
    shocks: dict[str, float] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_kind(self):
        if self.type == "historical" and self.window is None:
            raise ValueError("historical scenarios need a window")
        if self.type == "custom" and not self.shocks:
            raise ValueError("custom scenarios need shocks")
        return self

    def to_spec(self) -> ScenarioSpec:
        return ScenarioSpec(
            name=self.name,
            type=self.type,
            start_date=self.window.start if self.window else None,
            end_date=self.window.end if self.window else None,
            shocks=dict(self.shocks),
        )


class StressTestRequest(BaseModel):
    portfolio_id: int
    scenarios: list[StressScenario] = Field(min_length=1)


class BacktestRequest(BaseModel):
    portfolio_id: int
    confidence: float = Field(default=settings.default_confidence, gt=0, lt=1)
    window_days: int = Field(default=settings.default_window_days, ge=10)
    method: Literal["historical", "parametric_normal"] = "historical"
    test_days: int | None = Field(default=None, ge=10)


class RiskContributionRequest(BaseModel):
    portfolio_id: int
    confidence: float = Field(default=settings.default_confidence, gt=0, lt=1)
    window_days: int = Field(default=settings.default_window_days, ge=10)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

class JobStarted(BaseModel):
    job_id: str
    status: str


class JobOut(BaseModel):
    id: str
    type: str
    status: str
    progress: int
    result: dict | list | None = None
    error: str | None = None
    created_at: datetime
    updated_at: datetime


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
