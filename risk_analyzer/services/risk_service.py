"""
Risk service: loads positions and price history through the collaborators,
converts prices to returns and runs the requested engine.

Every public method returns a JSON-serialisable dict so it can be stored
as a job result unchanged. An optional *progress* callback receives
percentages (0-100) as the calculation advances.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date

import numpy as np

from risk_analyzer.config import settings
from risk_analyzer.domain import PositionSet, PricePoint, RiskMethod, RiskRequest, validate_confidence
from risk_analyzer.errors import InsufficientData, InvalidParameter, NotFound, RiskError
from risk_analyzer.services.backtest import backtest_var, rolling_var_estimates
from risk_analyzer.services.correlation import compute_correlation, compute_pca
from risk_analyzer.services.cvar import expected_shortfall, historical_cvar, parametric_cvar
from risk_analyzer.services.market_data import fetch_price_history, get_historical_prices
from risk_analyzer.services.plausibility import DEFAULT_CLAMP, PlausibilityClamp
from risk_analyzer.services.positions import get_portfolio_with_positions
from risk_analyzer.services.returns import (
    align_returns,
    annualized_volatility,
    compute_returns,
    portfolio_returns,
)
from risk_analyzer.services.risk import component_var
from risk_analyzer.services.statistics import covariance_matrix
from risk_analyzer.services.stress import (
    PRESET_SCENARIOS,
    ScenarioSpec,
    apply_custom_stress,
    apply_historical_stress,
)
from risk_analyzer.services.var import historical_var, monte_carlo_var, parametric_var

logger = logging.getLogger(__name__)

PriceSource = Callable[[str, int], list[PricePoint]]
PortfolioSource = Callable[[int], PositionSet]
Progress = Callable[[float], object] | None

MIN_WINDOW_DAYS = 10


def _report(progress: Progress, pct: float) -> None:
    if progress is not None:
        progress(pct)


class RiskService:
    def __init__(
        self,
        price_source: PriceSource = get_historical_prices,
        portfolio_source: PortfolioSource = get_portfolio_with_positions,
        clamp: PlausibilityClamp = DEFAULT_CLAMP,
        seed: int | None = None,
    ):
        self.price_source = price_source
        self.portfolio_source = portfolio_source
        self.clamp = clamp
        self.seed = seed if seed is not None else settings.monte_carlo_seed

    # ------------------------------------------------------------------
    # Data loading
    # ------------------------------------------------------------------

    def _positions(self, portfolio_id) -> PositionSet:
        positions = self.portfolio_source(portfolio_id)
        if not positions.positions:
            raise InsufficientData(f"Portfolio {portfolio_id} has no positions")
        return positions

    def _asset_returns(
        self,
        symbols: list[str],
        window_days: int,
        use_log: bool = True,
        skip_missing: bool = False,
    ) -> tuple[list[str], list[np.ndarray]]:
        history = fetch_price_history(
            list(dict.fromkeys(symbols)), window_days + 1,
            skip_missing=skip_missing, source=self.price_source,
        )
        kept, series = [], []
        for symbol, prices in history.items():
            returns = compute_returns(prices, use_log)
            if len(returns) == 0:
                if not skip_missing:
                    raise InsufficientData(f"No returns calculated for {symbol}")
                logger.warning("No returns calculated for %s, skipping", symbol)
                continue
            kept.append(symbol)
            series.append(returns)
        if not series:
            raise InsufficientData("No valid asset data available")
        return kept, align_returns(series)

    def _requested_series(self, symbols: list[str], window_days: int) -> list[np.ndarray]:
        """One aligned return series per requested symbol, repeats included."""
        kept, series = self._asset_returns(symbols, window_days)
        by_symbol = dict(zip(kept, series))
        return [by_symbol[s] for s in symbols]

    def _portfolio_inputs(
        self,
        portfolio_id,
        window_days: int,
        use_log: bool = True,
        skip_missing: bool = False,
    ) -> tuple[PositionSet, np.ndarray, list[np.ndarray], np.ndarray]:
        """Positions with usable history, their cost-basis weights, asset returns and portfolio returns."""
        positions = self._positions(portfolio_id)
        kept, series = self._asset_returns(positions.symbols, window_days, use_log, skip_missing)
        positions = positions.subset(kept)

        by_symbol = dict(zip(kept, series))
        weights = np.array(positions.weights(), dtype=float)
        asset_returns = [by_symbol[p.symbol] for p in positions.positions]
        port = portfolio_returns(asset_returns, weights)
        if len(port) == 0:
            raise InsufficientData("No portfolio returns calculated")
        return positions, weights, asset_returns, port

    def _var_result(self, request: RiskRequest, weights, asset_returns, port, progress: Progress = None):
        if request.method is RiskMethod.HISTORICAL:
            return historical_var(port, request.confidence, request.horizon_days)
        if request.method is RiskMethod.PARAMETRIC_NORMAL:
            return parametric_var(port, request.confidence, request.horizon_days)
        simulations = min(request.simulations, settings.max_simulations)
        return monte_carlo_var(
            asset_returns, weights, request.confidence, request.horizon_days,
            simulations=simulations, seed=self.seed,
            progress=(lambda f: _report(progress, 30 + 60 * f)) if progress else None,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def compute_var(self, portfolio_id, request: RiskRequest, progress: Progress = None) -> dict:
        _check_window(request.window_days)
        _report(progress, 10)
        positions, weights, asset_returns, port = self._portfolio_inputs(
            portfolio_id, request.window_days, request.use_log_returns
        )
        _report(progress, 30)

        result = self._var_result(request, weights, asset_returns, port, progress)
        total = positions.total_value
        var_amount = self.clamp.clamp_var_amount(result.var * total, total, port)
        _report(progress, 95)

        return {
            "method": result.method,
            "confidence": request.confidence,
            "horizon_days": request.horizon_days,
            "window_days": request.window_days,
            "observations": int(len(port)),
            "portfolio_value": total,
            "var_return": result.var,
            "var": var_amount,
        }

    def compute_cvar(self, portfolio_id, request: RiskRequest, progress: Progress = None) -> dict:
        _check_window(request.window_days)
        _report(progress, 10)
        positions, weights, asset_returns, port = self._portfolio_inputs(
            portfolio_id, request.window_days, request.use_log_returns, skip_missing=True
        )
        _report(progress, 30)

        if request.method is RiskMethod.PARAMETRIC_NORMAL:
            result = parametric_cvar(port, request.confidence, request.horizon_days)
        elif request.method is RiskMethod.MONTE_CARLO:
            result = expected_shortfall(
                self._var_result(request, weights, asset_returns, port, progress), self.clamp
            )
        else:
            result = historical_cvar(port, request.confidence, request.horizon_days, self.clamp)

        total = positions.total_value
        var_amount = self.clamp.clamp_var_amount(result.var * total, total, port)
        cvar_amount = self.clamp.clamp_cvar_amount(result.cvar * total, var_amount, total)
        _report(progress, 95)

        return {
            "method": result.method,
            "confidence": request.confidence,
            "horizon_days": request.horizon_days,
            "window_days": request.window_days,
            "observations": int(len(port)),
            "portfolio_value": total,
            "var_return": result.var,
            "cvar_return": result.cvar,
            "var": var_amount,
            "cvar": cvar_amount,
        }

    def compute_correlation(self, symbols: list[str], window_days: int, progress: Progress = None) -> dict:
        _check_window(window_days)
        if not symbols:
            raise InvalidParameter("At least one symbol is required")
        _report(progress, 10)
        series = self._requested_series(symbols, window_days)
        _report(progress, 60)
        result = compute_correlation(series, symbols)
        return {
            "symbols": result.symbols,
            "matrix": result.matrix.tolist(),
            "window_days": window_days,
            "observations": int(len(series[0])),
        }

    def compute_pca(
        self,
        symbols: list[str],
        components: int,
        window_days: int,
        progress: Progress = None,
    ) -> dict:
        _check_window(window_days)
        if not symbols:
            raise InvalidParameter("At least one symbol is required")
        _report(progress, 10)
        series = self._requested_series(symbols, window_days)
        _report(progress, 60)
        result = compute_pca(series, components)
        return {
            "symbols": list(symbols),
            "num_components": result.num_components,
            "eigenvalues": result.eigenvalues,
            "explained_variance": result.explained_variance,
            "cumulative_variance": result.cumulative_variance,
            "components": result.components.tolist(),
        }

    def compute_stress_test(
        self,
        portfolio_id,
        scenarios: list[ScenarioSpec],
        progress: Progress = None,
    ) -> dict:
        if not scenarios:
            raise InvalidParameter("At least one scenario is required")
        positions = self._positions(portfolio_id)

        market_values: dict[str, float] = {}
        asset_classes: dict[str, str] = {}
        for p in positions.positions:
            market_values[p.symbol] = market_values.get(p.symbol, 0.0) + p.market_value
            if p.asset_class:
                asset_classes[p.symbol] = p.asset_class

        results = []
        for i, spec in enumerate(scenarios):
            if spec.type == "historical":
                result = self._historical_scenario(spec, market_values)
            elif spec.type == "custom":
                result = apply_custom_stress(market_values, asset_classes, spec.shocks, spec.name)
            elif spec.type == "preset":
                if spec.name not in PRESET_SCENARIOS:
                    raise NotFound(f"Unknown preset scenario {spec.name!r}")
                result = apply_custom_stress(
                    market_values, asset_classes, PRESET_SCENARIOS[spec.name], spec.name
                )
            else:
                raise InvalidParameter(f"Unknown scenario type {spec.type!r}")

            results.append({
                "name": result.name,
                "type": spec.type,
                "delta_nav": result.delta_nav,
                "delta_var": result.delta_var,
                "asset_impact": [
                    {"symbol": s, "impact": v} for s, v in result.asset_impact.items()
                ],
            })
            _report(progress, 100 * (i + 1) / (len(scenarios) + 1))

        return {"portfolio_value": positions.total_value, "scenarios": results}

    def _historical_scenario(self, spec: ScenarioSpec, market_values: dict[str, float]):
        if spec.start_date is None or spec.end_date is None:
            raise InvalidParameter(f"Historical scenario {spec.name!r} needs a start and end date")
        if spec.end_date < spec.start_date:
            raise InvalidParameter(f"Historical scenario {spec.name!r} ends before it starts")
        # Trading days from the window start up to today, plus a small buffer
        days = max(int(np.busday_count(spec.start_date, date.today())), 0) + 10
        history = fetch_price_history(
            list(market_values), days, skip_missing=True, source=self.price_source
        )
        return apply_historical_stress(
            market_values, history, spec.start_date, spec.end_date, spec.name
        )

    def compute_backtest(
        self,
        portfolio_id,
        confidence: float,
        window_days: int,
        method: RiskMethod | str = RiskMethod.HISTORICAL,
        test_days: int | None = None,
        progress: Progress = None,
    ) -> dict:
        """
        Rolling one-day VaR backtest.

        VaR for each of the last *test_days* returns (default: *window_days*)
        is estimated from the preceding *window_days* returns.
        """
        validate_confidence(confidence)
        _check_window(window_days)
        method = RiskMethod(method)
        test_days = test_days or window_days
        _report(progress, 10)

        _, _, _, port = self._portfolio_inputs(portfolio_id, window_days + test_days)
        _report(progress, 40)
        realised, estimates = rolling_var_estimates(port, window_days, confidence, method)
        _report(progress, 80)
        result = backtest_var(realised, estimates, confidence)

        return {
            "method": method.value,
            "confidence": confidence,
            "window_days": window_days,
            "periods": result.periods,
            "exceedances": result.exceedances,
            "expected_exceedances": result.expected_exceedances,
            "kupiec_lr": result.kupiec_lr,
            "kupiec_p_value": result.kupiec_p_value,
            "christoffersen_lr": result.christoffersen_lr,
            "christoffersen_p_value": result.christoffersen_p_value,
        }

    def compute_risk_contribution(
        self,
        portfolio_id,
        confidence: float,
        window_days: int,
        progress: Progress = None,
    ) -> dict:
        validate_confidence(confidence)
        _check_window(window_days)
        _report(progress, 10)
        positions, weights, asset_returns, _ = self._portfolio_inputs(
            portfolio_id, window_days, skip_missing=True
        )
        _report(progress, 50)
        cov = covariance_matrix(asset_returns)
        contributions = component_var(
            positions.symbols, weights, cov, confidence, positions.total_value
        )
        return {
            "confidence": confidence,
            "portfolio_value": positions.total_value,
            "contributions": [
                {
                    "symbol": c.symbol,
                    "component_var": c.component_var,
                    "marginal_var": c.marginal_var,
                    "percentage": c.percentage,
                }
                for c in contributions
            ],
        }

    def portfolio_volatility(self, portfolio_id, window_days: int) -> float:
        """Annualised volatility of the cost-basis weighted portfolio."""
        _check_window(window_days)
        _, _, _, port = self._portfolio_inputs(portfolio_id, window_days, skip_missing=True)
        return annualized_volatility(port, settings.annualization)

    def compute_dashboard(self, portfolio_id) -> dict:
        """
        Headline numbers for one portfolio.

        1-day 99% VaR and CVaR over a 250-day window report 0 when they
        cannot be computed. Volatility retries on a 30-day window and then
        falls back to settings.fallback_volatility. Contributors are
        cost-basis weights.
        """
        positions = self.portfolio_source(portfolio_id)
        request = RiskRequest(
            confidence=0.99, horizon_days=1, window_days=settings.default_window_days
        )

        var_1d = self._metric_or_zero("VaR", lambda: self.compute_var(portfolio_id, request)["var"])
        cvar_1d = self._metric_or_zero("CVaR", lambda: self.compute_cvar(portfolio_id, request)["cvar"])

        try:
            vol = self.portfolio_volatility(portfolio_id, settings.default_window_days)
        except RiskError as exc:
            logger.warning("Volatility for portfolio %s failed, retrying on 30 days: %s", portfolio_id, exc)
            vol = self._metric_or_zero("volatility", lambda: self.portfolio_volatility(portfolio_id, 30))
            if vol == 0:
                vol = settings.fallback_volatility

        total = positions.total_value
        return {
            "var_1d": var_1d,
            "cvar_1d": cvar_1d,
            "vol": vol,
            "contributors": [
                {"symbol": p.symbol, "contribution": p.market_value / total if total else 0.0}
                for p in positions.positions
            ],
        }

    @staticmethod
    def _metric_or_zero(name: str, compute: Callable[[], float]) -> float:
        try:
            return compute()
        except RiskError as exc:
            logger.warning("Dashboard %s unavailable: %s", name, exc)
            return 0.0


def _check_window(window_days: int) -> None:
    if window_days < MIN_WINDOW_DAYS:
        raise InvalidParameter(f"window_days must be >= {MIN_WINDOW_DAYS}, got {window_days}")
