"""
Plausibility clamp applied to VaR / CVaR after the statistical estimate.

The estimators themselves stay pure; every override threshold lives here so
it can be tested on its own.

VaR (currency):
  amount > 10% of total value and max |return| < 1.0  ->  3% of total value
  amount > 10% of total value and max |return| >= 1.0 ->  InvalidInput
  reported as |amount|

CVaR (return units):
  CVaR <= VaR                    ->  VaR * 1.20
  |CVaR - VaR| < 1% of VaR       ->  VaR * 1.20
  empty tail                     ->  VaR * 1.15

CVaR (currency):
  amount > 15% of total value    ->  VaR amount * 1.15
  reported as |amount|
  amount < VaR amount            ->  VaR amount * 1.10
  final cap                      ->  15% of total value
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from risk_analyzer.errors import InvalidInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlausibilityClamp:
    var_cap_pct: float = 0.10
    var_fallback_pct: float = 0.03
    max_sane_abs_return: float = 1.0
    cvar_cap_pct: float = 0.15
    cvar_inconsistent_ratio: float = 1.20
    cvar_min_gap_pct: float = 0.01
    cvar_empty_tail_ratio: float = 1.15
    cvar_over_cap_ratio: float = 1.15
    cvar_floor_ratio: float = 1.10

    def clamp_var_amount(self, var_amount: float, total_value: float, returns) -> float:
        if var_amount > total_value * self.var_cap_pct:
            arr = np.asarray(returns, dtype=float)
            max_abs = float(np.max(np.abs(arr))) if arr.size else 0.0
            if max_abs < self.max_sane_abs_return:
                logger.warning(
                    "VaR %.2f exceeds %.0f%% of portfolio value %.2f; falling back to %.0f%%",
                    var_amount, self.var_cap_pct * 100, total_value, self.var_fallback_pct * 100,
                )
                var_amount = total_value * self.var_fallback_pct
            else:
                raise InvalidInput(
                    f"VaR calculation error: returns seem invalid "
                    f"(max |return|: {max_abs:.4f}, VaR: {var_amount:.2f})"
                )
        return abs(var_amount)

    def empty_tail_cvar(self, var: float) -> float:
        return var * self.cvar_empty_tail_ratio

    def reconcile_cvar(self, cvar: float, var: float) -> float:
        """Return-unit CVaR after the consistency rules; each rule may override the previous one."""
        if cvar <= var:
            cvar = var * self.cvar_inconsistent_ratio
        if abs(cvar - var) < var * self.cvar_min_gap_pct:
            cvar = var * self.cvar_inconsistent_ratio
        return cvar

    def clamp_cvar_amount(self, cvar_amount: float, var_amount: float, total_value: float) -> float:
        cap = total_value * self.cvar_cap_pct
        if cvar_amount > cap:
            cvar_amount = var_amount * self.cvar_over_cap_ratio
        cvar_amount = abs(cvar_amount)
        if cvar_amount < var_amount:
            cvar_amount = var_amount * self.cvar_floor_ratio
        return min(cvar_amount, cap)


DEFAULT_CLAMP = PlausibilityClamp()
