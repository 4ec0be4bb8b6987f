"""
Unit tests for plausibility.py

Each clamp rule is exercised on its own so threshold changes show up here.
"""
import pytest

from risk_analyzer.errors import InvalidInput
from risk_analyzer.services.plausibility import DEFAULT_CLAMP, PlausibilityClamp


class TestVaRClamp:

    def test_amount_under_cap_is_unchanged(self):
        assert DEFAULT_CLAMP.clamp_var_amount(5000.0, 100_000.0, [0.01, -0.02]) == 5000.0

    def test_excessive_amount_falls_back_to_three_percent(self):
        assert DEFAULT_CLAMP.clamp_var_amount(15_000.0, 100_000.0, [0.05, -0.08]) == pytest.approx(3000.0)

    def test_excessive_amount_with_absurd_returns_is_rejected(self):
        with pytest.raises(InvalidInput, match="returns seem invalid"):
            DEFAULT_CLAMP.clamp_var_amount(15_000.0, 100_000.0, [0.05, -1.5])

    def test_negative_amount_reported_as_magnitude(self):
        assert DEFAULT_CLAMP.clamp_var_amount(-200.0, 100_000.0, [0.01]) == 200.0

    def test_thresholds_are_configurable(self):
        clamp = PlausibilityClamp(var_cap_pct=0.5)

        assert clamp.clamp_var_amount(15_000.0, 100_000.0, [0.05]) == 15_000.0


class TestReconcileCVaR:

    def test_cvar_below_var(self):
        assert DEFAULT_CLAMP.reconcile_cvar(0.01, 0.02) == pytest.approx(0.024)

    def test_cvar_equal_to_var(self):
        assert DEFAULT_CLAMP.reconcile_cvar(0.02, 0.02) == pytest.approx(0.024)

    def test_cvar_too_close_to_var(self):
        assert DEFAULT_CLAMP.reconcile_cvar(0.02015, 0.02) == pytest.approx(0.024)

    def test_consistent_cvar_untouched(self):
        assert DEFAULT_CLAMP.reconcile_cvar(0.03, 0.02) == 0.03

    def test_empty_tail_ratio(self):
        assert DEFAULT_CLAMP.empty_tail_cvar(0.02) == pytest.approx(0.023)


class TestCVaRAmountClamp:

    def test_over_cap_uses_var_ratio(self):
        assert DEFAULT_CLAMP.clamp_cvar_amount(20_000.0, 5000.0, 100_000.0) == pytest.approx(5750.0)

    def test_below_var_is_floored(self):
        assert DEFAULT_CLAMP.clamp_cvar_amount(4000.0, 5000.0, 100_000.0) == pytest.approx(5500.0)

    def test_final_cap(self):
        # 14k VaR: over-cap rule gives 16.1k, which the 15% cap brings back to 15k
        assert DEFAULT_CLAMP.clamp_cvar_amount(20_000.0, 14_000.0, 100_000.0) == pytest.approx(15_000.0)

    def test_plausible_amount_untouched(self):
        assert DEFAULT_CLAMP.clamp_cvar_amount(7000.0, 5000.0, 100_000.0) == 7000.0

    def test_never_below_var_when_under_cap(self):
        for cvar_amount in (-9000.0, 0.0, 1000.0, 4999.0):
            assert DEFAULT_CLAMP.clamp_cvar_amount(cvar_amount, 5000.0, 100_000.0) >= 5000.0
