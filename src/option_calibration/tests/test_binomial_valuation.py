"""Tests for Cox-Ross-Rubinstein binomial tree valuation."""

import datetime as dt

import numpy as np
import pytest

from option_calibration.enums import ExerciseType, OptionType
from option_calibration.exceptions import ArbitrageViolationError, ConfigurationError, PricingError
from option_calibration.payoffs import VanillaOption
from option_calibration.rates import DiscountCurve
from option_calibration.tests.helpers import bs_market, bs_reference_price, expiry_after
from option_calibration.valuation import (
    BlackScholesAnalytic,
    CoxRossRubinstein,
    PricingProblem,
    solve,
)


class TestBinomialValuation:
    """Tests for binomial tree option valuation."""

    def setup_method(self):
        self.reference_date = dt.datetime(2025, 1, 1)
        self.expiry = expiry_after(self.reference_date, 1.0)
        self.strike = 100.0
        self.spot = 100.0
        self.volatility = 0.2
        self.rate = 0.05
        self.market = bs_market(self.reference_date, self.spot, self.rate, self.volatility)

    def _payoff(self, option_type, exercise=ExerciseType.EUROPEAN, strike=None):
        return VanillaOption(
            self.strike if strike is None else strike, self.expiry, option_type, exercise
        )

    def test_binomial_european_call_atm(self):
        """500 steps are within a cent of Black-Scholes (about 10.45)."""
        problem = PricingProblem(self._payoff(OptionType.CALL), self.market)
        pv = solve(problem, CoxRossRubinstein(steps=500)).price
        expected = bs_reference_price(OptionType.CALL, 100.0, 100.0, 0.2, 0.05, 1.0)
        assert np.isclose(pv, 10.45, rtol=0.01)
        assert abs(pv - expected) < 0.01

    def test_binomial_american_call_no_div_equal_to_european(self):
        """Without dividends early exercise of a call is never optimal."""
        method = CoxRossRubinstein(steps=400)
        euro = solve(PricingProblem(self._payoff(OptionType.CALL), self.market), method)
        amer = solve(
            PricingProblem(self._payoff(OptionType.CALL, ExerciseType.AMERICAN), self.market),
            method,
        )
        assert np.isclose(amer.price, euro.price, rtol=1e-10)
        assert amer.early_exercise
        assert not euro.early_exercise

    def test_binomial_american_put_early_exercise(self):
        method = CoxRossRubinstein(steps=400)
        euro = solve(PricingProblem(self._payoff(OptionType.PUT), self.market), method).price
        amer = solve(
            PricingProblem(self._payoff(OptionType.PUT, ExerciseType.AMERICAN), self.market),
            method,
        ).price
        assert amer > euro

    @pytest.mark.parametrize("option_type", [OptionType.CALL, OptionType.PUT])
    @pytest.mark.parametrize("strike", [80.0, 100.0, 120.0])
    @pytest.mark.parametrize("vol", [0.1, 0.4])
    @pytest.mark.parametrize("steps", [50, 250])
    def test_american_at_least_european_and_non_negative(self, option_type, strike, vol, steps):
        market = bs_market(self.reference_date, self.spot, self.rate, vol)
        method = CoxRossRubinstein(steps=steps)
        euro = solve(PricingProblem(self._payoff(option_type, strike=strike), market), method)
        amer = solve(
            PricingProblem(self._payoff(option_type, ExerciseType.AMERICAN, strike), market),
            method,
        )
        assert euro.price >= 0.0
        assert amer.price >= 0.0
        assert amer.price >= euro.price - 1e-12

    def test_deep_itm_american_put_at_least_intrinsic(self):
        payoff = self._payoff(OptionType.PUT, ExerciseType.AMERICAN, strike=150.0)
        pv = solve(PricingProblem(payoff, self.market), CoxRossRubinstein(steps=200)).price
        assert pv >= 50.0 - 1e-12

    def test_american_put_reference_value(self):
        """Longstaff-Schwartz (2001) table 1: S=36, K=40, r=6%, vol=20%, T=1 gives 4.478."""
        market = bs_market(self.reference_date, 36.0, 0.06, 0.2)
        payoff = VanillaOption(40.0, self.expiry, OptionType.PUT, ExerciseType.AMERICAN)
        pv = solve(PricingProblem(payoff, market), CoxRossRubinstein(steps=2000)).price
        assert pv == pytest.approx(4.478, abs=5e-3)

    def test_binomial_convergence(self):
        """Error against the closed form shrinks as the tree is refined."""
        problem = PricingProblem(self._payoff(OptionType.PUT), self.market)
        exact = solve(problem, BlackScholesAnalytic()).price
        errors = [
            abs(solve(problem, CoxRossRubinstein(steps=n)).price - exact) for n in (50, 200, 1000)
        ]
        assert errors[2] < errors[0]
        assert errors[2] < 5e-3

    def test_term_structure_rates(self):
        """A curve with identical zero rates reproduces the flat-rate price."""
        curve = DiscountCurve.from_zero_rates(np.array([0.0, 0.5, 1.0]), np.full(3, self.rate))
        flat = solve(
            PricingProblem(self._payoff(OptionType.CALL), self.market), CoxRossRubinstein(steps=100)
        ).price
        curved = solve(
            PricingProblem(self._payoff(OptionType.CALL), self.market.replace(rate_curve=curve)),
            CoxRossRubinstein(steps=100),
        ).price
        assert np.isclose(flat, curved, rtol=1e-10)

    def test_solution_reports_tree(self):
        solution = solve(
            PricingProblem(self._payoff(OptionType.CALL), self.market), CoxRossRubinstein(steps=10)
        )
        assert solution.method == "binomial"
        assert solution.steps == 10
        assert np.isclose(solution.up, np.exp(0.2 * np.sqrt(0.1)))


class TestBinomialValidation:
    def setup_method(self):
        self.reference_date = dt.datetime(2025, 1, 1)
        self.expiry = expiry_after(self.reference_date, 1.0)

    @pytest.mark.parametrize("steps", [0, -5, 2.5])
    def test_invalid_steps(self, steps):
        with pytest.raises(PricingError, match="steps >= 1"):
            CoxRossRubinstein(steps=steps)

    def test_arbitrage_violation(self):
        """exp(r dt) above the up factor makes the up-probability exceed one."""
        market = bs_market(self.reference_date, 100.0, 0.5, 0.01)
        payoff = VanillaOption(100.0, self.expiry, OptionType.CALL)
        with pytest.raises(ArbitrageViolationError, match="Arbitrage condition violated"):
            solve(PricingProblem(payoff, market), CoxRossRubinstein(steps=1))

    def test_heston_market_rejected(self, heston_market, euro_call):
        with pytest.raises(ConfigurationError, match="cannot price with HestonInputs"):
            solve(PricingProblem(euro_call, heston_market), CoxRossRubinstein())
