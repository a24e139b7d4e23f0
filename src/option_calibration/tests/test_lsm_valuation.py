"""Tests for Longstaff-Schwartz valuation of American options."""

import datetime as dt

import numpy as np
import pytest

from option_calibration.enums import Dynamics, ExerciseType, OptionType, SimulationScheme
from option_calibration.exceptions import ConfigurationError, UnsupportedFeatureError
from option_calibration.payoffs import VanillaOption
from option_calibration.tests.helpers import bs_market, expiry_after, heston_market
from option_calibration.valuation import (
    BlackScholesAnalytic,
    CoxRossRubinstein,
    LeastSquaresMonteCarlo,
    LSMParams,
    MonteCarloParams,
    PricingProblem,
    solve,
)
from option_calibration.valuation.monte_carlo import _laguerre_basis, _lsm_continuation


class TestLSMValuation:
    """American puts under lognormal dynamics."""

    def setup_method(self):
        self.reference_date = dt.datetime(2025, 1, 1)
        self.expiry = expiry_after(self.reference_date, 1.0)
        # Longstaff-Schwartz (2001) table 1 case: S=36, K=40, r=6%, vol=20%, T=1.
        self.market = bs_market(self.reference_date, 36.0, 0.06, 0.2)
        self.payoff = VanillaOption(40.0, self.expiry, OptionType.PUT, ExerciseType.AMERICAN)
        self.problem = PricingProblem(self.payoff, self.market)
        self.params = MonteCarloParams(trajectories=20_000, steps=50, random_seed=42)

    def test_reference_value(self):
        """The paper reports 4.472 (LSM) against 4.478 (finite differences)."""
        solution = solve(self.problem, LeastSquaresMonteCarlo(params=self.params))
        assert solution.method == "lsm"
        assert abs(solution.price - 4.478) < 4.0 * solution.std_error + 0.02

    def test_close_to_binomial(self):
        lsm = solve(self.problem, LeastSquaresMonteCarlo(params=self.params)).price
        tree = solve(self.problem, CoxRossRubinstein(steps=500)).price
        assert np.isclose(lsm, tree, rtol=0.02)

    def test_above_european(self):
        european = PricingProblem(self.payoff.with_exercise(ExerciseType.EUROPEAN), self.market)
        euro_price = solve(european, BlackScholesAnalytic()).price
        solution = solve(self.problem, LeastSquaresMonteCarlo(params=self.params))
        assert solution.price > euro_price
        assert 0.0 < solution.exercised_fraction < 1.0

    def test_regression_degree_insensitive(self):
        deg2 = solve(
            self.problem, LeastSquaresMonteCarlo(params=self.params, lsm_params=LSMParams(deg=2))
        ).price
        deg5 = solve(
            self.problem, LeastSquaresMonteCarlo(params=self.params, lsm_params=LSMParams(deg=5))
        ).price
        assert np.isclose(deg2, deg5, rtol=0.02)

    def test_intrinsic_floor(self):
        """A deep in-the-money put is worth at least immediate exercise."""
        market = bs_market(self.reference_date, 10.0, 0.06, 0.2)
        problem = PricingProblem(self.payoff, market)
        params = MonteCarloParams(trajectories=2_000, steps=10, random_seed=1)
        assert solve(problem, LeastSquaresMonteCarlo(params=params)).price >= 30.0

    def test_heston_dynamics(self):
        market = heston_market(self.reference_date, 36.0, 0.06, (0.04, 2.0, 0.04, 0.3, -0.5))
        method = LeastSquaresMonteCarlo(
            dynamics=Dynamics.HESTON,
            params=MonteCarloParams(
                trajectories=5_000,
                steps=25,
                scheme=SimulationScheme.EULER_MARUYAMA,
                random_seed=3,
            ),
        )
        price = solve(PricingProblem(self.payoff, market), method).price
        assert 4.0 < price < 5.5

    def test_european_payoff_rejected(self):
        european = PricingProblem(self.payoff.with_exercise(ExerciseType.EUROPEAN), self.market)
        with pytest.raises(UnsupportedFeatureError, match="does not support EUROPEAN"):
            solve(european, LeastSquaresMonteCarlo(params=self.params))


class TestLSMRegression:
    """Continuation-value regression helpers."""

    def test_laguerre_basis_values(self):
        x = np.array([0.0, 1.0, 2.0])
        basis = _laguerre_basis(x, deg=2)
        assert basis.shape == (3, 3)
        np.testing.assert_allclose(basis[:, 0], 1.0)
        np.testing.assert_allclose(basis[:, 1], 1.0 - x)
        np.testing.assert_allclose(basis[:, 2], 1.0 - 2.0 * x + 0.5 * x**2)

    def test_out_of_the_money_paths_get_zero(self):
        spots = np.linspace(30.0, 50.0, 40)
        realised = np.maximum(40.0 - spots, 0.0)
        itm = spots < 40.0
        cont = _lsm_continuation(spots, realised, itm, 40.0, LSMParams(deg=2))
        assert np.all(cont[~itm] == 0.0)

    def test_too_few_paths_use_mean(self):
        spots = np.array([35.0, 36.0, 45.0])
        realised = np.array([4.0, 6.0, 0.0])
        itm = spots < 40.0
        cont = _lsm_continuation(spots, realised, itm, 40.0, LSMParams(deg=3, min_itm=10))
        np.testing.assert_allclose(cont, [5.0, 5.0, 0.0])

    @pytest.mark.parametrize("kwargs", [{"deg": 0}, {"ridge_lambda": -1.0}, {"min_itm": 0}])
    def test_invalid_params(self, kwargs):
        with pytest.raises(ConfigurationError, match="must be"):
            LSMParams(**kwargs)
