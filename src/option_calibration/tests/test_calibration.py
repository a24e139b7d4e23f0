"""Tests for the generic calibration problem and its solvers."""

import datetime as dt
import logging
import threading

import numpy as np
import pytest

from option_calibration.calibration import (
    CalibrationProblem,
    CalibrationResult,
    Lens,
    Optimizer,
    RootFinder,
    solve,
)
from option_calibration.enums import ImpliedVolMethod, OptionType
from option_calibration.exceptions import ConfigurationError, ConvergenceError, ValidationError
from option_calibration.payoffs import VanillaOption
from option_calibration.tests.helpers import bs_market, expiry_after
from option_calibration.valuation import BasketPricingProblem, BlackScholesAnalytic, solve_basket

REFERENCE_DATE = dt.datetime(2025, 1, 1)
TRUE_VOL = 0.25


def _basket(strikes, vol=0.4):
    expiry = expiry_after(REFERENCE_DATE, 1.0)
    payoffs = [VanillaOption(k, expiry, OptionType.CALL) for k in strikes]
    return BasketPricingProblem(payoffs, bs_market(REFERENCE_DATE, 100.0, 0.03, vol))


def _targets(basket):
    true_basket = basket.with_market(basket.market.replace(volatility=TRUE_VOL))
    return solve_basket(true_basket, BlackScholesAnalytic()).prices


def _problem(strikes=(100.0,), **kwargs):
    basket = _basket(strikes)
    defaults = {
        "basket": basket,
        "method": BlackScholesAnalytic(),
        "lenses": (Lens.VOLATILITY,),
        "targets": _targets(basket),
        "initial_guess": [0.4],
        "lower_bounds": [0.01],
        "upper_bounds": [2.0],
    }
    defaults.update(kwargs)
    return CalibrationProblem(**defaults)


class TestCalibrationProblem:
    """Construction-time validation."""

    def test_arrays_are_normalised(self):
        problem = _problem()
        assert isinstance(problem.targets, np.ndarray)
        assert problem.initial_guess.shape == (1,)
        assert problem.n_parameters == 1

    def test_lens_must_apply_to_market(self):
        with pytest.raises(ConfigurationError, match="does not apply"):
            _problem(lenses=(Lens.KAPPA,))

    @pytest.mark.parametrize(
        "kwargs, match",
        [
            ({"lenses": ()}, "at least one lens"),
            ({"lenses": (Lens.VOLATILITY, Lens.VOLATILITY), "initial_guess": [0.2, 0.2]}, "only once"),
            ({"targets": [1.0, 2.0]}, "targets for a basket"),
            ({"initial_guess": [0.2, 0.3]}, "initial_guess has 2 values"),
            ({"upper_bounds": None}, "give both"),
            ({"lower_bounds": [2.0], "upper_bounds": [1.0], "initial_guess": [1.5]}, "below its upper"),
            ({"failure_penalty": 0.0}, "failure_penalty"),
        ],
    )
    def test_configuration_errors(self, kwargs, match):
        with pytest.raises(ConfigurationError, match=match):
            _problem(**kwargs)

    def test_multi_lens_requires_bounds(self):
        with pytest.raises(ConfigurationError, match="box bounds are mandatory"):
            _problem(
                lenses=(Lens.VOLATILITY, Lens.SPOT),
                initial_guess=[0.2, 100.0],
                lower_bounds=None,
                upper_bounds=None,
            )

    def test_guess_outside_bounds(self):
        with pytest.raises(ValidationError, match="outside the bounds"):
            _problem(initial_guess=[3.0])

    def test_non_finite_targets(self):
        with pytest.raises(ValidationError, match="targets must be finite"):
            _problem(targets=[np.nan])


class TestObjective:
    """Model prices, residuals and the failure penalty."""

    def setup_method(self):
        self.problem = _problem(strikes=(90.0, 100.0, 110.0))

    def test_zero_residuals_at_true_parameters(self):
        np.testing.assert_allclose(self.problem.residuals([TRUE_VOL]), 0.0, atol=1e-12)
        assert self.problem.objective([TRUE_VOL]) == pytest.approx(0.0, abs=1e-20)

    def test_market_is_not_mutated(self):
        self.problem.model_prices([0.3])
        assert self.problem.basket.market.volatility == 0.4

    def test_rejected_parameters_price_as_nan(self):
        prices = self.problem.model_prices([-0.1])
        assert np.all(np.isnan(prices))

    def test_failures_receive_penalty(self):
        residuals = self.problem.residuals([-0.1])
        np.testing.assert_allclose(residuals, self.problem.failure_penalty)
        assert self.problem.objective([-0.1]) == pytest.approx(3 * self.problem.failure_penalty**2)


class TestSolvers:
    """Root finder and optimizer recover a known volatility."""

    @pytest.mark.parametrize("method", list(ImpliedVolMethod))
    def test_root_finder(self, method):
        result = solve(_problem(), RootFinder(method=method))
        assert result.success
        assert result.x[0] == pytest.approx(TRUE_VOL, rel=1e-8)
        assert result.market.volatility == pytest.approx(TRUE_VOL, rel=1e-8)
        assert result.n_failed_prices == 0

    @pytest.mark.parametrize("method", ["trf", "L-BFGS-B"])
    def test_optimizer_on_basket(self, method):
        result = solve(_problem(strikes=(80.0, 100.0, 120.0)), Optimizer(method=method))
        assert result.x[0] == pytest.approx(TRUE_VOL, rel=1e-4)
        assert result.as_dict() == {"volatility": pytest.approx(TRUE_VOL, rel=1e-4)}

    def test_optimizer_with_thread_pool(self):
        result = solve(_problem(strikes=(80.0, 100.0, 120.0)), Optimizer(max_workers=3))
        assert result.x[0] == pytest.approx(TRUE_VOL, rel=1e-4)

    def test_default_algorithm_is_root_finder_for_one_instrument(self):
        result = solve(_problem())
        assert result.message == "brentq converged"

    def test_default_algorithm_is_optimizer_for_a_basket(self):
        result = solve(_problem(strikes=(90.0, 110.0)))
        assert result.message != "brentq converged"
        assert result.x[0] == pytest.approx(TRUE_VOL, rel=1e-4)

    def test_root_finder_rejects_baskets(self):
        with pytest.raises(ConfigurationError, match="exactly one lens and one instrument"):
            solve(_problem(strikes=(90.0, 110.0)), RootFinder())

    def test_root_finder_needs_bracket(self):
        with pytest.raises(ConvergenceError, match="not bracketed"):
            solve(_problem(lower_bounds=[0.3], upper_bounds=[1.0]), RootFinder())

    def test_cancelled_evaluations_are_failures(self, caplog):
        cancel = threading.Event()
        cancel.set()
        with caplog.at_level(logging.WARNING):
            result = solve(_problem(strikes=(90.0, 110.0)), Optimizer(), cancel_event=cancel)
        assert result.n_failed_prices == 2
        assert "unpriced" in caplog.text

    def test_unknown_algorithm(self):
        with pytest.raises(ConfigurationError, match="Optimizer or RootFinder"):
            solve(_problem(), algorithm="brentq")

    @pytest.mark.parametrize(
        "factory",
        [
            lambda: Optimizer(method="nelder-mead"),
            lambda: Optimizer(diff_step=0.0),
            lambda: RootFinder(method="brentq"),
            lambda: RootFinder(max_iterations=0),
        ],
    )
    def test_invalid_algorithm_settings(self, factory):
        with pytest.raises(ConfigurationError):
            factory()


class TestCalibrationResult:
    def setup_method(self):
        self.market = bs_market(REFERENCE_DATE, 100.0, 0.03, 0.2)

    def _result(self, success):
        return CalibrationResult(
            x=np.array([0.2]),
            objective=0.0,
            success=success,
            status=0 if not success else 1,
            message="budget exhausted" if not success else "ok",
            n_iterations=3,
            n_evaluations=10,
            lenses=(Lens.VOLATILITY,),
            market=self.market,
        )

    def test_raise_for_status_returns_self(self):
        result = self._result(True)
        assert result.raise_for_status() is result

    def test_raise_for_status_raises(self):
        with pytest.raises(ConvergenceError, match="budget exhausted"):
            self._result(False).raise_for_status()
