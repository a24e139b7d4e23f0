"""Shared pytest fixtures for option_calibration tests."""

import datetime as dt

import pytest

from option_calibration.enums import ExerciseType, OptionType
from option_calibration.market_inputs import BlackScholesInputs, HestonInputs
from option_calibration.payoffs import VanillaOption
from option_calibration.rates import DiscountCurve


# ---------------------------------------------------------------------------
# Scalar constants
# ---------------------------------------------------------------------------

REFERENCE_DATE = dt.datetime(2025, 1, 1)
EXPIRY = dt.datetime(2026, 1, 1)
SPOT = 100.0
STRIKE = 100.0
RATE = 0.05
VOL = 0.20

# (v0, kappa, theta, sigma, rho)
HESTON_PARAMS = (0.04, 2.0, 0.05, 0.4, -0.6)


@pytest.fixture()
def reference_date() -> dt.datetime:
    return REFERENCE_DATE


@pytest.fixture()
def expiry() -> dt.datetime:
    return EXPIRY


@pytest.fixture()
def risk_free_rate() -> float:
    return RATE


@pytest.fixture()
def vol() -> float:
    return VOL


@pytest.fixture()
def spot() -> float:
    return SPOT


@pytest.fixture()
def strike() -> float:
    return STRIKE


# ---------------------------------------------------------------------------
# Curves / market inputs
# ---------------------------------------------------------------------------


@pytest.fixture()
def discount_curve(risk_free_rate: float) -> DiscountCurve:
    return DiscountCurve.flat(risk_free_rate)


@pytest.fixture()
def bs_market(
    reference_date: dt.datetime, discount_curve: DiscountCurve, spot: float, vol: float
) -> BlackScholesInputs:
    """ATM lognormal market."""
    return BlackScholesInputs(
        reference_date=reference_date,
        rate_curve=discount_curve,
        spot=spot,
        volatility=vol,
    )


@pytest.fixture()
def heston_market(reference_date: dt.datetime, spot: float) -> HestonInputs:
    v0, kappa, theta, sigma, rho = HESTON_PARAMS
    return HestonInputs(
        reference_date=reference_date,
        rate_curve=0.03,
        spot=spot,
        v0=v0,
        kappa=kappa,
        theta=theta,
        sigma=sigma,
        rho=rho,
    )


# ---------------------------------------------------------------------------
# Payoffs
# ---------------------------------------------------------------------------


@pytest.fixture()
def euro_call(strike: float, expiry: dt.datetime) -> VanillaOption:
    return VanillaOption(strike, expiry, OptionType.CALL, ExerciseType.EUROPEAN)


@pytest.fixture()
def euro_put(strike: float, expiry: dt.datetime) -> VanillaOption:
    return VanillaOption(strike, expiry, OptionType.PUT, ExerciseType.EUROPEAN)


@pytest.fixture()
def american_put(strike: float, expiry: dt.datetime) -> VanillaOption:
    return VanillaOption(strike, expiry, OptionType.PUT, ExerciseType.AMERICAN)
