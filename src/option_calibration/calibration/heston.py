"""Heston calibration against a market vol surface."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import datetime as dt
import logging
from typing import TYPE_CHECKING

import numpy as np

from ..exceptions import ConfigurationError, MarketDataError
from ..market_inputs import HESTON_PARAMETER_NAMES, HestonInputs
from ..valuation.carr_madan import CarrMadan
from ..valuation.core import BasketPricingProblem, PricingMethod
from .core import Algorithm, CalibrationProblem, CalibrationResult, solve
from .lenses import HESTON_LENSES

if TYPE_CHECKING:
    from ..market_data.vol_surface import MarketVolSurface

__all__ = [
    "HestonCalibrationResult",
    "calibrate_heston",
    "infer_spot",
    "DEFAULT_HESTON_LOWER_BOUNDS",
    "DEFAULT_HESTON_UPPER_BOUNDS",
]

logger = logging.getLogger(__name__)

# (v0, kappa, theta, sigma, rho)
DEFAULT_HESTON_LOWER_BOUNDS = np.array([0.04, 0.5, 0.04, 0.1, -0.99])
DEFAULT_HESTON_UPPER_BOUNDS = np.array([1.0, 100.0, 1.0, 20.0, -0.01])


@dataclass(frozen=True, slots=True)
class HestonCalibrationResult:
    """Calibrated Heston parameters with the market they were fitted against."""

    v0: float
    kappa: float
    theta: float
    sigma: float
    rho: float
    reference_date: dt.datetime
    spot: float
    rate: float
    n_quotes: int
    calibration: CalibrationResult

    @property
    def objective(self) -> float:
        return self.calibration.objective

    @property
    def success(self) -> bool:
        return self.calibration.success

    @property
    def feller_satisfied(self) -> bool:
        return 2.0 * self.kappa * self.theta >= self.sigma**2

    def parameters(self) -> dict[str, float]:
        return dict(zip(HESTON_PARAMETER_NAMES, (self.v0, self.kappa, self.theta, self.sigma, self.rho)))

    def to_heston_inputs(self) -> HestonInputs:
        return HestonInputs(
            reference_date=self.reference_date,
            rate_curve=self.rate,
            spot=self.spot,
            v0=self.v0,
            kappa=self.kappa,
            theta=self.theta,
            sigma=self.sigma,
            rho=self.rho,
        )


def infer_spot(surface: MarketVolSurface, rate: float) -> float:
    """Median forward at the shortest expiry, discounted to the surface date."""
    shortest = surface.expiries[0]
    forwards = [q.forward for q in surface.quotes if q.expiry == shortest]
    if not forwards:
        raise MarketDataError("cannot infer spot: no quotes at the shortest expiry")
    return float(np.median(forwards) * np.exp(-rate * surface.ttm(shortest)))


def _as_parameter_vector(name: str, values) -> np.ndarray:
    if isinstance(values, dict):
        missing = [p for p in HESTON_PARAMETER_NAMES if p not in values]
        if missing:
            raise ConfigurationError(f"{name} is missing {missing}")
        values = [values[p] for p in HESTON_PARAMETER_NAMES]
    arr = np.asarray(values, dtype=float)
    if arr.shape != (len(HESTON_PARAMETER_NAMES),):
        raise ConfigurationError(
            f"{name} needs {len(HESTON_PARAMETER_NAMES)} values {HESTON_PARAMETER_NAMES}, "
            f"got shape {arr.shape}"
        )
    return arr


def calibrate_heston(
    surface: MarketVolSurface,
    rate: float,
    initial: Sequence[float] | dict[str, float],
    lower: Sequence[float] | dict[str, float] | None = None,
    upper: Sequence[float] | dict[str, float] | None = None,
    method: PricingMethod | None = None,
    *,
    spot: float | None = None,
    algorithm: Algorithm | None = None,
) -> HestonCalibrationResult:
    """Fit ``(v0, kappa, theta, sigma, rho)`` to the surface's mid prices.

    Parameters
    ==========
    surface:
        Quotes to fit; targets are their mid prices.
    rate:
        Flat continuously-compounded rate of the Heston market.
    initial:
        Starting parameters, as a sequence in ``(v0, kappa, theta, sigma, rho)``
        order or a mapping keyed by those names.
    lower, upper:
        Box bounds in the same layout; default to
        :data:`DEFAULT_HESTON_LOWER_BOUNDS` / :data:`DEFAULT_HESTON_UPPER_BOUNDS`.
    method:
        Pricing method reused for every evaluation; defaults to
        ``CarrMadan(alpha=1.0, bound=200.0)``.
    spot:
        Spot of the Heston market; inferred with :func:`infer_spot` if omitted.
    algorithm:
        Optimizer settings; see :func:`option_calibration.calibration.core.solve`.

    Returns
    =======
    HestonCalibrationResult
    """
    quotes = surface.quotes
    targets = np.array([q.mid_price for q in quotes])
    if np.any(np.isnan(targets)):
        raise MarketDataError(
            f"{int(np.isnan(targets).sum())} quotes have no mid price to calibrate against"
        )
    initial_vec = _as_parameter_vector("initial", initial)
    lower_vec = DEFAULT_HESTON_LOWER_BOUNDS if lower is None else _as_parameter_vector("lower", lower)
    upper_vec = DEFAULT_HESTON_UPPER_BOUNDS if upper is None else _as_parameter_vector("upper", upper)
    method = CarrMadan() if method is None else method
    spot = infer_spot(surface, rate) if spot is None else float(spot)

    v0, kappa, theta, sigma, rho = initial_vec
    market = HestonInputs(
        reference_date=surface.reference_date,
        rate_curve=rate,
        spot=spot,
        v0=v0,
        kappa=kappa,
        theta=theta,
        sigma=sigma,
        rho=rho,
    )
    problem = CalibrationProblem(
        basket=BasketPricingProblem(tuple(q.payoff for q in quotes), market),
        method=method,
        lenses=HESTON_LENSES,
        targets=targets,
        initial_guess=initial_vec,
        lower_bounds=lower_vec,
        upper_bounds=upper_vec,
    )
    logger.debug(
        "Calibrating Heston on %d quotes: spot=%.6g rate=%.6g initial=%s",
        len(quotes),
        spot,
        rate,
        np.array2string(initial_vec, precision=6),
    )
    calibration = solve(problem, algorithm)

    v0, kappa, theta, sigma, rho = (float(x) for x in calibration.x)
    result = HestonCalibrationResult(
        v0=v0,
        kappa=kappa,
        theta=theta,
        sigma=sigma,
        rho=rho,
        reference_date=surface.reference_date,
        spot=spot,
        rate=float(rate),
        n_quotes=len(quotes),
        calibration=calibration,
    )
    logger.debug(
        "Heston calibration %s: v0=%.6f kappa=%.6f theta=%.6f sigma=%.6f rho=%.6f objective=%.6g",
        "converged" if calibration.success else "did not converge",
        v0,
        kappa,
        theta,
        sigma,
        rho,
        calibration.objective,
    )
    logger.debug("Feller condition 2*kappa*theta >= sigma^2: %s", result.feller_satisfied)
    return result
