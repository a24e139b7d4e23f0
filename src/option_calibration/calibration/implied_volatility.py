"""Implied volatility as a one-instrument, one-lens calibration.

:func:`try_price_to_iv` never raises for numerical failures: it returns an
:class:`ImpliedVolOutcome` carrying either the volatility or the error. Bulk
callers turn a failed outcome into a fallback with
:meth:`ImpliedVolOutcome.or_fallback`, which records that the fallback fired.
"""

from __future__ import annotations

from dataclasses import dataclass
import datetime as dt
import logging

import numpy as np

from ..enums import OptionType
from ..exceptions import ConvergenceError, NumericalError, ValidationError
from ..market_inputs import BlackScholesInputs
from ..payoffs import VanillaOption
from ..rates import DiscountCurve
from ..valuation.bsm import BlackScholesAnalytic
from ..valuation.core import BasketPricingProblem, PricingMethod, PricingProblem
from .core import Algorithm, CalibrationProblem, CalibrationResult, Optimizer, RootFinder, solve
from .lenses import Lens

__all__ = [
    "ImpliedVolOutcome",
    "FallbackVol",
    "iv_to_price",
    "try_price_to_iv",
    "price_to_iv",
    "implied_vol_or_fallback",
    "DEFAULT_IV_GUESS",
    "DEFAULT_IV_BOUNDS",
]

logger = logging.getLogger(__name__)

DEFAULT_IV_GUESS = 0.5
DEFAULT_IV_BOUNDS = (1.0e-4, 5.0)

# Optimizer-based inversions must reprice the target this closely.
_PRICE_MATCH_TOL = 1.0e-8


@dataclass(frozen=True, slots=True)
class FallbackVol:
    """Volatility to use downstream, flagged when it is the fallback value."""

    vol: float
    used_fallback: bool
    error: NumericalError | None = None


@dataclass(frozen=True, slots=True)
class ImpliedVolOutcome:
    """Result of one inversion: a volatility or the error that prevented it."""

    implied_vol: float
    error: NumericalError | None = None
    result: CalibrationResult | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> float:
        """Return the implied volatility or raise the recorded error."""
        if self.error is not None:
            raise self.error
        return self.implied_vol

    def or_fallback(self, fallback_vol: float) -> FallbackVol:
        if self.error is None:
            return FallbackVol(vol=self.implied_vol, used_fallback=False)
        return FallbackVol(vol=float(fallback_vol), used_fallback=True, error=self.error)


def _black_scholes_market(
    reference_date: dt.datetime,
    rate: float | DiscountCurve,
    underlying_price: float,
    vol: float,
) -> BlackScholesInputs:
    return BlackScholesInputs(
        reference_date=reference_date,
        rate_curve=rate,
        spot=underlying_price,
        volatility=vol,
    )


def _price_bounds(payoff: VanillaOption, market: BlackScholesInputs) -> tuple[float, float]:
    """No-arbitrage ``(lower, upper)`` price bounds for ``payoff``."""
    spot = market.spot
    strike = payoff.strike
    if payoff.is_american:
        if payoff.option_type is OptionType.CALL:
            return max(0.0, spot - strike), spot
        return max(0.0, strike - spot), strike

    discount_factor = market.discount_factor(payoff.expiry)
    if payoff.option_type is OptionType.CALL:
        return max(0.0, spot - strike * discount_factor), spot
    return max(0.0, strike * discount_factor - spot), strike * discount_factor


def iv_to_price(
    payoff: VanillaOption,
    underlying_price: float,
    rate: float | DiscountCurve,
    iv: float,
    reference_date: dt.datetime,
    method: PricingMethod | None = None,
    *,
    normalize: bool = False,
) -> float:
    """Price ``payoff`` under a lognormal market with volatility ``iv``.

    Parameters
    ==========
    payoff:
        Option to price.
    underlying_price:
        Spot price of the underlying.
    rate:
        Flat continuously-compounded rate or a discount curve.
    iv:
        Annualised volatility.
    reference_date:
        Valuation date.
    method:
        Pricing method; defaults to :class:`BlackScholesAnalytic`.
    normalize:
        Return the price as a fraction of the forward.
    """
    method = BlackScholesAnalytic() if method is None else method
    market = _black_scholes_market(reference_date, rate, underlying_price, iv)
    price = method.solve(PricingProblem(payoff, market)).price
    if normalize:
        return price / market.forward(payoff.expiry)
    return price


def try_price_to_iv(
    payoff: VanillaOption,
    underlying_price: float,
    rate: float | DiscountCurve,
    target_price: float,
    reference_date: dt.datetime,
    method: PricingMethod | None = None,
    *,
    guess: float = DEFAULT_IV_GUESS,
    bounds: tuple[float, float] = DEFAULT_IV_BOUNDS,
    normalized_input: bool = False,
    algorithm: Algorithm | None = None,
) -> ImpliedVolOutcome:
    """Back out the volatility at which ``method`` reproduces ``target_price``.

    Parameters
    ==========
    payoff, underlying_price, rate, reference_date, method:
        As for :func:`iv_to_price`.
    target_price:
        Observed price; a fraction of the forward when ``normalized_input``.
    guess:
        Starting volatility (Newton-Raphson and optimizer only).
    bounds:
        Volatility search interval.
    normalized_input:
        ``target_price`` is quoted in units of the forward (e.g. crypto
        options quoted in the coin); it is multiplied by the forward first.
    algorithm:
        :class:`RootFinder` (default) or :class:`Optimizer`.

    Returns
    =======
    ImpliedVolOutcome
        Numerical failures (target outside the attainable price range,
        including small negative prices left by transform pricers, no
        convergence, pricing failure) are returned, not raised.

    Raises
    ======
    ValidationError
        Invalid inputs: non-finite target, guess outside bounds.
    """
    method = BlackScholesAnalytic() if method is None else method
    algorithm = RootFinder() if algorithm is None else algorithm
    low, high = (float(b) for b in bounds)
    market = _black_scholes_market(reference_date, rate, underlying_price, guess)

    target = float(target_price)
    if not np.isfinite(target):
        raise ValidationError(f"target price must be finite, got {target}")
    if normalized_input:
        target *= market.forward(payoff.expiry)

    try:
        if target < 0.0:
            raise ConvergenceError(
                f"target price {target:.10g} below no-arbitrage bound for K={payoff.strike}"
            )
        lower, upper = _price_bounds(payoff, market)
        if not lower < target < upper:
            raise ConvergenceError(
                f"target price {target:.10g} outside no-arbitrage bounds "
                f"({lower:.10g}, {upper:.10g}) for K={payoff.strike}"
            )
        problem = CalibrationProblem(
            basket=BasketPricingProblem((payoff,), market),
            method=method,
            lenses=(Lens.VOLATILITY,),
            targets=np.array([target]),
            initial_guess=np.array([float(guess)]),
            lower_bounds=np.array([low]),
            upper_bounds=np.array([high]),
        )
        result = solve(problem, algorithm).raise_for_status()
        if isinstance(algorithm, Optimizer) and np.sqrt(result.objective) > _PRICE_MATCH_TOL * max(
            1.0, target
        ):
            raise ConvergenceError(
                f"optimizer stopped at vol {result.x[0]:.6g} with pricing error "
                f"{np.sqrt(result.objective):.3g}"
            )
    except NumericalError as exc:
        logger.debug("Implied vol failed for K=%s expiry=%s: %s", payoff.strike, payoff.expiry, exc)
        return ImpliedVolOutcome(implied_vol=np.nan, error=exc)

    return ImpliedVolOutcome(implied_vol=float(result.x[0]), result=result)


def price_to_iv(
    payoff: VanillaOption,
    underlying_price: float,
    rate: float | DiscountCurve,
    target_price: float,
    reference_date: dt.datetime,
    method: PricingMethod | None = None,
    **kwargs,
) -> float:
    """Implied volatility; raises :class:`ConvergenceError` on failure.

    Keyword arguments are those of :func:`try_price_to_iv`.
    """
    return try_price_to_iv(
        payoff, underlying_price, rate, target_price, reference_date, method, **kwargs
    ).unwrap()


def implied_vol_or_fallback(
    payoff: VanillaOption,
    underlying_price: float,
    rate: float | DiscountCurve,
    target_price: float,
    reference_date: dt.datetime,
    fallback_vol: float,
    method: PricingMethod | None = None,
    **kwargs,
) -> FallbackVol:
    """Implied volatility, or ``fallback_vol`` when the inversion fails.

    Used wherever volatilities are inverted in bulk, so a single
    pathological quote never aborts the batch.
    """
    fallback = try_price_to_iv(
        payoff, underlying_price, rate, target_price, reference_date, method, **kwargs
    ).or_fallback(fallback_vol)
    if fallback.used_fallback:
        logger.warning(
            "Implied vol fallback to %.6g for %s K=%s expiry=%s: %s",
            fallback.vol,
            payoff.option_type.value,
            payoff.strike,
            payoff.expiry.isoformat(),
            fallback.error,
        )
    return fallback
