"""Black-Scholes closed-form valuation of European options."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

import numpy as np
from scipy.stats import norm

from ..enums import ExerciseType, OptionType
from ..market_inputs import BlackScholesInputs
from ..utils import discounted_intrinsic
from .core import PricingMethod, Solution

if TYPE_CHECKING:
    from .core import PricingProblem

__all__ = ["AnalyticSolution", "BlackScholesAnalytic", "black_scholes_d_values"]


def black_scholes_d_values(
    forward: float, strike: float, time_to_maturity: float, volatility: float
) -> tuple[float, float]:
    """Calculate d1 and d2 from the forward.

    Parameters
    ----------
    forward
        Forward price for the option expiry.
    strike
        Strike price.
    time_to_maturity
        Time to maturity in years (> 0).
    volatility
        Volatility (annualized).

    Returns
    -------
    tuple[float, float]
        Pair ``(d1, d2)``. In the zero-vol limit both are ``+inf`` (forward
        above strike), ``-inf`` (below) or ``0`` (at the money).
    """
    denominator = volatility * np.sqrt(time_to_maturity)
    if denominator < 1e-300:
        if forward > strike:
            return np.inf, np.inf
        if forward < strike:
            return -np.inf, -np.inf
        return 0.0, 0.0

    d1 = (np.log(forward / strike) + 0.5 * volatility**2 * time_to_maturity) / denominator
    return float(d1), float(d1 - denominator)


@dataclass(frozen=True, slots=True)
class AnalyticSolution(Solution):
    """Black-Scholes price with the quantities it was built from.

    ``vega`` is the derivative with respect to a 1.0 (not 1%) change in volatility.
    """

    d1: float = np.nan
    d2: float = np.nan
    forward: float = np.nan
    discount_factor: float = np.nan
    volatility: float = np.nan
    vega: float = np.nan


@dataclass(frozen=True, slots=True)
class BlackScholesAnalytic(PricingMethod):
    """Closed-form Black-Scholes price from forward, discount factor and total variance.

    At exactly zero volatility the price is the discounted intrinsic value of
    the forward; no normal CDF is evaluated.
    """

    name: ClassVar[str] = "black_scholes"
    supported_markets: ClassVar[tuple[type, ...]] = (BlackScholesInputs,)
    supported_exercise: ClassVar[tuple[ExerciseType, ...]] = (ExerciseType.EUROPEAN,)

    def _solve(self, problem: PricingProblem, ttm: float, rng) -> AnalyticSolution:
        market: BlackScholesInputs = problem.market
        payoff = problem.payoff
        strike = payoff.strike
        volatility = market.sigma_for(strike, ttm)
        df_r = float(market.rate_curve.df(ttm))
        forward = market.spot / df_r
        d1, d2 = black_scholes_d_values(forward, strike, ttm, volatility)

        if volatility == 0.0:
            price = discounted_intrinsic(payoff.option_type, forward, strike, df_r)
            vega = 0.0
        else:
            if payoff.option_type is OptionType.CALL:
                price = df_r * (forward * norm.cdf(d1) - strike * norm.cdf(d2))
            else:
                price = df_r * (strike * norm.cdf(-d2) - forward * norm.cdf(-d1))
            vega = df_r * forward * norm.pdf(d1) * np.sqrt(ttm)

        return AnalyticSolution(
            price=float(price),
            method=self.name,
            d1=d1,
            d2=d2,
            forward=forward,
            discount_factor=df_r,
            volatility=volatility,
            vega=float(vega),
        )
