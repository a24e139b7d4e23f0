"""Builders shared by the test modules."""

import datetime as dt
import math

import numpy as np

from option_calibration.enums import ExerciseType, OptionType
from option_calibration.market_data.vol_quotes import SpotObservation, VolQuote, VolQuoteConfig
from option_calibration.market_data.vol_surface import MarketVolSurface
from option_calibration.market_inputs import BlackScholesInputs, HestonInputs
from option_calibration.payoffs import VanillaOption
from option_calibration.valuation.core import BasketPricingProblem, solve_basket


def expiry_after(reference_date: dt.datetime, years: float) -> dt.datetime:
    """Expiry whose ACT/365F year fraction from ``reference_date`` is exactly ``years``."""
    return reference_date + dt.timedelta(days=365.0 * years)


def _norm_cdf(x: float) -> float:
    return 0.5 * (1.0 + math.erf(x / math.sqrt(2.0)))


def bs_reference_price(
    option_type: OptionType, spot: float, strike: float, vol: float, rate: float, ttm: float
) -> float:
    """Textbook Black-Scholes price, independent of the library's implementation."""
    sqrt_t = math.sqrt(ttm)
    d1 = (math.log(spot / strike) + (rate + 0.5 * vol**2) * ttm) / (vol * sqrt_t)
    d2 = d1 - vol * sqrt_t
    discounted_strike = strike * math.exp(-rate * ttm)
    if option_type is OptionType.CALL:
        return spot * _norm_cdf(d1) - discounted_strike * _norm_cdf(d2)
    return discounted_strike * _norm_cdf(-d2) - spot * _norm_cdf(-d1)


def bs_market(
    reference_date: dt.datetime, spot: float, rate: float, vol: float
) -> BlackScholesInputs:
    return BlackScholesInputs(
        reference_date=reference_date, rate_curve=rate, spot=spot, volatility=vol
    )


def heston_market(
    reference_date: dt.datetime, spot: float, rate: float, params
) -> HestonInputs:
    v0, kappa, theta, sigma, rho = params
    return HestonInputs(
        reference_date=reference_date,
        rate_curve=rate,
        spot=spot,
        v0=v0,
        kappa=kappa,
        theta=theta,
        sigma=sigma,
        rho=rho,
    )


def make_quote(
    strike: float,
    expiry: dt.datetime,
    *,
    reference_date: dt.datetime,
    spot: float = 100.0,
    rate: float = 0.03,
    option_type: OptionType = OptionType.CALL,
    config: VolQuoteConfig | None = None,
    **sides,
) -> VolQuote:
    """Spot-observed European quote; ``sides`` are e.g. ``mid_iv=0.2`` or ``bid_price=1.0``."""
    return VolQuote(
        payoff=VanillaOption(strike, expiry, option_type, ExerciseType.EUROPEAN),
        underlying=SpotObservation(spot),
        interest_rate=rate,
        reference_date=reference_date,
        config=VolQuoteConfig() if config is None else config,
        **sides,
    )


def otm_payoffs(
    strikes, expiries, spot: float
) -> list[VanillaOption]:
    """Out-of-the-money puts below spot and calls at or above it, expiry-major."""
    payoffs = []
    for expiry in expiries:
        for strike in strikes:
            option_type = OptionType.PUT if strike < spot else OptionType.CALL
            payoffs.append(VanillaOption(float(strike), expiry, option_type))
    return payoffs


def model_surface(
    market, method, strikes, expiries, *, rate: float
) -> MarketVolSurface:
    """Spot-observed surface whose mid prices are exactly the model prices of ``market``."""
    payoffs = otm_payoffs(strikes, expiries, market.spot)
    prices = solve_basket(BasketPricingProblem(tuple(payoffs), market), method).prices
    quotes = [
        VolQuote(
            payoff=payoff,
            underlying=SpotObservation(market.spot),
            interest_rate=rate,
            reference_date=market.reference_date,
            mid_price=float(price),
            source="synthetic",
        )
        for payoff, price in zip(payoffs, prices)
    ]
    return MarketVolSurface(quotes, spot=market.spot, rate_curve=rate)


def assert_all_finite(values) -> None:
    assert np.all(np.isfinite(np.asarray(values, dtype=float)))
