"""Goodness of fit of a calibrated model against a market vol surface."""

from __future__ import annotations

from dataclasses import dataclass
import datetime as dt
import logging
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from ..market_inputs import MarketInputs
from ..valuation.bsm import BlackScholesAnalytic
from ..valuation.core import BasketPricingProblem, PricingMethod, solve_basket
from .implied_volatility import DEFAULT_IV_BOUNDS, DEFAULT_IV_GUESS, implied_vol_or_fallback

if TYPE_CHECKING:
    from ..market_data.vol_quotes import VolQuote
    from ..market_data.vol_surface import MarketVolSurface

__all__ = ["FitStatistics", "compute_fit_statistics", "summary_frame"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FitStatistics:
    """Price and implied-vol errors of model prices against market mids.

    Price errors are in price units; vol errors are in percentage points.
    Quotes whose model price failed are excluded from the price statistics;
    their model vol is the market vol (zero vol error).
    """

    name: str
    n_quotes: int
    reference_date: dt.datetime
    price_mae: float
    price_rmse: float
    price_max_error: float
    price_mean_rel_error: float
    vol_mae: float
    vol_rmse: float
    vol_max_error: float
    n_price_failures: int
    n_vol_fallbacks: int
    market_prices: np.ndarray
    model_prices: np.ndarray
    market_vols: np.ndarray
    model_vols: np.ndarray
    quotes: tuple[VolQuote, ...]

    def summary(self) -> dict:
        return {
            "name": self.name,
            "n_quotes": self.n_quotes,
            "reference_date": self.reference_date,
            "price_mae": self.price_mae,
            "price_rmse": self.price_rmse,
            "price_max_error": self.price_max_error,
            "price_mean_rel_error": self.price_mean_rel_error,
            "vol_mae": self.vol_mae,
            "vol_rmse": self.vol_rmse,
            "vol_max_error": self.vol_max_error,
            "n_price_failures": self.n_price_failures,
            "n_vol_fallbacks": self.n_vol_fallbacks,
        }

    def to_frame(self) -> pd.DataFrame:
        """Per-quote detail; vols in percent."""
        return pd.DataFrame(
            {
                "expiry": [q.expiry for q in self.quotes],
                "strike": [q.strike for q in self.quotes],
                "option_type": [q.payoff.option_type.value for q in self.quotes],
                "market_vol": self.market_vols * 100.0,
                "model_vol": self.model_vols * 100.0,
                "vol_error": (self.model_vols - self.market_vols) * 100.0,
                "market_price": self.market_prices,
                "model_price": self.model_prices,
                "price_error": self.model_prices - self.market_prices,
            }
        )


def _mean(values: np.ndarray) -> float:
    return float(np.nanmean(values)) if np.any(~np.isnan(values)) else np.nan


def _max(values: np.ndarray) -> float:
    return float(np.nanmax(values)) if np.any(~np.isnan(values)) else np.nan


def compute_fit_statistics(
    surface: MarketVolSurface,
    market: MarketInputs,
    method: PricingMethod,
    *,
    name: str = "",
    iv_guess: float = DEFAULT_IV_GUESS,
    iv_bounds: tuple[float, float] = DEFAULT_IV_BOUNDS,
    max_workers: int | None = None,
) -> FitStatistics:
    """Compare model prices under ``market`` to the surface's mid quotes.

    Model vols are backed out from undiscounted model prices with
    Black-Scholes at zero rate and spot equal to each quote's forward, so they
    are comparable to vols quoted on a forward. Failed model prices and failed
    inversions are counted and replaced (NaN price, market vol) instead of
    aborting the run.
    """
    quotes = surface.quotes
    basket = BasketPricingProblem(tuple(q.payoff for q in quotes), market)
    basket_solution = solve_basket(basket, method, tolerate_failures=True, max_workers=max_workers)

    model_prices = basket_solution.prices
    market_prices = np.array([q.mid_price for q in quotes])
    market_vols = np.array([q.mid_iv for q in quotes])

    analytic = BlackScholesAnalytic()
    model_vols = np.empty(len(quotes))
    n_vol_fallbacks = 0
    for i, quote in enumerate(quotes):
        if np.isnan(model_prices[i]):
            model_vols[i] = market_vols[i]
            continue
        fallback = implied_vol_or_fallback(
            quote.payoff,
            quote.forward,
            0.0,
            model_prices[i] / quote.discount_factor,
            quote.reference_date,
            market_vols[i],
            analytic,
            guess=iv_guess,
            bounds=iv_bounds,
        )
        model_vols[i] = fallback.vol
        n_vol_fallbacks += fallback.used_fallback

    price_errors = model_prices - market_prices
    abs_price_errors = np.abs(price_errors)
    with np.errstate(divide="ignore", invalid="ignore"):
        rel_price_errors = np.where(
            market_prices > 0.0, abs_price_errors / market_prices * 100.0, np.nan
        )
    vol_errors = (model_vols - market_vols) * 100.0
    abs_vol_errors = np.abs(vol_errors)

    stats = FitStatistics(
        name=name,
        n_quotes=len(quotes),
        reference_date=surface.reference_date,
        price_mae=_mean(abs_price_errors),
        price_rmse=float(np.sqrt(_mean(price_errors**2))),
        price_max_error=_max(abs_price_errors),
        price_mean_rel_error=_mean(rel_price_errors),
        vol_mae=_mean(abs_vol_errors),
        vol_rmse=float(np.sqrt(_mean(vol_errors**2))),
        vol_max_error=_max(abs_vol_errors),
        n_price_failures=basket_solution.n_failed,
        n_vol_fallbacks=n_vol_fallbacks,
        market_prices=market_prices,
        model_prices=model_prices,
        market_vols=market_vols,
        model_vols=model_vols,
        quotes=tuple(quotes),
    )
    logger.debug(
        "Fit %s: quotes=%d price_rmse=%.6g vol_rmse=%.4g pp price_failures=%d vol_fallbacks=%d",
        name or "<unnamed>",
        stats.n_quotes,
        stats.price_rmse,
        stats.vol_rmse,
        stats.n_price_failures,
        stats.n_vol_fallbacks,
    )
    if n_vol_fallbacks:
        logger.warning(
            "Fit %s: %d of %d model vols fell back to market vols",
            name or "<unnamed>",
            n_vol_fallbacks,
            len(quotes),
        )
    return stats


def summary_frame(stats: list[FitStatistics]) -> pd.DataFrame:
    """One row of headline statistics per run, indexed by name."""
    return pd.DataFrame([s.summary() for s in stats]).set_index("name")
