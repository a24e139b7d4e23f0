"""Observed option quotes: prices are the truth, implied vols are cached views.

A :class:`VolQuote` resolves every side (bid, mid, ask) exactly once, when it
is constructed: a missing price is computed from its implied vol and vice
versa, and sides given both ways are checked for consistency. Missing sides are
stored as NaN. What happens when a check fails is set per rule in
:class:`VolQuoteConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import datetime as dt
from typing import ClassVar
import warnings

import numpy as np

from ..calibration.implied_volatility import (
    DEFAULT_IV_BOUNDS,
    DEFAULT_IV_GUESS,
    iv_to_price,
    try_price_to_iv,
)
from ..enums import UnderlyingKind, ValidationHandling
from ..exceptions import ConfigurationError, MarketDataError, MarketDataWarning
from ..payoffs import VanillaOption
from ..utils import calculate_year_fraction
from ..valuation.bsm import BlackScholesAnalytic
from ..valuation.core import PricingMethod

__all__ = [
    "UnderlyingObservation",
    "SpotObservation",
    "ForwardObservation",
    "FuturesObservation",
    "VolQuoteConfig",
    "VolQuote",
]

ABS_TOL_PRICE = 1.0e-10
REL_TOL_PRICE = 5.0e-7
ABS_TOL_IV = 1.0e-8
REL_TOL_IV = 1.0e-6


# ── Underlying observations ─────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class UnderlyingObservation:
    """Observed price of the underlying at quote time."""

    value: float

    kind: ClassVar[UnderlyingKind]

    def __post_init__(self) -> None:
        value = float(self.value)
        if not np.isfinite(value) or value <= 0.0:
            raise MarketDataError(f"underlying price must be positive and finite, got {value}")
        object.__setattr__(self, "value", value)

    def spot_equivalent(self, discount_factor: float) -> float:
        """Spot price consistent with this observation (``F * DF`` for forwards)."""
        return self.value * discount_factor

    def forward(self, discount_factor: float) -> float:
        return self.value


@dataclass(frozen=True, slots=True)
class SpotObservation(UnderlyingObservation):
    kind: ClassVar[UnderlyingKind] = UnderlyingKind.SPOT

    def spot_equivalent(self, discount_factor: float) -> float:
        return self.value

    def forward(self, discount_factor: float) -> float:
        return self.value / discount_factor


@dataclass(frozen=True, slots=True)
class ForwardObservation(UnderlyingObservation):
    kind: ClassVar[UnderlyingKind] = UnderlyingKind.FORWARD


@dataclass(frozen=True, slots=True)
class FuturesObservation(UnderlyingObservation):
    """Futures price, treated as a forward (no convexity adjustment)."""

    kind: ClassVar[UnderlyingKind] = UnderlyingKind.FUTURES


# ── Policy ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class VolQuoteConfig:
    """Validation policy and numerical settings for building quotes.

    Attributes
    ==========
    price_iv_inconsistency:
        A side given as both price and vol that do not agree.
    missing_mid:
        Neither mid price nor mid vol supplied.
    price_monotonicity, iv_monotonicity:
        ``bid <= mid <= ask`` violated (checked only when all sides exist).
    iv_inversion_failure:
        A price whose implied vol cannot be backed out. Under WARN / IGNORE
        the vol is stored as NaN.
    iv_guess, iv_bounds:
        Implied-vol solver start and search interval.
    normalized_input:
        Prices are given as fractions of the forward and are converted to
        absolute prices (underlying units) before anything else.
    abs_tol_price, rel_tol_price, abs_tol_iv, rel_tol_iv:
        Consistency tolerances.
    """

    price_iv_inconsistency: ValidationHandling = ValidationHandling.WARN
    missing_mid: ValidationHandling = ValidationHandling.RAISE
    price_monotonicity: ValidationHandling = ValidationHandling.WARN
    iv_monotonicity: ValidationHandling = ValidationHandling.WARN
    iv_inversion_failure: ValidationHandling = ValidationHandling.RAISE
    iv_guess: float = DEFAULT_IV_GUESS
    iv_bounds: tuple[float, float] = DEFAULT_IV_BOUNDS
    normalized_input: bool = False
    abs_tol_price: float = ABS_TOL_PRICE
    rel_tol_price: float = REL_TOL_PRICE
    abs_tol_iv: float = ABS_TOL_IV
    rel_tol_iv: float = REL_TOL_IV

    def __post_init__(self) -> None:
        for rule in (
            "price_iv_inconsistency",
            "missing_mid",
            "price_monotonicity",
            "iv_monotonicity",
            "iv_inversion_failure",
        ):
            handling = getattr(self, rule)
            if isinstance(handling, str):
                object.__setattr__(self, rule, ValidationHandling(handling.lower()))
            elif not isinstance(handling, ValidationHandling):
                raise ConfigurationError(
                    f"{rule} must be a ValidationHandling, got {type(handling).__name__}"
                )
        low, high = self.iv_bounds
        if not 0.0 <= low < high:
            raise ConfigurationError(f"iv_bounds must satisfy 0 <= low < high, got {self.iv_bounds}")

    @classmethod
    def strict(cls) -> VolQuoteConfig:
        """Every rule raises."""
        return cls(
            price_iv_inconsistency=ValidationHandling.RAISE,
            missing_mid=ValidationHandling.RAISE,
            price_monotonicity=ValidationHandling.RAISE,
            iv_monotonicity=ValidationHandling.RAISE,
            iv_inversion_failure=ValidationHandling.RAISE,
        )

    def price_tolerance(self, price: float) -> float:
        return max(self.abs_tol_price, self.rel_tol_price * max(1.0, abs(price)))

    def iv_tolerance(self, iv: float) -> float:
        return max(self.abs_tol_iv, self.rel_tol_iv * max(1.0, abs(iv)))


def _apply_policy(handling: ValidationHandling, message: str) -> None:
    if handling is ValidationHandling.RAISE:
        raise MarketDataError(message)
    if handling is ValidationHandling.WARN:
        warnings.warn(message, MarketDataWarning, stacklevel=2)


def _is_missing(value: float) -> bool:
    return bool(np.isnan(value))


# ── Quote ───────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class VolQuote:
    """One option quote with bid/mid/ask prices and implied vols.

    Prices are absolute, in units of the underlying. ``interest_rate`` is the
    continuously-compounded zero rate from ``reference_date`` (the observation
    time) to the payoff expiry. Implied vols are Black-Scholes vols under
    ``iv_model`` against the spot-equivalent of the underlying observation.

    Construction resolves every side once; ``dataclasses.replace`` on a
    quote re-runs the resolution on the stored absolute prices.
    """

    payoff: VanillaOption
    underlying: UnderlyingObservation
    interest_rate: float
    reference_date: dt.datetime
    mid_price: float = np.nan
    bid_price: float = np.nan
    ask_price: float = np.nan
    mid_iv: float = np.nan
    bid_iv: float = np.nan
    ask_iv: float = np.nan
    source: str = "unknown"
    iv_model: PricingMethod = field(default_factory=BlackScholesAnalytic)
    config: VolQuoteConfig = field(default_factory=VolQuoteConfig)

    def __post_init__(self) -> None:
        if not isinstance(self.payoff, VanillaOption):
            raise ConfigurationError(
                f"payoff must be a VanillaOption, got {type(self.payoff).__name__}"
            )
        if not isinstance(self.underlying, UnderlyingObservation):
            raise ConfigurationError(
                f"underlying must be an UnderlyingObservation, got {type(self.underlying).__name__}"
            )
        if not isinstance(self.reference_date, dt.datetime):
            raise ConfigurationError(
                f"reference_date must be a datetime, got {type(self.reference_date).__name__}"
            )
        rate = float(self.interest_rate)
        if not np.isfinite(rate):
            raise MarketDataError(f"interest_rate must be finite, got {rate}")
        object.__setattr__(self, "interest_rate", rate)
        if self.ttm <= 0.0:
            raise MarketDataError(
                f"quote for expiry {self.payoff.expiry} observed at {self.reference_date} "
                "has already expired"
            )
        self._resolve()

    # ── Derivation ──────────────────────────────────────────────────

    def _price_from_iv(self, iv: float) -> float:
        return iv_to_price(
            self.payoff,
            self.spot_equivalent,
            self.interest_rate,
            iv,
            self.reference_date,
            self.iv_model,
        )

    def _iv_from_price(self, price: float) -> float:
        outcome = try_price_to_iv(
            self.payoff,
            self.spot_equivalent,
            self.interest_rate,
            price,
            self.reference_date,
            self.iv_model,
            guess=self.config.iv_guess,
            bounds=self.config.iv_bounds,
        )
        if not outcome.ok:
            _apply_policy(
                self.config.iv_inversion_failure,
                f"cannot invert price {price:.10g} for {self._label()}: {outcome.error}",
            )
        return outcome.implied_vol

    def _resolve_side(self, side: str, price: float, iv: float) -> tuple[float, float]:
        if not _is_missing(price) and not _is_missing(iv):
            price_check = self._price_from_iv(iv)
            if abs(price - price_check) > self.config.price_tolerance(price):
                _apply_policy(
                    self.config.price_iv_inconsistency,
                    f"inconsistent {side} price/iv for {self._label()}: price={price:.10g} "
                    f"price_from_iv={price_check:.10g} iv={iv:.6g}",
                )
            return price, iv
        if not _is_missing(price):
            return price, self._iv_from_price(price)
        if not _is_missing(iv):
            return self._price_from_iv(iv), iv
        return np.nan, np.nan

    def _resolve(self) -> None:
        config = self.config
        sides = {
            side: [float(getattr(self, f"{side}_price")), float(getattr(self, f"{side}_iv"))]
            for side in ("bid", "mid", "ask")
        }
        if config.normalized_input:
            forward = self.forward
            for values in sides.values():
                values[0] *= forward

        for side, (price, iv) in sides.items():
            if not _is_missing(price) and price < 0.0:
                raise MarketDataError(f"{side} price must be non-negative, got {price}")
            if not _is_missing(iv) and iv < 0.0:
                raise MarketDataError(f"{side} iv must be non-negative, got {iv}")

        mid_missing = _is_missing(sides["mid"][0]) and _is_missing(sides["mid"][1])
        if mid_missing:
            _apply_policy(
                config.missing_mid,
                f"quote for {self._label()} has neither mid price nor mid iv",
            )

        for side in ("bid", "ask"):
            sides[side] = list(self._resolve_side(side, *sides[side]))
        if mid_missing:
            bid, ask = sides["bid"][0], sides["ask"][0]
            if not _is_missing(bid) and not _is_missing(ask):
                sides["mid"][0] = 0.5 * (bid + ask)
        sides["mid"] = list(self._resolve_side("mid", *sides["mid"]))

        prices = [sides[side][0] for side in ("bid", "mid", "ask")]
        ivs = [sides[side][1] for side in ("bid", "mid", "ask")]
        if not any(map(_is_missing, prices)) and not prices[0] <= prices[1] <= prices[2]:
            _apply_policy(
                config.price_monotonicity,
                f"price monotonicity violated for {self._label()}: "
                f"bid={prices[0]:.10g} mid={prices[1]:.10g} ask={prices[2]:.10g}",
            )
        if not any(map(_is_missing, ivs)) and not ivs[0] <= ivs[1] <= ivs[2]:
            _apply_policy(
                config.iv_monotonicity,
                f"iv monotonicity violated for {self._label()}: "
                f"bid={ivs[0]:.6g} mid={ivs[1]:.6g} ask={ivs[2]:.6g}",
            )

        for side, (price, iv) in sides.items():
            object.__setattr__(self, f"{side}_price", float(price))
            object.__setattr__(self, f"{side}_iv", float(iv))
        if config.normalized_input:
            object.__setattr__(self, "config", replace(config, normalized_input=False))

    def _label(self) -> str:
        return (
            f"{self.payoff.option_type.value} K={self.payoff.strike:g} "
            f"expiry={self.payoff.expiry.isoformat()}"
        )

    # ── Accessors ───────────────────────────────────────────────────

    @property
    def expiry(self) -> dt.datetime:
        return self.payoff.expiry

    @property
    def strike(self) -> float:
        return self.payoff.strike

    @property
    def underlying_kind(self) -> UnderlyingKind:
        return self.underlying.kind

    @property
    def underlying_price(self) -> float:
        return self.underlying.value

    @property
    def ttm(self) -> float:
        return calculate_year_fraction(self.reference_date, self.payoff.expiry)

    @property
    def discount_factor(self) -> float:
        return float(np.exp(-self.interest_rate * self.ttm))

    @property
    def forward(self) -> float:
        return self.underlying.forward(self.discount_factor)

    @property
    def spot_equivalent(self) -> float:
        return self.underlying.spot_equivalent(self.discount_factor)

    @property
    def spread(self) -> float:
        """Ask minus bid price (NaN if either side is missing)."""
        return self.ask_price - self.bid_price

    @property
    def iv_spread(self) -> float:
        return self.ask_iv - self.bid_iv

    def iv_to_price(self, iv: float, *, normalize: bool = False) -> float:
        """Price under this quote's model, optionally as a fraction of the forward."""
        price = self._price_from_iv(iv)
        return price / self.forward if normalize else price

    def price_to_iv(self, price: float, *, normalized_input: bool = False) -> float:
        """Implied vol of ``price`` under this quote's market; raises on failure."""
        return try_price_to_iv(
            self.payoff,
            self.spot_equivalent,
            self.interest_rate,
            price,
            self.reference_date,
            self.iv_model,
            guess=self.config.iv_guess,
            bounds=self.config.iv_bounds,
            normalized_input=normalized_input,
        ).unwrap()

    def as_record(self) -> dict:
        """Flat mapping used for tabular views."""
        return {
            "expiry": self.payoff.expiry,
            "strike": self.payoff.strike,
            "option_type": self.payoff.option_type.value,
            "underlying_kind": self.underlying.kind.value,
            "underlying_price": self.underlying.value,
            "forward": self.forward,
            "interest_rate": self.interest_rate,
            "ttm": self.ttm,
            "bid_price": self.bid_price,
            "mid_price": self.mid_price,
            "ask_price": self.ask_price,
            "bid_iv": self.bid_iv,
            "mid_iv": self.mid_iv,
            "ask_iv": self.ask_iv,
            "timestamp": self.reference_date,
            "source": self.source,
        }
