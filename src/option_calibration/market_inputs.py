"""Risk-neutral market inputs consumed by the pricing methods.

Market inputs are small immutable values. Calibration never mutates them in
place: every parameter update goes through :meth:`replace` and yields a new
object, so instances can be shared freely between worker threads.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
import datetime as dt

import numpy as np

from .enums import DayCountConvention
from .exceptions import ConfigurationError, ValidationError
from .rates import DiscountCurve
from .utils import calculate_year_fraction

__all__ = [
    "BlackScholesInputs",
    "HestonInputs",
    "MarketInputs",
    "VolatilitySurfaceFn",
    "HESTON_PARAMETER_NAMES",
]

# (strike, time_to_expiry) -> annualised volatility
VolatilitySurfaceFn = Callable[[float, float], float]

HESTON_PARAMETER_NAMES = ("v0", "kappa", "theta", "sigma", "rho")


def _require_positive(name: str, value: float) -> float:
    value = float(value)
    if not np.isfinite(value) or value <= 0.0:
        raise ValidationError(f"{name} must be positive and finite, got {value}")
    return value


class _MarketInputsMixin:
    """Date and discounting helpers shared by every market-input type."""

    __slots__ = ()

    def _validate_common(self) -> None:
        if not isinstance(self.reference_date, dt.datetime):
            raise ConfigurationError(
                f"reference_date must be a datetime, got {type(self.reference_date).__name__}"
            )
        curve = self.rate_curve
        if isinstance(curve, (int, float)) and not isinstance(curve, bool):
            if not np.isfinite(float(curve)):
                raise ValidationError("a flat rate must be finite")
            object.__setattr__(self, "rate_curve", DiscountCurve.flat(float(curve)))
        elif not isinstance(curve, DiscountCurve):
            raise ConfigurationError(
                f"rate_curve must be a DiscountCurve or a float, got {type(curve).__name__}"
            )
        object.__setattr__(self, "spot", _require_positive("spot", self.spot))
        convention = self.day_count_convention
        if not isinstance(convention, DayCountConvention):
            try:
                convention = DayCountConvention(convention)
            except ValueError as exc:
                raise ConfigurationError(f"unknown day_count_convention {convention!r}") from exc
            object.__setattr__(self, "day_count_convention", convention)

    def year_fraction(self, expiry: dt.datetime) -> float:
        """Year fraction from the reference date to ``expiry`` under the input's day count."""
        return calculate_year_fraction(self.reference_date, expiry, self.day_count_convention)

    def discount_factor(self, expiry: dt.datetime) -> float:
        return float(self.rate_curve.df(max(self.year_fraction(expiry), 0.0)))

    def forward(self, expiry: dt.datetime) -> float:
        """Forward price of the (non-dividend-paying) underlying for ``expiry``."""
        return self.spot / self.discount_factor(expiry)

    def replace(self, **changes):
        """Return a copy with ``changes`` applied (validation runs again)."""
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class BlackScholesInputs(_MarketInputsMixin):
    """Lognormal market: spot, rate curve and a (possibly surface-valued) volatility.

    Attributes
    ==========
    reference_date:
        Valuation date; all year fractions are measured from it.
    rate_curve:
        Discount curve anchored at ``reference_date``. A float is
        interpreted as a flat continuously-compounded rate.
    spot:
        Spot price of the underlying (> 0).
    volatility:
        Annualised volatility (>= 0) or a callable ``(strike, ttm) -> vol``.
    day_count_convention:
        Basis for year fractions to expiry. Quotes use ACT/365F.
    """

    reference_date: dt.datetime
    rate_curve: DiscountCurve | float
    spot: float
    volatility: float | VolatilitySurfaceFn
    day_count_convention: DayCountConvention | str = DayCountConvention.ACT_365F

    def __post_init__(self) -> None:
        self._validate_common()
        if callable(self.volatility):
            return
        vol = float(self.volatility)
        if not np.isfinite(vol) or vol < 0.0:
            raise ValidationError(f"volatility must be non-negative and finite, got {vol}")
        object.__setattr__(self, "volatility", vol)

    def sigma_for(self, strike: float, ttm: float) -> float:
        """Resolve the volatility for one strike / time to expiry."""
        if not callable(self.volatility):
            return self.volatility
        vol = float(self.volatility(strike, ttm))
        if not np.isfinite(vol) or vol < 0.0:
            raise ValidationError(
                f"volatility surface returned {vol} for strike={strike}, ttm={ttm}"
            )
        return vol


@dataclass(frozen=True, slots=True)
class HestonInputs(_MarketInputsMixin):
    """Heston (1993) stochastic-volatility market.

    dS_t = r S_t dt + sqrt(v_t) S_t dW^S_t
    dv_t = kappa (theta - v_t) dt + sigma sqrt(v_t) dW^v_t,   d<W^S, W^v> = rho dt

    The Feller condition ``2 kappa theta >= sigma**2`` is not enforced. When it
    fails the variance process can touch zero, which makes Euler schemes biased
    and the characteristic function harder to integrate; see
    :attr:`feller_satisfied`.
    """

    reference_date: dt.datetime
    rate_curve: DiscountCurve | float
    spot: float
    v0: float
    kappa: float
    theta: float
    sigma: float
    rho: float
    day_count_convention: DayCountConvention | str = DayCountConvention.ACT_365F

    def __post_init__(self) -> None:
        self._validate_common()
        for name in ("v0", "kappa", "theta", "sigma"):
            object.__setattr__(self, name, _require_positive(name, getattr(self, name)))
        rho = float(self.rho)
        if not np.isfinite(rho) or not -1.0 < rho < 1.0:
            raise ValidationError(f"rho must lie in (-1, 1), got {rho}")
        object.__setattr__(self, "rho", rho)

    @property
    def feller_satisfied(self) -> bool:
        return 2.0 * self.kappa * self.theta >= self.sigma**2

    @property
    def parameters(self) -> tuple[float, float, float, float, float]:
        """``(v0, kappa, theta, sigma, rho)``."""
        return (self.v0, self.kappa, self.theta, self.sigma, self.rho)


MarketInputs = BlackScholesInputs | HestonInputs
