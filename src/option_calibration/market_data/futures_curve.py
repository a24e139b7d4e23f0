"""Forward / futures price curves indexed by year fraction."""

from __future__ import annotations

from dataclasses import dataclass
import datetime as dt

import numpy as np

from ..exceptions import ValidationError
from ..utils import calculate_year_fraction

__all__ = ["FuturesCurve", "FlatForwardCurve"]


@dataclass(frozen=True, slots=True)
class FuturesCurve:
    """Futures prices interpolated linearly in year fraction.

    Outside ``[tenors[0], tenors[-1]]`` the curve is flat at the nearest node.

    Attributes
    ==========
    reference_date:
        Date the tenors are measured from.
    tenors:
        Strictly increasing, non-negative year fractions.
    forward_prices:
        Positive futures prices, one per tenor.
    """

    reference_date: dt.datetime
    tenors: np.ndarray
    forward_prices: np.ndarray

    def __post_init__(self) -> None:
        tenors = np.atleast_1d(np.asarray(self.tenors, dtype=float))
        prices = np.atleast_1d(np.asarray(self.forward_prices, dtype=float))
        if tenors.size == 0:
            raise ValidationError("a futures curve needs at least one tenor")
        if tenors.shape != prices.shape or tenors.ndim != 1:
            raise ValidationError("tenors and forward_prices must be 1D arrays of the same length")
        if np.any(np.diff(tenors) <= 0.0):
            raise ValidationError("tenors must be strictly increasing")
        if tenors[0] < 0.0:
            raise ValidationError("tenors must be non-negative")
        if np.any(prices <= 0.0) or not np.all(np.isfinite(prices)):
            raise ValidationError("forward prices must be positive and finite")
        object.__setattr__(self, "tenors", tenors)
        object.__setattr__(self, "forward_prices", prices)

    def forward(self, t: float | np.ndarray) -> float | np.ndarray:
        """Forward price at year fraction ``t``."""
        values = np.interp(np.asarray(t, dtype=float), self.tenors, self.forward_prices)
        return float(values) if np.ndim(values) == 0 else values

    def forward_at(self, expiry: dt.datetime) -> float:
        return float(self.forward(calculate_year_fraction(self.reference_date, expiry)))


@dataclass(frozen=True, slots=True)
class FlatForwardCurve:
    """The same forward price at every tenor."""

    forward_price: float
    reference_date: dt.datetime | None = None

    def __post_init__(self) -> None:
        price = float(self.forward_price)
        if not np.isfinite(price) or price <= 0.0:
            raise ValidationError(f"forward price must be positive and finite, got {price}")
        object.__setattr__(self, "forward_price", price)

    def forward(self, t: float | np.ndarray) -> float | np.ndarray:
        if np.ndim(t) == 0:
            return self.forward_price
        return np.full(np.shape(t), self.forward_price)

    def forward_at(self, expiry: dt.datetime) -> float:
        return self.forward_price
