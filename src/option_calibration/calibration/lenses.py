"""Named scalar fields of market inputs that calibration can vary.

A lens reads one scalar from a market-input value and builds a *new* value
with that scalar replaced. Market inputs are never mutated.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum

from ..exceptions import ConfigurationError
from ..market_inputs import BlackScholesInputs, HestonInputs, MarketInputs
from ..rates import DiscountCurve

__all__ = ["Lens", "HESTON_LENSES", "apply_lenses"]

_BOTH = (BlackScholesInputs, HestonInputs)


class Lens(Enum):
    """Scalar field of a market-input value.

    ``RATE`` addresses the continuously-compounded rate of a flat curve;
    setting it replaces the curve with ``DiscountCurve.flat(value)``.
    """

    SPOT = ("spot", _BOTH)
    RATE = ("rate_curve", _BOTH)
    VOLATILITY = ("volatility", (BlackScholesInputs,))
    V0 = ("v0", (HestonInputs,))
    KAPPA = ("kappa", (HestonInputs,))
    THETA = ("theta", (HestonInputs,))
    SIGMA = ("sigma", (HestonInputs,))
    RHO = ("rho", (HestonInputs,))

    def __init__(self, field_name: str, market_types: tuple[type, ...]) -> None:
        self.field_name = field_name
        self.market_types = market_types

    def check(self, market: MarketInputs) -> None:
        if not isinstance(market, self.market_types):
            raise ConfigurationError(
                f"lens {self.name} does not apply to {type(market).__name__}"
            )

    def get(self, market: MarketInputs) -> float:
        self.check(market)
        if self is Lens.RATE:
            curve = market.rate_curve
            if not curve.is_flat:
                raise ConfigurationError("the RATE lens needs a flat discount curve")
            return curve.zero_rate(0.0)
        value = getattr(market, self.field_name)
        if callable(value):
            raise ConfigurationError(f"{self.field_name} is a surface, not a scalar")
        return float(value)

    def updated_value(self, value: float):
        if self is Lens.RATE:
            return DiscountCurve.flat(float(value))
        return float(value)

    def set(self, market: MarketInputs, value: float) -> MarketInputs:
        """Return a copy of ``market`` with this field set to ``value``."""
        self.check(market)
        return market.replace(**{self.field_name: self.updated_value(value)})


HESTON_LENSES: tuple[Lens, ...] = (Lens.V0, Lens.KAPPA, Lens.THETA, Lens.SIGMA, Lens.RHO)


def apply_lenses(
    market: MarketInputs, lenses: Sequence[Lens], values: Sequence[float]
) -> MarketInputs:
    """Set every lens to its value in one validated copy of ``market``."""
    if len(lenses) != len(values):
        raise ConfigurationError(
            f"got {len(values)} values for {len(lenses)} lenses"
        )
    for lens in lenses:
        lens.check(market)
    changes = {lens.field_name: lens.updated_value(v) for lens, v in zip(lenses, values)}
    return market.replace(**changes)
