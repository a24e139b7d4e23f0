"""Market quotes and the vol surfaces built from them."""

from .vol_quotes import (
    UnderlyingObservation,
    SpotObservation,
    ForwardObservation,
    FuturesObservation,
    VolQuoteConfig,
    VolQuote,
)
from .futures_curve import FuturesCurve, FlatForwardCurve
from .vol_surface import (
    SpotBasedInfo,
    FuturesBasedInfo,
    MarketVolSurface,
    build_futures_curve,
    filter_quotes,
)

__all__ = [
    "UnderlyingObservation",
    "SpotObservation",
    "ForwardObservation",
    "FuturesObservation",
    "VolQuoteConfig",
    "VolQuote",
    "FuturesCurve",
    "FlatForwardCurve",
    "SpotBasedInfo",
    "FuturesBasedInfo",
    "MarketVolSurface",
    "build_futures_curve",
    "filter_quotes",
]
