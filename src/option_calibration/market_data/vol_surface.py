"""A snapshot of option quotes sharing one reference date and one underlying model."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
import datetime as dt
import logging
import warnings

import numpy as np
import pandas as pd

from ..enums import OptionType, UnderlyingKind
from ..exceptions import ConfigurationError, MarketDataError, MarketDataWarning
from ..rates import DiscountCurve
from ..utils import calculate_year_fraction
from .futures_curve import FlatForwardCurve, FuturesCurve
from .vol_quotes import VolQuote

__all__ = [
    "SpotBasedInfo",
    "FuturesBasedInfo",
    "MarketVolSurface",
    "filter_quotes",
    "build_futures_curve",
]

logger = logging.getLogger(__name__)

DEFAULT_UNDERLYING_PRICE_TOLERANCE = 1.0e-4


@dataclass(frozen=True, slots=True)
class SpotBasedInfo:
    """One spot price plus a discount curve anchored at the surface date."""

    spot: float
    rate_curve: DiscountCurve

    def forward(self, ttm: float) -> float:
        return self.spot / float(self.rate_curve.df(max(ttm, 0.0)))


@dataclass(frozen=True, slots=True)
class FuturesBasedInfo:
    """Forward prices read off a futures curve."""

    futures_curve: FuturesCurve | FlatForwardCurve

    def forward(self, ttm: float) -> float:
        return float(self.futures_curve.forward(ttm))


UnderlyingInfo = SpotBasedInfo | FuturesBasedInfo


def filter_quotes(
    quotes: Iterable[VolQuote],
    *,
    min_ttm: float | None = None,
    max_ttm: float | None = None,
    min_strike: float | None = None,
    max_strike: float | None = None,
    option_type: OptionType | None = None,
    expiries: Iterable[dt.datetime] | None = None,
    require_bid_ask: bool = False,
    predicate: Callable[[VolQuote], bool] | None = None,
) -> list[VolQuote]:
    """Select quotes matching every given criterion, keeping their order.

    ``min_ttm`` / ``max_ttm`` use each quote's own time to expiry.
    """
    wanted_expiries = None if expiries is None else set(expiries)
    selected = []
    for quote in quotes:
        ttm = quote.ttm
        if min_ttm is not None and ttm < min_ttm:
            continue
        if max_ttm is not None and ttm > max_ttm:
            continue
        if min_strike is not None and quote.strike < min_strike:
            continue
        if max_strike is not None and quote.strike > max_strike:
            continue
        if option_type is not None and quote.payoff.option_type is not option_type:
            continue
        if wanted_expiries is not None and quote.expiry not in wanted_expiries:
            continue
        if require_bid_ask and (np.isnan(quote.bid_price) or np.isnan(quote.ask_price)):
            continue
        if predicate is not None and not predicate(quote):
            continue
        selected.append(quote)
    return selected


def _underlying_frame(quotes: list[VolQuote]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "expiry": [q.expiry for q in quotes],
            "underlying_price": [q.underlying_price for q in quotes],
        }
    )


def build_futures_curve(
    quotes: list[VolQuote],
    reference_date: dt.datetime,
    tolerance: float = DEFAULT_UNDERLYING_PRICE_TOLERANCE,
) -> FuturesCurve:
    """Average the quotes' underlying prices per expiry into a futures curve.

    Warns when the prices quoted for one expiry deviate from their mean by
    more than ``tolerance`` (relative).
    """
    if not quotes:
        raise MarketDataError("cannot build a futures curve from no quotes")
    stats = (
        _underlying_frame(quotes)
        .groupby("expiry")["underlying_price"]
        .agg(["mean", "min", "max", "count"])
        .sort_index()
    )
    deviation = np.maximum(stats["max"] - stats["mean"], stats["mean"] - stats["min"])
    relative = deviation / stats["mean"]
    for expiry, row in stats[relative > tolerance].iterrows():
        warnings.warn(
            f"inconsistent underlying prices at expiry {expiry}: mean={row['mean']:.10g} "
            f"min={row['min']:.10g} max={row['max']:.10g} n_quotes={int(row['count'])}",
            MarketDataWarning,
            stacklevel=2,
        )
    tenors = [calculate_year_fraction(reference_date, expiry) for expiry in stats.index]
    return FuturesCurve(reference_date, np.array(tenors), stats["mean"].to_numpy())


class MarketVolSurface:
    """Ordered quotes sharing one reference date and one underlying model.

    Parameters
    ==========
    quotes:
        Quotes with a single underlying kind. Forward observations are
        treated as futures.
    reference_date:
        Surface date; defaults to the latest quote timestamp.
    spot, rate_curve:
        Required for spot-observed quotes. ``rate_curve`` may be a float
        (flat rate).
    futures_curve:
        Optional curve for futures-observed quotes; built from the quotes
        when omitted.
    timestamp_tolerance:
        Warn when quote timestamps (or the given reference date) spread
        further apart than this.
    underlying_price_tolerance:
        Relative tolerance for underlying prices that should agree.

    Raises
    ======
    MarketDataError
        No quotes, or quotes mixing spot and futures observations.
    ConfigurationError
        Spot-observed quotes without ``spot`` and ``rate_curve``.
    """

    def __init__(
        self,
        quotes: Iterable[VolQuote],
        *,
        reference_date: dt.datetime | None = None,
        spot: float | None = None,
        rate_curve: DiscountCurve | float | None = None,
        futures_curve: FuturesCurve | FlatForwardCurve | None = None,
        timestamp_tolerance: dt.timedelta | None = None,
        underlying_price_tolerance: float = DEFAULT_UNDERLYING_PRICE_TOLERANCE,
    ):
        quotes = list(quotes)
        if not quotes:
            raise MarketDataError("cannot create a MarketVolSurface from no quotes")
        if not all(isinstance(q, VolQuote) for q in quotes):
            raise ConfigurationError("quotes must be VolQuote instances")

        kinds = {q.underlying_kind for q in quotes}
        if len(kinds) > 1:
            raise MarketDataError(
                f"mixed underlying kinds in quotes: {sorted(k.value for k in kinds)}"
            )
        kind = kinds.pop()
        if kind is UnderlyingKind.FORWARD:
            warnings.warn(
                "forward observations are treated as futures", MarketDataWarning, stacklevel=2
            )
            kind = UnderlyingKind.FUTURES

        earliest = min(q.reference_date for q in quotes)
        latest = max(q.reference_date for q in quotes)
        if timestamp_tolerance is not None and latest - earliest > timestamp_tolerance:
            warnings.warn(
                f"quote timestamps span {latest - earliest}, exceeding {timestamp_tolerance}",
                MarketDataWarning,
                stacklevel=2,
            )
        if reference_date is None:
            reference_date = latest
        elif timestamp_tolerance is not None:
            distance = max(abs(reference_date - earliest), abs(reference_date - latest))
            if distance > timestamp_tolerance:
                warnings.warn(
                    f"reference date {reference_date} is {distance} from the quote timestamps",
                    MarketDataWarning,
                    stacklevel=2,
                )

        if kind is UnderlyingKind.FUTURES:
            if futures_curve is None:
                futures_curve = build_futures_curve(
                    quotes, reference_date, underlying_price_tolerance
                )
            info: UnderlyingInfo = FuturesBasedInfo(futures_curve)
            self._check_forwards(quotes, info, reference_date, underlying_price_tolerance)
        else:
            if spot is None or rate_curve is None:
                raise ConfigurationError(
                    "spot-observed quotes need both `spot` and `rate_curve`"
                )
            if not isinstance(rate_curve, DiscountCurve):
                rate_curve = DiscountCurve.flat(float(rate_curve))
            info = SpotBasedInfo(float(spot), rate_curve)
            self._check_spot(quotes, float(spot), underlying_price_tolerance)

        self.quotes: tuple[VolQuote, ...] = tuple(quotes)
        self.reference_date: dt.datetime = reference_date
        self.underlying_info: UnderlyingInfo = info
        self.underlying_kind: UnderlyingKind = kind
        logger.debug(
            "MarketVolSurface quotes=%d expiries=%d kind=%s reference_date=%s",
            len(self.quotes),
            len(self.expiries),
            kind.value,
            reference_date.isoformat(),
        )

    @staticmethod
    def _check_spot(quotes: list[VolQuote], spot: float, tolerance: float) -> None:
        prices = np.array([q.underlying_price for q in quotes])
        mean = prices.mean()
        if abs(spot - mean) / mean > tolerance:
            warnings.warn(
                f"spot {spot:.10g} differs from the quoted underlying mean {mean:.10g}",
                MarketDataWarning,
                stacklevel=3,
            )
        if (prices.max() - prices.min()) / mean > tolerance:
            warnings.warn(
                f"quoted underlying prices range from {prices.min():.10g} to {prices.max():.10g}",
                MarketDataWarning,
                stacklevel=3,
            )

    @staticmethod
    def _check_forwards(
        quotes: list[VolQuote],
        info: FuturesBasedInfo,
        reference_date: dt.datetime,
        tolerance: float,
    ) -> None:
        means = _underlying_frame(quotes).groupby("expiry")["underlying_price"].mean()
        for expiry, mean in means.items():
            curve_value = info.forward(calculate_year_fraction(reference_date, expiry))
            if abs(curve_value - mean) / mean > tolerance:
                warnings.warn(
                    f"futures curve gives {curve_value:.10g} at {expiry}, "
                    f"quotes average {mean:.10g}",
                    MarketDataWarning,
                    stacklevel=3,
                )

    # ── Queries ─────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self.quotes)

    def __iter__(self) -> Iterator[VolQuote]:
        return iter(self.quotes)

    def __repr__(self) -> str:
        return (
            f"MarketVolSurface(quotes={len(self.quotes)}, expiries={len(self.expiries)}, "
            f"kind={self.underlying_kind.value}, reference_date={self.reference_date.isoformat()})"
        )

    @property
    def expiries(self) -> list[dt.datetime]:
        return sorted({q.expiry for q in self.quotes})

    def strikes(self, expiry: dt.datetime) -> list[float]:
        return sorted({q.strike for q in self.quotes if q.expiry == expiry})

    def get_quote(
        self, expiry: dt.datetime, strike: float, option_type: OptionType | None = None
    ) -> VolQuote:
        """The quote at ``(expiry, strike)``; ``option_type`` disambiguates calls and puts."""
        matches = [
            q
            for q in self.quotes
            if q.expiry == expiry
            and np.isclose(q.strike, strike)
            and (option_type is None or q.payoff.option_type is option_type)
        ]
        if not matches:
            raise KeyError(f"no quote at expiry={expiry} strike={strike}")
        if len(matches) > 1:
            raise KeyError(
                f"{len(matches)} quotes at expiry={expiry} strike={strike}; pass option_type"
            )
        return matches[0]

    def ttm(self, expiry: dt.datetime) -> float:
        return calculate_year_fraction(self.reference_date, expiry)

    def forward(self, expiry: dt.datetime) -> float:
        """Forward price for ``expiry`` from the surface's underlying model."""
        return self.underlying_info.forward(self.ttm(expiry))

    def filter(self, **criteria) -> MarketVolSurface:
        """New surface with the quotes selected by :func:`filter_quotes`.

        The reference date and underlying model are kept.
        """
        selected = filter_quotes(self.quotes, **criteria)
        if not selected:
            raise MarketDataError(f"no quotes left after filtering with {criteria}")
        info = self.underlying_info
        if isinstance(info, SpotBasedInfo):
            return MarketVolSurface(
                selected,
                reference_date=self.reference_date,
                spot=info.spot,
                rate_curve=info.rate_curve,
            )
        return MarketVolSurface(
            selected, reference_date=self.reference_date, futures_curve=info.futures_curve
        )

    def to_frame(self) -> pd.DataFrame:
        """One row per quote, sorted by expiry and strike."""
        frame = pd.DataFrame.from_records([q.as_record() for q in self.quotes])
        return frame.sort_values(["expiry", "strike"], kind="stable").reset_index(drop=True)

    def summary(self) -> dict:
        strikes = np.array([q.strike for q in self.quotes])
        mid_ivs = np.array([q.mid_iv for q in self.quotes])
        return {
            "n_quotes": len(self.quotes),
            "n_expiries": len(self.expiries),
            "reference_date": self.reference_date,
            "underlying_kind": self.underlying_kind.value,
            "first_expiry": self.expiries[0],
            "last_expiry": self.expiries[-1],
            "min_strike": float(strikes.min()),
            "max_strike": float(strikes.max()),
            "mean_mid_iv": float(np.nanmean(mid_ivs)) if np.any(~np.isnan(mid_ivs)) else np.nan,
        }
