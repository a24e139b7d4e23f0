"""Tests for vol surfaces and futures curves."""

import datetime as dt
import warnings

import numpy as np
import pandas as pd
import pytest

from option_calibration.enums import OptionType, UnderlyingKind
from option_calibration.exceptions import (
    ConfigurationError,
    MarketDataError,
    MarketDataWarning,
    ValidationError,
)
from option_calibration.market_data import (
    FlatForwardCurve,
    ForwardObservation,
    FuturesCurve,
    FuturesObservation,
    MarketVolSurface,
    VolQuote,
    build_futures_curve,
    filter_quotes,
)
from option_calibration.payoffs import VanillaOption
from option_calibration.tests.helpers import expiry_after, make_quote

REFERENCE_DATE = dt.datetime(2025, 1, 1)
EXPIRIES = [expiry_after(REFERENCE_DATE, t) for t in (0.5, 1.0)]
STRIKES = (90.0, 100.0, 110.0)
RATE = 0.03


def _spot_quotes(spot=100.0):
    return [
        make_quote(k, expiry, reference_date=REFERENCE_DATE, spot=spot, rate=RATE, mid_iv=0.2 + 0.01 * i)
        for i, expiry in enumerate(EXPIRIES)
        for k in STRIKES
    ]


def _futures_quote(strike, expiry, futures_price, option_type=OptionType.CALL, **sides):
    sides.setdefault("mid_iv", 0.25)
    return VolQuote(
        payoff=VanillaOption(strike, expiry, option_type),
        underlying=FuturesObservation(futures_price),
        interest_rate=RATE,
        reference_date=REFERENCE_DATE,
        **sides,
    )


class TestSurfaceConstruction:
    def test_spot_surface(self):
        surface = MarketVolSurface(_spot_quotes(), spot=100.0, rate_curve=RATE)
        assert len(surface) == 6
        assert surface.underlying_kind is UnderlyingKind.SPOT
        assert surface.reference_date == REFERENCE_DATE
        assert surface.expiries == EXPIRIES
        assert surface.forward(EXPIRIES[1]) == pytest.approx(100.0 * np.exp(RATE))

    def test_empty(self):
        with pytest.raises(MarketDataError, match="no quotes"):
            MarketVolSurface([], spot=100.0, rate_curve=RATE)

    def test_mixed_kinds(self):
        quotes = _spot_quotes()[:1] + [_futures_quote(100.0, EXPIRIES[0], 101.5)]
        with pytest.raises(MarketDataError, match="mixed underlying kinds"):
            MarketVolSurface(quotes, spot=100.0, rate_curve=RATE)

    def test_spot_quotes_need_spot_and_curve(self):
        with pytest.raises(ConfigurationError, match="need both"):
            MarketVolSurface(_spot_quotes())

    def test_spot_disagreeing_with_quotes(self):
        with pytest.warns(MarketDataWarning, match="differs from the quoted underlying"):
            MarketVolSurface(_spot_quotes(), spot=101.0, rate_curve=RATE)

    def test_reference_date_defaults_to_latest_timestamp(self):
        later = REFERENCE_DATE + dt.timedelta(hours=2)
        quotes = _spot_quotes()[:2] + [
            make_quote(100.0, EXPIRIES[1], reference_date=later, rate=RATE, mid_iv=0.2)
        ]
        surface = MarketVolSurface(quotes, spot=100.0, rate_curve=RATE)
        assert surface.reference_date == later

    def test_timestamp_spread_warning(self):
        later = REFERENCE_DATE + dt.timedelta(hours=2)
        quotes = _spot_quotes()[:2] + [
            make_quote(100.0, EXPIRIES[1], reference_date=later, rate=RATE, mid_iv=0.2)
        ]
        with pytest.warns(MarketDataWarning, match="quote timestamps span"):
            MarketVolSurface(
                quotes, spot=100.0, rate_curve=RATE, timestamp_tolerance=dt.timedelta(minutes=5)
            )

    def test_forward_quotes_treated_as_futures(self):
        quote = VolQuote(
            payoff=VanillaOption(100.0, EXPIRIES[0], OptionType.CALL),
            underlying=ForwardObservation(101.5),
            interest_rate=RATE,
            reference_date=REFERENCE_DATE,
            mid_iv=0.25,
        )
        with pytest.warns(MarketDataWarning, match="treated as futures"):
            surface = MarketVolSurface([quote])
        assert surface.underlying_kind is UnderlyingKind.FUTURES
        assert surface.forward(EXPIRIES[0]) == pytest.approx(101.5)


class TestFuturesSurface:
    """Futures-observed quotes build their own forward curve."""

    def setup_method(self):
        self.quotes = [
            _futures_quote(k, EXPIRIES[0], 101.0) for k in STRIKES
        ] + [_futures_quote(k, EXPIRIES[1], 103.0) for k in STRIKES]

    def test_curve_built_from_quotes(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error", MarketDataWarning)
            surface = MarketVolSurface(self.quotes)
        assert surface.forward(EXPIRIES[0]) == pytest.approx(101.0)
        assert surface.forward(EXPIRIES[1]) == pytest.approx(103.0)
        midway = surface.underlying_info.forward(0.75)
        assert midway == pytest.approx(102.0)

    def test_inconsistent_prices_at_one_expiry(self):
        quotes = self.quotes + [_futures_quote(95.0, EXPIRIES[0], 101.5)]
        with pytest.warns(MarketDataWarning, match="inconsistent underlying prices"):
            build_futures_curve(quotes, REFERENCE_DATE)

    def test_given_curve_checked_against_quotes(self):
        curve = FlatForwardCurve(101.0)
        with pytest.warns(MarketDataWarning, match="futures curve gives"):
            MarketVolSurface(self.quotes, futures_curve=curve)

    def test_build_requires_quotes(self):
        with pytest.raises(MarketDataError, match="no quotes"):
            build_futures_curve([], REFERENCE_DATE)


class TestSurfaceQueries:
    def setup_method(self):
        quotes = _spot_quotes()
        quotes.append(
            make_quote(
                100.0,
                EXPIRIES[0],
                reference_date=REFERENCE_DATE,
                rate=RATE,
                option_type=OptionType.PUT,
                bid_iv=0.19,
                mid_iv=0.2,
                ask_iv=0.21,
            )
        )
        self.surface = MarketVolSurface(quotes, spot=100.0, rate_curve=RATE)

    def test_get_quote(self):
        quote = self.surface.get_quote(EXPIRIES[1], 110.0)
        assert quote.strike == 110.0
        assert quote.mid_iv == pytest.approx(0.21)

    def test_get_quote_missing(self):
        with pytest.raises(KeyError, match="no quote"):
            self.surface.get_quote(EXPIRIES[1], 105.0)

    def test_get_quote_ambiguous(self):
        with pytest.raises(KeyError, match="pass option_type"):
            self.surface.get_quote(EXPIRIES[0], 100.0)
        put = self.surface.get_quote(EXPIRIES[0], 100.0, OptionType.PUT)
        assert put.payoff.option_type is OptionType.PUT

    def test_strikes(self):
        assert self.surface.strikes(EXPIRIES[0]) == [90.0, 100.0, 110.0]

    def test_filter(self):
        filtered = self.surface.filter(min_strike=95.0, option_type=OptionType.CALL)
        assert len(filtered) == 4
        assert filtered.reference_date == self.surface.reference_date
        assert len(self.surface.filter(require_bid_ask=True)) == 1
        assert len(self.surface.filter(max_ttm=0.75)) == 4
        assert len(self.surface.filter(expiries=[EXPIRIES[1]])) == 3

    def test_filter_to_nothing(self):
        with pytest.raises(MarketDataError, match="no quotes left"):
            self.surface.filter(min_strike=1000.0)

    def test_filter_quotes_predicate(self):
        selected = filter_quotes(self.surface.quotes, predicate=lambda q: q.mid_iv > 0.205)
        assert all(q.expiry == EXPIRIES[1] for q in selected)

    def test_to_frame(self):
        frame = self.surface.to_frame()
        assert isinstance(frame, pd.DataFrame)
        assert len(frame) == 7
        assert list(frame["strike"].iloc[:4]) == [90.0, 100.0, 100.0, 110.0]
        assert {"bid_iv", "mid_price", "underlying_kind", "source"} <= set(frame.columns)

    def test_summary(self):
        summary = self.surface.summary()
        assert summary["n_quotes"] == 7
        assert summary["n_expiries"] == 2
        assert summary["min_strike"] == 90.0
        assert summary["max_strike"] == 110.0
        assert summary["first_expiry"] == EXPIRIES[0]
        assert summary["underlying_kind"] == "spot"

    def test_repr(self):
        assert "quotes=7" in repr(self.surface)


class TestFuturesCurve:
    def setup_method(self):
        self.curve = FuturesCurve(REFERENCE_DATE, np.array([0.5, 1.0]), np.array([101.0, 103.0]))

    def test_linear_interpolation(self):
        assert self.curve.forward(0.75) == pytest.approx(102.0)
        np.testing.assert_allclose(self.curve.forward(np.array([0.5, 1.0])), [101.0, 103.0])

    def test_flat_extrapolation(self):
        assert self.curve.forward(0.1) == 101.0
        assert self.curve.forward(5.0) == 103.0

    def test_forward_at_date(self):
        assert self.curve.forward_at(EXPIRIES[1]) == pytest.approx(103.0)

    @pytest.mark.parametrize(
        "tenors, prices, match",
        [
            ([], [], "at least one tenor"),
            ([1.0, 0.5], [100.0, 100.0], "strictly increasing"),
            ([-0.1, 0.5], [100.0, 100.0], "non-negative"),
            ([0.5, 1.0], [100.0, 0.0], "positive and finite"),
            ([0.5, 1.0], [100.0], "same length"),
        ],
    )
    def test_invalid_curve(self, tenors, prices, match):
        with pytest.raises(ValidationError, match=match):
            FuturesCurve(REFERENCE_DATE, tenors, prices)

    def test_flat_forward_curve(self):
        curve = FlatForwardCurve(100.0)
        assert curve.forward(3.0) == 100.0
        np.testing.assert_allclose(curve.forward(np.array([0.1, 2.0])), 100.0)
        with pytest.raises(ValidationError):
            FlatForwardCurve(-1.0)
