"""Calibration of market-input parameters to observed prices.

Implied-vol inversion, Heston surface fits and basket fits are all instances
of :class:`CalibrationProblem` solved by :func:`solve`; they differ only in
their lenses and bounds.
"""

from .lenses import Lens, HESTON_LENSES, apply_lenses
from .core import CalibrationProblem, CalibrationResult, Optimizer, RootFinder, solve
from .implied_volatility import (
    FallbackVol,
    ImpliedVolOutcome,
    implied_vol_or_fallback,
    iv_to_price,
    price_to_iv,
    try_price_to_iv,
)
from .heston import (
    DEFAULT_HESTON_LOWER_BOUNDS,
    DEFAULT_HESTON_UPPER_BOUNDS,
    HestonCalibrationResult,
    calibrate_heston,
    infer_spot,
)
from .fit_statistics import FitStatistics, compute_fit_statistics, summary_frame

__all__ = [
    "Lens",
    "HESTON_LENSES",
    "apply_lenses",
    "CalibrationProblem",
    "CalibrationResult",
    "Optimizer",
    "RootFinder",
    "solve",
    "FallbackVol",
    "ImpliedVolOutcome",
    "implied_vol_or_fallback",
    "iv_to_price",
    "price_to_iv",
    "try_price_to_iv",
    "DEFAULT_HESTON_LOWER_BOUNDS",
    "DEFAULT_HESTON_UPPER_BOUNDS",
    "HestonCalibrationResult",
    "calibrate_heston",
    "infer_spot",
    "FitStatistics",
    "compute_fit_statistics",
    "summary_frame",
]
