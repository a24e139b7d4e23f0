"""Enums for option pricing and calibration."""

from enum import Enum

__all__ = [
    "OptionType",
    "ExerciseType",
    "Dynamics",
    "SimulationScheme",
    "ImpliedVolMethod",
    "UnderlyingKind",
    "ValidationHandling",
    "DayCountConvention",
]


class OptionType(Enum):
    CALL = "call"
    PUT = "put"


class ExerciseType(Enum):
    EUROPEAN = "european"
    AMERICAN = "american"


class Dynamics(Enum):
    """Risk-neutral law of the underlying used by transform and simulation methods."""

    LOGNORMAL = "lognormal"
    HESTON = "heston"


class SimulationScheme(Enum):
    EXACT = "exact"
    EULER_MARUYAMA = "euler_maruyama"
    BROADIE_KAYA = "broadie_kaya"


class ImpliedVolMethod(Enum):
    NEWTON_RAPHSON = "newton_raphson"
    BISECTION = "bisection"
    BRENTQ = "brentq"


class UnderlyingKind(Enum):
    SPOT = "spot"
    FORWARD = "forward"
    FUTURES = "futures"


class ValidationHandling(Enum):
    """What to do when a market-data validation rule fails."""

    IGNORE = "ignore"
    WARN = "warn"
    RAISE = "raise"


class DayCountConvention(Enum):
    ACT_360 = "ACT/360"
    ACT_365F = "ACT/365F"
    ACT_365_25 = "ACT/365.25"
    THIRTY_360_US = "30/360 US"
