"""Contract descriptions, independent of how they are priced."""

from __future__ import annotations

from dataclasses import dataclass, replace
import datetime as dt

import numpy as np

from .enums import ExerciseType, OptionType
from .exceptions import ConfigurationError, ValidationError
from .utils import vanilla_payoff


@dataclass(frozen=True, slots=True)
class VanillaOption:
    """Vanilla call or put with European or American exercise.

    American options carry no exercise boundary; the pricing method solves for it.
    """

    strike: float
    expiry: dt.datetime
    option_type: OptionType
    exercise_type: ExerciseType = ExerciseType.EUROPEAN

    def __post_init__(self) -> None:
        if not isinstance(self.option_type, OptionType):
            raise ConfigurationError(
                f"option_type must be OptionType, got {type(self.option_type).__name__}"
            )
        if not isinstance(self.exercise_type, ExerciseType):
            raise ConfigurationError(
                f"exercise_type must be ExerciseType, got {type(self.exercise_type).__name__}"
            )
        if not isinstance(self.expiry, dt.datetime):
            raise ConfigurationError(
                f"expiry must be a datetime, got {type(self.expiry).__name__}"
            )
        strike = float(self.strike)
        if not np.isfinite(strike) or strike <= 0.0:
            raise ValidationError(f"strike must be positive and finite, got {strike}")
        object.__setattr__(self, "strike", strike)

    @property
    def is_american(self) -> bool:
        return self.exercise_type is ExerciseType.AMERICAN

    def payoff(self, spot: float | np.ndarray) -> np.ndarray:
        """Exercise value for one or many spot levels."""
        return vanilla_payoff(self.option_type, self.strike, np.asarray(spot, dtype=float))

    def with_exercise(self, exercise_type: ExerciseType) -> VanillaOption:
        return replace(self, exercise_type=exercise_type)

    def with_option_type(self, option_type: OptionType) -> VanillaOption:
        return replace(self, option_type=option_type)
