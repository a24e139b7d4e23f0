"""Interest-rate and discount-curve utilities."""

from __future__ import annotations

import warnings
from dataclasses import dataclass

import numpy as np

from .exceptions import ValidationError

# Zero rates agreeing to this tolerance make a curve "flat".
FLAT_RATE_TOL = 1e-12


@dataclass(frozen=True, slots=True)
class DiscountCurve:
    """Deterministic discount curve with log-linear interpolation.

    times are year fractions from the curve's reference date and must be
    strictly increasing. dfs are positive discount factors, typically with
    df(0)=1. Values > 1 are permitted (negative rates) but trigger a warning.

    Curves built with :meth:`flat` carry ``flat_rate`` and discount exactly as
    ``exp(-r t)`` for every ``t >= 0``. Other curves extrapolate beyond the last
    node with a constant zero rate and warn when they do so.
    """

    times: np.ndarray
    dfs: np.ndarray
    flat_rate: float | None = None

    def __post_init__(self) -> None:
        t = np.asarray(self.times, dtype=float)
        df = np.asarray(self.dfs, dtype=float)
        if t.ndim != 1 or df.ndim != 1 or t.shape != df.shape:
            raise ValidationError("times and dfs must be 1D arrays of the same length")
        if t.size == 0:
            raise ValidationError("a discount curve needs at least one node")
        if np.any(np.diff(t) <= 0.0):
            raise ValidationError("times must be strictly increasing")
        if np.any(t < 0.0):
            raise ValidationError("times must be non-negative")
        if np.any(df <= 0.0) or not np.all(np.isfinite(df)):
            raise ValidationError("discount factors must be positive and finite")
        if np.any(df > 1.0 + 1e-12):
            warnings.warn(
                "Discount factors > 1 detected (negative rates)",
                stacklevel=2,
            )
        if self.flat_rate is not None:
            if not np.isfinite(float(self.flat_rate)):
                raise ValidationError("flat_rate must be finite when provided")
            implied = np.exp(-float(self.flat_rate) * t)
            if not np.allclose(df, implied, rtol=1e-10, atol=1e-12):
                raise ValidationError(
                    "flat_rate is only allowed when consistent with the provided discount factors"
                )
            object.__setattr__(self, "flat_rate", float(self.flat_rate))
        object.__setattr__(self, "times", t)
        object.__setattr__(self, "dfs", df)

    @classmethod
    def flat(cls, rate: float, end_time: float = 1.0, steps: int = 1) -> DiscountCurve:
        """Build a flat continuously-compounded discount curve.

        Parameters
        ----------
        rate
            Flat continuously-compounded annual rate.
        end_time
            Last node of the stored grid in years. The curve is valid beyond it.
        steps
            Number of intervals used to discretize ``[0, end_time]``.
        """
        if end_time <= 0.0:
            raise ValidationError("end_time must be positive")
        if steps < 1:
            raise ValidationError("steps must be >= 1")
        times = np.linspace(0.0, float(end_time), int(steps) + 1)
        dfs = np.exp(-float(rate) * times)
        return cls(times=times, dfs=dfs, flat_rate=float(rate))

    @classmethod
    def from_forwards(cls, times: np.ndarray, forwards: np.ndarray) -> DiscountCurve:
        """Build a curve from piecewise-constant forward rates.

        Parameters
        ----------
        times
            Year-fraction grid including 0.  Shape ``(N+1,)``.
        forwards
            Continuously-compounded forward rate on each interval.  Shape ``(N,)``.
        """
        times = np.asarray(times, dtype=float)
        forwards = np.asarray(forwards, dtype=float)
        if times.ndim != 1 or forwards.ndim != 1:
            raise ValidationError("times and forwards must be 1-D arrays")
        if times.size < 2:
            raise ValidationError("times must include at least [0, T]")
        if forwards.size != times.size - 1:
            raise ValidationError("forwards must have length len(times) - 1")
        if not np.isclose(times[0], 0.0):
            raise ValidationError("times must start at 0.0")
        cum_rate = np.concatenate([[0.0], np.cumsum(forwards * np.diff(times))])
        return cls(times=times, dfs=np.exp(-cum_rate))

    @classmethod
    def from_zero_rates(cls, times: np.ndarray, zero_rates: np.ndarray) -> DiscountCurve:
        """Build a curve from continuously-compounded zero (spot) rates.

        The rate at ``times[0] = 0`` is cosmetic (DF is always 1 there).
        """
        times = np.asarray(times, dtype=float)
        zero_rates = np.asarray(zero_rates, dtype=float)
        if times.ndim != 1 or zero_rates.ndim != 1:
            raise ValidationError("times and zero_rates must be 1-D arrays")
        if times.size != zero_rates.size:
            raise ValidationError("times and zero_rates must have the same length")
        if times.size < 2:
            raise ValidationError("times must include at least [0, T]")
        if not np.isclose(times[0], 0.0):
            raise ValidationError("times must start at 0.0")
        return cls(times=times, dfs=np.exp(-zero_rates * times))

    @property
    def is_flat(self) -> bool:
        """True when every node carries the same continuously-compounded zero rate."""
        if self.flat_rate is not None:
            return True
        positive = self.times > 0.0
        if np.count_nonzero(positive) <= 1:
            return True
        zeros = -np.log(self.dfs[positive]) / self.times[positive]
        return bool(np.ptp(zeros) <= FLAT_RATE_TOL)

    def df(self, t: float | np.ndarray) -> np.ndarray:
        """Interpolate discount factors with log-linear interpolation.

        Parameters
        ----------
        t
            Scalar or array of year fractions.

        Returns
        -------
        np.ndarray
            Interpolated discount factors.
        """
        t = np.asarray(t, dtype=float)
        if np.any(t < 0.0):
            raise ValidationError("discount factors are only defined for t >= 0")
        if self.flat_rate is not None:
            return np.exp(-self.flat_rate * t)

        log_df = np.log(self.dfs)
        out = np.interp(t, self.times, log_df, left=log_df[0])
        t_max = float(self.times[-1])
        beyond = t > t_max
        if np.any(beyond):
            warnings.warn(
                f"Extrapolating discount curve beyond {t_max:.4f}y with a constant zero rate",
                stacklevel=2,
            )
            if t_max > 0.0:
                out = np.where(beyond, log_df[-1] * t / t_max, out)
        return np.exp(out)

    def zero_rate(self, t: float) -> float:
        """Continuously-compounded zero rate to ``t`` (short rate at ``t = 0``)."""
        if self.flat_rate is not None:
            return self.flat_rate
        if t <= 0.0:
            nodes = self.times[self.times > 0.0]
            return self.forward_rate(0.0, float(nodes[0]) if nodes.size else 1.0)
        return float(-np.log(self.df(t)) / t)

    def forward_rate(self, t0: float, t1: float) -> float:
        """Return continuously-compounded forward rate on ``[t0, t1]``."""
        if t1 <= t0:
            raise ValidationError("Need t1 > t0")
        df0 = float(self.df(t0))
        df1 = float(self.df(t1))
        return (np.log(df0) - np.log(df1)) / (t1 - t0)

    def step_forward_rates(self, grid: np.ndarray) -> np.ndarray:
        """Return forward rates on each interval of a time grid."""
        grid = np.asarray(grid, dtype=float)
        if np.any(np.diff(grid) <= 0.0):
            raise ValidationError("grid must be strictly increasing")
        df_grid = self.df(grid)
        dt = np.diff(grid)
        return (np.log(df_grid[:-1]) - np.log(df_grid[1:])) / dt
