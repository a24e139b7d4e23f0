"""Parameter classes for the simulation-based pricing methods.

Each class documents the numerical knobs of its method and rejects invalid
values at construction.
"""

from dataclasses import dataclass

from ..enums import SimulationScheme
from ..exceptions import ConfigurationError


@dataclass(frozen=True, slots=True)
class MonteCarloParams:
    """Parameters for Monte Carlo and Least-Squares Monte Carlo valuation.

    Attributes
    ==========
    trajectories:
        Number of simulated paths.
    steps:
        Number of time steps per path. Exact lognormal and Broadie-Kaya
        sampling are unbiased with a single step for European payoffs; LSM
        uses the steps as exercise dates.
    scheme:
        Path discretisation; must be supported by the method's dynamics.
    random_seed:
        Seed for the run-level generator that draws one seed per path when
        the caller does not pass a generator. If None, uses fresh entropy.
    max_workers:
        Worker threads for path chunks (None or 1: serial).
    chunk_size:
        Paths per work item.
    std_error_warn_ratio:
        Log a warning when standard error / price exceeds this ratio.
        None disables the check.
    log_timings:
        Emit DEBUG timing logs for each valuation.
    """

    trajectories: int = 10_000
    steps: int = 1
    scheme: SimulationScheme | str = SimulationScheme.EXACT
    random_seed: int | None = None
    max_workers: int | None = None
    chunk_size: int = 5_000
    std_error_warn_ratio: float | None = 0.05
    log_timings: bool = False

    def __post_init__(self):
        if isinstance(self.scheme, str):
            try:
                object.__setattr__(self, "scheme", SimulationScheme(self.scheme))
            except ValueError as exc:
                raise ConfigurationError(f"unknown simulation scheme {self.scheme!r}") from exc
        if self.trajectories < 2:
            raise ConfigurationError(f"trajectories must be >= 2, got {self.trajectories}")
        if self.steps < 1:
            raise ConfigurationError(f"steps must be >= 1, got {self.steps}")
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.chunk_size < 1:
            raise ConfigurationError(f"chunk_size must be >= 1, got {self.chunk_size}")
        if self.std_error_warn_ratio is not None and self.std_error_warn_ratio <= 0:
            raise ConfigurationError(
                f"std_error_warn_ratio must be positive, got {self.std_error_warn_ratio}"
            )


@dataclass(frozen=True, slots=True)
class LSMParams:
    """Regression settings for Longstaff-Schwartz.

    Attributes
    ==========
    deg:
        Polynomial degree of the continuation-value regression.
        Typical range: 2-5. Default: 3.
    ridge_lambda:
        Tikhonov regularisation added to the normal equations.
    min_itm:
        Minimum in-the-money paths needed to regress at a step; with fewer,
        the continuation value is the mean realised value of the ITM paths.
    """

    deg: int = 3
    ridge_lambda: float = 0.0
    min_itm: int = 10

    def __post_init__(self):
        if self.deg < 1:
            raise ConfigurationError(f"deg must be >= 1, got {self.deg}")
        if self.ridge_lambda < 0:
            raise ConfigurationError(f"ridge_lambda must be >= 0, got {self.ridge_lambda}")
        if self.min_itm < 1:
            raise ConfigurationError(f"min_itm must be >= 1, got {self.min_itm}")
