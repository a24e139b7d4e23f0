"""Monte Carlo and Least-Squares Monte Carlo option valuation."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, ClassVar

import numpy as np

from ..enums import Dynamics, ExerciseType
from ..exceptions import ConfigurationError
from ..market_inputs import BlackScholesInputs, HestonInputs
from ..parallel import ordered_map
from ..stochastic_processes import draw_path_seeds, path_generator, simulate_paths, time_grid
from ..utils import log_timing
from .core import PricingMethod, Solution
from .params import LSMParams, MonteCarloParams

if TYPE_CHECKING:
    from .core import PricingProblem

__all__ = ["MonteCarlo", "LeastSquaresMonteCarlo", "MonteCarloSolution"]

logger = logging.getLogger(__name__)

_MARKETS: dict[Dynamics, type] = {
    Dynamics.LOGNORMAL: BlackScholesInputs,
    Dynamics.HESTON: HestonInputs,
}


@dataclass(frozen=True, slots=True)
class MonteCarloSolution(Solution):
    """Sample-mean price with its standard error.

    ``exercised_fraction`` is the share of paths stopped before expiry (LSM only).
    """

    std_error: float = np.nan
    paths: int = 0
    steps: int = 0
    scheme: str = ""
    exercised_fraction: float = np.nan


def _warn_if_high_std_error(
    *,
    std_error: float,
    pv_mean: float,
    n_paths: int,
    params: MonteCarloParams,
    label: str,
) -> None:
    """Emit a warning log if MC standard error is high relative to the PV estimate."""
    if params.std_error_warn_ratio is None:
        return
    scale = max(abs(pv_mean), 1.0e-12)
    ratio = std_error / scale
    logger.debug(
        "MC %s std_error=%.6g ratio=%.6g paths=%d",
        label,
        std_error,
        ratio,
        n_paths,
    )
    if ratio > params.std_error_warn_ratio:
        logger.warning(
            "MC %s standard error high: std_error=%.6g ratio=%.6g (>%.3g) paths=%d",
            label,
            std_error,
            ratio,
            params.std_error_warn_ratio,
            n_paths,
        )


def _check_dynamics(dynamics: Dynamics, params: MonteCarloParams) -> None:
    if not isinstance(dynamics, Dynamics):
        raise ConfigurationError(
            f"dynamics must be a Dynamics enum, got {type(dynamics).__name__}"
        )
    if not isinstance(params, MonteCarloParams):
        raise ConfigurationError(
            f"params must be MonteCarloParams, got {type(params).__name__}"
        )
    path_generator(dynamics, params.scheme)


def _check_market(method: PricingMethod, dynamics: Dynamics, problem: PricingProblem) -> None:
    expected = _MARKETS[dynamics]
    if not isinstance(problem.market, expected):
        raise ConfigurationError(
            f"{type(method).__name__} with {dynamics.value} dynamics requires "
            f"{expected.__name__}, got {type(problem.market).__name__}"
        )


def _simulate(
    dynamics: Dynamics,
    params: MonteCarloParams,
    problem: PricingProblem,
    ttm: float,
    rng: np.random.Generator | None,
) -> np.ndarray:
    """Simulate ``params.trajectories`` paths, chunked across the worker pool.

    All path seeds are drawn before dispatch and chunks are concatenated in
    order, so the result does not depend on ``max_workers``.
    """
    if rng is None:
        rng = np.random.default_rng(params.random_seed)
    seeds = draw_path_seeds(rng, params.trajectories)
    chunks = [
        seeds[start : start + params.chunk_size]
        for start in range(0, seeds.size, params.chunk_size)
    ]
    outcomes = ordered_map(
        lambda chunk: simulate_paths(
            dynamics,
            params.scheme,
            problem.market,
            strike=problem.payoff.strike,
            ttm=ttm,
            steps=params.steps,
            seeds=chunk,
        ),
        chunks,
        max_workers=params.max_workers,
    )
    for outcome in outcomes:
        if outcome.error is not None:
            raise outcome.error
    return np.concatenate([outcome.value for outcome in outcomes], axis=1)


# ---------------------------------------------------------------------------
# Laguerre basis + ridge regression for Longstaff-Schwartz
# ---------------------------------------------------------------------------


def _laguerre_basis(x: np.ndarray, deg: int) -> np.ndarray:
    """Build a Laguerre polynomial design matrix of shape ``(n, deg+1)``.

    Uses the standard Laguerre recurrence::

        L_0(x) = 1
        L_1(x) = 1 - x
        L_{k+1}(x) = ((2k + 1 - x) L_k(x) - k L_{k-1}(x)) / (k + 1)

    These form an orthogonal basis on [0, inf) w.r.t. e^{-x}, which
    provides far better conditioning than raw power polynomials in spot.
    """
    x = np.asarray(x, dtype=float)
    cols: list[np.ndarray] = [np.ones_like(x)]
    if deg >= 1:
        cols.append(1.0 - x)
    for k in range(1, deg):
        cols.append(((2 * k + 1 - x) * cols[k] - k * cols[k - 1]) / (k + 1))
    return np.column_stack(cols)


def _lsm_continuation(
    S_t: np.ndarray,
    Y: np.ndarray,
    itm: np.ndarray,
    strike: float,
    params: LSMParams,
) -> np.ndarray:
    """Continuation-value estimate on in-the-money paths.

    Regresses the realised discounted future cash flows ``Y`` of the ITM paths
    onto a Laguerre polynomial basis in moneyness ``S/K``. Out-of-the-money
    paths never enter the fit and get a continuation value of zero (they are
    never exercised).

    When too few ITM paths are available for a stable regression the
    continuation value is the ITM cross-sectional mean (degree-0 fit).
    """
    cont = np.zeros_like(S_t, dtype=float)
    if not np.any(itm):
        return cont

    S_itm = S_t[itm]
    Y_itm = Y[itm]
    if S_itm.size < max(params.min_itm, params.deg + 1):
        cont[itm] = np.mean(Y_itm)
        return cont

    X = _laguerre_basis(S_itm / strike, deg=params.deg)
    if params.ridge_lambda > 0.0:
        p = X.shape[1]
        X = np.vstack([X, np.sqrt(params.ridge_lambda) * np.eye(p)])
        Y_itm = np.concatenate([Y_itm, np.zeros(p)])
    beta, *_ = np.linalg.lstsq(X, Y_itm, rcond=None)
    cont[itm] = _laguerre_basis(S_itm / strike, deg=params.deg) @ beta
    return cont


@dataclass(frozen=True, slots=True)
class MonteCarlo(PricingMethod):
    """European valuation by averaging discounted simulated payoffs.

    Attributes
    ==========
    dynamics:
        Law of the underlying (lognormal or Heston).
    params:
        Path count, steps, scheme, seeding and parallelism.
    """

    dynamics: Dynamics = Dynamics.LOGNORMAL
    params: MonteCarloParams = field(default_factory=MonteCarloParams)

    name: ClassVar[str] = "monte_carlo"
    supported_exercise: ClassVar[tuple[ExerciseType, ...]] = (ExerciseType.EUROPEAN,)

    def __post_init__(self) -> None:
        _check_dynamics(self.dynamics, self.params)

    def validate(self, problem: PricingProblem) -> float:
        ttm = PricingMethod.validate(self, problem)
        _check_market(self, self.dynamics, problem)
        return ttm

    def _solve(self, problem: PricingProblem, ttm: float, rng) -> MonteCarloSolution:
        params = self.params
        with log_timing(logger, "MC European present_value", params.log_timings):
            paths = _simulate(self.dynamics, params, problem, ttm, rng)
            discount_factor = float(problem.market.rate_curve.df(ttm))
            pv_pathwise = discount_factor * problem.payoff.payoff(paths[-1])
            pv = float(np.mean(pv_pathwise))
            std_error = float(np.std(pv_pathwise, ddof=1) / np.sqrt(pv_pathwise.size))
        logger.debug(
            "MC European dynamics=%s scheme=%s paths=%d time_steps=%d",
            self.dynamics.value,
            params.scheme.value,
            pv_pathwise.size,
            params.steps,
        )
        _warn_if_high_std_error(
            std_error=std_error,
            pv_mean=pv,
            n_paths=pv_pathwise.size,
            params=params,
            label="European",
        )
        return MonteCarloSolution(
            price=pv,
            method=self.name,
            std_error=std_error,
            paths=int(pv_pathwise.size),
            steps=params.steps,
            scheme=params.scheme.value,
        )


@dataclass(frozen=True, slots=True)
class LeastSquaresMonteCarlo(PricingMethod):
    """American valuation with the Longstaff-Schwartz algorithm.

    Exercise dates are the ``params.steps`` simulation dates after today.
    Walking backwards, each path keeps its own first optimal stopping step and
    the cash flow received there; the price is the mean of those cash flows
    discounted from each path's stopping date. Today's intrinsic value is a
    floor on the result.
    """

    dynamics: Dynamics = Dynamics.LOGNORMAL
    params: MonteCarloParams = field(
        default_factory=lambda: MonteCarloParams(trajectories=20_000, steps=50)
    )
    lsm_params: LSMParams = field(default_factory=LSMParams)

    name: ClassVar[str] = "lsm"
    supported_exercise: ClassVar[tuple[ExerciseType, ...]] = (ExerciseType.AMERICAN,)

    def __post_init__(self) -> None:
        _check_dynamics(self.dynamics, self.params)
        if not isinstance(self.lsm_params, LSMParams):
            raise ConfigurationError(
                f"lsm_params must be LSMParams, got {type(self.lsm_params).__name__}"
            )

    def validate(self, problem: PricingProblem) -> float:
        ttm = PricingMethod.validate(self, problem)
        _check_market(self, self.dynamics, problem)
        return ttm

    def _solve(self, problem: PricingProblem, ttm: float, rng) -> MonteCarloSolution:
        params = self.params
        payoff = problem.payoff
        steps = params.steps
        with log_timing(logger, "MC American present_value", params.log_timings):
            paths = _simulate(self.dynamics, params, problem, ttm, rng)
            discount_factors = problem.market.rate_curve.df(time_grid(ttm, steps))
            exercise_values = payoff.payoff(paths)

            stopping_step = np.full(paths.shape[1], steps)
            cash_flow = exercise_values[-1].copy()
            for t in range(steps - 1, 0, -1):
                itm = exercise_values[t] > 0.0
                realised = cash_flow * discount_factors[stopping_step] / discount_factors[t]
                continuation = _lsm_continuation(
                    paths[t], realised, itm, payoff.strike, self.lsm_params
                )
                exercise_now = itm & (exercise_values[t] > continuation)
                stopping_step[exercise_now] = t
                cash_flow[exercise_now] = exercise_values[t, exercise_now]

            pv_pathwise = cash_flow * discount_factors[stopping_step] / discount_factors[0]
            pv = float(np.mean(pv_pathwise))
            std_error = float(np.std(pv_pathwise, ddof=1) / np.sqrt(pv_pathwise.size))
            pv = max(pv, float(payoff.payoff(problem.market.spot)))

        logger.debug(
            "MC American paths=%d time_steps=%d deg=%d",
            pv_pathwise.size,
            steps,
            self.lsm_params.deg,
        )
        _warn_if_high_std_error(
            std_error=std_error,
            pv_mean=pv,
            n_paths=pv_pathwise.size,
            params=params,
            label="American",
        )
        return MonteCarloSolution(
            price=pv,
            method=self.name,
            std_error=std_error,
            paths=int(pv_pathwise.size),
            steps=steps,
            scheme=params.scheme.value,
            exercised_fraction=float(np.mean(stopping_step < steps)),
        )
