"""Generic calibration of market-input parameters to observed prices.

A :class:`CalibrationProblem` names which scalar fields to vary (lenses), the
basket to reprice and the target prices. :func:`solve` minimises the sum of
squared pricing errors with a bounded optimiser, or solves the single
instrument / single parameter case with a root finder.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
import logging
import threading

import numpy as np
from scipy import optimize

from ..enums import ImpliedVolMethod
from ..exceptions import (
    ConfigurationError,
    ConvergenceError,
    ValidationError,
)
from ..market_inputs import MarketInputs
from ..utils import log_timing
from ..valuation.core import BasketPricingProblem, PricingMethod, solve_basket
from .lenses import Lens, apply_lenses

__all__ = [
    "CalibrationProblem",
    "CalibrationResult",
    "Optimizer",
    "RootFinder",
    "solve",
]

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_PENALTY = 1.0e6


def _as_vector(name: str, values: Sequence[float] | np.ndarray | None) -> np.ndarray | None:
    if values is None:
        return None
    arr = np.atleast_1d(np.asarray(values, dtype=float))
    if arr.ndim != 1:
        raise ConfigurationError(f"{name} must be one-dimensional")
    return arr


@dataclass(frozen=True, slots=True)
class CalibrationProblem:
    """Everything needed to fit ``lenses`` of ``basket.market`` to ``targets``.

    Attributes
    ==========
    basket:
        Payoffs and the starting market inputs. The market is never mutated;
        each evaluation derives a new one.
    method:
        Pricing method, reused for every evaluation.
    lenses:
        Fields to calibrate, one per parameter.
    targets:
        Target prices, one per payoff in the basket.
    initial_guess:
        Starting parameter vector, one value per lens.
    lower_bounds, upper_bounds:
        Box constraints. Mandatory when more than one lens is calibrated.
    failure_penalty:
        Residual assigned to a payoff whose pricing fails, so that the
        optimiser sees a large but finite error instead of an exception.
    """

    basket: BasketPricingProblem
    method: PricingMethod
    lenses: tuple[Lens, ...]
    targets: np.ndarray
    initial_guess: np.ndarray
    lower_bounds: np.ndarray | None = None
    upper_bounds: np.ndarray | None = None
    failure_penalty: float = DEFAULT_FAILURE_PENALTY

    def __post_init__(self) -> None:
        if not isinstance(self.basket, BasketPricingProblem):
            raise ConfigurationError(
                f"basket must be a BasketPricingProblem, got {type(self.basket).__name__}"
            )
        if not isinstance(self.method, PricingMethod):
            raise ConfigurationError(
                f"method must be a PricingMethod, got {type(self.method).__name__}"
            )
        lenses = tuple(self.lenses)
        if not lenses:
            raise ConfigurationError("at least one lens is required")
        if not all(isinstance(lens, Lens) for lens in lenses):
            raise ConfigurationError("lenses must be Lens enum members")
        if len(set(lenses)) != len(lenses):
            raise ConfigurationError("each lens may appear only once")
        for lens in lenses:
            lens.check(self.basket.market)

        targets = _as_vector("targets", self.targets)
        guess = _as_vector("initial_guess", self.initial_guess)
        lower = _as_vector("lower_bounds", self.lower_bounds)
        upper = _as_vector("upper_bounds", self.upper_bounds)

        if targets.size != len(self.basket):
            raise ConfigurationError(
                f"{targets.size} targets for a basket of {len(self.basket)} payoffs"
            )
        if guess.size != len(lenses):
            raise ConfigurationError(
                f"initial_guess has {guess.size} values for {len(lenses)} lenses"
            )
        if (lower is None) != (upper is None):
            raise ConfigurationError("give both lower_bounds and upper_bounds, or neither")
        if lower is None and len(lenses) > 1:
            raise ConfigurationError("box bounds are mandatory for multi-parameter calibration")
        if lower is not None:
            if lower.size != len(lenses) or upper.size != len(lenses):
                raise ConfigurationError(
                    f"bounds must have {len(lenses)} values, "
                    f"got {lower.size} lower and {upper.size} upper"
                )
            if np.any(lower >= upper):
                raise ConfigurationError("every lower bound must be below its upper bound")
            if np.any(guess < lower) or np.any(guess > upper):
                raise ValidationError(
                    f"initial_guess {guess.tolist()} lies outside the bounds "
                    f"[{lower.tolist()}, {upper.tolist()}]"
                )
        if not np.all(np.isfinite(targets)):
            raise ValidationError("targets must be finite")
        if not np.isfinite(self.failure_penalty) or self.failure_penalty <= 0:
            raise ConfigurationError("failure_penalty must be positive and finite")

        object.__setattr__(self, "lenses", lenses)
        object.__setattr__(self, "targets", targets)
        object.__setattr__(self, "initial_guess", guess)
        object.__setattr__(self, "lower_bounds", lower)
        object.__setattr__(self, "upper_bounds", upper)

    @property
    def n_parameters(self) -> int:
        return len(self.lenses)

    def market_for(self, x: Sequence[float] | np.ndarray) -> MarketInputs:
        """Market inputs with every lens set from ``x``."""
        return apply_lenses(self.basket.market, self.lenses, np.asarray(x, dtype=float))

    def model_prices(
        self,
        x: Sequence[float] | np.ndarray,
        *,
        max_workers: int | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> np.ndarray:
        """Prices under parameters ``x``; NaN where pricing failed.

        Parameter vectors the market inputs reject (e.g. a non-positive
        variance) price every payoff as failed.
        """
        try:
            market = self.market_for(x)
        except ValidationError as exc:
            logger.debug("Rejected parameters %s: %s", np.asarray(x).tolist(), exc)
            return np.full(len(self.basket), np.nan)
        basket_solution = solve_basket(
            self.basket.with_market(market),
            self.method,
            tolerate_failures=True,
            max_workers=max_workers,
            timeout=timeout,
            cancel_event=cancel_event,
        )
        return basket_solution.prices

    def residuals(self, x: Sequence[float] | np.ndarray, **kwargs) -> np.ndarray:
        """Model minus target prices, with failures replaced by the penalty."""
        prices = self.model_prices(x, **kwargs)
        residuals = prices - self.targets
        return np.where(np.isfinite(residuals), residuals, self.failure_penalty)

    def objective(self, x: Sequence[float] | np.ndarray, **kwargs) -> float:
        """Sum of squared pricing errors."""
        residuals = self.residuals(x, **kwargs)
        return float(residuals @ residuals)


@dataclass(frozen=True, slots=True)
class CalibrationResult:
    """Outcome of one calibration.

    ``objective`` is the sum of squared pricing errors at ``x``. ``status`` is
    the solver's return code and ``success`` its convergence flag.
    """

    x: np.ndarray
    objective: float
    success: bool
    status: int
    message: str
    n_iterations: int
    n_evaluations: int
    lenses: tuple[Lens, ...]
    market: MarketInputs
    n_failed_prices: int = 0

    def as_dict(self) -> dict[str, float]:
        return {lens.name.lower(): float(v) for lens, v in zip(self.lenses, self.x)}

    def raise_for_status(self) -> CalibrationResult:
        """Raise :class:`ConvergenceError` unless the solver converged."""
        if not self.success:
            raise ConvergenceError(
                f"calibration did not converge (status={self.status}): {self.message}"
            )
        return self


# ── Algorithms ──────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Optimizer:
    """Bounded least-squares minimisation with finite-difference derivatives.

    Attributes
    ==========
    method:
        ``"trf"`` (trust-region reflective, ``scipy.optimize.least_squares``)
        or ``"L-BFGS-B"`` (``scipy.optimize.minimize`` on the summed squares).
    max_iterations:
        Evaluation budget for ``trf`` / iteration budget for ``L-BFGS-B``.
    ftol, xtol, gtol:
        Solver tolerances (``xtol`` is ignored by ``L-BFGS-B``).
    diff_step:
        Relative finite-difference step. Keep it well above the relative
        accuracy of the pricing method (quadrature tolerance, MC noise).
    max_workers, evaluation_timeout:
        Worker pool size and wall-clock budget per basket evaluation. Payoffs
        not priced within the budget receive the failure penalty.
    log_timings:
        Emit DEBUG timing logs for the whole calibration.
    """

    method: str = "trf"
    max_iterations: int = 200
    ftol: float = 1e-12
    xtol: float = 1e-12
    gtol: float = 1e-12
    diff_step: float = 1e-6
    max_workers: int | None = None
    evaluation_timeout: float | None = None
    log_timings: bool = False

    def __post_init__(self) -> None:
        if self.method not in ("trf", "L-BFGS-B"):
            raise ConfigurationError(f"unsupported optimizer method {self.method!r}")
        if self.max_iterations < 1:
            raise ConfigurationError("max_iterations must be >= 1")
        if self.diff_step <= 0:
            raise ConfigurationError("diff_step must be positive")


@dataclass(frozen=True, slots=True)
class RootFinder:
    """One-dimensional root finding for one instrument and one lens.

    Attributes
    ==========
    method:
        Root-finding method.
    xtol:
        Absolute tolerance on the parameter.
    ftol:
        Absolute tolerance on the pricing residual (bisection / Newton).
    max_iterations:
        Iteration budget.
    """

    method: ImpliedVolMethod = ImpliedVolMethod.BRENTQ
    xtol: float = 1e-12
    ftol: float = 1e-12
    max_iterations: int = 200

    def __post_init__(self) -> None:
        if not isinstance(self.method, ImpliedVolMethod):
            raise ConfigurationError(
                f"method must be an ImpliedVolMethod, got {type(self.method).__name__}"
            )
        if self.max_iterations < 1:
            raise ConfigurationError("max_iterations must be >= 1")


Algorithm = Optimizer | RootFinder


class _CountingFunction:
    """Wrap a function and count its evaluations."""

    def __init__(self, fn: Callable[[np.ndarray], float | np.ndarray]) -> None:
        self.fn = fn
        self.calls = 0

    def __call__(self, x):
        self.calls += 1
        return self.fn(x)


def _result(
    problem: CalibrationProblem,
    x: np.ndarray,
    *,
    success: bool,
    status: int,
    message: str,
    n_iterations: int,
    n_evaluations: int,
    **price_kwargs,
) -> CalibrationResult:
    x = np.asarray(x, dtype=float).copy()
    prices = problem.model_prices(x, **price_kwargs)
    failed = ~np.isfinite(prices)
    residuals = np.where(failed, problem.failure_penalty, prices - problem.targets)
    return CalibrationResult(
        x=x,
        objective=float(residuals @ residuals),
        success=bool(success),
        status=int(status),
        message=str(message),
        n_iterations=int(n_iterations),
        n_evaluations=int(n_evaluations),
        lenses=problem.lenses,
        market=problem.market_for(x),
        n_failed_prices=int(failed.sum()),
    )


def _optimize(
    problem: CalibrationProblem, algorithm: Optimizer, cancel_event: threading.Event | None
) -> CalibrationResult:
    price_kwargs = {
        "max_workers": algorithm.max_workers,
        "timeout": algorithm.evaluation_timeout,
        "cancel_event": cancel_event,
    }
    n_params = problem.n_parameters
    lower = problem.lower_bounds if problem.lower_bounds is not None else np.full(n_params, -np.inf)
    upper = problem.upper_bounds if problem.upper_bounds is not None else np.full(n_params, np.inf)

    if algorithm.method == "trf":
        fun = _CountingFunction(lambda x: problem.residuals(x, **price_kwargs))
        res = optimize.least_squares(
            fun,
            problem.initial_guess,
            bounds=(lower, upper),
            method="trf",
            diff_step=algorithm.diff_step,
            ftol=algorithm.ftol,
            xtol=algorithm.xtol,
            gtol=algorithm.gtol,
            max_nfev=algorithm.max_iterations,
        )
        # least_squares status: -1 failure, 0 budget exhausted, >0 converged
        n_iterations = int(res.njev) if res.njev is not None else int(res.nfev)
    else:
        fun = _CountingFunction(lambda x: problem.objective(x, **price_kwargs))
        res = optimize.minimize(
            fun,
            problem.initial_guess,
            method="L-BFGS-B",
            bounds=list(zip(lower, upper)),
            options={
                "maxiter": algorithm.max_iterations,
                "ftol": algorithm.ftol,
                "gtol": algorithm.gtol,
                "finite_diff_rel_step": algorithm.diff_step,
            },
        )
        n_iterations = int(res.nit)

    return _result(
        problem,
        res.x,
        success=res.success,
        status=res.status,
        message=res.message,
        n_iterations=n_iterations,
        n_evaluations=fun.calls,
        **price_kwargs,
    )


# ── Root finding ────────────────────────────────────────────────────


def _bisection(
    f: Callable[[float], float], low: float, high: float, f_low: float, algorithm: RootFinder
) -> tuple[float, int, bool]:
    """Bisection on a bracketed residual."""
    mid = 0.5 * (low + high)
    for i in range(algorithm.max_iterations):
        mid = 0.5 * (low + high)
        f_mid = f(mid)
        if abs(f_mid) <= algorithm.ftol or 0.5 * (high - low) <= algorithm.xtol:
            return mid, i + 1, True
        if np.sign(f_mid) == np.sign(f_low):
            low, f_low = mid, f_mid
        else:
            high = mid
    return mid, algorithm.max_iterations, False


def _newton_raphson(
    f: Callable[[float], float],
    low: float,
    high: float,
    f_low: float,
    initial: float,
    algorithm: RootFinder,
) -> tuple[float, int, bool]:
    """Safeguarded Newton-Raphson with a finite-difference slope.

    Steps leaving the current bracket fall back to bisection, so the iterate
    never escapes ``[low, high]``.
    """
    x = float(np.clip(initial, low, high))
    for i in range(algorithm.max_iterations):
        fx = f(x)
        if abs(fx) <= algorithm.ftol:
            return x, i + 1, True
        if np.sign(fx) == np.sign(f_low):
            low, f_low = x, fx
        else:
            high = x
        if high - low <= algorithm.xtol:
            return x, i + 1, True

        h = 1e-6 * max(1.0, abs(x))
        slope = (f(x + h) - fx) / h
        candidate = x - fx / slope if slope != 0 and np.isfinite(slope) else np.nan
        if not np.isfinite(candidate) or candidate <= low or candidate >= high:
            candidate = 0.5 * (low + high)
        x = candidate
    return x, algorithm.max_iterations, False


def _root_find(problem: CalibrationProblem, algorithm: RootFinder) -> CalibrationResult:
    if problem.n_parameters != 1 or len(problem.basket) != 1:
        raise ConfigurationError(
            "root finding needs exactly one lens and one instrument, got "
            f"{problem.n_parameters} lenses and {len(problem.basket)} instruments"
        )
    if problem.lower_bounds is None:
        raise ConfigurationError("root finding needs bounds to bracket the root")

    def residual(value: float) -> float:
        # Pricing failures propagate; there is no meaningful penalty for a root.
        try:
            market = problem.market_for([value])
        except ValidationError as exc:
            raise ConvergenceError(f"parameter {value} rejected: {exc}") from exc
        return problem.method.solve(problem.basket.with_market(market).problems()[0]).price - float(
            problem.targets[0]
        )

    f = _CountingFunction(residual)
    low = float(problem.lower_bounds[0])
    high = float(problem.upper_bounds[0])
    f_low, f_high = f(low), f(high)
    if f_low == 0.0:
        root, iterations, converged = low, 0, True
    elif f_high == 0.0:
        root, iterations, converged = high, 0, True
    elif np.sign(f_low) == np.sign(f_high):
        raise ConvergenceError(
            f"target not bracketed by [{low}, {high}]: residuals {f_low:.6g}, {f_high:.6g}"
        )
    elif algorithm.method is ImpliedVolMethod.BRENTQ:
        root, info = optimize.brentq(
            f,
            low,
            high,
            xtol=algorithm.xtol,
            maxiter=algorithm.max_iterations,
            full_output=True,
            disp=False,
        )
        iterations, converged = info.iterations, info.converged
    elif algorithm.method is ImpliedVolMethod.BISECTION:
        root, iterations, converged = _bisection(f, low, high, f_low, algorithm)
    else:
        root, iterations, converged = _newton_raphson(
            f, low, high, f_low, float(problem.initial_guess[0]), algorithm
        )

    if not converged:
        raise ConvergenceError(
            f"{algorithm.method.value} did not converge in {iterations} iterations"
        )
    return _result(
        problem,
        [root],
        success=True,
        status=0,
        message=f"{algorithm.method.value} converged",
        n_iterations=iterations,
        n_evaluations=f.calls,
    )


def solve(
    problem: CalibrationProblem,
    algorithm: Algorithm | None = None,
    *,
    cancel_event: threading.Event | None = None,
) -> CalibrationResult:
    """Calibrate ``problem``.

    Parameters
    ==========
    problem:
        What to fit.
    algorithm:
        :class:`Optimizer` or :class:`RootFinder`. Defaults to a root finder
        for one instrument and one bounded lens, an optimizer otherwise.
    cancel_event:
        When set, remaining basket evaluations are abandoned and priced as
        failures (optimizer only).

    Returns
    =======
    CalibrationResult
        Optimizer non-convergence is reported through ``success`` /
        ``status`` (see :meth:`CalibrationResult.raise_for_status`).

    Raises
    ======
    ConvergenceError
        The root finder could not bracket or converge.
    """
    if not isinstance(problem, CalibrationProblem):
        raise ConfigurationError(
            f"problem must be a CalibrationProblem, got {type(problem).__name__}"
        )
    if algorithm is None:
        if (
            problem.n_parameters == 1
            and len(problem.basket) == 1
            and problem.lower_bounds is not None
        ):
            algorithm = RootFinder()
        else:
            algorithm = Optimizer()

    if isinstance(algorithm, RootFinder):
        result = _root_find(problem, algorithm)
    elif isinstance(algorithm, Optimizer):
        with log_timing(logger, "Calibration", algorithm.log_timings):
            result = _optimize(problem, algorithm, cancel_event)
    else:
        raise ConfigurationError(
            f"algorithm must be Optimizer or RootFinder, got {type(algorithm).__name__}"
        )

    logger.debug(
        "Calibration %s success=%s objective=%.6g iterations=%d evaluations=%d x=%s",
        problem.method.name,
        result.success,
        result.objective,
        result.n_iterations,
        result.n_evaluations,
        np.array2string(result.x, precision=6),
    )
    if not result.success:
        logger.warning(
            "Calibration did not converge: status=%d message=%s", result.status, result.message
        )
    if result.n_failed_prices:
        logger.warning(
            "Calibrated parameters leave %d of %d instruments unpriced",
            result.n_failed_prices,
            len(problem.basket),
        )
    return result
