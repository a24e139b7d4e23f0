"""Pricing problems, the pricing-method strategy interface and dispatch helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
import threading
from typing import ClassVar

import numpy as np

from ..enums import ExerciseType
from ..exceptions import (
    ConfigurationError,
    NumericalError,
    PricingError,
    UnsupportedFeatureError,
    ValidationError,
)
from ..market_inputs import BlackScholesInputs, HestonInputs, MarketInputs
from ..parallel import ordered_map
from ..payoffs import VanillaOption

__all__ = [
    "PricingProblem",
    "BasketPricingProblem",
    "Solution",
    "BasketSolution",
    "PricingMethod",
    "solve",
    "solve_basket",
]

logger = logging.getLogger(__name__)


# ── Problems ────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class PricingProblem:
    """One payoff priced against one market."""

    payoff: VanillaOption
    market: MarketInputs

    def __post_init__(self) -> None:
        if not isinstance(self.payoff, VanillaOption):
            raise ConfigurationError(
                f"payoff must be a VanillaOption, got {type(self.payoff).__name__}"
            )
        if not isinstance(self.market, (BlackScholesInputs, HestonInputs)):
            raise ConfigurationError(
                f"market must be BlackScholesInputs or HestonInputs, "
                f"got {type(self.market).__name__}"
            )

    @property
    def ttm(self) -> float:
        return self.market.year_fraction(self.payoff.expiry)


@dataclass(frozen=True, slots=True)
class BasketPricingProblem:
    """Ordered payoffs sharing one market, priced or calibrated together."""

    payoffs: tuple[VanillaOption, ...]
    market: MarketInputs

    def __post_init__(self) -> None:
        payoffs = tuple(self.payoffs)
        if not payoffs:
            raise ValidationError("a basket needs at least one payoff")
        object.__setattr__(self, "payoffs", payoffs)
        # Reuse PricingProblem's type checks.
        for payoff in payoffs:
            PricingProblem(payoff, self.market)

    def __len__(self) -> int:
        return len(self.payoffs)

    def problems(self) -> tuple[PricingProblem, ...]:
        return tuple(PricingProblem(payoff, self.market) for payoff in self.payoffs)

    def with_market(self, market: MarketInputs) -> BasketPricingProblem:
        return BasketPricingProblem(self.payoffs, market)


# ── Solutions ───────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Solution:
    """Price plus the name of the method that produced it.

    Pricing methods return subclasses that add method-specific diagnostics.
    """

    price: float
    method: str


@dataclass(frozen=True, slots=True)
class BasketSolution:
    """Per-payoff solutions of a basket, aligned with ``basket.payoffs``.

    A failed item has ``None`` in ``solutions`` and its error in ``errors``.
    """

    solutions: tuple[Solution | None, ...]
    errors: tuple[NumericalError | None, ...]

    @property
    def prices(self) -> np.ndarray:
        """Prices with NaN where pricing failed."""
        return np.array(
            [np.nan if s is None else s.price for s in self.solutions], dtype=float
        )

    @property
    def failed(self) -> np.ndarray:
        return np.array([e is not None for e in self.errors], dtype=bool)

    @property
    def n_failed(self) -> int:
        return int(self.failed.sum())


# ── Strategy interface ──────────────────────────────────────────────


class PricingMethod(ABC):
    """A numerical pricing method.

    Concrete methods are immutable dataclasses holding their numerical knobs,
    so one instance can be reused across every evaluation of a calibration and
    shared between worker threads.
    """

    __slots__ = ()

    name: ClassVar[str] = "abstract"
    supported_markets: ClassVar[tuple[type, ...]] = (BlackScholesInputs, HestonInputs)
    supported_exercise: ClassVar[tuple[ExerciseType, ...]] = (ExerciseType.EUROPEAN,)

    def validate(self, problem: PricingProblem) -> float:
        """Check that this method can price ``problem`` and return its time to expiry."""
        if not isinstance(problem.market, self.supported_markets):
            raise ConfigurationError(
                f"{type(self).__name__} cannot price with {type(problem.market).__name__}"
            )
        if problem.payoff.exercise_type not in self.supported_exercise:
            raise UnsupportedFeatureError(
                f"{type(self).__name__} does not support "
                f"{problem.payoff.exercise_type.name} exercise"
            )
        ttm = problem.ttm
        if ttm <= 0.0:
            raise PricingError(
                f"option expired: expiry {problem.payoff.expiry} is not after "
                f"reference date {problem.market.reference_date}"
            )
        return ttm

    def solve(
        self, problem: PricingProblem, *, rng: np.random.Generator | None = None
    ) -> Solution:
        """Price one problem.

        Parameters
        ==========
        problem:
            Payoff and market to price.
        rng:
            Caller-owned random source for simulation methods. Deterministic
            methods ignore it.
        """
        ttm = self.validate(problem)
        return self._solve(problem, ttm, rng)

    @abstractmethod
    def _solve(
        self, problem: PricingProblem, ttm: float, rng: np.random.Generator | None
    ) -> Solution:
        """Price a validated problem with ``ttm > 0``."""


# ── Dispatch ────────────────────────────────────────────────────────


def solve(
    problem: PricingProblem,
    method: PricingMethod,
    *,
    rng: np.random.Generator | None = None,
) -> Solution:
    """Price ``problem`` with ``method``.

    Raises
    ======
    ConfigurationError
        The method cannot handle this market / exercise combination.
    PricingError
        The solver failed for these inputs (expired option, failed integral, ...).
    """
    if not isinstance(problem, PricingProblem):
        raise ConfigurationError(
            f"problem must be a PricingProblem, got {type(problem).__name__}"
        )
    if not isinstance(method, PricingMethod):
        raise ConfigurationError(
            f"method must be a PricingMethod, got {type(method).__name__}"
        )
    solution = method.solve(problem, rng=rng)
    logger.debug(
        "%s %s K=%.6g expiry=%s price=%.10g",
        solution.method,
        problem.payoff.option_type.value,
        problem.payoff.strike,
        problem.payoff.expiry.isoformat(),
        solution.price,
    )
    return solution


def solve_basket(
    basket: BasketPricingProblem,
    method: PricingMethod,
    *,
    tolerate_failures: bool = False,
    max_workers: int | None = None,
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
) -> BasketSolution:
    """Price every payoff of ``basket`` with one method instance.

    Parameters
    ==========
    basket:
        Payoffs and their shared market.
    method:
        Pricing method, reused for every payoff.
    tolerate_failures:
        When True, a :class:`NumericalError` on one payoff is recorded in the
        result and the rest of the basket is still priced. When False the
        first such error is raised.
    max_workers, timeout, cancel_event:
        Worker-pool size, batch wall-clock budget and cancellation signal;
        see :func:`option_calibration.parallel.ordered_map`.
    """
    if not isinstance(basket, BasketPricingProblem):
        raise ConfigurationError(
            f"basket must be a BasketPricingProblem, got {type(basket).__name__}"
        )
    outcomes = ordered_map(
        lambda problem: solve(problem, method),
        basket.problems(),
        max_workers=max_workers,
        timeout=timeout,
        cancel_event=cancel_event,
    )
    errors = tuple(outcome.error for outcome in outcomes)
    if not tolerate_failures:
        for error in errors:
            if error is not None:
                raise error
    result = BasketSolution(
        solutions=tuple(outcome.value for outcome in outcomes),
        errors=errors,
    )
    if result.n_failed:
        logger.warning(
            "%s failed on %d of %d basket items", method.name, result.n_failed, len(basket)
        )
    return result
