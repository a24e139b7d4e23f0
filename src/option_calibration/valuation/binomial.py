"""Valuation of European and American options using the binomial option pricing model of
Cox-Ross-Rubinstein
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, ClassVar

import numpy as np

from ..enums import ExerciseType
from ..exceptions import ArbitrageViolationError, PricingError
from ..market_inputs import BlackScholesInputs
from ..utils import log_timing
from .core import PricingMethod, Solution

if TYPE_CHECKING:
    from .core import PricingProblem

__all__ = ["BinomialSolution", "CoxRossRubinstein"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BinomialSolution(Solution):
    steps: int = 0
    up: float = np.nan
    early_exercise: bool = False


@dataclass(frozen=True, slots=True)
class CoxRossRubinstein(PricingMethod):
    """Recombining CRR tree with ``u = exp(sigma sqrt(dt))`` and ``d = 1 / u``.

    Attributes
    ==========
    steps:
        Number of time steps in the tree (>= 1).
    log_timings:
        Emit DEBUG timing logs for each valuation.

    Per-step risk-neutral probabilities use the forward rates of the market's
    discount curve, so term-structured rates are supported. European exercise
    discounts expectations only; American exercise takes the maximum of
    continuation and intrinsic value at every node.
    """

    steps: int = 500
    log_timings: bool = False

    name: ClassVar[str] = "binomial"
    supported_markets: ClassVar[tuple[type, ...]] = (BlackScholesInputs,)
    supported_exercise: ClassVar[tuple[ExerciseType, ...]] = (
        ExerciseType.EUROPEAN,
        ExerciseType.AMERICAN,
    )

    def __post_init__(self) -> None:
        if int(self.steps) != self.steps or self.steps < 1:
            raise PricingError(f"binomial tree needs steps >= 1, got {self.steps}")
        object.__setattr__(self, "steps", int(self.steps))

    def _setup_binomial_parameters(
        self, market: BlackScholesInputs, strike: float, ttm: float
    ) -> tuple[np.ndarray, np.ndarray, float]:
        """Per-step discount factors, up-probabilities and the up factor.

        Returns
        =======
        tuple of (discount_factors, p, up)
            discount_factors : shape (steps,) -- per-step discount factors
            p : shape (steps,) -- risk-neutral up-move probabilities
            up : CRR up multiplier
        """
        delta_t = ttm / self.steps
        sigma = market.sigma_for(strike, ttm)
        u = np.exp(sigma * np.sqrt(delta_t))
        d = 1.0 / u

        time_grid = np.linspace(0.0, ttm, self.steps + 1)
        forward_rates = market.rate_curve.step_forward_rates(time_grid)
        growth = np.exp(forward_rates * delta_t)
        if np.any(growth <= d) or np.any(growth >= u):
            raise ArbitrageViolationError(
                "Arbitrage condition violated: d < exp(f*dt) < u for at least one step"
            )

        p = (growth - d) / (u - d)
        return np.exp(-forward_rates * delta_t), p, float(u)

    def _solve(self, problem: PricingProblem, ttm: float, rng) -> BinomialSolution:
        payoff = problem.payoff
        market: BlackScholesInputs = problem.market
        american = payoff.is_american
        n = self.steps
        logger.debug("Binomial %s num_steps=%d", payoff.exercise_type.name, n)

        with log_timing(logger, "Binomial present_value", self.log_timings):
            discount_factors, p, up = self._setup_binomial_parameters(
                market, payoff.strike, ttm
            )
            # Node i at step t has had i down moves: S * u**(t - i) * d**i.
            down_moves = np.arange(n + 1)
            values = payoff.payoff(market.spot * up ** (n - 2.0 * down_moves))

            for t in range(n - 1, -1, -1):
                values = (p[t] * values[: t + 1] + (1.0 - p[t]) * values[1 : t + 2]) * (
                    discount_factors[t]
                )
                if american:
                    spots = market.spot * up ** (t - 2.0 * np.arange(t + 1))
                    values = np.maximum(payoff.payoff(spots), values)

        return BinomialSolution(
            price=float(values[0]),
            method=self.name,
            steps=n,
            up=up,
            early_exercise=american,
        )
