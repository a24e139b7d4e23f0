"""Option pricing engines.

Every method implements the :class:`PricingMethod` strategy interface and is
selected by the caller:

    BlackScholesAnalytic: closed form for lognormal markets
    CarrMadan: Fourier transform pricing from a characteristic function
    CoxRossRubinstein: recombining binomial tree (European and American)
    MonteCarlo: path simulation under lognormal or Heston dynamics
    LeastSquaresMonteCarlo: Longstaff-Schwartz for American exercise
"""

from .core import (
    PricingProblem,
    BasketPricingProblem,
    PricingMethod,
    Solution,
    BasketSolution,
    solve,
    solve_basket,
)
from .params import MonteCarloParams, LSMParams
from .bsm import BlackScholesAnalytic, AnalyticSolution
from .carr_madan import CarrMadan, CarrMadanSolution
from .binomial import CoxRossRubinstein, BinomialSolution
from .monte_carlo import MonteCarlo, LeastSquaresMonteCarlo, MonteCarloSolution

__all__ = [
    # Problems and dispatch
    "PricingProblem",
    "BasketPricingProblem",
    "PricingMethod",
    "Solution",
    "BasketSolution",
    "solve",
    "solve_basket",
    # Parameter classes
    "MonteCarloParams",
    "LSMParams",
    # Methods
    "BlackScholesAnalytic",
    "AnalyticSolution",
    "CarrMadan",
    "CarrMadanSolution",
    "CoxRossRubinstein",
    "BinomialSolution",
    "MonteCarlo",
    "LeastSquaresMonteCarlo",
    "MonteCarloSolution",
]
