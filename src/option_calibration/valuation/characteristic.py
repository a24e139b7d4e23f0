"""Characteristic functions of the log-price at expiry.

Each function returns ``phi(u) = E[exp(i u log S_T)]`` under the risk-neutral
measure and accepts complex, array-valued ``u`` so that the Carr-Madan
integrand can evaluate it at the damped frequency ``v - (alpha + 1) i``.

References
----------
Heston, S. L. (1993). A closed-form solution for options with stochastic volatility
with applications to bond and currency options. The Review of Financial Studies, 6(2), 327-343.

Albrecher, H., Mayer, P., Schoutens, W. and Tistaert, J. (2007). The little Heston trap.
Wilmott Magazine, January, 83-92.
"""

from __future__ import annotations

from collections.abc import Callable

import numpy as np

from ..enums import Dynamics
from ..exceptions import ConfigurationError
from ..market_inputs import BlackScholesInputs, HestonInputs, MarketInputs

CharacteristicFunction = Callable[[np.ndarray], np.ndarray]


def lognormal_characteristic_function(
    u: np.ndarray | complex,
    *,
    spot: float,
    time_to_maturity: float,
    rate: float,
    volatility: float,
) -> np.ndarray:
    """Characteristic function of ``log S_T`` for geometric Brownian motion."""
    u = np.asarray(u, dtype=complex)
    variance = volatility**2 * time_to_maturity
    mean = np.log(spot) + rate * time_to_maturity - 0.5 * variance
    return np.exp(1j * u * mean - 0.5 * variance * u**2)


def heston_characteristic_function(
    u: np.ndarray | complex,
    *,
    spot: float,
    time_to_maturity: float,
    rate: float,
    v0: float,
    kappa: float,
    theta: float,
    sigma: float,
    rho: float,
) -> np.ndarray:
    """Heston characteristic function in the "little trap" formulation.

    Writing ``xi = kappa - rho sigma i u`` and
    ``d = sqrt(xi**2 + sigma**2 (i u + u**2))``, the formulation with
    ``g = (xi - d) / (xi + d)`` keeps ``|g exp(-d T)| < 1`` so the complex log
    does not jump branches for long maturities.
    """
    u = np.asarray(u, dtype=complex)
    T = time_to_maturity
    xi = kappa - rho * sigma * 1j * u
    d = np.sqrt(xi**2 + sigma**2 * (1j * u + u**2))
    g = (xi - d) / (xi + d)
    exp_dT = np.exp(-d * T)

    C = (kappa * theta / sigma**2) * (
        (xi - d) * T - 2.0 * np.log((1.0 - g * exp_dT) / (1.0 - g))
    )
    D = ((xi - d) / sigma**2) * (1.0 - exp_dT) / (1.0 - g * exp_dT)
    return np.exp(1j * u * (np.log(spot) + rate * T) + C + D * v0)


def _lognormal(market: BlackScholesInputs, strike: float, ttm: float) -> CharacteristicFunction:
    if not isinstance(market, BlackScholesInputs):
        raise ConfigurationError("lognormal dynamics require BlackScholesInputs")
    rate = market.rate_curve.zero_rate(ttm)
    volatility = market.sigma_for(strike, ttm)

    def phi(u: np.ndarray) -> np.ndarray:
        return lognormal_characteristic_function(
            u, spot=market.spot, time_to_maturity=ttm, rate=rate, volatility=volatility
        )

    return phi


def _heston(market: HestonInputs, strike: float, ttm: float) -> CharacteristicFunction:
    if not isinstance(market, HestonInputs):
        raise ConfigurationError("Heston dynamics require HestonInputs")
    rate = market.rate_curve.zero_rate(ttm)
    v0, kappa, theta, sigma, rho = market.parameters

    def phi(u: np.ndarray) -> np.ndarray:
        return heston_characteristic_function(
            u,
            spot=market.spot,
            time_to_maturity=ttm,
            rate=rate,
            v0=v0,
            kappa=kappa,
            theta=theta,
            sigma=sigma,
            rho=rho,
        )

    return phi


_CHARACTERISTIC_FUNCTIONS: dict[Dynamics, Callable[..., CharacteristicFunction]] = {
    Dynamics.LOGNORMAL: _lognormal,
    Dynamics.HESTON: _heston,
}


def characteristic_function(
    dynamics: Dynamics, market: MarketInputs, strike: float, ttm: float
) -> CharacteristicFunction:
    """Return ``phi(u)`` of ``log S_ttm`` for ``dynamics`` calibrated to ``market``.

    ``strike`` only matters for lognormal markets with a volatility surface.
    """
    try:
        builder = _CHARACTERISTIC_FUNCTIONS[dynamics]
    except KeyError:
        raise ConfigurationError(f"no characteristic function for {dynamics!r}") from None
    return builder(market, strike, ttm)
