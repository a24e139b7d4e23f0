"""Path simulation for the supported risk-neutral dynamics.

Every path owns a seed. A path's random draws come only from
``np.random.default_rng(seed)``, so simulating a set of seeds gives the same
paths whether they are generated in one call or split across workers.

Generators return spot paths of shape ``(steps + 1, n_paths)`` on the uniform
grid ``linspace(0, ttm, steps + 1)``.
"""

from __future__ import annotations

from collections.abc import Callable

import numpy as np

from .enums import Dynamics, SimulationScheme
from .exceptions import ConfigurationError, ValidationError
from .market_inputs import BlackScholesInputs, HestonInputs, MarketInputs

__all__ = [
    "draw_path_seeds",
    "time_grid",
    "path_generator",
    "simulate_paths",
    "supported_schemes",
]

PathGenerator = Callable[[MarketInputs, float, float, int, np.ndarray], np.ndarray]

_MAX_SEED = np.iinfo(np.int64).max


def draw_path_seeds(rng: np.random.Generator, n_paths: int) -> np.ndarray:
    """Draw one seed per path from a caller-owned generator."""
    if n_paths < 1:
        raise ValidationError(f"n_paths must be >= 1, got {n_paths}")
    return rng.integers(0, _MAX_SEED, size=int(n_paths), dtype=np.int64)


def time_grid(ttm: float, steps: int) -> np.ndarray:
    return np.linspace(0.0, ttm, steps + 1)


def _path_normals(seeds: np.ndarray, shape: tuple[int, ...]) -> np.ndarray:
    """Standard normals of shape ``shape + (n_paths,)``, one stream per seed."""
    draws = [np.random.default_rng(int(seed)).standard_normal(shape) for seed in seeds]
    return np.stack(draws, axis=-1)


def _drift_rates(market: MarketInputs, ttm: float, steps: int) -> tuple[np.ndarray, float]:
    grid = time_grid(ttm, steps)
    return market.rate_curve.step_forward_rates(grid), ttm / steps


# ── Lognormal ───────────────────────────────────────────────────────


def _lognormal_exact(
    market: BlackScholesInputs, strike: float, ttm: float, steps: int, seeds: np.ndarray
) -> np.ndarray:
    """Exact sampling of geometric Brownian motion on the grid."""
    sigma = market.sigma_for(strike, ttm)
    rates, dt = _drift_rates(market, ttm, steps)
    z = _path_normals(seeds, (steps,))
    increments = ((rates - 0.5 * sigma**2) * dt)[:, None] + sigma * np.sqrt(dt) * z
    log_paths = np.vstack([np.zeros((1, seeds.size)), np.cumsum(increments, axis=0)])
    return market.spot * np.exp(log_paths)


def _lognormal_euler(
    market: BlackScholesInputs, strike: float, ttm: float, steps: int, seeds: np.ndarray
) -> np.ndarray:
    """Euler-Maruyama stepping of dS = r S dt + sigma S dW."""
    sigma = market.sigma_for(strike, ttm)
    rates, dt = _drift_rates(market, ttm, steps)
    z = _path_normals(seeds, (steps,))
    paths = np.empty((steps + 1, seeds.size))
    paths[0] = market.spot
    for t in range(steps):
        paths[t + 1] = paths[t] * (1.0 + rates[t] * dt + sigma * np.sqrt(dt) * z[t])
    return paths


# ── Heston ──────────────────────────────────────────────────────────


def _heston_euler(
    market: HestonInputs, strike: float, ttm: float, steps: int, seeds: np.ndarray
) -> np.ndarray:
    """Log-Euler for the spot, full truncation Euler for the variance.

    Truncating the variance at zero inside drift and diffusion keeps the
    scheme well defined when the Feller condition fails.
    """
    v0, kappa, theta, sigma, rho = market.parameters
    rates, dt = _drift_rates(market, ttm, steps)
    z = _path_normals(seeds, (steps, 2))
    rho_bar = np.sqrt(1.0 - rho**2)

    log_spot = np.full(seeds.size, np.log(market.spot))
    variance = np.full(seeds.size, v0)
    log_paths = np.empty((steps + 1, seeds.size))
    log_paths[0] = log_spot
    for t in range(steps):
        v_plus = np.maximum(variance, 0.0)
        sqrt_v_dt = np.sqrt(v_plus * dt)
        z_spot = z[t, 0]
        z_var = rho * z_spot + rho_bar * z[t, 1]
        log_spot = log_spot + (rates[t] - 0.5 * v_plus) * dt + sqrt_v_dt * z_spot
        variance = variance + kappa * (theta - v_plus) * dt + sigma * sqrt_v_dt * z_var
        log_paths[t + 1] = log_spot
    return np.exp(log_paths)


def _heston_broadie_kaya(
    market: HestonInputs, strike: float, ttm: float, steps: int, seeds: np.ndarray
) -> np.ndarray:
    """Broadie-Kaya scheme: exact variance transitions, trapezoidal integrated variance.

    The variance is sampled from its non-central chi-square transition law.
    Given the variance at both ends of a step, the spot increment is
    conditionally normal:

        log S' = log S + r dt - I/2 + rho/sigma (v' - v - kappa theta dt + kappa I)
                 + sqrt((1 - rho**2) I) Z

    with ``I = (v + v') dt / 2`` approximating the integrated variance.
    """
    v0, kappa, theta, sigma, rho = market.parameters
    rates, dt = _drift_rates(market, ttm, steps)
    decay = np.exp(-kappa * dt)
    scale = sigma**2 * (1.0 - decay) / (4.0 * kappa)
    dof = 4.0 * kappa * theta / sigma**2
    rho_bar_sq = 1.0 - rho**2

    log_paths = np.empty((steps + 1, seeds.size))
    log_paths[0] = np.log(market.spot)
    for j, seed in enumerate(seeds):
        gen = np.random.default_rng(int(seed))
        variance = v0
        log_spot = log_paths[0, j]
        for t in range(steps):
            v_next = scale * gen.noncentral_chisquare(dof, variance * decay / scale)
            integrated = 0.5 * (variance + v_next) * dt
            vol_part = (v_next - variance - kappa * theta * dt + kappa * integrated) / sigma
            log_spot += (
                rates[t] * dt
                - 0.5 * integrated
                + rho * vol_part
                + np.sqrt(rho_bar_sq * integrated) * gen.standard_normal()
            )
            variance = v_next
            log_paths[t + 1, j] = log_spot
    return np.exp(log_paths)


# ── Dispatch over (dynamics, scheme) ────────────────────────────────

_PATH_GENERATORS: dict[tuple[Dynamics, SimulationScheme], PathGenerator] = {
    (Dynamics.LOGNORMAL, SimulationScheme.EXACT): _lognormal_exact,
    (Dynamics.LOGNORMAL, SimulationScheme.EULER_MARUYAMA): _lognormal_euler,
    (Dynamics.HESTON, SimulationScheme.EULER_MARUYAMA): _heston_euler,
    (Dynamics.HESTON, SimulationScheme.BROADIE_KAYA): _heston_broadie_kaya,
}

_MARKET_TYPES: dict[Dynamics, type] = {
    Dynamics.LOGNORMAL: BlackScholesInputs,
    Dynamics.HESTON: HestonInputs,
}


def supported_schemes(dynamics: Dynamics) -> tuple[SimulationScheme, ...]:
    return tuple(scheme for (dyn, scheme) in _PATH_GENERATORS if dyn is dynamics)


def path_generator(dynamics: Dynamics, scheme: SimulationScheme) -> PathGenerator:
    """Look up the generator for a (dynamics, scheme) pair."""
    try:
        return _PATH_GENERATORS[(dynamics, scheme)]
    except KeyError:
        raise ConfigurationError(
            f"no {scheme!r} path generator for {dynamics!r}; "
            f"supported schemes: {[s.value for s in supported_schemes(dynamics)]}"
        ) from None


def simulate_paths(
    dynamics: Dynamics,
    scheme: SimulationScheme,
    market: MarketInputs,
    *,
    strike: float,
    ttm: float,
    steps: int,
    seeds: np.ndarray,
) -> np.ndarray:
    """Simulate one spot path per seed.

    Parameters
    ==========
    dynamics, scheme:
        Risk-neutral law and discretisation.
    market:
        Market inputs matching ``dynamics``.
    strike:
        Only used to read a strike-dependent volatility surface.
    ttm:
        Horizon in years.
    steps:
        Number of time steps.
    seeds:
        One integer seed per path.

    Returns
    =======
    np.ndarray
        Spot paths, shape ``(steps + 1, len(seeds))``.
    """
    generator = path_generator(dynamics, scheme)
    expected = _MARKET_TYPES[dynamics]
    if not isinstance(market, expected):
        raise ConfigurationError(
            f"{dynamics.value} dynamics require {expected.__name__}, "
            f"got {type(market).__name__}"
        )
    if steps < 1:
        raise ValidationError(f"steps must be >= 1, got {steps}")
    if ttm <= 0.0:
        raise ValidationError(f"ttm must be positive, got {ttm}")
    return generator(market, strike, ttm, int(steps), np.asarray(seeds, dtype=np.int64))
