"""YAML configuration for calibration runs.

A run configuration is a nested mapping, typically::

    implied_vol:
      initial_guess: 0.5
      lower_bound: 0.0001
      upper_bound: 5.0
    calibration:
      initial_params: {v0: 0.1, kappa: 2.0, theta: 0.1, sigma: 0.5, rho: -0.5}
      lower_bounds:   {v0: 0.04, kappa: 0.5, theta: 0.04, sigma: 0.1, rho: -0.99}
      upper_bounds:   {v0: 1.0, kappa: 100.0, theta: 1.0, sigma: 20.0, rho: -0.01}
      optimizer: {method: trf, max_iterations: 200}
    pricing:
      method: carr_madan
      carr_madan: {alpha: 1.0, bound: 200.0}
    vol_quotes:
      price_iv_inconsistency: warn

The typed views below turn sections into library objects and raise
:class:`ConfigurationError` for malformed sections.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any

import numpy as np
import yaml

from .calibration.core import Optimizer
from .enums import Dynamics, SimulationScheme
from .exceptions import ConfigurationError, DerivativesError
from .market_data.vol_quotes import VolQuoteConfig
from .market_inputs import HESTON_PARAMETER_NAMES
from .valuation.binomial import CoxRossRubinstein
from .valuation.bsm import BlackScholesAnalytic
from .valuation.carr_madan import CarrMadan
from .valuation.core import PricingMethod
from .valuation.monte_carlo import LeastSquaresMonteCarlo, MonteCarlo
from .valuation.params import LSMParams, MonteCarloParams

__all__ = [
    "load_config",
    "merge_configs",
    "get_nested_value",
    "ImpliedVolSettings",
    "CalibrationSettings",
    "build_pricing_method",
    "build_optimizer",
    "build_vol_quote_config",
]

logger = logging.getLogger(__name__)


def load_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML file into a nested dict (an empty file gives ``{}``)."""
    path = Path(path)
    try:
        with path.open("r") as f:
            config = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"config file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"cannot parse YAML config {path}: {exc}") from exc
    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ConfigurationError(
            f"config {path} must hold a mapping at the top level, got {type(config).__name__}"
        )
    logger.debug("Loaded config from %s with sections %s", path, sorted(config))
    return config


def merge_configs(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(merged.get(key), Mapping) and isinstance(value, Mapping):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_nested_value(config: Mapping[str, Any], key: str, default: Any = None) -> Any:
    """Value at a dotted key such as ``"pricing.carr_madan.alpha"``, or ``default``."""
    current: Any = config
    for part in key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return current


def _section(config: Mapping[str, Any], name: str, *, required: bool = True) -> dict[str, Any]:
    section = config.get(name)
    if section is None:
        if required:
            raise ConfigurationError(f"missing config section '{name}'")
        return {}
    if not isinstance(section, Mapping):
        raise ConfigurationError(
            f"config section '{name}' must be a mapping, got {type(section).__name__}"
        )
    return dict(section)


def _build(factory: Callable[..., Any], label: str, **kwargs) -> Any:
    """Call ``factory`` and report bad knobs as configuration errors."""
    try:
        return factory(**kwargs)
    except (TypeError, ValueError, DerivativesError) as exc:
        raise ConfigurationError(f"invalid {label} settings {kwargs}: {exc}") from exc


# ── Typed views ─────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ImpliedVolSettings:
    """Implied-vol solver start point and search interval."""

    initial_guess: float = 0.5
    lower_bound: float = 1.0e-4
    upper_bound: float = 5.0

    def __post_init__(self) -> None:
        if not self.lower_bound < self.upper_bound:
            raise ConfigurationError(
                f"lower_bound {self.lower_bound} must be below upper_bound {self.upper_bound}"
            )
        if not self.lower_bound <= self.initial_guess <= self.upper_bound:
            raise ConfigurationError(
                f"initial_guess {self.initial_guess} outside "
                f"[{self.lower_bound}, {self.upper_bound}]"
            )

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> ImpliedVolSettings:
        section = _section(config, "implied_vol", required=False)
        try:
            values = {key: float(value) for key, value in section.items()}
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"implied_vol values must be numbers: {exc}") from exc
        return _build(cls, "implied_vol", **values)

    @property
    def bounds(self) -> tuple[float, float]:
        return (self.lower_bound, self.upper_bound)


def _heston_vector(section: Mapping[str, Any], name: str) -> np.ndarray:
    values = section.get(name)
    if not isinstance(values, Mapping):
        raise ConfigurationError(f"calibration.{name} must map {HESTON_PARAMETER_NAMES} to numbers")
    missing = [p for p in HESTON_PARAMETER_NAMES if p not in values]
    if missing:
        raise ConfigurationError(f"calibration.{name} is missing {missing}")
    unknown = sorted(set(values) - set(HESTON_PARAMETER_NAMES))
    if unknown:
        raise ConfigurationError(f"calibration.{name} has unknown parameters {unknown}")
    return np.array([float(values[p]) for p in HESTON_PARAMETER_NAMES])


@dataclass(frozen=True, slots=True)
class CalibrationSettings:
    """Heston starting point and box bounds, ordered ``(v0, kappa, theta, sigma, rho)``."""

    initial_params: np.ndarray
    lower_bounds: np.ndarray
    upper_bounds: np.ndarray

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> CalibrationSettings:
        section = _section(config, "calibration")
        settings = cls(
            initial_params=_heston_vector(section, "initial_params"),
            lower_bounds=_heston_vector(section, "lower_bounds"),
            upper_bounds=_heston_vector(section, "upper_bounds"),
        )
        if np.any(settings.lower_bounds >= settings.upper_bounds):
            raise ConfigurationError("every calibration lower bound must be below its upper bound")
        return settings

    def initial_dict(self) -> dict[str, float]:
        return dict(zip(HESTON_PARAMETER_NAMES, self.initial_params.tolist()))


# ── Builders ────────────────────────────────────────────────────────


def _dynamics(knobs: dict[str, Any], default: Dynamics) -> Dynamics:
    value = knobs.pop("dynamics", default)
    try:
        return Dynamics(value.lower()) if isinstance(value, str) else value
    except ValueError as exc:
        raise ConfigurationError(f"unknown dynamics {value!r}") from exc


def _monte_carlo_params(knobs: dict[str, Any], **defaults) -> MonteCarloParams:
    if "scheme" in knobs and isinstance(knobs["scheme"], str):
        try:
            knobs["scheme"] = SimulationScheme(knobs["scheme"].lower())
        except ValueError as exc:
            raise ConfigurationError(f"unknown simulation scheme {knobs['scheme']!r}") from exc
    return _build(MonteCarloParams, "monte carlo", **{**defaults, **knobs})


def _carr_madan(knobs: dict[str, Any]) -> PricingMethod:
    dynamics = _dynamics(knobs, Dynamics.HESTON)
    return _build(CarrMadan, "carr_madan", dynamics=dynamics, **knobs)


def _black_scholes(knobs: dict[str, Any]) -> PricingMethod:
    return _build(BlackScholesAnalytic, "black_scholes", **knobs)


def _binomial(knobs: dict[str, Any]) -> PricingMethod:
    return _build(CoxRossRubinstein, "binomial", **knobs)


def _monte_carlo(knobs: dict[str, Any]) -> PricingMethod:
    dynamics = _dynamics(knobs, Dynamics.LOGNORMAL)
    return _build(MonteCarlo, "monte_carlo", dynamics=dynamics, params=_monte_carlo_params(knobs))


def _lsm(knobs: dict[str, Any]) -> PricingMethod:
    dynamics = _dynamics(knobs, Dynamics.LOGNORMAL)
    lsm_knobs = {key: knobs.pop(key) for key in ("deg", "ridge_lambda", "min_itm") if key in knobs}
    return _build(
        LeastSquaresMonteCarlo,
        "lsm",
        dynamics=dynamics,
        params=_monte_carlo_params(knobs, trajectories=20_000, steps=50),
        lsm_params=_build(LSMParams, "lsm", **lsm_knobs),
    )


_METHOD_BUILDERS: dict[str, Callable[[dict[str, Any]], PricingMethod]] = {
    "carr_madan": _carr_madan,
    "black_scholes": _black_scholes,
    "binomial": _binomial,
    "monte_carlo": _monte_carlo,
    "lsm": _lsm,
}

_METHOD_ALIASES = {
    "carrmadan": "carr_madan",
    "blackscholes": "black_scholes",
    "blackscholesanalytic": "black_scholes",
    "crr": "binomial",
    "montecarlo": "monte_carlo",
    "least_squares_monte_carlo": "lsm",
}


def build_pricing_method(section: Mapping[str, Any]) -> PricingMethod:
    """Build the pricing method described by a ``pricing`` section.

    ``section["method"]`` names the method; knobs come from the sub-section
    of the same name, e.g. ``{"method": "binomial", "binomial": {"steps": 400}}``.
    """
    if not isinstance(section, Mapping) or "method" not in section:
        raise ConfigurationError("pricing section needs a 'method' entry")
    raw = str(section["method"])
    key = raw.lower()
    key = _METHOD_ALIASES.get(key, key)
    if key not in _METHOD_BUILDERS:
        raise ConfigurationError(
            f"unknown pricing method {raw!r}; expected one of {sorted(_METHOD_BUILDERS)}"
        )
    knobs = section.get(key) or section.get(raw) or {}
    if not isinstance(knobs, Mapping):
        raise ConfigurationError(f"pricing.{key} must be a mapping")
    method = _METHOD_BUILDERS[key](dict(knobs))
    logger.debug("Built pricing method %r from config", method)
    return method


def build_optimizer(config: Mapping[str, Any]) -> Optimizer:
    """:class:`Optimizer` from ``calibration.optimizer`` (defaults if absent)."""
    section = get_nested_value(config, "calibration.optimizer", {}) or {}
    if not isinstance(section, Mapping):
        raise ConfigurationError("calibration.optimizer must be a mapping")
    return _build(Optimizer, "optimizer", **section)


def build_vol_quote_config(config: Mapping[str, Any]) -> VolQuoteConfig:
    """:class:`VolQuoteConfig` from the ``vol_quotes`` section, seeded by ``implied_vol``."""
    section = _section(config, "vol_quotes", required=False)
    iv = ImpliedVolSettings.from_config(config)
    section.setdefault("iv_guess", iv.initial_guess)
    section.setdefault("iv_bounds", iv.bounds)
    if isinstance(section["iv_bounds"], list):
        section["iv_bounds"] = tuple(section["iv_bounds"])
    return _build(VolQuoteConfig, "vol_quotes", **section)
