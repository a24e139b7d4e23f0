"""Custom exception hierarchy for the option_calibration library.

All library-specific exceptions inherit from :class:`DerivativesError`,
enabling callers to catch *any* library error with a single ``except`` clause::

    try:
        result = calibrate_heston(surface, rate=0.03)
    except DerivativesError as exc:
        log.error("Library error: %s", exc)

Bulk callers (basket repricing, fit statistics) catch :class:`NumericalError`
per item and substitute a fallback; everything else is the caller's fault and
propagates.
"""

from __future__ import annotations


class DerivativesError(Exception):
    """Base exception for all library errors."""


# ── Input validation ────────────────────────────────────────────────


class ValidationError(DerivativesError):
    """Invalid input values (out-of-range, non-finite, mutually exclusive inputs, etc.)."""


class MarketDataError(ValidationError):
    """A market quote or surface violates an invariant under a RAISE policy."""


class ConfigurationError(DerivativesError):
    """Wrong types or incompatible combinations passed to a public API."""


# ── Feature support ─────────────────────────────────────────────────


class UnsupportedFeatureError(DerivativesError):
    """Requested feature combination is not (yet) supported."""


# ── Numerical issues ────────────────────────────────────────────────


class NumericalError(DerivativesError):
    """Base for errors arising from numerical computation."""


class ArbitrageViolationError(NumericalError):
    """Model parameters imply an arbitrage (e.g. risk-neutral probability outside [0, 1])."""


class ConvergenceError(NumericalError):
    """An iterative solver failed to converge within the allowed tolerance / iterations."""


class PricingError(NumericalError):
    """A pricing call failed inside the solver (integration failure, expired option, timeout)."""


# ── Warnings ────────────────────────────────────────────────────────


class MarketDataWarning(UserWarning):
    """A market quote or surface violates an invariant under a WARN policy."""
