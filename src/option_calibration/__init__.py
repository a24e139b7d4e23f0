from .enums import (
    OptionType,
    ExerciseType,
    Dynamics,
    SimulationScheme,
    ImpliedVolMethod,
    UnderlyingKind,
    ValidationHandling,
    DayCountConvention,
)
from .exceptions import (
    DerivativesError,
    ValidationError,
    MarketDataError,
    ConfigurationError,
    UnsupportedFeatureError,
    NumericalError,
    ArbitrageViolationError,
    ConvergenceError,
    PricingError,
    MarketDataWarning,
)
from .rates import DiscountCurve
from .market_inputs import BlackScholesInputs, HestonInputs
from .payoffs import VanillaOption
from .valuation import (
    PricingProblem,
    BasketPricingProblem,
    PricingMethod,
    Solution,
    BasketSolution,
    solve,
    solve_basket,
    MonteCarloParams,
    LSMParams,
    BlackScholesAnalytic,
    CarrMadan,
    CoxRossRubinstein,
    MonteCarlo,
    LeastSquaresMonteCarlo,
)
from .calibration import (
    Lens,
    CalibrationProblem,
    CalibrationResult,
    Optimizer,
    RootFinder,
    iv_to_price,
    price_to_iv,
    try_price_to_iv,
    implied_vol_or_fallback,
    calibrate_heston,
    compute_fit_statistics,
)
from .market_data import (
    SpotObservation,
    ForwardObservation,
    FuturesObservation,
    VolQuoteConfig,
    VolQuote,
    FuturesCurve,
    MarketVolSurface,
)


__all__ = [
    "OptionType",
    "ExerciseType",
    "Dynamics",
    "SimulationScheme",
    "ImpliedVolMethod",
    "UnderlyingKind",
    "ValidationHandling",
    "DayCountConvention",
    "DerivativesError",
    "ValidationError",
    "MarketDataError",
    "ConfigurationError",
    "UnsupportedFeatureError",
    "NumericalError",
    "ArbitrageViolationError",
    "ConvergenceError",
    "PricingError",
    "MarketDataWarning",
    "DiscountCurve",
    "BlackScholesInputs",
    "HestonInputs",
    "VanillaOption",
    "PricingProblem",
    "BasketPricingProblem",
    "PricingMethod",
    "Solution",
    "BasketSolution",
    "solve",
    "solve_basket",
    "MonteCarloParams",
    "LSMParams",
    "BlackScholesAnalytic",
    "CarrMadan",
    "CoxRossRubinstein",
    "MonteCarlo",
    "LeastSquaresMonteCarlo",
    "Lens",
    "CalibrationProblem",
    "CalibrationResult",
    "Optimizer",
    "RootFinder",
    "iv_to_price",
    "price_to_iv",
    "try_price_to_iv",
    "implied_vol_or_fallback",
    "calibrate_heston",
    "compute_fit_statistics",
    "SpotObservation",
    "ForwardObservation",
    "FuturesObservation",
    "VolQuoteConfig",
    "VolQuote",
    "FuturesCurve",
    "MarketVolSurface",
]
