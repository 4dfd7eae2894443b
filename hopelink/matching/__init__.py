"""Matching engine module exports."""

from hopelink.matching.config import (
    DEFAULT_CONTEXT,
    FactorWeights,
    FuzzyMatchConfig,
    MatchingParameters,
    ThresholdConfig,
    validate_weights,
)

from hopelink.matching.errors import (
    CandidateNotFoundError,
    MatchingError,
    ParameterValidationError,
    StaleCandidateError,
    TransientFetchError,
)

from hopelink.matching.models import (
    FactorScore,
    MatchCandidate,
    MatchState,
    RecommendationSet,
    SmartMatchResult,
)

from hopelink.matching.engine import (
    MatchingEngine,
    refresh_recommendations,
)

from hopelink.matching.parameters import (
    ParameterStore,
    get_parameter_store,
)

from hopelink.matching.metrics import (
    MatchingMetrics,
    get_metrics,
    reset_metrics,
)

__all__ = [
    # Config
    "DEFAULT_CONTEXT",
    "FactorWeights",
    "FuzzyMatchConfig",
    "MatchingParameters",
    "ThresholdConfig",
    "validate_weights",
    # Errors
    "CandidateNotFoundError",
    "MatchingError",
    "ParameterValidationError",
    "StaleCandidateError",
    "TransientFetchError",
    # Models
    "FactorScore",
    "MatchCandidate",
    "MatchState",
    "RecommendationSet",
    "SmartMatchResult",
    # Engine
    "MatchingEngine",
    "refresh_recommendations",
    # Parameters
    "ParameterStore",
    "get_parameter_store",
    # Metrics
    "MatchingMetrics",
    "get_metrics",
    "reset_metrics",
]
