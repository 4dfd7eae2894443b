"""Matching parameters: factor weights, gate thresholds, filters and boosts.

Gate State Flow:
----------------
1. Every candidate starts as "scored" once its five factors are computed.
2. The gate then labels it:
   - "auto_claimable" : auto matching enabled and score >= auto_claim_threshold
   - "auto_matchable" : auto matching enabled and score >= auto_match_threshold
   - "suggested"      : anything else (shown to the user, never auto-acted on)
3. A match row written by an explicit claim is stored as "claimed".

Eligibility is advisory. Nothing in this package creates a match on its own.
"""

from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from hopelink.matching.errors import ParameterValidationError

DEFAULT_CONTEXT = "DONOR_RECIPIENT_VOLUNTEER"

WEIGHT_SUM_TOLERANCE = 0.05
# Absorbs float noise so that a sum of exactly 1.05 on paper is accepted
_FLOAT_SLACK = 1e-9

_CONTEXT_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]{0,99}$")

FACTOR_NAMES = (
    "geographic_proximity",
    "item_compatibility",
    "urgency_alignment",
    "user_reliability",
    "delivery_compatibility",
)


class FactorWeights(BaseModel):
    """Relative importance of each scoring factor."""

    model_config = ConfigDict(frozen=True)

    geographic_proximity: float = Field(
        default=0.30, ge=0.0, le=1.0, description="Weight for distance between parties"
    )
    item_compatibility: float = Field(
        default=0.25, ge=0.0, le=1.0, description="Weight for category/quantity/text fit"
    )
    urgency_alignment: float = Field(
        default=0.20, ge=0.0, le=1.0, description="Weight for urgency vs readiness"
    )
    user_reliability: float = Field(
        default=0.15, ge=0.0, le=1.0, description="Weight for counterpart track record"
    )
    delivery_compatibility: float = Field(
        default=0.10, ge=0.0, le=1.0, description="Weight for delivery mode fit"
    )

    def total_weight(self) -> float:
        """Sum of all factor weights (should be close to 1.0)."""
        return (
            self.geographic_proximity
            + self.item_compatibility
            + self.urgency_alignment
            + self.user_reliability
            + self.delivery_compatibility
        )

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in FACTOR_NAMES}


def validate_weights(weights: FactorWeights) -> float:
    """
    Check that weights sum to 1.0 within tolerance.

    Args:
        weights: Weights to check

    Returns:
        The weight sum

    Raises:
        ParameterValidationError: If ``|sum - 1.0| > 0.05``
    """
    total = weights.total_weight()
    if math.isnan(total) or abs(total - 1.0) > WEIGHT_SUM_TOLERANCE + _FLOAT_SLACK:
        percentage = round(total * 100)
        raise ParameterValidationError(
            f"Matching weights must sum to 100% (currently {percentage}%)",
            weight_percentage=percentage,
        )
    return total


def validate_context(context: str) -> str:
    """Reject context identifiers that are not UPPER_SNAKE_CASE."""
    if not isinstance(context, str) or not _CONTEXT_PATTERN.match(context):
        raise ParameterValidationError(f"Unknown matching context: {context!r}")
    return context


class FuzzyMatchConfig(BaseModel):
    """Configuration for title similarity."""

    min_similarity: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Fuzzy scores below this count as 0"
    )
    use_fuzzy_titles: bool = Field(
        default=True, description="Use rapidfuzz token-set ratio on titles"
    )


class ThresholdConfig(BaseModel):
    """Auto-match / auto-claim gate."""

    model_config = ConfigDict(frozen=True)

    auto_match_enabled: bool = Field(
        default=False, description="Allow candidates to be flagged for auto actions"
    )
    auto_match_threshold: float = Field(
        default=0.75, ge=0.0, le=1.0, description="Score needed for auto-match eligibility"
    )
    auto_claim_threshold: float = Field(
        default=0.85, ge=0.0, le=1.0, description="Score needed for auto-claim eligibility"
    )

    def validate_thresholds(self) -> None:
        """Require auto_claim_threshold >= auto_match_threshold.

        Raises:
            ParameterValidationError: If the thresholds are out of order
        """
        if self.auto_claim_threshold < self.auto_match_threshold:
            raise ParameterValidationError(
                "Auto-claim threshold must be greater than or equal to the "
                f"auto-match threshold ({self.auto_claim_threshold:.2f} < "
                f"{self.auto_match_threshold:.2f})"
            )


class MatchingParameters(BaseModel):
    """Immutable snapshot of every tunable used by one matching context."""

    model_config = ConfigDict(frozen=True)

    context: str = Field(default=DEFAULT_CONTEXT, description="Parameter group")
    weights: FactorWeights = Field(default_factory=FactorWeights)

    # Gate
    auto_match_enabled: bool = Field(
        default=False, description="Allow candidates to be flagged for auto actions"
    )
    auto_match_threshold: float = Field(
        default=0.75, ge=0.0, le=1.0, description="Score needed for auto-match eligibility"
    )
    auto_claim_threshold: float = Field(
        default=0.85, ge=0.0, le=1.0, description="Score needed for auto-claim eligibility"
    )

    # Hard filters
    max_distance_km: float = Field(
        default=50.0, gt=0.0, le=20000.0, description="Candidates farther away are dropped"
    )
    min_quantity_match_ratio: float = Field(
        default=0.8, ge=0.0, le=1.0, description="Minimum offered/needed quantity ratio"
    )

    # Boosts
    perishable_geographic_boost: float = Field(
        default=0.35, ge=0.0, le=1.0, description="Relative proximity boost for perishables"
    )
    critical_urgency_boost: float = Field(
        default=0.30, ge=0.0, le=1.0, description="Relative urgency boost for critical needs"
    )

    description: str | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)

    @property
    def thresholds(self) -> ThresholdConfig:
        """The gate fields as one object."""
        return ThresholdConfig(
            auto_match_enabled=self.auto_match_enabled,
            auto_match_threshold=self.auto_match_threshold,
            auto_claim_threshold=self.auto_claim_threshold,
        )

    def validate_config(self) -> None:
        """Validate the whole record.

        Raises:
            ParameterValidationError: On a bad context, weight sum or threshold order
        """
        validate_context(self.context)
        validate_weights(self.weights)
        self.thresholds.validate_thresholds()

    @classmethod
    def from_record(cls, record: Any) -> "MatchingParameters":
        """Build parameters from a ``matching_parameters`` row."""
        return cls(
            context=record.parameter_group,
            weights=FactorWeights(
                geographic_proximity=record.geographic_weight,
                item_compatibility=record.item_compatibility_weight,
                urgency_alignment=record.urgency_weight,
                user_reliability=record.reliability_weight,
                delivery_compatibility=record.delivery_compatibility_weight,
            ),
            auto_match_enabled=record.auto_match_enabled,
            auto_match_threshold=record.auto_match_threshold,
            auto_claim_threshold=record.auto_claim_threshold,
            max_distance_km=record.max_matching_distance_km,
            min_quantity_match_ratio=record.min_quantity_match_ratio,
            perishable_geographic_boost=record.perishable_geographic_boost,
            critical_urgency_boost=record.critical_urgency_boost,
            description=record.description,
            updated_at=record.updated_at,
        )

    def to_record_values(self) -> dict[str, Any]:
        """Column values for persisting these parameters."""
        return {
            "geographic_weight": self.weights.geographic_proximity,
            "item_compatibility_weight": self.weights.item_compatibility,
            "urgency_weight": self.weights.urgency_alignment,
            "reliability_weight": self.weights.user_reliability,
            "delivery_compatibility_weight": self.weights.delivery_compatibility,
            "auto_match_enabled": self.auto_match_enabled,
            "auto_match_threshold": self.auto_match_threshold,
            "auto_claim_threshold": self.auto_claim_threshold,
            "max_matching_distance_km": self.max_distance_km,
            "min_quantity_match_ratio": self.min_quantity_match_ratio,
            "perishable_geographic_boost": self.perishable_geographic_boost,
            "critical_urgency_boost": self.critical_urgency_boost,
            "description": self.description,
        }
