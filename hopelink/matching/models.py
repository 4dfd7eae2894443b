"""Data models for scoring inputs, candidates and recommendations."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hopelink.matching.geo import Location


def _assume_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; every stored timestamp is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MatchState(str, Enum):
    """Where a candidate sits in the auto-match / auto-claim gate."""

    SCORED = "scored"
    SUGGESTED = "suggested"
    AUTO_MATCHABLE = "auto_matchable"
    AUTO_CLAIMABLE = "auto_claimable"
    CLAIMED = "claimed"


class _Located(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    latitude: float | None = None
    longitude: float | None = None
    city: str | None = None
    barangay: str | None = None

    @property
    def location(self) -> Location:
        return Location(self.latitude, self.longitude, self.city, self.barangay)

    @field_validator("created_at", check_fields=False)
    @classmethod
    def utc_created_at(cls, value: datetime | None) -> datetime | None:
        return _assume_utc(value)


class UserProfile(_Located):
    """What the scorer needs to know about a person."""

    id: int
    role: str
    name: str = ""
    status: str = "active"
    rating_average: float = Field(default=0.0, ge=0.0, le=5.0)
    rating_count: int = Field(default=0, ge=0)
    completed_tasks: int = Field(default=0, ge=0, description="Delivered matches")
    total_tasks: int = Field(default=0, ge=0, description="All matches taken part in")
    active_deliveries: int = Field(default=0, ge=0, description="Volunteer only")
    donation_types: list[str] | None = None
    assistance_needs: list[str] | None = None
    preferred_delivery_types: list[str] | None = None
    urgency_preference: str | None = None
    created_at: datetime | None = None

    @property
    def has_history(self) -> bool:
        return self.rating_count > 0 or self.total_tasks > 0


class DonationView(_Located):
    """A donation as seen by the scorer."""

    id: int
    donor_id: int
    title: str
    description: str | None = None
    category: str
    tags: list[str] | None = None
    quantity: int = Field(..., ge=0, description="Remaining quantity on offer")
    status: str = "available"
    delivery_mode: str = "pickup"
    is_urgent: bool = False
    is_perishable: bool | None = None
    pickup_location: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RequestView(_Located):
    """A donation request as seen by the scorer."""

    id: int
    requester_id: int
    title: str
    description: str | None = None
    category: str
    tags: list[str] | None = None
    quantity_needed: int = Field(default=1, ge=1)
    urgency: str = Field(default="medium", description="low, medium, high or critical")
    delivery_mode: str = "pickup"
    delivery_location: str | None = None
    status: str = "open"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DeliveryTask(BaseModel):
    """A claimed match waiting for a volunteer to carry it."""

    match_id: int
    request: RequestView
    donation: DonationView
    quantity: int = 1
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("created_at")
    @classmethod
    def utc_created_at(cls, value: datetime) -> datetime:
        return _assume_utc(value)  # type: ignore[return-value]


class FactorScore(BaseModel):
    """Score from a single factor."""

    factor: str = Field(..., description="Factor name")
    score: float = Field(..., ge=0.0, le=1.0, description="Factor score (0-1)")
    weight: float = Field(..., ge=0.0, le=1.0, description="Factor weight in total score")
    weighted_score: float = Field(..., ge=0.0, le=1.0, description="Score x weight")
    details: dict = Field(default_factory=dict, description="Factor-specific details")


class MatchCandidate(BaseModel):
    """A scored counterpart for a request, donation or delivery task."""

    kind: Literal["donation", "request", "volunteer", "task"]
    candidate_id: int = Field(..., description="ID of the counterpart row")
    candidate_created_at: datetime = Field(..., description="Used to break score ties")

    request: RequestView | None = None
    donation: DonationView | None = None
    volunteer: UserProfile | None = None
    task_match_id: int | None = Field(default=None, description="Match awaiting delivery")

    factor_scores: list[FactorScore] = Field(default_factory=list)
    score: float = Field(default=0.0, ge=0.0, le=1.0, description="Final score")
    distance_km: float | None = None
    match_reason: str = "Good match"
    state: MatchState = MatchState.SCORED
    auto_match_eligible: bool = False
    auto_claim_eligible: bool = False
    rank: int | None = Field(default=None, description="Rank among candidates (1=best)")

    scored_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("candidate_created_at")
    @classmethod
    def utc_candidate_created_at(cls, value: datetime) -> datetime:
        return _assume_utc(value)  # type: ignore[return-value]

    def add_factor_score(
        self, factor: str, score: float, weight: float, details: dict | None = None
    ) -> None:
        """Record a factor score. The final score is set by the scorer."""
        self.factor_scores.append(
            FactorScore(
                factor=factor,
                score=score,
                weight=weight,
                weighted_score=round(score * weight, 6),
                details=details or {},
            )
        )

    def factor(self, name: str) -> float:
        """Score of one factor (0 if it was not computed)."""
        for fs in self.factor_scores:
            if fs.factor == name:
                return fs.score
        return 0.0

    @property
    def factors(self) -> dict[str, float]:
        return {fs.factor: fs.score for fs in self.factor_scores}

    def get_score_breakdown(self) -> dict[str, Any]:
        """Get detailed score breakdown."""
        return {
            "score": self.score,
            "state": self.state.value,
            "reason": self.match_reason,
            "distance_km": self.distance_km,
            "factors": [
                {
                    "factor": fs.factor,
                    "score": fs.score,
                    "weight": fs.weight,
                    "weighted_score": fs.weighted_score,
                    "details": fs.details,
                }
                for fs in self.factor_scores
            ],
        }


class DonationMatchesRecommendation(BaseModel):
    """Recipient view: one of their requests and the donations that fit it."""

    kind: Literal["donation_matches"] = "donation_matches"
    request: RequestView
    matches: list[MatchCandidate] = Field(default_factory=list)


class RequestMatchesRecommendation(BaseModel):
    """Donor view: one of their donations and the requests it could serve."""

    kind: Literal["request_matches"] = "request_matches"
    donation: DonationView
    matches: list[MatchCandidate] = Field(default_factory=list)


class VolunteerOpportunitiesRecommendation(BaseModel):
    """Volunteer view: delivery tasks ranked for them."""

    kind: Literal["volunteer_opportunities"] = "volunteer_opportunities"
    opportunities: list[MatchCandidate] = Field(default_factory=list)


Recommendation = Annotated[
    Union[
        DonationMatchesRecommendation,
        RequestMatchesRecommendation,
        VolunteerOpportunitiesRecommendation,
    ],
    Field(discriminator="kind"),
]


class RecommendationSet(BaseModel):
    """Everything recommended to one user in one refresh."""

    user_id: int
    role: Literal["donor", "recipient", "volunteer"]
    recommendations: list[Recommendation] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    algorithm: str = "weighted_multi_criteria"
    parameters_context: str | None = None


class MatchRecord(BaseModel):
    """A persisted match as returned to callers."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    request_id: int
    donation_id: int
    volunteer_id: int | None = None
    quantity: int
    score: float
    state: str
    status: str
    delivery_mode: str
    match_reason: str | None = None
    created_at: datetime


class SmartMatchResult(BaseModel):
    """Outcome of an explicit claim."""

    success: bool = True
    created: bool = Field(..., description="False when an existing match was returned")
    match: MatchRecord
    score_breakdown: dict[str, Any] = Field(default_factory=dict)


class OptimalMatch(BaseModel):
    """A request/donation pair, optionally with a volunteer, from the global sweep."""

    match_type: Literal["three_way", "direct"]
    request: RequestView
    donation: DonationView
    volunteer: UserProfile | None = None
    pair_score: float = Field(..., ge=0.0, le=1.0)
    volunteer_score: float | None = Field(default=None, ge=0.0, le=1.0)
    combined_score: float = Field(..., ge=0.0, le=1.0)
    match_reason: str
    estimated_delivery_minutes: int
