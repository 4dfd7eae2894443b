"""Factor rules for scoring request/donation pairs and volunteer tasks."""

from __future__ import annotations

import logging
import math
from typing import Any

from hopelink.matching.categories import (
    CATCH_ALL_DELIVERY_TYPE,
    DELIVERY_TYPES_FOR_CATEGORY,
    category_score,
    is_perishable,
    normalize_category,
    normalize_label,
    preference_covers,
)
from hopelink.matching.config import FuzzyMatchConfig, MatchingParameters
from hopelink.matching.fuzzy import FuzzyMatcher
from hopelink.matching.geo import Location, distance_km, normalize_distance
from hopelink.matching.models import DeliveryTask, DonationView, RequestView, UserProfile

logger = logging.getLogger(__name__)

URGENCY_LEVELS = {"low": 1, "medium": 2, "high": 3, "critical": 4}
URGENCY_DECAY = 1.5

COMPATIBLE_DELIVERY_MODES = {
    "volunteer": ("pickup", "direct"),
    "pickup": ("volunteer",),
    "direct": ("volunteer",),
}

PREFERENCE_BONUS = 0.15
MAX_ACTIVE_DELIVERIES = 3


def clamp(value: float) -> float:
    """Clamp to [0, 1] and round to 4 decimals. NaN counts as 0."""
    if math.isnan(value):
        return 0.0
    return round(max(0.0, min(1.0, value)), 4)


def urgency_level(value: str | None) -> int:
    return URGENCY_LEVELS.get((value or "").strip().lower(), URGENCY_LEVELS["medium"])


class MatchingRules:
    """Individual factor rules. Each returns ``(score, details)``."""

    def __init__(
        self,
        params: MatchingParameters | None = None,
        fuzzy_config: FuzzyMatchConfig | None = None,
    ):
        """
        Initialize matching rules.

        Args:
            params: Active matching parameters
            fuzzy_config: Title similarity configuration
        """
        self.params = params or MatchingParameters()
        self.fuzzy_matcher = FuzzyMatcher(fuzzy_config)

    # Request / donation pair

    def geographic_proximity(
        self, a: Location, b: Location
    ) -> tuple[float, dict[str, Any]]:
        """
        Score closeness of two parties.

        Unknown distance scores a neutral 0.5 rather than excluding anyone.
        """
        km, method = distance_km(a, b)
        score = normalize_distance(km, self.params.max_distance_km)
        details: dict[str, Any] = {
            "distance_km": round(km, 2) if km is not None else None,
            "method": method,
            "max_distance_km": self.params.max_distance_km,
        }
        return clamp(score), details

    def quantity_ratio(self, offered: int, needed: int) -> float:
        """Offered over needed, capped at 1."""
        if needed <= 0:
            return 1.0
        return min(1.0, max(0, offered) / needed)

    def item_compatibility(
        self,
        donation: DonationView,
        request: RequestView,
        donor: UserProfile | None = None,
        recipient: UserProfile | None = None,
    ) -> tuple[float, dict[str, Any]]:
        """
        Score how well the donated item serves the request.

        ``0.5 * category + 0.3 * quantity + 0.2 * text``, plus a bonus for
        each party whose profile preferences cover the category.
        """
        category = category_score(donation.category, request.category)
        quantity = self.quantity_ratio(donation.quantity, request.quantity_needed)
        text = self.fuzzy_matcher.item_similarity(
            donation.title, request.title, donation.tags, request.tags
        )

        base = 0.5 * category + 0.3 * quantity + 0.2 * text["best"]

        bonus = 0.0
        donor_pref = donor is not None and preference_covers(
            donor.donation_types, donation.category
        )
        recipient_pref = recipient is not None and preference_covers(
            recipient.assistance_needs, request.category
        )
        if donor_pref:
            bonus += PREFERENCE_BONUS
        if recipient_pref:
            bonus += PREFERENCE_BONUS

        details: dict[str, Any] = {
            "category_score": category,
            "quantity_ratio": round(quantity, 4),
            "text_similarity": text,
            "donor_preference_match": donor_pref,
            "recipient_preference_match": recipient_pref,
        }
        return clamp(base + bonus), details

    def urgency_alignment(
        self, request: RequestView, donation: DonationView
    ) -> tuple[float, dict[str, Any]]:
        """
        Score how well the donation's readiness meets the request's urgency.

        Donations flagged urgent are treated as ready at "high",
        everything else at "medium". Score decays exponentially with the
        level gap.
        """
        readiness = "high" if donation.is_urgent else "medium"
        gap = abs(urgency_level(request.urgency) - urgency_level(readiness))
        details = {
            "request_urgency": request.urgency,
            "donation_readiness": readiness,
            "level_gap": gap,
        }
        return clamp(math.exp(-gap / URGENCY_DECAY)), details

    def user_reliability(self, user: UserProfile | None) -> tuple[float, dict[str, Any]]:
        """
        Score a user's track record.

        ``0.7 * rating/5 + 0.3 * completion rate + min(completed/10, 0.2)``.
        Users without ratings or tasks get a neutral 0.5.
        """
        if user is None or not user.has_history:
            return 0.5, {"history": "none"}

        completion = user.completed_tasks / user.total_tasks if user.total_tasks else 0.0
        experience = min(user.completed_tasks / 10, 0.2)
        score = (user.rating_average / 5) * 0.7 + completion * 0.3 + experience
        details = {
            "rating_average": user.rating_average,
            "rating_count": user.rating_count,
            "completion_rate": round(completion, 4),
            "experience_bonus": round(experience, 4),
        }
        return clamp(score), details

    def delivery_compatibility(
        self, offered_mode: str | None, wanted_mode: str | None
    ) -> tuple[float, dict[str, Any]]:
        """Same mode 1.0, volunteer with pickup/direct 0.7, anything else 0.3."""
        a = (offered_mode or "").strip().lower()
        b = (wanted_mode or "").strip().lower()
        details = {"donation_mode": a or None, "request_mode": b or None}
        if a and a == b:
            return 1.0, details
        if b in COMPATIBLE_DELIVERY_MODES.get(a, ()):
            return 0.7, details
        return 0.3, details

    def is_perishable(self, donation: DonationView) -> bool:
        return is_perishable(donation.category, donation.is_perishable)

    # Volunteer / delivery task

    def volunteer_proximity(
        self, volunteer: UserProfile, task: DeliveryTask
    ) -> tuple[float, dict[str, Any]]:
        """Score by the mean of volunteer-to-pickup and volunteer-to-dropoff distances."""
        to_pickup, _ = distance_km(volunteer.location, task.donation.location)
        to_dropoff, _ = distance_km(volunteer.location, task.request.location)
        known = [d for d in (to_pickup, to_dropoff) if d is not None]
        mean = sum(known) / len(known) if known else None

        details: dict[str, Any] = {
            "to_pickup_km": round(to_pickup, 2) if to_pickup is not None else None,
            "to_dropoff_km": round(to_dropoff, 2) if to_dropoff is not None else None,
            "distance_km": round(mean, 2) if mean is not None else None,
        }
        return clamp(normalize_distance(mean, self.params.max_distance_km)), details

    def volunteer_item_compatibility(
        self, volunteer: UserProfile, task: DeliveryTask
    ) -> tuple[float, dict[str, Any]]:
        """
        Score the task's item category against the volunteer's carry preferences.

        Exact delivery type 1.0, partial label overlap 0.8, household
        catch-all 0.7, otherwise 0.5. No preferences or no category is 0.7.
        """
        category = normalize_category(task.donation.category or task.request.category)
        preferred = [normalize_label(p) for p in volunteer.preferred_delivery_types or []]
        preferred = [p for p in preferred if p]
        details: dict[str, Any] = {"category": category, "preferred": preferred}

        if not category or not preferred:
            details["match"] = "neutral"
            return 0.7, details

        wanted = {normalize_label(t) for t in DELIVERY_TYPES_FOR_CATEGORY.get(category, ())}
        if wanted & set(preferred):
            details["match"] = "exact"
            return 1.0, details

        label = category.replace("_", " ")
        if any(label in p or p in label for p in preferred):
            details["match"] = "partial"
            return 0.8, details

        if CATCH_ALL_DELIVERY_TYPE in preferred:
            details["match"] = "catch_all"
            return 0.7, details

        details["match"] = "none"
        return 0.5, details

    def volunteer_urgency(
        self, volunteer: UserProfile, task: DeliveryTask
    ) -> tuple[float, dict[str, Any]]:
        """Compare the task's urgency with the urgency the volunteer likes to serve."""
        preference = volunteer.urgency_preference or "medium"
        gap = abs(urgency_level(task.request.urgency) - urgency_level(preference))
        details = {
            "task_urgency": task.request.urgency,
            "volunteer_preference": preference,
            "level_gap": gap,
        }
        return clamp(math.exp(-gap / URGENCY_DECAY)), details

    def volunteer_availability(self, volunteer: UserProfile) -> tuple[float, dict[str, Any]]:
        """Each active delivery costs 0.2 of availability."""
        score = 1.0 - 0.2 * volunteer.active_deliveries
        return clamp(score), {"active_deliveries": volunteer.active_deliveries}
