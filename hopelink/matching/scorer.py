"""Scoring and ranking for match candidates."""

from __future__ import annotations

import logging
from typing import Iterable

from hopelink.matching.config import FuzzyMatchConfig, MatchingParameters
from hopelink.matching.models import (
    DeliveryTask,
    DonationView,
    MatchCandidate,
    MatchState,
    RequestView,
    UserProfile,
)
from hopelink.matching.rules import MatchingRules, clamp

logger = logging.getLogger(__name__)

PAIR_REASON_LABELS = {
    "geographic_proximity": "Close Location",
    "item_compatibility": "Perfect Item Match",
    "urgency_alignment": "Urgency Match",
    "user_reliability": "High Reliability",
    "delivery_compatibility": "Delivery Match",
}

VOLUNTEER_REASON_LABELS = {
    "geographic_proximity": "Close to Route",
    "item_compatibility": "Preferred Item Type",
    "urgency_alignment": "Urgency Preference",
    "user_reliability": "Reliable Volunteer",
    "delivery_compatibility": "Available Now",
}

# Runner-up factor is named too when it contributes at least this share of the top one
SECONDARY_REASON_SHARE = 0.8


class MatchScorer:
    """Scores and ranks match candidates."""

    def __init__(
        self,
        params: MatchingParameters | None = None,
        fuzzy_config: FuzzyMatchConfig | None = None,
        debug: bool = False,
    ):
        """
        Initialize match scorer.

        Args:
            params: Active matching parameters
            fuzzy_config: Title similarity configuration
            debug: Log every candidate's breakdown
        """
        self.params = params or MatchingParameters()
        self.rules = MatchingRules(self.params, fuzzy_config)
        self.debug = debug

    def _boost(self, score: float, boost: float) -> float:
        return clamp(score * (1.0 + boost))

    def score_pair(
        self,
        request: RequestView,
        donation: DonationView,
        kind: str = "donation",
        donor: UserProfile | None = None,
        recipient: UserProfile | None = None,
    ) -> MatchCandidate:
        """
        Score one request/donation pair.

        Args:
            request: Request being served
            donation: Donation serving it
            kind: Which side is the candidate: "donation" (recipient's view,
                reliability of the donor) or "request" (donor's view,
                reliability of the recipient)
            donor: Donor profile, if loaded
            recipient: Recipient profile, if loaded

        Returns:
            Scored, unranked candidate
        """
        counterpart = donation if kind == "donation" else request
        candidate = MatchCandidate(
            kind=kind,  # type: ignore[arg-type]
            candidate_id=counterpart.id,
            candidate_created_at=counterpart.created_at,
            request=request,
            donation=donation,
        )
        weights = self.params.weights

        # 1. Geographic proximity, boosted for perishables
        score, details = self.rules.geographic_proximity(
            donation.location, request.location
        )
        candidate.distance_km = details["distance_km"]
        if self.rules.is_perishable(donation) and self.params.perishable_geographic_boost:
            details["unboosted"] = score
            details["perishable_boost"] = self.params.perishable_geographic_boost
            score = self._boost(score, self.params.perishable_geographic_boost)
        candidate.add_factor_score(
            "geographic_proximity", score, weights.geographic_proximity, details
        )

        # 2. Item compatibility
        score, details = self.rules.item_compatibility(donation, request, donor, recipient)
        candidate.add_factor_score(
            "item_compatibility", score, weights.item_compatibility, details
        )

        # 3. Urgency alignment, boosted for critical requests
        score, details = self.rules.urgency_alignment(request, donation)
        if request.urgency == "critical" and self.params.critical_urgency_boost:
            details["unboosted"] = score
            details["critical_boost"] = self.params.critical_urgency_boost
            score = self._boost(score, self.params.critical_urgency_boost)
        candidate.add_factor_score(
            "urgency_alignment", score, weights.urgency_alignment, details
        )

        # 4. Reliability of whoever is on the other side
        score, details = self.rules.user_reliability(
            donor if kind == "donation" else recipient
        )
        candidate.add_factor_score(
            "user_reliability", score, weights.user_reliability, details
        )

        # 5. Delivery compatibility
        score, details = self.rules.delivery_compatibility(
            donation.delivery_mode, request.delivery_mode
        )
        candidate.add_factor_score(
            "delivery_compatibility", score, weights.delivery_compatibility, details
        )

        self.finalize(candidate, PAIR_REASON_LABELS)

        if self.debug:
            logger.debug(
                f"[SCORER] request {request.id} x donation {donation.id}: "
                f"{candidate.score:.4f} ({candidate.match_reason})"
            )
        return candidate

    def score_volunteer(
        self, volunteer: UserProfile, task: DeliveryTask, kind: str = "volunteer"
    ) -> MatchCandidate:
        """
        Score a volunteer for a delivery task.

        The five weights are reused with volunteer-specific factor rules:
        route proximity, carry preferences, urgency preference, reliability
        and current availability.

        Args:
            volunteer: Volunteer profile
            task: Delivery task
            kind: "volunteer" when ranking volunteers for a task, "task"
                when ranking tasks for a volunteer
        """
        if kind == "task":
            candidate_id, created_at = task.match_id, task.created_at
        else:
            candidate_id, created_at = volunteer.id, volunteer.created_at or task.created_at

        candidate = MatchCandidate(
            kind=kind,  # type: ignore[arg-type]
            candidate_id=candidate_id,
            candidate_created_at=created_at,
            request=task.request,
            donation=task.donation,
            volunteer=volunteer,
            task_match_id=task.match_id,
        )
        weights = self.params.weights

        score, details = self.rules.volunteer_proximity(volunteer, task)
        candidate.distance_km = details["distance_km"]
        if self.rules.is_perishable(task.donation) and self.params.perishable_geographic_boost:
            details["unboosted"] = score
            score = self._boost(score, self.params.perishable_geographic_boost)
        candidate.add_factor_score(
            "geographic_proximity", score, weights.geographic_proximity, details
        )

        score, details = self.rules.volunteer_item_compatibility(volunteer, task)
        candidate.add_factor_score(
            "item_compatibility", score, weights.item_compatibility, details
        )

        score, details = self.rules.volunteer_urgency(volunteer, task)
        if task.request.urgency == "critical" and self.params.critical_urgency_boost:
            details["unboosted"] = score
            score = self._boost(score, self.params.critical_urgency_boost)
        candidate.add_factor_score(
            "urgency_alignment", score, weights.urgency_alignment, details
        )

        score, details = self.rules.user_reliability(volunteer)
        candidate.add_factor_score(
            "user_reliability", score, weights.user_reliability, details
        )

        score, details = self.rules.volunteer_availability(volunteer)
        candidate.add_factor_score(
            "delivery_compatibility", score, weights.delivery_compatibility, details
        )

        self.finalize(candidate, VOLUNTEER_REASON_LABELS)
        return candidate

    def finalize(self, candidate: MatchCandidate, labels: dict[str, str]) -> None:
        """Set final score, reason and gate state on a fully factored candidate."""
        candidate.score = clamp(sum(fs.weighted_score for fs in candidate.factor_scores))
        candidate.match_reason = self.match_reason(candidate, labels)
        self.determine_state(candidate)

    def match_reason(
        self, candidate: MatchCandidate, labels: dict[str, str] = PAIR_REASON_LABELS
    ) -> str:
        """
        Name the factor that contributed most to the score.

        Returns:
            Top label, "Top & Runner-up" when the runner-up is close, or
            "Good match" if nothing contributed
        """
        ranked = sorted(
            candidate.factor_scores, key=lambda fs: fs.weighted_score, reverse=True
        )
        if not ranked or ranked[0].weighted_score <= 0:
            return "Good match"

        top = ranked[0]
        reason = labels.get(top.factor, "Good match")
        if len(ranked) > 1:
            second = ranked[1]
            if second.weighted_score > 0 and (
                second.weighted_score >= SECONDARY_REASON_SHARE * top.weighted_score
            ):
                reason = f"{reason} & {labels.get(second.factor, second.factor)}"
        return reason

    def determine_state(self, candidate: MatchCandidate) -> MatchState:
        """
        Apply the auto-match / auto-claim gate.

        Eligibility only flags the candidate. Acting on it stays with the caller.
        """
        thresholds = self.params.thresholds
        enabled = thresholds.auto_match_enabled

        candidate.auto_claim_eligible = enabled and candidate.score >= thresholds.auto_claim_threshold
        candidate.auto_match_eligible = enabled and candidate.score >= thresholds.auto_match_threshold

        if candidate.auto_claim_eligible:
            candidate.state = MatchState.AUTO_CLAIMABLE
        elif candidate.auto_match_eligible:
            candidate.state = MatchState.AUTO_MATCHABLE
        else:
            candidate.state = MatchState.SUGGESTED
        return candidate.state

    def rank_candidates(self, candidates: Iterable[MatchCandidate]) -> list[MatchCandidate]:
        """
        Rank candidates by score (highest first).

        Ties go to the older candidate, then the lower ID, so the same
        inputs always produce the same order.

        Args:
            candidates: Scored candidates

        Returns:
            Ranked candidates with ``rank`` set
        """
        ranked = sorted(
            candidates,
            key=lambda c: (-c.score, c.candidate_created_at, c.candidate_id),
        )
        for i, candidate in enumerate(ranked, start=1):
            candidate.rank = i

        if ranked:
            logger.debug(
                f"[SCORER] Candidates ranked | "
                f"Best: {ranked[0].kind} {ranked[0].candidate_id} ({ranked[0].score:.4f}) | "
                f"Worst: {ranked[-1].kind} {ranked[-1].candidate_id} ({ranked[-1].score:.4f})"
            )
        return ranked


def score_and_rank_donations(
    request: RequestView,
    donations: list[DonationView],
    params: MatchingParameters | None = None,
    donors: dict[int, UserProfile] | None = None,
    recipient: UserProfile | None = None,
) -> list[MatchCandidate]:
    """
    Convenience function: score donations for a request and rank them.

    Args:
        request: Request being served
        donations: Candidate donations (already filtered)
        params: Matching parameters
        donors: Donor profiles keyed by ID
        recipient: The requester's profile

    Returns:
        Ranked candidates
    """
    scorer = MatchScorer(params)
    donors = donors or {}
    candidates = [
        scorer.score_pair(
            request, d, kind="donation", donor=donors.get(d.donor_id), recipient=recipient
        )
        for d in donations
    ]
    return scorer.rank_candidates(candidates)
