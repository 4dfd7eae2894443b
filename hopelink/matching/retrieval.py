"""Candidate retrieval and hard filtering."""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hopelink.db.models import Donation, DonationRequest, Match, User
from hopelink.db.repositories import (
    DonationRepository,
    DonationRequestRepository,
    MatchRepository,
    UserRepository,
)
from hopelink.matching.categories import category_score
from hopelink.matching.config import MatchingParameters
from hopelink.matching.errors import TransientFetchError
from hopelink.matching.geo import distance_km
from hopelink.matching.models import DeliveryTask, DonationView, RequestView, UserProfile
from hopelink.matching.rules import MAX_ACTIVE_DELIVERIES

logger = logging.getLogger(__name__)


def pair_exclusion_reason(
    request: RequestView, donation: DonationView, params: MatchingParameters
) -> str | None:
    """
    Check a request/donation pair against the hard filters.

    Returns:
        Why the pair is excluded, or None if it may be scored
    """
    if donation.status != "available" or donation.quantity <= 0:
        return "donation_unavailable"
    if request.status != "open":
        return "request_not_open"
    if donation.donor_id == request.requester_id:
        return "same_user"
    if category_score(donation.category, request.category) <= 0:
        return "category_mismatch"
    if donation.quantity / request.quantity_needed < params.min_quantity_match_ratio:
        return "insufficient_quantity"

    km, _ = distance_km(donation.location, request.location)
    if km is not None and km > params.max_distance_km:
        return "too_far"
    return None


def volunteer_exclusion_reason(
    volunteer: UserProfile, task: DeliveryTask, params: MatchingParameters
) -> str | None:
    """Check a volunteer against the hard filters for a task."""
    if volunteer.status != "active":
        return "inactive"
    if volunteer.active_deliveries >= MAX_ACTIVE_DELIVERIES:
        return "overloaded"

    known = [
        d
        for d in (
            distance_km(volunteer.location, task.donation.location)[0],
            distance_km(volunteer.location, task.request.location)[0],
        )
        if d is not None
    ]
    if known and sum(known) / len(known) > params.max_distance_km:
        return "too_far"
    return None


def filter_donations(
    request: RequestView,
    donations: Iterable[DonationView],
    params: MatchingParameters,
    exclude_ids: set[int] | None = None,
) -> list[DonationView]:
    """Keep the donations that pass every hard filter for a request."""
    kept = []
    excluded: dict[str, int] = {}
    for donation in donations:
        reason = (
            "already_matched"
            if exclude_ids and donation.id in exclude_ids
            else pair_exclusion_reason(request, donation, params)
        )
        if reason:
            excluded[reason] = excluded.get(reason, 0) + 1
            continue
        kept.append(donation)

    if excluded:
        logger.debug(f"[RETRIEVAL] Request {request.id}: filtered out {excluded}")
    return kept


def filter_requests(
    donation: DonationView,
    requests: Iterable[RequestView],
    params: MatchingParameters,
    exclude_ids: set[int] | None = None,
) -> list[RequestView]:
    """Keep the requests that pass every hard filter for a donation."""
    kept = []
    excluded: dict[str, int] = {}
    for request in requests:
        reason = (
            "already_matched"
            if exclude_ids and request.id in exclude_ids
            else pair_exclusion_reason(request, donation, params)
        )
        if reason:
            excluded[reason] = excluded.get(reason, 0) + 1
            continue
        kept.append(request)

    if excluded:
        logger.debug(f"[RETRIEVAL] Donation {donation.id}: filtered out {excluded}")
    return kept


class CandidateRetriever:
    """Loads candidates from the database and applies hard filters."""

    def __init__(self, session: AsyncSession, params: MatchingParameters):
        """
        Initialize candidate retriever.

        Args:
            session: Database session
            params: Active matching parameters
        """
        self.session = session
        self.params = params
        self.users = UserRepository(User, session)
        self.donations = DonationRepository(Donation, session)
        self.requests = DonationRequestRepository(DonationRequest, session)
        self.matches = MatchRepository(Match, session)

    async def load_profile(self, user: User) -> UserProfile:
        """Build a scoring profile for a user, history included."""
        history = await self.users.get_task_history(user)
        update = {"completed_tasks": history["completed"], "total_tasks": history["total"]}
        if user.role == "volunteer":
            update["active_deliveries"] = await self.users.count_active_deliveries(user.id)
        return UserProfile.model_validate(user).model_copy(update=update)

    async def load_profiles(self, user_ids: Iterable[int]) -> dict[int, UserProfile]:
        """Build profiles for several users, keyed by ID."""
        users = await self.users.get_many(list(set(user_ids)))
        return {uid: await self.load_profile(u) for uid, u in users.items()}

    async def get_donations_for_request(self, request: RequestView) -> list[DonationView]:
        """
        Get available donations that may serve a request.

        Args:
            request: Request to serve

        Returns:
            Donations passing every hard filter

        Raises:
            TransientFetchError: If the database read fails
        """
        try:
            rows = await self.donations.get_available(exclude_donor_id=request.requester_id)
            already = await self.matches.get_matched_donation_ids(request.id)
        except SQLAlchemyError as e:
            raise TransientFetchError(f"Could not load donations for request {request.id}") from e

        views = [DonationView.model_validate(r) for r in rows]
        kept = filter_donations(request, views, self.params, already)
        logger.info(
            f"[RETRIEVAL] Request {request.id}: {len(kept)}/{len(views)} donations pass filters"
        )
        return kept

    async def get_requests_for_donation(self, donation: DonationView) -> list[RequestView]:
        """Get open requests a donation may serve."""
        try:
            rows = await self.requests.get_open(exclude_requester_id=donation.donor_id)
            already = await self.matches.get_matched_request_ids(donation.id)
        except SQLAlchemyError as e:
            raise TransientFetchError(f"Could not load requests for donation {donation.id}") from e

        views = [RequestView.model_validate(r) for r in rows]
        kept = filter_requests(donation, views, self.params, already)
        logger.info(
            f"[RETRIEVAL] Donation {donation.id}: {len(kept)}/{len(views)} requests pass filters"
        )
        return kept

    async def get_delivery_tasks(self, limit: int | None = None) -> list[DeliveryTask]:
        """Get claimed volunteer-delivery matches that nobody has taken."""
        try:
            matches = await self.matches.get_awaiting_volunteer(limit)
            tasks = []
            for match in matches:
                request = await self.requests.get_by_id(match.request_id)
                donation = await self.donations.get_by_id(match.donation_id)
                if request is None or donation is None:
                    continue
                tasks.append(
                    DeliveryTask(
                        match_id=match.id,
                        request=RequestView.model_validate(request),
                        donation=DonationView.model_validate(donation),
                        quantity=match.quantity,
                        created_at=match.created_at,
                    )
                )
        except SQLAlchemyError as e:
            raise TransientFetchError("Could not load delivery tasks") from e
        return tasks

    async def get_volunteers_for_task(self, task: DeliveryTask) -> list[UserProfile]:
        """Get volunteers able to take a delivery task."""
        try:
            volunteers = await self.users.get_active_volunteers()
            profiles = [await self.load_profile(v) for v in volunteers]
        except SQLAlchemyError as e:
            raise TransientFetchError("Could not load volunteers") from e

        kept = [
            p for p in profiles if volunteer_exclusion_reason(p, task, self.params) is None
        ]
        logger.info(
            f"[RETRIEVAL] Task {task.match_id}: {len(kept)}/{len(profiles)} volunteers available"
        )
        return kept
