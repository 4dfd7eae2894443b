"""Main matching engine: retrieval, scoring, ranking and claiming."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hopelink.core.config import get_settings
from hopelink.db.models import Donation, DonationRequest, Match, User
from hopelink.db.repositories import (
    DonationRepository,
    DonationRequestRepository,
    MatchRepository,
    UserRepository,
)
from hopelink.db.unit_of_work import UnitOfWork
from hopelink.matching.config import MatchingParameters
from hopelink.matching.errors import (
    CandidateNotFoundError,
    ParameterValidationError,
    StaleCandidateError,
    TransientFetchError,
)
from hopelink.matching.metrics import get_metrics
from hopelink.matching.models import (
    DeliveryTask,
    DonationMatchesRecommendation,
    DonationView,
    MatchCandidate,
    MatchRecord,
    MatchState,
    OptimalMatch,
    RecommendationSet,
    RequestMatchesRecommendation,
    RequestView,
    SmartMatchResult,
    UserProfile,
    VolunteerOpportunitiesRecommendation,
)
from hopelink.matching.parameters import ParameterStore, get_parameter_store
from hopelink.matching.retrieval import (
    CandidateRetriever,
    pair_exclusion_reason,
    volunteer_exclusion_reason,
)
from hopelink.matching.rules import MAX_ACTIVE_DELIVERIES, clamp, urgency_level
from hopelink.matching.scorer import MatchScorer

logger = logging.getLogger(__name__)

ROLES = ("donor", "recipient", "volunteer")

MIN_ITEM_COMPATIBILITY = 0.3

# Exclusions that mean the row changed after it was shown
STALE_EXCLUSIONS = ("donation_unavailable", "request_not_open")

OPTIMAL_PAIRS_PER_REQUEST = 3
PAIR_SHARE = 0.6
VOLUNTEER_SHARE = 0.4

BASE_DELIVERY_MINUTES = 30
MINUTES_PER_KM = 2
DEFAULT_DELIVERY_KM = 10


def estimate_delivery_minutes(distance_km: float | None) -> int:
    """30 minutes of handling plus 2 minutes per km (10 km when unknown)."""
    km = DEFAULT_DELIVERY_KM if distance_km is None else distance_km
    return int(round(BASE_DELIVERY_MINUTES + MINUTES_PER_KM * km))


class MatchingEngine:
    """
    Matching engine for donations, requests and volunteers.

    Orchestrates:
    1. Parameter loading (cached per context)
    2. Candidate retrieval and hard filtering
    3. Factor scoring and ranking
    4. Atomic match creation
    """

    def __init__(
        self,
        session: AsyncSession,
        store: ParameterStore | None = None,
        context: str | None = None,
        debug: bool | None = None,
    ):
        """
        Initialize matching engine.

        Args:
            session: Database session
            store: Parameter store (defaults to the process-wide one)
            context: Parameter context (defaults to MATCHING_CONTEXT)
            debug: Log every candidate's score (defaults to DEBUG setting)
        """
        settings = get_settings()
        self.session = session
        self.store = store or get_parameter_store()
        self.context = context or settings.MATCHING_CONTEXT
        self.debug = settings.DEBUG if debug is None else debug
        self.settings = settings
        self.metrics = get_metrics()

        self.users = UserRepository(User, session)
        self.donations = DonationRepository(Donation, session)
        self.requests = DonationRequestRepository(DonationRequest, session)
        self.matches = MatchRepository(Match, session)

        self._params: MatchingParameters | None = None

    async def parameters(self) -> MatchingParameters:
        """Parameters for this engine, loaded once per engine."""
        if self._params is None:
            self._params = await self.store.get(self.session, self.context)
        return self._params

    async def _components(self) -> tuple[MatchingParameters, CandidateRetriever, MatchScorer]:
        params = await self.parameters()
        return (
            params,
            CandidateRetriever(self.session, params),
            MatchScorer(params, debug=self.debug),
        )

    # Loading

    async def _load_request(self, request_id: int) -> DonationRequest:
        try:
            request = await self.requests.get_by_id(request_id)
        except SQLAlchemyError as e:
            raise TransientFetchError(f"Could not load request {request_id}") from e
        if request is None:
            raise CandidateNotFoundError(f"Request {request_id} not found")
        return request

    async def _load_donation(self, donation_id: int) -> Donation:
        try:
            donation = await self.donations.get_by_id(donation_id)
        except SQLAlchemyError as e:
            raise TransientFetchError(f"Could not load donation {donation_id}") from e
        if donation is None:
            raise CandidateNotFoundError(f"Donation {donation_id} not found")
        return donation

    async def _load_user(self, user_id: int) -> User:
        try:
            user = await self.users.get_by_id(user_id)
        except SQLAlchemyError as e:
            raise TransientFetchError(f"Could not load user {user_id}") from e
        if user is None:
            raise CandidateNotFoundError(f"User {user_id} not found")
        return user

    # Ranking

    def _score_each(
        self, items: list, score: Callable[[object], MatchCandidate], label: str
    ) -> list[MatchCandidate]:
        """Score items one by one; a failing item is logged and skipped."""
        candidates = []
        for item in items:
            try:
                candidates.append(score(item))
            except Exception as e:
                logger.error(
                    f"[SCORER] Failed to score {label} {getattr(item, 'id', '?')}: {e}",
                    exc_info=True,
                )
        return candidates

    async def rank_donations(
        self, request: RequestView, limit: int | None = None
    ) -> list[MatchCandidate]:
        """
        Rank the donations that could serve a request.

        Args:
            request: Request to serve
            limit: Keep only the top N

        Returns:
            Ranked candidates, best first
        """
        _, retriever, scorer = await self._components()
        donations = await retriever.get_donations_for_request(request)
        profiles = await retriever.load_profiles(
            [d.donor_id for d in donations] + [request.requester_id]
        )
        recipient = profiles.get(request.requester_id)

        candidates = self._score_each(
            donations,
            lambda d: scorer.score_pair(
                request, d, kind="donation", donor=profiles.get(d.donor_id), recipient=recipient
            ),
            "donation",
        )
        ranked = scorer.rank_candidates(candidates)
        self.metrics.add_ranking(ranked)
        return ranked[:limit] if limit else ranked

    async def rank_requests(
        self, donation: DonationView, limit: int | None = None
    ) -> list[MatchCandidate]:
        """Rank the open requests a donation could serve."""
        _, retriever, scorer = await self._components()
        requests = await retriever.get_requests_for_donation(donation)
        profiles = await retriever.load_profiles(
            [r.requester_id for r in requests] + [donation.donor_id]
        )
        donor = profiles.get(donation.donor_id)

        candidates = self._score_each(
            requests,
            lambda r: scorer.score_pair(
                r, donation, kind="request", donor=donor, recipient=profiles.get(r.requester_id)
            ),
            "request",
        )
        ranked = scorer.rank_candidates(candidates)
        self.metrics.add_ranking(ranked)
        return ranked[:limit] if limit else ranked

    async def find_matches_for_request(
        self, request_id: int, limit: int | None = None
    ) -> list[MatchCandidate]:
        """Top donations for a stored request."""
        request = RequestView.model_validate(await self._load_request(request_id))
        logger.info(
            f"[MATCH] Finding donations for request {request.id} | "
            f"{request.category} x{request.quantity_needed} | urgency={request.urgency}"
        )
        return await self.rank_donations(request, limit or self.settings.RECOMMENDATION_LIMIT)

    async def find_matches_for_donation(
        self, donation_id: int, limit: int | None = None
    ) -> list[MatchCandidate]:
        """Top requests for a stored donation."""
        donation = DonationView.model_validate(await self._load_donation(donation_id))
        logger.info(
            f"[MATCH] Finding requests for donation {donation.id} | "
            f"{donation.category} x{donation.quantity}"
        )
        return await self.rank_requests(donation, limit or self.settings.RECOMMENDATION_LIMIT)

    async def find_volunteers_for_task(
        self, match_id: int, limit: int | None = None
    ) -> list[MatchCandidate]:
        """
        Rank volunteers for a claimed match that needs delivery.

        Args:
            match_id: Match awaiting a volunteer
            limit: Keep only the top N

        Returns:
            Ranked volunteer candidates
        """
        match = await self.matches.get_by_id(match_id)
        if match is None:
            raise CandidateNotFoundError(f"Match {match_id} not found")

        task = DeliveryTask(
            match_id=match.id,
            request=RequestView.model_validate(await self._load_request(match.request_id)),
            donation=DonationView.model_validate(await self._load_donation(match.donation_id)),
            quantity=match.quantity,
            created_at=match.created_at,
        )
        _, retriever, scorer = await self._components()
        volunteers = await retriever.get_volunteers_for_task(task)

        candidates = self._score_each(
            volunteers, lambda v: scorer.score_volunteer(v, task), "volunteer"
        )
        ranked = scorer.rank_candidates(candidates)
        self.metrics.add_ranking(ranked)
        limit = limit or self.settings.RECOMMENDATION_LIMIT
        return ranked[:limit]

    async def rank_tasks_for_volunteer(
        self, volunteer: UserProfile, limit: int | None = None
    ) -> list[MatchCandidate]:
        """Rank open delivery tasks for one volunteer."""
        params, retriever, scorer = await self._components()
        tasks = await retriever.get_delivery_tasks()
        eligible = [
            t for t in tasks if volunteer_exclusion_reason(volunteer, t, params) is None
        ]

        candidates = self._score_each(
            eligible, lambda t: scorer.score_volunteer(volunteer, t, kind="task"), "task"
        )
        ranked = scorer.rank_candidates(candidates)
        self.metrics.add_ranking(ranked)
        return ranked[:limit] if limit else ranked

    # Recommendations

    async def get_matching_recommendations(
        self, user_id: int, role: str, limit: int | None = None
    ) -> RecommendationSet:
        """
        Build role-specific recommendations for a user.

        Recipients get donations for up to MAX_RECOMMENDATION_SUBJECTS of
        their open requests (most urgent first). Donors get requests for that
        many of their available donations. Volunteers get delivery tasks.

        Args:
            user_id: User to recommend for
            role: "donor", "recipient" or "volunteer"
            limit: Counterparts per subject

        Returns:
            Recommendation set

        Raises:
            ParameterValidationError: On an unknown role
            CandidateNotFoundError: If the user does not exist
        """
        if role not in ROLES:
            raise ParameterValidationError(f"Unknown role: {role!r}")

        limit = limit or self.settings.RECOMMENDATION_LIMIT
        subjects = self.settings.MAX_RECOMMENDATION_SUBJECTS
        user = await self._load_user(user_id)
        params = await self.parameters()
        result = RecommendationSet(
            user_id=user_id, role=role, parameters_context=params.context  # type: ignore[arg-type]
        )

        logger.info(f"[MATCH] Recommendations for user {user_id} as {role}")

        try:
            if role == "recipient":
                rows = await self.requests.get_open_for_requester(user_id)
                requests = sorted(
                    (RequestView.model_validate(r) for r in rows),
                    key=lambda r: (-urgency_level(r.urgency), r.created_at, r.id),
                )
                for request in requests[:subjects]:
                    matches = await self.rank_donations(request, limit)
                    result.recommendations.append(
                        DonationMatchesRecommendation(request=request, matches=matches)
                    )

            elif role == "donor":
                rows = await self.donations.get_available_for_donor(user_id)
                donations = sorted(
                    (DonationView.model_validate(d) for d in rows),
                    key=lambda d: (not d.is_urgent, d.created_at, d.id),
                )
                for donation in donations[:subjects]:
                    matches = await self.rank_requests(donation, limit)
                    result.recommendations.append(
                        RequestMatchesRecommendation(donation=donation, matches=matches)
                    )

            else:
                retriever = CandidateRetriever(self.session, params)
                volunteer = await retriever.load_profile(user)
                tasks = await self.rank_tasks_for_volunteer(volunteer, limit)
                result.recommendations.append(
                    VolunteerOpportunitiesRecommendation(opportunities=tasks)
                )
        except SQLAlchemyError as e:
            raise TransientFetchError(f"Could not build recommendations for user {user_id}") from e

        self.metrics.record("recommendation_refreshes")
        return result

    # Claiming

    async def create_smart_match(
        self,
        request_id: int,
        donation_id: int,
        volunteer_id: int | None = None,
        created_by: int | None = None,
    ) -> SmartMatchResult:
        """
        Claim a donation for a request, optionally assigning a volunteer.

        Retrying a claim for a pair that is already matched returns the
        existing match. Claiming is a compare-and-swap on the donation's
        remaining quantity and the request's open status, so two claims
        racing for the same candidate cannot both win.

        Args:
            request_id: Request to fulfil
            donation_id: Donation to draw from
            volunteer_id: Volunteer to carry it, if any
            created_by: User performing the claim

        Returns:
            The created or existing match

        Raises:
            CandidateNotFoundError: Unknown request, donation or volunteer
            ParameterValidationError: Items are not compatible enough
            StaleCandidateError: The candidate was taken after it was shown
        """
        existing = await self.matches.get_for_pair(request_id, donation_id)
        if existing is not None and existing.status != "cancelled":
            if volunteer_id is not None and existing.volunteer_id != volunteer_id:
                await self._assign_volunteer(existing, volunteer_id)
                await self.session.refresh(existing)
            self.metrics.record("idempotent_replays")
            logger.info(f"[MATCH] Returning existing match {existing.id} for {request_id}/{donation_id}")
            return SmartMatchResult(created=False, match=MatchRecord.model_validate(existing))

        request_row = await self._load_request(request_id)
        donation_row = await self._load_donation(donation_id)
        request = RequestView.model_validate(request_row)
        donation = DonationView.model_validate(donation_row)

        params, retriever, scorer = await self._components()
        self._check_claimable(request, donation, params)

        volunteer: UserProfile | None = None
        if volunteer_id is not None:
            volunteer = await self._load_volunteer(retriever, volunteer_id)

        profiles = await retriever.load_profiles([donation.donor_id, request.requester_id])
        candidate = scorer.score_pair(
            request,
            donation,
            kind="donation",
            donor=profiles.get(donation.donor_id),
            recipient=profiles.get(request.requester_id),
        )
        if candidate.factor("item_compatibility") < MIN_ITEM_COMPATIBILITY:
            raise ParameterValidationError(
                f"Items are not compatible enough to match "
                f"(item compatibility {candidate.factor('item_compatibility'):.2f})"
            )

        take = min(donation.quantity, request.quantity_needed)
        delivery_mode = "volunteer" if (
            volunteer is not None or "volunteer" in (donation.delivery_mode, request.delivery_mode)
        ) else request.delivery_mode

        try:
            if not await self.donations.claim_quantity(donation.id, donation.quantity, take):
                raise StaleCandidateError(f"Donation {donation.id} changed while claiming")
            if not await self.requests.claim(request.id):
                raise StaleCandidateError(f"Request {request.id} was claimed by someone else")

            values = dict(
                volunteer_id=volunteer.id if volunteer else None,
                quantity=take,
                score=candidate.score,
                state=MatchState.CLAIMED.value,
                status="claimed",
                delivery_mode=delivery_mode,
                match_reason=candidate.match_reason,
                match_details=json.dumps(candidate.get_score_breakdown(), default=str),
                created_by=created_by,
            )
            if existing is not None:
                match = await self.matches.update(existing.id, **values)
            else:
                match = await self.matches.create(
                    request_id=request.id, donation_id=donation.id, **values
                )
        except StaleCandidateError:
            await self.session.rollback()
            self.metrics.record("stale_conflicts")
            logger.warning(f"[MATCH] Stale claim for request {request_id} / donation {donation_id}")
            raise
        except IntegrityError:
            # Another claim for the same pair committed first
            await self.session.rollback()
            winner = await self.matches.get_for_pair(request_id, donation_id)
            if winner is None:
                raise
            self.metrics.record("idempotent_replays")
            return SmartMatchResult(created=False, match=MatchRecord.model_validate(winner))

        self.metrics.record("matches_created")
        logger.info(
            f"[MATCH] Created match {match.id}: request {request.id} <- donation {donation.id} "
            f"x{take} | score {candidate.score:.4f} | {candidate.match_reason}"
        )
        return SmartMatchResult(
            created=True,
            match=MatchRecord.model_validate(match),
            score_breakdown=candidate.get_score_breakdown(),
        )

    def _check_claimable(
        self, request: RequestView, donation: DonationView, params: MatchingParameters
    ) -> None:
        """Apply the candidate hard filters to an explicitly chosen pair."""
        reason = pair_exclusion_reason(request, donation, params)
        if reason is None:
            return
        if reason in STALE_EXCLUSIONS:
            self.metrics.record("stale_conflicts")
            raise StaleCandidateError(
                f"Request {request.id} or donation {donation.id} is no longer available"
            )

        logger.info(f"[MATCH] Refusing claim {request.id}/{donation.id}: {reason}")
        if reason == "same_user":
            message = "Donors cannot claim their own donation"
        elif reason == "category_mismatch":
            message = (
                f"Items are not compatible: {donation.category} cannot serve {request.category}"
            )
        elif reason == "insufficient_quantity":
            message = (
                f"Donation offers {donation.quantity} of {request.quantity_needed} needed, "
                f"below the {params.min_quantity_match_ratio:.0%} minimum"
            )
        else:
            message = (
                f"Donation is farther than the {params.max_distance_km:g} km matching limit"
            )
        raise ParameterValidationError(message)

    async def _load_volunteer(
        self, retriever: CandidateRetriever, volunteer_id: int
    ) -> UserProfile:
        user = await self._load_user(volunteer_id)
        if user.role != "volunteer":
            raise CandidateNotFoundError(f"Volunteer {volunteer_id} not found")
        profile = await retriever.load_profile(user)
        if profile.status != "active":
            raise ParameterValidationError(f"Volunteer {volunteer_id} is not active")
        if profile.active_deliveries >= MAX_ACTIVE_DELIVERIES:
            raise ParameterValidationError(
                f"Volunteer {volunteer_id} already has {profile.active_deliveries} active deliveries"
            )
        return profile

    async def _assign_volunteer(self, match: Match, volunteer_id: int) -> None:
        _, retriever, _ = await self._components()
        await self._load_volunteer(retriever, volunteer_id)
        if not await self.matches.assign_volunteer(match.id, volunteer_id):
            self.metrics.record("stale_conflicts")
            raise StaleCandidateError(f"Match {match.id} already has a volunteer")
        logger.info(f"[MATCH] Assigned volunteer {volunteer_id} to match {match.id}")

    # Global sweep

    async def find_optimal_matches(self, limit: int = 20) -> list[OptimalMatch]:
        """
        Best pairings across every open request.

        Each request contributes its top donations. Pairs that need a
        volunteer are combined with the best available volunteer
        (``0.6 * pair + 0.4 * volunteer``) as three-way matches; the rest
        are direct.

        Args:
            limit: Maximum results

        Returns:
            Matches ordered by combined score
        """
        params, retriever, scorer = await self._components()
        try:
            rows = await self.requests.get_open()
            volunteers = [
                await retriever.load_profile(v) for v in await self.users.get_active_volunteers()
            ]
        except SQLAlchemyError as e:
            raise TransientFetchError("Could not load open requests") from e

        results: list[OptimalMatch] = []
        for request in (RequestView.model_validate(r) for r in rows):
            for pair in await self.rank_donations(request, OPTIMAL_PAIRS_PER_REQUEST):
                donation = pair.donation
                if donation is None:
                    continue
                needs_volunteer = "volunteer" in (donation.delivery_mode, request.delivery_mode)

                best: MatchCandidate | None = None
                if needs_volunteer:
                    task = DeliveryTask(match_id=0, request=request, donation=donation)
                    scored = [
                        scorer.score_volunteer(v, task)
                        for v in volunteers
                        if volunteer_exclusion_reason(v, task, params) is None
                    ]
                    ranked = scorer.rank_candidates(scored)
                    best = ranked[0] if ranked else None

                if best is not None:
                    combined = clamp(PAIR_SHARE * pair.score + VOLUNTEER_SHARE * best.score)
                    match_type = "three_way"
                else:
                    combined = pair.score
                    match_type = "direct"

                results.append(
                    OptimalMatch(
                        match_type=match_type,  # type: ignore[arg-type]
                        request=request,
                        donation=donation,
                        volunteer=best.volunteer if best else None,
                        pair_score=pair.score,
                        volunteer_score=best.score if best else None,
                        combined_score=combined,
                        match_reason=pair.match_reason,
                        estimated_delivery_minutes=estimate_delivery_minutes(pair.distance_km),
                    )
                )

        results.sort(
            key=lambda m: (-m.combined_score, m.request.created_at, m.request.id, m.donation.id)
        )
        logger.info(f"[MATCH] Optimal sweep: {len(results)} pairings from {len(rows)} requests")
        return results[:limit]


class RecommendationCoalescer:
    """
    Shares one in-flight recommendation refresh per (user, role, limit).

    Callers arriving while a refresh runs await the same task instead of
    starting another one.
    """

    def __init__(self):
        self._inflight: dict[tuple[int, str, int | None], asyncio.Task] = {}

    async def run(
        self,
        key: tuple[int, str, int | None],
        compute: Callable[[], Awaitable[RecommendationSet]],
    ) -> RecommendationSet:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(compute())
            self._inflight[key] = task

            def _forget(done: asyncio.Task) -> None:
                if self._inflight.get(key) is done:
                    del self._inflight[key]

            task.add_done_callback(_forget)
        else:
            get_metrics().record("coalesced_refreshes")

        # One caller going away must not cancel the refresh for the others
        return await asyncio.shield(task)

    @property
    def in_flight(self) -> int:
        return len(self._inflight)


_coalescer = RecommendationCoalescer()


def get_coalescer() -> RecommendationCoalescer:
    return _coalescer


async def refresh_recommendations(
    user_id: int,
    role: str,
    limit: int | None = None,
    store: ParameterStore | None = None,
) -> RecommendationSet:
    """
    Compute recommendations on a dedicated unit of work, coalescing duplicates.

    Args:
        user_id: User to recommend for
        role: "donor", "recipient" or "volunteer"
        limit: Counterparts per subject
        store: Parameter store override

    Returns:
        Recommendation set
    """

    async def compute() -> RecommendationSet:
        async with UnitOfWork() as uow:
            engine = MatchingEngine(uow.session, store=store)
            return await engine.get_matching_recommendations(user_id, role, limit)

    return await get_coalescer().run((user_id, role, limit), compute)
