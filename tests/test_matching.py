"""Tests for the scoring rules and scorer."""

import math
from datetime import datetime, timezone, timedelta

import pytest

from hopelink.matching.config import FactorWeights, MatchingParameters
from hopelink.matching.fuzzy import FuzzyMatcher
from hopelink.matching.geo import (
    Location,
    distance_km,
    estimate_address_distance_km,
    haversine_km,
    normalize_distance,
)
from hopelink.matching.categories import category_score, is_perishable, preference_covers
from hopelink.matching.models import (
    DeliveryTask,
    DonationView,
    MatchCandidate,
    MatchState,
    RequestView,
    UserProfile,
)
from hopelink.matching.retrieval import pair_exclusion_reason, volunteer_exclusion_reason
from hopelink.matching.rules import MatchingRules, clamp
from hopelink.matching.scorer import MatchScorer, score_and_rank_donations

BASE_LAT = 8.4822
BASE_LON = 124.6630
T0 = datetime(2025, 11, 5, 10, 0, 0, tzinfo=timezone.utc)


# Fixtures

def make_request(**overrides) -> RequestView:
    values = dict(
        id=1,
        requester_id=100,
        title="Rice",
        category="food",
        tags=["rice"],
        quantity_needed=10,
        urgency="medium",
        delivery_mode="pickup",
        city="Cagayan de Oro",
        barangay="Lapasan",
        created_at=T0,
    )
    values.update(overrides)
    return RequestView(**values)


def make_donation(**overrides) -> DonationView:
    values = dict(
        id=1,
        donor_id=200,
        title="Rice sacks",
        category="food",
        tags=["rice"],
        quantity=10,
        delivery_mode="pickup",
        city="Cagayan de Oro",
        barangay="Lapasan",
        created_at=T0,
    )
    values.update(overrides)
    return DonationView(**values)


def make_volunteer(**overrides) -> UserProfile:
    values = dict(
        id=300,
        role="volunteer",
        city="Cagayan de Oro",
        barangay="Kauswagan",
        created_at=T0,
    )
    values.update(overrides)
    return UserProfile(**values)


@pytest.fixture
def rules():
    return MatchingRules()


@pytest.fixture
def scorer():
    return MatchScorer()


# Geography

def test_haversine_known_distance():
    # 0.46 degrees of latitude is a little over 51 km
    km = haversine_km(BASE_LAT, BASE_LON, BASE_LAT + 0.46, BASE_LON)
    assert 51.0 < km < 51.3


def test_address_estimates():
    lapasan = Location(city="Cagayan de Oro", barangay="Lapasan")
    assert estimate_address_distance_km(lapasan, Location(city="CDO", barangay="Lapasan")) == 1.0
    assert estimate_address_distance_km(lapasan, Location(city="Cagayan de Oro City")) == 5.0
    assert estimate_address_distance_km(lapasan, Location(city="Opol")) == 18.0
    assert estimate_address_distance_km(lapasan, Location(city="Davao")) == 30.0
    assert estimate_address_distance_km(lapasan, Location()) is None


def test_distance_prefers_coordinates():
    a = Location(BASE_LAT, BASE_LON, city="Cagayan de Oro")
    b = Location(BASE_LAT + 0.045, BASE_LON, city="Davao")
    km, method = distance_km(a, b)
    assert method == "coordinates"
    assert km == pytest.approx(5.0, abs=0.05)

    km, method = distance_km(Location(), Location(city="Opol"))
    assert km is None
    assert method == "unknown"


def test_normalize_distance_bounds():
    assert normalize_distance(0, 50) == 1.0
    assert normalize_distance(50, 50) == 0.0
    assert normalize_distance(80, 50) == 0.0
    assert normalize_distance(25, 50) == 0.5
    assert normalize_distance(None, 50) == 0.5
    assert normalize_distance(float("nan"), 50) == 0.5


def test_geographic_proximity_unknown_is_neutral(rules):
    score, details = rules.geographic_proximity(Location(), Location(city="Opol"))
    assert score == 0.5
    assert details["distance_km"] is None


# Categories and fuzzy text

def test_category_score():
    assert category_score("food", "Food") == 1.0
    assert category_score("groceries", "food") == 0.6
    assert category_score("food", "groceries") == 0.6
    assert category_score("clothing", "food") == 0.0
    assert category_score(None, "food") == 0.0


def test_perishability_flag_wins():
    assert is_perishable("food")
    assert not is_perishable("clothing")
    assert not is_perishable("food", flag=False)
    assert is_perishable("clothing", flag=True)


def test_preference_covers():
    assert preference_covers(["Food & Beverages"], "groceries")
    assert preference_covers(["Medical Supplies"], "medical")
    assert not preference_covers(["Toys & Recreation"], "food")
    assert not preference_covers(None, "food")


def test_fuzzy_item_similarity():
    matcher = FuzzyMatcher()
    scores = matcher.item_similarity("Rice sacks 25kg", "rice", ["rice"], ["rice", "grain"])
    assert scores["title_fuzzy"] == 1.0
    assert scores["tag_overlap"] == 0.5
    assert scores["best"] == 1.0

    scores = matcher.item_similarity("Winter jackets", "Rice", None, None)
    assert scores["best"] < 0.5


# Factor rules

def test_item_compatibility_components(rules):
    score, details = rules.item_compatibility(make_donation(), make_request())
    # category 1.0, quantity 1.0, text 1.0
    assert score == 1.0
    assert details["category_score"] == 1.0

    score, details = rules.item_compatibility(
        make_donation(category="groceries", quantity=5, title="Noodles", tags=None),
        make_request(),
    )
    assert details["quantity_ratio"] == 0.5
    assert score == pytest.approx(0.5 * 0.6 + 0.3 * 0.5, abs=1e-4)


def test_item_compatibility_preference_bonus(rules):
    donation = make_donation(category="groceries", tags=None, title="Noodles")
    donor = UserProfile(id=200, role="donor", donation_types=["Food & Beverages"])
    plain, _ = rules.item_compatibility(donation, make_request())
    boosted, details = rules.item_compatibility(donation, make_request(), donor=donor)
    assert details["donor_preference_match"] is True
    assert boosted == pytest.approx(plain + 0.15, abs=1e-4)


def test_urgency_alignment_decay(rules):
    score, _ = rules.urgency_alignment(make_request(urgency="high"), make_donation(is_urgent=True))
    assert score == 1.0

    score, details = rules.urgency_alignment(make_request(urgency="low"), make_donation())
    assert details["level_gap"] == 1
    assert score == pytest.approx(math.exp(-1 / 1.5), abs=1e-4)


def test_perishable_flag_does_not_change_readiness(rules):
    fresh, _ = rules.urgency_alignment(make_request(), make_donation(is_perishable=True))
    dry, _ = rules.urgency_alignment(make_request(), make_donation(is_perishable=False))
    assert fresh == dry


def test_user_reliability(rules):
    assert rules.user_reliability(None)[0] == 0.5
    assert rules.user_reliability(UserProfile(id=1, role="donor"))[0] == 0.5

    veteran = UserProfile(
        id=1, role="donor", rating_average=5.0, rating_count=20,
        completed_tasks=10, total_tasks=10,
    )
    assert rules.user_reliability(veteran)[0] == 1.0

    average = UserProfile(
        id=2, role="donor", rating_average=4.0, rating_count=4,
        completed_tasks=1, total_tasks=2,
    )
    # 0.8 * 0.7 + 0.5 * 0.3 + 0.1
    assert rules.user_reliability(average)[0] == pytest.approx(0.81, abs=1e-4)


def test_delivery_compatibility(rules):
    assert rules.delivery_compatibility("pickup", "pickup")[0] == 1.0
    assert rules.delivery_compatibility("volunteer", "pickup")[0] == 0.7
    assert rules.delivery_compatibility("pickup", "volunteer")[0] == 0.7
    assert rules.delivery_compatibility("pickup", "direct")[0] == 0.3
    assert rules.delivery_compatibility(None, "pickup")[0] == 0.3


def test_volunteer_rules(rules):
    task = DeliveryTask(match_id=1, request=make_request(urgency="high"), donation=make_donation())
    volunteer = make_volunteer(preferred_delivery_types=["Food Items"], urgency_preference="high")

    score, details = rules.volunteer_proximity(volunteer, task)
    assert details["distance_km"] == 5.0
    assert score == 0.9

    assert rules.volunteer_item_compatibility(volunteer, task)[0] == 1.0
    assert rules.volunteer_item_compatibility(
        make_volunteer(preferred_delivery_types=["Household Items"]), task
    )[0] == 0.7
    assert rules.volunteer_item_compatibility(
        make_volunteer(preferred_delivery_types=["Electronics"]), task
    )[0] == 0.5
    assert rules.volunteer_item_compatibility(make_volunteer(), task)[0] == 0.7

    assert rules.volunteer_urgency(volunteer, task)[0] == 1.0
    assert rules.volunteer_availability(make_volunteer(active_deliveries=2))[0] == 0.6


def test_clamp_handles_nan_and_bounds():
    assert clamp(float("nan")) == 0.0
    assert clamp(1.7) == 1.0
    assert clamp(-0.2) == 0.0
    assert clamp(0.123456) == 0.1235


# Scorer

def test_score_is_weighted_sum(scorer):
    candidate = scorer.score_pair(make_request(), make_donation(delivery_mode="volunteer"))
    expected = sum(fs.score * fs.weight for fs in candidate.factor_scores)
    assert candidate.score == pytest.approx(expected, abs=1e-4)
    assert {fs.factor for fs in candidate.factor_scores} == set(FactorWeights().as_dict())
    assert 0.0 <= candidate.score <= 1.0


def test_perishable_boost_is_multiplicative_and_clamped(scorer):
    # Different cities, no coordinates: 30 km -> 0.4 proximity
    far_request = make_request(city="Davao", barangay=None)
    food = scorer.score_pair(far_request, make_donation(category="food"))
    clothes = scorer.score_pair(
        far_request.model_copy(update={"category": "clothing"}),
        make_donation(category="clothing"),
    )
    assert clothes.factor("geographic_proximity") == 0.4
    assert food.factor("geographic_proximity") == pytest.approx(0.4 * 1.35, abs=1e-4)

    # Same city: 5 km -> 0.9, boosted past 1 and clamped
    near = scorer.score_pair(make_request(barangay="Kauswagan"), make_donation())
    assert near.factor("geographic_proximity") == 1.0


def test_unknown_distance_is_neutral_for_non_perishables(scorer):
    candidate = scorer.score_pair(
        make_request(category="clothing", city=None, barangay=None),
        make_donation(category="clothing"),
    )
    assert candidate.factor("geographic_proximity") == 0.5
    assert candidate.distance_km is None


@pytest.mark.parametrize("urgency", ["low", "medium", "high", "critical"])
@pytest.mark.parametrize("km", [0, 2, 10, 30, 45, None])
@pytest.mark.parametrize("is_urgent", [False, True])
def test_perishable_never_scores_below_plain(scorer, urgency, km, is_urgent):
    if km is None:
        request = make_request(urgency=urgency, city=None, barangay=None)
        place = {}
    else:
        request = make_request(urgency=urgency, latitude=BASE_LAT, longitude=BASE_LON)
        place = {"latitude": BASE_LAT + km / 111.195, "longitude": BASE_LON}

    perishable = scorer.score_pair(
        request, make_donation(is_perishable=True, is_urgent=is_urgent, **place)
    )
    plain = scorer.score_pair(
        request, make_donation(is_perishable=False, is_urgent=is_urgent, **place)
    )
    assert perishable.score >= plain.score
    assert perishable.factor("urgency_alignment") == plain.factor("urgency_alignment")


def test_critical_boost(scorer):
    candidate = scorer.score_pair(make_request(urgency="critical"), make_donation(is_urgent=True))
    unboosted = round(math.exp(-1 / 1.5), 4)
    assert candidate.factor("urgency_alignment") == pytest.approx(unboosted * 1.3, abs=1e-4)


def test_boosts_can_be_disabled():
    params = MatchingParameters(perishable_geographic_boost=0.0, critical_urgency_boost=0.0)
    scorer = MatchScorer(params)
    candidate = scorer.score_pair(
        make_request(urgency="critical", city="Davao", barangay=None),
        make_donation(is_urgent=True),
    )
    assert candidate.factor("geographic_proximity") == 0.4
    assert candidate.factor("urgency_alignment") == round(math.exp(-1 / 1.5), 4)


def test_reliability_side_depends_on_candidate_kind(scorer):
    donor = UserProfile(
        id=200, role="donor", rating_average=5.0, rating_count=3,
        completed_tasks=10, total_tasks=10,
    )
    as_donation = scorer.score_pair(make_request(), make_donation(), kind="donation", donor=donor)
    as_request = scorer.score_pair(make_request(), make_donation(), kind="request", donor=donor)
    assert as_donation.factor("user_reliability") == 1.0
    assert as_request.factor("user_reliability") == 0.5
    assert as_request.candidate_id == 1


def test_critical_nearby_outranks_distant_mismatch():
    request = make_request(
        urgency="critical", delivery_mode="volunteer", latitude=BASE_LAT, longitude=BASE_LON
    )
    near = make_donation(
        id=1, is_urgent=True, delivery_mode="volunteer",
        latitude=BASE_LAT + 0.045, longitude=BASE_LON,
    )
    far = make_donation(
        id=2, title="Canned goods", tags=None, delivery_mode="pickup",
        latitude=BASE_LAT + 0.36, longitude=BASE_LON,
    )

    ranked = score_and_rank_donations(request, [far, near])

    assert [c.candidate_id for c in ranked] == [1, 2]
    assert [c.rank for c in ranked] == [1, 2]
    assert ranked[0].score > 0.85
    assert ranked[1].score < 0.5


def test_ties_break_by_age_then_id(scorer):
    older = make_donation(id=9, created_at=T0 - timedelta(hours=1))
    newer = make_donation(id=3, created_at=T0)
    same_age = make_donation(id=5, created_at=T0)
    candidates = [scorer.score_pair(make_request(), d) for d in (newer, same_age, older)]

    ranked = scorer.rank_candidates(candidates)
    assert [c.candidate_id for c in ranked] == [9, 3, 5]
    assert ranked == scorer.rank_candidates(list(reversed(candidates)))


def test_match_reason_names_top_factors(scorer):
    candidate = MatchCandidate(kind="donation", candidate_id=1, candidate_created_at=T0)
    candidate.add_factor_score("geographic_proximity", 1.0, 0.30)
    candidate.add_factor_score("item_compatibility", 1.0, 0.25)
    candidate.add_factor_score("urgency_alignment", 0.5, 0.20)
    assert scorer.match_reason(candidate) == "Close Location & Perfect Item Match"

    candidate = MatchCandidate(kind="donation", candidate_id=1, candidate_created_at=T0)
    candidate.add_factor_score("geographic_proximity", 1.0, 0.30)
    candidate.add_factor_score("item_compatibility", 0.4, 0.25)
    assert scorer.match_reason(candidate) == "Close Location"

    empty = MatchCandidate(kind="donation", candidate_id=1, candidate_created_at=T0)
    assert scorer.match_reason(empty) == "Good match"


def test_gate_states():
    candidate = MatchCandidate(kind="donation", candidate_id=1, candidate_created_at=T0)

    disabled = MatchScorer(MatchingParameters())
    candidate.score = 0.95
    assert disabled.determine_state(candidate) == MatchState.SUGGESTED
    assert not candidate.auto_claim_eligible

    enabled = MatchScorer(MatchingParameters(auto_match_enabled=True))
    assert enabled.determine_state(candidate) == MatchState.AUTO_CLAIMABLE
    assert candidate.auto_match_eligible and candidate.auto_claim_eligible

    candidate.score = 0.8
    assert enabled.determine_state(candidate) == MatchState.AUTO_MATCHABLE
    assert not candidate.auto_claim_eligible

    candidate.score = 0.5
    assert enabled.determine_state(candidate) == MatchState.SUGGESTED


def test_score_volunteer_for_task(scorer):
    task = DeliveryTask(
        match_id=42, request=make_request(), donation=make_donation(), created_at=T0
    )
    volunteer = make_volunteer(preferred_delivery_types=["Food Items"])

    as_volunteer = scorer.score_volunteer(volunteer, task)
    assert as_volunteer.candidate_id == volunteer.id
    assert as_volunteer.task_match_id == 42

    as_task = scorer.score_volunteer(volunteer, task, kind="task")
    assert as_task.kind == "task"
    assert as_task.candidate_id == 42
    assert as_task.score == as_volunteer.score


def test_score_breakdown_shape(scorer):
    breakdown = scorer.score_pair(make_request(), make_donation()).get_score_breakdown()
    assert set(breakdown) == {"score", "state", "reason", "distance_km", "factors"}
    assert len(breakdown["factors"]) == 5
    assert breakdown["state"] == "suggested"


# Hard filters

def test_pair_exclusion_reasons():
    params = MatchingParameters()
    request = make_request(latitude=BASE_LAT, longitude=BASE_LON)

    assert pair_exclusion_reason(request, make_donation(), params) is None
    assert pair_exclusion_reason(request, make_donation(status="matched"), params) == "donation_unavailable"
    assert pair_exclusion_reason(request, make_donation(quantity=0), params) == "donation_unavailable"
    assert pair_exclusion_reason(
        request.model_copy(update={"status": "claimed"}), make_donation(), params
    ) == "request_not_open"
    assert pair_exclusion_reason(request, make_donation(donor_id=100), params) == "same_user"
    assert pair_exclusion_reason(request, make_donation(category="clothing"), params) == "category_mismatch"
    assert pair_exclusion_reason(request, make_donation(quantity=7), params) == "insufficient_quantity"
    assert pair_exclusion_reason(request, make_donation(quantity=8), params) is None

    too_far = make_donation(latitude=BASE_LAT + 0.46, longitude=BASE_LON)
    assert pair_exclusion_reason(request, too_far, params) == "too_far"
    just_inside = make_donation(latitude=BASE_LAT + 0.44, longitude=BASE_LON)
    assert pair_exclusion_reason(request, just_inside, params) is None


def test_unknown_distance_is_not_excluded():
    params = MatchingParameters()
    request = make_request(city=None, barangay=None)
    assert pair_exclusion_reason(request, make_donation(), params) is None


def test_volunteer_exclusion_reasons():
    params = MatchingParameters()
    task = DeliveryTask(match_id=1, request=make_request(), donation=make_donation())

    assert volunteer_exclusion_reason(make_volunteer(), task, params) is None
    assert volunteer_exclusion_reason(make_volunteer(status="inactive"), task, params) == "inactive"
    assert volunteer_exclusion_reason(
        make_volunteer(active_deliveries=3), task, params
    ) == "overloaded"

    located_task = DeliveryTask(
        match_id=1,
        request=make_request(latitude=BASE_LAT, longitude=BASE_LON),
        donation=make_donation(latitude=BASE_LAT, longitude=BASE_LON),
    )
    far = make_volunteer(latitude=BASE_LAT + 0.5, longitude=BASE_LON)
    assert volunteer_exclusion_reason(far, located_task, params) == "too_far"
