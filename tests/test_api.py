"""Tests for the HTTP API."""

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from hopelink.main import app
from hopelink.matching.config import DEFAULT_CONTEXT


@pytest.fixture
def client():
    return TestClient(app)


@pytest_asyncio.fixture
async def api(test_db):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def test_health(client):
    assert client.get("/").json() == {"status": "ok"}

    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "x-request-id" in response.headers


def test_request_id_is_echoed(client):
    response = client.get("/healthz", headers={"x-request-id": "abc-123"})
    assert response.headers["x-request-id"] == "abc-123"


def test_create_match_body_validation(client):
    response = client.post("/matching/matches", json={"request_id": 1})
    assert response.status_code == 422


@pytest.mark.asyncio
class TestParametersApi:
    """Test parameter administration endpoints."""

    async def test_get_defaults(self, api):
        response = await api.get(f"/matching/parameters/{DEFAULT_CONTEXT}")
        assert response.status_code == 200

        body = response.json()
        assert body["context"] == DEFAULT_CONTEXT
        assert body["weights"] == {
            "geographic_proximity": 0.30,
            "item_compatibility": 0.25,
            "urgency_alignment": 0.20,
            "user_reliability": 0.15,
            "delivery_compatibility": 0.10,
        }

        assert body["auto_match_enabled"] is False
        assert body["auto_match_threshold"] == 0.75
        assert body["auto_claim_threshold"] == 0.85
        assert "thresholds" not in body

        listing = (await api.get("/matching/parameters")).json()
        assert list(listing) == [DEFAULT_CONTEXT]
        assert listing[DEFAULT_CONTEXT]["max_distance_km"] == 50.0
        assert listing[DEFAULT_CONTEXT]["auto_claim_threshold"] == 0.85

    async def test_update_within_tolerance(self, api):
        response = await api.put(
            f"/matching/parameters/{DEFAULT_CONTEXT}",
            json={"updates": {"weights.geographic_proximity": 0.34}, "admin_user_id": 1},
        )
        assert response.status_code == 200
        assert response.json()["weights"]["geographic_proximity"] == 0.34

        reread = await api.get(f"/matching/parameters/{DEFAULT_CONTEXT}")
        assert reread.json()["weights"]["geographic_proximity"] == 0.34

    async def test_update_with_admin_page_keys(self, api):
        updates = {
            "geographic_proximity_weight": 0.25,
            "user_reliability_weight": 0.20,
            "auto_match_enabled": True,
            "auto_match_threshold": 0.7,
            "auto_claim_threshold": 0.9,
            "max_matching_distance_km": 40,
            "critical_urgency_boost": 0.25,
        }
        response = await api.put(
            f"/matching/parameters/{DEFAULT_CONTEXT}",
            json={"updates": updates, "admin_user_id": 1},
        )
        assert response.status_code == 200

        listing = (await api.get("/matching/parameters")).json()
        saved = listing[DEFAULT_CONTEXT]
        assert saved["weights"]["geographic_proximity"] == 0.25
        assert saved["weights"]["user_reliability"] == 0.20
        assert saved["auto_match_enabled"] is True
        assert saved["auto_match_threshold"] == 0.7
        assert saved["auto_claim_threshold"] == 0.9
        assert saved["max_distance_km"] == 40.0
        assert saved["critical_urgency_boost"] == 0.25

    async def test_unknown_context_is_not_created_by_reads(self, api):
        response = await api.get("/matching/parameters/DISASTER_RELIEF")
        assert response.status_code == 404

        listing = (await api.get("/matching/parameters")).json()
        assert list(listing) == [DEFAULT_CONTEXT]

        saved = await api.put(
            "/matching/parameters/DISASTER_RELIEF",
            json={"updates": {"max_distance_km": 120.0}},
        )
        assert saved.status_code == 200
        listing = (await api.get("/matching/parameters")).json()
        assert set(listing) == {DEFAULT_CONTEXT, "DISASTER_RELIEF"}

    async def test_update_rejects_bad_weight_sum(self, api):
        response = await api.put(
            f"/matching/parameters/{DEFAULT_CONTEXT}",
            json={"updates": {"weights": {"geographic_proximity": 0.40}}},
        )
        assert response.status_code == 422

        detail = response.json()["detail"]
        assert detail["weight_percentage"] == 110
        assert detail["message"] == "Matching weights must sum to 100% (currently 110%)"

    async def test_update_rejects_inverted_thresholds(self, api):
        response = await api.put(
            f"/matching/parameters/{DEFAULT_CONTEXT}",
            json={"updates": {"auto_claim_threshold": 0.5}},
        )
        assert response.status_code == 422
        assert "weight_percentage" not in response.json()["detail"]

    async def test_malformed_context(self, api):
        response = await api.get("/matching/parameters/not-a-context")
        assert response.status_code == 422


@pytest.mark.asyncio
class TestMatchingApi:
    """Test recommendation and claim endpoints."""

    async def test_recommendations(self, api, factory):
        recipient = await factory.user("recipient")
        donor = await factory.user("donor")
        donation = await factory.donation(donor)
        request = await factory.request(recipient, urgency="high")

        response = await api.get(
            "/matching/recommendations", params={"user_id": recipient.id, "role": "recipient"}
        )
        assert response.status_code == 200

        body = response.json()
        assert body["role"] == "recipient"
        assert body["parameters_context"] == DEFAULT_CONTEXT
        recommendation = body["recommendations"][0]
        assert recommendation["kind"] == "donation_matches"
        assert recommendation["request"]["id"] == request.id
        match = recommendation["matches"][0]
        assert match["candidate_id"] == donation.id
        assert match["rank"] == 1
        assert match["state"] == "suggested"
        assert len(match["factor_scores"]) == 5

    async def test_recommendations_unknown_user(self, api):
        response = await api.get(
            "/matching/recommendations", params={"user_id": 999, "role": "donor"}
        )
        assert response.status_code == 404

    async def test_recommendations_unknown_role(self, api, factory):
        donor = await factory.user("donor")
        response = await api.get(
            "/matching/recommendations", params={"user_id": donor.id, "role": "admin"}
        )
        assert response.status_code == 422

    async def test_claim_then_conflict(self, api, factory):
        donor = await factory.user("donor")
        first_recipient = await factory.user("recipient")
        second_recipient = await factory.user("recipient")
        donation = await factory.donation(donor)
        first_request = await factory.request(first_recipient)
        second_request = await factory.request(second_recipient)

        response = await api.post(
            "/matching/matches",
            json={"request_id": first_request.id, "donation_id": donation.id},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["created"] is True

        retry = await api.post(
            "/matching/matches",
            json={"request_id": first_request.id, "donation_id": donation.id},
        )
        assert retry.status_code == 200
        assert retry.json()["created"] is False
        assert retry.json()["match"]["id"] == body["match"]["id"]

        conflict = await api.post(
            "/matching/matches",
            json={"request_id": second_request.id, "donation_id": donation.id},
        )
        assert conflict.status_code == 409
        assert conflict.json()["detail"]["refresh_required"] is True

    async def test_candidate_lists(self, api, factory):
        donor = await factory.user("donor")
        recipient = await factory.user("recipient")
        donation = await factory.donation(donor)
        request = await factory.request(recipient, delivery_mode="volunteer")

        by_request = await api.get(f"/matching/requests/{request.id}/matches")
        assert by_request.json()["candidates"][0]["candidate_id"] == donation.id

        by_donation = await api.get(f"/matching/donations/{donation.id}/matches")
        assert by_donation.json()["count"] == 1

        missing = await api.get("/matching/requests/999/matches")
        assert missing.status_code == 404

        claim = await api.post(
            "/matching/matches", json={"request_id": request.id, "donation_id": donation.id}
        )
        volunteer = await factory.volunteer()
        volunteers = await api.get(f"/matching/matches/{claim.json()['match']['id']}/volunteers")
        assert [c["candidate_id"] for c in volunteers.json()["candidates"]] == [volunteer.id]

    async def test_optimal_and_metrics(self, api, factory):
        donor = await factory.user("donor")
        recipient = await factory.user("recipient")
        await factory.donation(donor)
        await factory.request(recipient)

        optimal = await api.get("/matching/optimal")
        assert optimal.status_code == 200
        assert optimal.json()["count"] == 1
        assert optimal.json()["matches"][0]["match_type"] == "direct"

        metrics = (await api.get("/matching/metrics")).json()
        assert metrics["ranking"]["runs"] >= 1
        assert set(metrics) >= {"ranking", "claims", "recommendations", "scores", "factors"}
