"""Tests for FastAPI endpoints."""

import pytest


LISTING = {
    "title": "Charming Family Home with Garden",
    "description": (
        "Bright three bedroom home on a quiet street with a renovated kitchen, "
        "hardwood floors and a large back garden."
    ),
    "address": {
        "street": "123 Maple Street",
        "city": "Springfield",
        "state": "IL",
        "zip_code": "62701",
    },
    "price": 350000,
    "bedrooms": 3,
    "bathrooms": 2,
    "square_feet": 1800,
    "year_built": 1995,
    "images": [f"https://images.local/{i}.jpg" for i in range(5)],
    "videos": ["https://videos.local/tour.mp4"],
}

MISSING_ID = "00000000-0000-0000-0000-000000000000"


@pytest.fixture
def property_id(client) -> str:
    response = client.post("/properties", json=LISTING)
    assert response.status_code == 201
    return response.json()["property"]["id"]


class TestHealthEndpoint:
    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "property-sales-workflow"
        assert data["version"] == "1.0.0"
        assert data["checkpoint_store"] is True


class TestPropertyEndpoints:
    def test_create_starts_workflow(self, client):
        response = client.post("/properties", json=LISTING)

        assert response.status_code == 201
        data = response.json()
        assert data["property"]["title"] == LISTING["title"]
        assert data["workflow"]["current_stage"] == "negotiation"
        assert data["workflow"]["human_intervention_required"] is True
        assert data["workflow"]["suspended_node"] == "negotiation"

    def test_create_invalid_listing(self, client):
        response = client.post("/properties", json={**LISTING, "price": 0})
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_get_property(self, client, property_id):
        response = client.get(f"/properties/{property_id}")
        assert response.status_code == 200
        assert response.json()["address"]["city"] == "Springfield"

    def test_get_property_not_found(self, client):
        response = client.get(f"/properties/{MISSING_ID}")
        assert response.status_code == 404


class TestWorkflowEndpoints:
    def test_status_and_history(self, client, property_id):
        status = client.get(f"/properties/{property_id}/workflow")
        assert status.status_code == 200
        assert status.json()["pending_prompt"].startswith("Broker Dashboard")

        history = client.get(f"/properties/{property_id}/workflow/history")
        assert history.status_code == 200
        nodes = [entry["node"] for entry in history.json()]
        assert nodes == [
            "__start__",
            "input_validation",
            "marketing",
            "lead_management",
            "negotiation",
        ]

    def test_status_not_found(self, client):
        assert client.get(f"/properties/{MISSING_ID}/workflow").status_code == 404

    def test_start_twice_conflicts(self, client, property_id):
        response = client.post(f"/properties/{property_id}/workflow")
        assert response.status_code == 409
        assert response.json()["error"] == "StageConflictError"

    def test_resume_to_legal(self, client, property_id):
        response = client.post(
            f"/properties/{property_id}/workflow/resume",
            json={"human_response": "Approve the offer"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["current_stage"] == "legal"
        assert data["suspended_node"] == "legal"

    def test_resume_empty_reply(self, client, property_id):
        response = client.post(
            f"/properties/{property_id}/workflow/resume", json={"human_response": " "}
        )
        assert response.status_code == 400

    def test_resume_not_waiting(self, client, property_id):
        client.post(
            f"/properties/{property_id}/workflow/resume", json={"human_response": "reject"}
        )
        response = client.post(
            f"/properties/{property_id}/workflow/resume", json={"human_response": "reject"}
        )
        assert response.status_code == 409

    def test_lead_reply_to_broker_decision(self, client, property_id):
        response = client.post(
            f"/properties/{property_id}/workflow/resume",
            json={"human_response": "I APPROVE", "human_role": "lead", "lead_email": "ana@b.co"},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "StageConflictError"

        status = client.get(f"/properties/{property_id}/workflow").json()
        assert status["suspended_node"] == "negotiation"


class TestOfferEndpoints:
    def test_offer_while_broker_decides(self, client, property_id):
        response = client.post(f"/properties/{property_id}/offers", json={"amount": 340000})
        assert response.status_code == 409

    def test_offer_after_rejection(self, client, property_id):
        client.post(
            f"/properties/{property_id}/workflow/resume", json={"human_response": "reject"}
        )

        response = client.post(
            f"/properties/{property_id}/offers",
            json={"amount": 345000, "conditions": ["Inspection contingency"]},
        )

        assert response.status_code == 200
        negotiation = response.json()["agent_outputs"]["negotiation"]["data"]
        assert negotiation["offer_amount"] == 345000
        assert negotiation["requires_broker_approval"] is True

    def test_offer_amount_must_be_positive(self, client, property_id):
        response = client.post(f"/properties/{property_id}/offers", json={"amount": 0})
        assert response.status_code == 422


class TestLeadEndpoints:
    def test_lead_message_outside_lead_management(self, client, property_id):
        response = client.post(
            f"/properties/{property_id}/leads/message",
            json={"message": "Still available?", "lead_email": "ana@b.co"},
        )
        assert response.status_code == 409

    def test_unknown_conversation(self, client, property_id):
        response = client.get(f"/properties/{property_id}/leads/lead_nobody/conversation")
        assert response.status_code == 404
