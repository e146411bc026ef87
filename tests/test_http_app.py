# tests/test_http_app.py
"""End-to-end tests for the HTTP routes (in-memory storage)"""
import pytest
from fastapi.testclient import TestClient

from caredispatch.transport.http_app import app


def _identity(volunteer_id: str, category: str) -> dict:
    return {"X-Volunteer-Id": volunteer_id, "X-Volunteer-Category": category}


LEGAL_A = _identity("legal-a", "LEGAL")
POLICE_A = _identity("police-a", "POLICE")

COMPLAINT = {
    "phoneNo": "+919876543210",
    "type": "PHYSICAL",
    "location": "12.01,12.01",
    "name": "R.",
    "description": "Needs help",
}


@pytest.fixture
def client(volunteers):
    with TestClient(app) as c:
        c.portal.call(app.state.directory.add_volunteers, volunteers)
        yield c


def _file(client, **overrides) -> dict:
    resp = client.post("/complaints", json={**COMPLAINT, **overrides})
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestPublicEndpoints:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}

    def test_ready_pings_storage(self, client):
        resp = client.get("/ready")
        assert resp.status_code == 200

    def test_security_and_request_id_headers(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["Cache-Control"] == "no-store"


class TestComplaintIntake:
    def test_create_complaint_dispatches_each_category(self, client):
        body = _file(client)

        assert body["message"] == "Complaint filed and volunteers dispatched."
        assert body["complaint"]["phoneNo"] == "+919876543210"
        assert body["complaint"]["status"] == "DISPATCHED"
        assert body["complaint"]["location"] == "12.01,12.01"

        slots = body["dispatch"]["slots"]
        assert list(slots) == ["LEGAL", "POLICE", "MENTAL"]
        assert slots["LEGAL"]["volunteerId"] == "legal-a"
        assert slots["LEGAL"]["status"] == "AUTO_DISPATCHED"
        assert slots["LEGAL"]["volunteer"]["name"] == "Volunteer legal-a"
        assert slots["POLICE"]["volunteerId"] == "police-a"
        assert slots["MENTAL"]["volunteerId"] == "mental-a"
        assert body["dispatch"]["complaintId"] == body["complaint"]["id"]
        assert body["dispatch"]["aggregateStatus"] == "DISPATCHED"

    def test_missing_phone_is_400(self, client):
        payload = {k: v for k, v in COMPLAINT.items() if k != "phoneNo"}
        resp = client.post("/complaints", json=payload)

        assert resp.status_code == 400
        assert "phoneNo" in resp.json()["error"]

    def test_unknown_type_is_400(self, client):
        resp = client.post("/complaints", json={**COMPLAINT, "type": "NOISE"})

        assert resp.status_code == 400
        assert "type" in resp.json()["error"]

    def test_malformed_location_is_400(self, client):
        resp = client.post("/complaints", json={**COMPLAINT, "location": "12.01;12.01"})

        assert resp.status_code == 400
        assert "lat,lon" in resp.json()["error"]

    def test_per_phone_rate_limit(self, client):
        for _ in range(5):
            _file(client, phoneNo="+915555555555")

        resp = client.post("/complaints", json={**COMPLAINT, "phoneNo": "+915555555555"})

        assert resp.status_code == 429
        assert "Retry-After" in resp.headers


class TestComplaintDetails:
    def test_details_after_intake(self, client):
        created = _file(client)
        complaint_id = created["complaint"]["id"]

        resp = client.get(f"/complaints/{complaint_id}")

        assert resp.status_code == 200
        body = resp.json()
        assert body["complaint"]["id"] == complaint_id
        assert body["aggregateStatus"] == "DISPATCHED"
        assert len(body["dispatches"]) == 1
        assert body["dispatches"][0]["slots"]["POLICE"]["volunteer"]["id"] == "police-a"

    def test_unknown_complaint_is_404(self, client):
        resp = client.get("/complaints/does-not-exist")

        assert resp.status_code == 404
        assert "not found" in resp.json()["error"]


class TestVolunteerStatus:
    def test_requires_identity_headers(self, client):
        dispatch_id = _file(client)["dispatch"]["id"]

        resp = client.post(f"/dispatches/{dispatch_id}/status", json={"newStatus": "RESOLVED"})

        assert resp.status_code == 401

    def test_unknown_category_header_is_400(self, client):
        resp = client.get("/volunteers/me/dispatches", headers=_identity("legal-a", "FIRE"))
        assert resp.status_code == 400

    def test_owner_updates_own_slot(self, client):
        created = _file(client)
        dispatch_id = created["dispatch"]["id"]

        resp = client.post(
            f"/dispatches/{dispatch_id}/status",
            json={"newStatus": "in_progress"},
            headers=LEGAL_A,
        )

        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["message"] == "LEGAL slot is now IN_PROGRESS"
        assert body["dispatch"]["slots"]["LEGAL"]["status"] == "IN_PROGRESS"
        assert body["dispatch"]["slots"]["POLICE"]["status"] == "AUTO_DISPATCHED"

    def test_other_volunteer_gets_404(self, client):
        dispatch_id = _file(client)["dispatch"]["id"]

        resp = client.post(
            f"/dispatches/{dispatch_id}/status",
            json={"newStatus": "RESOLVED"},
            headers=_identity("legal-b", "LEGAL"),
        )

        assert resp.status_code == 404

    def test_backward_transition_is_409(self, client):
        dispatch_id = _file(client)["dispatch"]["id"]
        client.post(f"/dispatches/{dispatch_id}/status", json={"newStatus": "IN_PROGRESS"}, headers=LEGAL_A)

        resp = client.post(
            f"/dispatches/{dispatch_id}/status",
            json={"newStatus": "AUTO_DISPATCHED"},
            headers=LEGAL_A,
        )

        assert resp.status_code == 409
        assert "Illegal transition" in resp.json()["error"]

    def test_invalid_status_value_is_400(self, client):
        dispatch_id = _file(client)["dispatch"]["id"]

        resp = client.post(
            f"/dispatches/{dispatch_id}/status", json={"newStatus": "DONE"}, headers=LEGAL_A
        )

        assert resp.status_code == 400

    def test_identity_only_update_and_ambiguity(self, client):
        _file(client)
        resp = client.post("/volunteers/me/status", json={"newStatus": "IN_PROGRESS"}, headers=POLICE_A)
        assert resp.status_code == 200

        second = _file(client, phoneNo="+918888888888")
        resp = client.post("/volunteers/me/status", json={"newStatus": "RESOLVED"}, headers=POLICE_A)
        assert resp.status_code == 409

        resp = client.post(
            "/volunteers/me/status",
            json={"newStatus": "RESOLVED", "dispatchId": second["dispatch"]["id"]},
            headers=POLICE_A,
        )
        assert resp.status_code == 200
        assert resp.json()["dispatch"]["id"] == second["dispatch"]["id"]

    def test_resolving_every_slot_resolves_complaint(self, client):
        created = _file(client)
        dispatch_id = created["dispatch"]["id"]

        for headers in (LEGAL_A, POLICE_A, _identity("mental-a", "MENTAL")):
            resp = client.post(
                f"/dispatches/{dispatch_id}/status", json={"newStatus": "RESOLVED"}, headers=headers
            )
            assert resp.status_code == 200

        body = client.get(f"/complaints/{created['complaint']['id']}").json()
        assert body["aggregateStatus"] == "RESOLVED"
        assert body["complaint"]["status"] == "RESOLVED"

    def test_dashboard_lists_assignments(self, client):
        created = _file(client)

        resp = client.get("/volunteers/me/dispatches", headers=LEGAL_A)

        assert resp.status_code == 200
        assignments = resp.json()["assignments"]
        assert [a["dispatchId"] for a in assignments] == [created["dispatch"]["id"]]
        assert assignments[0]["category"] == "LEGAL"
        assert assignments[0]["complaint"]["type"] == "PHYSICAL"


class TestDevAndMetrics:
    def test_seed_and_delete_fictional_volunteers(self, client):
        resp = client.post("/dev/volunteers/seed", params={"count": 2, "seed": 7})
        assert resp.status_code == 201
        assert resp.json()["created"] == 6

        resp = client.delete("/dev/volunteers")
        assert resp.status_code == 200
        # 6 fictional + 6 from the fixture
        assert resp.json()["deleted"] == 12

        body = _file(client)
        assert all(s["volunteerId"] is None for s in body["dispatch"]["slots"].values())

    def test_metrics_available_in_dev(self, client):
        _file(client)

        resp = client.get("/metrics")

        assert resp.status_code == 200
        assert resp.json()["counters"]["complaints_dispatched_total"] == 1
