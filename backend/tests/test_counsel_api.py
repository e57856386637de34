"""
Tests for the HTTP surface.

Routes run against the per-test SQLite database through a get_db override.
"""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from counsel_engine.auth import create_access_token, INTERNAL_API_KEY
from counsel_engine.database import get_db
from counsel_engine.main import app


def _headers(user_id, role="user"):
    token = create_access_token(user_id, f"{user_id}@example.org", role=role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


REQUEST_BODY = {
    "user_name": "Nyandeng",
    "note": "My employer has not paid me for three months",
    "legal_category": "employment",
    "region": "CES",
}


# =============================================================================
# TEST: PUBLIC
# =============================================================================

class TestPublic:

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_config_lists_regions_and_categories(self, client):
        body = client.get("/counsel/config").json()

        assert len(body["regions"]) == 10
        assert {"code": "CES", "name": "Central Equatoria", "capital": "Juba"} in body["regions"]
        assert "employment" in [c["id"] for c in body["legal_categories"]]

    def test_protected_route_requires_token(self, client):
        assert client.post("/counsel/requests", json=REQUEST_BODY).status_code in (401, 403)

    def test_garbage_token_rejected(self, client):
        response = client.get("/counsel/requests/pending", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401


# =============================================================================
# TEST: DISPATCH AND CLAIM
# =============================================================================

class TestClaimFlow:

    def test_create_accept_complete(self, client, make_counselor):
        first = make_counselor()
        second = make_counselor()

        created = client.post("/counsel/requests", json=REQUEST_BODY, headers=_headers("user-1"))
        assert created.status_code == 200
        body = created.json()
        assert body["status"] == "broadcasting"
        assert body["broadcast_count"] == 2
        assert set(body["eligible_counselors"]) == {first, second}
        request_id = body["request_id"]

        notified = client.get(f"/counsel/requests/counselor/{first}", headers=_headers(first, "counselor"))
        assert [r["id"] for r in notified.json()] == [request_id]

        won = client.post(f"/counsel/requests/{request_id}/accept", json={}, headers=_headers(first, "counselor"))
        assert won.status_code == 200
        assert won.json()["success"] is True
        assert won.json()["chat_id"]

        lost = client.post(f"/counsel/requests/{request_id}/accept", json={}, headers=_headers(second, "counselor"))
        assert lost.status_code == 409
        assert lost.json()["detail"]["reason"] == "already_claimed"

        forbidden = client.post(f"/counsel/requests/{request_id}/complete", headers=_headers(second, "counselor"))
        assert forbidden.status_code == 403

        done = client.post(f"/counsel/requests/{request_id}/complete", headers=_headers(first, "counselor"))
        assert done.status_code == 200
        assert done.json()["status"] == "completed"

        again = client.post(f"/counsel/requests/{request_id}/complete", headers=_headers(first, "counselor"))
        assert again.status_code == 409
        assert again.json()["detail"]["reason"] == "terminal_state"

        mine = client.get("/counsel/requests/user/user-1", headers=_headers("user-1"))
        assert mine.json()[0]["status"] == "completed"

    def test_cannot_claim_for_someone_else(self, client, make_counselor, make_request):
        cid = make_counselor()
        request_id = make_request(broadcasted_to=[cid])

        response = client.post(
            f"/counsel/requests/{request_id}/accept",
            json={"counselor_id": cid},
            headers=_headers("impostor", "counselor"),
        )

        assert response.status_code == 403

    def test_expired_claim_is_gone(self, client, make_counselor, make_request):
        cid = make_counselor()
        request_id = make_request(broadcasted_to=[cid], expires_in=timedelta(seconds=-1))

        response = client.post(f"/counsel/requests/{request_id}/accept", json={}, headers=_headers(cid, "counselor"))

        assert response.status_code == 410
        assert response.json()["detail"]["reason"] == "expired"

    def test_unknown_request(self, client, make_counselor):
        cid = make_counselor()

        response = client.post("/counsel/requests/nope/accept", json={}, headers=_headers(cid, "counselor"))

        assert response.status_code == 404

    def test_invalid_region_is_bad_request(self, client):
        response = client.post(
            "/counsel/requests",
            json={**REQUEST_BODY, "region": "XXX"},
            headers=_headers("user-1"),
        )

        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "invalid_input"

    def test_requester_can_cancel(self, client, make_request):
        request_id = make_request(user_id="user-9")

        stranger = client.post(f"/counsel/requests/{request_id}/cancel", json={}, headers=_headers("user-1"))
        owner = client.post(
            f"/counsel/requests/{request_id}/cancel",
            json={"reason": "Sorted it out"},
            headers=_headers("user-9"),
        )

        assert stranger.status_code == 403
        assert owner.status_code == 200
        assert owner.json()["status"] == "cancelled"


# =============================================================================
# TEST: APPOINTMENT QUEUE
# =============================================================================

class TestQueueFlow:

    def test_schedule_and_claim_from_queue(self, client, make_counselor):
        cid = make_counselor(is_online=False)

        booked = client.post(
            "/counsel/requests/schedule",
            json={**REQUEST_BODY, "preferred_date": "2030-04-01", "preferred_time": "13:00"},
            headers=_headers("user-1"),
        )
        assert booked.status_code == 200
        appointment_id = booked.json()["appointment_id"]

        queued = client.get("/counsel/appointments/queued?region=CES", headers=_headers(cid, "counselor"))
        assert [a["id"] for a in queued.json()] == [appointment_id]

        claimed = client.post(
            f"/counsel/appointments/{appointment_id}/accept", json={}, headers=_headers(cid, "counselor"),
        )
        assert claimed.status_code == 200
        assert claimed.json()["request_id"] == booked.json()["request_id"]

        request = client.get(f"/counsel/requests/{booked.json()['request_id']}", headers=_headers("user-1"))
        assert request.json()["status"] == "accepted"
        assert request.json()["counselor_id"] == cid

    def test_bad_date_rejected(self, client):
        response = client.post(
            "/counsel/requests/schedule",
            json={**REQUEST_BODY, "preferred_date": "tomorrow", "preferred_time": "13:00"},
            headers=_headers("user-1"),
        )

        assert response.status_code == 400


# =============================================================================
# TEST: COUNSELOR DIRECTORY
# =============================================================================

class TestCounselorRoutes:

    APPLICATION = {
        "name": "Akol Deng",
        "email": "akol@example.org",
        "phone": "+211900000001",
        "national_id_number": "SS-123",
        "home_region": "CES",
    }

    def test_apply_approve_go_online(self, client):
        applied = client.post("/counselors/apply", json=self.APPLICATION, headers=_headers("akol"))
        assert applied.status_code == 200

        status = client.get("/counselors/me/application", headers=_headers("akol"))
        assert status.json()["status"] == "pending"

        not_admin = client.post("/counselors/akol/approve", headers=_headers("akol"))
        assert not_admin.status_code == 403

        pending = client.get("/counselors/applications/pending", headers=_headers("admin-1", "admin"))
        assert [c["id"] for c in pending.json()] == ["akol"]

        approved = client.post("/counselors/akol/approve", headers=_headers("admin-1", "admin"))
        assert approved.status_code == 200

        online = client.post("/counselors/me/online", json={"is_online": True}, headers=_headers("akol", "counselor"))
        assert online.status_code == 200

        available = client.get("/counselors/available/CES", headers=_headers("user-1"))
        assert [c["id"] for c in available.json()] == ["akol"]

    def test_online_toggle_for_unregistered_user(self, client):
        response = client.post("/counselors/me/online", json={"is_online": True}, headers=_headers("stranger"))

        assert response.status_code == 404

    def test_reject_with_reason(self, client):
        client.post("/counselors/apply", json=self.APPLICATION, headers=_headers("akol"))

        rejected = client.post(
            "/counselors/akol/reject",
            json={"reason": "ID document unreadable"},
            headers=_headers("admin-1", "admin"),
        )

        assert rejected.status_code == 200
        status = client.get("/counselors/me/application", headers=_headers("akol"))
        assert status.json()["status"] == "rejected"
        assert status.json()["rejection_reason"] == "ID document unreadable"


# =============================================================================
# TEST: INTERNAL SCHEDULER
# =============================================================================

class TestInternalRoutes:

    def test_wrong_key_forbidden(self, client):
        response = client.post("/internal/expiry-sweep", headers={"X-Internal-Key": "guess"})

        assert response.status_code == 403

    def test_expiry_sweep(self, client, make_request):
        make_request(expires_in=timedelta(seconds=-1))

        response = client.post("/internal/expiry-sweep", headers={"X-Internal-Key": INTERNAL_API_KEY})

        assert response.status_code == 200
        assert response.json()["expired"] == 1

    def test_capacity_reconcile(self, client, make_counselor):
        make_counselor(active_requests=2)

        report = client.post("/internal/capacity-reconcile", headers={"X-Internal-Key": INTERNAL_API_KEY}).json()
        assert len(report["drifted"]) == 1

        repaired = client.post(
            "/internal/capacity-reconcile?repair=true", headers={"X-Internal-Key": INTERNAL_API_KEY},
        ).json()
        assert repaired["repaired"] == 1
