"""
ScribeConnect Backend: API Route Tests
=======================================

What we test:
    ✅ Identity handling (missing, malformed, unregistered)
    ✅ Profile registration and /me
    ✅ Exam creation, listing, candidates and deletion
    ✅ Request lifecycle over HTTP, including the 409 conflict codes
    ✅ Client audit events are accepted and tagged with the session id
    ✅ Health check and request/session correlation headers
    ✅ Notifications socket rejects unknown callers
"""

import uuid
from datetime import date

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import FakeChangeFeed
from scribeconnect.models.match_request import MatchStatus
from scribeconnect.models.profile import UserRole
from scribeconnect.services.realtime_bridge import BridgeRegistry


def headers_for(profile) -> dict:
    return {"X-User-ID": str(profile.id)}


REGISTRATION = {
    "role": "student",
    "name": "Arjun Rao",
    "age": 19,
    "mobile": "9123456780",
    "email": "arjun@example.com",
    "district": "Bengaluru Urban",
    "state": "Karnataka",
    "postal_code": "560001",
}


class TestIdentity:
    @pytest.mark.asyncio
    async def test_missing_identity(self, test_client):
        response = await test_client.get("/api/requests")

        assert response.status_code == 401
        assert response.json()["error"] == "authentication_required"

    @pytest.mark.asyncio
    async def test_malformed_identity(self, test_client):
        response = await test_client.get("/api/requests", headers={"X-User-ID": "not-a-uuid"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unregistered_identity(self, test_client):
        response = await test_client.get(
            "/api/profiles/me", headers={"X-User-ID": str(uuid.uuid4())}
        )
        assert response.status_code == 404


class TestProfileRoutes:
    @pytest.mark.asyncio
    async def test_register_and_read_back(self, test_client):
        identity = {"X-User-ID": str(uuid.uuid4())}

        created = await test_client.post("/api/profiles", json=REGISTRATION, headers=identity)
        me = await test_client.get("/api/profiles/me", headers=identity)

        assert created.status_code == 201
        assert created.json()["verified"] is False
        assert me.status_code == 200
        assert me.json()["email"] == "arjun@example.com"

    @pytest.mark.asyncio
    async def test_register_twice(self, test_client):
        identity = {"X-User-ID": str(uuid.uuid4())}
        await test_client.post("/api/profiles", json=REGISTRATION, headers=identity)

        response = await test_client.post("/api/profiles", json=REGISTRATION, headers=identity)

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_invalid_pin_code(self, test_client):
        response = await test_client.post(
            "/api/profiles",
            json={**REGISTRATION, "postal_code": "5600"},
            headers={"X-User-ID": str(uuid.uuid4())},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_patch_me(self, test_client, make_profile):
        writer = await make_profile(UserRole.WRITER)

        response = await test_client.patch(
            "/api/profiles/me", json={"district": "Mysuru"}, headers=headers_for(writer)
        )

        assert response.status_code == 200
        assert response.json()["district"] == "Mysuru"
        assert response.json()["role"] == "writer"


class TestExamRoutes:
    @pytest.mark.asyncio
    async def test_create_and_list(self, test_client, make_profile):
        student = await make_profile(UserRole.STUDENT)

        created = await test_client.post(
            "/api/exams",
            json={"exam_name": "CAT", "postal_code": "110001", "exam_date": "2026-11-30"},
            headers=headers_for(student),
        )
        listed = await test_client.get("/api/exams", headers=headers_for(student))

        assert created.status_code == 201
        assert created.json()["status"] == "open"
        assert [e["id"] for e in listed.json()] == [created.json()["id"]]

    @pytest.mark.asyncio
    async def test_writer_cannot_create_exam(self, test_client, make_profile):
        writer = await make_profile(UserRole.WRITER)

        response = await test_client.post(
            "/api/exams",
            json={"exam_name": "CAT", "postal_code": "110001"},
            headers=headers_for(writer),
        )

        assert response.status_code == 403
        assert response.json()["error"] == "permission_denied"

    @pytest.mark.asyncio
    async def test_candidates_experienced_first(
        self, test_client, make_profile, make_exam, make_request
    ):
        student = await make_profile(UserRole.STUDENT, postal_code="110001")
        newcomer = await make_profile(UserRole.WRITER, postal_code="110001")
        veteran = await make_profile(UserRole.WRITER, postal_code="110001")
        await make_profile(UserRole.WRITER, postal_code="400001")
        past = await make_exam(student, exam_name="CAT", exam_date=date(2025, 11, 24))
        await make_request(student, veteran, past, MatchStatus.COMPLETED)
        upcoming = await make_exam(student, exam_name="CAT", exam_date=date(2026, 11, 30))

        response = await test_client.get(
            f"/api/exams/{upcoming.id}/candidates", headers=headers_for(student)
        )

        assert response.status_code == 200
        body = response.json()
        assert [c["id"] for c in body] == [str(veteran.id), str(newcomer.id)]
        assert [c["has_experience"] for c in body] == [True, False]
        assert "mobile" not in body[0]

    @pytest.mark.asyncio
    async def test_candidates_for_someone_elses_exam(self, test_client, make_profile, make_exam):
        owner = await make_profile(UserRole.STUDENT)
        other = await make_profile(UserRole.STUDENT)
        exam = await make_exam(owner)

        response = await test_client.get(
            f"/api/exams/{exam.id}/candidates", headers=headers_for(other)
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_delete_exam_removes_requests(
        self, test_client, make_profile, make_exam, make_request
    ):
        student = await make_profile(UserRole.STUDENT)
        writer = await make_profile(UserRole.WRITER)
        exam = await make_exam(student)
        await make_request(student, writer, exam)

        deleted = await test_client.delete(f"/api/exams/{exam.id}", headers=headers_for(student))
        listed = await test_client.get("/api/requests", headers=headers_for(writer))

        assert deleted.status_code == 200
        assert deleted.json() == {"deleted": 1}
        assert listed.json() == []


class TestRequestRoutes:
    @pytest.mark.asyncio
    async def test_create_then_duplicate(self, test_client, make_profile, make_exam):
        student = await make_profile(UserRole.STUDENT)
        writer = await make_profile(UserRole.WRITER)
        exam = await make_exam(student)
        body = {"writer_id": str(writer.id), "exam_id": str(exam.id)}

        first = await test_client.post("/api/requests", json=body, headers=headers_for(student))
        second = await test_client.post("/api/requests", json=body, headers=headers_for(student))

        assert first.status_code == 201
        assert first.json()["status"] == "pending"
        assert second.status_code == 409
        assert second.json()["error"] == "duplicate_pending"

    @pytest.mark.asyncio
    async def test_idempotent_resubmit(self, test_client, make_profile, make_exam):
        student = await make_profile(UserRole.STUDENT)
        writer = await make_profile(UserRole.WRITER)
        exam = await make_exam(student)
        body = {
            "writer_id": str(writer.id),
            "exam_id": str(exam.id),
            "idempotency_key": "submit-7f3a",
        }

        first = await test_client.post("/api/requests", json=body, headers=headers_for(student))
        again = await test_client.post("/api/requests", json=body, headers=headers_for(student))

        assert again.status_code == 201
        assert again.json()["id"] == first.json()["id"]

    @pytest.mark.asyncio
    async def test_writer_sees_enriched_notification(
        self, test_client, make_profile, make_exam, make_request
    ):
        student = await make_profile(UserRole.STUDENT, name="Kavya Iyer")
        writer = await make_profile(UserRole.WRITER)
        exam = await make_exam(student, exam_name="GATE")
        await make_request(student, writer, exam)

        response = await test_client.get("/api/requests", headers=headers_for(writer))

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-store"
        [notification] = response.json()
        assert notification["counterpart"]["name"] == "Kavya Iyer"
        assert notification["exam"]["exam_name"] == "GATE"

    @pytest.mark.asyncio
    async def test_accept_then_student_cannot_accept(
        self, test_client, make_profile, make_exam, make_request
    ):
        student = await make_profile(UserRole.STUDENT)
        writer = await make_profile(UserRole.WRITER)
        exam = await make_exam(student)
        request = await make_request(student, writer, exam)

        accepted = await test_client.patch(
            f"/api/requests/{request.id}", json={"status": "accepted"}, headers=headers_for(writer)
        )
        refused = await test_client.patch(
            f"/api/requests/{request.id}", json={"status": "completed"}, headers=headers_for(student)
        )

        assert accepted.status_code == 200
        assert accepted.json()["status"] == "accepted"
        assert refused.status_code == 409
        assert refused.json()["error"] == "invalid_transition"

    @pytest.mark.asyncio
    async def test_outsider_cannot_update(
        self, test_client, make_profile, make_exam, make_request
    ):
        student = await make_profile(UserRole.STUDENT)
        writer = await make_profile(UserRole.WRITER)
        outsider = await make_profile(UserRole.WRITER)
        request = await make_request(student, writer, await make_exam(student))

        response = await test_client.patch(
            f"/api/requests/{request.id}", json={"status": "accepted"}, headers=headers_for(outsider)
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_delete_and_bulk_delete(
        self, test_client, make_profile, make_exam, make_request
    ):
        student = await make_profile(UserRole.STUDENT)
        writer = await make_profile(UserRole.WRITER)
        exam = await make_exam(student)
        one = await make_request(student, writer, exam, MatchStatus.REJECTED)
        two = await make_request(student, writer, exam, MatchStatus.CANCELLED)
        three = await make_request(student, writer, exam, MatchStatus.COMPLETED)

        single = await test_client.delete(f"/api/requests/{one.id}", headers=headers_for(writer))
        bulk = await test_client.post(
            "/api/requests/bulk-delete",
            json={"ids": [str(two.id), str(three.id)]},
            headers=headers_for(student),
        )
        remaining = await test_client.get("/api/requests", headers=headers_for(student))

        assert single.status_code == 204
        assert bulk.json() == {"deleted": 2}
        assert remaining.json() == []

    @pytest.mark.asyncio
    async def test_delete_missing_request(self, test_client, make_profile):
        student = await make_profile(UserRole.STUDENT)

        response = await test_client.delete(
            f"/api/requests/{uuid.uuid4()}", headers=headers_for(student)
        )
        assert response.status_code == 404


class TestAuditRoute:
    @pytest.mark.asyncio
    async def test_anonymous_event(self, test_client, audit):
        response = await test_client.post(
            "/api/audit/events",
            json={"category": "navigation", "event_type": "page_view", "page_url": "/"},
            headers={"X-Session-ID": "session_1760790000000_abcdefghi"},
        )

        assert response.status_code == 202
        assert response.json() == {
            "accepted": True,
            "session_id": "session_1760790000000_abcdefghi",
        }
        assert response.headers["X-Session-ID"] == "session_1760790000000_abcdefghi"
        entry = audit.entries[0]
        assert entry.user_id is None
        assert entry.session_id == "session_1760790000000_abcdefghi"

    @pytest.mark.asyncio
    async def test_signed_in_event(self, test_client, audit, make_profile):
        student = await make_profile(UserRole.STUDENT)

        response = await test_client.post(
            "/api/audit/events",
            json={
                "category": "error",
                "event_type": "fetch_failed",
                "severity": "high",
                "error_message": "network down",
            },
            headers=headers_for(student),
        )

        assert response.status_code == 202
        entry = audit.entries[0]
        assert entry.user_id == student.id
        assert entry.severity == "high"
        assert response.json()["session_id"].startswith("session_")

    @pytest.mark.asyncio
    async def test_unknown_category(self, test_client):
        response = await test_client.post(
            "/api/audit/events", json={"category": "billing", "event_type": "x"}
        )
        assert response.status_code == 422


class TestHealthAndHeaders:
    @pytest.mark.asyncio
    async def test_health(self, test_client, db_engine, monkeypatch):
        from scribeconnect.main import app

        monkeypatch.setattr("scribeconnect.routes.health.engine", db_engine)
        monkeypatch.setattr(app.state, "change_feed", FakeChangeFeed(), raising=False)
        monkeypatch.setattr(
            app.state,
            "bridge_registry",
            BridgeRegistry(FakeChangeFeed(), fetcher=None),
            raising=False,
        )

        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["realtime"] == "listening"
        assert body["active_subscriptions"] == 0

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, test_client):
        response = await test_client.get("/api/requests", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"
        assert response.json()["request_id"] == "req-42"


class TestNotificationSocket:
    @pytest.fixture
    def socket_client(self, monkeypatch):
        from scribeconnect.main import app

        monkeypatch.setattr(
            app.state,
            "bridge_registry",
            BridgeRegistry(FakeChangeFeed(), fetcher=None),
            raising=False,
        )
        return TestClient(app)

    def test_missing_identity_rejected(self, socket_client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with socket_client.websocket_connect("/ws/notifications"):
                pass
        assert exc_info.value.code == 1008

    def test_malformed_identity_rejected(self, socket_client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with socket_client.websocket_connect("/ws/notifications?user_id=abc"):
                pass
        assert exc_info.value.code == 1008
