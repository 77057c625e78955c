"""
API Endpoint Tests

Tests for the FastAPI endpoints using TestClient (httpx) and the fake face
provider from conftest.
Run with: pytest tests/test_endpoints.py -v
"""
import pytest

from conftest import DOCUMENT_FACE, DOCUMENT_OTHER_PERSON, LIVE_FACE, encode_marker

API = "/api/v1"


def _start(client, **body):
    body.setdefault("user_id", "applicant-1")
    response = client.post(f"{API}/kyc/start", json=body)
    assert response.status_code == 200, response.text
    return response.json()["session"]["session_id"]


def _secure_files(face_marker, document_marker, frames):
    files = [
        ("face_image", ("face.png", encode_marker(face_marker), "image/png")),
        ("document_image", ("document.png", encode_marker(document_marker), "image/png")),
    ]
    files.extend(
        ("frames", (f"frame{i}.png", frame, "image/png")) for i, frame in enumerate(frames)
    )
    return files


class TestHealthEndpoint:
    """Test /api/v1/health endpoint."""

    def test_health_check(self, client):
        response = client.get(f"{API}/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "ok"
        assert data["face_analysis_ready"] is True
        assert "active_sessions" in data

    def test_request_id_is_echoed(self, client):
        response = client.get(f"{API}/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"


class TestAPIInfo:

    def test_api_info(self, client):
        response = client.get("/api")
        assert response.status_code == 200
        assert response.json()["name"] == "e-KYC Session API"

    def test_metrics_exposed(self, client):
        client.get(f"{API}/health")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "ekyc_requests_total" in response.text


class TestKYCFlow:
    """Full applicant journey."""

    def test_complete_journey(self, client, genuine_frames):
        sid = _start(client, email="applicant@example.com")

        response = client.post(f"{API}/kyc/consent", json={
            "session_id": sid, "video_recording": True, "location_tracking": True, "document_use": True
        })
        assert response.json()["session"]["status"] == "consent_given"

        response = client.post(f"{API}/kyc/location", json={
            "session_id": sid, "latitude": 15.35, "longitude": 44.20, "accuracy": 10, "country": "Yemen"
        })
        session = response.json()["session"]
        assert session["status"] == "location_captured"
        assert session["verification_results"]["location_verified"] is False

        response = client.post(f"{API}/kyc/location/compare", json={
            "session_id": sid,
            "document_address": "Sana'a, Yemen",
            "document_latitude": 15.36,
            "document_longitude": 44.21,
            "allowed_radius_km": 10,
        })
        assert response.status_code == 200
        result = response.json()["result"]
        assert result["verified"] is True
        assert result["verification_type"] == "radius"
        assert result["location_source"] == "gps"

        response = client.post(f"{API}/kyc/document", json={
            "session_id": sid, "document_id": "doc-1", "document_type": "national_id",
            "extracted_fields": {"name": "Test"}, "confidence": 0.93, "is_valid": True
        })
        assert response.json()["session"]["status"] == "document_verified"

        response = client.post(
            f"{API}/kyc/secure-verification",
            data={"session_id": sid},
            files=_secure_files(LIVE_FACE, DOCUMENT_FACE, genuine_frames),
        )
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["status"] == "secure_verified"
        assert data["result"]["overall_result"] is True
        assert len(data["result"]["liveness"]["checks"]) == 5

        response = client.post(f"{API}/kyc/complete", json={"session_id": sid})
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "completed"
        assert data["score"] == 3
        assert data["total_checks"] == 3
        assert data["overall_score"] == 1.0

        summary = client.get(f"{API}/kyc/session/{sid}/summary").json()
        assert summary["status"] == "completed"
        assert summary["face_match_score"] == 1.0
        assert summary["location_comparison"]["verified"] is True

        timeline = client.get(f"{API}/kyc/session/{sid}/timeline").json()
        decision_types = [d["decision_type"] for d in timeline["decisions"]]
        assert "face_match" in decision_types
        assert "liveness_check" in decision_types
        assert decision_types[-1] == "session_complete"

    def test_mismatched_document_leaves_session_pending(self, client, genuine_frames):
        sid = _start(client)
        response = client.post(
            f"{API}/kyc/secure-verification",
            data={"session_id": sid},
            files=_secure_files(LIVE_FACE, DOCUMENT_OTHER_PERSON, genuine_frames),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "secure_verification_pending"
        assert data["result"]["overall_result"] is False
        assert data["result"]["message"] == "Face does not match document photo"

    def test_secure_verification_without_frames_fails_closed(self, client):
        sid = _start(client)
        response = client.post(
            f"{API}/kyc/secure-verification",
            data={"session_id": sid},
            files=_secure_files(LIVE_FACE, DOCUMENT_FACE, []),
        )
        assert response.status_code == 200
        liveness = response.json()["result"]["liveness"]
        assert liveness["overall_result"] is False
        assert liveness["skipped"] is False

    def test_partial_completion_fails(self, client):
        sid = _start(client)
        client.post(f"{API}/kyc/document", json={"session_id": sid, "document_id": "d", "is_valid": True})

        data = client.post(f"{API}/kyc/complete", json={"session_id": sid}).json()
        assert data["status"] == "failed"
        assert data["score"] == 1
        assert data["total_checks"] == 3
        assert data["overall_score"] == pytest.approx(1 / 3)


class TestKYCErrors:

    def test_unknown_session_is_404(self, client):
        response = client.get(f"{API}/kyc/session/does-not-exist")
        assert response.status_code == 404
        body = response.json()
        assert body["code"] == "NOT_FOUND"
        assert body["status"] == "error"

    def test_invalid_gps_rejected_without_mutation(self, client):
        sid = _start(client)
        response = client.post(f"{API}/kyc/location", json={
            "session_id": sid, "latitude": 120, "longitude": 44.2, "accuracy": 5
        })
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

        session = client.get(f"{API}/kyc/session/{sid}").json()["session"]
        assert session["status"] == "initiated"
        assert session["location"] is None

    def test_compare_without_enough_data(self, client):
        sid = _start(client)
        response = client.post(f"{API}/kyc/location/compare", json={
            "session_id": sid, "document_address": "Somewhere"
        })
        assert response.status_code == 422

    def test_document_id_with_path_separator_rejected(self, client):
        sid = _start(client)
        response = client.post(f"{API}/kyc/document", json={
            "session_id": sid, "document_id": "../uploads", "is_valid": True
        })
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_empty_upload_rejected(self, client):
        sid = _start(client)
        response = client.post(
            f"{API}/kyc/secure-verification",
            data={"session_id": sid},
            files=[
                ("face_image", ("face.png", b"", "image/png")),
                ("document_image", ("doc.png", encode_marker(DOCUMENT_FACE), "image/png")),
            ],
        )
        assert response.status_code == 400
        assert response.json()["code"] == "IMAGE_PROCESSING_ERROR"

    def test_secure_verification_unknown_session(self, client, genuine_frames):
        response = client.post(
            f"{API}/kyc/secure-verification",
            data={"session_id": "missing"},
            files=_secure_files(LIVE_FACE, DOCUMENT_FACE, genuine_frames),
        )
        assert response.status_code == 404

    def test_delete_session(self, client):
        sid = _start(client)
        assert client.delete(f"{API}/kyc/session/{sid}").status_code == 200
        assert client.get(f"{API}/kyc/session/{sid}").status_code == 404


class TestKYCReads:

    def test_list_sessions_by_user(self, client):
        _start(client, user_id="alice")
        _start(client, user_id="alice")
        _start(client, user_id="bob")

        data = client.get(f"{API}/kyc/sessions", params={"user_id": "alice"}).json()
        assert data["total"] == 2
        assert all(s["user_id"] == "alice" for s in data["sessions"])

    def test_liveness_instructions(self, client):
        data = client.get(f"{API}/kyc/liveness/instructions").json()
        assert len(data["instructions"]) == 5
        assert data["max_frames"] > 0

    def test_statistics(self, client):
        _start(client)
        data = client.get(f"{API}/kyc/statistics").json()
        assert data["total"] == 1
        assert data["in_progress"] == 1


class TestAdminWorkflow:

    def _create(self, client, **steps):
        response = client.post(f"{API}/admin/workflow", json={"name": "Custom", "steps": steps})
        assert response.status_code == 200, response.text
        return response.json()["configuration"]["config_id"]

    def test_crud(self, client):
        config_id = self._create(client, form=True)

        data = client.get(f"{API}/admin/workflow/{config_id}").json()
        assert data["configuration"]["steps"]["form"] is True

        response = client.put(f"{API}/admin/workflow/{config_id}", json={"name": "Renamed"})
        assert response.json()["configuration"]["name"] == "Renamed"
        assert response.json()["configuration"]["steps"]["form"] is True

        client.post(f"{API}/admin/workflow/{config_id}/deactivate")
        active = client.get(f"{API}/admin/workflow", params={"active_only": True}).json()
        assert active["total"] == 0

        client.post(f"{API}/admin/workflow/{config_id}/activate")
        assert client.get(f"{API}/admin/workflow", params={"active_only": True}).json()["total"] == 1

        assert client.delete(f"{API}/admin/workflow/{config_id}").status_code == 200
        assert client.get(f"{API}/admin/workflow/{config_id}").status_code == 404

    def test_link_and_validate(self, client):
        config_id = self._create(client)
        link = client.get(
            f"{API}/admin/workflow/{config_id}/link", params={"base_url": "https://kyc.example.com"}
        ).json()
        assert link["link"] == f"https://kyc.example.com/kyc/{config_id}"

        validation = client.get(f"{API}/admin/workflow/{config_id}/validate").json()
        assert validation["is_valid"] is True

    def test_session_uses_workflow_steps(self, client):
        config_id = self._create(
            client, location_capture=False, document_ocr=True, secure_verification=False
        )
        sid = _start(client, workflow_config_id=config_id)
        client.post(f"{API}/kyc/document", json={"session_id": sid, "document_id": "d", "is_valid": True})

        data = client.post(f"{API}/kyc/complete", json={"session_id": sid}).json()
        assert data["status"] == "completed"
        assert data["total_checks"] == 1

    def test_start_with_inactive_workflow_rejected(self, client):
        config_id = self._create(client)
        client.post(f"{API}/admin/workflow/{config_id}/deactivate")

        response = client.post(f"{API}/kyc/start", json={"user_id": "u", "workflow_config_id": config_id})
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_STATE"

    def test_start_with_unknown_workflow_is_404(self, client):
        response = client.post(f"{API}/kyc/start", json={"user_id": "u", "workflow_config_id": "nope"})
        assert response.status_code == 404

    def test_admin_statistics(self, client):
        self._create(client)
        _start(client)
        data = client.get(f"{API}/admin/statistics").json()
        assert data["workflows"]["total"] == 1
        assert data["sessions"]["total"] == 1
