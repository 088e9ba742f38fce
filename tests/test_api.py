"""Test API endpoints."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from loguru import logger

from app import app, get_storage
from db import TokenRepository
from lifecycle import JobLifecycleManager
from storage import ReportStorage
from utils import utc_now


@pytest.fixture
def make_report(session_factory):
    """Create a job directly in the store, optionally moving it to COMPLETED."""

    def _make(user_id=42, district_id=7, location=None, filename=None, failed=False):
        session = session_factory()
        try:
            manager = JobLifecycleManager(session)
            job = manager.create(user_id, district_id, "USER_ACTIVITY")
            if failed:
                manager.mark_failed(job.report_id, "query timed out")
            elif location:
                manager.mark_processing(job.report_id)
                manager.mark_completed(job.report_id, location, filename)
            return job.report_id
        finally:
            session.close()

    return _make


@pytest.fixture
def local_storage(tmp_path):
    app.dependency_overrides[get_storage] = lambda: ReportStorage(str(tmp_path))
    yield tmp_path
    app.dependency_overrides.pop(get_storage, None)


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_check(self, test_client: TestClient):
        """Test health check returns 200 with correct data."""
        response = test_client.get("/healthz")

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["db"] == "ready"
        assert "version" in data


class TestCorrelationId:
    """Test request correlation ids."""

    def test_incoming_id_is_echoed(self, test_client: TestClient):
        response = test_client.get("/healthz", headers={"X-Correlation-ID": "abc-123"})

        assert response.headers["x-correlation-id"] == "abc-123"

    @pytest.mark.parametrize("headers", [{}, {"X-Correlation-ID": ""}])
    def test_missing_id_is_generated(self, test_client: TestClient, headers):
        response = test_client.get("/healthz", headers=headers)

        assert response.headers["x-correlation-id"]

    def test_id_tags_request_logs(self, test_client: TestClient, auth_headers):
        records = []
        handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
        try:
            headers = {**auth_headers(), "X-Correlation-ID": "trace-42"}
            response = test_client.get("/reports/missing", headers=headers)
        finally:
            logger.remove(handler_id)

        assert response.status_code == 404
        assert response.headers["x-correlation-id"] == "trace-42"
        tagged = [r for r in records if r["extra"].get("correlation_id") == "trace-42"]
        assert any("REPORT_JOB_NOT_FOUND" in r["message"] for r in tagged)


class TestAuthentication:
    def test_missing_bearer_token(self, test_client: TestClient):
        response = test_client.get("/reports")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"
        assert response.json()["error"] == "UNAUTHENTICATED"

    def test_invalid_bearer_token(self, test_client: TestClient):
        response = test_client.get("/reports", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401

    def test_expired_bearer_token(self, test_client: TestClient):
        from auth import create_dev_token

        token = create_dev_token(42, district_id=7, expires_in=timedelta(seconds=-60))
        response = test_client.get("/reports", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401


class TestReportCreation:
    """Test report creation endpoint."""

    def test_create_report(self, test_client: TestClient, auth_headers):
        response = test_client.post(
            "/reports",
            json={"report_type": "USER_ACTIVITY", "report_params": {"start_date": "2025-01-01"}},
            headers=auth_headers(),
        )

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "QUEUED"
        assert data["user_id"] == 42
        assert data["district_id"] == 7
        assert data["links"]["self"] == f"/reports/{data['report_id']}"
        assert data["links"]["download_token"] is None

    def test_unsupported_report_type(self, test_client: TestClient, auth_headers):
        response = test_client.post(
            "/reports", json={"report_type": "PAYROLL"}, headers=auth_headers()
        )

        assert response.status_code == 400
        assert response.json()["error"] == "UNSUPPORTED_REPORT_TYPE"

    def test_malformed_payload(self, test_client: TestClient, auth_headers):
        response = test_client.post("/reports", json={}, headers=auth_headers())

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_principal_without_district(self, test_client: TestClient, auth_headers):
        response = test_client.post(
            "/reports",
            json={"report_type": "USER_ACTIVITY"},
            headers=auth_headers(district_id=None),
        )

        assert response.status_code == 400


class TestReportRetrieval:
    """Test report status and listing endpoints."""

    def test_owner_sees_report(self, test_client: TestClient, auth_headers, make_report):
        report_id = make_report()

        response = test_client.get(f"/reports/{report_id}", headers=auth_headers())

        assert response.status_code == 200
        assert response.json()["status"] == "QUEUED"

    def test_other_user_is_forbidden(self, test_client: TestClient, auth_headers, make_report):
        report_id = make_report(user_id=42)

        response = test_client.get(f"/reports/{report_id}", headers=auth_headers(user_id=43))

        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"

    def test_district_admin_sees_district_report(
        self, test_client: TestClient, auth_headers, make_report
    ):
        report_id = make_report(user_id=42, district_id=7)

        response = test_client.get(
            f"/reports/{report_id}",
            headers=auth_headers(user_id=5, district_id=7, roles=("ROLE_DISTRICT_ADMIN",)),
        )

        assert response.status_code == 200

    def test_missing_report(self, test_client: TestClient, auth_headers):
        response = test_client.get("/reports/missing", headers=auth_headers())

        assert response.status_code == 404
        data = response.json()
        assert data["error"] == "REPORT_JOB_NOT_FOUND"
        assert data["path"] == "/reports/missing"
        assert "timestamp" in data

    def test_failed_report_shows_reason(self, test_client: TestClient, auth_headers, make_report):
        report_id = make_report(failed=True)

        data = test_client.get(f"/reports/{report_id}", headers=auth_headers()).json()

        assert data["status"] == "FAILED"
        assert data["error_message"] == "query timed out"

    def test_list_own_reports(self, test_client: TestClient, auth_headers, make_report):
        make_report()
        make_report()
        make_report(user_id=43)

        data = test_client.get("/reports", headers=auth_headers()).json()

        assert data["total"] == 2
        assert all(report["user_id"] == 42 for report in data["reports"])

    def test_district_listing(self, test_client: TestClient, auth_headers, make_report):
        completed = make_report(location="https://files.example.com/r1.xlsx")
        make_report()
        admin = auth_headers(user_id=5, district_id=7, roles=("DISTRICT_ADMIN",))

        response = test_client.get("/districts/7/reports?status=completed", headers=admin)

        assert response.status_code == 200
        data = response.json()
        assert [r["report_id"] for r in data["reports"]] == [completed]
        assert data["reports"][0]["links"]["download_token"] == (
            f"/reports/{completed}/download-token"
        )

    def test_district_listing_requires_district_admin(
        self, test_client: TestClient, auth_headers
    ):
        response = test_client.get("/districts/7/reports?status=QUEUED", headers=auth_headers())

        assert response.status_code == 403

    def test_district_listing_unknown_status(self, test_client: TestClient, auth_headers):
        admin = auth_headers(user_id=1, roles=("ADMIN",))

        response = test_client.get("/districts/7/reports?status=DONE", headers=admin)

        assert response.status_code == 400


class TestDownloadTokens:
    """Test token issuance and redemption over HTTP."""

    def test_issue_token(self, test_client: TestClient, auth_headers, make_report):
        report_id = make_report(location="https://files.example.com/r1.xlsx")

        response = test_client.post(
            f"/reports/{report_id}/download-token", headers=auth_headers()
        )

        assert response.status_code == 201
        data = response.json()
        assert data["report_id"] == report_id
        assert data["download_url"].endswith(f"/r/{data['token']}")

    def test_issue_token_custom_ttl(self, test_client: TestClient, auth_headers, make_report):
        report_id = make_report(location="https://files.example.com/r1.xlsx")

        response = test_client.post(
            f"/reports/{report_id}/download-token", json={"ttl_sec": 30}, headers=auth_headers()
        )

        assert response.status_code == 201

    def test_issue_token_not_ready(self, test_client: TestClient, auth_headers, make_report):
        report_id = make_report()

        response = test_client.post(
            f"/reports/{report_id}/download-token", headers=auth_headers()
        )

        assert response.status_code == 409
        assert response.json()["error"] == "REPORT_NOT_READY"

    def test_issue_token_for_other_users_report(
        self, test_client: TestClient, auth_headers, make_report
    ):
        report_id = make_report(user_id=42, location="https://files.example.com/r1.xlsx")

        response = test_client.post(
            f"/reports/{report_id}/download-token", headers=auth_headers(user_id=43)
        )

        assert response.status_code == 403

    def test_redeem_redirects(self, test_client: TestClient, auth_headers, make_report):
        report_id = make_report(location="https://files.example.com/r1.xlsx")
        token = test_client.post(
            f"/reports/{report_id}/download-token", headers=auth_headers()
        ).json()["token"]

        response = test_client.get(f"/r/{token}", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "https://files.example.com/r1.xlsx"

    def test_redeem_streams_local_file(
        self, test_client: TestClient, auth_headers, make_report, local_storage
    ):
        (local_storage / "r1.csv").write_bytes(b"user,events\n42,7\n")
        report_id = make_report(location="r1.csv", filename="USER_ACTIVITY.csv")
        token = test_client.post(
            f"/reports/{report_id}/download-token", headers=auth_headers()
        ).json()["token"]

        response = test_client.get(f"/r/{token}")

        assert response.status_code == 200
        assert response.content == b"user,events\n42,7\n"
        assert "USER_ACTIVITY.csv" in response.headers["content-disposition"]

    def test_redeem_missing_local_file(
        self, test_client: TestClient, auth_headers, make_report, local_storage
    ):
        report_id = make_report(location="gone.csv")
        token = test_client.post(
            f"/reports/{report_id}/download-token", headers=auth_headers()
        ).json()["token"]

        response = test_client.get(f"/r/{token}")

        assert response.status_code == 404
        assert response.json()["error"] == "REPORT_FILE_NOT_FOUND"

    def test_redeem_unknown_token(self, test_client: TestClient):
        response = test_client.get("/r/unknown-token")

        assert response.status_code == 404
        assert response.json()["error"] == "TOKEN_NOT_FOUND"

    def test_redeem_expired_token(self, test_client: TestClient, make_report, session_factory):
        report_id = make_report(location="https://files.example.com/r1.xlsx")
        now = utc_now()
        session = session_factory()
        try:
            TokenRepository(session).create_token(
                {
                    "token": "expired-token",
                    "report_id": report_id,
                    "user_id": 42,
                    "district_id": 7,
                    "expires_at": now - timedelta(seconds=1),
                    "created_at": now - timedelta(minutes=5),
                    "access_count": 0,
                }
            )
        finally:
            session.close()

        response = test_client.get("/r/expired-token", follow_redirects=False)

        assert response.status_code == 410
        assert response.json()["error"] == "TOKEN_EXPIRED"


class TestReportDeletion:
    def test_admin_deletes_report(self, test_client: TestClient, auth_headers, make_report):
        report_id = make_report(location="https://files.example.com/r1.xlsx")
        token = test_client.post(
            f"/reports/{report_id}/download-token", headers=auth_headers()
        ).json()["token"]

        response = test_client.delete(
            f"/reports/{report_id}", headers=auth_headers(user_id=1, roles=("ADMIN",))
        )

        assert response.status_code == 204
        assert test_client.get(f"/r/{token}").status_code == 404
        assert test_client.get(f"/reports/{report_id}", headers=auth_headers()).status_code == 404

    def test_owner_cannot_delete(self, test_client: TestClient, auth_headers, make_report):
        report_id = make_report()

        response = test_client.delete(f"/reports/{report_id}", headers=auth_headers())

        assert response.status_code == 403
