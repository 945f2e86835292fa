from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.api.routers import portal as portal_router
from src.api.routers.portal import build_portal_runtime, reset_portal_runtime_for_tests
from src.core.portal import InvalidAttemptThrottle
from src.infrastructure.portal import InMemoryPortalRepository
from tests.factories import make_proposal


class _StaleReadRepository(InMemoryPortalRepository):
    def read_proposal_fresh(self, *, proposal_id):
        proposal = super().read_proposal_fresh(proposal_id=proposal_id)
        return proposal.model_copy(update={"client_status": "pending"})


class _UnavailableRepository(InMemoryPortalRepository):
    def get_proposal(self, *, proposal_id):
        raise ConnectionError("database unreachable")


class _RejectingWriteRepository(InMemoryPortalRepository):
    def update_approval_state(self, update):
        return False


@pytest.fixture
def runtime(repository):
    runtime = build_portal_runtime(repository=repository)
    reset_portal_runtime_for_tests(runtime)
    return runtime


@pytest.fixture
def client(runtime):
    return TestClient(app)


def _issue(client: TestClient, proposal_id: str = "P1", **body) -> dict:
    response = client.post(f"/proposals/{proposal_id}/portal", json=body or None)
    assert response.status_code == 200
    return response.json()


def _use_repository(repo: InMemoryPortalRepository):
    runtime = build_portal_runtime(repository=repo)
    reset_portal_runtime_for_tests(runtime)
    return runtime


def test_issue_portal_returns_link_and_summary(client):
    body = _issue(client, customExpiry="7d")

    assert body["portalUrl"] == f"https://portal.example.com/portal/{body['token']}"
    assert body["proposal"] == {
        "id": "P1",
        "name": "Smart Home Automation System",
        "clientName": "Jane Doe",
        "clientEmail": "jane@example.com",
        "totalAmount": 12500.0,
        "status": "SENT",
        "clientStatus": "pending",
    }
    expires_at = datetime.fromisoformat(body["expiresAt"])
    remaining = expires_at - datetime.now(timezone.utc)
    assert timedelta(days=6, hours=23) < remaining <= timedelta(days=7)


def test_issue_portal_without_body_and_with_unknown_expiry_uses_thirty_days(client):
    for body in (None, {"customExpiry": "45d"}):
        response = client.post("/proposals/P1/portal", json=body)
        assert response.status_code == 200
        expires_at = datetime.fromisoformat(response.json()["expiresAt"])
        remaining = expires_at - datetime.now(timezone.utc)
        assert timedelta(days=29, hours=23) < remaining <= timedelta(days=30)


def test_issue_portal_for_unknown_proposal_is_404(client):
    response = client.post("/proposals/missing/portal")
    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"


def test_issue_portal_when_store_unreachable_is_503():
    repo = _UnavailableRepository()
    repo.save_proposal(make_proposal())
    _use_repository(repo)

    response = TestClient(app).post("/proposals/P1/portal")

    assert response.status_code == 503
    assert response.json()["error"] == "SERVICE_UNAVAILABLE"


def test_view_portal_counts_views_and_reports_status(client, repository):
    token = _issue(client)["token"]

    first = client.get(f"/portal/{token}")
    second = client.get(f"/portal/{token}")

    assert first.status_code == 200
    assert second.status_code == 200
    body = second.json()
    assert body["proposal"]["clientStatus"] == "pending"
    assert body["expiringSoon"] is False
    assert repository.get_token(token=token).view_count == 2


def test_approve_records_decision_and_reports_verified(client, repository):
    token = _issue(client)["token"]

    response = client.post(
        f"/portal/{token}/approve",
        json={"decision": "approved", "comment": "Looks great", "clientName": "Jane Doe"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["verified"] is True
    assert body["proposalId"] == "P1"
    assert body["decision"] == "approved"
    assert body["clientFeedback"] == "Looks great"
    assert body["nextSteps"]
    stored = repository.get_proposal(proposal_id="P1")
    assert stored.client_status == "approved"
    assert stored.approved_by == "Jane Doe"
    assert stored.approved_at is not None

    view = client.get(f"/portal/{token}").json()
    assert view["proposal"]["clientStatus"] == "approved"
    assert view["approvedBy"] == "Jane Doe"
    assert view["clientFeedback"] == "Looks great"


def test_approve_with_unknown_decision_is_400_and_leaves_record(client, repository):
    token = _issue(client)["token"]

    response = client.post(f"/portal/{token}/approve", json={"decision": "maybe"})

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_INPUT"
    assert repository.get_proposal(proposal_id="P1").client_status == "pending"


def test_approve_with_expired_token_is_401(client, runtime, repository):
    issued_at = datetime.now(timezone.utc) - timedelta(days=8)
    token = runtime.issuance.issue_portal(
        proposal_id="P1", custom_expiry="7d", now=issued_at
    ).token

    response = client.post(f"/portal/{token}/approve", json={"decision": "approved"})

    assert response.status_code == 401
    assert response.json() == {
        "error": "UNAUTHORIZED",
        "message": "Invalid or expired token",
    }
    assert repository.get_proposal(proposal_id="P1").client_status == "pending"


def test_malformed_and_unknown_tokens_share_the_same_401(client):
    malformed = client.post("/portal/not-a-token/approve", json={"decision": "approved"})
    garbage = client.get("/portal/abc.def")

    assert malformed.status_code == 401
    assert garbage.status_code == 401
    assert malformed.json() == garbage.json()


def test_approve_when_write_is_not_applied_is_500():
    repo = _RejectingWriteRepository()
    repo.save_proposal(make_proposal())
    runtime = _use_repository(repo)
    token = runtime.issuance.issue_portal(proposal_id="P1", custom_expiry=None).token

    response = TestClient(app).post(f"/portal/{token}/approve", json={"decision": "rejected"})

    assert response.status_code == 500
    assert response.json()["error"] == "PERSISTENCE_FAILED"


def test_approve_with_stale_read_back_is_verification_failure():
    repo = _StaleReadRepository()
    repo.save_proposal(make_proposal())
    runtime = _use_repository(repo)
    token = runtime.issuance.issue_portal(proposal_id="P1", custom_expiry=None).token

    response = TestClient(app).post(f"/portal/{token}/approve", json={"decision": "approved"})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "VERIFICATION_FAILED"
    assert body["message"] == "Database update verification failed"
    assert body["proposalId"] == "P1"
    assert body["expected"] == "approved"
    assert body["actual"] == "pending"


def test_approve_rejects_other_methods_with_allow_header(client):
    token = _issue(client)["token"]

    response = client.get(f"/portal/{token}/approve")

    assert response.status_code == 405
    assert response.headers["allow"] == "POST"


def test_repeated_invalid_tokens_are_throttled(client, runtime):
    runtime.throttle = InvalidAttemptThrottle(limit=2, window_seconds=60)
    token = _issue(client)["token"]

    for _ in range(2):
        assert client.get("/portal/bogus.token").status_code == 401
    blocked = client.post(f"/portal/{token}/approve", json={"decision": "approved"})

    assert blocked.status_code == 429
    assert blocked.json()["error"] == "TOO_MANY_ATTEMPTS"


def test_runtime_build_failure_is_503(monkeypatch):
    reset_portal_runtime_for_tests()
    monkeypatch.setenv("PORTAL_STORE_BACKEND", "POSTGRES")
    monkeypatch.delenv("PORTAL_POSTGRES_DSN", raising=False)

    response = TestClient(app).post("/proposals/P1/portal")

    assert response.status_code == 503
    assert response.json()["detail"] == "PORTAL_POSTGRES_DSN_REQUIRED"


def test_health_and_trace_headers(client):
    response = client.get("/health", headers={"X-Correlation-Id": "corr-portal-1"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Correlation-Id"] == "corr-portal-1"
    assert response.headers["X-Request-Id"].startswith("req_")
    assert len(response.headers["X-Trace-Id"]) == 32


def test_issue_portal_rejects_other_methods_with_allow_header(client):
    response = client.get("/proposals/P1/portal")

    assert response.status_code == 405
    assert response.headers["allow"] == "POST"


@pytest.mark.parametrize(
    "body",
    [{"decision": 5}, {"decision": ["approved"]}, {"decision": None}, {}],
)
def test_approve_with_non_string_or_missing_decision_is_400(client, repository, body):
    token = _issue(client)["token"]

    response = client.post(f"/portal/{token}/approve", json=body)

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_INPUT"
    assert repository.get_proposal(proposal_id="P1").client_status == "pending"


@pytest.mark.parametrize("body", [None, ["approved"], "approved"])
def test_approve_with_missing_or_malformed_body_is_400(client, repository, body):
    token = _issue(client)["token"]

    response = client.post(f"/portal/{token}/approve", json=body)

    assert response.status_code == 400
    assert response.json() == {
        "error": "INVALID_INPUT",
        "message": "Invalid request body",
        "detail": "INVALID_REQUEST_BODY",
    }
    assert repository.get_proposal(proposal_id="P1").client_status == "pending"


def test_approve_with_unparseable_json_is_400(client):
    token = _issue(client)["token"]

    response = client.post(
        f"/portal/{token}/approve",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_INPUT"


@pytest.mark.parametrize("expiry", [30, True, {"days": 7}, ["7d"]])
def test_issue_portal_with_non_string_expiry_falls_back_to_thirty_days(client, expiry):
    response = client.post("/proposals/P1/portal", json={"customExpiry": expiry})

    assert response.status_code == 200
    expires_at = datetime.fromisoformat(response.json()["expiresAt"])
    remaining = expires_at - datetime.now(timezone.utc)
    assert timedelta(days=29, hours=23) < remaining <= timedelta(days=30)


def test_replacing_runtime_shuts_down_previous_verifier(runtime):
    reset_portal_runtime_for_tests()

    with pytest.raises(RuntimeError):
        runtime.verifier.verify(proposal_id="P1", expected_status="approved")


def test_app_shutdown_closes_runtime(runtime):
    with TestClient(app) as lifespan_client:
        assert lifespan_client.get("/health").status_code == 200

    assert portal_router._RUNTIME is None
    with pytest.raises(RuntimeError):
        runtime.verifier.verify(proposal_id="P1", expected_status="approved")
