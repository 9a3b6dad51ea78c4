"""Tests for the HTTP and WebSocket endpoints."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import WebSocketException
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.websockets import WebSocketDisconnect

from claims_portal.api import deps, realtime
from claims_portal.api.deps import (
    CurrentUser,
    get_claim_repository,
    get_current_identity,
    get_document_locator,
    get_websocket_user,
)
from claims_portal.core.config import settings
from claims_portal.core.exceptions import PlatformAPIError
from claims_portal.main import app
from claims_portal.models import AuditLog, User
from claims_portal.services.auth_client import AuthClient, get_auth_client
from claims_portal.services.notifications import get_notification_client
from claims_portal.services.roles import NO_ROLE_MESSAGE, UNSUPPORTED_ROLE_MESSAGE, Role
from claims_portal.services.storage import DocumentLocator

from conftest import CAR_CORE_TYPES, make_claim, make_document


def identity(role=None, user_id="reviewer-1"):
    metadata = {"role": role} if role else {}
    return {"id": user_id, "email": f"{user_id}@example.com", "user_metadata": metadata, "access_token": "t"}


@pytest.fixture
def mock_auth():
    return AsyncMock(spec=AuthClient)


@pytest.fixture
def portal_overrides(mock_repository, mock_notifier, mock_auth):
    """Wire the portal dependencies to mocks; tests pick the signed-in role."""
    app.dependency_overrides[get_claim_repository] = lambda: mock_repository
    app.dependency_overrides[get_notification_client] = lambda: mock_notifier
    app.dependency_overrides[get_auth_client] = lambda: mock_auth

    def sign_in_as(role):
        app.dependency_overrides[get_current_identity] = lambda: identity(role)

    return sign_in_as


class TestHealth:
    def test_root(self, test_client):
        response = test_client.get("/")

        assert response.status_code == 200
        assert response.json()["name"] == settings.app_name

    def test_liveness(self, test_client):
        assert test_client.get("/health/live").json() == {"status": "alive"}


class TestBackendConfig:
    def test_returns_envelope(self, test_client, monkeypatch):
        monkeypatch.setattr(settings, "backend_url", "https://proj.example.co")
        monkeypatch.setattr(settings, "backend_anon_key", "anon-key")

        response = test_client.get("/api/config/backend")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "data": {"url": "https://proj.example.co", "anonKey": "anon-key"},
        }

    def test_missing_key(self, test_client, monkeypatch):
        monkeypatch.setattr(settings, "backend_anon_key", "")

        response = test_client.get("/api/config/backend")

        assert response.status_code == 500
        assert response.json()["error"] == "Backend configuration is not available"


class TestLogin:
    @pytest.fixture(autouse=True)
    def overrides(self, portal_overrides):
        pass

    def test_routes_by_role(self, test_client, mock_auth):
        mock_auth.sign_in_with_password.return_value = {
            "access_token": "access",
            "refresh_token": "refresh",
            "user": {"id": "u1", "email": "partner@example.com", "user_metadata": {"role": "Car Company"}},
        }

        response = test_client.post("/api/auth/login", json={"email": " partner@example.com ", "password": "secret"})

        assert response.status_code == 200
        body = response.json()
        assert body["redirect"] == "/car-company/"
        assert body["role"] == "car_company"
        mock_auth.sign_in_with_password.assert_awaited_once_with("partner@example.com", "secret")

    def test_missing_fields(self, test_client, mock_auth):
        response = test_client.post("/api/auth/login", json={"email": "", "password": ""})

        assert response.status_code == 422
        assert response.json()["error"] == "Enter your email address and password to continue."
        mock_auth.sign_in_with_password.assert_not_awaited()

    def test_invalid_credentials(self, test_client, mock_auth):
        mock_auth.sign_in_with_password.side_effect = PlatformAPIError(
            "Authentication failed", detail="Invalid login credentials", status=400, code="invalid_credentials"
        )

        response = test_client.post("/api/auth/login", json={"email": "a@example.com", "password": "wrong"})

        assert response.status_code == 401
        assert response.json()["error"] == "The email or password you entered is incorrect."

    def test_account_without_role(self, test_client, mock_auth, mock_repository):
        mock_auth.sign_in_with_password.return_value = {"access_token": "a", "user": {"id": "u1"}}
        mock_repository.lookup_role.return_value = None

        response = test_client.post("/api/auth/login", json={"email": "a@example.com", "password": "pw"})

        assert response.status_code == 403
        assert response.json()["error"] == NO_ROLE_MESSAGE

    def test_role_without_portal(self, test_client, mock_auth):
        mock_auth.sign_in_with_password.return_value = {
            "access_token": "a",
            "user": {"id": "u1", "app_metadata": {"role": "user"}},
        }

        response = test_client.post("/api/auth/login", json={"email": "a@example.com", "password": "pw"})

        assert response.status_code == 403
        assert response.json()["error"] == UNSUPPORTED_ROLE_MESSAGE


class TestSession:
    @pytest.fixture(autouse=True)
    def overrides(self, portal_overrides):
        pass

    def test_logout_flag_blocks_redirect(self, test_client, mock_auth):
        response = test_client.post(
            "/api/auth/session",
            headers={"Authorization": "Bearer t", "X-Just-Logged-Out": "true"},
        )

        assert response.json() == {"authenticated": False, "role": None, "redirect": None}
        mock_auth.get_user.assert_not_awaited()

    def test_existing_session(self, test_client, mock_auth):
        mock_auth.get_user.return_value = {"id": "u1", "user_metadata": {"role": "insurance-company"}}

        response = test_client.post("/api/auth/session", headers={"Authorization": "Bearer t"})

        assert response.json() == {
            "authenticated": True,
            "role": "insurance_company",
            "redirect": "/insurance-company/",
        }

    def test_expired_session(self, test_client, mock_auth):
        mock_auth.get_user.side_effect = PlatformAPIError("Request failed", status=401)

        response = test_client.post("/api/auth/session", headers={"Authorization": "Bearer stale"})

        assert response.json()["authenticated"] is False

    def test_logout_sets_flag_even_when_sign_out_fails(self, test_client, mock_auth):
        mock_auth.sign_out.side_effect = PlatformAPIError("Request failed", status=500)

        response = test_client.post("/api/auth/logout", headers={"Authorization": "Bearer t"})

        assert response.status_code == 200
        assert "justLoggedOut=true" in response.headers["set-cookie"]

    def test_password_reset(self, test_client, mock_auth):
        response = test_client.post("/api/auth/password-reset", json={"email": "a@example.com"})

        assert response.json()["message"] == "Check your inbox for a password reset email."
        mock_auth.reset_password_for_email.assert_awaited_once_with(
            "a@example.com", redirect_to="http://testserver/reset-password"
        )

    def test_password_reset_needs_email(self, test_client):
        response = test_client.post("/api/auth/password-reset", json={})

        assert response.status_code == 422


class TestAdminSignup:
    payload = {
        "email": "partner@example.com",
        "password": "longenough",
        "confirm_password": "longenough",
        "role": "Insurance Company",
    }

    def test_creates_account_with_role_metadata(self, test_client, portal_overrides, mock_auth):
        portal_overrides("admin")
        mock_auth.sign_up.return_value = {"id": "new-user", "email": "partner@example.com"}

        response = test_client.post("/api/admin/signup", json=self.payload)

        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "insurance_company"
        assert body["portal_role"] == "insurance-company"
        assert body["confirmed"] is False
        metadata = mock_auth.sign_up.await_args.kwargs["metadata"]
        assert metadata == {
            "role": "insurance_company",
            "portal_role": "insurance-company",
            "portalRole": "insurance-company",
        }

    def test_password_mismatch(self, test_client, portal_overrides):
        portal_overrides("admin")

        response = test_client.post("/api/admin/signup", json={**self.payload, "confirm_password": "different1"})

        assert response.status_code == 422
        assert response.json()["error"] == "Passwords do not match. Please re-enter and try again."

    def test_existing_account(self, test_client, portal_overrides, mock_auth):
        portal_overrides("admin")
        mock_auth.sign_up.side_effect = PlatformAPIError(
            "Request failed", detail="User already registered", status=422, code="user_already_exists"
        )

        response = test_client.post("/api/admin/signup", json=self.payload)

        assert response.status_code == 409

    def test_requires_admin(self, test_client, portal_overrides):
        portal_overrides("car company")

        response = test_client.post("/api/admin/signup", json=self.payload)

        assert response.status_code == 403
        assert response.json()["redirect"] == "/car-company/"


class TestPortalClaims:
    def test_requires_session(self, test_client, portal_overrides):
        response = test_client.get("/api/car-company/claims")

        assert response.status_code == 401
        assert response.json()["redirect"] == "/"

    def test_wrong_portal_redirects_to_own(self, test_client, portal_overrides):
        portal_overrides("insurance company")

        response = test_client.get("/api/car-company/claims")

        assert response.status_code == 403
        assert response.json()["redirect"] == "/insurance-company/"

    def test_list_claims(self, test_client, portal_overrides, mock_repository):
        portal_overrides("car company")
        mock_repository.list_claims_with_documents.return_value = [
            make_claim([make_document("lto_or", car_verified=True), make_document("lto_cr")])
        ]

        response = test_client.get("/api/car-company/claims", params={"search": "CLM", "status": "all"})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        claim = body["claims"][0]
        assert claim["estimated_damage_cost"] == "₱12,500.00"
        assert claim["documents"] == {"total": 2, "verified": 1, "rejected": 0, "pending": 1}
        assert claim["ready_for_approval"] is False

    def test_claim_detail(self, test_client, portal_overrides, mock_repository):
        portal_overrides("car company")
        docs = [make_document("lto_or", car_notes="document_expired"), make_document("selfie")]
        mock_repository.get_claim.return_value = make_claim(docs)

        response = test_client.get("/api/car-company/claims/claim-1")

        assert response.status_code == 200
        body = response.json()
        assert len(body["documents"]) == 1
        assert body["rejected_documents"] == [
            {"document_id": docs[0].id, "type_name": "LTO Official Receipt", "reason": "Document is expired"}
        ]

    def test_approve_notifies_owner(self, test_client, portal_overrides, mock_repository, mock_notifier):
        portal_overrides("car company")
        mock_repository.get_claim.return_value = make_claim(
            [make_document(t, car_verified=True) for t in CAR_CORE_TYPES]
        )

        response = test_client.post("/api/car-company/claims/claim-1/decision", json={"decision": "approved"})

        assert response.status_code == 200
        assert response.json()["controls"]["view_only"] is True
        mock_notifier.dispatch.assert_called_once()

    def test_decision_on_finalized_claim(self, test_client, portal_overrides, mock_repository, mock_notifier):
        portal_overrides("car company")
        mock_repository.get_claim.return_value = make_claim([make_document()], car_company_status="rejected")

        response = test_client.post(
            "/api/car-company/claims/claim-1/decision",
            json={"decision": "rejected", "notes": "again"},
        )

        assert response.status_code == 409
        mock_notifier.dispatch.assert_not_called()

    def test_reject_document_requires_reason(self, test_client, portal_overrides):
        portal_overrides("car company")

        response = test_client.post("/api/car-company/claims/claim-1/documents/doc-1/reject", json={"reason": ""})

        assert response.status_code == 422
        assert response.json()["error"] == "Please select a rejection reason"

    def test_verify_document(self, test_client, portal_overrides, mock_repository):
        portal_overrides("car company")
        doc = make_document("lto_or")
        mock_repository.get_claim.return_value = make_claim([doc])

        response = test_client.post(f"/api/car-company/claims/claim-1/documents/{doc.id}/verify", json={})

        assert response.status_code == 200
        assert response.json()["document"]["verified"] is True
        values = mock_repository.update_document.await_args.args[1]
        assert values["car_company_verified_by"] == "reviewer-1"


class TestDocuments:
    @pytest.fixture
    def locator(self):
        locator = AsyncMock(spec=DocumentLocator)
        app.dependency_overrides[get_document_locator] = lambda: locator
        return locator

    def test_document_url(self, test_client, portal_overrides, mock_repository, locator):
        portal_overrides("insurance company")
        doc = make_document(file_name="estimate.pdf")
        mock_repository.get_document.return_value = doc
        locator.get_document_url.return_value = "https://proj.example.co/signed"

        response = test_client.get(f"/api/insurance-company/documents/{doc.id}/url", params={"force_signed": True})

        assert response.status_code == 200
        assert response.json() == {
            "document_id": doc.id,
            "url": "https://proj.example.co/signed",
            "preview": "pdf",
            "content_url": f"/api/insurance-company/documents/{doc.id}/content",
            "prefer_download": settings.prefer_storage_download,
        }
        assert locator.get_document_url.await_args.kwargs["force_signed"] is True

    def test_document_content(self, test_client, portal_overrides, mock_repository, locator):
        portal_overrides("car company")
        doc = make_document(file_name="or.jpg")
        mock_repository.get_document.return_value = doc
        locator.download.return_value = b"\xff\xd8jpeg"

        response = test_client.get(f"/api/car-company/documents/{doc.id}/content")

        assert response.status_code == 200
        assert response.content == b"\xff\xd8jpeg"
        assert response.headers["content-type"] == "image/jpeg"

    def test_missing_document(self, test_client, portal_overrides, mock_repository, locator):
        portal_overrides("car company")
        mock_repository.get_document.return_value = None

        assert test_client.get("/api/car-company/documents/nope/url").status_code == 404


class TestAuditLogs:
    def test_list_ignores_all_filters(self, test_client, portal_overrides, mock_repository):
        portal_overrides("car company")
        log = AuditLog(
            id="log-1",
            user_id="u1",
            user_role="car_company",
            action="document_verified",
            outcome="success",
            timestamp=datetime(2024, 2, 1, tzinfo=timezone.utc),
        )
        log.user = User(id="u1", name="Ana Reyes", email="ana@example.com")
        mock_repository.list_audit_logs.return_value = [log]

        response = test_client.get("/api/car-company/audit-logs", params={"action": "all", "outcome": "success"})

        assert response.status_code == 200
        entry = response.json()["logs"][0]
        assert entry["action_label"] == "Document Verified"
        assert entry["user_name"] == "Ana Reyes"
        assert mock_repository.list_audit_logs.await_args.kwargs["action"] is None
        assert mock_repository.list_audit_logs.await_args.kwargs["outcome"] == "success"

    def test_missing_entry(self, test_client, portal_overrides, mock_repository):
        portal_overrides("insurance company")
        mock_repository.get_audit_log.return_value = None

        assert test_client.get("/api/insurance-company/audit-logs/log-x").status_code == 404


class TestRealtime:
    @pytest.fixture
    def syncs(self, monkeypatch):
        created = {}

        def factory(room):
            created[room] = Mock()
            return created[room]

        monkeypatch.setattr(realtime.manager, "sync_factory", factory)
        return created

    @staticmethod
    def sign_in_ws(role):
        user = CurrentUser(id="reviewer-1", email="r@example.com", role=role, access_token="t")
        app.dependency_overrides[get_websocket_user] = lambda: user

    def test_list_room_lifecycle(self, test_client, syncs):
        self.sign_in_ws(Role.car_company)

        with test_client.websocket_connect("/ws/car-company/claims") as websocket:
            connected = websocket.receive_json()
            assert connected["type"] == "connected"
            assert connected["room"] == "claims:car-company"

            sync = syncs["claims:car-company"]
            sync.start.assert_called_once()
            sync.scheduler.trigger.assert_called_once()

            websocket.send_json({"type": "ping"})
            assert websocket.receive_json()["type"] == "pong"

            websocket.send_text("not json")
            assert websocket.receive_json() == {"type": "error", "message": "Invalid JSON format"}

        sync.stop.assert_called_once()
        assert realtime.manager.viewer_count("claims:car-company") == 0

    async def test_broadcast_drops_dead_viewers(self):
        manager = realtime.ConnectionManager(sync_factory=lambda room: Mock())
        user = CurrentUser(id="reviewer-1", email="r@example.com", role=Role.car_company, access_token="t")
        alive, dead = AsyncMock(), AsyncMock()
        dead.send_text.side_effect = RuntimeError("socket closed")
        await manager.connect(alive, "claims:car-company", user)
        await manager.connect(dead, "claims:car-company", user)

        await manager.broadcast("claims:car-company", {"type": "claims_snapshot", "claims": []})

        alive.send_text.assert_awaited_once()
        assert manager.viewer_count("claims:car-company") == 1

    def test_detail_room_name(self, test_client, syncs):
        self.sign_in_ws(Role.insurance_company)

        with test_client.websocket_connect("/ws/insurance-company/claims/claim-1") as websocket:
            assert websocket.receive_json()["room"] == "claim:insurance-company:claim-1"

    def test_wrong_portal_is_refused(self, test_client, syncs):
        self.sign_in_ws(Role.insurance_company)

        with pytest.raises(WebSocketDisconnect):
            with test_client.websocket_connect("/ws/car-company/claims") as websocket:
                websocket.receive_json()

        assert syncs == {}


class TestWebSocketAuth:
    @pytest.fixture
    def role_sessions(self, monkeypatch):
        """Sessions opened for WebSocket role lookups."""
        opened = []

        class RoleLookupSession:
            def __init__(self):
                self.session = AsyncMock(spec=AsyncSession)
                result = Mock()
                result.scalar_one_or_none.return_value = "car_company"
                self.session.execute.return_value = result
                self.open = False

            async def __aenter__(self):
                self.open = True
                return self.session

            async def __aexit__(self, *exc_info):
                self.open = False

        def session_factory():
            opened.append(RoleLookupSession())
            return opened[-1]

        monkeypatch.setattr(deps, "AsyncSessionLocal", session_factory)
        return opened

    async def test_role_lookup_session_is_closed_before_serving(self, mock_auth, role_sessions):
        mock_auth.get_user.return_value = identity()

        user = await get_websocket_user(websocket=Mock(), token="t", auth=mock_auth)

        assert user.role is Role.car_company
        assert len(role_sessions) == 1
        assert role_sessions[0].open is False
        role_sessions[0].session.execute.assert_awaited()

    async def test_missing_token_is_refused(self, mock_auth, role_sessions):
        with pytest.raises(WebSocketException):
            await get_websocket_user(websocket=Mock(), token=None, auth=mock_auth)

        assert role_sessions == []
