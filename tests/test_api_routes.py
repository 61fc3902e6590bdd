"""
tests/test_api_routes.py -- Integration tests for the bearer-channel API.

These tests exercise the full stack: FastAPI routing -> auth dependency injection
-> AuthenticationGate -> stores -> response model serialization -> exception
handlers. Unit testing individual route functions would miss the handlers that
turn Unauthenticated into a 401 challenge.

Coverage:
  - Sign-in: jwo/12345 -> token; wrong password and unknown login share one 401 body
  - Auth failures: missing / random token -> 401 + WWW-Authenticate: Bearer
  - Channel isolation: a valid session cookie does not authenticate /api
  - Query-string fallback: ?access_token=
  - Logout idempotency, token listing and revocation by id (ownership checked)
  - Principal management: admin only, duplicate login 409, deactivation revokes grants
  - Store outage -> 503, never 401

Fixtures used (from conftest.py):
  - api_client: (client, service) -- principals admin/adminpass123 (admin), jwo/12345
"""

from __future__ import annotations

import secrets

import pytest
from fastapi.testclient import TestClient

from auth.errors import StoreUnavailable
from auth.service import AuthService


def _sign_in(client: TestClient, login: str, password: str, name: str | None = None) -> str:
    resp = client.post("/api/v1/auth/token", json={"login": login, "password": password, "name": name})
    assert resp.status_code == 200, resp.text
    return resp.json()["access_token"]


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestSignIn:
    def test_correct_credentials_issue_token(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, _service = api_client
        resp = client.post("/api/v1/auth/token", json={"login": "jwo", "password": "12345", "name": "cli"})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["access_token"].startswith("ag_")
        assert data["expires_in"] == 30 * 24 * 3600
        assert data["token_id"]

        me = client.get("/api/v1/auth/me", headers=_bearer(data["access_token"]))
        assert me.status_code == 200
        assert me.json()["login"] == "jwo"
        assert me.json()["role"] == "user"

    def test_wrong_password_and_unknown_login_are_indistinguishable(
        self, api_client: tuple[TestClient, AuthService]
    ) -> None:
        client, _service = api_client
        wrong = client.post("/api/v1/auth/token", json={"login": "jwo", "password": "wrong"})
        unknown = client.post("/api/v1/auth/token", json={"login": "nobody", "password": "12345"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "invalid_credentials"

    def test_missing_fields_is_422(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, _service = api_client
        resp = client.post("/api/v1/auth/token", json={"login": "jwo"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestApiAuthFailure:
    """Unauthenticated requests to protected API routes get a 401 challenge."""

    @pytest.mark.parametrize("path", ["/api/v1/auth/me", "/api/v1/auth/tokens", "/api/v1/auth/principals"])
    def test_no_token(self, api_client: tuple[TestClient, AuthService], path: str) -> None:
        client, _service = api_client
        resp = client.get(path)
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_random_token(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, _service = api_client
        resp = client.get("/api/v1/auth/me", headers=_bearer(f"ag_{secrets.token_hex(32)}"))
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_non_bearer_scheme_ignored(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, _service = api_client
        token = _sign_in(client, "jwo", "12345")
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"Basic {token}"})
        assert resp.status_code == 401

    def test_session_cookie_does_not_authenticate_api(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, service = api_client
        jwo = service.principals.get_by_login("jwo")
        session_id = service.sessions.create(jwo.id)
        resp = client.get("/api/v1/auth/me", cookies={"session_id": session_id})
        client.cookies.clear()
        assert resp.status_code == 401

    def test_query_token_fallback(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, _service = api_client
        token = _sign_in(client, "jwo", "12345")
        resp = client.get("/api/v1/auth/me", params={"access_token": token})
        assert resp.status_code == 200
        assert resp.json()["login"] == "jwo"


class TestTokenLifecycle:
    def test_logout_revokes_and_is_idempotent(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, _service = api_client
        token = _sign_in(client, "jwo", "12345")
        assert client.post("/api/v1/auth/logout", headers=_bearer(token)).status_code == 204
        assert client.get("/api/v1/auth/me", headers=_bearer(token)).status_code == 401
        assert client.post("/api/v1/auth/logout", headers=_bearer(token)).status_code == 204
        assert client.post("/api/v1/auth/logout").status_code == 204

    def test_multiple_tokens_coexist(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, _service = api_client
        first = _sign_in(client, "jwo", "12345", name="laptop")
        second = _sign_in(client, "jwo", "12345", name="phone")
        assert client.get("/api/v1/auth/me", headers=_bearer(first)).status_code == 200
        assert client.get("/api/v1/auth/me", headers=_bearer(second)).status_code == 200

        listed = client.get("/api/v1/auth/tokens", headers=_bearer(second)).json()
        labels = {t["label"] for t in listed}
        assert {"laptop", "phone"} <= labels
        assert all("access_token" not in t and "key_hash" not in t for t in listed)

    def test_revoke_token_by_id(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, _service = api_client
        resp = client.post("/api/v1/auth/token", json={"login": "jwo", "password": "12345"})
        doomed, doomed_id = resp.json()["access_token"], resp.json()["token_id"]
        keeper = _sign_in(client, "jwo", "12345")

        assert client.delete(f"/api/v1/auth/tokens/{doomed_id}", headers=_bearer(keeper)).status_code == 204
        assert client.get("/api/v1/auth/me", headers=_bearer(doomed)).status_code == 401
        assert client.get("/api/v1/auth/me", headers=_bearer(keeper)).status_code == 200

    def test_cannot_revoke_someone_elses_token(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, _service = api_client
        resp = client.post("/api/v1/auth/token", json={"login": "admin", "password": "adminpass123"})
        admin_token, admin_token_id = resp.json()["access_token"], resp.json()["token_id"]
        jwo_token = _sign_in(client, "jwo", "12345")

        resp = client.delete(f"/api/v1/auth/tokens/{admin_token_id}", headers=_bearer(jwo_token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"
        assert client.get("/api/v1/auth/me", headers=_bearer(admin_token)).status_code == 200

    def test_revoke_all_tokens(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, _service = api_client
        tokens = [_sign_in(client, "jwo", "12345") for _ in range(3)]
        assert client.delete("/api/v1/auth/tokens", headers=_bearer(tokens[0])).status_code == 204
        for token in tokens:
            assert client.get("/api/v1/auth/me", headers=_bearer(token)).status_code == 401

    def test_list_and_end_browser_sessions(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, service = api_client
        jwo = service.principals.get_by_login("jwo")
        admin = service.principals.get_by_login("admin")
        session_id = service.sessions.create(jwo.id, label="Firefox")
        admin_session = service.sessions.create(admin.id)
        token = _sign_in(client, "jwo", "12345")

        listed = client.get("/api/v1/auth/sessions", headers=_bearer(token)).json()
        handle = next(s["id"] for s in listed if s["label"] == "Firefox")

        (admin_record,) = service.sessions.list_for(admin.id)
        resp = client.delete(f"/api/v1/auth/sessions/{admin_record.handle}", headers=_bearer(token))
        assert resp.status_code == 404
        assert service.sessions.resolve(admin_session) == admin.id

        assert client.delete(f"/api/v1/auth/sessions/{handle}", headers=_bearer(token)).status_code == 204
        assert service.sessions.resolve(session_id) is None


class TestPrincipalManagement:
    def test_admin_creates_principal(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, _service = api_client
        admin_token = _sign_in(client, "admin", "adminpass123")
        resp = client.post(
            "/api/v1/auth/principals",
            json={"login": "alice", "password": "alicepass1"},
            headers=_bearer(admin_token),
        )
        assert resp.status_code == 201
        assert resp.json()["login"] == "alice"
        assert resp.json()["role"] == "user"
        assert "hashed_password" not in resp.json()
        assert _sign_in(client, "alice", "alicepass1")

    def test_duplicate_login_conflict(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, _service = api_client
        admin_token = _sign_in(client, "admin", "adminpass123")
        resp = client.post(
            "/api/v1/auth/principals",
            json={"login": "jwo", "password": "whatever1"},
            headers=_bearer(admin_token),
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_non_admin_forbidden(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, _service = api_client
        token = _sign_in(client, "jwo", "12345")
        resp = client.post(
            "/api/v1/auth/principals",
            json={"login": "mallory", "password": "mallorypw"},
            headers=_bearer(token),
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"
        assert client.get("/api/v1/auth/principals", headers=_bearer(token)).status_code == 403

    def test_deactivation_revokes_grants(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, service = api_client
        admin_token = _sign_in(client, "admin", "adminpass123")
        bob = service.register("bob", "bobpass123")
        bob_token = _sign_in(client, "bob", "bobpass123")
        bob_session = service.sessions.create(bob.id)

        resp = client.patch(
            f"/api/v1/auth/principals/{bob.id}", json={"is_active": False}, headers=_bearer(admin_token)
        )
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False
        assert client.get("/api/v1/auth/me", headers=_bearer(bob_token)).status_code == 401
        assert service.sessions.resolve(bob_session) is None
        assert client.post("/api/v1/auth/token", json={"login": "bob", "password": "bobpass123"}).status_code == 401

    def test_password_change_revokes_tokens(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, service = api_client
        admin_token = _sign_in(client, "admin", "adminpass123")
        carol = service.register("carol", "carolpass1")
        carol_token = _sign_in(client, "carol", "carolpass1")

        resp = client.patch(
            f"/api/v1/auth/principals/{carol.id}", json={"password": "carolpass2"}, headers=_bearer(admin_token)
        )
        assert resp.status_code == 200
        assert client.get("/api/v1/auth/me", headers=_bearer(carol_token)).status_code == 401
        assert _sign_in(client, "carol", "carolpass2")

    def test_patch_guards(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, service = api_client
        admin_token = _sign_in(client, "admin", "adminpass123")
        admin = service.principals.get_by_login("admin")

        resp = client.patch(f"/api/v1/auth/principals/{admin.id}", json={}, headers=_bearer(admin_token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "no_changes"

        resp = client.patch(
            f"/api/v1/auth/principals/{admin.id}", json={"is_active": False}, headers=_bearer(admin_token)
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "self_deactivation"

        resp = client.patch("/api/v1/auth/principals/99999", json={"role": "admin"}, headers=_bearer(admin_token))
        assert resp.status_code == 404

    def test_last_admin_cannot_be_demoted(self, api_client: tuple[TestClient, AuthService]) -> None:
        client, service = api_client
        admin_token = _sign_in(client, "admin", "adminpass123")
        admin = service.principals.get_by_login("admin")
        assert service.principals.count_active_admins() == 1

        resp = client.patch(f"/api/v1/auth/principals/{admin.id}", json={"role": "user"}, headers=_bearer(admin_token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "last_admin"
        assert service.principals.get_by_id(admin.id).role == "admin"

        # With a second active admin the demotion goes through.
        deputy = service.register("deputy", "deputypass1", role="admin")
        resp = client.patch(f"/api/v1/auth/principals/{deputy.id}", json={"role": "user"}, headers=_bearer(admin_token))
        assert resp.status_code == 200
        assert resp.json()["role"] == "user"


class TestStoreOutage:
    def test_store_unavailable_is_503(self, api_client: tuple[TestClient, AuthService], monkeypatch) -> None:
        client, service = api_client

        def unavailable(*args, **kwargs):
            raise StoreUnavailable("database is locked")

        monkeypatch.setattr(service.principals, "get_by_login", unavailable)
        resp = client.post("/api/v1/auth/token", json={"login": "jwo", "password": "12345"})
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "store_unavailable"
        assert "locked" not in resp.text

    def test_store_unavailable_during_gate_is_503(
        self, api_client: tuple[TestClient, AuthService], monkeypatch
    ) -> None:
        client, service = api_client
        token = _sign_in(client, "jwo", "12345")

        def unavailable(*args, **kwargs):
            raise StoreUnavailable("disk I/O error")

        monkeypatch.setattr(service.tokens.backend, "get", unavailable)
        resp = client.get("/api/v1/auth/me", headers=_bearer(token))
        assert resp.status_code == 503
        assert "www-authenticate" not in resp.headers
