"""
HTTP tests for the FastAPI application.

Each signed-in party gets its own TestClient so cookies stay separate.
State-changing requests echo the CSRF cookie in X-CSRF-Token, like the
web client does.
"""

import pytest
from fastapi.testclient import TestClient

from finditnow.main import create_app
from finditnow.web.auth import CSRF_COOKIE, CSRF_HEADER, SESSION_COOKIE, clear_rate_limit

from conftest import wallet_report


WALLET = {
    "type": "found",
    "name": "Brown Wallet",
    "category": "wallets",
    "description": "Brown leather wallet with a library card inside.",
    "distinguishing_marks": "Initials J.D. stamped inside",
    "location": "Central Park",
    "date": "2024-07-20",
    "contact": "finder@example.com",
}

CLAIM = {
    "full_name": "Jordan Doe",
    "email": "owner@example.com",
    "proof": "It has my initials J.D. stamped inside and my library card.",
}


@pytest.fixture(autouse=True)
def _reset_rate_limit():
    clear_rate_limit("testclient")
    yield
    clear_rate_limit("testclient")


@pytest.fixture
def app(services):
    return create_app(services)


def login(app, email: str, password: str = "secret123") -> TestClient:
    client = TestClient(app)
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    client.headers[CSRF_HEADER] = client.cookies[CSRF_COOKIE]
    return client


class TestSystem:

    def test_health(self, app):
        client = TestClient(app)
        assert client.get("/health").json() == {"status": "healthy", "service": "finditnow"}

    def test_detailed_health(self, app):
        body = TestClient(app).get("/health/detailed").json()
        assert body["status"] == "healthy"
        assert body["checks"]["store"]["backend"] == "InMemoryDocumentStore"
        assert body["checks"]["matching"]["status"] == "healthy"

    def test_metrics_and_info(self, app):
        client = TestClient(app)
        assert "requests_total" in client.get("/metrics").json()
        info = client.get("/api").json()
        assert info["name"] == "FindItNow API"
        assert info["matching_enabled"] is True

    def test_request_id_header(self, app):
        response = TestClient(app).get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


class TestAuth:

    def test_signup_flow(self, app, mailer):
        client = TestClient(app)
        assert client.post("/api/auth/otp", json={"email": "new@example.com"}).status_code == 200

        response = client.post("/api/auth/signup", json={
            "email": "new@example.com",
            "password": "secret123",
            "otp": mailer.last_code("new@example.com"),
        })
        assert response.status_code == 201
        assert SESSION_COOKIE in client.cookies

        me = client.get("/api/auth/me").json()
        assert me["account"]["email"] == "new@example.com"
        assert "password_hash" not in me["account"]

    def test_signup_with_wrong_code(self, app, mailer):
        client = TestClient(app)
        client.post("/api/auth/otp", json={"email": "new@example.com"})
        code = mailer.last_code("new@example.com")
        response = client.post("/api/auth/signup", json={
            "email": "new@example.com",
            "password": "secret123",
            "otp": "000000" if code != "000000" else "111111",
        })
        assert response.status_code == 401

    def test_login_and_logout(self, app, finder):
        client = login(app, finder.email)
        assert client.get("/api/auth/me").status_code == 200

        client.post("/api/auth/logout")
        assert client.get("/api/auth/me").status_code == 401

    def test_bad_password(self, app, finder):
        response = TestClient(app).post(
            "/api/auth/login", json={"email": finder.email, "password": "wrong"}
        )
        assert response.status_code == 401

    def test_login_rate_limit(self, app, finder):
        client = TestClient(app)
        for _ in range(5):
            client.post("/api/auth/login", json={"email": finder.email, "password": "wrong"})

        response = client.post("/api/auth/login", json={"email": finder.email, "password": "secret123"})
        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0

    def test_csrf_required_for_writes(self, app, finder):
        client = login(app, finder.email)
        del client.headers[CSRF_HEADER]

        response = client.post("/api/items", json=WALLET)
        assert response.status_code == 403
        assert "CSRF" in response.json()["detail"]

    def test_anonymous_cannot_report(self, app):
        assert TestClient(app).post("/api/items", json=WALLET).status_code == 401

    def test_partner_login_rejects_users(self, app, finder, partner):
        response = TestClient(app).post(
            "/api/partner/login", json={"email": finder.email, "password": "secret123"}
        )
        assert response.status_code == 401

        client = TestClient(app)
        response = client.post(
            "/api/partner/login", json={"email": partner.email, "password": "secret123"}
        )
        assert response.status_code == 200
        assert client.get("/api/partner/dashboard").json()["stats"]["items_reported"] == 0


class TestLostAndFoundFlow:

    def test_brown_wallet_end_to_end(self, app, finder, owner):
        finder_client = login(app, finder.email)
        owner_client = login(app, owner.email)

        # Finder reports, owner finds it while browsing
        item = finder_client.post("/api/items", json=WALLET).json()["item"]
        listing = TestClient(app).get("/api/items", params={"search": "wallet"}).json()
        assert [i["id"] for i in listing["items"]] == [item["id"]]

        # Owner claims, finder accepts
        response = owner_client.post(f"/api/items/{item['id']}/claims", json=CLAIM)
        assert response.status_code == 201
        claim = response.json()["claim"]
        assert finder_client.get("/api/notifications/count").json() == {"count": 1}

        accepted = finder_client.post(f"/api/claims/{claim['id']}/accept").json()["claim"]
        assert accepted["status"] == "accepted"
        chat_id = accepted["chat_id"]

        # Chat
        response = owner_client.post(
            f"/api/chats/{chat_id}/messages", json={"text": "Is this still available?"}
        )
        assert response.status_code == 201
        messages = finder_client.get(f"/api/chats/{chat_id}/messages").json()
        assert [m["text"] for m in messages["messages"]] == ["Is this still available?"]
        assert messages["last_sequence"] == 1

        # Resolve
        resolved = finder_client.post(f"/api/claims/{claim['id']}/resolve").json()["claim"]
        assert resolved["status"] == "resolved"
        assert TestClient(app).get(f"/api/items/{item['id']}").json()["status"] == "resolved"

        # Chat is read-only now
        response = owner_client.post(f"/api/chats/{chat_id}/messages", json={"text": "Thanks!"})
        assert response.status_code == 400
        assert owner_client.get(f"/api/chats/{chat_id}").json()["locked"] is True

        # Feedback
        response = finder_client.post(
            f"/api/claims/{claim['id']}/feedback",
            json={"rating": 5, "story": "Met at the park gate, smooth hand-over."},
        )
        assert response.status_code == 201
        recent = TestClient(app).get("/api/feedback/recent").json()["feedback"]
        assert recent[0]["item_name"] == "Brown Wallet"

    def test_short_proof_is_422(self, app, finder, owner):
        item = login(app, finder.email).post("/api/items", json=WALLET).json()["item"]
        response = login(app, owner.email).post(
            f"/api/items/{item['id']}/claims", json=dict(CLAIM, proof="mine")
        )
        assert response.status_code == 422

    def test_only_owner_accepts(self, app, finder, owner, other):
        item = login(app, finder.email).post("/api/items", json=WALLET).json()["item"]
        claim = login(app, owner.email).post(
            f"/api/items/{item['id']}/claims", json=CLAIM
        ).json()["claim"]

        response = login(app, other.email).post(f"/api/claims/{claim['id']}/accept")
        assert response.status_code == 403

    def test_unknown_item(self, app):
        assert TestClient(app).get("/api/items/does-not-exist").status_code == 404

    def test_outsider_cannot_stream_chat(self, app, finder, owner, other):
        finder_client = login(app, finder.email)
        item = finder_client.post("/api/items", json=WALLET).json()["item"]
        claim = login(app, owner.email).post(
            f"/api/items/{item['id']}/claims", json=CLAIM
        ).json()["claim"]
        finder_client.post(f"/api/claims/{claim['id']}/accept")

        response = login(app, other.email).get(f"/api/chats/{claim['id']}/stream")
        assert response.status_code == 403

    def test_update_and_delete_item(self, app, finder):
        client = login(app, finder.email)
        item = client.post("/api/items", json=WALLET).json()["item"]

        response = client.patch(f"/api/items/{item['id']}", json={"location": "Central Park West"})
        assert response.json()["item"]["location"] == "Central Park West"

        assert client.delete(f"/api/items/{item['id']}").status_code == 200
        assert client.get("/api/items/mine").json()["count"] == 0


class TestMatchingApi:

    def test_match_items(self, app, services, llm, finder):
        found = services.catalog.report_item(finder, wallet_report(finder.email))
        llm.response = f'[{{"itemId": "{found.id}", "matchScore": 0.9}}]'

        client = login(app, finder.email)
        response = client.post(
            "/api/matching/match-items",
            json={"description": "brown wallet", "location": "Central Park"},
        )
        assert response.status_code == 200
        assert found.id in [m["item_id"] for m in response.json()["matches"]]

    def test_suggestions_only_for_lost_items(self, app, finder):
        client = login(app, finder.email)
        item = client.post("/api/items", json=WALLET).json()["item"]
        assert client.get(f"/api/items/{item['id']}/matches").status_code == 400


class TestAdminApi:

    @pytest.fixture
    def admin_client(self, app, services):
        services.identity.ensure_admin("admin@example.com", "admin-pass")
        return login(app, "admin@example.com", "admin-pass")

    def test_requires_admin_role(self, app, finder):
        assert login(app, finder.email).get("/api/admin/stats").status_code == 403

    def test_stats_and_listings(self, app, admin_client, finder):
        login(app, finder.email).post("/api/items", json=WALLET)

        stats = admin_client.get("/api/admin/stats").json()
        assert stats["total_items"] == 1
        assert admin_client.get("/api/admin/items").json()["count"] == 1
        emails = [a["email"] for a in admin_client.get("/api/admin/accounts").json()["accounts"]]
        assert finder.email in emails

    def test_suspension_ends_access(self, app, admin_client, finder):
        finder_client = login(app, finder.email)

        response = admin_client.put(
            f"/api/admin/accounts/{finder.id}/status", json={"status": "suspended"}
        )
        assert response.status_code == 200

        response = finder_client.get("/api/auth/me")
        assert response.status_code == 403
        assert response.json()["detail"]["status"] == "suspended"

        response = TestClient(app).post(
            "/api/auth/login", json={"email": finder.email, "password": "secret123"}
        )
        assert response.status_code == 403
        assert response.json()["detail"]["status"] == "suspended"

    def test_maintenance_mode(self, app, admin_client, finder):
        response = admin_client.put(
            "/api/admin/maintenance", json={"is_enabled": True, "message": "Back at 10:00"}
        )
        assert response.json()["is_enabled"] is True

        anonymous = TestClient(app)
        blocked = anonymous.get("/api/items")
        assert blocked.status_code == 503
        assert blocked.json() == {"maintenance": True, "message": "Back at 10:00"}

        assert anonymous.get("/api/maintenance").json()["is_enabled"] is True
        assert anonymous.get("/health").status_code == 200
        assert admin_client.get("/api/items").status_code == 200

        admin_client.put("/api/admin/maintenance", json={"is_enabled": False})
        assert anonymous.get("/api/items").status_code == 200

    def test_admin_resolve_and_chat_log(self, app, admin_client, finder, owner):
        finder_client = login(app, finder.email)
        owner_client = login(app, owner.email)
        item = finder_client.post("/api/items", json=WALLET).json()["item"]
        claim = owner_client.post(f"/api/items/{item['id']}/claims", json=CLAIM).json()["claim"]
        finder_client.post(f"/api/claims/{claim['id']}/accept")
        owner_client.post(f"/api/chats/{claim['id']}/messages", json={"text": "Hello"})

        log = admin_client.get(f"/api/admin/claims/{claim['id']}/messages").json()
        assert [m["text"] for m in log["messages"]] == ["Hello"]

        response = admin_client.post(f"/api/admin/items/{item['id']}/resolve")
        assert response.json()["item"]["status"] == "resolved"

        claims = admin_client.get("/api/admin/claims").json()["claims"]
        assert claims[0]["status"] == "resolved"
        assert claims[0]["item_name"] == "Brown Wallet"
