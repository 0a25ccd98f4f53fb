"""
Integration tests for the FlashPay API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from flashpay.api import create_app
from flashpay.api.deps import FlashPaySystem
from flashpay.config import FlashPayConfig
from flashpay.storage import InMemoryStorage


@pytest.fixture
def system():
    """Create an isolated system over in-memory storage"""
    config = FlashPayConfig(
        use_sqlite=False,
        enable_token_sweeper=False,
        jwt_secret="api-integration-test-secret-32-bytes!"
    )
    return FlashPaySystem(config, storage=InMemoryStorage())


@pytest.fixture
def client(system):
    """Create a test client for the API"""
    return TestClient(create_app(system))


def register(client, email, document, balance="100.00", role="ORDINARY"):
    r = client.post("/api/v1/auth/register", json={
        "first_name": "Test",
        "last_name": "User",
        "email": email,
        "password": "S3cret!pass",
        "document": document,
        "role": role,
        "balance": balance
    })
    assert r.status_code == 201, r.text
    return r.json()


def bearer(session):
    return {"Authorization": f"Bearer {session['access_token']}"}


class TestHealthEndpoints:
    """Test health endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_auth_health(self, client):
        r = client.get("/api/v1/auth/health")
        assert r.status_code == 200


class TestAuthFlow:
    """End-to-end session tests"""

    def test_register(self, client):
        data = register(client, "ana@example.com", "12345678901")

        assert data["token_type"] == "Bearer"
        assert data["refresh_token"]
        assert data["expires_in"] == 86400
        assert data["account"]["balance"] == "100.00"
        assert data["account"]["authorities"] == ["ROLE_ORDINARY"]
        assert "password_hash" not in data["account"]

    def test_register_duplicate_email(self, client):
        register(client, "ana@example.com", "12345678901")
        r = client.post("/api/v1/auth/register", json={
            "first_name": "Ana", "last_name": "Again", "email": "ana@example.com",
            "password": "x", "document": "10987654321"
        })
        assert r.status_code == 409
        body = r.json()
        assert body["code"] == "DUPLICATE_RESOURCE"
        assert "timestamp" in body

    def test_register_unknown_role(self, client):
        r = client.post("/api/v1/auth/register", json={
            "first_name": "Ana", "last_name": "Silva", "email": "ana@example.com",
            "password": "x", "document": "1", "role": "ADMIN"
        })
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_OPERATION"

    def test_login_and_me(self, client):
        register(client, "ana@example.com", "12345678901")

        r = client.post("/api/v1/auth/login", json={"email": "ana@example.com", "password": "S3cret!pass"})
        assert r.status_code == 200
        session = r.json()

        r = client.get("/api/v1/auth/me", headers=bearer(session))
        assert r.status_code == 200
        assert r.json()["email"] == "ana@example.com"

    def test_login_wrong_password(self, client):
        register(client, "ana@example.com", "12345678901")
        r = client.post("/api/v1/auth/login", json={"email": "ana@example.com", "password": "nope"})
        assert r.status_code == 401
        assert r.json()["code"] == "INVALID_CREDENTIALS"

    def test_me_requires_token(self, client):
        r = client.get("/api/v1/auth/me")
        assert r.status_code == 401
        assert r.json()["code"] == "INVALID_TOKEN"

        r = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer garbage"})
        assert r.status_code == 401

    def test_refresh_and_logout(self, client):
        session = register(client, "ana@example.com", "12345678901")
        refresh_body = {"refresh_token": session["refresh_token"]}

        r = client.post("/api/v1/auth/refresh", json=refresh_body)
        assert r.status_code == 200
        assert r.json()["refresh_token"] is None
        assert client.get("/api/v1/auth/me", headers=bearer(r.json())).status_code == 200

        r = client.post("/api/v1/auth/logout", json=refresh_body)
        assert r.status_code == 200

        r = client.post("/api/v1/auth/refresh", json=refresh_body)
        assert r.status_code == 401

        # Logging out twice is harmless
        r = client.post("/api/v1/auth/logout", json=refresh_body)
        assert r.status_code == 200

    def test_refresh_token_cannot_authorize_requests(self, client):
        session = register(client, "ana@example.com", "12345678901")
        r = client.get("/api/v1/auth/me",
                       headers={"Authorization": f"Bearer {session['refresh_token']}"})
        assert r.status_code == 401


class TestTransferFlow:
    """End-to-end transfer tests"""

    def setup_sessions(self, client):
        alice = register(client, "alice@example.com", "11111111111", balance="100.00")
        shop = register(client, "shop@example.com", "22222222000122", balance="0.00", role="SHOPKEEPER")
        return alice, shop

    def test_transfer_scenario(self, client, system):
        alice, shop = self.setup_sessions(client)

        r = client.post("/v1/transactions", headers=bearer(alice), json={
            "receiver_id": shop["account"]["id"], "amount": "40.00"
        })
        assert r.status_code == 201, r.text
        transfer = r.json()
        assert transfer["amount"] == "40.00"
        assert transfer["sender_id"] == alice["account"]["id"]

        r = client.get("/api/v1/auth/me", headers=bearer(alice))
        assert r.json()["balance"] == "60.00"
        r = client.get("/api/v1/auth/me", headers=bearer(shop))
        assert r.json()["balance"] == "40.00"

        r = client.post("/v1/transactions", headers=bearer(alice), json={
            "receiver_id": shop["account"]["id"], "amount": "1000.00"
        })
        assert r.status_code == 422
        assert r.json()["code"] == "INSUFFICIENT_BALANCE"
        assert system.transaction_store.count() == 1

    def test_transfer_requires_authentication(self, client):
        _, shop = self.setup_sessions(client)
        r = client.post("/v1/transactions", json={"receiver_id": shop["account"]["id"], "amount": "1.00"})
        assert r.status_code == 401

    def test_shopkeeper_cannot_send(self, client):
        alice, shop = self.setup_sessions(client)
        r = client.post("/v1/transactions", headers=bearer(shop), json={
            "receiver_id": alice["account"]["id"], "amount": "1.00"
        })
        assert r.status_code == 403
        assert r.json()["code"] == "FORBIDDEN_OPERATION"

    def test_self_transfer_rejected(self, client):
        alice, _ = self.setup_sessions(client)
        r = client.post("/v1/transactions", headers=bearer(alice), json={
            "receiver_id": alice["account"]["id"], "amount": "1.00"
        })
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_OPERATION"

    def test_invalid_amount(self, client):
        alice, shop = self.setup_sessions(client)
        for amount in ("0", "-10.00", "1.001", "ten", "1e30"):
            r = client.post("/v1/transactions", headers=bearer(alice), json={
                "receiver_id": shop["account"]["id"], "amount": amount
            })
            assert r.status_code == 400
            assert r.json()["code"] == "INVALID_AMOUNT"

    def test_unknown_receiver(self, client):
        alice, _ = self.setup_sessions(client)
        r = client.post("/v1/transactions", headers=bearer(alice), json={
            "receiver_id": "missing", "amount": "1.00"
        })
        assert r.status_code == 404
        assert r.json()["code"] == "ACCOUNT_NOT_FOUND"

    def test_get_transfer_and_history(self, client):
        alice, shop = self.setup_sessions(client)
        created = client.post("/v1/transactions", headers=bearer(alice), json={
            "receiver_id": shop["account"]["id"], "amount": "5.00"
        }).json()

        r = client.get(f"/v1/transactions/{created['id']}", headers=bearer(shop))
        assert r.status_code == 200
        assert r.json()["id"] == created["id"]

        r = client.get("/v1/transactions/unknown", headers=bearer(alice))
        assert r.status_code == 404
        body = r.json()
        assert body["code"] == "TRANSFER_NOT_FOUND"
        assert set(body) >= {"code", "message", "timestamp"}

        r = client.get(f"/v1/accounts/{alice['account']['id']}/transactions", headers=bearer(alice))
        assert r.status_code == 200
        assert [t["id"] for t in r.json()] == [created["id"]]

    def test_foreign_transfer_looks_unknown(self, client):
        alice, shop = self.setup_sessions(client)
        bob = register(client, "bob@example.com", "33333333333")
        created = client.post("/v1/transactions", headers=bearer(alice), json={
            "receiver_id": shop["account"]["id"], "amount": "5.00"
        }).json()

        r = client.get(f"/v1/transactions/{created['id']}", headers=bearer(bob))
        assert r.status_code == 404
        assert r.json()["code"] == "TRANSFER_NOT_FOUND"

    def test_history_of_other_account_forbidden(self, client):
        alice, shop = self.setup_sessions(client)
        r = client.get(f"/v1/accounts/{shop['account']['id']}/transactions", headers=bearer(alice))
        assert r.status_code == 403


class TestAccountListing:
    """Test the account listing endpoint"""

    def test_list_accounts(self, client):
        alice = register(client, "alice@example.com", "11111111111", balance="100.00")
        register(client, "shop@example.com", "22222222000122", balance="0.00", role="SHOPKEEPER")

        r = client.get("/v1/accounts", headers=bearer(alice))
        assert r.status_code == 200
        accounts = r.json()
        assert [a["email"] for a in accounts] == ["alice@example.com", "shop@example.com"]
        assert accounts[1]["role"] == "SHOPKEEPER"
        assert all("password_hash" not in a for a in accounts)

    def test_list_accounts_requires_authentication(self, client):
        r = client.get("/v1/accounts")
        assert r.status_code == 401
        assert r.json()["code"] == "INVALID_TOKEN"


class TestLifespan:
    """Test application startup and shutdown"""

    def test_lifespan_starts_and_stops_scheduler(self):
        config = FlashPayConfig(use_sqlite=False, enable_token_sweeper=True,
                                jwt_secret="api-integration-test-secret-32-bytes!")
        system = FlashPaySystem(config, storage=InMemoryStorage())

        with TestClient(create_app(system)) as client:
            assert client.get("/health").status_code == 200
            assert system.scheduler.is_running()

        assert not system.scheduler.is_running()
