import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from auth import issue_token
from database import Base
from gateways import LanguageModelClient, PaymentGatewayClient, PushClient


class SilentModel(LanguageModelClient):
    def generate(self, instructions, input_text):
        return '{"title": "Careful", "description": "Balance is low"}'


class SilentPush(PushClient):
    def send(self, token, title, body, data=None):
        return None


class FakeGateway(PaymentGatewayClient):
    def create_invoice(self, external_id, amount, description, payer_email, customer):
        return f"https://pay.example.com/{external_id}"


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[main.get_db] = override_db
    main.app.dependency_overrides[main.get_language_model] = SilentModel
    main.app.dependency_overrides[main.get_push_client] = SilentPush
    main.app.dependency_overrides[main.get_payment_gateway] = FakeGateway
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


def register_and_login(client, username="budi"):
    resp = client.post(
        "/api/register",
        json={
            "name": "Budi",
            "username": username,
            "email": f"{username}@example.com",
            "password": "secret-pass",
        },
    )
    assert resp.status_code == 201
    resp = client.post(
        "/api/login",
        json={"email": f"{username}@example.com", "password": "secret-pass"},
    )
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def category_id(client, headers, name):
    categories = client.get("/api/categories", headers=headers).json()["data"]
    return next(c["id"] for c in categories if c["name"] == name)


def test_api_requires_a_bearer_token(client) -> None:
    resp = client.get("/api/wallets")
    assert resp.status_code == 401
    assert resp.json() == {"message": "Unauthorized"}

    resp = client.get("/api/wallets", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


def test_login_with_wrong_password(client) -> None:
    register_and_login(client)
    resp = client.post(
        "/api/login", json={"email": "budi@example.com", "password": "wrong-pass"}
    )
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid email or password"


def test_transaction_flow_over_http(client) -> None:
    headers = register_and_login(client)
    wallet = client.post(
        "/api/wallets",
        json={"name": "Cash", "type": "cash", "balance": 1_000, "threshold": 100},
        headers=headers,
    ).json()["data"]

    resp = client.post(
        "/api/transactions",
        json={
            "name": "Borrowed",
            "amount": 500,
            "date": "2025-02-10",
            "category_id": category_id(client, headers, "Debt"),
            "wallet_id": wallet["id"],
        },
        headers=headers,
    )
    assert resp.status_code == 201
    debt = resp.json()["data"]
    assert debt["remaining_amount"] == 500

    resp = client.post(
        f"/api/transactions/{debt['id']}/repayments",
        json={"amount": 200, "wallet_id": wallet["id"], "date": "2025-03-01"},
        headers=headers,
    )
    assert resp.status_code == 201

    resp = client.post(
        "/api/debts/repayments",
        json={"amount": 400, "wallet_id": wallet["id"], "parent_id": debt["id"]},
        headers=headers,
    )
    assert resp.status_code == 400

    detail = client.get(f"/api/transactions/{debt['id']}", headers=headers).json()
    assert detail["data"]["remaining_amount"] == 300
    assert len(detail["data"]["children"]) == 1

    listing = client.get(
        "/api/transactions", params={"month": "2025-02"}, headers=headers
    ).json()
    assert listing["total"] == 1
    assert listing["summary"]["total_debt"] == 300

    wallet_after = client.get(f"/api/wallets/{wallet['id']}", headers=headers).json()
    assert wallet_after["data"]["balance"] == 1_300

    debts = client.get("/api/debts", headers=headers).json()["data"]
    assert [d["id"] for d in debts] == [debt["id"]]

    resp = client.delete(f"/api/transactions/{debt['id']}", headers=headers)
    assert resp.status_code == 200
    wallet_after = client.get(f"/api/wallets/{wallet['id']}", headers=headers).json()
    assert wallet_after["data"]["balance"] == 1_000


def test_validation_errors_map_to_400(client) -> None:
    headers = register_and_login(client)

    resp = client.get("/api/transactions", params={"month": "2025-13"}, headers=headers)
    assert resp.status_code == 400
    assert resp.json() == {"message": "Invalid month format. Use YYYY-MM"}

    resp = client.post("/api/wallets", json={"name": "x"}, headers=headers)
    assert resp.status_code == 400
    assert "message" in resp.json()

    resp = client.get("/api/transactions/123", headers=headers)
    assert resp.status_code == 400


def test_far_future_month_lists_nothing(client) -> None:
    headers = register_and_login(client)

    resp = client.get("/api/transactions", params={"month": "9999-12"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["total"] == 0


def test_foreign_resources_are_forbidden(client) -> None:
    owner = register_and_login(client, "owner")
    intruder = register_and_login(client, "intruder")
    wallet = client.post(
        "/api/wallets", json={"name": "Mine", "type": "bank"}, headers=owner
    ).json()["data"]

    assert client.get(f"/api/wallets/{wallet['id']}", headers=intruder).status_code == 403
    assert client.get(f"/api/wallets/{'f' * 24}", headers=owner).status_code == 404


def test_token_for_unknown_user_has_no_profile(client) -> None:
    headers = {"Authorization": f"Bearer {issue_token('0' * 24)}"}
    assert client.get("/api/profile", headers=headers).status_code == 404


def test_payment_confirmation_upgrades_user(client) -> None:
    headers = register_and_login(client)

    resp = client.post("/api/payments", headers=headers)
    assert resp.status_code == 201
    payment = resp.json()["data"]
    assert payment["payment_url"].endswith(payment["id"])
    assert payment["status"] == "pending"

    resp = client.post(
        "/api/confirmations",
        json={"data": {"reference_id": payment["id"], "status": "SUCCEEDED"}},
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "success"

    profile = client.get("/api/profile", headers=headers).json()["data"]
    assert profile["status"] == "premium"


def test_notifications_after_low_balance(client) -> None:
    headers = register_and_login(client)
    client.patch("/api/profile", json={"push_token": "ExponentPushToken[x]"}, headers=headers)
    wallet = client.post(
        "/api/wallets",
        json={"name": "Cash", "type": "cash", "balance": 100, "threshold": 50},
        headers=headers,
    ).json()["data"]
    client.post(
        "/api/transactions",
        json={
            "name": "Dinner",
            "amount": 80,
            "date": "2025-02-10",
            "category_id": category_id(client, headers, "Food & Drinks"),
            "wallet_id": wallet["id"],
        },
        headers=headers,
    )

    notifications = client.get("/api/notifications", headers=headers).json()["data"]
    assert [n["title"] for n in notifications] == ["Careful"]

    resp = client.patch(
        f"/api/notifications/{notifications[0]['id']}",
        json={"isRead": True},
        headers=headers,
    )
    assert resp.json()["data"]["is_read"] is True
