"""Tests for the claim endpoints: verify, redeem, return and status."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from proclaim.api.routes.claims import (
    MSG_ACCOUNT_CREATED,
    MSG_ACCOUNT_EXISTS,
    MSG_ALREADY_PRO,
    MSG_INSUFFICIENT,
    MSG_REDEEM_NOT_FOUND,
    MSG_UNAUTHORIZED,
    MSG_UNLOCKED,
    MSG_VERIFY_NOT_FOUND,
)
from proclaim.core.config import get_settings
from proclaim.db.models.account import Account

pytestmark = pytest.mark.integration


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def account_id(accounts):
    return await accounts.create_account("user@example.com", "password123")


@pytest.fixture
def auth_headers(account_id, make_token):
    return _bearer(make_token(account_id))


@pytest.fixture
def no_cooldown(app, settings):
    app.dependency_overrides[get_settings] = lambda: settings.model_copy(update={"claim_cooldown_seconds": 0})


# ---------------------------------------------------------------------------
# POST /api/paypal/verify
# ---------------------------------------------------------------------------


class TestVerifyEndpoint:
    async def test_unlocks_pro(self, client, auth_headers, store_event, accounts, account_id):
        await store_event("E1", amount="2.99")

        response = await client.post("/api/paypal/verify", json={"payerEmail": "a@x.com"}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": MSG_UNLOCKED, "isPro": True}
        assert (await accounts.get_entitlement(account_id)).is_pro is True

    async def test_requires_login(self, client, store_event):
        await store_event("E1")

        response = await client.post("/api/paypal/verify", json={"payerEmail": "a@x.com"})

        assert response.status_code == 401
        assert response.json() == {"success": False, "message": MSG_UNAUTHORIZED}

    async def test_invalid_token_treated_as_anonymous(self, client, make_token, account_id):
        token = make_token(account_id, secret="some-other-secret-0123456789abcdef0123")

        response = await client.post("/api/paypal/verify", json={"payerEmail": "a@x.com"}, headers=_bearer(token))

        assert response.status_code == 401

    async def test_missing_payer_email(self, client, auth_headers):
        response = await client.post("/api/paypal/verify", json={}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["message"] == "PayPal email is required."

    async def test_non_string_payer_email(self, client, auth_headers):
        response = await client.post("/api/paypal/verify", json={"payerEmail": 42}, headers=auth_headers)
        assert response.status_code == 400

    async def test_no_recent_payment(self, client, auth_headers):
        response = await client.post("/api/paypal/verify", json={"payerEmail": "a@x.com"}, headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["message"] == MSG_VERIFY_NOT_FOUND

    async def test_insufficient_amount(self, client, auth_headers, store_event, accounts, account_id):
        await store_event("E1", amount="2.50")

        response = await client.post("/api/paypal/verify", json={"payerEmail": "a@x.com"}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["message"] == MSG_INSUFFICIENT
        assert (await accounts.get_entitlement(account_id)).is_pro is False

    async def test_already_pro(self, client, auth_headers, accounts, account_id):
        await accounts.set_entitlement(account_id, "a@x.com")

        response = await client.post("/api/paypal/verify", json={"payerEmail": "a@x.com"}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": MSG_ALREADY_PRO, "isPro": True}

    async def test_token_for_unknown_account(self, client, make_token, store_event):
        await store_event("E1")

        response = await client.post(
            "/api/paypal/verify", json={"payerEmail": "a@x.com"}, headers=_bearer(make_token("ghost"))
        )

        assert response.status_code == 401

    async def test_invalid_json_body(self, client, auth_headers):
        response = await client.post(
            "/api/paypal/verify",
            content=b"not json",
            headers={**auth_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Invalid request."}

    async def test_two_accounts_race_for_one_payment(self, client, no_cooldown, store_event, accounts, make_token):
        await store_event("E1")
        first = await accounts.create_account("first@example.com", "password123")
        second = await accounts.create_account("second@example.com", "password123")

        responses = await asyncio.gather(
            *(
                client.post("/api/paypal/verify", json={"payerEmail": "a@x.com"}, headers=_bearer(make_token(a)))
                for a in (first, second)
            )
        )

        assert sorted(r.status_code for r in responses) == [200, 400]
        loser = next(r for r in responses if r.status_code == 400)
        assert loser.json()["message"] == MSG_INSUFFICIENT
        flags = [(await accounts.get_entitlement(a)).is_pro for a in (first, second)]
        assert sorted(flags) == [False, True]


# ---------------------------------------------------------------------------
# POST /api/redeem
# ---------------------------------------------------------------------------


def _redeem_body(paypal_email="a@x.com", account_email="new@example.com", password="password123") -> dict:
    return {"paypalEmail": paypal_email, "accountEmail": account_email, "password": password}


class TestRedeemEndpoint:
    async def test_creates_account(self, client, store_event, accounts):
        await store_event("E1", age=timedelta(hours=30))

        response = await client.post("/api/redeem", json=_redeem_body())

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": MSG_ACCOUNT_CREATED}
        assert (await accounts.find_by_email("new@example.com")).is_pro is True

    async def test_missing_fields(self, client):
        response = await client.post("/api/redeem", json={"paypalEmail": "a@x.com"})

        assert response.status_code == 400
        assert response.json()["message"] == "All fields are required."

    async def test_short_password(self, client, store_event):
        await store_event("E1")

        response = await client.post("/api/redeem", json=_redeem_body(password="short"))

        assert response.status_code == 400
        assert response.json()["message"] == "Password must be at least 8 characters."

    async def test_expired_payment(self, client, store_event, accounts):
        await store_event("E1", age=timedelta(hours=50))

        response = await client.post("/api/redeem", json=_redeem_body())

        assert response.status_code == 404
        assert response.json()["message"] == MSG_REDEEM_NOT_FOUND
        assert await accounts.find_by_email("new@example.com") is None

    async def test_account_exists(self, client, store_event, accounts):
        await store_event("E1")
        await accounts.create_account("new@example.com", "password123")

        response = await client.post("/api/redeem", json=_redeem_body())

        assert response.status_code == 409
        assert response.json()["message"] == MSG_ACCOUNT_EXISTS

    async def test_payment_used_once(self, client, no_cooldown, store_event):
        await store_event("E1")

        first = await client.post("/api/redeem", json=_redeem_body(account_email="one@example.com"))
        second = await client.post("/api/redeem", json=_redeem_body(account_email="two@example.com"))

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json()["message"] == MSG_INSUFFICIENT

    async def test_rate_limited(self, client, store_event):
        await store_event("E1")
        await store_event("E2")

        await client.post("/api/redeem", json=_redeem_body(account_email="one@example.com"))
        response = await client.post("/api/redeem", json=_redeem_body(account_email="two@example.com"))

        assert response.status_code == 429
        assert response.json()["message"].startswith("Please wait ")

    async def test_concurrent_redeems_create_one_account(self, client, no_cooldown, store_event, session_factory):
        await store_event("E1")

        responses = await asyncio.gather(
            *(client.post("/api/redeem", json=_redeem_body(account_email=f"new{i}@example.com")) for i in range(3))
        )

        assert sorted(r.status_code for r in responses) == [200, 400, 400]
        async with session_factory() as session:
            assert (await session.execute(select(func.count()).select_from(Account))).scalar_one() == 1


# ---------------------------------------------------------------------------
# GET /api/paypal/return and /api/paypal/status
# ---------------------------------------------------------------------------


class TestReturnEndpoint:
    async def test_with_transaction_sets_cookies(self, client):
        response = await client.get("/api/paypal/return", params={"tx": "TX-123"})

        assert response.status_code == 307
        assert response.headers["location"] == "http://localhost:3000/signup?via=paypal"
        cookies = response.headers.get_list("set-cookie")
        assert any(c.startswith("ls_paypal_tx=TX-123") for c in cookies)
        assert any(c.startswith("ls_paypal_return=1") for c in cookies)
        assert all("HttpOnly" in c and "Max-Age=600" in c for c in cookies)

    async def test_without_transaction_redirects_home(self, client):
        response = await client.get("/api/paypal/return")

        assert response.status_code == 307
        assert response.headers["location"] == "http://localhost:3000/?blocked=1"
        assert "set-cookie" not in response.headers


class TestStatusEndpoint:
    async def test_requires_login(self, client):
        response = await client.get("/api/paypal/status")
        assert response.status_code == 401

    async def test_not_pro(self, client, auth_headers):
        response = await client.get("/api/paypal/status", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["isPro"] is False

    async def test_pro_after_verify(self, client, auth_headers, store_event):
        await store_event("E1")
        await client.post("/api/paypal/verify", json={"payerEmail": "a@x.com"}, headers=auth_headers)

        response = await client.get("/api/paypal/status", headers=auth_headers)

        body = response.json()
        assert body["isPro"] is True
        assert body["proSource"] == "paypal"
        assert body["proPayerEmail"] == "a@x.com"
        assert body["proUnlockedAt"]
