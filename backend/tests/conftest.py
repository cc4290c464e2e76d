"""Shared test fixtures: settings, database, fake PayPal, HTTP app."""

import os
import time
from datetime import timedelta

import httpx
import jwt as pyjwt
import pytest
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from tenacity import wait_none

from proclaim.accounts.service import AccountService
from proclaim.core.config import Settings, get_settings
from proclaim.db.base import Base, create_engine, create_session_factory, utcnow
from proclaim.integrations.paypal import PayPalClient
from proclaim.payments.event_store import EventStore, VerificationStatus
from proclaim.payments.payload import normalize_event

TEST_JWT_SECRET = "test-secret-0123456789abcdef0123456789abcdef"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=os.getenv("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'proclaim.db'}"),
        paypal_client_id="client-id",
        paypal_client_secret="client-secret",
        paypal_webhook_id="WH-TEST-001",
        paypal_env="live",
        auth_jwt_secret=TEST_JWT_SECRET,
        frontend_url="http://localhost:3000",
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine(settings):
    """Fresh schema per test; SQLite file unless TEST_DATABASE_URL is set."""
    import proclaim.db.models  # noqa: F401

    engine = create_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def event_store(session_factory) -> EventStore:
    return EventStore(session_factory)


@pytest.fixture
def accounts(session_factory) -> AccountService:
    return AccountService(session_factory)


# ---------------------------------------------------------------------------
# Payloads and stored events
# ---------------------------------------------------------------------------


@pytest.fixture
def make_payload():
    """Factory for PayPal webhook bodies in either amount shape."""

    def _make(
        event_id: str = "WH-EVT-1",
        event_type: str = "PAYMENT.CAPTURE.COMPLETED",
        amount: str | None = "2.99",
        currency: str | None = "USD",
        payer: str | None = "a@x.com",
        shape: str = "flat",
    ) -> dict:
        resource: dict = {"id": f"CAP-{event_id}"}
        money = {}
        if amount is not None:
            money["value"] = amount
        if currency is not None:
            money["currency_code"] = currency
        if shape == "flat":
            resource["amount"] = money
        else:
            resource["purchase_units"] = [{"payments": {"captures": [{"amount": money}]}}]
        if payer is not None:
            resource["payer"] = {"email_address": payer}
        return {
            "id": event_id,
            "event_type": event_type,
            "summary": "Payment completed",
            "resource_type": "capture",
            "create_time": "2026-10-19T10:00:00Z",
            "resource": resource,
        }

    return _make


@pytest.fixture
def store_event(event_store, make_payload):
    """Store a verified event received ``age`` ago."""

    async def _store(
        event_id: str = "E1",
        age: timedelta = timedelta(hours=1),
        verification: VerificationStatus = VerificationStatus.SUCCESS,
        **payload_kwargs,
    ):
        event = normalize_event(make_payload(event_id=event_id, **payload_kwargs))
        await event_store.add(event, verification, received_at=utcnow() - age)
        return event

    return _store


# ---------------------------------------------------------------------------
# Fake PayPal
# ---------------------------------------------------------------------------


class FakePayPal:
    """httpx MockTransport handler emulating the two PayPal endpoints used."""

    def __init__(self):
        self.verification_status = "SUCCESS"
        self.token_status = 200
        self.verify_status = 200
        self.raise_on_verify: Exception | None = None
        self.requests: list[httpx.Request] = []

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/v1/oauth2/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            return httpx.Response(
                200,
                json={"access_token": "A21AAtest", "token_type": "Bearer", "expires_in": 32400},
            )
        if request.url.path == "/v1/notifications/verify-webhook-signature":
            if self.raise_on_verify is not None:
                raise self.raise_on_verify
            if self.verify_status != 200:
                return httpx.Response(self.verify_status, json={"name": "ERROR"})
            return httpx.Response(200, json={"verification_status": self.verification_status})
        return httpx.Response(404)


@pytest.fixture
def fake_paypal() -> FakePayPal:
    return FakePayPal()


@pytest.fixture
async def paypal_client(settings, fake_paypal):
    client = PayPalClient.from_settings(
        settings,
        transport=httpx.MockTransport(fake_paypal.handler),
        retry_wait=wait_none(),
    )
    yield client
    await client.aclose()


@pytest.fixture
def signature_headers() -> dict[str, str]:
    return {
        "PAYPAL-TRANSMISSION-ID": "69cd13f0-d67a-11e5-baa3-778b53f4ae55",
        "PAYPAL-TRANSMISSION-TIME": "2026-10-19T10:00:00Z",
        "PAYPAL-TRANSMISSION-SIG": "c2lnbmF0dXJl",
        "PAYPAL-CERT-URL": "https://api.paypal.com/v1/notifications/certs/CERT-360caa42",
        "PAYPAL-AUTH-ALGO": "SHA256withRSA",
    }


# ---------------------------------------------------------------------------
# HTTP app
# ---------------------------------------------------------------------------


@pytest.fixture
def app(settings, session_factory, paypal_client) -> FastAPI:
    """App wired to the test database and fake PayPal, without the real lifespan."""
    from proclaim.api.routes import api_router
    from proclaim.main import (
        generic_exception_handler,
        http_exception_handler,
        validation_exception_handler,
    )
    from proclaim.middleware.correlation import setup_correlation_middleware

    app = FastAPI(title=settings.app_name, description="ProClaim - Test Client", version="0.1.0")
    setup_correlation_middleware(app)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)
    app.include_router(api_router, prefix="/api")

    app.state.session_factory = session_factory
    app.state.paypal = paypal_client
    app.dependency_overrides[get_settings] = lambda: settings
    return app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def make_token():
    def _make(account_id: str, secret: str = TEST_JWT_SECRET, expires_in: int = 3600, **extra) -> str:
        now = int(time.time())
        payload = {"sub": account_id, "aud": "authenticated", "iat": now, "exp": now + expires_in, **extra}
        return pyjwt.encode(payload, secret, algorithm="HS256")

    return _make
