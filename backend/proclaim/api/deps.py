"""Request-scoped wiring of the process-wide collaborators on ``app.state``."""

from datetime import timedelta

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proclaim.accounts.service import AccountService
from proclaim.claims.matcher import ClaimMatcher
from proclaim.claims.rate_limit import ClaimRateLimiter
from proclaim.claims.recorder import ClaimRecorder
from proclaim.claims.service import ClaimService
from proclaim.core.config import Settings, get_settings
from proclaim.integrations.paypal import PayPalClient
from proclaim.payments.event_store import EventStore
from proclaim.payments.webhook import WebhookReceiver


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


def get_paypal_client(request: Request) -> PayPalClient:
    return request.app.state.paypal


def get_event_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> EventStore:
    return EventStore(session_factory)


def get_account_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AccountService:
    return AccountService(session_factory)


def get_webhook_receiver(
    settings: Settings = Depends(get_settings),
    paypal: PayPalClient = Depends(get_paypal_client),
    store: EventStore = Depends(get_event_store),
) -> WebhookReceiver:
    return WebhookReceiver(settings, paypal, store)


def get_claim_service(
    settings: Settings = Depends(get_settings),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    store: EventStore = Depends(get_event_store),
    accounts: AccountService = Depends(get_account_service),
) -> ClaimService:
    matcher = ClaimMatcher(
        store,
        session_factory,
        event_types=settings.accepted_event_types,
        limit=settings.claim_candidate_limit,
        verified_only=not settings.match_unverified_events,
    )
    return ClaimService(
        settings=settings,
        matcher=matcher,
        recorder=ClaimRecorder(session_factory, accounts),
        limiter=ClaimRateLimiter(session_factory, timedelta(seconds=settings.claim_cooldown_seconds)),
        accounts=accounts,
    )
