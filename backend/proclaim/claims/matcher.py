"""Claim matcher: choose a recent, sufficient, unclaimed payment for a claimant.

Selection is greedy: events are scanned newest first and the first one that
passes every check wins, even when an older event matches the price exactly.
Per-payer volume is small, so a bounded scan is enough.

The already-claimed check here is advisory. Two requests can both see an
event as unclaimed; the unique constraint on ``payment_claims.event_id``
decides which of them gets it (see ``ClaimRecorder``).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import StrEnum

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proclaim.core.exceptions import StorageError
from proclaim.db.base import utcnow
from proclaim.db.models.claim import Claim
from proclaim.db.models.payment_event import PaymentEvent
from proclaim.payments.event_store import EventStore
from proclaim.payments.payload import resolve_amount_from_raw

logger = structlog.get_logger(__name__)


class MatchStatus(StrEnum):
    MATCHED = "matched"
    NO_EVENTS = "no_events"
    NONE_VALID = "none_valid"


class Rejection(StrEnum):
    MISSING_AMOUNT = "missing_amount"
    BELOW_MINIMUM = "below_minimum"
    CURRENCY_MISMATCH = "currency_mismatch"
    ALREADY_CLAIMED = "already_claimed"


@dataclass(frozen=True)
class MatchCriteria:
    payer_email: str
    min_amount: Decimal
    currency: str
    window: timedelta


@dataclass
class MatchResult:
    status: MatchStatus
    candidate: PaymentEvent | None = None
    amount: Decimal | None = None
    currency: str | None = None
    # event_id -> reason, for diagnostics only
    rejections: dict[str, Rejection] = field(default_factory=dict)


def event_amount(event: PaymentEvent) -> tuple[Decimal | None, str | None]:
    """Amount and currency of a stored event, falling back to the raw payload."""
    amount = Decimal(event.amount_value) if event.amount_value is not None else None
    currency = event.amount_currency
    if amount is None or currency is None:
        resolved = resolve_amount_from_raw(event.raw)
        if resolved is not None:
            if amount is None:
                amount = resolved.value
            if currency is None:
                currency = resolved.currency
    return amount, currency


class ClaimMatcher:
    def __init__(
        self,
        store: EventStore,
        session_factory: async_sessionmaker[AsyncSession],
        event_types: list[str],
        limit: int = 10,
        verified_only: bool = True,
    ):
        self.store = store
        self._session_factory = session_factory
        self.event_types = event_types
        self.limit = limit
        self.verified_only = verified_only

    async def _claimed_ids(self, event_ids: list[str]) -> set[str]:
        if not event_ids:
            return set()
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(Claim.event_id).where(Claim.event_id.in_(event_ids)))
                return set(result.scalars().all())
        except SQLAlchemyError as exc:
            logger.error("claim_lookup_failed", error=str(exc))
            raise StorageError("Could not read claims") from exc

    async def find_candidate(self, criteria: MatchCriteria, now: datetime | None = None) -> MatchResult:
        """Return the newest event that satisfies ``criteria``.

        Raises:
            StorageError: the event or claim query failed
        """
        since = (now or utcnow()) - criteria.window
        events = await self.store.recent_for_payer(
            payer_email=criteria.payer_email,
            event_types=self.event_types,
            since=since,
            limit=self.limit,
            verified_only=self.verified_only,
        )
        if not events:
            return MatchResult(status=MatchStatus.NO_EVENTS)

        claimed = await self._claimed_ids([e.event_id for e in events])
        expected_currency = criteria.currency.upper()
        result = MatchResult(status=MatchStatus.NONE_VALID)

        for event in events:
            amount, currency = event_amount(event)

            if amount is None:
                result.rejections[event.event_id] = Rejection.MISSING_AMOUNT
                continue
            if amount < criteria.min_amount:
                result.rejections[event.event_id] = Rejection.BELOW_MINIMUM
                continue
            if currency and currency.upper() != expected_currency:
                logger.warning(
                    "claim_candidate_currency_mismatch",
                    event_id=event.event_id,
                    currency=currency,
                    expected=expected_currency,
                )
                result.rejections[event.event_id] = Rejection.CURRENCY_MISMATCH
                continue
            if event.event_id in claimed:
                result.rejections[event.event_id] = Rejection.ALREADY_CLAIMED
                continue

            result.status = MatchStatus.MATCHED
            result.candidate = event
            result.amount = amount
            result.currency = currency
            return result

        return result
