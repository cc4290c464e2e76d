"""Append-only store of normalized payment events."""

from datetime import datetime
from enum import StrEnum

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proclaim.core.exceptions import StorageError
from proclaim.db.base import utcnow
from proclaim.db.models.payment_event import PaymentEvent
from proclaim.payments.payload import NormalizedEvent

logger = structlog.get_logger(__name__)


def _fit(column, value: str | None) -> str | None:
    """Clip free-form text to the column width; an oversized field must not block the insert."""
    length = column.type.length
    if value is None or length is None or len(value) <= length:
        return value
    logger.warning("payment_event_field_clipped", column=column.name, length=len(value))
    return value[:length]


class VerificationStatus(StrEnum):
    """Outcome of webhook signature verification, stored with each event."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"


class EventStore:
    """Persists PaymentEvent rows keyed uniquely by the processor's event id."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def add(
        self,
        event: NormalizedEvent,
        verification_status: VerificationStatus,
        received_at: datetime | None = None,
    ) -> bool:
        """Insert ``event``. Return True if stored, False if the id already exists.

        The primary key on ``event_id`` decides duplicates, so concurrent
        redeliveries of the same event cannot produce two rows.

        Raises:
            StorageError: any database failure other than the duplicate key
        """
        amount = event.amount
        columns = PaymentEvent.__table__.c
        row = PaymentEvent(
            event_id=event.event_id,
            event_type=_fit(columns.event_type, event.event_type),
            summary=_fit(columns.summary, event.summary),
            resource_type=_fit(columns.resource_type, event.resource_type),
            resource_id=_fit(columns.resource_id, event.resource_id),
            amount_value=amount.value if amount else None,
            amount_currency=_fit(columns.amount_currency, amount.currency if amount else None),
            payer_email=_fit(columns.payer_email, event.payer_email),
            verification_status=str(verification_status),
            raw=event.raw,
            received_at=received_at or utcnow(),
        )

        async with self._session_factory() as session:
            try:
                session.add(row)
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()
                return False
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("payment_event_insert_failed", event_id=event.event_id, error=str(exc))
                raise StorageError(f"Could not store payment event {event.event_id}") from exc

    async def get(self, event_id: str) -> PaymentEvent | None:
        async with self._session_factory() as session:
            return await session.get(PaymentEvent, event_id)

    async def recent_for_payer(
        self,
        payer_email: str,
        event_types: list[str],
        since: datetime,
        limit: int,
        verified_only: bool = True,
    ) -> list[PaymentEvent]:
        """Events for ``payer_email`` received at or after ``since``, newest first."""
        stmt = (
            select(PaymentEvent)
            .where(
                PaymentEvent.payer_email == payer_email,
                PaymentEvent.event_type.in_(event_types),
                PaymentEvent.received_at >= since,
            )
            .order_by(PaymentEvent.received_at.desc())
            .limit(limit)
        )
        if verified_only:
            stmt = stmt.where(PaymentEvent.verification_status == VerificationStatus.SUCCESS.value)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            logger.error("payment_event_query_failed", error=str(exc))
            raise StorageError("Could not query payment events") from exc
