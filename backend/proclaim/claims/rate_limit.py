"""Cooldown between claims, checked against existing claim rows.

Only successful claims leave a row, so failed attempts are not counted.
"""

import math
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proclaim.core.exceptions import RateLimitedError, StorageError
from proclaim.db.base import as_utc, utcnow
from proclaim.db.models.claim import Claim


class ClaimRateLimiter:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], cooldown: timedelta):
        self._session_factory = session_factory
        self.cooldown = cooldown

    async def last_claim_at(
        self,
        account_id: str | None = None,
        payer_email: str | None = None,
    ) -> datetime | None:
        if account_id is None and payer_email is None:
            raise ValueError("account_id or payer_email is required")

        stmt = select(func.max(Claim.created_at))
        if account_id is not None:
            stmt = stmt.where(Claim.account_id == account_id)
        if payer_email is not None:
            stmt = stmt.where(Claim.payer_email == payer_email)

        try:
            async with self._session_factory() as session:
                last = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError("Could not read claim history") from exc
        return as_utc(last) if last is not None else None

    async def check(
        self,
        account_id: str | None = None,
        payer_email: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """Raise RateLimitedError if the identity claimed within the cooldown."""
        last = await self.last_claim_at(account_id=account_id, payer_email=payer_email)
        if last is None:
            return

        elapsed = (now or utcnow()) - last
        if elapsed < self.cooldown:
            remaining = (self.cooldown - elapsed).total_seconds()
            raise RateLimitedError(retry_after=max(1, math.ceil(remaining)))
