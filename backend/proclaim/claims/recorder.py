"""Claim recorder: consume a payment event and grant the entitlement.

The entitlement change and the claim insert share one transaction. The
unique constraint on ``payment_claims.event_id`` is the only authority on
whether an event is already used: when two requests race, the loser's insert
fails, its transaction rolls back, and with it the flag flip or the account
it had just created. No in-process lock is involved, so this holds across
service instances.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proclaim.accounts.service import AccountService
from proclaim.core.exceptions import (
    AccountAlreadyExistsError,
    AccountNotFoundError,
    ClaimConflictError,
    StorageError,
)
from proclaim.db.base import utcnow
from proclaim.db.models.claim import Claim

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GrantExisting:
    """Flip the pro flag on an authenticated account."""

    account_id: str


@dataclass(frozen=True)
class CreateAndGrant:
    """Create a new account, then flip its pro flag."""

    email: str
    password: str


EntitlementAction = GrantExisting | CreateAndGrant


@dataclass(frozen=True)
class RecordedClaim:
    claim_id: int
    account_id: str
    event_id: str
    created_account: bool


class ClaimRecorder:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], accounts: AccountService):
        self._session_factory = session_factory
        self.accounts = accounts

    async def record(
        self,
        event_id: str,
        payer_email: str,
        action: EntitlementAction,
        source: str,
    ) -> RecordedClaim:
        """Apply ``action`` and insert the claim for ``event_id`` atomically.

        Raises:
            ClaimConflictError: another request already claimed the event
            AccountAlreadyExistsError: CreateAndGrant with a registered email
            AccountNotFoundError: GrantExisting with an unknown account
            StorageError: any other database failure
        """
        log = logger.bind(event_id=event_id, source=source)
        now = utcnow()

        async with self._session_factory() as session:
            try:
                if isinstance(action, CreateAndGrant):
                    account = await self.accounts.create_in(session, action.email, action.password)
                else:
                    account = await self.accounts.load_in(session, action.account_id)
                self.accounts.grant_in(account, payer_email, now)

                claim = Claim(
                    account_id=account.id,
                    payer_email=payer_email,
                    event_id=event_id,
                    source=source,
                    created_at=now,
                )
                session.add(claim)
                await session.flush()
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                log.warning("claim_conflict", error=str(exc.orig))
                raise ClaimConflictError(event_id) from exc
            except (AccountAlreadyExistsError, AccountNotFoundError):
                await session.rollback()
                raise
            except SQLAlchemyError as exc:
                await session.rollback()
                log.error("claim_record_failed", error=str(exc))
                raise StorageError(f"Could not record claim for {event_id}") from exc

        log.info(
            "claim_recorded",
            claim_id=claim.id,
            account_id=account.id,
            created_account=isinstance(action, CreateAndGrant),
        )
        return RecordedClaim(
            claim_id=claim.id,
            account_id=account.id,
            event_id=event_id,
            created_account=isinstance(action, CreateAndGrant),
        )
