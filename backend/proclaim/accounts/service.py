"""Account collaborator: create accounts and read or set the pro entitlement.

The ``*_in`` methods operate inside a caller-owned session so the claim
recorder can create or upgrade an account and record the claim in a single
transaction. The plain methods open and commit their own session.
"""

from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from werkzeug.security import generate_password_hash

from proclaim.core.exceptions import AccountAlreadyExistsError, AccountNotFoundError, StorageError
from proclaim.db.base import utcnow
from proclaim.db.models.account import Account

logger = structlog.get_logger(__name__)

PRO_SOURCE = "paypal"


@dataclass(frozen=True)
class Entitlement:
    is_pro: bool
    unlocked_at: datetime | None = None
    source: str | None = None
    payer_email: str | None = None


def _entitlement(account: Account) -> Entitlement:
    return Entitlement(
        is_pro=account.is_pro,
        unlocked_at=account.pro_unlocked_at,
        source=account.pro_source,
        payer_email=account.pro_payer_email,
    )


class AccountService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ── Transaction-scoped operations ──────────────────────────────────

    async def load_in(self, session: AsyncSession, account_id: str) -> Account:
        account = await session.get(Account, account_id)
        if account is None or not account.is_active:
            raise AccountNotFoundError(account_id)
        return account

    async def create_in(self, session: AsyncSession, email: str, password: str) -> Account:
        """Insert a new account and flush so a taken email fails here."""
        account = Account(email=email, password_hash=generate_password_hash(password))
        session.add(account)
        try:
            await session.flush()
        except IntegrityError as exc:
            raise AccountAlreadyExistsError(email) from exc
        return account

    def grant_in(self, account: Account, payer_email: str, now: datetime | None = None) -> None:
        """Set the pro flag. Re-applying to a pro account keeps the first unlock metadata."""
        if account.is_pro:
            return
        account.is_pro = True
        account.pro_unlocked_at = now or utcnow()
        account.pro_source = PRO_SOURCE
        account.pro_payer_email = payer_email

    # ── Standalone operations ──────────────────────────────────────────

    async def create_account(self, email: str, password: str) -> str:
        """Create an account and return its id.

        Raises:
            AccountAlreadyExistsError: the email is already registered
        """
        async with self._session_factory() as session:
            try:
                account = await self.create_in(session, email, password)
                await session.commit()
            except AccountAlreadyExistsError:
                await session.rollback()
                raise
            return account.id

    async def get_entitlement(self, account_id: str) -> Entitlement:
        try:
            async with self._session_factory() as session:
                account = await self.load_in(session, account_id)
                return _entitlement(account)
        except SQLAlchemyError as exc:
            logger.error("entitlement_read_failed", account_id=account_id, error=str(exc))
            raise StorageError("Could not read entitlement") from exc

    async def set_entitlement(self, account_id: str, payer_email: str) -> Entitlement:
        async with self._session_factory() as session:
            account = await self.load_in(session, account_id)
            self.grant_in(account, payer_email)
            await session.commit()
            return _entitlement(account)

    async def find_by_email(self, email: str) -> Account | None:
        async with self._session_factory() as session:
            result = await session.execute(select(Account).where(Account.email == email))
            return result.scalar_one_or_none()
