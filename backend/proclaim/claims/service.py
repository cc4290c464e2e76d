"""Verify and redeem: the two ways a user turns a payment into pro access.

Both share the matcher and recorder; they differ in the entitlement action
(upgrade the caller's account vs. create a new one), the rate-limit identity
and the lookback window.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from proclaim.accounts.service import AccountService
from proclaim.claims.matcher import ClaimMatcher, MatchCriteria, MatchResult, MatchStatus
from proclaim.claims.rate_limit import ClaimRateLimiter
from proclaim.claims.recorder import ClaimRecorder, CreateAndGrant, GrantExisting, RecordedClaim
from proclaim.core.config import Settings
from proclaim.core.exceptions import (
    CandidateValidationError,
    ClaimConflictError,
    ClaimInputError,
    NoCandidateEventError,
)
from proclaim.payments.payload import normalize_email

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class VerifyOutcome:
    already_pro: bool
    claim: RecordedClaim | None = None


class ClaimService:
    def __init__(
        self,
        settings: Settings,
        matcher: ClaimMatcher,
        recorder: ClaimRecorder,
        limiter: ClaimRateLimiter,
        accounts: AccountService,
    ):
        self.settings = settings
        self.matcher = matcher
        self.recorder = recorder
        self.limiter = limiter
        self.accounts = accounts

    def _criteria(self, payer_email: str, window_hours: int) -> MatchCriteria:
        return MatchCriteria(
            payer_email=payer_email,
            min_amount=self.settings.pro_min_amount,
            currency=self.settings.pro_currency,
            window=timedelta(hours=window_hours),
        )

    async def _match(self, criteria: MatchCriteria, now: datetime | None) -> MatchResult:
        result = await self.matcher.find_candidate(criteria, now=now)
        if result.status == MatchStatus.NO_EVENTS:
            logger.info("claim_no_events", payer_email=criteria.payer_email)
            raise NoCandidateEventError(f"No recent payment for {criteria.payer_email}")
        if result.status == MatchStatus.NONE_VALID:
            logger.info(
                "claim_no_valid_events",
                payer_email=criteria.payer_email,
                rejections={k: str(v) for k, v in result.rejections.items()},
            )
            raise CandidateValidationError(
                f"No valid payment for {criteria.payer_email}",
                rejections={k: str(v) for k, v in result.rejections.items()},
            )
        return result

    async def verify(self, account_id: str, payer_email: str | None, now: datetime | None = None) -> VerifyOutcome:
        """Grant pro to an authenticated account from a payment by ``payer_email``.

        Raises:
            ClaimInputError, RateLimitedError, NoCandidateEventError,
            CandidateValidationError, AccountNotFoundError, StorageError
        """
        normalized = normalize_email(payer_email) if isinstance(payer_email, str) else None
        if not normalized:
            raise ClaimInputError("PayPal email is required.")

        entitlement = await self.accounts.get_entitlement(account_id)
        if entitlement.is_pro:
            return VerifyOutcome(already_pro=True)

        # Keyed on the payer: an account with a claim row already returned above
        await self.limiter.check(payer_email=normalized, now=now)

        try:
            match = await self._match(self._criteria(normalized, self.settings.verify_window_hours), now)
            claim = await self.recorder.record(
                event_id=match.candidate.event_id,
                payer_email=normalized,
                action=GrantExisting(account_id=account_id),
                source="verify",
            )
        except (CandidateValidationError, ClaimConflictError):
            # The winner may have been this same account (double submit)
            entitlement = await self.accounts.get_entitlement(account_id)
            if entitlement.is_pro:
                logger.info("claim_lost_to_same_account", account_id=account_id)
                return VerifyOutcome(already_pro=True)
            raise

        logger.info(
            "pro_unlocked",
            account_id=account_id,
            event_id=claim.event_id,
            amount=str(match.amount),
        )
        return VerifyOutcome(already_pro=False, claim=claim)

    async def redeem(
        self,
        paypal_email: str | None,
        account_email: str | None,
        password: str | None,
        now: datetime | None = None,
    ) -> RecordedClaim:
        """Create a pro account for the payer of a recent payment.

        Raises:
            ClaimInputError, RateLimitedError, NoCandidateEventError,
            CandidateValidationError, ClaimConflictError,
            AccountAlreadyExistsError, StorageError
        """
        fields = (paypal_email, account_email, password)
        if not all(isinstance(f, str) and f.strip() for f in fields):
            raise ClaimInputError("All fields are required.")
        if len(password) < self.settings.min_password_length:
            raise ClaimInputError(f"Password must be at least {self.settings.min_password_length} characters.")

        normalized_payer = normalize_email(paypal_email)
        normalized_account = normalize_email(account_email)
        if "@" not in normalized_account:
            raise ClaimInputError("Please enter a valid account email.")

        await self.limiter.check(payer_email=normalized_payer, now=now)

        match = await self._match(self._criteria(normalized_payer, self.settings.redeem_window_hours), now)
        event_id = match.candidate.event_id

        claim = await self.recorder.record(
            event_id=event_id,
            payer_email=normalized_payer,
            action=CreateAndGrant(email=normalized_account, password=password),
            source="redeem",
        )
        logger.info(
            "pro_account_created",
            account_id=claim.account_id,
            event_id=event_id,
            amount=str(match.amount),
            currency=match.currency,
        )
        return claim
