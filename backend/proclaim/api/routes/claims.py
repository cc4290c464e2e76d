"""Claim endpoints: verify (existing account), redeem (new account), return, status.

Responses use a fixed set of user messages; the underlying cause is only
logged.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, ConfigDict, Field

from proclaim.accounts.service import AccountService
from proclaim.api.deps import get_account_service, get_claim_service
from proclaim.claims.service import ClaimService
from proclaim.core.auth import AuthenticatedAccount, get_current_account, require_auth
from proclaim.core.config import Settings, get_settings
from proclaim.core.exceptions import (
    AccountAlreadyExistsError,
    AccountNotFoundError,
    CandidateValidationError,
    ClaimConflictError,
    ClaimInputError,
    NoCandidateEventError,
    RateLimitedError,
)

logger = structlog.get_logger(__name__)

router = APIRouter()

MSG_UNAUTHORIZED = "Unauthorized. Please log in."
MSG_ALREADY_PRO = "Already unlocked! You are already a Pro member."
MSG_UNLOCKED = "Success! Pro unlocked. Redirecting to dashboard..."
MSG_VERIFY_NOT_FOUND = (
    "No recent payment found for this email. Please check the email and try again. "
    "Payments may take 1-2 minutes to appear."
)
MSG_REDEEM_NOT_FOUND = (
    "No recent payment found for this PayPal email. Please check the email and try again. "
    "Payments may take 30-90 seconds to appear."
)
MSG_INSUFFICIENT = "Payment amount is insufficient or already used. Please check and try again."
MSG_RATE_LIMITED = "Please wait {seconds} seconds before trying again."
MSG_ACCOUNT_EXISTS = "Account already exists with this email. Please sign in instead."
MSG_ACCOUNT_CREATED = "Account created successfully! You can now sign in."
MSG_VERIFY_ERROR = "An unexpected error occurred. Please try again."

PAYPAL_RETURN_COOKIE_AGE = 10 * 60


# ── Request / Response schemas ──────────────────────────────────────


class VerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payer_email: Any = Field(default=None, alias="payerEmail")


class RedeemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    paypal_email: Any = Field(default=None, alias="paypalEmail")
    account_email: Any = Field(default=None, alias="accountEmail")
    password: Any = None


class ClaimResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    is_pro: bool | None = Field(default=None, alias="isPro")


class ProStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_pro: bool = Field(alias="isPro")
    pro_unlocked_at: str | None = Field(default=None, alias="proUnlockedAt")
    pro_source: str | None = Field(default=None, alias="proSource")
    pro_payer_email: str | None = Field(default=None, alias="proPayerEmail")


def _respond(status_code: int, message: str, success: bool = False, is_pro: bool | None = None) -> JSONResponse:
    body = ClaimResponse(success=success, message=message, is_pro=is_pro)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True, exclude_none=True))


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


# ── Endpoints ───────────────────────────────────────────────────────


@router.post("/paypal/verify", response_model=ClaimResponse)
async def verify_payment(
    body: VerifyRequest,
    account: AuthenticatedAccount | None = Depends(get_current_account),
    service: ClaimService = Depends(get_claim_service),
):
    """Unlock pro for the signed-in account using a recent PayPal payment."""
    if account is None:
        return _respond(401, MSG_UNAUTHORIZED)

    log = logger.bind(account_id=account.account_id)
    try:
        outcome = await service.verify(account.account_id, _str_or_none(body.payer_email))
    except ClaimInputError as exc:
        return _respond(400, str(exc))
    except AccountNotFoundError:
        log.warning("verify_account_missing")
        return _respond(401, MSG_UNAUTHORIZED)
    except RateLimitedError as exc:
        return _respond(429, MSG_RATE_LIMITED.format(seconds=exc.retry_after))
    except NoCandidateEventError:
        return _respond(404, MSG_VERIFY_NOT_FOUND)
    except (CandidateValidationError, ClaimConflictError) as exc:
        log.info("verify_rejected", reason=type(exc).__name__, detail=str(exc))
        return _respond(400, MSG_INSUFFICIENT)
    except Exception as exc:
        log.error("verify_failed", error=str(exc), error_type=type(exc).__name__, exc_info=True)
        return _respond(500, MSG_VERIFY_ERROR)

    if outcome.already_pro:
        return _respond(200, MSG_ALREADY_PRO, success=True, is_pro=True)
    return _respond(200, MSG_UNLOCKED, success=True, is_pro=True)


@router.post("/redeem", response_model=ClaimResponse)
async def redeem_payment(
    body: RedeemRequest,
    service: ClaimService = Depends(get_claim_service),
):
    """Create a new pro account for the payer of a recent PayPal payment."""
    try:
        await service.redeem(
            _str_or_none(body.paypal_email),
            _str_or_none(body.account_email),
            _str_or_none(body.password),
        )
    except ClaimInputError as exc:
        return _respond(400, str(exc))
    except RateLimitedError as exc:
        return _respond(429, MSG_RATE_LIMITED.format(seconds=exc.retry_after))
    except NoCandidateEventError:
        return _respond(404, MSG_REDEEM_NOT_FOUND)
    except (CandidateValidationError, ClaimConflictError) as exc:
        logger.info("redeem_rejected", reason=type(exc).__name__, detail=str(exc))
        return _respond(400, MSG_INSUFFICIENT)
    except AccountAlreadyExistsError:
        return _respond(409, MSG_ACCOUNT_EXISTS)
    except Exception as exc:
        logger.error("redeem_failed", error=str(exc), error_type=type(exc).__name__, exc_info=True)
        return _respond(500, MSG_VERIFY_ERROR)

    return _respond(200, MSG_ACCOUNT_CREATED, success=True)


@router.get("/paypal/return")
async def paypal_return(tx: str | None = None, settings: Settings = Depends(get_settings)):
    """Landing URL after PayPal checkout; remembers the transaction for signup."""
    if not tx:
        return RedirectResponse(f"{settings.frontend_url}/?blocked=1", status_code=307)

    response = RedirectResponse(f"{settings.frontend_url}/signup?via=paypal", status_code=307)
    for key, value in (("ls_paypal_return", "1"), ("ls_paypal_tx", tx)):
        response.set_cookie(
            key,
            value,
            max_age=PAYPAL_RETURN_COOKIE_AGE,
            path="/",
            httponly=True,
            secure=not settings.debug,
            samesite="lax",
        )
    return response


@router.get("/paypal/status", response_model=ProStatusResponse)
async def pro_status(
    account: AuthenticatedAccount = Depends(require_auth),
    accounts: AccountService = Depends(get_account_service),
):
    """Return the signed-in account's pro entitlement."""
    try:
        entitlement = await accounts.get_entitlement(account.account_id)
    except AccountNotFoundError:
        return ProStatusResponse(is_pro=False)

    return ProStatusResponse(
        is_pro=entitlement.is_pro,
        pro_unlocked_at=entitlement.unlocked_at.isoformat() if entitlement.unlocked_at else None,
        pro_source=entitlement.source,
        pro_payer_email=entitlement.payer_email,
    )
