"""Bearer-token authentication for account-scoped endpoints.

Access tokens are HS256 JWTs issued by the identity provider and signed with
the shared AUTH_JWT_SECRET; ``sub`` is the account id.
"""

from dataclasses import dataclass

import jwt as pyjwt
import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from proclaim.core.config import Settings, get_settings

logger = structlog.get_logger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthenticatedAccount:
    account_id: str
    claims: dict


class InvalidTokenError(Exception):
    pass


def decode_access_token(token: str, settings: Settings) -> AuthenticatedAccount:
    """Verify and decode an access token.

    Raises:
        InvalidTokenError: signature, expiry, audience or subject check failed
    """
    if not settings.auth_jwt_secret:
        raise InvalidTokenError("Authentication is not configured")

    try:
        payload = pyjwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=["HS256"],
            audience=settings.auth_jwt_audience,
            options={"require": ["sub", "exp"]},
        )
    except pyjwt.ExpiredSignatureError as exc:
        raise InvalidTokenError("Token expired") from exc
    except pyjwt.InvalidTokenError as exc:
        raise InvalidTokenError(f"Invalid token: {exc}") from exc

    sub = payload.get("sub")
    if not sub:
        raise InvalidTokenError("Token missing sub claim")

    return AuthenticatedAccount(account_id=str(sub), claims=payload)


async def get_current_account(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> AuthenticatedAccount | None:
    """Resolve the caller from the Authorization header, or None when absent/invalid."""
    if credentials is None:
        return None
    try:
        account = decode_access_token(credentials.credentials, settings)
    except InvalidTokenError as exc:
        logger.info("auth_token_rejected", reason=str(exc))
        return None

    request.state.account_id = account.account_id
    return account


async def require_auth(
    account: AuthenticatedAccount | None = Depends(get_current_account),
) -> AuthenticatedAccount:
    """FastAPI dependency that rejects unauthenticated callers with 401."""
    if account is None:
        raise HTTPException(status_code=401, detail="Unauthorized. Please log in.")
    return account
