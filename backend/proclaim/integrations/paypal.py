"""PayPal REST client: OAuth token exchange and webhook signature verification.

One instance is created per process (see ``proclaim.main.lifespan``) and
shared by requests through ``app.state``. It owns a pooled httpx client with an
explicit timeout and caches the OAuth token until shortly before it expires.
"""

from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from proclaim.core.config import Settings
from proclaim.core.exceptions import PayPalAPIError

logger = structlog.get_logger(__name__)

# Header name -> field in the verify-webhook-signature request body
SIGNATURE_HEADERS: dict[str, str] = {
    "paypal-auth-algo": "auth_algo",
    "paypal-cert-url": "cert_url",
    "paypal-transmission-id": "transmission_id",
    "paypal-transmission-sig": "transmission_sig",
    "paypal-transmission-time": "transmission_time",
}

TOKEN_REFRESH_MARGIN = timedelta(seconds=60)


class PayPalClient:
    """Client for the PayPal endpoints the webhook receiver needs."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        timeout: float = 10.0,
        max_attempts: int = 3,
        retry_wait: wait_base | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client_id = client_id
        self._client_secret = client_secret
        self._max_attempts = max_attempts
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.5, max=4)
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._access_token: str | None = None
        self._token_expires: datetime | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "PayPalClient":
        return cls(
            client_id=settings.paypal_client_id,
            client_secret=settings.paypal_client_secret,
            base_url=settings.paypal_base_url,
            timeout=settings.paypal_timeout_seconds,
            **kwargs,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _post(self, url: str, **kwargs: Any) -> httpx.Response:
        """POST with retries on transport errors (connect failures, timeouts)."""
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(httpx.TransportError),
            stop=stop_after_attempt(self._max_attempts),
            wait=self._retry_wait,
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                "paypal_request_retrying",
                url=url,
                attempt=rs.attempt_number,
            ),
        )
        try:
            return await retrying(self._http.post, url, **kwargs)
        except httpx.HTTPError as exc:
            raise PayPalAPIError(f"PayPal request to {url} failed: {exc!r}") from exc

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise PayPalAPIError("PayPal returned a non-JSON body", status_code=response.status_code) from exc
        if not isinstance(data, dict):
            raise PayPalAPIError("PayPal returned an unexpected body", status_code=response.status_code)
        return data

    async def get_access_token(self) -> str:
        """Exchange client credentials for a bearer token, reusing a cached one."""
        now = datetime.now(UTC)
        if self._access_token and self._token_expires and now < self._token_expires:
            return self._access_token

        response = await self._post(
            "/v1/oauth2/token",
            auth=(self._client_id, self._client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        if response.status_code != 200:
            raise PayPalAPIError(
                f"Failed to get PayPal access token: {response.status_code} {response.text}",
                status_code=response.status_code,
            )

        data = self._json(response)
        if not data.get("access_token"):
            raise PayPalAPIError("PayPal token response missing access_token", status_code=200)
        self._access_token = data["access_token"]
        expires_in = int(data.get("expires_in", 0))
        self._token_expires = now + timedelta(seconds=expires_in) - TOKEN_REFRESH_MARGIN
        return self._access_token

    async def verify_webhook_signature(
        self,
        webhook_id: str,
        headers: Mapping[str, str],
        event: dict[str, Any],
    ) -> bool:
        """Ask PayPal whether ``event`` was signed for ``webhook_id``.

        Args:
            webhook_id: The webhook id configured in the PayPal dashboard
            headers: Delivery headers, lower-cased names
            event: The decoded webhook body, as delivered

        Returns:
            True when PayPal reports SUCCESS, False for FAILURE or a 4xx answer

        Raises:
            PayPalAPIError: token exchange failed, transport error, or 5xx/401
        """
        token = await self.get_access_token()
        body: dict[str, Any] = {name: headers.get(header, "") for header, name in SIGNATURE_HEADERS.items()}
        body["webhook_id"] = webhook_id
        body["webhook_event"] = event

        response = await self._post(
            "/v1/notifications/verify-webhook-signature",
            json=body,
            headers={"Authorization": f"Bearer {token}"},
        )

        if response.status_code == 401:
            # Token revoked or expired early; next delivery fetches a fresh one
            self._access_token = None
            self._token_expires = None
            raise PayPalAPIError("PayPal rejected the access token", status_code=401)
        if response.status_code >= 500:
            raise PayPalAPIError(
                f"PayPal verification unavailable: {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            logger.warning(
                "paypal_verification_rejected",
                status_code=response.status_code,
                body=response.text[:500],
            )
            return False

        return self._json(response).get("verification_status") == "SUCCESS"
