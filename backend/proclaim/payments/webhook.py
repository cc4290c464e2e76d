"""Webhook receiver: authenticate, normalize and record PayPal deliveries.

Ingestion only records evidence. Entitlements are granted later, when a user
claims a payment, so nothing here touches accounts.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass

import structlog

from proclaim.core.config import Settings
from proclaim.core.exceptions import (
    ConfigurationError,
    MalformedPayloadError,
    PayPalAPIError,
    SignatureVerificationError,
)
from proclaim.integrations.paypal import SIGNATURE_HEADERS, PayPalClient
from proclaim.payments.event_store import EventStore, VerificationStatus
from proclaim.payments.payload import normalize_event

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class IngestResult:
    event_id: str
    event_type: str
    duplicate: bool
    verification_status: VerificationStatus


class WebhookReceiver:
    """Handles one PayPal webhook delivery end to end.

    In strict mode an unauthenticated delivery is rejected. In permissive mode
    (sandbox) it is stored with its verification status so ingestion and
    dedup can be exercised without a full signing chain; the claim matcher
    ignores such events unless configured otherwise.
    """

    def __init__(self, settings: Settings, paypal: PayPalClient, store: EventStore):
        self.settings = settings
        self.paypal = paypal
        self.store = store

    async def receive(self, body: bytes, headers: Mapping[str, str]) -> IngestResult:
        """Verify and store a delivery.

        Raises:
            ConfigurationError: PayPal credentials or webhook id unset
            MalformedPayloadError: body is not an event object
            SignatureVerificationError: strict mode and the delivery is not authentic
            StorageError: the event could not be written
        """
        missing = self.settings.missing_paypal_config()
        if missing:
            logger.error("paypal_webhook_not_configured", missing=missing)
            raise ConfigurationError(missing)

        try:
            raw = json.loads(body)
        except (ValueError, UnicodeDecodeError) as exc:
            raise MalformedPayloadError("Webhook body is not valid JSON") from exc

        event = normalize_event(raw)
        log = logger.bind(
            event_id=event.event_id,
            event_type=event.event_type,
            strict=self.settings.strict_verification,
        )

        lowered = {k.lower(): v for k, v in headers.items()}
        status = await self._verify(raw, lowered, log)

        inserted = await self.store.add(event, status)
        if inserted:
            log.info(
                "paypal_event_ingested",
                verification_status=str(status),
                payer_email=event.payer_email,
                amount=str(event.amount.value) if event.amount else None,
                amount_shape=event.amount.shape if event.amount else None,
            )
        else:
            log.info("paypal_duplicate_event_ignored")

        return IngestResult(
            event_id=event.event_id,
            event_type=event.event_type,
            duplicate=not inserted,
            verification_status=status,
        )

    async def _verify(self, raw: dict, headers: dict[str, str], log) -> VerificationStatus:
        strict = self.settings.strict_verification

        missing_headers = [h for h in SIGNATURE_HEADERS if not headers.get(h)]
        if missing_headers:
            if strict:
                log.error("paypal_webhook_missing_headers", missing=missing_headers)
                raise SignatureVerificationError(f"Missing header: {missing_headers[0]}")
            log.warning("paypal_webhook_verification_skipped", missing=missing_headers)
            return VerificationStatus.SKIPPED

        try:
            valid = await self.paypal.verify_webhook_signature(
                webhook_id=self.settings.paypal_webhook_id,
                headers=headers,
                event=raw,
            )
        except PayPalAPIError as exc:
            if strict:
                log.error("paypal_webhook_verification_unavailable", error=str(exc), status_code=exc.status_code)
                raise SignatureVerificationError("Signature verification unavailable", transient=True) from exc
            log.warning("paypal_webhook_verification_error", error=str(exc), status_code=exc.status_code)
            return VerificationStatus.ERROR

        if valid:
            return VerificationStatus.SUCCESS

        if strict:
            log.error("paypal_webhook_signature_invalid")
            raise SignatureVerificationError("Signature verification failed")
        log.warning("paypal_webhook_signature_invalid_ingesting_unverified")
        return VerificationStatus.FAILURE
