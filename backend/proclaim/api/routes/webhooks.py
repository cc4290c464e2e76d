"""PayPal webhook ingestion endpoint.

The caller is PayPal's retrying deliverer: 200 means "stop retrying"
(including for duplicates), anything else means "try again later".
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from proclaim.api.deps import get_webhook_receiver
from proclaim.core.exceptions import (
    ConfigurationError,
    MalformedPayloadError,
    SignatureVerificationError,
    StorageError,
)
from proclaim.payments.webhook import WebhookReceiver

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/webhooks/paypal")
async def paypal_webhook(
    request: Request,
    receiver: WebhookReceiver = Depends(get_webhook_receiver),
):
    """Verify and record a PayPal webhook event."""
    body = await request.body()

    try:
        result = await receiver.receive(body, request.headers)
    except ConfigurationError:
        raise HTTPException(status_code=503, detail="PayPal webhook endpoint is not configured")
    except MalformedPayloadError as exc:
        logger.warning("paypal_webhook_malformed", error=str(exc))
        raise HTTPException(status_code=400, detail="Invalid event format")
    except SignatureVerificationError as exc:
        if exc.transient:
            raise HTTPException(status_code=502, detail="Signature verification unavailable")
        raise HTTPException(status_code=400, detail=str(exc))
    except StorageError:
        raise HTTPException(status_code=500, detail="Database error")

    return {
        "status": "ok",
        "event_id": result.event_id,
        "duplicate": result.duplicate,
        "verification_status": str(result.verification_status),
    }
