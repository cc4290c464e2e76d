"""PayPal webhook payload shapes and normalization.

PayPal puts the charged amount in one of two places depending on the event
family:

- ``resource.amount`` for capture events (PAYMENT.CAPTURE.*)
- ``resource.purchase_units[0].payments.captures[0].amount`` for order events
  (CHECKOUT.ORDER.*)

``AMOUNT_SHAPES`` lists these locations in the order they are tried. The
same policy is used at ingestion time and again by the claim matcher when a
stored row has no amount column, so both paths agree on what an event is worth.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from proclaim.core.exceptions import MalformedPayloadError

logger = structlog.get_logger(__name__)


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="allow")


class Money(_Lenient):
    value: Any = None
    currency_code: str | None = None


class Capture(_Lenient):
    amount: Money | None = None


class Payments(_Lenient):
    captures: list[Capture] = Field(default_factory=list)


class PurchaseUnit(_Lenient):
    payments: Payments | None = None


class Payer(_Lenient):
    email_address: str | None = None


class RelatedIds(_Lenient):
    order_id: str | None = None


class SupplementaryData(_Lenient):
    related_ids: RelatedIds | None = None


class Resource(_Lenient):
    id: str | None = None
    amount: Money | None = None
    payer: Payer | None = None
    purchase_units: list[PurchaseUnit] = Field(default_factory=list)
    supplementary_data: SupplementaryData | None = None


class WebhookEnvelope(_Lenient):
    """Minimal shape every delivery must have to be stored."""

    id: str = Field(min_length=1, max_length=255)
    event_type: str = Field(min_length=1)
    summary: str | None = None
    resource_type: str | None = None
    create_time: str | None = None
    resource: Any = None


AmountShape = Literal["resource.amount", "purchase_units.capture"]


@dataclass(frozen=True)
class ResolvedAmount:
    value: Decimal
    currency: str | None
    shape: AmountShape


def _flat_amount(resource: Resource) -> Money | None:
    return resource.amount


def _capture_amount(resource: Resource) -> Money | None:
    if not resource.purchase_units:
        return None
    payments = resource.purchase_units[0].payments
    if payments is None or not payments.captures:
        return None
    return payments.captures[0].amount


AMOUNT_SHAPES: tuple[tuple[AmountShape, Callable[[Resource], Money | None]], ...] = (
    ("resource.amount", _flat_amount),
    ("purchase_units.capture", _capture_amount),
)


def parse_decimal(value: Any) -> Decimal | None:
    """Coerce a PayPal money value to Decimal; None when absent or unparseable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed


def normalize_email(email: str | None) -> str | None:
    """Trim and case-fold an email; empty results become None."""
    if email is None:
        return None
    normalized = email.strip().lower()
    return normalized or None


def parse_resource(resource: Any) -> Resource:
    """Parse the ``resource`` object, degrading to an empty one on odd shapes."""
    if not isinstance(resource, dict) or not resource:
        return Resource()
    try:
        return Resource.model_validate(resource)
    except ValidationError as exc:
        logger.warning("paypal_resource_unparseable", errors=exc.error_count())
        return Resource()


def resolve_amount(resource: Resource) -> ResolvedAmount | None:
    """Return the first amount found in ``AMOUNT_SHAPES`` order."""
    for shape, extract in AMOUNT_SHAPES:
        money = extract(resource)
        if money is None:
            continue
        value = parse_decimal(money.value)
        if value is None:
            continue
        return ResolvedAmount(value=value, currency=money.currency_code or None, shape=shape)
    return None


def resolve_amount_from_raw(raw: Any) -> ResolvedAmount | None:
    """Resolve the amount from a stored raw payload."""
    if not isinstance(raw, dict):
        return None
    return resolve_amount(parse_resource(raw.get("resource")))


@dataclass(frozen=True)
class NormalizedEvent:
    """Processor event reduced to the fields the claim flow needs."""

    event_id: str
    event_type: str
    summary: str | None
    resource_type: str | None
    resource_id: str | None
    amount: ResolvedAmount | None
    payer_email: str | None
    raw: dict[str, Any]


def parse_envelope(raw: Any) -> WebhookEnvelope:
    """Validate the minimal delivery shape (event id and type present).

    Raises:
        MalformedPayloadError: body is not an object or lacks id/event_type
    """
    if not isinstance(raw, dict):
        raise MalformedPayloadError("Webhook body must be a JSON object")
    try:
        return WebhookEnvelope.model_validate(raw)
    except ValidationError as exc:
        raise MalformedPayloadError("Webhook body missing id or event_type") from exc


def normalize_event(raw: dict[str, Any]) -> NormalizedEvent:
    """Validate and normalize a decoded webhook body."""
    envelope = parse_envelope(raw)
    resource = parse_resource(envelope.resource)

    resource_id = resource.id
    if not resource_id and resource.supplementary_data and resource.supplementary_data.related_ids:
        resource_id = resource.supplementary_data.related_ids.order_id

    return NormalizedEvent(
        event_id=envelope.id,
        event_type=envelope.event_type,
        summary=envelope.summary,
        resource_type=envelope.resource_type,
        resource_id=resource_id,
        amount=resolve_amount(resource),
        payer_email=normalize_email(resource.payer.email_address if resource.payer else None),
        raw=raw,
    )
