"""PaymentEvent model: one normalized PayPal webhook notification."""

from sqlalchemy import JSON, Column, DateTime, Index, Numeric, String

from proclaim.db.base import Base, utcnow


class PaymentEvent(Base):
    """Append-only record of a processor notification.

    Rows are written once by the webhook receiver and never updated; whether an
    event has been claimed is derived from ``payment_claims``.
    """

    __tablename__ = "payment_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=False)
    summary = Column(String(500), nullable=True)
    resource_type = Column(String(100), nullable=True)
    resource_id = Column(String(255), nullable=True)

    # Unscaled so sub-cent values are compared as delivered
    amount_value = Column(Numeric(), nullable=True)
    amount_currency = Column(String(32), nullable=True)
    payer_email = Column(String(320), nullable=True)

    verification_status = Column(String(20), nullable=False)  # SUCCESS, FAILURE, ERROR, SKIPPED
    raw = Column(JSON, nullable=False)

    received_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_payment_events_payer_received", "payer_email", "received_at"),
    )
