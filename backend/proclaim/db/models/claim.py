"""Claim model: a payment event consumed to grant an entitlement."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from proclaim.db.base import Base, utcnow


class Claim(Base):
    __tablename__ = "payment_claims"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    payer_email = Column(String(320), nullable=False, index=True)
    event_id = Column(String(255), ForeignKey("payment_events.event_id"), nullable=False)
    source = Column(String(20), nullable=False)  # verify, redeem

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    # At most one claim per event. Enforced here, not by a prior read.
    __table_args__ = (UniqueConstraint("event_id", name="uq_payment_claims_event_id"),)
