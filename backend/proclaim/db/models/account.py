"""Account model: login identity plus the pro entitlement."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, String

from proclaim.db.base import Base, utcnow


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(320), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Entitlement
    is_pro = Column(Boolean, nullable=False, default=False)
    pro_unlocked_at = Column(DateTime(timezone=True), nullable=True)
    pro_source = Column(String(50), nullable=True)
    pro_payer_email = Column(String(320), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
