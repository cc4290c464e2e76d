"""Re-export all models so Base.metadata sees them."""

from proclaim.db.models.account import Account
from proclaim.db.models.claim import Claim
from proclaim.db.models.payment_event import PaymentEvent

__all__ = [
    "Account",
    "Claim",
    "PaymentEvent",
]
