"""ORM models; importing this package registers every table on Base.metadata."""

from .audit_log import AuditLog
from .booking import (
    LIVE_STATUSES,
    Booking,
    BookingAdditionalResource,
    BookingStatus,
)
from .payment import Payment, PaymentMethod, PaymentStatus, round_amount, to_minor_units
from .payment_settings import DEFAULT_PAYMENT_SETTINGS, PaymentSettings
from .resource import Resource

__all__ = [
    "AuditLog",
    "LIVE_STATUSES",
    "Booking",
    "BookingAdditionalResource",
    "BookingStatus",
    "DEFAULT_PAYMENT_SETTINGS",
    "Payment",
    "PaymentMethod",
    "PaymentSettings",
    "PaymentStatus",
    "Resource",
    "round_amount",
    "to_minor_units",
]
