"""FastAPI dependencies for sessions, principals and services."""

from .auth import get_current_principal
from .database import get_db
from .services import (
    get_audit_service,
    get_booking_service,
    get_payment_service,
    get_payment_settings_service,
)

__all__ = [
    "get_audit_service",
    "get_booking_service",
    "get_current_principal",
    "get_db",
    "get_payment_service",
    "get_payment_settings_service",
]
