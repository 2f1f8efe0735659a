# backend/roombook/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Each request gets services bound to its own session.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.audit_service import AuditService
from ...services.booking_service import BookingService
from ...services.payment_service import PaymentService
from ...services.payment_settings_service import PaymentSettingsService
from .database import get_db


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    return BookingService(db)


def get_payment_service(db: Session = Depends(get_db)) -> PaymentService:
    return PaymentService(db)


def get_payment_settings_service(db: Session = Depends(get_db)) -> PaymentSettingsService:
    return PaymentSettingsService(db)


def get_audit_service(db: Session = Depends(get_db)) -> AuditService:
    return AuditService(db)
