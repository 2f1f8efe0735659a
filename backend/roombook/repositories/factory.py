# backend/roombook/repositories/factory.py
"""
Repository Factory

Centralized creation of repository instances so services share one
construction path (and tests have one place to patch).
"""

from sqlalchemy.orm import Session

from .audit_repository import AuditRepository
from .booking_repository import BookingRepository
from .conflict_checker_repository import ConflictCheckerRepository
from .payment_repository import PaymentRepository
from .payment_settings_repository import PaymentSettingsRepository
from .resource_repository import ResourceRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_booking_repository(db: Session) -> BookingRepository:
        return BookingRepository(db)

    @staticmethod
    def create_conflict_checker_repository(db: Session) -> ConflictCheckerRepository:
        return ConflictCheckerRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> PaymentRepository:
        return PaymentRepository(db)

    @staticmethod
    def create_payment_settings_repository(db: Session) -> PaymentSettingsRepository:
        return PaymentSettingsRepository(db)

    @staticmethod
    def create_resource_repository(db: Session) -> ResourceRepository:
        return ResourceRepository(db)

    @staticmethod
    def create_audit_repository(db: Session) -> AuditRepository:
        return AuditRepository(db)
