"""Data access layer."""

from .audit_repository import AuditRepository
from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .conflict_checker_repository import ConflictCheckerRepository
from .factory import RepositoryFactory
from .payment_repository import PaymentRepository
from .payment_settings_repository import PaymentSettingsRepository
from .resource_repository import ResourceRepository

__all__ = [
    "AuditRepository",
    "BaseRepository",
    "BookingRepository",
    "ConflictCheckerRepository",
    "PaymentRepository",
    "PaymentSettingsRepository",
    "RepositoryFactory",
    "ResourceRepository",
]
