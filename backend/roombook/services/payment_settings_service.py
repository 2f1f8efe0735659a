# backend/roombook/services/payment_settings_service.py
"""
Payment settings: lazily materialized singleton with encrypted gateway secrets.
"""

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.config import settings as app_settings
from ..core.crypto import MASKED_SECRET, decrypt_str, encrypt_str, mask_secret
from ..core.enums import Action, AuditAction
from ..core.exceptions import ValidationException
from ..core.permissions import Principal, authorize
from ..models.payment_settings import PaymentSettings
from ..repositories.factory import RepositoryFactory
from .audit_service import AuditService
from .base import BaseService

logger = logging.getLogger(__name__)

_SECRET_FIELDS = ("stripe_secret_key", "stripe_webhook_secret")

_UPDATABLE_FIELDS = (
    "stripe_enabled",
    "stripe_publishable_key",
    "stripe_secret_key",
    "stripe_webhook_secret",
    "bank_transfer_enabled",
    "bank_name",
    "bank_account_holder",
    "bank_iban",
    "bank_bic",
    "bank_address",
    "bank_transfer_note",
    "payment_deadline_days",
    "currency",
    "tax_rate",
    "invoice_prefix",
    "invoice_start_number",
    "current_invoice_number",
    "payment_reminder_hours",
    "send_reminders",
)

# field -> (min, max); None means unbounded
_RANGES: Dict[str, tuple] = {
    "payment_deadline_days": (1, 90),
    "payment_reminder_hours": (1, 168),
    "tax_rate": (0, 100),
    "invoice_start_number": (1, None),
    "current_invoice_number": (1, None),
}


@dataclass(frozen=True)
class GatewayCredentials:
    secret_key: Optional[str]
    webhook_secret: Optional[str]


class PaymentSettingsService(BaseService):
    def __init__(self, db: Session, clock: Optional[Clock] = None):
        super().__init__(db, clock=clock)
        self.repository = RepositoryFactory.create_payment_settings_repository(db)
        self.audit_service = AuditService(db, clock=self.clock)

    def get_settings(self) -> PaymentSettings:
        """Return the settings row, creating it with defaults on first read."""
        existing = self.repository.get_current()
        if existing is not None:
            return existing
        with self.transaction():
            return self.repository.get_or_create()

    def get_masked_settings(self, principal: Principal) -> Dict[str, Any]:
        authorize(principal, Action.MANAGE_PAYMENT_SETTINGS)
        return serialize_settings(self.get_settings())

    @BaseService.measure_operation("update_payment_settings")
    def update_settings(self, principal: Principal, update: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Apply a partial update.

        Secrets equal to the mask (or empty) leave the stored value unchanged;
        new secrets are encrypted before storage.
        """
        authorize(principal, Action.MANAGE_PAYMENT_SETTINGS)
        changes = {k: v for k, v in update.items() if k in _UPDATABLE_FIELDS}
        _validate_ranges(changes)

        for field in _SECRET_FIELDS:
            if field not in changes:
                continue
            value = changes[field]
            if not value or value == MASKED_SECRET:
                del changes[field]
            else:
                changes[field] = encrypt_str(value)
                self.logger.info(f"{field} encrypted and updated")

        with self.transaction():
            current = self.repository.get_or_create()
            self.repository.update(current, **changes)
            self.audit_service.log(
                AuditAction.SETTINGS_UPDATE,
                "payment_settings",
                entity_id=current.id,
                description="Payment settings updated",
                actor=principal,
                metadata={"fields": sorted(changes.keys())},
            )

        self.logger.info("Payment settings updated successfully")
        return serialize_settings(current)

    def gateway_credentials(self) -> GatewayCredentials:
        """Decrypt stored gateway secrets; fall back to process-wide defaults."""
        current = self.get_settings()
        secret_key = decrypt_str(current.stripe_secret_key) if current.stripe_secret_key else None
        webhook_secret = (
            decrypt_str(current.stripe_webhook_secret) if current.stripe_webhook_secret else None
        )
        if not secret_key and app_settings.stripe_secret_key:
            secret_key = app_settings.stripe_secret_key.get_secret_value()
        if not webhook_secret and app_settings.stripe_webhook_secret:
            webhook_secret = app_settings.stripe_webhook_secret.get_secret_value()
        return GatewayCredentials(secret_key=secret_key, webhook_secret=webhook_secret)


def _validate_ranges(changes: Mapping[str, Any]) -> None:
    for field, (low, high) in _RANGES.items():
        if field not in changes or changes[field] is None:
            continue
        value = Decimal(str(changes[field]))
        if (low is not None and value < low) or (high is not None and value > high):
            bounds = f"between {low} and {high}" if high is not None else f"at least {low}"
            raise ValidationException(
                f"{field} must be {bounds}",
                code="INVALID_SETTING",
                details={"field": field, "value": str(changes[field])},
            )


def serialize_settings(current: PaymentSettings) -> Dict[str, Any]:
    data = {field: getattr(current, field) for field in _UPDATABLE_FIELDS}
    data["id"] = current.id
    for field in _SECRET_FIELDS:
        data[field] = mask_secret(getattr(current, field))
    return data
