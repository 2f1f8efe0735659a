# backend/roombook/schemas/payment_settings.py
"""Admin payment settings schemas. Secrets are only ever returned masked."""

from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel


class PaymentSettingsUpdate(StrictRequestModel):
    stripe_enabled: Optional[bool] = None
    stripe_publishable_key: Optional[str] = Field(None, max_length=255)
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    bank_transfer_enabled: Optional[bool] = None
    bank_name: Optional[str] = Field(None, max_length=200)
    bank_account_holder: Optional[str] = Field(None, max_length=200)
    bank_iban: Optional[str] = Field(None, max_length=64)
    bank_bic: Optional[str] = Field(None, max_length=32)
    bank_address: Optional[str] = Field(None, max_length=500)
    bank_transfer_note: Optional[str] = Field(None, max_length=500)
    payment_deadline_days: Optional[int] = None
    payment_reminder_hours: Optional[int] = None
    send_reminders: Optional[bool] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    tax_rate: Optional[Decimal] = None
    invoice_prefix: Optional[str] = Field(None, max_length=20)
    invoice_start_number: Optional[int] = None
    current_invoice_number: Optional[int] = None

    def changes(self) -> Dict[str, Any]:
        """Only the fields the caller actually sent."""
        return self.model_dump(exclude_unset=True)


class PaymentSettingsResponse(StrictModel):
    id: str
    stripe_enabled: bool
    stripe_publishable_key: Optional[str] = None
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    bank_transfer_enabled: bool
    bank_name: Optional[str] = None
    bank_account_holder: Optional[str] = None
    bank_iban: Optional[str] = None
    bank_bic: Optional[str] = None
    bank_address: Optional[str] = None
    bank_transfer_note: Optional[str] = None
    payment_deadline_days: int
    payment_reminder_hours: int
    send_reminders: bool
    currency: str
    tax_rate: Decimal
    invoice_prefix: str
    invoice_start_number: int
    current_invoice_number: int
