"""
Process-wide payment settings (single row).

Stripe secrets are stored Fernet-encrypted and decrypted only where a
gateway call needs them.
"""

from copy import deepcopy
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import ulid
from sqlalchemy import Boolean, DateTime, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from roombook.database import Base

DEFAULT_BANK_TRANSFER_NOTE = "Pagamento prenotazione {CODICE}"

DEFAULT_PAYMENT_SETTINGS: Dict[str, Any] = {
    "stripe_enabled": False,
    "bank_transfer_enabled": False,
    "currency": "EUR",
    "tax_rate": Decimal("22"),
    "invoice_prefix": "INV",
    "invoice_start_number": 1,
    "current_invoice_number": 1,
    "payment_deadline_days": 2,
    "payment_reminder_hours": 24,
    "send_reminders": True,
    "bank_transfer_note": DEFAULT_BANK_TRANSFER_NOTE,
}


def default_payment_settings() -> Dict[str, Any]:
    return deepcopy(DEFAULT_PAYMENT_SETTINGS)


class PaymentSettings(Base):
    __tablename__ = "payment_settings"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))

    stripe_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    stripe_publishable_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stripe_secret_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    stripe_webhook_secret: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    bank_transfer_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    bank_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    bank_account_holder: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    bank_iban: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    bank_bic: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    bank_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    bank_transfer_note: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True, default=DEFAULT_BANK_TRANSFER_NOTE
    )

    payment_deadline_days: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    payment_reminder_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
    send_reminders: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), default="EUR", nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("22"), nullable=False)
    invoice_prefix: Mapped[str] = mapped_column(String(20), default="INV", nullable=False)
    invoice_start_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    current_invoice_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentSettings(stripe={self.stripe_enabled}, "
            f"bank_transfer={self.bank_transfer_enabled}, deadline={self.payment_deadline_days}d)>"
        )
